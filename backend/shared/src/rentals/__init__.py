"""Booking, dispute and refund ledger for the rental marketplace."""
