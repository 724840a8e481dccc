"""FastAPI application for the rental marketplace ledger API.

This package provides REST endpoints for:
- Health checks
- Booking lifecycle (requests, payments, status changes)
- Disputes and refunds
- Payment gateway webhooks
"""

import logging
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from api.exceptions import register_exception_handlers
from api.middleware.correlation import CorrelationIdMiddleware
from api.models.common import HealthResponse
from api.routes import bookings_router, disputes_router, refunds_router, webhooks_router
from rentals.utils.logging import configure_logging

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Rental Marketplace API",
    description="REST API for bookings, payments, disputes and refunds",
    version="0.1.0",
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Include routers under /api prefix
# This matches CloudFront routing: /api/* → API Gateway
app.include_router(bookings_router, prefix="/api")
app.include_router(disputes_router, prefix="/api")
app.include_router(refunds_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/ping", response_model=HealthResponse)
async def ping() -> HealthResponse:
    """Health check endpoint at /api/ping."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(UTC).isoformat(),
        service="rentals-api",
    )


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
