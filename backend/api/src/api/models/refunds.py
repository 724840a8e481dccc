"""API models for refund endpoints."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from rentals.models import RefundAction


class RefundProcessRequest(BaseModel):
    """Administrator decision on a refund."""

    model_config = ConfigDict(
        strict=False, json_schema_extra={"examples": [{"action": "APPROVE"}]}
    )

    action: RefundAction
    reason: Optional[str] = Field(default=None, max_length=2000)
