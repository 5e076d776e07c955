"""API response models.

The subscription summary shape is shared by the sync endpoint and every
admin override endpoint.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionSummary(BaseModel):
    """Subscription shape returned to callers."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Provider subscription id")
    status: str = Field(..., description="Local subscription status")
    current_period_start: Optional[datetime] = Field(None, alias="currentPeriodStart")
    current_period_end: Optional[datetime] = Field(None, alias="currentPeriodEnd")
    cancel_at_period_end: bool = Field(default=False, alias="cancelAtPeriodEnd")


class SubscriptionResponse(BaseModel):
    """Successful sync or admin override response."""

    success: bool = True
    message: Optional[str] = None
    subscription: SubscriptionSummary

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Subscription synchronized with billing provider",
                "subscription": {
                    "id": "sub_1",
                    "status": "ACTIVE",
                    "currentPeriodStart": "2025-08-01T00:00:00Z",
                    "currentPeriodEnd": "2025-09-01T00:00:00Z",
                    "cancelAtPeriodEnd": False,
                },
            }
        }


class AccessResponse(BaseModel):
    """Current access decision for the caller."""

    has_access: bool
    status: str
    reason: str
    period_end: Optional[datetime] = None


class WebhookAck(BaseModel):
    """Acknowledgement sent back to the billing provider."""

    received: bool = True
    event_id: str
    outcome: str = Field(..., description="processed, duplicate or ignored")


class ProfileSyncResponse(BaseModel):
    """Result of a duplicate-profile sweep."""

    success: bool = True
    stats: dict[str, int]
    results: list[dict[str, Any]]


class DuplicateAnalysisResponse(BaseModel):
    """Read-only analysis of duplicate profiles."""

    stats: dict[str, int]
    groups: list[dict[str, Any]]


class ErrorResponse(BaseModel):
    """Error response body."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human readable message")

    class Config:
        json_schema_extra = {
            "example": {"error": "not_found", "message": "no subscription"}
        }
