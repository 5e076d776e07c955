"""API request models for admin endpoints."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AdminUserRequest(BaseModel):
    """Request identifying the target user of an admin override."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"example": {"userId": "user_2abc", "reason": "Support escalation #42"}},
    )

    user_id: str = Field(..., alias="userId", min_length=1, description="Target user's auth id or email")
    reason: Optional[str] = Field(None, max_length=500, description="Audit reason")
