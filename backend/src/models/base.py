"""
Base Pydantic models and response envelopes.

Every JSON body the API emits is camelCase and wrapped in the standard
envelope: ``{"success": true, ...}`` or ``{"success": false, "error": {...}}``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel as PydanticBaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class BaseModel(PydanticBaseModel):
    """Base Pydantic model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=False,
        alias_generator=to_camel,
    )


class SuccessResponse(BaseModel):
    """Standard success envelope; endpoint responses extend it."""

    success: bool = Field(default=True, description="Always true for successful responses")
    message: Optional[str] = Field(None, description="Human-readable outcome")


class ErrorBody(BaseModel):
    """Error details inside the failure envelope."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Developer-facing error message")
    user_message: Optional[str] = Field(None, description="Message safe to show shoppers")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    request_id: Optional[str] = Field(None, description="Request correlation ID")


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    success: bool = Field(default=False, description="Always false for failures")
    error: ErrorBody


class HealthStatus(BaseModel):
    """Health check status."""

    status: str = Field(..., description="Health status (healthy, degraded, unhealthy)")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")


class DetailedHealthStatus(HealthStatus):
    """Health status with component checks."""

    components: Dict[str, Any] = Field(
        default_factory=dict, description="Component-specific health status"
    )
    version: Optional[str] = Field(None, description="Application version")
    environment: Optional[str] = Field(None, description="Environment name")
