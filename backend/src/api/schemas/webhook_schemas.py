"""
Webhook payload schemas for session lifecycle notifications.

Payloads serialize to camelCase and omit unset optional blocks, e.g.::

    {"event": "try-on.completed", "timestamp": "...",
     "data": {"sessionId": "ses_...", "result": {"imageUrl": "...", "processingTime": 2500}}}
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from backend.src.models.base import BaseModel, utcnow


class WebhookEventType(str, Enum):
    """Closed set of webhook events."""

    SESSION_CREATED = "session.created"
    TRYON_PROCESSING = "try-on.processing"
    TRYON_COMPLETED = "try-on.completed"
    TRYON_FAILED = "try-on.failed"


class WebhookProduct(BaseModel):
    """Product snapshot in a webhook payload."""

    id: Optional[str] = Field(None, description="Merchant product identifier")
    name: Optional[str] = Field(None, description="Product display name", max_length=500)
    image: str = Field(..., description="Product image URL")
    category: Optional[str] = Field(None, description="Product category")
    price: Optional[float] = Field(None, description="Product price", ge=0)
    currency: Optional[str] = Field(None, description="ISO 4217 currency code", max_length=3)


class WebhookUser(BaseModel):
    """Shopper identity supplied by the embedding site."""

    id: Optional[str] = Field(None, description="External shopper identifier")


class WebhookResult(BaseModel):
    """Successful try-on outcome."""

    image_url: Optional[str] = Field(None, description="Result image URL")
    processing_time: Optional[int] = Field(None, description="Processing time (ms)", ge=0)


class WebhookError(BaseModel):
    """Failed try-on outcome."""

    code: Optional[str] = Field(None, description="Error code")
    message: Optional[str] = Field(None, description="Error message")


class WebhookEventData(BaseModel):
    """Event-specific data."""

    session_id: str = Field(..., description="Widget session identifier")
    product: Optional[WebhookProduct] = None
    user: Optional[WebhookUser] = None
    result: Optional[WebhookResult] = None
    error: Optional[WebhookError] = None


class WebhookPayload(BaseModel):
    """Complete webhook body."""

    event: WebhookEventType = Field(..., description="Event type")
    timestamp: datetime = Field(default_factory=utcnow, description="Event time (ISO-8601)")
    data: WebhookEventData

    def to_json(self) -> str:
        """Canonical serialized body; the signature is computed over exactly this string."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class WebhookDeliveryResult(BaseModel):
    """Outcome of one delivery attempt."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempt_number: int = 1
    timestamp: datetime = Field(default_factory=utcnow)


class WebhookTriggerResult(BaseModel):
    """Outcome of scheduling a webhook."""

    sent: bool
    error: Optional[str] = None
