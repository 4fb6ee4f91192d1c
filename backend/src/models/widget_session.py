"""
Widget session and analytics domain models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from backend.src.models.base import BaseModel, utcnow


class SessionStatus(str, Enum):
    """Try-on session state machine."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


# States a try-on may be submitted from
CLAIMABLE_STATUSES = (SessionStatus.PENDING, SessionStatus.FAILED)


class AnalyticsEventType(str, Enum):
    """Widget analytics event taxonomy."""

    IMPRESSION = "impression"
    OPEN = "open"
    PHOTO_SELECTED = "photo_selected"
    PROCESSING_START = "processing_start"
    COMPLETED = "completed"
    ERROR = "error"
    SHARE = "share"
    DOWNLOAD = "download"


class WidgetSession(BaseModel):
    """One shopper's try-on attempt."""

    id: str
    account_id: str
    api_key_id: Optional[str] = None

    product_image: str
    product_name: Optional[str] = None
    product_id: Optional[str] = None
    product_category: Optional[str] = None
    product_price: Optional[str] = None
    product_currency: Optional[str] = None
    product_url: Optional[str] = None

    external_user_id: Optional[str] = None
    user_image: Optional[str] = None

    status: SessionStatus = SessionStatus.PENDING

    origin_domain: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    result_image: Optional[str] = None
    result_thumbnail: Optional[str] = None
    processing_time: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Read-time expiry check."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class AnalyticsEvent(BaseModel):
    """Appended analytics row."""

    id: Optional[str] = None
    account_id: str
    session_id: Optional[str] = None
    event_type: AnalyticsEventType
    event_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
