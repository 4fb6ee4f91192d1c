"""
Pydantic schemas for the widget API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from backend.src.api.schemas.common import SanitizedRequest, validate_http_url
from backend.src.models.base import BaseModel, SuccessResponse
from backend.src.models.widget_session import AnalyticsEventType, SessionStatus, WidgetSession


class ProductCategory(str, Enum):
    """Garment categories the widget understands."""

    TOP = "top"
    BOTTOM = "bottom"
    DRESS = "dress"
    JACKET = "jacket"
    OUTERWEAR = "outerwear"
    SHOES = "shoes"
    ACCESSORY = "accessory"


# Requests


class SessionProductInput(BaseModel):
    """Product being tried on."""

    image: str = Field(..., description="Product image URL", max_length=2048)
    name: Optional[str] = Field(None, max_length=500)
    id: Optional[str] = Field(None, max_length=255)
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    url: Optional[str] = Field(None, max_length=2048)

    @field_validator("image", "url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return validate_http_url(v)


class SessionUserInput(BaseModel):
    """Shopper details supplied by the embedding site."""

    id: Optional[str] = Field(None, max_length=255)
    image: Optional[str] = Field(None, max_length=2048)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: Optional[str]) -> Optional[str]:
        return validate_http_url(v)


class SessionOptions(BaseModel):
    skip_photo_step: bool = False


class CreateSessionRequest(SanitizedRequest):
    """Body of ``POST /v1/widget/session``."""

    product: SessionProductInput
    user: Optional[SessionUserInput] = None
    options: Optional[SessionOptions] = None


class TrackEventRequest(SanitizedRequest):
    """Body of ``POST /v1/widget/analytics``."""

    session_id: Optional[str] = Field(None, max_length=64)
    event_type: AnalyticsEventType
    event_data: Optional[Dict[str, Any]] = None


# Responses


class VerifiedAccount(BaseModel):
    id: str
    name: Optional[str] = None
    plan: str
    quota_used: int
    quota_limit: int
    is_lifetime_quota: bool


class VerifyResponse(SuccessResponse):
    account: VerifiedAccount
    is_test_mode: bool


class SessionProduct(BaseModel):
    image: str
    name: Optional[str] = None
    id: Optional[str] = None
    category: Optional[str] = None
    price: Optional[str] = None
    currency: Optional[str] = None

    @classmethod
    def from_session(cls, session: WidgetSession) -> "SessionProduct":
        return cls(
            image=session.product_image,
            name=session.product_name,
            id=session.product_id,
            category=session.product_category,
            price=session.product_price,
            currency=session.product_currency,
        )


class SessionResultInfo(BaseModel):
    image_url: str
    thumbnail_url: Optional[str] = None
    processing_time: Optional[int] = None


class SessionErrorInfo(BaseModel):
    code: str
    message: Optional[str] = None


class CreatedSession(BaseModel):
    id: str
    status: SessionStatus
    expires_at: Optional[datetime] = None
    product: SessionProduct
    iframe_url: str


class CreateSessionResponse(SuccessResponse):
    session: CreatedSession


class SessionDetail(BaseModel):
    id: str
    status: SessionStatus
    product: SessionProduct
    result: Optional[SessionResultInfo] = None
    error: Optional[SessionErrorInfo] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: WidgetSession) -> "SessionDetail":
        result = None
        if session.result_image:
            result = SessionResultInfo(
                image_url=session.result_image,
                thumbnail_url=session.result_thumbnail,
                processing_time=session.processing_time,
            )
        error = None
        if session.error_code:
            error = SessionErrorInfo(code=session.error_code, message=session.error_message)
        return cls(
            id=session.id,
            status=session.status,
            product=SessionProduct.from_session(session),
            result=result,
            error=error,
            created_at=session.created_at,
            completed_at=session.completed_at,
            expires_at=session.expires_at,
        )


class SessionDetailResponse(SuccessResponse):
    session: SessionDetail


class TryOnResultBody(BaseModel):
    session_id: str
    status: SessionStatus
    image_url: str
    thumbnail_url: Optional[str] = None
    download_url: str
    expires_at: Optional[datetime] = None
    processing_time: int


class TryOnResponse(SuccessResponse):
    result: TryOnResultBody
