"""
SQLAlchemy tables backing the account store.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backend.src.core.database import Base
from backend.src.models.base import utcnow


class AccountRecord(Base):
    """Account row."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended')", name="check_account_status"),
        CheckConstraint("quota_used >= 0", name="check_quota_used_non_negative"),
        Index("idx_accounts_api_keys", "api_keys", postgresql_using="gin"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    # Keys
    live_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True, index=True)
    test_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True, index=True)
    api_keys: Mapped[List[Dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    allowed_domains: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)

    # Quota
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    monthly_quota: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_quota: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=100)
    quota_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    studio_quota_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    widget_quota_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quota_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Status
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Webhooks
    webhook_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    settings: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class WidgetSessionRecord(Base):
    """Widget try-on session row."""

    __tablename__ = "widget_sessions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'expired')",
            name="check_session_status",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    api_key_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Product snapshot
    product_image: Mapped[str] = mapped_column(Text, nullable=False)
    product_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    product_price: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    product_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    # Shopper
    external_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    # Provenance
    origin_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Outcome
    result_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_thumbnail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class WidgetAnalyticsRecord(Base):
    """Widget analytics event row."""

    __tablename__ = "widget_analytics"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("widget_sessions.id"), nullable=True, index=True
    )
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
