"""Data models package."""

from backend.src.models.account import Account, AccountPlan, AccountStatus, PlanLimits, StoredApiKey
from backend.src.models.base import (
    BaseModel,
    DetailedHealthStatus,
    ErrorBody,
    ErrorResponse,
    HealthStatus,
    SuccessResponse,
)
from backend.src.models.widget_session import (
    AnalyticsEvent,
    AnalyticsEventType,
    SessionStatus,
    WidgetSession,
)

__all__ = [
    "BaseModel",
    "ErrorBody",
    "ErrorResponse",
    "SuccessResponse",
    "HealthStatus",
    "DetailedHealthStatus",
    "Account",
    "AccountPlan",
    "AccountStatus",
    "PlanLimits",
    "StoredApiKey",
    "WidgetSession",
    "SessionStatus",
    "AnalyticsEvent",
    "AnalyticsEventType",
]
