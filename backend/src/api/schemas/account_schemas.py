"""
Pydantic schemas for the account management API.

Request fields are loose; the routes validate them and map each
failure to its own error code (``INVALID_NAME``, ``INVALID_KEY_TYPE``...).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from backend.src.api.schemas.common import SanitizedRequest
from backend.src.models.account import PlanLimits, StoredApiKey
from backend.src.models.base import BaseModel, SuccessResponse
from backend.src.models.widget_session import WidgetSession


# Requests


class CreateKeyRequest(SanitizedRequest):
    name: Optional[str] = Field(None, max_length=100)


class RegenerateKeysRequest(SanitizedRequest):
    key_type: Optional[str] = Field(None, description="live, test or both")


class AddDomainRequest(SanitizedRequest):
    domain: Optional[str] = Field(None, max_length=253)


class UpdateSettingsRequest(SanitizedRequest):
    """Fields left out of the body are not touched."""

    webhook_url: Optional[str] = Field(None, max_length=2048)
    settings: Optional[Dict[str, Any]] = None


class BulkDeleteSessionsRequest(SanitizedRequest):
    session_ids: Optional[List[str]] = None


# Responses


class QuotaInfo(BaseModel):
    plan: str
    total_quota: Optional[int] = None
    monthly_quota: Optional[int] = None
    quota_used: int
    quota_limit: int
    is_lifetime: bool
    studio_quota_used: int
    widget_quota_used: int
    quota_reset_at: Optional[datetime] = None


class ProfileResponse(SuccessResponse):
    user: Dict[str, Any]
    quota: QuotaInfo
    plan_limits: PlanLimits


class KeysResponse(SuccessResponse):
    keys: List[StoredApiKey]
    new_key: Optional[StoredApiKey] = None


class KeyPair(BaseModel):
    live_key: Optional[str] = None
    test_key: Optional[str] = None


class RegenerateKeysResponse(SuccessResponse):
    keys: KeyPair


class DomainsResponse(SuccessResponse):
    domains: List[str]


class UpdateSettingsResponse(SuccessResponse):
    user: Dict[str, Any]


class WebhookSecretResponse(SuccessResponse):
    webhook_secret: str


class WebhookTestResponse(SuccessResponse):
    status_code: Optional[int] = None


class AccountSessionView(WidgetSession):
    """Session as listed to its owner."""

    api_key_name: Optional[str] = None


class SessionListResponse(SuccessResponse):
    sessions: List[AccountSessionView]


class BulkDeleteSessionsResponse(SuccessResponse):
    deleted_count: int
    errors: Optional[List[str]] = None


class AnalyticsQuota(BaseModel):
    used: int
    limit: int
    is_lifetime: bool
    reset_at: Optional[datetime] = None


class AnalyticsOverview(BaseModel):
    quota: AnalyticsQuota
    total_sessions: int
    completed_sessions: int
    failed_sessions: int
    conversion_rate: float
    sessions_by_day: Dict[str, int]


class AnalyticsOverviewResponse(SuccessResponse):
    analytics: AnalyticsOverview
