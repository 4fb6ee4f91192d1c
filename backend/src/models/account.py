"""
Account domain model.

An account owns API keys, the try-on quota and the webhook configuration.
Persistence adapters convert their rows into this model so the auth, quota
and webhook code never deals with ORM objects.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field

from backend.src.models.base import BaseModel, utcnow

LEGACY_KEY_ID = "legacy"
LEGACY_KEY_NAME = "Default Key"
DEFAULT_TOTAL_QUOTA = 100


class AccountPlan(str, Enum):
    """Subscription plans."""

    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    ENTERPRISE = "enterprise"


class AccountStatus(str, Enum):
    """Account lifecycle status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class PlanLimits(BaseModel):
    """Quota and feature defaults for a plan."""

    total_quota: Optional[int] = Field(None, description="Lifetime try-on cap")
    monthly_quota: Optional[int] = Field(None, description="Monthly try-on cap")
    webhooks: bool = False
    custom_branding: bool = False
    analytics: str = "basic"
    priority_support: bool = False


PLAN_LIMITS: Dict[AccountPlan, PlanLimits] = {
    AccountPlan.FREE: PlanLimits(total_quota=DEFAULT_TOTAL_QUOTA, monthly_quota=None),
    AccountPlan.STARTER: PlanLimits(
        monthly_quota=500, webhooks=True, analytics="standard"
    ),
    AccountPlan.GROWTH: PlanLimits(
        monthly_quota=2000,
        webhooks=True,
        custom_branding=True,
        analytics="advanced",
        priority_support=True,
    ),
    AccountPlan.ENTERPRISE: PlanLimits(
        monthly_quota=10000,
        webhooks=True,
        custom_branding=True,
        analytics="advanced",
        priority_support=True,
    ),
}


class StoredApiKey(BaseModel):
    """A named API key stored on the account."""

    id: str = Field(..., description="Key identifier")
    key: str = Field(..., description="Secret key value")
    name: str = Field(..., description="Display name", max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None


class Account(BaseModel):
    """Tenant owning keys, quota and webhook settings."""

    id: str = Field(..., description="Account identifier")
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = None

    live_key: Optional[str] = None
    test_key: Optional[str] = None
    api_keys: List[StoredApiKey] = Field(default_factory=list)
    allowed_domains: List[str] = Field(default_factory=list)

    plan: AccountPlan = AccountPlan.FREE
    monthly_quota: Optional[int] = None
    total_quota: Optional[int] = DEFAULT_TOTAL_QUOTA
    quota_used: int = Field(default=0, ge=0)
    studio_quota_used: int = Field(default=0, ge=0)
    widget_quota_used: int = Field(default=0, ge=0)
    quota_reset_at: Optional[datetime] = None

    status: AccountStatus = AccountStatus.ACTIVE
    is_verified: bool = False

    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def resolve_key(self, api_key: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Find which stored key an inbound key string refers to.

        Returns:
            ``(key_id, key_name)``; the legacy ``live_key`` resolves to
            ``("legacy", "Default Key")`` and an unknown key to ``(None, None)``
        """
        for stored in self.api_keys:
            if stored.key == api_key:
                return stored.id, stored.name
        if self.live_key and self.live_key == api_key:
            return LEGACY_KEY_ID, LEGACY_KEY_NAME
        return None, None

    def key_names(self) -> Dict[str, str]:
        """Map of key id to display name, including the legacy key."""
        names = {stored.id: stored.name for stored in self.api_keys}
        names[LEGACY_KEY_ID] = LEGACY_KEY_NAME
        return names

    def public_view(self) -> Dict[str, Any]:
        """Serializable account view without the webhook signing secret."""
        return self.model_dump(by_alias=True, mode="json", exclude={"webhook_secret"})
