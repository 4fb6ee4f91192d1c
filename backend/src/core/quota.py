"""
Try-on quota predicates.

Pure functions over an account snapshot: they decide whether the quota is
used up and when a monthly quota rolls over, but never mutate anything.
The caller performs the reset through the account store.
"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional

from backend.src.models.account import DEFAULT_TOTAL_QUOTA, PLAN_LIMITS, Account, AccountPlan, PlanLimits


class EffectiveQuota(NamedTuple):
    """Whichever ceiling is active for an account."""

    used: int
    limit: int
    is_lifetime: bool


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def effective_quota(account: Account) -> EffectiveQuota:
    """
    Resolve the active quota mode.

    A monthly quota, when present, takes precedence over the lifetime
    ``total_quota``, which defaults to 100 when unset.
    """
    used = max(account.quota_used, 0)
    if account.monthly_quota is not None:
        return EffectiveQuota(used=used, limit=account.monthly_quota, is_lifetime=False)
    limit = account.total_quota if account.total_quota is not None else DEFAULT_TOTAL_QUOTA
    return EffectiveQuota(used=used, limit=limit, is_lifetime=True)


def is_exceeded(account: Account) -> bool:
    """Check if the account has no try-ons left."""
    quota = effective_quota(account)
    return quota.used >= quota.limit


def should_reset(account: Account, now: Optional[datetime] = None) -> bool:
    """
    Check whether a monthly quota is due to roll over.

    Lifetime accounts never reset. A monthly account without a recorded reset
    instant resets immediately.
    """
    if account.monthly_quota is None:
        return False
    if account.quota_reset_at is None:
        return True
    return _now(now) >= _now(account.quota_reset_at)


def next_reset_date(now: Optional[datetime] = None) -> datetime:
    """
    First instant (UTC) of the calendar month after ``now``.

    Example:
        >>> next_reset_date(datetime(2024, 12, 15, tzinfo=timezone.utc))
        datetime.datetime(2025, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    current = _now(now).astimezone(timezone.utc)
    if current.month == 12:
        return datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)


def plan_limits(plan: AccountPlan) -> PlanLimits:
    """Plan defaults, falling back to the free plan."""
    return PLAN_LIMITS.get(plan, PLAN_LIMITS[AccountPlan.FREE])


__all__ = [
    "EffectiveQuota",
    "effective_quota",
    "is_exceeded",
    "should_reset",
    "next_reset_date",
    "plan_limits",
]
