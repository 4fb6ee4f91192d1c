"""
API key authentication dependencies for the widget and account APIs.

One parameterized ``WidgetAuthenticator`` covers the widget, merchant and
optional variants. It runs the checks in a fixed order and the first failure
short-circuits with a structured error:

1. key header present, 2. key format, 3. account lookup, 4. verified,
5. active, 6. origin domain, 7. per-account rate limit, 8. per-IP rate limit,
9. rate limit headers, 10. monthly quota rollover, 11. key resolution.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Request, Response

from backend.src.core.api_keys import is_test_key, is_valid_format
from backend.src.core.domains import extract_domain, is_domain_allowed
from backend.src.core.exceptions import (
    APIException,
    AuthenticationError,
    AuthorizationError,
    QuotaExceededError,
    RateLimitExceededError,
)
from backend.src.core.logging import get_logger, mask_secret
from backend.src.core.quota import effective_quota, is_exceeded, next_reset_date, should_reset
from backend.src.core.rate_limit import (
    RateLimiter,
    RateLimitPolicies,
    RateLimitPolicy,
    RateLimitResult,
    get_client_ip,
)
from backend.src.models.account import Account
from backend.src.models.base import utcnow

logger = get_logger(__name__)

API_KEY_HEADER = "X-Merchant-Key"


@dataclass
class AuthenticatedAccount:
    """Account context attached to an authorized request."""

    account: Account
    api_key_id: Optional[str]
    api_key_name: Optional[str]
    is_test_mode: bool
    rate_limit: Optional[RateLimitResult] = None

    @property
    def account_id(self) -> str:
        return self.account.id


def request_origin(request: Request) -> Optional[str]:
    """The ``Origin`` header, falling back to ``Referer``."""
    return request.headers.get("Origin") or request.headers.get("Referer")


def _rate_limited(
    result: RateLimitResult, scope: str, reported: Optional[RateLimitResult] = None
) -> RateLimitExceededError:
    """429 error waiting out ``result``; ``X-RateLimit-*`` come from ``reported`` when given."""
    return RateLimitExceededError(
        message=f"Too many requests from this {scope}. Please try again later.",
        retry_after=result.retry_after,
        headers=(reported or result).headers(),
    )


class WidgetAuthenticator:
    """
    FastAPI dependency authorizing requests by ``X-Merchant-Key``.

    Args:
        invalid_key_code: Error code when no account owns the key
        check_origin: Enforce the account's allowed domains
        limit_by_ip: Apply the per-IP widget policy after the per-account one
        optional: Let requests without a key through unauthenticated
        clock: Source of the current time for quota rollover
    """

    def __init__(
        self,
        invalid_key_code: str = "INVALID_API_KEY",
        check_origin: bool = True,
        limit_by_ip: bool = True,
        optional: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.invalid_key_code = invalid_key_code
        self.check_origin = check_origin
        self.limit_by_ip = limit_by_ip
        self.optional = optional
        self.clock = clock

    async def __call__(self, request: Request, response: Response) -> Optional[AuthenticatedAccount]:
        api_key = request.headers.get(API_KEY_HEADER)

        if not api_key:
            if self.optional:
                return None
            raise AuthenticationError("MISSING_API_KEY")

        if not is_valid_format(api_key):
            logger.warning(
                "Malformed API key",
                extra={"key_prefix": mask_secret(api_key), "path": request.url.path},
            )
            raise AuthenticationError("INVALID_API_KEY_FORMAT")

        store = request.app.state.account_store
        try:
            account = await store.get_account_by_api_key(api_key)
        except Exception as e:
            logger.error(
                "Account lookup failed",
                extra={"key_prefix": mask_secret(api_key), "error": str(e)},
                exc_info=True,
            )
            raise APIException.from_code(
                "INTERNAL_ERROR", message="Authentication failed due to an internal error"
            ) from e

        if account is None:
            logger.warning(
                "Unknown API key",
                extra={"key_prefix": mask_secret(api_key), "path": request.url.path},
            )
            raise AuthenticationError(self.invalid_key_code)

        if not account.is_verified:
            raise AuthorizationError("ACCOUNT_NOT_VERIFIED")

        if not account.is_active:
            raise AuthorizationError("MERCHANT_SUSPENDED")

        is_test_mode = is_test_key(api_key)

        if self.check_origin:
            self._check_origin(request, account, is_test_mode)

        limiter: RateLimiter = request.app.state.rate_limiter
        policies = limiter.policies

        account_limit = limiter.check_policy(policies.merchant, account.id)
        if not account_limit.allowed:
            logger.warning(
                "Account rate limit exceeded",
                extra={"account_id": account.id, "limit": account_limit.limit},
            )
            raise _rate_limited(account_limit, "account")

        if self.limit_by_ip:
            ip_limit = limiter.check_policy(policies.widget_ip, get_client_ip(request))
            if not ip_limit.allowed:
                logger.warning(
                    "Widget IP rate limit exceeded",
                    extra={"account_id": account.id, "client_ip": get_client_ip(request)},
                )
                raise _rate_limited(ip_limit, "IP address", reported=account_limit)

        response.headers.update(account_limit.headers())

        now = self.clock()
        if should_reset(account, now):
            reset_at = next_reset_date(now)
            await store.reset_quota(account.id, reset_at)
            account = account.model_copy(
                update={
                    "quota_used": 0,
                    "studio_quota_used": 0,
                    "widget_quota_used": 0,
                    "quota_reset_at": reset_at,
                }
            )

        api_key_id, api_key_name = account.resolve_key(api_key)

        auth = AuthenticatedAccount(
            account=account,
            api_key_id=api_key_id,
            api_key_name=api_key_name,
            is_test_mode=is_test_mode,
            rate_limit=account_limit,
        )
        request.state.auth = auth
        return auth

    def _check_origin(self, request: Request, account: Account, is_test_mode: bool) -> None:
        origin = request_origin(request)
        if not origin:
            # Server-to-server callers send no Origin
            return

        domain = extract_domain(origin)
        if domain is None or not is_domain_allowed(domain, account.allowed_domains, is_test_mode):
            logger.warning(
                "Request origin not allowed",
                extra={
                    "account_id": account.id,
                    "origin_domain": domain,
                    "is_test_mode": is_test_mode,
                },
            )
            raise AuthorizationError(
                "DOMAIN_NOT_ALLOWED",
                message=f"Domain '{domain or origin}' is not authorized for this API key",
            )


widget_auth = WidgetAuthenticator()
optional_widget_auth = WidgetAuthenticator(optional=True)
merchant_auth = WidgetAuthenticator(
    invalid_key_code="INVALID_MERCHANT_KEY",
    check_origin=False,
    limit_by_ip=False,
)


async def require_quota(
    auth: AuthenticatedAccount = Depends(widget_auth),
) -> AuthenticatedAccount:
    """Reject quota-consuming requests once the account's quota is used up."""
    if is_exceeded(auth.account):
        quota = effective_quota(auth.account)
        logger.info(
            "Quota exceeded",
            extra={"account_id": auth.account_id, "used": quota.used, "limit": quota.limit},
        )
        raise QuotaExceededError(is_lifetime=quota.is_lifetime, used=quota.used, limit=quota.limit)
    return auth


def rate_limit(
    select_policy: Callable[[RateLimitPolicies], RateLimitPolicy],
    key_func: Callable[[Request], str] = get_client_ip,
):
    """
    Dependency factory applying a rate limit policy keyed per request.

    Args:
        select_policy: Picks the policy from the limiter's configured set
        key_func: Derives the bucket identity, client IP by default

    Returns:
        Dependency function
    """

    async def rate_limit_checker(request: Request, response: Response) -> RateLimitResult:
        limiter: RateLimiter = request.app.state.rate_limiter
        policy = select_policy(limiter.policies)
        result = limiter.check_policy(policy, key_func(request))
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"policy": policy.name, "path": request.url.path},
            )
            raise _rate_limited(result, "client")
        response.headers.update(result.headers())
        return result

    return rate_limit_checker


# Per-IP limit for unauthenticated widget endpoints
limit_widget_ip = rate_limit(lambda policies: policies.widget_ip)
