"""
Account management API endpoints for merchant back-ends.

Authenticated with the merchant variant of the API key check: no origin
restriction and only the per-account rate limit.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.src.api.dependencies import get_account_service, get_session_service
from backend.src.api.schemas.account_schemas import (
    AccountSessionView,
    AddDomainRequest,
    AnalyticsOverview,
    AnalyticsOverviewResponse,
    BulkDeleteSessionsRequest,
    BulkDeleteSessionsResponse,
    CreateKeyRequest,
    DomainsResponse,
    KeyPair,
    KeysResponse,
    ProfileResponse,
    QuotaInfo,
    RegenerateKeysRequest,
    RegenerateKeysResponse,
    SessionListResponse,
    UpdateSettingsRequest,
    UpdateSettingsResponse,
    WebhookSecretResponse,
    WebhookTestResponse,
)
from backend.src.core.auth import AuthenticatedAccount, merchant_auth
from backend.src.core.config import settings
from backend.src.core.exceptions import APIException, ValidationError
from backend.src.core.quota import effective_quota, plan_limits
from backend.src.models.widget_session import SessionStatus
from backend.src.services.account_service import AccountService
from backend.src.services.session_service import WidgetSessionService

router = APIRouter(prefix="/v1/account", tags=["Account"])


@router.get("/profile", response_model=ProfileResponse, summary="Get account profile")
async def get_profile(auth: AuthenticatedAccount = Depends(merchant_auth)) -> ProfileResponse:
    """
    Account details with the effective quota and plan limits.

    Example:
        ```bash
        curl -H "X-Merchant-Key: mk_live_..." http://localhost:8000/v1/account/profile
        ```
    """
    account = auth.account
    quota = effective_quota(account)
    return ProfileResponse(
        user=account.public_view(),
        quota=QuotaInfo(
            plan=account.plan.value,
            total_quota=account.total_quota,
            monthly_quota=account.monthly_quota,
            quota_used=quota.used,
            quota_limit=quota.limit,
            is_lifetime=quota.is_lifetime,
            studio_quota_used=account.studio_quota_used,
            widget_quota_used=account.widget_quota_used,
            quota_reset_at=account.quota_reset_at,
        ),
        plan_limits=plan_limits(account.plan),
    )


# API keys


@router.get(
    "/keys",
    response_model=KeysResponse,
    response_model_exclude_none=True,
    summary="List API keys",
)
async def list_keys(
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> KeysResponse:
    return KeysResponse(keys=await service.list_keys(auth.account))


@router.post(
    "/keys",
    response_model=KeysResponse,
    response_model_exclude_none=True,
    summary="Create a named API key",
)
async def create_key(
    body: CreateKeyRequest,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> KeysResponse:
    keys, new_key = await service.create_key(auth.account, body.name)
    return KeysResponse(keys=keys, new_key=new_key, message="API key created successfully")


@router.post(
    "/keys/regenerate",
    response_model=RegenerateKeysResponse,
    summary="Regenerate live and/or test keys",
)
async def regenerate_keys(
    body: RegenerateKeysRequest,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> RegenerateKeysResponse:
    """
    Replace the live key, the test key or both (``keyType``).

    The old key stops working immediately.
    """
    updated = await service.regenerate_keys(auth.account, body.key_type)
    label = "Both keys" if body.key_type == "both" else f"{body.key_type} key"
    return RegenerateKeysResponse(
        keys=KeyPair(live_key=updated.live_key, test_key=updated.test_key),
        message=f"{label} regenerated successfully",
    )


@router.delete(
    "/keys/{key_id}",
    response_model=KeysResponse,
    response_model_exclude_none=True,
    summary="Delete a named API key",
)
async def delete_key(
    key_id: str,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> KeysResponse:
    keys = await service.delete_key(auth.account, key_id)
    return KeysResponse(keys=keys, message="API key deleted successfully")


# Domains


@router.get("/domains", response_model=DomainsResponse, response_model_exclude_none=True)
async def list_domains(auth: AuthenticatedAccount = Depends(merchant_auth)) -> DomainsResponse:
    return DomainsResponse(domains=auth.account.allowed_domains)


@router.post(
    "/domains",
    response_model=DomainsResponse,
    response_model_exclude_none=True,
    summary="Allow a domain to embed the widget",
)
async def add_domain(
    body: AddDomainRequest,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> DomainsResponse:
    """
    Add ``example.com`` or ``*.example.com`` to the allow-list.

    Schemes, paths and ports are stripped before validation.
    """
    domains = await service.add_domain(auth.account, body.domain)
    return DomainsResponse(domains=domains, message="Domain added successfully")


@router.delete(
    "/domains/{domain}",
    response_model=DomainsResponse,
    response_model_exclude_none=True,
    summary="Remove an allowed domain",
)
async def remove_domain(
    domain: str,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> DomainsResponse:
    domains = await service.remove_domain(auth.account, domain)
    return DomainsResponse(domains=domains, message="Domain removed successfully")


# Settings and webhooks


@router.put(
    "/settings",
    response_model=UpdateSettingsResponse,
    response_model_exclude_none=True,
    summary="Update webhook URL and widget settings",
)
async def update_settings(
    body: UpdateSettingsRequest,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> UpdateSettingsResponse:
    fields = {name: getattr(body, name) for name in body.model_fields_set}
    updated = await service.update_settings(auth.account, fields)
    return UpdateSettingsResponse(user=updated.public_view(), message="Settings updated successfully")


@router.post(
    "/webhook/regenerate-secret",
    response_model=WebhookSecretResponse,
    summary="Rotate the webhook signing secret",
)
async def regenerate_webhook_secret(
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> WebhookSecretResponse:
    """The new secret is only returned once; store it on your server."""
    secret = await service.regenerate_webhook_secret(auth.account)
    return WebhookSecretResponse(
        webhook_secret=secret,
        message="Webhook secret regenerated. Please update your server configuration.",
    )


@router.post(
    "/webhook/test",
    response_model=WebhookTestResponse,
    response_model_exclude_none=True,
    summary="Send a test webhook",
)
async def test_webhook(
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: AccountService = Depends(get_account_service),
) -> WebhookTestResponse:
    status_code = await service.test_webhook(auth.account)
    return WebhookTestResponse(status_code=status_code, message="Test webhook sent successfully")


# Sessions and analytics


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    summary="List try-on sessions",
)
async def list_sessions(
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Rows to skip"),
    status_filter: Optional[SessionStatus] = Query(None, alias="status", description="Filter by status"),
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> SessionListResponse:
    rows = await service.list_sessions(auth.account, limit=limit, offset=offset, status=status_filter)
    return SessionListResponse(
        sessions=[
            AccountSessionView(**session.model_dump(), api_key_name=key_name)
            for session, key_name in rows
        ]
    )


@router.delete(
    "/sessions",
    response_model=BulkDeleteSessionsResponse,
    response_model_exclude_none=True,
    summary="Delete try-on sessions",
)
async def delete_sessions(
    body: BulkDeleteSessionsRequest,
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> BulkDeleteSessionsResponse:
    """
    Delete up to ``MAX_BULK_DELETE`` sessions with their analytics and
    stored result images. Unknown or foreign ids are reported, not fatal.
    """
    session_ids = body.session_ids or []
    if not session_ids:
        raise ValidationError(message="sessionIds must be a non-empty array")
    if len(session_ids) > settings.MAX_BULK_DELETE:
        raise APIException.from_code(
            "BATCH_TOO_LARGE",
            message=f"Maximum {settings.MAX_BULK_DELETE} sessions can be deleted at once",
        )

    deleted, errors = await service.delete_sessions(auth.account_id, session_ids)
    return BulkDeleteSessionsResponse(
        deleted_count=deleted,
        errors=errors or None,
        message=f"Successfully deleted {deleted} session(s)",
    )


@router.get(
    "/analytics/overview",
    response_model=AnalyticsOverviewResponse,
    summary="Try-on analytics overview",
)
async def analytics_overview(
    auth: AuthenticatedAccount = Depends(merchant_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> AnalyticsOverviewResponse:
    overview = await service.analytics_overview(auth.account)
    return AnalyticsOverviewResponse(analytics=AnalyticsOverview.model_validate(overview))


__all__ = ["router"]
