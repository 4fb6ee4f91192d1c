"""
Widget API endpoints called from merchant storefronts and the embedded iframe.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import Response

from backend.src.api.dependencies import get_session_service
from backend.src.api.schemas.widget_schemas import (
    CreatedSession,
    CreateSessionRequest,
    CreateSessionResponse,
    SessionDetail,
    SessionDetailResponse,
    SessionProduct,
    TrackEventRequest,
    TryOnResponse,
    TryOnResultBody,
    VerifiedAccount,
    VerifyResponse,
)
from backend.src.core.auth import (
    AuthenticatedAccount,
    limit_widget_ip,
    request_origin,
    require_quota,
    widget_auth,
)
from backend.src.core.config import settings
from backend.src.core.domains import extract_domain
from backend.src.core.exceptions import APIException
from backend.src.core.logging import get_logger
from backend.src.core.quota import effective_quota
from backend.src.core.rate_limit import get_client_ip
from backend.src.models.base import SuccessResponse
from backend.src.models.widget_session import AnalyticsEventType
from backend.src.services.session_service import WidgetSessionService, download_filename

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/widget", tags=["Widget"])

RESULT_CACHE_CONTROL = "public, max-age=3600"


@router.post(
    "/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    summary="Verify a widget API key",
)
async def verify(auth: AuthenticatedAccount = Depends(widget_auth)) -> VerifyResponse:
    """
    Confirm the key works from the calling origin.

    Example:
        ```bash
        curl -X POST http://localhost:8000/v1/widget/verify \\
          -H "X-Merchant-Key: mk_test_..."
        ```
    """
    quota = effective_quota(auth.account)
    return VerifyResponse(
        account=VerifiedAccount(
            id=auth.account.id,
            name=auth.account.name,
            plan=auth.account.plan.value,
            quota_used=quota.used,
            quota_limit=quota.limit,
            is_lifetime_quota=quota.is_lifetime,
        ),
        is_test_mode=auth.is_test_mode,
    )


@router.post(
    "/session",
    response_model=CreateSessionResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create a try-on session",
)
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    auth: AuthenticatedAccount = Depends(widget_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> CreateSessionResponse:
    """
    Create a pending try-on session for one product.

    The response carries the ``iframeUrl`` the storefront embeds.

    Example:
        ```bash
        curl -X POST http://localhost:8000/v1/widget/session \\
          -H "X-Merchant-Key: mk_live_..." \\
          -H "Content-Type: application/json" \\
          -d '{"product": {"image": "https://shop.example.com/shirt.jpg", "name": "Shirt"}}'
        ```
    """
    session = await service.create_session(
        auth,
        body,
        origin_domain=extract_domain(request_origin(request)),
        user_agent=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request),
    )
    return CreateSessionResponse(
        session=CreatedSession(
            id=session.id,
            status=session.status,
            expires_at=session.expires_at,
            product=SessionProduct.from_session(session),
            iframe_url=f"{settings.BASE_URL}/widget/embed?session={session.id}",
        )
    )


@router.get(
    "/session/{session_id}",
    response_model=SessionDetailResponse,
    response_model_exclude_none=True,
    summary="Get a try-on session",
)
async def get_session(
    session_id: str,
    auth: AuthenticatedAccount = Depends(widget_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> SessionDetailResponse:
    """Session status, product and, once finished, its result or error."""
    session = await service.get_owned_session(auth.account_id, session_id)
    return SessionDetailResponse(session=SessionDetail.from_session(session))


@router.delete(
    "/session/{session_id}",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    summary="Cancel a try-on session",
)
async def cancel_session(
    session_id: str,
    auth: AuthenticatedAccount = Depends(widget_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> SuccessResponse:
    await service.cancel_session(auth.account_id, session_id)
    return SuccessResponse(message="Session cancelled successfully")


@router.post(
    "/try-on",
    response_model=TryOnResponse,
    response_model_exclude_none=True,
    summary="Generate a try-on result",
)
async def try_on(
    session_id: Optional[str] = Form(None, alias="sessionId"),
    photo_url: Optional[str] = Form(None, alias="photoUrl"),
    photo: Optional[UploadFile] = File(None),
    auth: AuthenticatedAccount = Depends(require_quota),
    service: WidgetSessionService = Depends(get_session_service),
) -> TryOnResponse:
    """
    Run the try-on for a session.

    Accepts either an uploaded ``photo`` or a ``photoUrl``. Consumes one unit
    of the account's quota on success.

    Example:
        ```bash
        curl -X POST http://localhost:8000/v1/widget/try-on \\
          -H "X-Merchant-Key: mk_live_..." \\
          -F sessionId=ses_... \\
          -F photo=@me.jpg
        ```
    """
    if not session_id:
        raise APIException.from_code("MISSING_SESSION_ID")

    has_upload = photo is not None and bool(photo.filename)
    if not has_upload and not photo_url:
        raise APIException.from_code("MISSING_PHOTO")

    photo_bytes = None
    if has_upload:
        if not (photo.content_type or "").startswith("image/"):
            raise APIException.from_code("INVALID_IMAGE_TYPE")
        photo_bytes = await photo.read()
        if len(photo_bytes) > settings.MAX_UPLOAD_BYTES:
            raise APIException.from_code("IMAGE_TOO_LARGE")

    outcome = await service.submit_try_on(
        auth,
        session_id,
        photo_bytes=photo_bytes,
        photo_url=None if has_upload else photo_url,
    )
    session = outcome.session
    return TryOnResponse(
        result=TryOnResultBody(
            session_id=session.id,
            status=session.status,
            image_url=session.result_image,
            thumbnail_url=session.result_thumbnail,
            download_url=f"{settings.BASE_URL}/v1/widget/download/{session.id}",
            expires_at=session.expires_at,
            processing_time=outcome.processing_time,
        )
    )


@router.get(
    "/result/{session_id}",
    summary="Serve a try-on result image",
    dependencies=[Depends(limit_widget_ip)],
)
async def get_result(
    session_id: str,
    service: WidgetSessionService = Depends(get_session_service),
) -> Response:
    """Result image for display inside the widget. No API key required."""
    image = await service.load_result_image(session_id, fetch_error_code="FETCH_FAILED")
    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={
            "Cache-Control": RESULT_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        },
    )


@router.get(
    "/download/{session_id}",
    summary="Download a try-on result image",
    dependencies=[Depends(limit_widget_ip)],
)
async def download_result(
    session_id: str,
    service: WidgetSessionService = Depends(get_session_service),
) -> Response:
    """Result image as a file attachment. Records a ``download`` event."""
    image = await service.load_result_image(session_id, fetch_error_code="DOWNLOAD_FAILED")
    await service.record_event(
        image.session.account_id,
        AnalyticsEventType.DOWNLOAD,
        session_id=session_id,
    )
    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{download_filename(image.session)}"',
            "Cache-Control": RESULT_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        },
    )


@router.post(
    "/analytics",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    summary="Track a widget analytics event",
)
async def track_event(
    body: TrackEventRequest,
    auth: AuthenticatedAccount = Depends(widget_auth),
    service: WidgetSessionService = Depends(get_session_service),
) -> SuccessResponse:
    await service.track_event(auth.account_id, body.event_type, body.session_id, body.event_data)
    return SuccessResponse(message="Event tracked successfully")


__all__ = ["router"]
