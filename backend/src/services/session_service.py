"""
Widget session service: session lifecycle, try-on processing and result images.
"""

import base64
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from backend.src.api.schemas.webhook_schemas import (
    WebhookError,
    WebhookProduct,
    WebhookResult,
    WebhookUser,
)
from backend.src.api.schemas.widget_schemas import CreateSessionRequest
from backend.src.core.api_keys import generate_session_id
from backend.src.core.auth import AuthenticatedAccount
from backend.src.core.config import settings
from backend.src.core.exceptions import (
    APIException,
    AuthorizationError,
    ExternalServiceError,
    ResourceNotFoundError,
    SessionExpiredError,
)
from backend.src.core.logging import get_logger
from backend.src.core.quota import effective_quota
from backend.src.models.account import Account
from backend.src.models.base import utcnow
from backend.src.models.widget_session import (
    AnalyticsEvent,
    AnalyticsEventType,
    SessionStatus,
    WidgetSession,
)
from backend.src.services.tryon_provider import TryOnRequest

logger = get_logger(__name__)

MEDIA_URL_PREFIX = "/media/"
_DATA_URI = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class ResultImage:
    """Result image bytes ready to be served."""

    content: bytes
    content_type: str
    session: WidgetSession


@dataclass(frozen=True)
class TryOnOutcome:
    session: WidgetSession
    processing_time: int


def _product_price(session: WidgetSession) -> Optional[float]:
    if session.product_price is None:
        return None
    try:
        return float(session.product_price)
    except ValueError:
        return None


def webhook_product(session: WidgetSession, include_price: bool = True) -> WebhookProduct:
    """Product block for webhook payloads."""
    return WebhookProduct(
        id=session.product_id,
        name=session.product_name,
        image=session.product_image,
        category=session.product_category,
        price=_product_price(session) if include_price else None,
        currency=session.product_currency if include_price else None,
    )


def webhook_user(session: WidgetSession) -> Optional[WebhookUser]:
    return WebhookUser(id=session.external_user_id) if session.external_user_id else None


def download_filename(session: WidgetSession) -> str:
    """Attachment filename for a session's result image."""
    product = re.sub(r"[^a-zA-Z0-9]", "_", session.product_name) if session.product_name else "try-on"
    return f"mirror-me-{product}-{session.id[:8]}.jpg"


class WidgetSessionService:
    """Service for widget sessions and try-on processing."""

    def __init__(
        self,
        store,
        dispatcher,
        generator,
        image_fetcher,
        media_root: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.generator = generator
        self.image_fetcher = image_fetcher
        self.media_root = Path(media_root or settings.MEDIA_ROOT)
        self.clock = clock

    async def record_event(
        self,
        account_id: str,
        event_type: AnalyticsEventType,
        session_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an analytics event."""
        await self.store.create_analytics_event(
            AnalyticsEvent(
                account_id=account_id,
                session_id=session_id,
                event_type=event_type,
                event_data=event_data or {},
            )
        )

    async def track_event(
        self,
        account_id: str,
        event_type: AnalyticsEventType,
        session_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record a widget-reported event.

        Raises:
            AuthorizationError: ACCESS_DENIED when the session belongs to another account
        """
        if session_id:
            session = await self.store.get_session(session_id)
            if session is not None and session.account_id != account_id:
                raise AuthorizationError("ACCESS_DENIED")
            if session is None:
                # Unknown sessions are still counted, just not linked
                logger.info(
                    "Analytics event for unknown session",
                    extra={"account_id": account_id, "session_id": session_id},
                )
                event_data = {**(event_data or {}), "sessionId": session_id}
                session_id = None
        await self.record_event(account_id, event_type, session_id=session_id, event_data=event_data)

    # Lifecycle

    async def create_session(
        self,
        auth: AuthenticatedAccount,
        request: CreateSessionRequest,
        origin_domain: Optional[str],
        user_agent: Optional[str],
        ip_address: Optional[str],
    ) -> WidgetSession:
        """
        Create a pending try-on session.

        Records an ``impression`` event and fires ``session.created``.
        """
        product = request.product
        shopper = request.user
        now = self.clock()

        session = WidgetSession(
            id=generate_session_id(int(now.timestamp() * 1000)),
            account_id=auth.account_id,
            api_key_id=auth.api_key_id,
            product_image=product.image,
            product_name=product.name,
            product_id=product.id,
            product_category=product.category.value if product.category else None,
            product_price=str(product.price) if product.price is not None else None,
            product_currency=product.currency,
            product_url=product.url,
            external_user_id=shopper.id if shopper else None,
            user_image=shopper.image if shopper else None,
            status=SessionStatus.PENDING,
            origin_domain=origin_domain,
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.WIDGET_SESSION_TTL_SECONDS),
        )
        session = await self.store.create_session(session)

        await self.record_event(
            auth.account_id,
            AnalyticsEventType.IMPRESSION,
            session_id=session.id,
            event_data={
                "productId": product.id,
                "productCategory": session.product_category,
                "hasUserImage": bool(shopper and shopper.image),
            },
        )

        await self.dispatcher.trigger_session_created(
            auth.account_id,
            session.id,
            webhook_product(session),
            WebhookUser(id=shopper.id) if shopper else None,
        )

        logger.info(
            "Widget session created",
            extra={
                "session_id": session.id,
                "account_id": auth.account_id,
                "origin_domain": origin_domain,
                "is_test_mode": auth.is_test_mode,
            },
        )
        return session

    async def get_owned_session(
        self,
        account_id: str,
        session_id: str,
        check_expiry: bool = True,
    ) -> WidgetSession:
        """
        Load a session owned by ``account_id``.

        Raises:
            ResourceNotFoundError: SESSION_NOT_FOUND
            AuthorizationError: ACCESS_DENIED for another account's session
            SessionExpiredError: Past ``expires_at``
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise ResourceNotFoundError("SESSION_NOT_FOUND", session_id)
        if session.account_id != account_id:
            logger.warning(
                "Session access denied",
                extra={"session_id": session_id, "account_id": account_id},
            )
            raise AuthorizationError("ACCESS_DENIED")
        if check_expiry and session.is_expired(self.clock()):
            raise SessionExpiredError(session_id)
        return session

    async def cancel_session(self, account_id: str, session_id: str) -> WidgetSession:
        """Expire a session immediately."""
        await self.get_owned_session(account_id, session_id, check_expiry=False)
        session = await self.store.update_session(
            session_id,
            {"status": SessionStatus.EXPIRED, "expires_at": self.clock()},
        )
        logger.info("Widget session cancelled", extra={"session_id": session_id})
        return session

    # Try-on

    async def _fail(
        self,
        account_id: str,
        session: WidgetSession,
        error_code: str,
        error_message: str,
        track_error: bool = False,
    ) -> None:
        await self.store.update_session(
            session.id,
            {
                "status": SessionStatus.FAILED,
                "error_code": error_code,
                "error_message": error_message,
            },
        )
        if track_error:
            await self.record_event(
                account_id,
                AnalyticsEventType.ERROR,
                session_id=session.id,
                event_data={"errorCode": error_code, "errorMessage": error_message},
            )
        await self.dispatcher.trigger_tryon_failed(
            account_id,
            session.id,
            webhook_product(session, include_price=False),
            WebhookError(code=error_code, message=error_message),
            webhook_user(session),
        )
        logger.warning(
            "Try-on failed",
            extra={"session_id": session.id, "error_code": error_code, "error": error_message},
        )

    async def submit_try_on(
        self,
        auth: AuthenticatedAccount,
        session_id: str,
        photo_bytes: Optional[bytes] = None,
        photo_url: Optional[str] = None,
    ) -> TryOnOutcome:
        """
        Run a try-on for a pending (or previously failed) session.

        The session is claimed with a conditional update so concurrent
        submissions of the same session cannot both process it.

        Raises:
            APIException: Session state errors, image fetch failures and
                generation failures, each with its own error code
        """
        started = time.monotonic()
        account_id = auth.account_id

        session = await self.get_owned_session(account_id, session_id)
        if session.status == SessionStatus.COMPLETED:
            raise APIException.from_code("SESSION_ALREADY_COMPLETED")
        if session.status == SessionStatus.PROCESSING:
            raise APIException.from_code("SESSION_PROCESSING")

        if not await self.store.claim_session_for_processing(session_id):
            raise APIException.from_code("SESSION_PROCESSING")

        await self.record_event(
            account_id,
            AnalyticsEventType.PROCESSING_START,
            session_id=session_id,
            event_data={"photoSource": "upload" if photo_bytes is not None else "url"},
        )
        await self.dispatcher.trigger_tryon_processing(
            account_id, session_id, webhook_product(session), webhook_user(session)
        )

        # Shopper photo
        if photo_bytes is not None:
            user_photo_base64 = base64.b64encode(photo_bytes).decode("ascii")
        else:
            try:
                user_photo_base64 = await self.image_fetcher.fetch_base64(photo_url)
            except ExternalServiceError as e:
                message = "Failed to fetch user photo from URL"
                await self._fail(account_id, session, "INVALID_USER_IMAGE", message)
                raise APIException.from_code("INVALID_USER_IMAGE", message=message) from e

        # Product image
        try:
            product_image_base64 = await self.image_fetcher.fetch_base64(session.product_image)
        except ExternalServiceError as e:
            message = "Failed to fetch product image"
            await self._fail(account_id, session, "INVALID_PRODUCT_IMAGE", message)
            raise APIException.from_code("INVALID_PRODUCT_IMAGE", message=message) from e

        try:
            result = await self.generator.generate(
                TryOnRequest(
                    model_image_base64=user_photo_base64,
                    fashion_image_base64=product_image_base64,
                    fashion_item_name=session.product_name or "Fashion Item",
                    fashion_category=session.product_category or "clothing",
                    requester_id=f"widget_{account_id}",
                )
            )
        except Exception as e:
            logger.error(
                "Try-on generator raised",
                extra={"session_id": session_id, "error": str(e)},
                exc_info=True,
            )
            await self._fail(account_id, session, "PROCESSING_FAILED", str(e) or "Unknown error", track_error=True)
            raise APIException.from_code(
                "PROCESSING_FAILED", message="Failed to generate try-on result"
            ) from e

        if not result.success or not result.result_image_url:
            message = result.error or "Failed to generate try-on"
            await self._fail(account_id, session, "PROCESSING_FAILED", message, track_error=True)
            raise APIException.from_code("PROCESSING_FAILED", message=message)

        processing_time = int((time.monotonic() - started) * 1000)
        completed = await self.store.update_session(
            session_id,
            {
                "status": SessionStatus.COMPLETED,
                "result_image": result.result_image_url,
                "result_thumbnail": result.result_image_url,
                "processing_time": processing_time,
                "completed_at": self.clock(),
                "error_code": None,
                "error_message": None,
            },
        )

        await self.store.increment_widget_quota(account_id)
        await self.record_event(
            account_id,
            AnalyticsEventType.COMPLETED,
            session_id=session_id,
            event_data={"processingTime": processing_time},
        )
        await self.dispatcher.trigger_tryon_completed(
            account_id,
            session_id,
            webhook_product(session),
            WebhookResult(image_url=result.result_image_url, processing_time=processing_time),
            webhook_user(session),
        )

        logger.info(
            "Try-on completed",
            extra={"session_id": session_id, "account_id": account_id, "processing_time_ms": processing_time},
        )
        return TryOnOutcome(session=completed, processing_time=processing_time)

    # Result images

    def media_path(self, media_url: str) -> Optional[Path]:
        """Filesystem path for a ``/media/...`` URL, or None if it escapes the media root."""
        relative = media_url[len(MEDIA_URL_PREFIX):]
        root = self.media_root.resolve()
        candidate = (root / relative).resolve()
        if candidate != root and root not in candidate.parents:
            return None
        return candidate

    async def load_result_image(self, session_id: str, fetch_error_code: str = "FETCH_FAILED") -> ResultImage:
        """
        Resolve a session's result image into bytes.

        Supports ``data:`` URIs, remote http(s) URLs and local ``/media/`` paths.

        Raises:
            ResourceNotFoundError: SESSION_NOT_FOUND or RESULT_NOT_FOUND
            SessionExpiredError: Past ``expires_at``
            APIException: ``fetch_error_code`` when a remote image cannot be fetched
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise ResourceNotFoundError("SESSION_NOT_FOUND", session_id)
        if not session.result_image:
            raise ResourceNotFoundError("RESULT_NOT_FOUND", session_id)
        if session.is_expired(self.clock()):
            raise SessionExpiredError(session_id)

        image = session.result_image

        if image.startswith(MEDIA_URL_PREFIX):
            path = self.media_path(image)
            if path is None or not path.is_file():
                raise APIException.from_code("RESULT_NOT_FOUND", message="Result image file not found")
            content = await run_in_threadpool(path.read_bytes)
            return ResultImage(content=content, content_type="image/jpeg", session=session)

        if image.startswith(("http://", "https://")):
            try:
                fetched = await self.image_fetcher.fetch(image)
            except ExternalServiceError as e:
                raise APIException.from_code(fetch_error_code) from e
            return ResultImage(content=fetched.content, content_type=fetched.content_type, session=session)

        match = _DATA_URI.match(image)
        if match:
            try:
                content = base64.b64decode(match.group(2), validate=True)
            except ValueError as e:
                raise APIException.from_code("RESULT_NOT_FOUND", message="Result image is corrupt") from e
            return ResultImage(content=content, content_type=match.group(1), session=session)

        raise APIException.from_code("RESULT_NOT_FOUND", message="Result format not recognized")

    # Account-side management

    async def list_sessions(
        self,
        account: Account,
        limit: int,
        offset: int,
        status: Optional[SessionStatus] = None,
    ) -> List[Tuple[WidgetSession, Optional[str]]]:
        """Sessions newest first, paired with the name of the key that created them."""
        names = account.key_names()
        sessions = await self.store.list_sessions(account.id, limit=limit, offset=offset, status=status)
        return [
            (session, names.get(session.api_key_id, "Unknown Key") if session.api_key_id else None)
            for session in sessions
        ]

    async def delete_sessions(self, account_id: str, session_ids: List[str]) -> Tuple[int, List[str]]:
        """
        Delete sessions with their analytics rows and local result files.

        Missing or foreign sessions are skipped and reported.

        Returns:
            Tuple of (deleted count, per-session error messages)
        """
        deleted = 0
        errors: List[str] = []

        for session_id in session_ids:
            session = await self.store.get_session(session_id)
            if session is None:
                errors.append(f"Session {session_id} not found")
                continue
            if session.account_id != account_id:
                errors.append(f"Session {session_id} access denied")
                continue

            try:
                if session.result_image and session.result_image.startswith(MEDIA_URL_PREFIX):
                    path = self.media_path(session.result_image)
                    if path is not None:
                        await run_in_threadpool(path.unlink, missing_ok=True)
                await self.store.delete_analytics_for_session(session_id)
                await self.store.delete_session(session_id)
                deleted += 1
            except Exception as e:
                logger.error(
                    "Session deletion failed",
                    extra={"session_id": session_id, "error": str(e)},
                    exc_info=True,
                )
                errors.append(f"Session {session_id} failed to delete")

        logger.info(
            "Sessions deleted",
            extra={"account_id": account_id, "deleted_count": deleted, "error_count": len(errors)},
        )
        return deleted, errors

    async def analytics_overview(self, account: Account) -> Dict[str, Any]:
        """Dashboard numbers over the 100 most recent sessions."""
        sessions = await self.store.list_sessions(account.id, limit=100, offset=0)
        total = len(sessions)
        completed = sum(1 for s in sessions if s.status == SessionStatus.COMPLETED)
        failed = sum(1 for s in sessions if s.status == SessionStatus.FAILED)

        by_day: Dict[str, int] = {}
        for session in sessions:
            day = session.created_at.date().isoformat()
            by_day[day] = by_day.get(day, 0) + 1

        quota = effective_quota(account)
        return {
            "quota": {
                "used": quota.used,
                "limit": quota.limit,
                "is_lifetime": quota.is_lifetime,
                "reset_at": account.quota_reset_at,
            },
            "total_sessions": total,
            "completed_sessions": completed,
            "failed_sessions": failed,
            "conversion_rate": round(completed / total * 100, 1) if total else 0.0,
            "sessions_by_day": by_day,
        }


__all__ = ["WidgetSessionService", "ResultImage", "TryOnOutcome", "download_filename", "webhook_product"]
