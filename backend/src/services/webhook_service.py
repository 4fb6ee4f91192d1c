"""
Webhook delivery service with retry logic.

Delivers signed session lifecycle events to the merchant's webhook URL in
background tasks so the request that triggered the event never waits on,
or fails because of, the merchant's endpoint.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import httpx

from backend.src.api.schemas.webhook_schemas import (
    WebhookDeliveryResult,
    WebhookError,
    WebhookEventData,
    WebhookEventType,
    WebhookPayload,
    WebhookProduct,
    WebhookResult,
    WebhookTriggerResult,
    WebhookUser,
)
from backend.src.core.config import settings
from backend.src.core.logging import get_logger
from backend.src.core.webhook_security import webhook_security

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class WebhookDispatcher:
    """
    Service for delivering webhook notifications to merchant endpoints.

    Features:
    - HMAC-SHA256 signature over ``"{timestamp}.{body}"``, fresh per attempt
    - Per-attempt HTTP timeout (10 seconds by default)
    - Bounded retries with backoff between attempts (1s, 5s, 30s)
    - Semaphore bounding concurrent outbound requests
    - Tracked background tasks that can be drained on shutdown
    """

    def __init__(
        self,
        account_store,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        max_attempts: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
        timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        product_name: Optional[str] = None,
    ):
        """
        Initialize webhook dispatcher.

        Args:
            account_store: Store used to resolve webhook URL and secret
            http_client: Pre-built client (tests pass one with a mock transport)
            sleep: Awaitable used between attempts
            clock: Unix time source for signature timestamps
            max_attempts: Delivery attempts per event
            retry_delays: Seconds to wait after attempt N before attempt N+1
            timeout: Per-attempt timeout (seconds)
            max_concurrent: Upper bound on in-flight HTTP requests
            product_name: Used for ``X-<Product>-*`` headers and User-Agent
        """
        self._store = account_store
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._clock = clock
        self.max_attempts = max_attempts or settings.WEBHOOK_MAX_ATTEMPTS
        self.retry_delays = list(retry_delays if retry_delays is not None else settings.WEBHOOK_RETRY_DELAYS)
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.WEBHOOK_MAX_CONCURRENT_DELIVERIES)
        self.product_name = product_name or settings.PRODUCT_NAME
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_agent(self) -> str:
        return f"{self.product_name}-Webhook/1.0"

    @property
    def pending(self) -> int:
        """Number of deliveries still running in the background."""
        return len(self._tasks)

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
                headers={"User-Agent": self.user_agent},
            )
        return self._http_client

    def _headers(self, event: WebhookEventType, signature: str, timestamp: int) -> Dict[str, str]:
        prefix = f"X-{self.product_name}"
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            f"{prefix}-Signature": signature,
            f"{prefix}-Timestamp": str(timestamp),
            f"{prefix}-Event": event.value,
        }

    async def send(
        self,
        url: str,
        payload: WebhookPayload,
        secret: str,
        attempt_number: int = 1,
    ) -> WebhookDeliveryResult:
        """
        Make one delivery attempt.

        Never raises for delivery problems; failures are reported in the
        returned result.
        """
        body = payload.to_json()
        timestamp = int(self._clock())
        signature = webhook_security.sign_payload(body, secret, timestamp)
        headers = self._headers(payload.event, signature, timestamp)

        log_context = {
            "event_type": payload.event.value,
            "session_id": payload.data.session_id,
            "attempt_number": attempt_number,
        }

        try:
            async with self._semaphore:
                response = await self._get_http_client().post(
                    url,
                    content=body,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as e:
            logger.warning(
                "Webhook delivery failed - timeout",
                extra={**log_context, "error": str(e)},
            )
            return WebhookDeliveryResult(
                success=False,
                error=f"Request timeout after {self.timeout}s",
                attempt_number=attempt_number,
            )
        except httpx.RequestError as e:
            logger.warning(
                "Webhook delivery failed - request error",
                extra={**log_context, "error": str(e)},
            )
            return WebhookDeliveryResult(
                success=False,
                error=f"Request error: {e}",
                attempt_number=attempt_number,
            )

        if 200 <= response.status_code < 300:
            logger.info(
                "Webhook delivered successfully",
                extra={**log_context, "http_status": response.status_code},
            )
            return WebhookDeliveryResult(
                success=True,
                status_code=response.status_code,
                attempt_number=attempt_number,
            )

        logger.warning(
            "Webhook delivery failed - non-2xx status",
            extra={**log_context, "http_status": response.status_code},
        )
        return WebhookDeliveryResult(
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
            attempt_number=attempt_number,
        )

    async def deliver_with_retries(
        self,
        url: str,
        payload: WebhookPayload,
        secret: str,
        max_attempts: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
    ) -> List[WebhookDeliveryResult]:
        """
        Deliver until a 2xx response or until attempts run out.

        Returns:
            One result per attempt made
        """
        attempts = max_attempts or self.max_attempts
        delays = list(retry_delays if retry_delays is not None else self.retry_delays)
        results: List[WebhookDeliveryResult] = []

        for attempt_number in range(1, attempts + 1):
            result = await self.send(url, payload, secret, attempt_number)
            results.append(result)
            if result.success:
                return results

            if attempt_number < attempts:
                delay = delays[min(attempt_number - 1, len(delays) - 1)] if delays else 0
                logger.info(
                    "Webhook will be retried",
                    extra={
                        "session_id": payload.data.session_id,
                        "attempt_number": attempt_number,
                        "next_attempt": attempt_number + 1,
                        "delay_seconds": delay,
                    },
                )
                await self._sleep(delay)

        logger.error(
            "Webhook delivery exhausted all retries",
            extra={
                "event_type": payload.event.value,
                "session_id": payload.data.session_id,
                "attempts": len(results),
                "final_error": results[-1].error if results else None,
            },
        )
        return results

    async def _deliver_in_background(self, url: str, payload: WebhookPayload, secret: str) -> None:
        try:
            await self.deliver_with_retries(url, payload, secret)
        except Exception as e:
            logger.error(
                "Webhook delivery crashed",
                extra={"session_id": payload.data.session_id, "error": str(e)},
                exc_info=True,
            )

    async def trigger(
        self,
        account_id: str,
        event: WebhookEventType,
        data: WebhookEventData,
    ) -> WebhookTriggerResult:
        """
        Schedule delivery of an event to the account's webhook URL.

        Returns as soon as delivery is scheduled. Accounts without a webhook
        URL or secret get ``sent=False`` and no network call is made.
        """
        try:
            account = await self._store.get_account(account_id)
        except Exception as e:
            logger.error(
                "Webhook account lookup failed",
                extra={"account_id": account_id, "error": str(e)},
                exc_info=True,
            )
            return WebhookTriggerResult(sent=False, error="Account lookup failed")

        if account is None:
            return WebhookTriggerResult(sent=False, error="Account not found")
        if not account.webhook_url:
            return WebhookTriggerResult(sent=False, error="No webhook URL configured")
        if not account.webhook_secret:
            return WebhookTriggerResult(sent=False, error="No webhook secret configured")

        payload = WebhookPayload(event=event, data=data)
        task = asyncio.create_task(
            self._deliver_in_background(account.webhook_url, payload, account.webhook_secret)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Webhook scheduled",
            extra={"account_id": account_id, "event_type": event.value, "session_id": data.session_id},
        )
        return WebhookTriggerResult(sent=True)

    # Event helpers

    async def trigger_session_created(
        self,
        account_id: str,
        session_id: str,
        product: WebhookProduct,
        user: Optional[WebhookUser] = None,
    ) -> WebhookTriggerResult:
        return await self.trigger(
            account_id,
            WebhookEventType.SESSION_CREATED,
            WebhookEventData(session_id=session_id, product=product, user=user),
        )

    async def trigger_tryon_processing(
        self,
        account_id: str,
        session_id: str,
        product: WebhookProduct,
        user: Optional[WebhookUser] = None,
    ) -> WebhookTriggerResult:
        return await self.trigger(
            account_id,
            WebhookEventType.TRYON_PROCESSING,
            WebhookEventData(session_id=session_id, product=product, user=user),
        )

    async def trigger_tryon_completed(
        self,
        account_id: str,
        session_id: str,
        product: WebhookProduct,
        result: WebhookResult,
        user: Optional[WebhookUser] = None,
    ) -> WebhookTriggerResult:
        return await self.trigger(
            account_id,
            WebhookEventType.TRYON_COMPLETED,
            WebhookEventData(session_id=session_id, product=product, result=result, user=user),
        )

    async def trigger_tryon_failed(
        self,
        account_id: str,
        session_id: str,
        product: WebhookProduct,
        error: WebhookError,
        user: Optional[WebhookUser] = None,
    ) -> WebhookTriggerResult:
        return await self.trigger(
            account_id,
            WebhookEventType.TRYON_FAILED,
            WebhookEventData(session_id=session_id, product=product, error=error, user=user),
        )

    async def send_test_webhook(self, account_id: str) -> WebhookDeliveryResult:
        """
        Send one synthetic ``try-on.completed`` event without retries.

        Returns:
            The attempt's outcome, including the endpoint's status code
        """
        account = await self._store.get_account(account_id)
        if account is None:
            return WebhookDeliveryResult(success=False, error="Account not found")
        if not account.webhook_url:
            return WebhookDeliveryResult(success=False, error="No webhook URL configured")
        if not account.webhook_secret:
            return WebhookDeliveryResult(success=False, error="No webhook secret configured")

        payload = WebhookPayload(
            event=WebhookEventType.TRYON_COMPLETED,
            data=WebhookEventData(
                session_id=f"test_session_{int(self._clock() * 1000)}",
                product=WebhookProduct(
                    id="test-product-123",
                    name="Test Product",
                    image="https://example.com/test-product.jpg",
                    category="top",
                    price=49.99,
                    currency="USD",
                ),
                user=WebhookUser(id="test-user-123"),
                result=WebhookResult(
                    image_url=f"{settings.BASE_URL}/test-result.jpg",
                    processing_time=2500,
                ),
            ),
        )

        logger.info("Sending test webhook", extra={"account_id": account_id})
        return await self.send(account.webhook_url, payload, account.webhook_secret, attempt_number=1)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight background deliveries to finish."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        logger.info("Draining webhook deliveries", extra={"pending": len(pending)})
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning(
                "Cancelled unfinished webhook deliveries",
                extra={"cancelled": len(not_done)},
            )

    async def close(self, timeout: Optional[float] = None) -> None:
        """Drain deliveries and close the HTTP client if this service created it."""
        await self.drain(timeout)
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = ["WebhookDispatcher"]
