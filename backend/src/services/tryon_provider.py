"""
Try-on image generation client.

The composition itself happens at an external provider; this module only
defines the request/result contract and an HTTP client for it.
"""

from typing import Optional, Protocol

import httpx
from pydantic import Field

from backend.src.core.config import settings
from backend.src.core.logging import get_logger
from backend.src.models.base import BaseModel

logger = get_logger(__name__)


class TryOnRequest(BaseModel):
    """Inputs for one try-on generation."""

    model_image_base64: str = Field(..., description="Shopper photo, base64")
    fashion_image_base64: str = Field(..., description="Product image, base64")
    fashion_item_name: str = Field(default="Fashion Item")
    fashion_category: str = Field(default="clothing")
    requester_id: str = Field(..., description="Caller identity for provider-side accounting")


class TryOnResult(BaseModel):
    """Outcome of a generation."""

    success: bool
    result_image_url: Optional[str] = None
    error: Optional[str] = None


class TryOnGenerator(Protocol):
    """Anything that can turn a try-on request into a result image."""

    async def generate(self, request: TryOnRequest) -> TryOnResult: ...


class HttpTryOnGenerator:
    """Posts try-on requests to the configured provider endpoint."""

    def __init__(
        self,
        provider_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.provider_url = provider_url if provider_url is not None else settings.TRYON_PROVIDER_URL
        self.api_key = api_key if api_key is not None else settings.TRYON_PROVIDER_API_KEY
        self.timeout = timeout or settings.TRYON_PROVIDER_TIMEOUT
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def generate(self, request: TryOnRequest) -> TryOnResult:
        """
        Request a try-on composite from the provider.

        Provider and transport failures come back as ``success=False``.
        """
        if not self.provider_url:
            return TryOnResult(success=False, error="Try-on provider is not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._get_http_client().post(
                self.provider_url,
                json=request.model_dump(by_alias=True),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Try-on provider request failed",
                extra={"requester_id": request.requester_id, "error": str(e)},
            )
            return TryOnResult(success=False, error=f"Provider request failed: {e}")

        if not 200 <= response.status_code < 300:
            logger.warning(
                "Try-on provider returned error status",
                extra={"requester_id": request.requester_id, "http_status": response.status_code},
            )
            return TryOnResult(success=False, error=f"Provider returned HTTP {response.status_code}")

        try:
            return TryOnResult.model_validate(response.json())
        except ValueError as e:
            logger.warning("Try-on provider returned invalid body", extra={"error": str(e)})
            return TryOnResult(success=False, error="Provider returned an invalid response")

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = ["TryOnRequest", "TryOnResult", "TryOnGenerator", "HttpTryOnGenerator"]
