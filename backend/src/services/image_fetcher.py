"""
Outbound image downloads (product images, shopper photo URLs, result proxies).
"""

import base64
from dataclasses import dataclass
from typing import Optional

import httpx

from backend.src.core.config import settings
from backend.src.core.exceptions import ExternalServiceError
from backend.src.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class FetchedImage:
    """Downloaded image bytes."""

    content: bytes
    content_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


class ImageFetcher:
    """Downloads images over HTTP with a bounded timeout."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.timeout = timeout or settings.IMAGE_FETCH_TIMEOUT
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers={"User-Agent": f"{settings.PRODUCT_NAME}-ImageFetcher/1.0"},
            )
        return self._http_client

    async def fetch(self, url: str) -> FetchedImage:
        """
        Download an image.

        Args:
            url: Absolute http(s) URL

        Returns:
            FetchedImage with body and content type

        Raises:
            ExternalServiceError: On non-2xx status, timeout or transport error
        """
        if not url.startswith(("http://", "https://")):
            raise ExternalServiceError(f"Unsupported image URL: {url[:100]}", service_name="image_fetch")

        try:
            response = await self._get_http_client().get(url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.warning("Image fetch timed out", extra={"url": url, "error": str(e)})
            raise ExternalServiceError(
                f"Image fetch timed out after {self.timeout}s",
                service_name="image_fetch",
                original_error=e,
            ) from e
        except httpx.RequestError as e:
            logger.warning("Image fetch failed", extra={"url": url, "error": str(e)})
            raise ExternalServiceError(
                "Image fetch failed",
                service_name="image_fetch",
                original_error=e,
            ) from e

        if not 200 <= response.status_code < 300:
            logger.warning(
                "Image fetch returned error status",
                extra={"url": url, "http_status": response.status_code},
            )
            raise ExternalServiceError(
                f"Failed to fetch image: HTTP {response.status_code}",
                service_name="image_fetch",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE).split(";")[0].strip()
        return FetchedImage(content=response.content, content_type=content_type or DEFAULT_CONTENT_TYPE)

    async def fetch_base64(self, url: str) -> str:
        """Download an image and return it base64-encoded."""
        return (await self.fetch(url)).to_base64()

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = ["FetchedImage", "ImageFetcher"]
