"""
Security headers, CORS policies, cache headers and input sanitization.

Each policy is a stateless HTTP middleware function scoped by path prefix so
the application can order and combine them. None of them reject requests on
authorization grounds; that is the job of the API key dependencies.
"""

import re
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response

from backend.src.core.api_keys import is_live_key, is_test_key
from backend.src.core.auth import API_KEY_HEADER
from backend.src.core.config import settings
from backend.src.core.domains import extract_domain, matches_pattern
from backend.src.core.logging import get_logger, mask_secret

logger = get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

WIDGET_API_PREFIX = "/v1/widget"
ACCOUNT_API_PREFIX = "/v1/account"
API_PREFIX = "/v1/"
WIDGET_PAGE_PREFIX = "/widget/"
WIDGET_STATIC_PREFIX = "/widget/assets/"

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
WIDGET_ALLOW_HEADERS = f"Content-Type, {API_KEY_HEADER}, X-Request-ID"
API_ALLOW_HEADERS = f"Content-Type, Authorization, {API_KEY_HEADER}, X-Request-ID"
EXPOSE_HEADERS = "X-Request-ID, X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset"
PREFLIGHT_MAX_AGE = "86400"

# Origin substrings accepted with credentials for test keys
DEV_ORIGIN_MARKERS = (
    "localhost",
    "127.0.0.1",
    ".local",
    ".test",
    "replit.dev",
    "repl.co",
    "vercel.app",
    "netlify.app",
)

IFRAME_CSP = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: blob: https:",
        "connect-src 'self' https:",
        "frame-ancestors *",
        "form-action 'self'",
        "media-src 'self' blob:",
    ]
)

PERMISSIONS_POLICY = ", ".join(
    [
        "accelerometer=()",
        "ambient-light-sensor=()",
        "autoplay=()",
        "battery=()",
        "camera=(self)",
        "display-capture=()",
        "document-domain=()",
        "encrypted-media=()",
        "fullscreen=()",
        "geolocation=()",
        "gyroscope=()",
        "magnetometer=()",
        "microphone=(self)",
        "midi=()",
        "payment=()",
        "picture-in-picture=()",
        "publickey-credentials-get=()",
        "screen-wake-lock=()",
        "sync-xhr=()",
        "usb=()",
        "xr-spatial-tracking=()",
    ]
)

STATIC_CACHE_CONTROL = "public, max-age=86400, immutable"
WIDGET_ASSET_CACHE_CONTROL = "public, max-age=3600, stale-while-revalidate=86400"
NO_CACHE_CONTROL = "no-store, no-cache, must-revalidate, proxy-revalidate"

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)


# Header builders


def security_headers(path: str) -> Dict[str, str]:
    """Baseline security headers for a response to ``path``."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": PERMISSIONS_POLICY,
    }
    # Widget pages must stay frameable by merchant sites
    if not path.startswith(WIDGET_PAGE_PREFIX):
        headers["X-Frame-Options"] = "SAMEORIGIN"
    if settings.is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


def static_cache_headers(max_age: int = 86400) -> Dict[str, str]:
    """Long-lived cache headers for fingerprinted static assets."""
    return {
        "Cache-Control": f"public, max-age={max_age}, immutable",
        "Vary": "Accept-Encoding",
    }


def widget_asset_headers() -> Dict[str, str]:
    """Short cache for the widget bundle so releases roll out quickly."""
    return {"Cache-Control": WIDGET_ASSET_CACHE_CONTROL, "Vary": "Accept-Encoding"}


def no_cache_headers() -> Dict[str, str]:
    """Headers disabling caching of API responses."""
    return {"Cache-Control": NO_CACHE_CONTROL, "Pragma": "no-cache", "Expires": "0"}


# Sanitization


def sanitize_string(value: str) -> str:
    """Strip ``<script>`` blocks and neutralize inline ``on*=`` handlers."""
    return _EVENT_HANDLER.sub("data-disabled=", _SCRIPT_TAG.sub("", value))


def sanitize_value(value: Any) -> Any:
    """
    Recursively sanitize every string inside ``value``.

    Dicts and lists are rebuilt; other types pass through unchanged.
    """
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_value(item) for item in value)
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    return value


# CORS decisions


def _widget_preflight_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": WIDGET_ALLOW_HEADERS,
        "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
        "Access-Control-Expose-Headers": EXPOSE_HEADERS,
    }


def is_dev_origin(origin: str) -> bool:
    return any(marker in origin for marker in DEV_ORIGIN_MARKERS)


async def widget_cors_headers(request: Request) -> Dict[str, str]:
    """
    Decide the CORS headers for a widget API request.

    Credentials are only granted to dev origins for test keys and to the
    account's allowed domains for live keys; every other caller gets an
    uncredentialed allow.
    """
    headers = _widget_preflight_headers()
    origin = request.headers.get("Origin")
    api_key = request.headers.get(API_KEY_HEADER)

    if request.method == "OPTIONS" or not api_key or not origin:
        headers["Access-Control-Allow-Origin"] = origin or "*"
        return headers

    credentialed = False
    if is_test_key(api_key):
        credentialed = is_dev_origin(origin)
    elif is_live_key(api_key):
        domain = extract_domain(origin)
        if domain:
            try:
                account = await request.app.state.account_store.get_account_by_api_key(api_key)
            except Exception as e:
                logger.warning(
                    "CORS domain lookup failed",
                    extra={"key_prefix": mask_secret(api_key), "error": str(e)},
                )
                account = None
            if account is not None:
                credentialed = any(
                    matches_pattern(domain, pattern) for pattern in account.allowed_domains
                )

    headers["Access-Control-Allow-Origin"] = origin
    if credentialed:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def api_cors_headers(request: Request) -> Dict[str, str]:
    """CORS headers for the account API, limited to configured origins."""
    headers = {
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": API_ALLOW_HEADERS,
        "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
        "Access-Control-Expose-Headers": EXPOSE_HEADERS,
    }
    origin = request.headers.get("Origin")
    allowed = settings.CORS_ORIGINS
    if origin and ("*" in allowed or origin in allowed):
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    return headers


# Middleware


async def widget_cors(request: Request, call_next: CallNext) -> Response:
    """CORS for ``/v1/widget``; answers preflights directly."""
    if not request.url.path.startswith(WIDGET_API_PREFIX):
        return await call_next(request)

    headers = await widget_cors_headers(request)
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=headers)

    response = await call_next(request)
    response.headers.update(headers)
    return response


async def api_cors(request: Request, call_next: CallNext) -> Response:
    """CORS for ``/v1/account``; answers preflights directly."""
    if not request.url.path.startswith(ACCOUNT_API_PREFIX):
        return await call_next(request)

    headers = api_cors_headers(request)
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=headers)

    response = await call_next(request)
    response.headers.update(headers)
    return response


async def security_headers_middleware(request: Request, call_next: CallNext) -> Response:
    """Baseline security headers on every response."""
    response = await call_next(request)
    response.headers.update(security_headers(request.url.path))
    return response


async def widget_page_headers(request: Request, call_next: CallNext) -> Response:
    """Iframe CSP and cache headers for the embeddable widget pages and assets."""
    path = request.url.path
    if not path.startswith(WIDGET_PAGE_PREFIX):
        return await call_next(request)

    response = await call_next(request)
    response.headers["Content-Security-Policy"] = IFRAME_CSP
    if path.startswith(WIDGET_STATIC_PREFIX):
        response.headers.update(static_cache_headers())
    else:
        response.headers.update(widget_asset_headers())
    return response


async def api_no_cache(request: Request, call_next: CallNext) -> Response:
    """Disable caching for JSON API responses that did not set their own policy."""
    response = await call_next(request)
    if request.url.path.startswith(API_PREFIX) and "cache-control" not in response.headers:
        response.headers.update(no_cache_headers())
    return response


__all__ = [
    "IFRAME_CSP",
    "PERMISSIONS_POLICY",
    "security_headers",
    "static_cache_headers",
    "widget_asset_headers",
    "no_cache_headers",
    "sanitize_string",
    "sanitize_value",
    "widget_cors_headers",
    "api_cors_headers",
    "widget_cors",
    "api_cors",
    "security_headers_middleware",
    "widget_page_headers",
    "api_no_cache",
]
