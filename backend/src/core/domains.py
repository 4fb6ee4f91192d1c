"""
Origin domain extraction and allow-list matching for embedded widgets.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlparse

from backend.src.core.logging import get_logger

logger = get_logger(__name__)

# Always accepted for test keys so merchants can develop locally
TEST_MODE_DOMAINS = (
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "*.localhost",
    "*.local",
)

_HOST_LABEL = r"(?!-)[a-z0-9-]{1,63}(?<!-)"
_DOMAIN_PATTERN = re.compile(rf"^(\*\.)?{_HOST_LABEL}(\.{_HOST_LABEL})*$")


def extract_domain(url_or_origin: Optional[str]) -> Optional[str]:
    """
    Extract the hostname from an Origin or Referer header value.

    Args:
        url_or_origin: Absolute URL such as ``https://shop.example.com/page``

    Returns:
        Lower-cased hostname, or None if the value cannot be parsed

    Example:
        >>> extract_domain("https://Shop.Example.com:8443/cart")
        'shop.example.com'
    """
    if not url_or_origin:
        return None
    try:
        parsed = urlparse(url_or_origin.strip())
        hostname = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not hostname:
        return None
    return hostname


def _matches_test_domain(domain: str) -> bool:
    for test_domain in TEST_MODE_DOMAINS:
        if test_domain.startswith("*"):
            suffix = test_domain[1:]
            if domain.endswith(suffix) or domain == suffix[1:]:
                return True
        elif domain == test_domain or domain.startswith(f"{test_domain}:"):
            return True
    return False


def matches_pattern(domain: str, pattern: str) -> bool:
    """
    Match a domain against a single allow-list pattern.

    ``*.example.com`` matches ``example.com`` and any subdomain of it; any
    other pattern requires exact equality.
    """
    if pattern.startswith("*."):
        base_domain = pattern[2:]
        return domain == base_domain or domain.endswith(f".{base_domain}")
    return domain == pattern


def is_domain_allowed(domain: str, allowed_domains: Iterable[str], is_test_mode: bool) -> bool:
    """
    Check if a domain is in the allowed domains list.

    Args:
        domain: Hostname (optionally ``host:port``) of the calling page
        allowed_domains: Account allow-list patterns
        is_test_mode: Whether the request used a test key

    Returns:
        True if the domain is permitted
    """
    if is_test_mode and _matches_test_domain(domain):
        return True

    return any(matches_pattern(domain, pattern) for pattern in allowed_domains or ())


def normalize_domain_pattern(value: str) -> Optional[str]:
    """
    Normalize a user-supplied domain or wildcard pattern for the allow-list.

    Strips scheme, path, port and trailing dot and lower-cases the result.

    Returns:
        The normalized pattern, or None if it is not a valid hostname or
        ``*.`` wildcard
    """
    candidate = (value or "").strip().lower()
    if not candidate:
        return None

    if "://" in candidate:
        candidate = candidate.split("://", 1)[1]
    candidate = candidate.split("/", 1)[0].split("?", 1)[0]
    candidate = candidate.rsplit("@", 1)[-1]
    if ":" in candidate:
        candidate = candidate.split(":", 1)[0]
    candidate = candidate.rstrip(".")

    if len(candidate) > 253 or not _DOMAIN_PATTERN.match(candidate):
        logger.debug("Rejected domain pattern", extra={"domain_pattern": value})
        return None
    return candidate


__all__ = [
    "TEST_MODE_DOMAINS",
    "extract_domain",
    "matches_pattern",
    "is_domain_allowed",
    "normalize_domain_pattern",
]
