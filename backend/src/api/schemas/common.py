"""
Shared request schema helpers.
"""

from typing import Any, Optional

from pydantic import model_validator

from backend.src.core.security import sanitize_value
from backend.src.models.base import BaseModel


class SanitizedRequest(BaseModel):
    """Request body whose string values are XSS-sanitized before validation."""

    @model_validator(mode="before")
    @classmethod
    def sanitize_input(cls, data: Any) -> Any:
        return sanitize_value(data)


def validate_http_url(value: Optional[str]) -> Optional[str]:
    """Require an absolute http(s) URL."""
    if value is None:
        return value
    value = value.strip()
    if not value.startswith(("http://", "https://")) or len(value) <= len("https://"):
        raise ValueError("URL must start with http:// or https://")
    return value
