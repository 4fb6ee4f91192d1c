"""Core utilities package."""

from backend.src.core.config import settings
from backend.src.core.database import Base, get_session_factory
from backend.src.core.logging import get_logger, set_request_id

__all__ = [
    "settings",
    "Base",
    "get_session_factory",
    "get_logger",
    "set_request_id",
]
