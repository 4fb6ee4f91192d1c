"""
Request-scoped accessors for the collaborators stored on ``app.state``.
"""

from fastapi import Request

from backend.src.services.account_service import AccountService
from backend.src.services.session_service import WidgetSessionService


def get_account_store(request: Request):
    return request.app.state.account_store


def get_account_service(request: Request) -> AccountService:
    state = request.app.state
    return AccountService(store=state.account_store, dispatcher=state.webhook_dispatcher)


def get_session_service(request: Request) -> WidgetSessionService:
    """Session service wired to the application's collaborators."""
    state = request.app.state
    return WidgetSessionService(
        store=state.account_store,
        dispatcher=state.webhook_dispatcher,
        generator=state.tryon_generator,
        image_fetcher=state.image_fetcher,
        media_root=state.media_root,
    )
