"""
Account store: persistence boundary for accounts, widget sessions and analytics.

``AccountStore`` is the interface the auth, quota and webhook code depends on.
``SQLAlchemyAccountStore`` implements it on PostgreSQL; tests use an
in-memory fake with the same methods.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.src.core.logging import get_logger, mask_secret
from backend.src.models.account import Account, StoredApiKey
from backend.src.models.base import utcnow
from backend.src.models.tables import AccountRecord, WidgetAnalyticsRecord, WidgetSessionRecord
from backend.src.models.widget_session import (
    CLAIMABLE_STATUSES,
    AnalyticsEvent,
    SessionStatus,
    WidgetSession,
)

logger = get_logger(__name__)


@runtime_checkable
class AccountStore(Protocol):
    """Operations the widget core needs from persistence."""

    async def get_account_by_api_key(self, api_key: str) -> Optional[Account]: ...

    async def get_account(self, account_id: str) -> Optional[Account]: ...

    async def update_account(self, account_id: str, updates: Dict[str, Any]) -> Optional[Account]: ...

    async def reset_quota(self, account_id: str, next_reset_at: datetime) -> None: ...

    async def increment_quota(self, account_id: str) -> None: ...

    async def increment_studio_quota(self, account_id: str) -> None: ...

    async def increment_widget_quota(self, account_id: str) -> None: ...

    async def create_session(self, session: WidgetSession) -> WidgetSession: ...

    async def get_session(self, session_id: str) -> Optional[WidgetSession]: ...

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> Optional[WidgetSession]: ...

    async def claim_session_for_processing(self, session_id: str) -> bool: ...

    async def delete_session(self, session_id: str) -> bool: ...

    async def list_sessions(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[SessionStatus] = None,
    ) -> List[WidgetSession]: ...

    async def create_analytics_event(self, event: AnalyticsEvent) -> None: ...

    async def delete_analytics_for_session(self, session_id: str) -> int: ...

    async def ping(self) -> bool: ...


def _to_column_values(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Convert domain values (enums, nested models) into column values."""
    values: Dict[str, Any] = {}
    for field, value in updates.items():
        if field == "api_keys" and value is not None:
            value = [
                item.model_dump(by_alias=True, mode="json") if isinstance(item, StoredApiKey) else item
                for item in value
            ]
        elif isinstance(value, Enum):
            value = value.value
        values[field] = value
    return values


class SQLAlchemyAccountStore:
    """PostgreSQL-backed account store using SQLAlchemy asyncio."""

    def __init__(self, session_factory: Callable[[], async_sessionmaker[AsyncSession]]):
        """
        Initialize the store.

        Args:
            session_factory: Callable returning the async session factory;
                resolved per call so the engine is only created when used
        """
        self._session_factory = session_factory

    def _session(self) -> AsyncSession:
        return self._session_factory()()

    # Accounts

    async def get_account_by_api_key(self, api_key: str) -> Optional[Account]:
        async with self._session() as db:
            result = await db.execute(
                select(AccountRecord).where(
                    or_(
                        AccountRecord.live_key == api_key,
                        AccountRecord.test_key == api_key,
                        AccountRecord.api_keys.contains([{"key": api_key}]),
                    )
                )
            )
            record = result.scalars().first()

        if record is None:
            logger.debug("No account for API key", extra={"key_prefix": mask_secret(api_key)})
            return None
        return Account.model_validate(record)

    async def get_account(self, account_id: str) -> Optional[Account]:
        async with self._session() as db:
            record = await db.get(AccountRecord, account_id)
        return Account.model_validate(record) if record else None

    async def update_account(self, account_id: str, updates: Dict[str, Any]) -> Optional[Account]:
        values = _to_column_values(updates)
        values["updated_at"] = utcnow()
        async with self._session() as db:
            await db.execute(
                update(AccountRecord).where(AccountRecord.id == account_id).values(**values)
            )
            await db.commit()
            record = await db.get(AccountRecord, account_id, populate_existing=True)

        logger.info(
            "Account updated",
            extra={"account_id": account_id, "fields": sorted(updates.keys())},
        )
        return Account.model_validate(record) if record else None

    async def reset_quota(self, account_id: str, next_reset_at: datetime) -> None:
        async with self._session() as db:
            await db.execute(
                update(AccountRecord)
                .where(AccountRecord.id == account_id)
                .values(
                    quota_used=0,
                    studio_quota_used=0,
                    widget_quota_used=0,
                    quota_reset_at=next_reset_at,
                    updated_at=utcnow(),
                )
            )
            await db.commit()

        logger.info(
            "Monthly quota reset",
            extra={"account_id": account_id, "next_reset_at": next_reset_at.isoformat()},
        )

    async def _increment(self, account_id: str, **columns: Any) -> None:
        async with self._session() as db:
            await db.execute(
                update(AccountRecord).where(AccountRecord.id == account_id).values(**columns)
            )
            await db.commit()

    async def increment_quota(self, account_id: str) -> None:
        await self._increment(account_id, quota_used=AccountRecord.quota_used + 1)

    async def increment_studio_quota(self, account_id: str) -> None:
        await self._increment(
            account_id,
            quota_used=AccountRecord.quota_used + 1,
            studio_quota_used=AccountRecord.studio_quota_used + 1,
        )

    async def increment_widget_quota(self, account_id: str) -> None:
        await self._increment(
            account_id,
            quota_used=AccountRecord.quota_used + 1,
            widget_quota_used=AccountRecord.widget_quota_used + 1,
        )

    # Sessions

    async def create_session(self, session: WidgetSession) -> WidgetSession:
        record = WidgetSessionRecord(**_to_column_values(session.model_dump()))
        async with self._session() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
        return WidgetSession.model_validate(record)

    async def get_session(self, session_id: str) -> Optional[WidgetSession]:
        async with self._session() as db:
            record = await db.get(WidgetSessionRecord, session_id)
        return WidgetSession.model_validate(record) if record else None

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> Optional[WidgetSession]:
        async with self._session() as db:
            await db.execute(
                update(WidgetSessionRecord)
                .where(WidgetSessionRecord.id == session_id)
                .values(**_to_column_values(updates))
            )
            await db.commit()
            record = await db.get(WidgetSessionRecord, session_id, populate_existing=True)
        return WidgetSession.model_validate(record) if record else None

    async def claim_session_for_processing(self, session_id: str) -> bool:
        """
        Atomically move a session into ``processing``.

        Returns:
            True if this caller won the transition
        """
        async with self._session() as db:
            result = await db.execute(
                update(WidgetSessionRecord)
                .where(
                    WidgetSessionRecord.id == session_id,
                    WidgetSessionRecord.status.in_([s.value for s in CLAIMABLE_STATUSES]),
                )
                .values(status=SessionStatus.PROCESSING.value, error_code=None, error_message=None)
            )
            await db.commit()
        return result.rowcount == 1

    async def delete_session(self, session_id: str) -> bool:
        async with self._session() as db:
            result = await db.execute(
                delete(WidgetSessionRecord).where(WidgetSessionRecord.id == session_id)
            )
            await db.commit()
        return result.rowcount > 0

    async def list_sessions(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[SessionStatus] = None,
    ) -> List[WidgetSession]:
        query = select(WidgetSessionRecord).where(WidgetSessionRecord.account_id == account_id)
        if status is not None:
            query = query.where(WidgetSessionRecord.status == status.value)
        query = query.order_by(WidgetSessionRecord.created_at.desc()).limit(limit).offset(offset)

        async with self._session() as db:
            result = await db.execute(query)
            records = result.scalars().all()
        return [WidgetSession.model_validate(record) for record in records]

    # Analytics

    async def create_analytics_event(self, event: AnalyticsEvent) -> None:
        values = _to_column_values(event.model_dump(exclude={"id"}))
        async with self._session() as db:
            db.add(WidgetAnalyticsRecord(**values))
            await db.commit()

    async def delete_analytics_for_session(self, session_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                delete(WidgetAnalyticsRecord).where(WidgetAnalyticsRecord.session_id == session_id)
            )
            await db.commit()
        return result.rowcount

    async def ping(self) -> bool:
        async with self._session() as db:
            result = await db.execute(text("SELECT 1 AS health_check"))
            row = result.fetchone()
        return bool(row and row[0] == 1)


__all__ = ["AccountStore", "SQLAlchemyAccountStore"]
