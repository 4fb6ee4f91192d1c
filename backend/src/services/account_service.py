"""
Account self-service: API keys, allowed domains, settings and webhook secret.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from backend.src.api.schemas.common import validate_http_url
from backend.src.core.api_keys import (
    LIVE_KEY_PREFIX,
    generate_account_keys,
    generate_key,
    generate_webhook_secret,
)
from backend.src.core.config import settings
from backend.src.core.domains import normalize_domain_pattern
from backend.src.core.exceptions import APIException, ResourceNotFoundError
from backend.src.core.logging import get_logger
from backend.src.models.account import LEGACY_KEY_ID, LEGACY_KEY_NAME, Account, StoredApiKey
from backend.src.models.base import utcnow

logger = get_logger(__name__)

KEY_TYPES = ("live", "test", "both")


class AccountService:
    """Mutations an account owner performs on their own account."""

    def __init__(self, store, dispatcher, max_keys: Optional[int] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.max_keys = max_keys or settings.MAX_API_KEYS_PER_ACCOUNT

    async def _save(self, account: Account, updates: Dict[str, Any]) -> Account:
        updated = await self.store.update_account(account.id, updates)
        if updated is None:
            raise APIException.from_code("INTERNAL_ERROR", message="Account no longer exists")
        return updated

    # API keys

    async def list_keys(self, account: Account) -> List[StoredApiKey]:
        """
        Named keys of the account.

        An account that only has the legacy ``live_key`` gets it migrated into
        the named list under the legacy id, so sessions keep their key name.
        """
        if account.api_keys or not account.live_key:
            return account.api_keys

        keys = [StoredApiKey(id=LEGACY_KEY_ID, key=account.live_key, name=LEGACY_KEY_NAME)]
        await self._save(account, {"api_keys": keys})
        logger.info("Migrated legacy API key", extra={"account_id": account.id})
        return keys

    async def create_key(self, account: Account, name: Optional[str]) -> Tuple[List[StoredApiKey], StoredApiKey]:
        """
        Add a named live key.

        Raises:
            APIException: INVALID_NAME or KEY_LIMIT_REACHED
        """
        name = (name or "").strip()
        if not name:
            raise APIException.from_code("INVALID_NAME")

        keys = await self.list_keys(account)
        if len(keys) >= self.max_keys:
            raise APIException.from_code(
                "KEY_LIMIT_REACHED",
                message=f"Maximum of {self.max_keys} API keys allowed",
            )

        new_key = StoredApiKey(id=str(uuid.uuid4()), key=generate_key(LIVE_KEY_PREFIX), name=name)
        keys = [*keys, new_key]
        await self._save(account, {"api_keys": keys, "live_key": keys[0].key})

        logger.info(
            "API key created",
            extra={"account_id": account.id, "key_id": new_key.id, "key_count": len(keys)},
        )
        return keys, new_key

    async def delete_key(self, account: Account, key_id: str) -> List[StoredApiKey]:
        """
        Remove a named key; the first remaining key becomes the legacy live key.

        Raises:
            ResourceNotFoundError: KEY_NOT_FOUND
        """
        keys = await self.list_keys(account)
        remaining = [key for key in keys if key.id != key_id]
        if len(remaining) == len(keys):
            raise ResourceNotFoundError("KEY_NOT_FOUND", key_id)

        await self._save(
            account,
            {"api_keys": remaining, "live_key": remaining[0].key if remaining else None},
        )
        logger.info("API key deleted", extra={"account_id": account.id, "key_id": key_id})
        return remaining

    async def regenerate_keys(self, account: Account, key_type: Optional[str]) -> Account:
        """
        Replace the live key, the test key or both.

        The named key mirroring the live key is rotated with it, keeping its
        id and name, so the old value no longer authenticates.

        Raises:
            APIException: INVALID_KEY_TYPE
        """
        if key_type not in KEY_TYPES:
            raise APIException.from_code("INVALID_KEY_TYPE")

        fresh = generate_account_keys()
        updates: Dict[str, Any] = {}
        if key_type in ("live", "both"):
            updates["live_key"] = fresh.live_key
            if account.api_keys:
                updates["api_keys"] = [
                    key.model_copy(update={"key": fresh.live_key}) if key.key == account.live_key else key
                    for key in account.api_keys
                ]
        if key_type in ("test", "both"):
            updates["test_key"] = fresh.test_key

        updated = await self._save(account, updates)
        logger.info("API keys regenerated", extra={"account_id": account.id, "key_type": key_type})
        return updated

    # Domains

    async def add_domain(self, account: Account, domain: Optional[str]) -> List[str]:
        """
        Add a domain pattern to the allow-list.

        Raises:
            APIException: INVALID_DOMAIN_FORMAT or DOMAIN_EXISTS
        """
        pattern = normalize_domain_pattern(domain or "")
        if pattern is None:
            raise APIException.from_code("INVALID_DOMAIN_FORMAT")
        if pattern in account.allowed_domains:
            raise APIException.from_code("DOMAIN_EXISTS")

        domains = [*account.allowed_domains, pattern]
        await self._save(account, {"allowed_domains": domains})
        logger.info("Domain added", extra={"account_id": account.id, "domain_pattern": pattern})
        return domains

    async def remove_domain(self, account: Account, domain: str) -> List[str]:
        """
        Raises:
            ResourceNotFoundError: DOMAIN_NOT_FOUND
        """
        target = domain.strip().lower()
        if target not in account.allowed_domains:
            raise ResourceNotFoundError("DOMAIN_NOT_FOUND", domain)

        domains = [d for d in account.allowed_domains if d != target]
        await self._save(account, {"allowed_domains": domains})
        logger.info("Domain removed", extra={"account_id": account.id, "domain_pattern": target})
        return domains

    # Settings and webhooks

    async def update_settings(
        self,
        account: Account,
        fields: Dict[str, Any],
    ) -> Account:
        """
        Apply a partial settings update.

        ``fields`` holds only the keys present in the request body. An empty
        or null ``webhook_url`` clears it; ``settings`` is shallow-merged.

        Raises:
            APIException: INVALID_WEBHOOK_URL or NO_UPDATES
        """
        updates: Dict[str, Any] = {}

        if "webhook_url" in fields:
            webhook_url = fields["webhook_url"]
            if not webhook_url:
                updates["webhook_url"] = None
            else:
                try:
                    updates["webhook_url"] = validate_http_url(webhook_url)
                except ValueError as e:
                    raise APIException.from_code("INVALID_WEBHOOK_URL") from e

        if fields.get("settings") is not None:
            updates["settings"] = {**account.settings, **fields["settings"]}

        if not updates:
            raise APIException.from_code("NO_UPDATES")

        updated = await self._save(account, updates)
        logger.info(
            "Account settings updated",
            extra={"account_id": account.id, "fields": sorted(updates.keys())},
        )
        return updated

    async def regenerate_webhook_secret(self, account: Account) -> str:
        secret = generate_webhook_secret()
        await self._save(account, {"webhook_secret": secret})
        logger.info("Webhook secret regenerated", extra={"account_id": account.id})
        return secret

    async def test_webhook(self, account: Account) -> Optional[int]:
        """
        Send a signed test event to the account's webhook URL.

        A missing secret is generated first so the test can be signed.

        Returns:
            Status code returned by the endpoint

        Raises:
            APIException: NO_WEBHOOK_URL or WEBHOOK_FAILED
        """
        if not account.webhook_url:
            raise APIException.from_code("NO_WEBHOOK_URL")
        if not account.webhook_secret:
            await self.regenerate_webhook_secret(account)

        result = await self.dispatcher.send_test_webhook(account.id)
        if not result.success:
            raise APIException.from_code(
                "WEBHOOK_FAILED",
                message=result.error or "Webhook delivery failed",
                details={"statusCode": result.status_code},
            )
        return result.status_code


__all__ = ["AccountService", "KEY_TYPES"]
