from __future__ import annotations

from typing import Iterable

from exposure_chain.chains.cache import UserLookupCache
from exposure_chain.domain.models import COLLECTION_USERS, UserRecord
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.retry import RetryManager
from exposure_chain.infra.store import DocumentStore, where

logger = get_logger(__name__)

# Keeps "in" filters inside common provider limits.
LOOKUP_CHUNK = 30


class UserDirectory:
    """Looks up user documents by their contact or notification identifiers."""

    def __init__(self, store: DocumentStore, retry: RetryManager | None = None) -> None:
        self.store = store
        self.retry = retry or RetryManager()

    async def _first(self, field_name: str, value: str) -> UserRecord | None:
        rows = await self.retry.execute(
            lambda: self.store.query(COLLECTION_USERS, [where(field_name, "==", value)], limit=1),
            label=f"users.{field_name}",
        )
        return UserRecord.from_doc(rows[0]) if rows else None

    async def by_contact_id(self, contact_id: str) -> UserRecord | None:
        return await self._first("contact_id", contact_id)

    async def _many(self, field_name: str, ids: list[str]) -> dict[str, UserRecord]:
        found: dict[str, UserRecord] = {}
        for i in range(0, len(ids), LOOKUP_CHUNK):
            chunk = ids[i : i + LOOKUP_CHUNK]
            rows = await self.retry.execute(
                lambda chunk=chunk: self.store.query(COLLECTION_USERS, [where(field_name, "in", chunk)]),
                label=f"users.{field_name}.batch",
            )
            for row in rows:
                record = UserRecord.from_doc(row)
                found[str(row.get(field_name))] = record
        return found

    async def by_contact_ids(self, ids: Iterable[str]) -> dict[str, UserRecord]:
        return await self._many("contact_id", list(dict.fromkeys(ids)))

    async def by_notification_ids(self, ids: Iterable[str]) -> dict[str, UserRecord]:
        return await self._many("notification_id", list(dict.fromkeys(ids)))

    async def resolve_into(self, ids: Iterable[str], cache: UserLookupCache) -> None:
        """Batch-load uncached contact ids into ``cache``, remembering misses."""
        uncached = cache.uncached_ids(ids)
        if not uncached:
            return
        found = await self.by_contact_ids(uncached)
        cache.populate_from_batch(found.values())
        missing = [i for i in uncached if i not in found]
        cache.set_not_found(missing)
        if missing:
            logger.info("user_lookup_batch", found=len(found), not_found=len(missing))

    async def clear_push_token(self, user: UserRecord) -> None:
        await self.retry.execute(
            lambda: self.store.update(COLLECTION_USERS, user.id, {"push_token": ""}),
            label="users.clear_push_token",
        )
