from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable

from exposure_chain.chains.windows import retention_boundary
from exposure_chain.config import PROVIDER_BATCH_CEILING, Settings, settings
from exposure_chain.domain.models import (
    COLLECTION_CLEANUP_LOGS,
    COLLECTION_INTERACTIONS,
    COLLECTION_NOTIFICATIONS,
    COLLECTION_REPORTS,
    now_ms,
)
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.retry import RetryConfig, RetryManager
from exposure_chain.infra.store import DocumentStore, WriteOp, where
from exposure_chain.services.batching import DocumentBatchWriter

logger = get_logger(__name__)

# (collection, timestamp field that ages it out)
EXPIRING_COLLECTIONS: tuple[tuple[str, str], ...] = (
    (COLLECTION_INTERACTIONS, "recorded_at"),
    (COLLECTION_NOTIFICATIONS, "received_at"),
    (COLLECTION_REPORTS, "created_at"),
)


@dataclass
class CleanupStats:
    interactions_deleted: int = 0
    notifications_deleted: int = 0
    reports_deleted: int = 0
    failed: int = 0
    cutoff: int = 0
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RetentionService:
    """Deletes interactions, notifications and reports past the retention period."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        config: Settings | None = None,
        clock: Callable[[], int] = now_ms,
        page_size: int = PROVIDER_BATCH_CEILING,
    ) -> None:
        self.store = store
        self.config = config or settings
        self.clock = clock
        self.page_size = max(1, min(page_size, self.config.effective_batch_limit()))
        self.retry = RetryManager(RetryConfig.from_settings(self.config))

    async def _purge(self, collection: str, field_name: str, cutoff: int) -> tuple[int, int]:
        deleted = failed = 0
        while True:
            rows = await self.retry.execute(
                lambda: self.store.query(collection, [where(field_name, "<", cutoff)], limit=self.page_size),
                label=f"{collection}.expired",
            )
            if not rows:
                break
            writer = DocumentBatchWriter(self.store, limit=self.page_size, retry=self.retry, log=logger)
            for row in rows:
                writer.add(WriteOp.delete(collection, row["id"]))
            result = await writer.commit()
            deleted += result.success_count
            failed += result.failure_count
            if result.success_count == 0 or len(rows) < self.page_size:
                # A page that deleted nothing would be returned again.
                break
        return deleted, failed

    async def cleanup(self, now: int | None = None) -> CleanupStats:
        now = now if now is not None else self.clock()
        cutoff = retention_boundary(now, self.config.retention_days)
        stats = CleanupStats(cutoff=cutoff, timestamp=now)

        for collection, field_name in EXPIRING_COLLECTIONS:
            deleted, failed = await self._purge(collection, field_name, cutoff)
            stats.failed += failed
            setattr(stats, f"{collection}_deleted", deleted)
            logger.info("retention_purged", collection=collection, deleted=deleted, failed=failed)

        await self.store.create(
            COLLECTION_CLEANUP_LOGS,
            {
                "interactions_deleted": stats.interactions_deleted,
                "notifications_deleted": stats.notifications_deleted,
                "reports_deleted": stats.reports_deleted,
                "timestamp": stats.timestamp,
            },
        )
        return stats
