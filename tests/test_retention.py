from __future__ import annotations

import pytest

from exposure_chain.config import Settings
from exposure_chain.domain.models import (
    COLLECTION_CLEANUP_LOGS,
    COLLECTION_INTERACTIONS,
    COLLECTION_NOTIFICATIONS,
    COLLECTION_REPORTS,
)
from exposure_chain.services.retention_service import RetentionService

from conftest import NOW, FlakyStore, days_ago


@pytest.mark.asyncio
class TestRetentionService:
    async def test_deletes_only_expired_documents(self, flaky_store: FlakyStore, config: Settings) -> None:
        for i in range(3):
            await flaky_store.create(COLLECTION_INTERACTIONS, {"recorded_at": days_ago(181 + i)})
        await flaky_store.create(COLLECTION_INTERACTIONS, {"recorded_at": days_ago(10)}, doc_id="fresh")
        await flaky_store.create(COLLECTION_NOTIFICATIONS, {"received_at": days_ago(200)})
        await flaky_store.create(COLLECTION_REPORTS, {"created_at": days_ago(365)})
        await flaky_store.create(COLLECTION_REPORTS, {"created_at": days_ago(1)})

        stats = await RetentionService(flaky_store, config=config).cleanup(NOW)

        assert (stats.interactions_deleted, stats.notifications_deleted, stats.reports_deleted) == (3, 1, 1)
        assert stats.failed == 0
        assert [d["id"] for d in await flaky_store.query(COLLECTION_INTERACTIONS)] == ["fresh"]
        assert await flaky_store.count(COLLECTION_REPORTS) == 1

        (log,) = await flaky_store.query(COLLECTION_CLEANUP_LOGS)
        assert log == {
            "id": log["id"],
            "interactions_deleted": 3,
            "notifications_deleted": 1,
            "reports_deleted": 1,
            "timestamp": NOW,
        }

    async def test_pages_through_large_backlogs(self, flaky_store: FlakyStore, config: Settings) -> None:
        for _ in range(12):
            await flaky_store.create(COLLECTION_INTERACTIONS, {"recorded_at": days_ago(190)})

        stats = await RetentionService(flaky_store, config=config, page_size=5).cleanup(NOW)

        assert stats.interactions_deleted == 12
        assert flaky_store.commit_sizes == [5, 5, 2]

    async def test_rejected_page_stops_that_collection(self, flaky_store: FlakyStore, config: Settings) -> None:
        await flaky_store.create(COLLECTION_INTERACTIONS, {"recorded_at": days_ago(190)})
        flaky_store.permanent_commit_failure = True

        stats = await RetentionService(flaky_store, config=config).cleanup(NOW)

        assert stats.interactions_deleted == 0
        assert stats.failed == 1
        assert await flaky_store.count(COLLECTION_INTERACTIONS) == 1
