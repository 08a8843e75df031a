"""Shared fixtures: an in-memory store, a contact-graph builder and a fixed clock."""

from __future__ import annotations

from typing import Any

import pytest

from exposure_chain.config import Settings
from exposure_chain.domain.conditions import ConditionCatalog
from exposure_chain.domain.hashing import contact_hash, notification_hash, report_hash
from exposure_chain.domain.models import (
    COLLECTION_INTERACTIONS,
    COLLECTION_NOTIFICATIONS,
    COLLECTION_REPORTS,
    COLLECTION_USERS,
    MS_PER_DAY,
    ContactRecord,
    Report,
)
from exposure_chain.domain.states import DisclosureLevel, ReportResult
from exposure_chain.events.bus import InMemoryEventBus
from exposure_chain.infra.push import InMemoryPushGateway
from exposure_chain.infra.store import InMemoryDocumentStore, StoreError, TransientStoreError, where
from exposure_chain.services.report_processor import ReportProcessor

# 2026-01-15T00:00:00Z
NOW = 1_768_435_200_000


def days_ago(days: float) -> int:
    return NOW - int(days * MS_PER_DAY)


class ContactGraph:
    """Seeds users and directed contact records by readable names.

    ``record(owner, partner)`` means ``owner`` logged a contact naming
    ``partner``; discovery from ``partner`` can then reach ``owner``.
    """

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self.store = store

    @staticmethod
    def cid(name: str) -> str:
        return contact_hash(name)

    @staticmethod
    def nid(name: str) -> str:
        return notification_hash(name)

    async def user(self, name: str, *, push_token: str | None = None) -> str:
        token = f"token-{name}" if push_token is None else push_token
        await self.store.create(
            COLLECTION_USERS,
            {"contact_id": contact_hash(name), "notification_id": notification_hash(name), "push_token": token},
            doc_id=f"user-{name}",
        )
        return contact_hash(name)

    async def users(self, *names: str) -> None:
        for name in names:
            await self.user(name)

    async def record(self, owner: str, partner: str, *, at: int | None = None, snapshot: str | None = None) -> None:
        contact = ContactRecord(
            owner_id=contact_hash(owner),
            partner_id=contact_hash(partner),
            recorded_at=at if at is not None else days_ago(2),
            partner_username_snapshot=snapshot if snapshot is not None else partner,
        )
        await self.store.create(COLLECTION_INTERACTIONS, contact.to_doc())

    async def notifications_for(self, name: str) -> list[dict[str, Any]]:
        return await self.store.query(COLLECTION_NOTIFICATIONS, [where("recipient_id", "==", notification_hash(name))])

    async def report(self, report_id: str) -> dict[str, Any] | None:
        return await self.store.get(COLLECTION_REPORTS, report_id)

    async def submit(
        self,
        name: str,
        result: ReportResult = ReportResult.POSITIVE,
        *,
        conditions: list[str] | None = None,
        test_date: int | None = None,
        level: DisclosureLevel | None = DisclosureLevel.FULL,
        **fields: Any,
    ) -> str:
        """Stores a PENDING report the way the submit endpoint would."""
        positive = result is ReportResult.POSITIVE
        report = Report(
            reporter_id=report_hash(name),
            reporter_contact_id=contact_hash(name),
            reporter_notification_id=notification_hash(name),
            test_result=result,
            condition_types=conditions if conditions is not None else (["HIV"] if positive else []),
            test_date=test_date if test_date is not None else (days_ago(1) if positive else None),
            disclosure_level=level if positive else None,
            created_at=NOW,
            **fields,
        )
        await self.store.create(COLLECTION_REPORTS, report.to_doc(), doc_id=report.id)
        return report.id


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose queries or batch commits fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.query_failures: dict[str, int] = {}
        self.fail_queries_matching: dict[str, Any] = {}
        self.commit_failures = 0
        self.permanent_commit_failure = False
        self.commit_sizes: list[int] = []

    async def query(self, collection, filters=(), *, limit=None, order_by=None, descending=False):
        filters = list(filters)
        remaining = self.query_failures.get(collection, 0)
        if remaining:
            self.query_failures[collection] = remaining - 1
            raise TransientStoreError(f"{collection} query unavailable")
        for f in filters:
            if self.fail_queries_matching.get(f.field) == f.value:
                raise TransientStoreError(f"{collection} query unavailable for {f.field}")
        return await super().query(collection, filters, limit=limit, order_by=order_by, descending=descending)

    async def commit_batch(self, ops):
        self.commit_sizes.append(len(ops))
        if self.permanent_commit_failure:
            raise StoreError("batch rejected")
        if self.commit_failures:
            self.commit_failures -= 1
            raise TransientStoreError("batch commit unavailable")
        return await super().commit_batch(ops)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def graph(store: InMemoryDocumentStore) -> ContactGraph:
    return ContactGraph(store)


@pytest.fixture
def gateway() -> InMemoryPushGateway:
    return InMemoryPushGateway()


@pytest.fixture
def config() -> Settings:
    return Settings(retry_base_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def processor(
    store: InMemoryDocumentStore,
    gateway: InMemoryPushGateway,
    config: Settings,
    bus: InMemoryEventBus,
    clock,
) -> ReportProcessor:
    return ReportProcessor(store, gateway, config=config, catalog=ConditionCatalog(), bus=bus, clock=clock)
