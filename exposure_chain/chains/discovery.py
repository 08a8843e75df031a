from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from exposure_chain.chains.cache import QueryCache
from exposure_chain.chains.windows import ExposureWindow
from exposure_chain.domain.models import COLLECTION_INTERACTIONS
from exposure_chain.infra.retry import RetryManager
from exposure_chain.infra.store import DocumentStore, where


@dataclass(frozen=True)
class ContactHit:
    """One discoverer of a node: who recorded it, when, and under which name."""

    node_id: str
    recorded_at: int
    username_snapshot: str = ""


def collapse_contacts(rows: list[dict[str, Any]]) -> list[ContactHit]:
    # Keep one hit per owner (the most recent record) in first-appearance order.
    latest: dict[str, ContactHit] = {}
    for row in rows:
        owner = str(row.get("owner_id") or "")
        if not owner:
            continue
        recorded_at = int(row.get("recorded_at") or 0)
        existing = latest.get(owner)
        if existing is None or recorded_at > existing.recorded_at:
            latest[owner] = ContactHit(
                node_id=owner,
                recorded_at=recorded_at,
                username_snapshot=str(row.get("partner_username_snapshot") or ""),
            )
    return list(latest.values())


class ContactDiscovery:
    """Finds the nodes that recorded a contact naming a given node as partner.

    Only the partner -> owner direction is ever queried; a node cannot reach
    anyone who did not record it.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        cache: QueryCache[list[ContactHit]],
        retry: RetryManager,
        retention_floor: int,
    ) -> None:
        self.store = store
        self.cache = cache
        self.retry = retry
        self.retention_floor = retention_floor

    async def find_contacts_of(self, node_id: str, window: ExposureWindow) -> list[ContactHit]:
        effective = window.clamped(self.retention_floor)
        if effective.start > effective.end:
            return []

        key = QueryCache.key("contacts", node_id, effective.start, effective.end)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        rows = await self.retry.execute(
            lambda: self.store.query(
                COLLECTION_INTERACTIONS,
                [
                    where("partner_id", "==", node_id),
                    where("recorded_at", ">=", effective.start),
                    where("recorded_at", "<=", effective.end),
                ],
                order_by="recorded_at",
            ),
            label="interactions.by_partner",
        )
        hits = collapse_contacts(rows)
        self.cache.set(key, hits)
        return list(hits)
