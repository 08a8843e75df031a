"""Bounded breadth-first traversal over the contact relation.

Hop ``h`` discovers, for every frontier node, the nodes that recorded a
contact naming it. All discovery queries of a hop are gathered before the
next hop starts, so hop ``h + 1`` never sees a partial hop ``h``.

Nodes are tracked in a depth index rather than a visited set: a node found
again at an equal or greater depth is credited with the extra path but is
not expanded a second time. Equal-length ties keep the first discovered
path, where discovery order is frontier order and then query order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable

import structlog

from exposure_chain.chains.cache import UserLookupCache
from exposure_chain.chains.discovery import ContactDiscovery, ContactHit
from exposure_chain.chains.paths import PathLedger, RecipientPaths
from exposure_chain.chains.users import UserDirectory
from exposure_chain.chains.windows import ExposureWindow, WindowPolicy, next_hop_window
from exposure_chain.config import MAX_CHAIN_DEPTH
from exposure_chain.domain.errors import TraversalError
from exposure_chain.domain.models import now_ms
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.retry import MaxRetriesExceeded
from exposure_chain.infra.store import StoreError


@dataclass(frozen=True)
class FrontierEntry:
    node_id: str
    path: tuple[str, ...]
    edges: tuple[ContactHit, ...]
    reached_at: int | None = None


@dataclass
class TraversalResult:
    recipients: dict[str, RecipientPaths] = field(default_factory=dict)
    depth_index: dict[str, int] = field(default_factory=dict)
    hops_completed: int = 0
    contacts_examined: int = 0


class ChainTraversal:
    def __init__(
        self,
        discovery: ContactDiscovery,
        users: UserDirectory,
        user_cache: UserLookupCache,
        *,
        max_depth: int = MAX_CHAIN_DEPTH,
        policy: WindowPolicy = WindowPolicy.FIXED,
        incubation_days: int,
        now: int | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.discovery = discovery
        self.users = users
        self.user_cache = user_cache
        self.max_depth = max(1, min(max_depth, MAX_CHAIN_DEPTH))
        self.policy = policy
        self.incubation_days = incubation_days
        self.now = now if now is not None else now_ms()
        self.log = log or get_logger(__name__)

    async def run(
        self,
        reporter_id: str,
        root_window: ExposureWindow,
        *,
        already_notified: Iterable[str] = (),
    ) -> TraversalResult:
        skip = set(already_notified)
        ledger = PathLedger()
        result = TraversalResult(depth_index={reporter_id: 0})
        frontier = [FrontierEntry(node_id=reporter_id, path=(reporter_id,), edges=())]

        for hop in range(1, self.max_depth + 1):
            if not frontier:
                break
            next_frontier: list[FrontierEntry] = []
            try:
                hits_per_node = await self._discover_hop(frontier, root_window)
                await self.users.resolve_into(
                    (hit.node_id for hits in hits_per_node for hit in hits),
                    self.user_cache,
                )
                for entry, hits in zip(frontier, hits_per_node):
                    for hit in hits:
                        result.contacts_examined += 1
                        candidate = hit.node_id
                        if candidate == reporter_id or candidate in entry.path:
                            continue
                        if not await self._is_registered(candidate):
                            continue

                        path = entry.path + (candidate,)
                        edges = entry.edges + (hit,)
                        if candidate not in skip:
                            ledger.record(candidate, path, edges)
                        if candidate not in result.depth_index:
                            result.depth_index[candidate] = hop
                            next_frontier.append(
                                FrontierEntry(node_id=candidate, path=path, edges=edges, reached_at=hit.recorded_at)
                            )
            except (MaxRetriesExceeded, StoreError) as exc:
                result.recipients = ledger.entries()
                self.log.error("traversal_hop_failed", hop=hop, error=str(exc))
                raise TraversalError(f"Contact discovery failed at hop {hop}: {exc}", partial=result) from exc

            result.hops_completed = hop
            self.log.info(
                "traversal_hop_completed",
                hop=hop,
                frontier=len(frontier),
                discovered=len(next_frontier),
                recipients=len(ledger),
            )
            frontier = next_frontier

        result.recipients = ledger.entries()
        return result

    async def _is_registered(self, contact_id: str) -> bool:
        if not self.user_cache.has(contact_id):
            # Evicted since the batch lookup; fall back to a single read.
            self.user_cache.set(contact_id, await self.users.by_contact_id(contact_id))
        return self.user_cache.get(contact_id) is not None

    async def _discover_hop(
        self,
        frontier: list[FrontierEntry],
        root_window: ExposureWindow,
    ) -> list[list[ContactHit]]:
        queries = [
            self.discovery.find_contacts_of(
                entry.node_id,
                next_hop_window(
                    self.policy, root_window, entry.reached_at, self.incubation_days, now=self.now
                ),
            )
            for entry in frontier
        ]
        outcomes = await asyncio.gather(*queries, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes  # type: ignore[return-value]
