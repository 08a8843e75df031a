from __future__ import annotations

import pytest

from exposure_chain.chains.traversal import ChainTraversal, TraversalResult
from exposure_chain.chains.windows import ExposureWindow, WindowPolicy, compute_window
from exposure_chain.config import Settings
from exposure_chain.domain.conditions import ConditionCatalog
from exposure_chain.domain.errors import TraversalError
from exposure_chain.domain.models import MS_PER_DAY
from exposure_chain.infra.push import InMemoryPushGateway
from exposure_chain.infra.store import InMemoryDocumentStore
from exposure_chain.services.context import InvocationContext

from conftest import NOW, ContactGraph, FlakyStore, days_ago

WIDE = ExposureWindow(days_ago(30), NOW)


async def _run(
    store: InMemoryDocumentStore,
    config: Settings,
    reporter: str,
    *,
    window: ExposureWindow = WIDE,
    policy: WindowPolicy = WindowPolicy.FIXED,
    max_depth: int = 10,
    incubation_days: int = 30,
    already_notified: set[str] | None = None,
) -> TraversalResult:
    ctx = InvocationContext.create(report_id="r1", store=store, gateway=InMemoryPushGateway(), config=config, now=NOW)
    traversal = ChainTraversal(
        ctx.discovery(),
        ctx.users,
        ctx.user_cache,
        max_depth=max_depth,
        policy=policy,
        incubation_days=incubation_days,
        now=NOW,
    )
    return await traversal.run(ContactGraph.cid(reporter), window, already_notified=already_notified or ())


def _names(result: TraversalResult, *names: str) -> set[str]:
    wanted = {ContactGraph.cid(n): n for n in names}
    return {wanted[r] for r in result.recipients if r in wanted}


@pytest.mark.asyncio
class TestScenarios:
    async def test_direct_contact(self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings) -> None:
        await graph.users("A", "B")
        await graph.record("B", "A")

        result = await _run(store, config, "A")

        assert list(result.recipients) == [graph.cid("B")]
        entry = result.recipients[graph.cid("B")]
        assert entry.hop_depth == 1
        assert entry.primary == (graph.cid("A"), graph.cid("B"))

    async def test_two_hop_chain(self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings) -> None:
        await graph.users("A", "B", "C")
        await graph.record("B", "A")
        await graph.record("C", "B")

        result = await _run(store, config, "A")

        assert result.recipients[graph.cid("B")].hop_depth == 1
        c = result.recipients[graph.cid("C")]
        assert c.hop_depth == 2
        assert c.primary == (graph.cid("A"), graph.cid("B"), graph.cid("C"))

    async def test_multi_path_collapses_to_one_recipient(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B", "C", "D", "E")
        await graph.record("B", "A")
        await graph.record("C", "A")
        await graph.record("D", "B")
        await graph.record("E", "C")
        await graph.record("D", "E")

        result = await _run(store, config, "A")

        d = result.recipients[graph.cid("D")]
        assert d.hop_depth == 2
        assert len(d.paths) == 2
        assert d.primary == (graph.cid("A"), graph.cid("B"), graph.cid("D"))
        assert (graph.cid("A"), graph.cid("C"), graph.cid("E"), graph.cid("D")) in d.paths

    async def test_contacts_only_flow_from_recorder(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B")
        # B logged A; A never logged B.
        await graph.record("B", "A")

        result = await _run(store, config, "B")

        assert result.recipients == {}


@pytest.mark.asyncio
class TestTraversalBounds:
    async def test_cycles_terminate_and_skip_reporter(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B", "C")
        await graph.record("B", "A")
        await graph.record("A", "B")
        await graph.record("C", "B")
        await graph.record("B", "C")

        result = await _run(store, config, "A")

        assert _names(result, "A", "B", "C") == {"B", "C"}
        assert graph.cid("A") not in result.recipients

    async def test_depth_never_exceeds_ten(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        names = [f"n{i}" for i in range(13)]
        await graph.users(*names)
        for upstream, downstream in zip(names, names[1:]):
            await graph.record(downstream, upstream)

        result = await _run(store, config, "n0", max_depth=50)

        depths = {entry.hop_depth for entry in result.recipients.values()}
        assert max(depths) == 10
        assert len(result.recipients) == 10
        assert graph.cid("n11") not in result.recipients
        assert result.hops_completed == 10

    async def test_configured_depth_limit(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B", "C", "D")
        await graph.record("B", "A")
        await graph.record("C", "B")
        await graph.record("D", "C")

        result = await _run(store, config, "A", max_depth=2)

        assert _names(result, "B", "C", "D") == {"B", "C"}

    async def test_unregistered_nodes_are_skipped(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "C")
        await graph.record("X", "A")
        await graph.record("C", "X")

        result = await _run(store, config, "A")

        assert result.recipients == {}

    async def test_equal_length_tie_keeps_first_discovered(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B", "C", "D")
        await graph.record("B", "A", at=days_ago(4))
        await graph.record("C", "A", at=days_ago(3))
        await graph.record("D", "C", at=days_ago(2))
        await graph.record("D", "B", at=days_ago(2))

        result = await _run(store, config, "A")

        d = result.recipients[graph.cid("D")]
        assert d.primary == (graph.cid("A"), graph.cid("B"), graph.cid("D"))
        assert len(d.paths) == 2

    async def test_already_notified_nodes_are_traversed_not_recorded(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await graph.users("A", "B", "C")
        await graph.record("B", "A")
        await graph.record("C", "B")

        result = await _run(store, config, "A", already_notified={graph.cid("B")})

        assert list(result.recipients) == [graph.cid("C")]


@pytest.mark.asyncio
class TestWindowPolicies:
    async def _seed(self, graph: ContactGraph) -> None:
        await graph.users("A", "B", "C", "E", "F", "G")
        await graph.record("B", "A", at=days_ago(5))
        # After B met A and inside the root window.
        await graph.record("C", "B", at=days_ago(3))
        # Before the root window opens but within B's own incubation.
        await graph.record("E", "B", at=days_ago(17))
        # After the test date: only a window looking forward from B's contact reaches it.
        await graph.record("G", "B", at=NOW - MS_PER_DAY // 2)
        # Outside both windows.
        await graph.record("F", "B", at=days_ago(20))

    async def test_fixed_window_reuses_root(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await self._seed(graph)
        root = compute_window(days_ago(1), ["GONORRHEA"], ConditionCatalog())

        result = await _run(store, config, "A", window=root, policy=WindowPolicy.FIXED, incubation_days=14)

        assert _names(result, "B", "C", "E", "F", "G") == {"B", "C"}

    async def test_rolling_window_follows_contact_dates(
        self, store: InMemoryDocumentStore, graph: ContactGraph, config: Settings
    ) -> None:
        await self._seed(graph)
        root = compute_window(days_ago(1), ["GONORRHEA"], ConditionCatalog())

        result = await _run(store, config, "A", window=root, policy=WindowPolicy.ROLLING, incubation_days=14)

        assert _names(result, "B", "C", "E", "F", "G") == {"B", "C", "E", "G"}


@pytest.mark.asyncio
class TestTraversalFailure:
    async def test_failed_hop_carries_completed_hops(self, flaky_store: FlakyStore, config: Settings) -> None:
        graph = ContactGraph(flaky_store)
        await graph.users("A", "B", "C")
        await graph.record("B", "A")
        await graph.record("C", "B")
        flaky_store.fail_queries_matching = {"partner_id": graph.cid("B")}

        with pytest.raises(TraversalError) as exc_info:
            await _run(flaky_store, config, "A")

        partial = exc_info.value.partial
        assert list(partial.recipients) == [graph.cid("B")]
        assert partial.hops_completed == 1
