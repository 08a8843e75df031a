from __future__ import annotations

import pytest

from exposure_chain.infra.store import InMemoryDocumentStore, StoreError, WriteOp, where


@pytest.mark.asyncio
class TestInMemoryDocumentStore:
    async def test_query_filters_and_orders(self, store: InMemoryDocumentStore) -> None:
        for i, owner in enumerate(["a", "b", "c"]):
            await store.create("interactions", {"partner_id": "p", "owner_id": owner, "recorded_at": 30 - i})
        await store.create("interactions", {"partner_id": "q", "owner_id": "z", "recorded_at": 5})

        rows = await store.query(
            "interactions",
            [where("partner_id", "==", "p"), where("recorded_at", ">=", 29)],
            order_by="recorded_at",
        )
        assert [r["owner_id"] for r in rows] == ["b", "a"]

    async def test_array_contains(self, store: InMemoryDocumentStore) -> None:
        await store.create("notifications", {"chain_path": ["x", "y"]}, doc_id="n1")
        await store.create("notifications", {"chain_path": ["z"]}, doc_id="n2")
        rows = await store.query("notifications", [where("chain_path", "array_contains", "y")])
        assert [r["id"] for r in rows] == ["n1"]

    async def test_returns_copies(self, store: InMemoryDocumentStore) -> None:
        await store.create("reports", {"status": "PENDING"}, doc_id="r1")
        doc = await store.get("reports", "r1")
        doc["status"] = "MUTATED"
        assert (await store.get("reports", "r1"))["status"] == "PENDING"

    async def test_batch_is_validated_before_applying(self, store: InMemoryDocumentStore) -> None:
        ops = [WriteOp.set("reports", "r1", {"status": "PENDING"}), WriteOp.update("reports", "missing", {"x": 1})]
        with pytest.raises(StoreError):
            await store.commit_batch(ops)
        assert await store.get("reports", "r1") is None

    async def test_batch_over_provider_limit_rejected(self, store: InMemoryDocumentStore) -> None:
        ops = [WriteOp.set("reports", f"r{i}", {}) for i in range(501)]
        with pytest.raises(ValueError):
            await store.commit_batch(ops)

    async def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError):
            where("x", "!=", 1)
