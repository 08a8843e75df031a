from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Iterable
from uuid import uuid4

from exposure_chain.config import PROVIDER_BATCH_CEILING, Settings, settings
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.supabase_client import get_supabase_client

logger = get_logger(__name__)

SUPPORTED_OPS = {"==", ">=", "<=", "<", ">", "in", "array_contains"}


class StoreError(RuntimeError):
    pass


class TransientStoreError(StoreError):
    """A single query or batch commit failed; safe to retry."""


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in SUPPORTED_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: dict[str, Any]) -> bool:
        actual = doc.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        if actual is None:
            return False
        if self.op == ">=":
            return actual >= self.value
        if self.op == "<=":
            return actual <= self.value
        if self.op == ">":
            return actual > self.value
        return actual < self.value


def where(field_name: str, op: str, value: Any) -> Filter:
    return Filter(field_name, op, value)


@dataclass(frozen=True)
class WriteOp:
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def set(cls, collection: str, doc_id: str, data: dict[str, Any]) -> WriteOp:
        return cls("set", collection, doc_id, data)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> WriteOp:
        return cls("update", collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> WriteOp:
        return cls("delete", collection, doc_id)


class DocumentStore:
    """Collection-oriented store used by the engine.

    Documents are plain dicts carrying their own ``id``.
    """

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> dict[str, Any]:
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: int | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def count(self, collection: str, filters: Iterable[Filter] = ()) -> int:
        raise NotImplementedError

    async def commit_batch(self, ops: list[WriteOp]) -> list[str]:
        raise NotImplementedError


def _check_batch_size(ops: list[WriteOp]) -> None:
    if len(ops) > PROVIDER_BATCH_CEILING:
        raise ValueError(f"Batch of {len(ops)} exceeds provider limit of {PROVIDER_BATCH_CEILING}")


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _table(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._table(collection).get(doc_id)
            return copy.deepcopy(row) if row else None

    async def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> dict[str, Any]:
        with self._lock:
            item = copy.deepcopy(data)
            item["id"] = doc_id or item.get("id") or str(uuid4())
            table = self._table(collection)
            if item["id"] in table:
                raise StoreError(f"Document already exists: {collection}/{item['id']}")
            table[item["id"]] = item
            return copy.deepcopy(item)

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._table(collection).get(doc_id)
            if existing is None:
                raise StoreError(f"Document not found: {collection}/{doc_id}")
            existing.update(copy.deepcopy(fields))
            return copy.deepcopy(existing)

    async def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._table(collection).pop(doc_id, None)

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: int | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        filters = list(filters)
        with self._lock:
            rows = [r for r in self._table(collection).values() if all(f.matches(r) for f in filters)]
            if order_by:
                rows = sorted(rows, key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            return [copy.deepcopy(r) for r in rows]

    async def count(self, collection: str, filters: Iterable[Filter] = ()) -> int:
        filters = list(filters)
        with self._lock:
            return sum(1 for r in self._table(collection).values() if all(f.matches(r) for f in filters))

    async def commit_batch(self, ops: list[WriteOp]) -> list[str]:
        _check_batch_size(ops)
        with self._lock:
            # Validate everything first so a bad op leaves the batch unapplied.
            for op in ops:
                if op.kind not in {"set", "update", "delete"}:
                    raise StoreError(f"Unknown write kind: {op.kind}")
                if op.kind == "update" and op.doc_id not in self._table(op.collection):
                    raise StoreError(f"Document not found: {op.collection}/{op.doc_id}")
            for op in ops:
                table = self._table(op.collection)
                if op.kind == "set":
                    table[op.doc_id] = {**copy.deepcopy(op.data), "id": op.doc_id}
                elif op.kind == "update":
                    table[op.doc_id].update(copy.deepcopy(op.data))
                else:
                    table.pop(op.doc_id, None)
            return [op.doc_id for op in ops]


class SupabaseDocumentStore(DocumentStore):
    """Store backed by Supabase tables (one table per collection).

    supabase-py is synchronous, so every call runs in a worker thread.
    Batches are grouped per table and kind; PostgREST offers no
    multi-statement transaction, so a batch is not atomic across tables.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    async def _run(self, label: str, fn: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except Exception as exc:
            raise TransientStoreError(f"{label} failed: {exc}") from exc

    @staticmethod
    def _apply_filters(q: Any, filters: Iterable[Filter]) -> Any:
        for f in filters:
            if f.op == "==":
                q = q.eq(f.field, f.value)
            elif f.op == ">=":
                q = q.gte(f.field, f.value)
            elif f.op == "<=":
                q = q.lte(f.field, f.value)
            elif f.op == ">":
                q = q.gt(f.field, f.value)
            elif f.op == "<":
                q = q.lt(f.field, f.value)
            elif f.op == "in":
                q = q.in_(f.field, list(f.value))
            else:
                q = q.contains(f.field, [f.value])
        return q

    def _get_sync(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        res = self.client.table(collection).select("*").eq("id", doc_id).limit(1).execute()
        if not res.data:
            return None
        return dict(res.data[0])

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await self._run(f"get {collection}", self._get_sync, collection, doc_id)

    def _create_sync(self, collection: str, payload: dict[str, Any]) -> dict[str, Any]:
        res = self.client.table(collection).insert(payload).execute()
        if not res.data:
            raise StoreError(f"Insert failed for {collection}")
        return dict(res.data[0])

    async def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> dict[str, Any]:
        payload = dict(data)
        payload["id"] = doc_id or payload.get("id") or str(uuid4())
        return await self._run(f"create {collection}", self._create_sync, collection, payload)

    def _update_sync(self, collection: str, doc_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        res = self.client.table(collection).update(fields).eq("id", doc_id).execute()
        if not res.data:
            raise StoreError(f"Update failed for {collection}/{doc_id}")
        return dict(res.data[0])

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._run(f"update {collection}", self._update_sync, collection, doc_id, dict(fields))

    def _delete_sync(self, collection: str, doc_ids: list[str]) -> None:
        self.client.table(collection).delete().in_("id", doc_ids).execute()

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._run(f"delete {collection}", self._delete_sync, collection, [doc_id])

    def _query_sync(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None,
        order_by: str | None,
        descending: bool,
    ) -> list[dict[str, Any]]:
        q = self._apply_filters(self.client.table(collection).select("*"), filters)
        if order_by:
            q = q.order(order_by, desc=descending)
        if limit is not None:
            q = q.limit(limit)
        res = q.execute()
        return [dict(r) for r in (res.data or [])]

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        *,
        limit: int | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        return await self._run(
            f"query {collection}",
            self._query_sync,
            collection,
            list(filters),
            limit,
            order_by,
            descending,
        )

    def _count_sync(self, collection: str, filters: list[Filter]) -> int:
        q = self._apply_filters(self.client.table(collection).select("id", count="exact"), filters)
        res = q.execute()
        return int(getattr(res, "count", None) or 0)

    async def count(self, collection: str, filters: Iterable[Filter] = ()) -> int:
        return await self._run(f"count {collection}", self._count_sync, collection, list(filters))

    def _commit_sync(self, ops: list[WriteOp]) -> list[str]:
        upserts: dict[str, list[dict[str, Any]]] = {}
        deletes: dict[str, list[str]] = {}
        for op in ops:
            if op.kind == "set":
                upserts.setdefault(op.collection, []).append({**op.data, "id": op.doc_id})
            elif op.kind == "delete":
                deletes.setdefault(op.collection, []).append(op.doc_id)
        for collection, rows in upserts.items():
            self.client.table(collection).upsert(rows).execute()
        for op in ops:
            if op.kind == "update":
                self.client.table(op.collection).update(op.data).eq("id", op.doc_id).execute()
        for collection, ids in deletes.items():
            self._delete_sync(collection, ids)
        return [op.doc_id for op in ops]

    async def commit_batch(self, ops: list[WriteOp]) -> list[str]:
        _check_batch_size(ops)
        return await self._run("commit batch", self._commit_sync, list(ops))


def build_store(config: Settings | None = None) -> tuple[DocumentStore, bool, str | None]:
    config = config or settings
    if config.store_backend != "supabase":
        return InMemoryDocumentStore(), False, None

    client, err = get_supabase_client(config)
    if client is None:
        logger.warning("store_fallback_memory", reason=err)
        return InMemoryDocumentStore(), False, f"Supabase client unavailable ({err}); using in-memory store."

    try:
        # Connectivity + schema check on the collection every invocation reads.
        client.table("interactions").select("id").limit(1).execute()
    except Exception as exc:
        logger.warning("store_fallback_memory", reason=str(exc))
        return (
            InMemoryDocumentStore(),
            False,
            f"Supabase unavailable or schema mismatch ({exc}). Using in-memory store.",
        )
    return SupabaseDocumentStore(client), True, None
