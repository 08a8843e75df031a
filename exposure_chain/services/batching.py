"""Write and push accumulators with a 500-operation provider ceiling.

Both flush in partitions of at most ``limit`` items. A partition that fails
only fails its own items; the other partitions still go out.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from exposure_chain.config import PROVIDER_BATCH_CEILING
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.push import PushDeliveryError, PushGateway, PushMessage
from exposure_chain.infra.retry import MaxRetriesExceeded, RetryManager
from exposure_chain.infra.store import DocumentStore, StoreError, WriteOp


def _partition(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


@dataclass(frozen=True)
class PendingWrite:
    op: WriteOp
    # Caller-side correlation key, e.g. the recipient a notification is for.
    key: str | None = None


@dataclass
class BatchResult:
    success_count: int = 0
    failure_count: int = 0
    partitions: list[int] = field(default_factory=list)
    succeeded: list[PendingWrite] = field(default_factory=list)
    failed: list[PendingWrite] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def succeeded_keys(self) -> set[str]:
        return {w.key for w in self.succeeded if w.key is not None}

    def failed_keys(self) -> set[str]:
        return {w.key for w in self.failed if w.key is not None}

    def created_id_map(self) -> dict[str, str]:
        return {w.key: w.op.doc_id for w in self.succeeded if w.key is not None}


class DocumentBatchWriter:
    def __init__(
        self,
        store: DocumentStore,
        *,
        limit: int = PROVIDER_BATCH_CEILING,
        retry: RetryManager | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.limit = max(1, min(limit, PROVIDER_BATCH_CEILING))
        self.retry = retry or RetryManager()
        self.log = log or get_logger(__name__)
        self._pending: list[PendingWrite] = []
        self._committed = False

    @property
    def size(self) -> int:
        return len(self._pending)

    @property
    def is_empty(self) -> bool:
        return not self._pending

    def add(self, op: WriteOp, key: str | None = None) -> None:
        if self._committed:
            raise RuntimeError("Cannot add writes to a batch writer that was already committed")
        self._pending.append(PendingWrite(op=op, key=key))

    async def commit(self) -> BatchResult:
        if self._committed:
            self.log.warning("batch_already_committed")
            return BatchResult()
        self._committed = True

        result = BatchResult()
        for chunk in _partition(self._pending, self.limit):
            ops = [w.op for w in chunk]
            result.partitions.append(len(chunk))
            try:
                await self.retry.execute(lambda ops=ops: self.store.commit_batch(ops), label="batch.commit")
            except (MaxRetriesExceeded, StoreError) as exc:
                result.failure_count += len(chunk)
                result.failed.extend(chunk)
                result.errors.append(str(exc))
                self.log.error("batch_partition_failed", size=len(chunk), error=str(exc))
                continue
            result.success_count += len(chunk)
            result.succeeded.extend(chunk)

        self.log.info(
            "batch_committed",
            succeeded=result.success_count,
            failed=result.failure_count,
            partitions=len(result.partitions),
        )
        return result


@dataclass
class PushBatchResult:
    success_count: int = 0
    failure_count: int = 0
    partitions: list[int] = field(default_factory=list)
    invalid_tokens: list[str] = field(default_factory=list)


class PushBatcher:
    """Fire-and-forget push accumulator; failures are logged, never retried."""

    def __init__(
        self,
        gateway: PushGateway,
        *,
        limit: int = PROVIDER_BATCH_CEILING,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.gateway = gateway
        self.limit = max(1, min(limit, PROVIDER_BATCH_CEILING))
        self.log = log or get_logger(__name__)
        self._pending: list[PushMessage] = []
        self._sent = False

    @property
    def size(self) -> int:
        return len(self._pending)

    @property
    def is_empty(self) -> bool:
        return not self._pending

    def add(self, message: PushMessage) -> bool:
        if self._sent:
            raise RuntimeError("Cannot add pushes to a batcher that was already sent")
        if not message.token:
            return False
        self._pending.append(message)
        return True

    async def send(self) -> PushBatchResult:
        if self._sent:
            self.log.warning("push_batch_already_sent")
            return PushBatchResult()
        self._sent = True

        result = PushBatchResult()
        for chunk in _partition(self._pending, self.limit):
            result.partitions.append(len(chunk))
            try:
                outcomes = await self.gateway.send_batch(chunk)
            except PushDeliveryError as exc:
                result.failure_count += len(chunk)
                self.log.error("push_partition_failed", size=len(chunk), error=str(exc))
                continue
            for message, outcome in zip(chunk, outcomes):
                if outcome.success:
                    result.success_count += 1
                    continue
                result.failure_count += 1
                if outcome.invalid_token:
                    result.invalid_tokens.append(message.token)

        if self._pending:
            self.log.info(
                "push_batch_sent",
                succeeded=result.success_count,
                failed=result.failure_count,
                invalid_tokens=len(result.invalid_tokens),
            )
        return result
