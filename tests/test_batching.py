from __future__ import annotations

import pytest

from exposure_chain.domain.states import NotificationType
from exposure_chain.infra.push import InMemoryPushGateway, PushDeliveryError, PushMessage
from exposure_chain.infra.retry import RetryConfig, RetryManager
from exposure_chain.infra.store import WriteOp
from exposure_chain.services.batching import DocumentBatchWriter, PushBatcher

from conftest import FlakyStore

FAST = RetryManager(RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=0.0))


def _message(token: str) -> PushMessage:
    return PushMessage(
        token=token,
        notification_id=f"n-{token}",
        type=NotificationType.UPDATE,
        title_loc_key="notification_update_title",
        body_loc_key="notification_update_body",
    )


@pytest.mark.asyncio
class TestDocumentBatchWriter:
    async def test_partitions_at_provider_ceiling(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, retry=FAST)
        for i in range(1200):
            writer.add(WriteOp.set("notifications", f"n{i}", {"i": i}), key=f"r{i}")

        result = await writer.commit()

        assert flaky_store.commit_sizes == [500, 500, 200]
        assert result.partitions == [500, 500, 200]
        assert result.success_count == 1200
        assert await flaky_store.count("notifications") == 1200

    async def test_limit_is_clamped(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, limit=5000, retry=FAST)
        assert writer.limit == 500

    async def test_failed_partition_only_fails_its_items(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, limit=2, retry=FAST)
        for i in range(5):
            writer.add(WriteOp.set("notifications", f"n{i}", {}), key=f"r{i}")
        # Both attempts for the first partition fail.
        flaky_store.commit_failures = 2

        result = await writer.commit()

        assert result.failed_keys() == {"r0", "r1"}
        assert result.succeeded_keys() == {"r2", "r3", "r4"}
        assert result.created_id_map() == {"r2": "n2", "r3": "n3", "r4": "n4"}
        assert result.failure_count == 2
        assert len(result.errors) == 1

    async def test_transient_failure_is_retried(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, retry=FAST)
        writer.add(WriteOp.set("notifications", "n1", {}), key="r1")
        flaky_store.commit_failures = 1
        result = await writer.commit()
        assert result.success_count == 1
        assert flaky_store.commit_sizes == [1, 1]

    async def test_add_after_commit_raises(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, retry=FAST)
        await writer.commit()
        with pytest.raises(RuntimeError):
            writer.add(WriteOp.delete("notifications", "n1"))

    async def test_second_commit_is_empty(self, flaky_store: FlakyStore) -> None:
        writer = DocumentBatchWriter(flaky_store, retry=FAST)
        writer.add(WriteOp.set("notifications", "n1", {}))
        await writer.commit()
        again = await writer.commit()
        assert again.success_count == 0
        assert flaky_store.commit_sizes == [1]


class ExplodingGateway(InMemoryPushGateway):
    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def send_batch(self, messages):
        self.attempts += 1
        if self.attempts == 1:
            raise PushDeliveryError("relay down")
        return await super().send_batch(messages)


@pytest.mark.asyncio
class TestPushBatcher:
    async def test_sends_in_chunks_and_drops_empty_tokens(self) -> None:
        gateway = InMemoryPushGateway()
        batcher = PushBatcher(gateway)
        assert not batcher.add(_message(""))
        for i in range(1001):
            batcher.add(_message(f"t{i}"))

        result = await batcher.send()

        assert gateway.calls == [500, 500, 1]
        assert result.success_count == 1001

    async def test_reports_invalid_tokens(self) -> None:
        gateway = InMemoryPushGateway(invalid_tokens={"dead"})
        batcher = PushBatcher(gateway)
        batcher.add(_message("dead"))
        batcher.add(_message("alive"))
        result = await batcher.send()
        assert result.invalid_tokens == ["dead"]
        assert (result.success_count, result.failure_count) == (1, 1)

    async def test_gateway_error_fails_only_that_chunk(self) -> None:
        gateway = ExplodingGateway()
        batcher = PushBatcher(gateway, limit=2)
        for i in range(4):
            batcher.add(_message(f"t{i}"))
        result = await batcher.send()
        assert result.failure_count == 2
        assert result.success_count == 2
        assert [m.token for m in gateway.sent] == ["t2", "t3"]
