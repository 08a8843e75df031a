from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from exposure_chain.chains.cache import QueryCache, UserLookupCache
from exposure_chain.chains.discovery import ContactDiscovery, ContactHit
from exposure_chain.chains.users import UserDirectory
from exposure_chain.chains.windows import retention_boundary
from exposure_chain.config import Settings
from exposure_chain.domain.models import now_ms
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.push import PushGateway
from exposure_chain.infra.retry import RetryConfig, RetryManager
from exposure_chain.infra.store import DocumentStore
from exposure_chain.services.batching import DocumentBatchWriter, PushBatcher


@dataclass
class InvocationContext:
    """Everything one report-processing run may cache or batch.

    Built fresh per invocation and dropped afterwards; nothing in here is
    shared with another run.
    """

    report_id: str
    store: DocumentStore
    gateway: PushGateway
    config: Settings
    now: int
    retry: RetryManager
    users: UserDirectory
    log: structlog.stdlib.BoundLogger
    query_cache: QueryCache[list[ContactHit]] = field(default_factory=QueryCache)
    user_cache: UserLookupCache = field(default_factory=UserLookupCache)

    @classmethod
    def create(
        cls,
        *,
        report_id: str,
        store: DocumentStore,
        gateway: PushGateway,
        config: Settings,
        now: int | None = None,
    ) -> InvocationContext:
        retry = RetryManager(RetryConfig.from_settings(config))
        return cls(
            report_id=report_id,
            store=store,
            gateway=gateway,
            config=config,
            now=now if now is not None else now_ms(),
            retry=retry,
            users=UserDirectory(store, retry),
            log=get_logger("exposure_chain.invocation").bind(report_id=report_id),
            query_cache=QueryCache(config.cache_max_entries),
            user_cache=UserLookupCache(config.cache_max_entries),
        )

    @property
    def retention_floor(self) -> int:
        return retention_boundary(self.now, self.config.retention_days)

    def discovery(self) -> ContactDiscovery:
        return ContactDiscovery(
            self.store,
            cache=self.query_cache,
            retry=self.retry,
            retention_floor=self.retention_floor,
        )

    def new_writer(self) -> DocumentBatchWriter:
        return DocumentBatchWriter(
            self.store,
            limit=self.config.effective_batch_limit(),
            retry=self.retry,
            log=self.log,
        )

    def new_push_batcher(self) -> PushBatcher:
        return PushBatcher(self.gateway, limit=self.config.effective_batch_limit(), log=self.log)

    def log_cache_stats(self) -> None:
        self.query_cache.log_stats("contacts")
        self.user_cache.log_stats("users")
