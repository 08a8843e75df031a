from exposure_chain.infra.push import InMemoryPushGateway, PushGateway, PushMessage, build_push_gateway
from exposure_chain.infra.store import (
    DocumentStore,
    InMemoryDocumentStore,
    StoreError,
    TransientStoreError,
    WriteOp,
    build_store,
    where,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "TransientStoreError",
    "WriteOp",
    "build_store",
    "where",
    "PushGateway",
    "PushMessage",
    "InMemoryPushGateway",
    "build_push_gateway",
]
