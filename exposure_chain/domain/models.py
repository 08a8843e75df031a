from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from exposure_chain.domain.errors import ValidationError
from exposure_chain.domain.states import (
    DisclosureLevel,
    NodeStatus,
    NotificationType,
    ReportResult,
    ReportStatus,
)

MS_PER_DAY = 24 * 60 * 60 * 1000

COLLECTION_USERS = "users"
COLLECTION_INTERACTIONS = "interactions"
COLLECTION_NOTIFICATIONS = "notifications"
COLLECTION_REPORTS = "reports"
COLLECTION_CLEANUP_LOGS = "cleanup_logs"

CHAIN_SOMEONE = "@@chain_someone@@"
CHAIN_YOU = "@@chain_you@@"


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _stored_conditions(value: Any) -> list[Any]:
    # A bare string would otherwise be split into characters.
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"condition_types must be a list, got {type(value).__name__}")
    return list(value)


@dataclass
class UserRecord:
    id: str
    contact_id: str
    notification_id: str
    push_token: str = ""

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> UserRecord:
        return cls(
            id=str(doc.get("id", "")),
            contact_id=str(doc.get("contact_id", "")),
            notification_id=str(doc.get("notification_id", "")),
            push_token=str(doc.get("push_token") or ""),
        )


@dataclass
class ContactRecord:
    owner_id: str
    partner_id: str
    recorded_at: int
    partner_username_snapshot: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "partner_id": self.partner_id,
            "partner_username_snapshot": self.partner_username_snapshot,
            "recorded_at": self.recorded_at,
        }


@dataclass
class ChainNode:
    username: str
    test_status: NodeStatus = NodeStatus.UNKNOWN
    date: int | None = None
    is_current_user: bool = False
    tested_positive_for: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "username": self.username,
            "test_status": self.test_status.value,
            "date": self.date,
            "is_current_user": self.is_current_user,
        }
        if self.tested_positive_for is not None:
            out["tested_positive_for"] = list(self.tested_positive_for)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainNode:
        if not isinstance(data, dict):
            raise ValueError("chain node must be an object")
        tested = data.get("tested_positive_for")
        return cls(
            username=str(data.get("username", CHAIN_SOMEONE)),
            test_status=NodeStatus(data.get("test_status", NodeStatus.UNKNOWN.value)),
            date=data.get("date"),
            is_current_user=bool(data.get("is_current_user", False)),
            tested_positive_for=list(tested) if tested is not None else None,
        )


@dataclass
class ChainVisualization:
    """Display chain: ``nodes`` for the primary path, ``paths`` per known path."""

    nodes: list[ChainNode]
    paths: list[list[ChainNode]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "paths": [[n.to_dict() for n in path] for path in self.paths],
        }

    @classmethod
    def from_dict(cls, data: Any) -> ChainVisualization:
        if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
            raise ValueError("chain data missing nodes array")
        nodes = [ChainNode.from_dict(n) for n in data["nodes"]]
        raw_paths = data.get("paths")
        if not isinstance(raw_paths, list):
            raw_paths = [data["nodes"]]
        paths = [[ChainNode.from_dict(n) for n in path] for path in raw_paths]
        return cls(nodes=nodes, paths=paths)


@dataclass
class Report:
    reporter_id: str
    reporter_contact_id: str
    reporter_notification_id: str
    test_result: ReportResult
    condition_types: list[str] = field(default_factory=list)
    test_date: int | None = None
    disclosure_level: DisclosureLevel | None = None
    linked_report_id: str | None = None
    target_notification_id: str | None = None
    status: ReportStatus = ReportStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: int = field(default_factory=now_ms)
    processed_at: int | None = None
    error: str | None = None
    notification_count: int | None = None

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reporter_id": self.reporter_id,
            "reporter_contact_id": self.reporter_contact_id,
            "reporter_notification_id": self.reporter_notification_id,
            "test_result": self.test_result.value,
            "condition_types": list(self.condition_types),
            "test_date": self.test_date,
            "disclosure_level": self.disclosure_level.value if self.disclosure_level else None,
            "linked_report_id": self.linked_report_id,
            "target_notification_id": self.target_notification_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "error": self.error,
            "notification_count": self.notification_count,
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Report:
        level = doc.get("disclosure_level")
        return cls(
            id=str(doc["id"]),
            reporter_id=str(doc.get("reporter_id", "")),
            reporter_contact_id=str(doc.get("reporter_contact_id", "")),
            reporter_notification_id=str(doc.get("reporter_notification_id") or ""),
            test_result=ReportResult(doc["test_result"]),
            condition_types=_stored_conditions(doc.get("condition_types")),
            test_date=doc.get("test_date"),
            disclosure_level=DisclosureLevel(level) if level else None,
            linked_report_id=doc.get("linked_report_id"),
            target_notification_id=doc.get("target_notification_id"),
            status=ReportStatus(doc.get("status", ReportStatus.PENDING.value)),
            created_at=int(doc.get("created_at") or 0),
            processed_at=doc.get("processed_at"),
            error=doc.get("error"),
            notification_count=doc.get("notification_count"),
        )


@dataclass
class Notification:
    id: str
    recipient_id: str
    report_id: str
    chain_path: list[str]
    chain_paths: list[list[str]]
    chain_data: ChainVisualization
    type: NotificationType = NotificationType.EXPOSURE
    condition_types: list[str] | None = None
    exposure_date: int | None = None
    is_read: bool = False
    received_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    deleted_at: int | None = None

    @property
    def hop_depth(self) -> int:
        return len(self.chain_path) - 1

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "report_id": self.report_id,
            "type": self.type.value,
            "condition_types": list(self.condition_types) if self.condition_types is not None else None,
            "exposure_date": self.exposure_date,
            "chain_path": list(self.chain_path),
            "chain_paths": [list(p) for p in self.chain_paths],
            "hop_depth": self.hop_depth,
            "chain_data": self.chain_data.to_dict(),
            "is_read": self.is_read,
            "received_at": self.received_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }
