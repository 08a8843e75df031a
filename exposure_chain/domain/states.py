from __future__ import annotations

from enum import Enum


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DELETED = "DELETED"


ALLOWED_TRANSITIONS: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.PENDING: {ReportStatus.PROCESSING, ReportStatus.DELETED},
    ReportStatus.PROCESSING: {ReportStatus.COMPLETED, ReportStatus.FAILED},
    ReportStatus.COMPLETED: {ReportStatus.DELETED},
    ReportStatus.FAILED: {ReportStatus.DELETED},
    ReportStatus.DELETED: set(),
}


class ReportResult(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class NodeStatus(str, Enum):
    """Status shown for one node of a chain visualization."""

    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    UNKNOWN = "UNKNOWN"


class DisclosureLevel(str, Enum):
    FULL = "FULL"
    CONDITION_ONLY = "CONDITION_ONLY"
    DATE_ONLY = "DATE_ONLY"
    ANONYMOUS = "ANONYMOUS"

    def discloses_conditions(self) -> bool:
        return self in (DisclosureLevel.FULL, DisclosureLevel.CONDITION_ONLY)

    def discloses_date(self) -> bool:
        return self in (DisclosureLevel.FULL, DisclosureLevel.DATE_ONLY)


class NotificationType(str, Enum):
    EXPOSURE = "EXPOSURE"
    UPDATE = "UPDATE"
    REPORT_DELETED = "REPORT_DELETED"
