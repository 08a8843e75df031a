from __future__ import annotations

from typing import Any

from exposure_chain.domain.models import now_ms

EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    "report.created": {"test_result"},
    "report.completed": {"notification_count"},
    "report.failed": {"error"},
    "report.deleted": {"affected_notifications"},
    "chain.status_updated": {"status", "updated"},
}

CORE_EVENTS = set(EVENT_REQUIRED_KEYS)


def validate_event_payload(event_type: str, payload: dict[str, Any]) -> None:
    if event_type not in CORE_EVENTS:
        raise ValueError(f"Unsupported event type: {event_type}")

    missing = sorted(k for k in EVENT_REQUIRED_KEYS[event_type] if k not in payload)
    if missing:
        raise ValueError(f"Event payload missing required keys for {event_type}: {missing}")


def build_event_envelope(
    *,
    event_type: str,
    report_id: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
) -> dict[str, Any]:
    validate_event_payload(event_type, payload)
    return {
        "event_type": event_type,
        "report_id": report_id,
        "payload": payload,
        "correlation_id": correlation_id or report_id,
        "emitted_at": now_ms(),
    }
