from __future__ import annotations

import json
from typing import Any

from exposure_chain.domain.conditions import parse_condition_types
from exposure_chain.domain.errors import ValidationError
from exposure_chain.domain.models import MS_PER_DAY, Report
from exposure_chain.domain.states import DisclosureLevel, ReportResult

MAX_CONTACT_ID_LENGTH = 128
MAX_CONDITION_LENGTH = 50
MAX_CONDITIONS_SERIALIZED = 500
# Device clocks drift; a test date slightly ahead of the server is accepted.
CLOCK_SKEW_MS = 60 * 60 * 1000


def validate_condition_types(value: Any) -> list[str]:
    conditions = parse_condition_types(value)
    if not conditions:
        raise ValidationError("At least one condition type is required")
    for condition in conditions:
        if len(condition) > MAX_CONDITION_LENGTH:
            raise ValidationError(f"Condition type exceeds {MAX_CONDITION_LENGTH} characters")
    if len(json.dumps(conditions)) > MAX_CONDITIONS_SERIALIZED:
        raise ValidationError(f"Condition types exceed {MAX_CONDITIONS_SERIALIZED} characters")
    return conditions


def validate_test_date(test_date: Any, *, now: int, retention_days: int) -> int:
    if isinstance(test_date, bool) or not isinstance(test_date, (int, float)):
        raise ValidationError("test_date must be an epoch-millisecond timestamp")
    ts = int(test_date)
    if ts > now + CLOCK_SKEW_MS:
        raise ValidationError("test_date cannot be in the future")
    if ts < now - retention_days * MS_PER_DAY:
        raise ValidationError(f"test_date is older than the {retention_days}-day retention period")
    return ts


def validate_disclosure_level(value: Any) -> DisclosureLevel:
    try:
        return DisclosureLevel(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid disclosure level: {value}") from exc


def validate_report(report: Report, *, now: int, retention_days: int) -> None:
    """Checks a stored report before any chain work is done for it.

    Positive reports are normalized in place: parsed conditions, an integer
    test date and a disclosure level enum.
    """
    if not report.reporter_contact_id:
        raise ValidationError("reporter_contact_id is required")
    if len(report.reporter_contact_id) > MAX_CONTACT_ID_LENGTH:
        raise ValidationError(f"reporter_contact_id exceeds {MAX_CONTACT_ID_LENGTH} characters")
    if report.test_result not in (ReportResult.POSITIVE, ReportResult.NEGATIVE):
        raise ValidationError(f"Invalid test_result: {report.test_result}")
    if not all(isinstance(c, str) for c in report.condition_types):
        raise ValidationError("condition_types must contain only strings")
    if report.test_result is ReportResult.NEGATIVE:
        return
    report.condition_types = validate_condition_types(report.condition_types)
    report.test_date = validate_test_date(report.test_date, now=now, retention_days=retention_days)
    report.disclosure_level = validate_disclosure_level(report.disclosure_level)
