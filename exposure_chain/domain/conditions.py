from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from exposure_chain.infra.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INCUBATION_DAYS = 30

DEFAULT_INCUBATION: dict[str, int] = {
    "HIV": 30,
    "SYPHILIS": 90,
    "GONORRHEA": 14,
    "CHLAMYDIA": 21,
    "HPV": 180,
    "HERPES": 21,
    "OTHER": 30,
}


def normalize_condition(value: str) -> str:
    return str(value).strip().upper()


def parse_condition_types(value: Any) -> list[str]:
    """Accepts a list or a JSON array string; anything else parses to []."""
    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        if not raw.startswith("["):
            return [raw]
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("condition_types_unparseable", sample=raw[:50])
            return []
    if not isinstance(value, (list, tuple, set)):
        return []
    return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]


def overlapping_conditions(notification_types: Any, reported_types: Any) -> list[str]:
    reported = {normalize_condition(t) for t in parse_condition_types(reported_types)}
    return [t for t in parse_condition_types(notification_types) if normalize_condition(t) in reported]


def conditions_match(left: Any, right: Any) -> bool:
    # An empty side means "all conditions".
    left_types = parse_condition_types(left)
    right_types = parse_condition_types(right)
    if not left_types or not right_types:
        return True
    return bool(overlapping_conditions(left_types, right_types))


@dataclass(frozen=True)
class ConditionCatalog:
    incubation_days: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_INCUBATION))
    default_days: int = DEFAULT_INCUBATION_DAYS

    def incubation_for(self, condition: str) -> int:
        return self.incubation_days.get(normalize_condition(condition), self.default_days)

    def max_incubation_days(self, condition_types: Iterable[str]) -> int:
        days = [self.incubation_for(c) for c in condition_types]
        if not days:
            return self.default_days
        return max(days)

    def is_known(self, condition: str) -> bool:
        return normalize_condition(condition) in self.incubation_days

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ConditionCatalog:
        entries = data.get("conditions") or data.get("stiTypes") or []
        default_days = int(data.get("defaultIncubationDays", DEFAULT_INCUBATION_DAYS))
        if default_days <= 0:
            raise ValueError("defaultIncubationDays must be positive")
        mapping: dict[str, int] = {}
        for entry in entries:
            cond_id = normalize_condition(entry.get("id", ""))
            max_days = int(entry.get("maxIncubationDays", 0))
            if not cond_id or max_days <= 0:
                raise ValueError(f"Invalid condition entry: {entry}")
            mapping[cond_id] = max_days
        if not mapping:
            raise ValueError("Condition config contains no entries")
        return cls(incubation_days=mapping, default_days=default_days)


def load_catalog(path: str | None = None) -> ConditionCatalog:
    if not path:
        return ConditionCatalog()
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        catalog = ConditionCatalog.from_mapping(data)
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("condition_config_fallback", path=path, error=str(exc))
        return ConditionCatalog()
    logger.info("condition_config_loaded", path=path, conditions=len(catalog.incubation_days))
    return catalog
