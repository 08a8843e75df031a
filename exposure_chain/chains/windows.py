from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from exposure_chain.domain.conditions import ConditionCatalog
from exposure_chain.domain.models import MS_PER_DAY

DEFAULT_RETENTION_DAYS = 180


class WindowPolicy(str, Enum):
    # Every hop reuses the window computed at the root.
    FIXED = "fixed"
    # Each hop centers its window on the contact date through which it was reached.
    ROLLING = "rolling"

    @classmethod
    def parse(cls, value: str | WindowPolicy) -> WindowPolicy:
        try:
            return cls(str(getattr(value, "value", value)).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown window policy: {value}") from exc


@dataclass(frozen=True)
class ExposureWindow:
    start: int
    end: int

    def contains(self, ts: int) -> bool:
        return self.start <= ts <= self.end

    def clamped(self, floor: int) -> ExposureWindow:
        return ExposureWindow(start=max(self.start, floor), end=self.end)


def retention_boundary(now: int, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    return now - retention_days * MS_PER_DAY


def compute_window(test_date: int, condition_types: Iterable[str], catalog: ConditionCatalog) -> ExposureWindow:
    days = catalog.max_incubation_days(list(condition_types))
    return ExposureWindow(start=test_date - days * MS_PER_DAY, end=test_date)


def next_hop_window(
    policy: WindowPolicy,
    root: ExposureWindow,
    reached_at: int | None,
    incubation_days: int,
    *,
    now: int | None = None,
) -> ExposureWindow:
    """Window used to discover contacts of a node reached at ``reached_at``.

    The reporter itself has no ``reached_at`` and always uses the root window.
    A rolling window spans one incubation period either side of the contact
    date and never ends after ``now``. The retention floor is applied by
    discovery.
    """
    if policy is WindowPolicy.FIXED or reached_at is None:
        return root
    span = incubation_days * MS_PER_DAY
    end = reached_at + span
    if now is not None:
        end = min(end, now)
    return ExposureWindow(start=reached_at - span, end=end)
