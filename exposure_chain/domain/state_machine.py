from __future__ import annotations

from exposure_chain.domain.states import ALLOWED_TRANSITIONS, ReportStatus


class InvalidTransitionError(ValueError):
    pass


class ReportStateMachine:
    def transition(self, current: ReportStatus | str, target: ReportStatus) -> ReportStatus:
        current = ReportStatus(current)
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(f"Invalid transition {current.value} -> {target.value}")
        return target
