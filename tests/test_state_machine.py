from __future__ import annotations

import pytest

from exposure_chain.domain.state_machine import InvalidTransitionError, ReportStateMachine
from exposure_chain.domain.states import ReportStatus


class TestReportStateMachine:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ReportStatus.PENDING, ReportStatus.PROCESSING),
            (ReportStatus.PROCESSING, ReportStatus.COMPLETED),
            (ReportStatus.PROCESSING, ReportStatus.FAILED),
            (ReportStatus.PENDING, ReportStatus.DELETED),
            (ReportStatus.COMPLETED, ReportStatus.DELETED),
            (ReportStatus.FAILED, ReportStatus.DELETED),
        ],
    )
    def test_allowed(self, current: ReportStatus, target: ReportStatus) -> None:
        assert ReportStateMachine().transition(current, target) is target

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ReportStatus.COMPLETED, ReportStatus.PROCESSING),
            (ReportStatus.PROCESSING, ReportStatus.DELETED),
            (ReportStatus.DELETED, ReportStatus.PENDING),
            (ReportStatus.PENDING, ReportStatus.COMPLETED),
        ],
    )
    def test_rejected(self, current: ReportStatus, target: ReportStatus) -> None:
        with pytest.raises(InvalidTransitionError):
            ReportStateMachine().transition(current, target)

    def test_accepts_stored_string_status(self) -> None:
        assert ReportStateMachine().transition("PENDING", ReportStatus.PROCESSING) is ReportStatus.PROCESSING
