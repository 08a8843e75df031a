from __future__ import annotations

from pydantic import BaseModel, Field

from exposure_chain.domain.states import DisclosureLevel


class PositiveReportRequest(BaseModel):
    condition_types: list[str] = Field(min_length=1)
    test_date: int = Field(description="Epoch milliseconds")
    disclosure_level: DisclosureLevel = DisclosureLevel.ANONYMOUS


class NegativeReportRequest(BaseModel):
    condition_type: str | None = Field(default=None, max_length=50)
    target_notification_id: str | None = None


class PositiveReportResponse(BaseModel):
    report_id: str
    linked_report_id: str | None = None


class NegativeReportResponse(BaseModel):
    report_id: str


class ChainLinkResponse(BaseModel):
    has_existing_notification: bool
    report_id: str | None = None


class DeleteReportResponse(BaseModel):
    success: bool
    deleted_notifications_count: int


class ProcessReportResponse(BaseModel):
    report_id: str
    status: str
    notification_count: int = 0
    error: str | None = None
