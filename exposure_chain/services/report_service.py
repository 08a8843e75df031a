from __future__ import annotations

from typing import Any, Callable, Iterable

from exposure_chain.config import Settings, settings
from exposure_chain.domain.conditions import conditions_match
from exposure_chain.domain.errors import NotFoundError, OwnershipError, ValidationError
from exposure_chain.domain.hashing import contact_hash, notification_hash, report_hash
from exposure_chain.domain.models import COLLECTION_NOTIFICATIONS, COLLECTION_REPORTS, Report, UserRecord, now_ms
from exposure_chain.domain.state_machine import ReportStateMachine
from exposure_chain.domain.states import NotificationType, ReportResult, ReportStatus
from exposure_chain.events.bus import InMemoryEventBus
from exposure_chain.events.contracts import build_event_envelope
from exposure_chain.infra.logging import get_logger
from exposure_chain.infra.push import PushGateway
from exposure_chain.infra.store import DocumentStore, WriteOp, where
from exposure_chain.services.context import InvocationContext
from exposure_chain.services.push_messages import build_push, flush_pushes
from exposure_chain.services.status_propagation import ChainStatusPropagator
from exposure_chain.services.validation import (
    MAX_CONDITION_LENGTH,
    validate_condition_types,
    validate_disclosure_level,
    validate_test_date,
)

logger = get_logger(__name__)


class ReportService:
    """Caller-facing operations; every raw uid is hashed before it is used."""

    def __init__(
        self,
        store: DocumentStore,
        gateway: PushGateway,
        *,
        config: Settings | None = None,
        bus: InMemoryEventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config or settings
        self.bus = bus
        self.clock = clock
        self.sm = ReportStateMachine()

    async def submit_positive(
        self,
        uid: str,
        condition_types: Any,
        test_date: Any,
        disclosure_level: Any,
    ) -> dict[str, Any]:
        now = self.clock()
        conditions = validate_condition_types(condition_types)
        ts = validate_test_date(test_date, now=now, retention_days=self.config.retention_days)
        level = validate_disclosure_level(disclosure_level)

        linked_report_id = await self.find_linked_report_id(uid, conditions)
        report = Report(
            reporter_id=report_hash(uid),
            reporter_contact_id=contact_hash(uid),
            reporter_notification_id=notification_hash(uid),
            test_result=ReportResult.POSITIVE,
            condition_types=conditions,
            test_date=ts,
            disclosure_level=level,
            linked_report_id=linked_report_id,
            created_at=now,
        )
        await self._create(report)
        return {"report_id": report.id, "linked_report_id": linked_report_id}

    async def submit_negative(
        self,
        uid: str,
        condition_type: str | None = None,
        target_notification_id: str | None = None,
    ) -> dict[str, Any]:
        condition = (condition_type or "").strip()
        if len(condition) > MAX_CONDITION_LENGTH:
            raise ValidationError(f"Condition type exceeds {MAX_CONDITION_LENGTH} characters")

        if target_notification_id:
            target = await self.store.get(COLLECTION_NOTIFICATIONS, target_notification_id)
            if target is None:
                raise NotFoundError(f"Notification not found: {target_notification_id}")
            if target.get("recipient_id") != notification_hash(uid):
                raise OwnershipError("Target notification does not belong to the caller")

        report = Report(
            reporter_id=report_hash(uid),
            reporter_contact_id=contact_hash(uid),
            reporter_notification_id=notification_hash(uid),
            test_result=ReportResult.NEGATIVE,
            condition_types=[condition] if condition else [],
            target_notification_id=target_notification_id or None,
            created_at=self.clock(),
        )
        await self._create(report)
        return {"report_id": report.id}

    async def check_chain_link(self, uid: str, condition_type: str | None = None) -> dict[str, Any]:
        report_id = await self.find_linked_report_id(uid, [condition_type] if condition_type else None)
        return {"has_existing_notification": report_id is not None, "report_id": report_id}

    async def find_linked_report_id(self, uid: str, condition_types: Iterable[str] | None = None) -> str | None:
        """Report behind the most recent exposure the caller received, if any matches."""
        rows = await self.store.query(
            COLLECTION_NOTIFICATIONS,
            [
                where("recipient_id", "==", notification_hash(uid)),
                where("type", "==", NotificationType.EXPOSURE.value),
            ],
            order_by="received_at",
            descending=True,
        )
        wanted = list(condition_types) if condition_types else None
        for row in rows:
            if row.get("deleted_at"):
                continue
            if conditions_match(row.get("condition_types"), wanted):
                return row.get("report_id")
        return None

    async def delete_report(self, uid: str, report_id: str) -> dict[str, Any]:
        doc = await self.store.get(COLLECTION_REPORTS, report_id)
        if doc is None or doc.get("status") == ReportStatus.DELETED.value:
            raise NotFoundError(f"Report not found: {report_id}")
        if doc.get("reporter_id") != report_hash(uid):
            raise OwnershipError("Report does not belong to the caller")

        report = Report.from_doc(doc)
        self.sm.transition(report.status, ReportStatus.DELETED)
        ctx = InvocationContext.create(
            report_id=report_id,
            store=self.store,
            gateway=self.gateway,
            config=self.config,
            now=self.clock(),
        )

        if report.test_result is ReportResult.POSITIVE:
            count = await self._retract_notifications(ctx)
            await self.store.update(
                COLLECTION_REPORTS,
                report_id,
                {"status": ReportStatus.DELETED.value, "processed_at": ctx.now},
            )
        else:
            outcome = await ChainStatusPropagator(ctx).revert_negative(report.reporter_contact_id)
            await self.store.delete(COLLECTION_REPORTS, report_id)
            count = outcome.updated

        ctx.log.info("report_deleted", test_result=report.test_result.value, affected_notifications=count)
        await self._publish(report_id, "report.deleted", {"affected_notifications": count})
        return {"success": True, "deleted_notifications_count": count}

    async def _retract_notifications(self, ctx: InvocationContext) -> int:
        docs = await ctx.retry.execute(
            lambda: self.store.query(COLLECTION_NOTIFICATIONS, [where("report_id", "==", ctx.report_id)]),
            label="notifications.by_report",
        )
        writer = ctx.new_writer()
        recipients: dict[str, str] = {}
        for doc in docs:
            if doc.get("deleted_at"):
                continue
            writer.add(
                WriteOp.update(
                    COLLECTION_NOTIFICATIONS,
                    doc["id"],
                    {
                        "deleted_at": ctx.now,
                        "updated_at": ctx.now,
                        "is_read": False,
                        "type": NotificationType.REPORT_DELETED.value,
                    },
                ),
                key=doc["id"],
            )
            recipients[doc["id"]] = str(doc.get("recipient_id") or "")
        if writer.is_empty:
            return 0

        batch = await writer.commit()
        written = batch.succeeded_keys()
        users = await ctx.users.by_notification_ids(rid for doc_id, rid in recipients.items() if doc_id in written)
        pushes = ctx.new_push_batcher()
        owners: dict[str, UserRecord] = {}
        for doc_id in written:
            user = users.get(recipients[doc_id])
            if user is None or not user.push_token:
                continue
            owners[user.push_token] = user
            pushes.add(build_push(NotificationType.REPORT_DELETED, token=user.push_token, notification_id=doc_id))
        await flush_pushes(pushes, owners, ctx.users, ctx.log)
        return batch.success_count

    async def _create(self, report: Report) -> None:
        await self.store.create(COLLECTION_REPORTS, report.to_doc(), doc_id=report.id)
        logger.info(
            "report_submitted",
            report_id=report.id,
            test_result=report.test_result.value,
            linked=report.linked_report_id is not None,
        )
        await self._publish(report.id, "report.created", {"test_result": report.test_result.value})

    async def _publish(self, report_id: str, event_type: str, payload: dict[str, Any]) -> None:
        if self.bus is None:
            return
        await self.bus.publish(build_event_envelope(event_type=event_type, report_id=report_id, payload=payload))
