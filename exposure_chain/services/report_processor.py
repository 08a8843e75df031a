"""Handles one submitted report from PENDING to COMPLETED or FAILED."""

from __future__ import annotations

from typing import Any, Callable

from exposure_chain.chains.traversal import ChainTraversal
from exposure_chain.chains.windows import WindowPolicy, compute_window
from exposure_chain.config import Settings, settings
from exposure_chain.domain.conditions import ConditionCatalog, load_catalog, normalize_condition, parse_condition_types
from exposure_chain.domain.errors import NotFoundError, TraversalError
from exposure_chain.domain.models import COLLECTION_NOTIFICATIONS, COLLECTION_REPORTS, Report, now_ms
from exposure_chain.domain.state_machine import ReportStateMachine
from exposure_chain.domain.states import NodeStatus, ReportResult, ReportStatus
from exposure_chain.events.bus import InMemoryEventBus
from exposure_chain.events.contracts import build_event_envelope
from exposure_chain.infra.push import PushGateway
from exposure_chain.infra.retry import MaxRetriesExceeded
from exposure_chain.infra.store import DocumentStore, StoreError, where
from exposure_chain.services.context import InvocationContext
from exposure_chain.services.materializer import NotificationMaterializer
from exposure_chain.services.status_propagation import ChainStatusPropagator
from exposure_chain.services.validation import validate_report


class ReportProcessor:
    def __init__(
        self,
        store: DocumentStore,
        gateway: PushGateway,
        *,
        config: Settings | None = None,
        catalog: ConditionCatalog | None = None,
        bus: InMemoryEventBus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config or settings
        self.catalog = catalog or load_catalog(self.config.conditions_config_path)
        self.bus = bus
        self.clock = clock
        self.sm = ReportStateMachine()
        self.policy = WindowPolicy.parse(self.config.window_policy)

    async def handle_event(self, envelope: dict[str, Any]) -> dict[str, Any] | None:
        if envelope.get("event_type") != "report.created":
            return None
        return await self.process(str(envelope["report_id"]))

    async def process(self, report_id: str) -> dict[str, Any]:
        doc = await self.store.get(COLLECTION_REPORTS, report_id)
        if doc is None:
            raise NotFoundError(f"Report not found: {report_id}")

        ctx = InvocationContext.create(
            report_id=report_id,
            store=self.store,
            gateway=self.gateway,
            config=self.config,
            now=self.clock(),
        )
        self.sm.transition(doc.get("status", ReportStatus.PENDING.value), ReportStatus.PROCESSING)
        await self.store.update(COLLECTION_REPORTS, report_id, {"status": ReportStatus.PROCESSING.value})
        ctx.log.info("report_processing_started", test_result=doc.get("test_result"))

        try:
            report = Report.from_doc(doc)
            validate_report(report, now=ctx.now, retention_days=self.config.retention_days)
        except (ValueError, KeyError) as exc:
            return await self._fail(ctx, f"Validation failed: {exc}", stage="validation")

        try:
            if report.test_result is ReportResult.POSITIVE:
                count = await self._process_positive(ctx, report)
            else:
                count = await self._process_negative(ctx, report)
        except TraversalError as exc:
            written = await self._materialize_partial(ctx, report, exc)
            return await self._fail(ctx, str(exc), stage="traversal", notification_count=written)
        except (MaxRetriesExceeded, StoreError) as exc:
            return await self._fail(ctx, f"Store failure: {exc}", stage="store")
        finally:
            ctx.log_cache_stats()

        return await self._complete(ctx, count)

    async def _process_positive(self, ctx: InvocationContext, report: Report) -> int:
        conditions = parse_condition_types(report.condition_types)
        root = compute_window(report.test_date, conditions, self.catalog)
        already_notified = await self._linked_recipients(ctx, report)

        traversal = ChainTraversal(
            ctx.discovery(),
            ctx.users,
            ctx.user_cache,
            max_depth=self.config.effective_max_depth(),
            policy=self.policy,
            incubation_days=self.catalog.max_incubation_days(conditions),
            now=ctx.now,
            log=ctx.log,
        )
        result = await traversal.run(report.reporter_contact_id, root, already_notified=already_notified)
        ctx.log.info(
            "traversal_completed",
            hops=result.hops_completed,
            contacts_examined=result.contacts_examined,
            recipients=len(result.recipients),
            already_notified=len(already_notified),
        )

        materialized = await NotificationMaterializer(ctx).materialize(report, result.recipients.values())
        if materialized.failed_recipients:
            ctx.log.warning("notifications_partially_written", failed=len(materialized.failed_recipients))

        propagator = ChainStatusPropagator(ctx)
        if report.reporter_notification_id:
            await propagator.mark_reporter_notifications(report.reporter_notification_id, conditions)
        outcome = await propagator.propagate_positive(report.reporter_contact_id, conditions)
        await self._publish(
            ctx,
            "chain.status_updated",
            {"status": NodeStatus.POSITIVE.value, "updated": outcome.updated},
        )
        return materialized.written

    async def _process_negative(self, ctx: InvocationContext, report: Report) -> int:
        propagator = ChainStatusPropagator(ctx)
        if report.target_notification_id:
            await propagator.mark_target_negative(report.target_notification_id)
        outcome = await propagator.propagate_negative(report.reporter_contact_id, report.condition_types or None)
        await self._publish(
            ctx,
            "chain.status_updated",
            {"status": NodeStatus.NEGATIVE.value, "updated": outcome.updated},
        )
        return 0

    async def _linked_recipients(self, ctx: InvocationContext, report: Report) -> set[str]:
        """Contact ids already notified through the report that reached this reporter.

        Only used when the new report adds no condition beyond the linked one;
        those people learn about the new result through a status update instead.
        """
        linked_id = report.linked_report_id
        if not linked_id:
            return set()
        linked = await ctx.retry.execute(
            lambda: self.store.get(COLLECTION_REPORTS, linked_id),
            label="reports.get_linked",
        )
        if linked is None:
            ctx.log.warning("linked_report_missing", linked_report_id=linked_id)
            return set()

        linked_conditions = {normalize_condition(c) for c in parse_condition_types(linked.get("condition_types"))}
        added = [c for c in report.condition_types if normalize_condition(c) not in linked_conditions]
        if added:
            ctx.log.info("chain_link_seeding_skipped", new_conditions=len(added))
            return set()

        docs = await ctx.retry.execute(
            lambda: self.store.query(COLLECTION_NOTIFICATIONS, [where("report_id", "==", linked_id)]),
            label="notifications.by_report",
        )
        recipient_ids = {str(d["recipient_id"]) for d in docs if d.get("recipient_id")}
        users = await ctx.users.by_notification_ids(recipient_ids)
        ctx.user_cache.populate_from_batch(users.values())
        seeded = {u.contact_id for u in users.values() if u.contact_id}
        ctx.log.info("chain_link_seeded", linked_report_id=linked_id, already_notified=len(seeded))
        return seeded

    async def _materialize_partial(self, ctx: InvocationContext, report: Report, exc: TraversalError) -> int:
        partial = exc.partial
        if partial is None or not partial.recipients:
            return 0
        try:
            result = await NotificationMaterializer(ctx).materialize(report, partial.recipients.values())
        except (MaxRetriesExceeded, StoreError) as store_exc:
            ctx.log.error("partial_materialization_failed", error=str(store_exc))
            return 0
        ctx.log.warning("partial_results_materialized", written=result.written, hops=partial.hops_completed)
        return result.written

    async def _complete(self, ctx: InvocationContext, count: int) -> dict[str, Any]:
        status = self.sm.transition(ReportStatus.PROCESSING, ReportStatus.COMPLETED)
        await self.store.update(
            COLLECTION_REPORTS,
            ctx.report_id,
            {"status": status.value, "processed_at": ctx.now, "notification_count": count, "error": None},
        )
        ctx.log.info("report_completed", notification_count=count)
        await self._publish(ctx, "report.completed", {"notification_count": count})
        return {"report_id": ctx.report_id, "status": status.value, "notification_count": count, "error": None}

    async def _fail(
        self,
        ctx: InvocationContext,
        error: str,
        *,
        stage: str,
        notification_count: int = 0,
    ) -> dict[str, Any]:
        status = self.sm.transition(ReportStatus.PROCESSING, ReportStatus.FAILED)
        await self.store.update(
            COLLECTION_REPORTS,
            ctx.report_id,
            {
                "status": status.value,
                "processed_at": ctx.now,
                "notification_count": notification_count,
                "error": error,
            },
        )
        ctx.log.error("report_failed", stage=stage, error=error, notification_count=notification_count)
        await self._publish(ctx, "report.failed", {"error": error, "stage": stage})
        return {
            "report_id": ctx.report_id,
            "status": status.value,
            "notification_count": notification_count,
            "error": error,
        }

    async def _publish(self, ctx: InvocationContext, event_type: str, payload: dict[str, Any]) -> None:
        if self.bus is None:
            return
        await self.bus.publish(build_event_envelope(event_type=event_type, report_id=ctx.report_id, payload=payload))
