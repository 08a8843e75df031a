from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from exposure_chain.chains.discovery import ContactHit
from exposure_chain.chains.paths import RecipientPaths
from exposure_chain.domain.hashing import chain_hash, notification_doc_id
from exposure_chain.domain.models import (
    CHAIN_SOMEONE,
    CHAIN_YOU,
    COLLECTION_NOTIFICATIONS,
    ChainNode,
    ChainVisualization,
    Notification,
    Report,
    UserRecord,
)
from exposure_chain.domain.states import DisclosureLevel, NodeStatus, NotificationType
from exposure_chain.infra.store import WriteOp
from exposure_chain.services.batching import PushBatchResult
from exposure_chain.services.context import InvocationContext
from exposure_chain.services.push_messages import build_push, flush_pushes


@dataclass
class MaterializationResult:
    written: int = 0
    failed_recipients: list[str] = field(default_factory=list)
    skipped_recipients: list[str] = field(default_factory=list)
    notification_ids: dict[str, str] = field(default_factory=dict)
    pushes: PushBatchResult = field(default_factory=PushBatchResult)


def build_display_chain(
    path: tuple[str, ...],
    edges: tuple[ContactHit, ...],
    *,
    test_date: int | None,
    level: DisclosureLevel,
) -> list[ChainNode]:
    """Nodes shown to the recipient at the end of ``path``.

    ``edges[i]`` is the contact in which ``path[i + 1]`` recorded ``path[i]``.
    Only the direct upstream contact keeps the name the recipient saved;
    everyone further up is anonymous.
    """
    show_date = level.discloses_date()
    last = len(path) - 1
    nodes: list[ChainNode] = []
    for i in range(last):
        username = CHAIN_SOMEONE
        if i == last - 1 and edges[i].username_snapshot:
            username = edges[i].username_snapshot
        if i == 0:
            status, date = NodeStatus.POSITIVE, test_date
        else:
            status, date = NodeStatus.UNKNOWN, edges[i].recorded_at
        nodes.append(ChainNode(username=username, test_status=status, date=date if show_date else None))
    nodes.append(
        ChainNode(
            username=CHAIN_YOU,
            test_status=NodeStatus.UNKNOWN,
            date=edges[-1].recorded_at if show_date and edges else None,
            is_current_user=True,
        )
    )
    return nodes


class NotificationMaterializer:
    """Turns deduplicated traversal results into notification writes and pushes."""

    def __init__(self, ctx: InvocationContext) -> None:
        self.ctx = ctx

    def build(self, report: Report, entry: RecipientPaths, user: UserRecord) -> Notification:
        level = report.disclosure_level or DisclosureLevel.ANONYMOUS
        visual_paths = [
            build_display_chain(path, edges, test_date=report.test_date, level=level)
            for path, edges in zip(entry.paths, entry.edges)
        ]
        exposure_date = entry.primary_edges[-1].recorded_at if level.discloses_date() else None
        return Notification(
            id=notification_doc_id(report.id, user.notification_id),
            recipient_id=user.notification_id,
            report_id=report.id,
            type=NotificationType.EXPOSURE,
            condition_types=list(report.condition_types) if level.discloses_conditions() else None,
            exposure_date=exposure_date,
            chain_path=[chain_hash(n) for n in entry.primary],
            chain_paths=[[chain_hash(n) for n in p] for p in entry.paths],
            chain_data=ChainVisualization(nodes=visual_paths[entry.primary_index], paths=visual_paths),
            received_at=self.ctx.now,
            updated_at=self.ctx.now,
        )

    async def _user_for(self, contact_id: str) -> UserRecord | None:
        if self.ctx.user_cache.has(contact_id):
            return self.ctx.user_cache.get(contact_id)
        user = await self.ctx.users.by_contact_id(contact_id)
        self.ctx.user_cache.set(contact_id, user)
        return user

    async def materialize(self, report: Report, recipients: Iterable[RecipientPaths]) -> MaterializationResult:
        result = MaterializationResult()
        writer = self.ctx.new_writer()
        built: dict[str, tuple[Notification, UserRecord]] = {}

        for entry in recipients:
            user = await self._user_for(entry.recipient_id)
            if user is None or not user.notification_id:
                result.skipped_recipients.append(entry.recipient_id)
                continue
            notification = self.build(report, entry, user)
            built[entry.recipient_id] = (notification, user)
            writer.add(
                WriteOp.set(COLLECTION_NOTIFICATIONS, notification.id, notification.to_doc()),
                key=entry.recipient_id,
            )

        if writer.is_empty:
            return result

        batch = await writer.commit()
        result.written = batch.success_count
        result.failed_recipients = sorted(batch.failed_keys())
        result.notification_ids = batch.created_id_map()

        pushes = self.ctx.new_push_batcher()
        owners: dict[str, UserRecord] = {}
        for contact_id in result.notification_ids:
            notification, user = built[contact_id]
            if not user.push_token:
                continue
            owners[user.push_token] = user
            pushes.add(
                build_push(
                    NotificationType.EXPOSURE,
                    token=user.push_token,
                    notification_id=notification.id,
                    condition_types=notification.condition_types,
                )
            )
        result.pushes = await flush_pushes(pushes, owners, self.ctx.users, self.ctx.log)

        self.ctx.log.info(
            "notifications_materialized",
            written=result.written,
            failed=len(result.failed_recipients),
            skipped=len(result.skipped_recipients),
            pushes_sent=result.pushes.success_count,
        )
        return result
