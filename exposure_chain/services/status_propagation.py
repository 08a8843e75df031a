"""Status changes for nodes inside already materialized chains.

A later test result by someone on a chain flips that person's node in every
notification whose chain path contains them. Nothing here ever creates a
notification document, and applying the same change twice is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable

from exposure_chain.chains.paths import parse_chain_paths
from exposure_chain.domain.conditions import conditions_match, overlapping_conditions, parse_condition_types
from exposure_chain.domain.hashing import chain_hash
from exposure_chain.domain.models import COLLECTION_NOTIFICATIONS, ChainNode, ChainVisualization, UserRecord
from exposure_chain.domain.states import NodeStatus, NotificationType
from exposure_chain.infra.store import WriteOp, where
from exposure_chain.services.context import InvocationContext
from exposure_chain.services.push_messages import build_push, flush_pushes

NodeTransform = Callable[[ChainNode], ChainNode]


@dataclass
class PropagationOutcome:
    updated: int = 0
    failed: int = 0
    pushes_sent: int = 0
    recipients: set[str] = field(default_factory=set)


def _set_status(status: NodeStatus, tested_positive_for: list[str] | None = None) -> NodeTransform:
    def apply(node: ChainNode) -> ChainNode:
        if tested_positive_for is None:
            return replace(node, test_status=status)
        return replace(node, test_status=status, tested_positive_for=list(tested_positive_for))

    return apply


def _revert_negative(node: ChainNode) -> ChainNode:
    if node.test_status is NodeStatus.NEGATIVE:
        return replace(node, test_status=NodeStatus.UNKNOWN)
    return node


class ChainStatusPropagator:
    def __init__(self, ctx: InvocationContext) -> None:
        self.ctx = ctx

    def _load_visualization(self, doc: dict[str, Any]) -> ChainVisualization | None:
        doc_id = doc.get("id")
        try:
            vis = ChainVisualization.from_dict(doc.get("chain_data"))
        except (ValueError, TypeError) as exc:
            self.ctx.log.error("chain_data_invalid", notification_id=doc_id, error=str(exc))
            return None
        if len(vis.nodes) != len(doc.get("chain_path") or []):
            self.ctx.log.error(
                "chain_data_misaligned",
                notification_id=doc_id,
                nodes=len(vis.nodes),
                chain_path=len(doc.get("chain_path") or []),
            )
            return None
        return vis

    @staticmethod
    def _apply_to_member(
        doc: dict[str, Any],
        vis: ChainVisualization,
        member: str,
        transform: NodeTransform,
    ) -> bool:
        chain_path = list(doc.get("chain_path") or [])
        chain_paths = parse_chain_paths(doc.get("chain_paths"), [chain_path])
        changed = False

        for i, node in enumerate(vis.nodes):
            if chain_path[i] == member:
                updated = transform(node)
                changed = changed or updated != node
                vis.nodes[i] = updated

        for p_idx, nodes in enumerate(vis.paths):
            ids = chain_paths[p_idx] if p_idx < len(chain_paths) else chain_path
            for i, node in enumerate(nodes):
                if i < len(ids) and ids[i] == member:
                    updated = transform(node)
                    changed = changed or updated != node
                    nodes[i] = updated
        return changed

    @staticmethod
    def _apply_to_current_user(vis: ChainVisualization, transform: NodeTransform) -> bool:
        changed = False
        for nodes in [vis.nodes, *vis.paths]:
            for i, node in enumerate(nodes):
                if node.is_current_user:
                    updated = transform(node)
                    changed = changed or updated != node
                    nodes[i] = updated
        return changed

    async def _containing(self, member: str) -> list[dict[str, Any]]:
        return await self.ctx.retry.execute(
            lambda: self.ctx.store.query(COLLECTION_NOTIFICATIONS, [where("chain_path", "array_contains", member)]),
            label="notifications.by_chain_member",
        )

    async def _update_members(
        self,
        contact_id: str,
        condition_types: Any,
        transform_for: Callable[[dict[str, Any]], NodeTransform],
        *,
        extra_fields: dict[str, Any] | None = None,
        notify_all: bool = False,
    ) -> PropagationOutcome:
        member = chain_hash(contact_id)
        outcome = PropagationOutcome()
        writer = self.ctx.new_writer()
        to_notify: dict[str, str] = {}

        for doc in await self._containing(member):
            if not conditions_match(doc.get("condition_types"), condition_types):
                continue
            vis = self._load_visualization(doc)
            if vis is None:
                continue
            if not self._apply_to_member(doc, vis, member, transform_for(doc)):
                continue
            writer.add(
                WriteOp.update(
                    COLLECTION_NOTIFICATIONS,
                    doc["id"],
                    {"chain_data": vis.to_dict(), "updated_at": self.ctx.now, **(extra_fields or {})},
                ),
                key=doc["id"],
            )
            position = doc["chain_path"].index(member)
            # Intermediaries changed; the reporter and recipient ends do not warrant a push.
            if notify_all or 0 < position < len(doc["chain_path"]) - 1:
                to_notify[doc["id"]] = str(doc.get("recipient_id") or "")

        if writer.is_empty:
            return outcome

        batch = await writer.commit()
        outcome.updated = batch.success_count
        outcome.failed = batch.failure_count
        written = batch.succeeded_keys()
        notify = {doc_id: rid for doc_id, rid in to_notify.items() if doc_id in written}
        outcome.recipients = {rid for doc_id, rid in to_notify.items() if doc_id in written and rid}
        outcome.pushes_sent = await self._push_updates(notify)
        return outcome

    async def _push_updates(self, notification_recipients: dict[str, str]) -> int:
        if not notification_recipients:
            return 0
        users = await self.ctx.users.by_notification_ids(set(notification_recipients.values()))
        pushes = self.ctx.new_push_batcher()
        owners: dict[str, UserRecord] = {}
        for doc_id, recipient_id in notification_recipients.items():
            user = users.get(recipient_id)
            if user is None or not user.push_token:
                continue
            owners[user.push_token] = user
            pushes.add(build_push(NotificationType.UPDATE, token=user.push_token, notification_id=doc_id))
        result = await flush_pushes(pushes, owners, self.ctx.users, self.ctx.log)
        return result.success_count

    async def propagate_negative(self, contact_id: str, condition_types: Any = None) -> PropagationOutcome:
        outcome = await self._update_members(
            contact_id,
            condition_types,
            lambda _doc: _set_status(NodeStatus.NEGATIVE),
        )
        self.ctx.log.info("negative_status_propagated", updated=outcome.updated, pushes=outcome.pushes_sent)
        return outcome

    async def propagate_positive(self, contact_id: str, condition_types: Any) -> PropagationOutcome:
        reported = parse_condition_types(condition_types)

        def transform_for(doc: dict[str, Any]) -> NodeTransform:
            notified = parse_condition_types(doc.get("condition_types"))
            overlap = overlapping_conditions(notified, reported) if notified and reported else []
            return _set_status(NodeStatus.POSITIVE, overlap)

        outcome = await self._update_members(contact_id, reported, transform_for)
        self.ctx.log.info("positive_status_propagated", updated=outcome.updated, pushes=outcome.pushes_sent)
        return outcome

    async def revert_negative(self, contact_id: str) -> PropagationOutcome:
        """Undo a retracted negative result; every affected recipient is told."""
        outcome = await self._update_members(
            contact_id,
            None,
            lambda _doc: _revert_negative,
            extra_fields={"is_read": False},
            notify_all=True,
        )
        self.ctx.log.info("negative_status_reverted", updated=outcome.updated, pushes=outcome.pushes_sent)
        return outcome

    async def mark_reporter_notifications(self, notification_recipient_id: str, condition_types: Any) -> int:
        """Show the reporter as POSITIVE in the chains they themselves received."""
        reported = parse_condition_types(condition_types)
        docs = await self.ctx.retry.execute(
            lambda: self.ctx.store.query(
                COLLECTION_NOTIFICATIONS,
                [where("recipient_id", "==", notification_recipient_id)],
            ),
            label="notifications.by_recipient",
        )
        writer = self.ctx.new_writer()
        for doc in docs:
            notified = parse_condition_types(doc.get("condition_types"))
            overlap = overlapping_conditions(notified, reported) if notified else []
            if notified and not overlap:
                continue
            vis = self._load_visualization(doc)
            if vis is None:
                continue
            if not self._apply_to_current_user(vis, _set_status(NodeStatus.POSITIVE, overlap)):
                continue
            writer.add(
                WriteOp.update(
                    COLLECTION_NOTIFICATIONS,
                    doc["id"],
                    {"chain_data": vis.to_dict(), "updated_at": self.ctx.now},
                )
            )
        if writer.is_empty:
            return 0
        return (await writer.commit()).success_count

    async def mark_target_negative(self, notification_id: str) -> bool:
        doc = await self.ctx.retry.execute(
            lambda: self.ctx.store.get(COLLECTION_NOTIFICATIONS, notification_id),
            label="notifications.get",
        )
        if doc is None:
            self.ctx.log.warning("target_notification_missing", notification_id=notification_id)
            return False
        vis = self._load_visualization(doc)
        if vis is None or not self._apply_to_current_user(vis, _set_status(NodeStatus.NEGATIVE)):
            return False
        await self.ctx.retry.execute(
            lambda: self.ctx.store.update(
                COLLECTION_NOTIFICATIONS,
                notification_id,
                {"chain_data": vis.to_dict(), "updated_at": self.ctx.now},
            ),
            label="notifications.update",
        )
        return True
