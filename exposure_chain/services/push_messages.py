from __future__ import annotations

from typing import Iterable, assert_never

import structlog

from exposure_chain.chains.users import UserDirectory
from exposure_chain.domain.models import UserRecord
from exposure_chain.domain.states import NotificationType
from exposure_chain.infra.push import PushMessage
from exposure_chain.infra.retry import MaxRetriesExceeded
from exposure_chain.infra.store import StoreError
from exposure_chain.services.batching import PushBatcher, PushBatchResult


def build_push(
    kind: NotificationType,
    *,
    token: str,
    notification_id: str,
    condition_types: Iterable[str] | None = None,
) -> PushMessage:
    data: dict[str, str] = {}
    if kind is NotificationType.EXPOSURE:
        title, body = "notification_exposure_title", "notification_exposure_body"
        if condition_types:
            data["conditions"] = ",".join(condition_types)
    elif kind is NotificationType.UPDATE:
        title, body = "notification_update_title", "notification_update_body"
    elif kind is NotificationType.REPORT_DELETED:
        title, body = "notification_report_deleted_title", "notification_report_deleted_body"
    else:
        assert_never(kind)
    return PushMessage(
        token=token,
        notification_id=notification_id,
        type=kind,
        title_loc_key=title,
        body_loc_key=body,
        data=data,
    )


async def flush_pushes(
    batcher: PushBatcher,
    owners: dict[str, UserRecord],
    users: UserDirectory,
    log: structlog.stdlib.BoundLogger,
) -> PushBatchResult:
    """Send queued pushes and clear tokens the provider reports as dead."""
    result = await batcher.send()
    for token in result.invalid_tokens:
        user = owners.get(token)
        if user is None:
            continue
        try:
            await users.clear_push_token(user)
        except (MaxRetriesExceeded, StoreError) as exc:
            log.warning("push_token_clear_failed", user_doc=user.id, error=str(exc))
    return result
