from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import requests

from exposure_chain.config import PROVIDER_BATCH_CEILING, Settings, settings
from exposure_chain.domain.states import NotificationType
from exposure_chain.infra.logging import get_logger

logger = get_logger(__name__)

ANDROID_CHANNEL_ID = "exposure_notifications"
INVALID_TOKEN_ERRORS = {"invalid-registration-token", "registration-token-not-registered"}


class PushDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class PushMessage:
    token: str
    notification_id: str
    type: NotificationType
    title_loc_key: str
    body_loc_key: str
    data: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "channel_id": ANDROID_CHANNEL_ID,
            "title_loc_key": self.title_loc_key,
            "body_loc_key": self.body_loc_key,
            "data": {
                "type": self.type.value,
                "notificationId": self.notification_id,
                **self.data,
            },
        }


@dataclass(frozen=True)
class PushSendResult:
    success: bool
    error: str | None = None

    @property
    def invalid_token(self) -> bool:
        return not self.success and (self.error or "").removeprefix("messaging/") in INVALID_TOKEN_ERRORS


class PushGateway:
    async def send_batch(self, messages: list[PushMessage]) -> list[PushSendResult]:
        """Send up to 500 messages; one result per message, same order."""
        raise NotImplementedError


class InMemoryPushGateway(PushGateway):
    def __init__(self, invalid_tokens: set[str] | None = None) -> None:
        self.invalid_tokens = set(invalid_tokens or ())
        self.sent: list[PushMessage] = []
        self.calls: list[int] = []

    async def send_batch(self, messages: list[PushMessage]) -> list[PushSendResult]:
        if len(messages) > PROVIDER_BATCH_CEILING:
            raise PushDeliveryError(f"Multicast of {len(messages)} exceeds {PROVIDER_BATCH_CEILING}")
        self.calls.append(len(messages))
        results: list[PushSendResult] = []
        for message in messages:
            if message.token in self.invalid_tokens:
                results.append(PushSendResult(False, "registration-token-not-registered"))
                continue
            self.sent.append(message)
            results.append(PushSendResult(True))
        return results


class HttpPushGateway(PushGateway):
    """Posts batches to a push relay that fans out to the platform services."""

    def __init__(self, *, endpoint: str, api_key: str, timeout: float = 10.0) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        res = requests.post(
            f"{self.endpoint}/send",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        if res.status_code >= 400:
            raise PushDeliveryError(f"Push relay error [{res.status_code}] {res.text[:300]}")
        try:
            body = res.json()
        except ValueError as exc:
            raise PushDeliveryError("Push relay returned non-JSON body") from exc
        results = body.get("results") if isinstance(body, dict) else None
        return results if isinstance(results, list) else []

    async def send_batch(self, messages: list[PushMessage]) -> list[PushSendResult]:
        if not messages:
            return []
        try:
            raw = await asyncio.to_thread(self._post, {"messages": [m.to_payload() for m in messages]})
        except requests.RequestException as exc:
            raise PushDeliveryError(f"Push relay unreachable: {exc}") from exc
        results = [PushSendResult(bool(r.get("success")), r.get("error")) for r in raw]
        # Missing trailing results count as failures.
        results.extend(PushSendResult(False, "missing-result") for _ in range(len(messages) - len(results)))
        return results[: len(messages)]


def build_push_gateway(config: Settings | None = None) -> PushGateway:
    config = config or settings
    if config.push_backend == "http":
        if not config.push_endpoint:
            logger.warning("push_fallback_memory", reason="PUSH_ENDPOINT missing")
            return InMemoryPushGateway()
        return HttpPushGateway(
            endpoint=config.push_endpoint,
            api_key=config.push_api_key,
            timeout=config.push_timeout_seconds,
        )
    return InMemoryPushGateway()
