from __future__ import annotations

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable


EventHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class InMemoryEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    async def publish(self, envelope: dict[str, Any]) -> None:
        event_type = envelope["event_type"]
        # Exact subscribers first, then wildcard.
        handlers = [*self._subscribers.get(event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            outcome = handler(envelope)
            if inspect.isawaitable(outcome):
                await outcome
