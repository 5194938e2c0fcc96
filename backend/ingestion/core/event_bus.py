from __future__ import annotations

"""In-process typed publish/subscribe.

Handlers subscribe to an event class. A failing handler is logged and does not
prevent the remaining handlers from running, nor does it fail the publisher.
"""

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Protocol, Union

logger = logging.getLogger("coinlens.ingestion.events")

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventPublisher(Protocol):
    async def publish(self, event: Any) -> None:
        ...


class InProcessEventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, ()))

    async def publish(self, event: Any) -> None:
        for handler in self.handlers_for(type(event)):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__qualname__", repr(handler)),
                    type(event).__name__,
                )

