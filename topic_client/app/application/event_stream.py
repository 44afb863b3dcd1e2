"""Fan-out event stream for client lifecycle, delivery and error events.

Listeners are plain callables or coroutine functions. They run in subscription
order, kind-specific listeners first, then wildcard listeners. A listener that
raises is logged and skipped; emit() itself never raises.
"""
from __future__ import annotations

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from topic_client.app.constants import EventKind
from topic_client.app.core import SERVICE_NAME
from topic_client.app.domain.events import ClientEvent, Failure

Listener = Callable[[Any], Union[Awaitable[None], None]]


class EventStream:
    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[Listener]] = defaultdict(list)
        self._wildcard: list[Listener] = []

    def on(self, kind: EventKind | str, listener: Listener) -> Callable[[], None]:
        """Subscribe listener to one kind. Returns a callable that unsubscribes it."""
        event_kind = EventKind(kind)
        self._listeners[event_kind].append(listener)
        return lambda: self.off(event_kind, listener)

    def subscribe_all(self, listener: Listener) -> Callable[[], None]:
        self._wildcard.append(listener)
        return lambda: self._remove(self._wildcard, listener)

    def off(self, kind: EventKind | str, listener: Listener) -> None:
        self._remove(self._listeners[EventKind(kind)], listener)

    def has_listeners(self, kind: EventKind | str) -> bool:
        return bool(self._listeners.get(EventKind(kind)) or self._wildcard)

    def listener_count(self, kind: EventKind | str) -> int:
        return len(self._listeners.get(EventKind(kind), [])) + len(self._wildcard)

    async def emit(self, event: ClientEvent) -> int:
        """Deliver event to its listeners. Returns how many listeners ran without error."""
        listeners = list(self._listeners.get(event.kind, [])) + list(self._wildcard)
        if not listeners and isinstance(event, Failure):
            logger.bind(service_name=SERVICE_NAME, event="unhandled_client_error", state=event.state.value).error(
                "no error listener attached: {}", event.description
            )
            return 0

        delivered = 0
        for listener in listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.exception("event listener failed for {} event: {}", event.kind.value, e)
        return delivered

    @staticmethod
    def _remove(listeners: list[Listener], listener: Listener) -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass
