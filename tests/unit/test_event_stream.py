"""Unit tests for EventStream fan-out."""
from __future__ import annotations

import asyncio

import pytest

from topic_client.app.application.event_stream import EventStream
from topic_client.app.constants import ClientState, EventKind
from topic_client.app.domain.events import Failure, Published, Ready
from topic_client.app.domain.models import QueueDeclaration


def _ready() -> Ready:
    return Ready(result=QueueDeclaration(queue="orders"))


def test_emit_runs_kind_listeners_then_wildcard_in_order():
    stream = EventStream()
    order: list[str] = []
    stream.on(EventKind.SYSTEM, lambda e: order.append("first"))
    stream.subscribe_all(lambda e: order.append("wildcard"))
    stream.on("system", lambda e: order.append("second"))

    delivered = asyncio.run(stream.emit(_ready()))

    assert order == ["first", "second", "wildcard"]
    assert delivered == 3


def test_listeners_only_receive_their_kind():
    stream = EventStream()
    system: list[object] = []
    errors: list[object] = []
    stream.on("system", system.append)
    stream.on("error", errors.append)

    asyncio.run(stream.emit(Published(push_result=True, message="x")))

    assert len(system) == 1
    assert errors == []


def test_unsubscribe_and_off():
    stream = EventStream()
    seen: list[object] = []
    unsubscribe = stream.on("system", seen.append)
    unsubscribe_all = stream.subscribe_all(seen.append)

    unsubscribe()
    unsubscribe_all()
    stream.off("system", seen.append)

    assert asyncio.run(stream.emit(_ready())) == 0
    assert seen == []
    assert stream.has_listeners("system") is False


def test_unknown_kind_is_rejected():
    stream = EventStream()
    with pytest.raises(ValueError):
        stream.on("warning", lambda e: None)


def test_async_listener_is_awaited():
    stream = EventStream()
    seen: list[object] = []

    async def listener(event):
        await asyncio.sleep(0)
        seen.append(event)

    stream.on("system", listener)
    event = _ready()
    asyncio.run(stream.emit(event))

    assert seen == [event]


def test_failing_listener_is_isolated():
    stream = EventStream()
    seen: list[object] = []

    def broken(event):
        raise RuntimeError("boom")

    stream.on("system", broken)
    stream.on("system", seen.append)

    delivered = asyncio.run(stream.emit(_ready()))

    assert delivered == 1
    assert len(seen) == 1


def test_failure_without_error_listener_does_not_raise():
    stream = EventStream()
    stream.on("system", lambda e: None)
    failure = Failure(error=RuntimeError("boom"), state=ClientState.CONNECTING)

    assert asyncio.run(stream.emit(failure)) == 0
    assert stream.listener_count("error") == 0
    assert failure.description == "boom"


def test_failure_description_falls_back_to_type_name():
    failure = Failure(error=TimeoutError(), state=ClientState.CONNECTING)
    assert failure.description == "TimeoutError"
