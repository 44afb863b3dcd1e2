"""Unit tests for the consume loop: decode, emit, acknowledge."""
from __future__ import annotations

import json

import pytest

from topic_client.app.application.broker_client import BrokerClient
from topic_client.app.constants import NO_CHANNEL_ERROR, ClientState
from topic_client.app.domain.errors import AcknowledgeError, ChannelNotReadyError, MessageDecodeError
from topic_client.app.domain.events import Delivery
from topic_client.app.domain.models import ClientOptions, InboundDelivery
from tests.fakes import TOPIC, FakeTransport, settle


async def _consuming_client(configuration, transport, options=None) -> BrokerClient:
    client = BrokerClient(configuration, TOPIC, options, transport=transport)
    assert await client.wait_for_setup() == ClientState.CONSUMING
    return client


@pytest.mark.asyncio
async def test_well_formed_delivery_is_emitted_with_parsed_message(configuration, transport, recorder):
    client = await _consuming_client(configuration, transport)
    client.on("message", recorder)

    inbound = await transport.channel.deliver(
        TOPIC,
        json.dumps({"id": 1, "tags": ["a", "b"]}).encode(),
        delivery_tag=7,
        redelivered=True,
        content_type="application/json",
        headers={"x-trace": "abc"},
        properties={"message_id": "m-1"},
    )

    assert len(recorder.events) == 1
    delivery = recorder.events[0]
    assert isinstance(delivery, Delivery)
    assert delivery.message == {"id": 1, "tags": ["a", "b"]}
    assert delivery.body == inbound.body
    assert delivery.delivery_tag == 7
    assert delivery.routing_key == TOPIC
    assert delivery.exchange == "pillar"
    assert delivery.redelivered is True
    assert delivery.content_type == "application/json"
    assert delivery.headers == {"x-trace": "abc"}
    assert delivery.properties == {"message_id": "m-1"}
    assert transport.channel.acked == [inbound]


@pytest.mark.asyncio
async def test_malformed_delivery_emits_decode_error_and_is_acked(configuration, transport, recorder):
    client = await _consuming_client(configuration, transport)
    client.events.subscribe_all(recorder)

    inbound = await transport.channel.deliver(TOPIC, b"not-json")

    assert recorder.of_kind("message") == []
    errors = recorder.of_kind("error")
    assert len(errors) == 1
    assert isinstance(errors[0].error, MessageDecodeError)
    assert isinstance(errors[0].error, ValueError)
    assert errors[0].details == {"delivery_tag": inbound.delivery_tag}
    assert transport.channel.acked == [inbound]
    assert client.state == ClientState.CONSUMING


@pytest.mark.asyncio
async def test_non_utf8_body_is_a_decode_error(configuration, transport, recorder):
    client = await _consuming_client(configuration, transport)
    client.on("error", recorder)

    await transport.channel.deliver(TOPIC, b"\xff\xfe{}")

    assert isinstance(recorder.events[0].error, MessageDecodeError)
    assert len(transport.channel.acked) == 1


@pytest.mark.parametrize("body", [b'{"id": 1}', b"not-json"])
@pytest.mark.asyncio
async def test_acknowledge_disabled_never_acks(configuration, transport, body):
    client = await _consuming_client(configuration, transport, ClientOptions(acknowledge=False))
    client.on("error", lambda failure: None)

    await transport.channel.deliver(TOPIC, body)

    assert transport.channel.acked == []
    assert "ack" not in transport.call_names()


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_ack_or_later_deliveries(configuration, transport, recorder):
    client = await _consuming_client(configuration, transport)

    def explode(delivery):
        raise RuntimeError("listener bug")

    client.on("message", explode)
    client.on("message", recorder)

    first = await transport.channel.deliver(TOPIC, b'{"n": 1}', delivery_tag=1)
    second = await transport.channel.deliver(TOPIC, b'{"n": 2}', delivery_tag=2)

    assert [event.message["n"] for event in recorder.events] == [1, 2]
    assert transport.channel.acked == [first, second]


@pytest.mark.asyncio
async def test_async_listener_runs_before_ack(configuration, transport):
    client = await _consuming_client(configuration, transport)
    seen_before_ack: list[int] = []

    async def on_message(delivery):
        seen_before_ack.append(len(transport.channel.acked))

    client.on("message", on_message)
    await transport.channel.deliver(TOPIC, b"[1, 2, 3]")

    assert seen_before_ack == [0]
    assert len(transport.channel.acked) == 1


@pytest.mark.asyncio
async def test_ack_failure_is_reported_as_error(configuration, recorder):
    transport = FakeTransport(fail_on={"ack": RuntimeError("channel closed")})
    client = await _consuming_client(configuration, transport)
    client.on("error", recorder)

    await transport.channel.deliver(TOPIC, b'{"id": 1}', delivery_tag=3)

    assert len(recorder.events) == 1
    assert isinstance(recorder.events[0].error, AcknowledgeError)
    assert isinstance(recorder.events[0].error.__cause__, RuntimeError)
    assert recorder.events[0].details == {"delivery_tag": 3}


@pytest.mark.asyncio
async def test_ack_after_channel_error_is_reported(configuration, transport, recorder):
    client = await _consuming_client(configuration, transport)
    client.on("error", recorder)
    callback = transport.channel.consumers[TOPIC]

    transport.channel.signal_error(RuntimeError("channel closed by broker"))
    await settle()
    recorder.events.clear()

    await callback(InboundDelivery(body=b'{"late": true}', delivery_tag=9))

    assert len(recorder.events) == 1
    assert isinstance(recorder.events[0].error, AcknowledgeError)
    assert transport.channel.acked == []


@pytest.mark.asyncio
async def test_consume_loop_attached_at_most_once(configuration, transport):
    client = await _consuming_client(configuration, transport)

    first = await client.start_consuming()
    second = await client.start_consuming()

    assert first == second == "ctag-1"
    assert transport.call_names().count("consume") == 1


@pytest.mark.asyncio
async def test_manual_start_when_auto_consume_disabled(configuration, transport, recorder):
    client = BrokerClient(configuration, TOPIC, ClientOptions(consume=False), transport=transport)
    await client.wait_for_setup()
    client.on("message", recorder)

    tag = await client.start_consuming()
    await transport.channel.deliver(TOPIC, b'{"id": 2}')

    assert tag == "ctag-1"
    assert client.state == ClientState.CONSUMING
    assert recorder.events[0].message == {"id": 2}


@pytest.mark.asyncio
async def test_start_consuming_without_channel_emits_error(configuration, recorder):
    transport = FakeTransport(connect_error=ConnectionRefusedError("refused"))
    client = BrokerClient(configuration, TOPIC, ClientOptions(consume=False), transport=transport)
    await client.wait_for_setup()
    client.on("error", recorder)

    assert await client.start_consuming() is None
    assert len(recorder.events) == 1
    assert isinstance(recorder.events[0].error, ChannelNotReadyError)
    assert str(recorder.events[0].error) == NO_CHANNEL_ERROR
    assert "consume" not in transport.call_names()
