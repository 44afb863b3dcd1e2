"""
RabbitMQ transport on aio_pika.

Uses a plain (non-robust) connection: when the broker drops the connection the
close callback reports the error and nothing reconnects.
"""
from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlencode

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
)
from loguru import logger

from topic_client.app.core import SERVICE_NAME
from topic_client.app.domain.errors import AcknowledgeError
from topic_client.app.domain.models import BrokerConfiguration, InboundDelivery, QueueDeclaration
from topic_client.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import to_inbound_delivery
from topic_client.app.ports.broker_transport import DeliveryCallback, ErrorHandler


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_amqp_url(configuration: BrokerConfiguration) -> str:
    # explicit zeroes are kept: heartbeat=0 disables heartbeats. locale has no
    # aio-pika URL parameter and stays on the configuration only.
    query: dict[str, Any] = {
        key: getattr(configuration, key)
        for key in ("heartbeat", "frame_max")
        if key in configuration.model_fields_set
    }
    url = (
        f"{configuration.protocol}://{quote(configuration.username, safe='')}:"
        f"{quote(configuration.password, safe='')}"
        f"@{configuration.hostname}:{configuration.port}/{quote(configuration.vhost, safe='')}"
    )
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def _exchange_type(name: str) -> ExchangeType | str:
    try:
        return ExchangeType(name)
    except ValueError:
        # plugin exchange types (e.g. x-delayed-message) go through as strings
        return name


def _register_close_callback(target: Any, handler: ErrorHandler) -> None:
    def on_close(sender: Any, exc: BaseException | None = None, *args: Any) -> None:
        if exc is not None:
            handler(exc)

    callbacks = getattr(target, "close_callbacks", None)
    if callbacks is not None and callable(getattr(callbacks, "add", None)):
        callbacks.add(on_close)
    elif callable(getattr(target, "add_close_callback", None)):
        target.add_close_callback(on_close)


class AioPikaChannel:
    """BrokerChannel implementation over an aio_pika channel."""

    def __init__(self, channel: AbstractChannel) -> None:
        self._channel = channel
        self._exchanges: dict[str, AbstractExchange] = {}
        self._queues: dict[str, AbstractQueue] = {}
        self._consumers: dict[str, AbstractQueue] = {}

    def on_error(self, handler: ErrorHandler) -> None:
        _register_close_callback(self._channel, handler)

    async def assert_exchange(self, name: str, exchange_type: str) -> None:
        self._exchanges[name] = await self._channel.declare_exchange(
            name, _exchange_type(exchange_type), durable=True
        )

    async def assert_queue(self, name: str) -> QueueDeclaration:
        queue = await self._channel.declare_queue(name, durable=True)
        self._queues[queue.name] = queue
        # an empty name is filled in by the broker
        self._queues.setdefault(name, queue)
        declared = getattr(queue, "declaration_result", None)
        return QueueDeclaration(
            queue=queue.name,
            message_count=int(getattr(declared, "message_count", 0) or 0),
            consumer_count=int(getattr(declared, "consumer_count", 0) or 0),
        )

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        await self._queue(queue).bind(self._exchanges.get(exchange, exchange), routing_key=routing_key)

    async def consume(self, queue: str, callback: DeliveryCallback) -> str:
        async def on_message(message: AbstractIncomingMessage) -> None:
            await callback(to_inbound_delivery(message))

        target = self._queue(queue)
        consumer_tag = await target.consume(on_message, no_ack=False)
        self._consumers[consumer_tag] = target
        return consumer_tag

    async def ack(self, delivery: InboundDelivery) -> None:
        if delivery.raw is None:
            raise AcknowledgeError(f"delivery {delivery.delivery_tag} has no broker handle")
        await delivery.raw.ack()

    async def publish(self, exchange: str, routing_key: str, body: bytes) -> Any:
        target = await self._exchange(exchange)
        return await target.publish(Message(body), routing_key=routing_key)

    async def cancel(self, consumer_tag: str) -> None:
        queue = self._consumers.pop(consumer_tag, None)
        if queue is not None:
            await queue.cancel(consumer_tag)

    async def close(self) -> None:
        if not self._channel.is_closed:
            await self._channel.close()

    def _queue(self, name: str) -> AbstractQueue:
        try:
            return self._queues[name]
        except KeyError:
            raise LookupError(f"queue {name!r} was not declared on this channel") from None

    async def _exchange(self, name: str) -> AbstractExchange:
        if not name:
            return self._channel.default_exchange
        if name not in self._exchanges:
            self._exchanges[name] = await self._channel.get_exchange(name, ensure=False)
        return self._exchanges[name]


class AioPikaConnection:
    """BrokerConnection implementation over an aio_pika connection."""

    def __init__(self, connection: AbstractConnection) -> None:
        self._connection = connection

    def on_error(self, handler: ErrorHandler) -> None:
        _register_close_callback(self._connection, handler)

    async def create_channel(self) -> AioPikaChannel:
        channel = await self._connection.channel()
        return AioPikaChannel(channel)

    async def close(self) -> None:
        if not self._connection.is_closed:
            await self._connection.close()


class AioPikaTransport:
    """BrokerTransport implementation: one aio_pika connection per connect()."""

    async def connect(self, configuration: BrokerConfiguration) -> AioPikaConnection:
        _log("rmq_connect_attempt", hostname=configuration.hostname, port=configuration.port)
        connection = await aio_pika.connect(build_amqp_url(configuration))
        return AioPikaConnection(connection)
