"""In-memory broker transport for local mode and tests.

Models just enough of an AMQP broker for a BrokerClient: typed exchanges,
queues, bindings with direct/fanout/topic routing, push delivery to consumers
and ack bookkeeping. Unacknowledged deliveries go back to their queue when the
channel closes. Clients sharing one InMemoryTransport share one broker.
"""
from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field

from loguru import logger

from topic_client.app.domain.models import BrokerConfiguration, InboundDelivery, QueueDeclaration
from topic_client.app.ports.broker_transport import DeliveryCallback, ErrorHandler


class InMemoryBrokerError(Exception):
    """Raised where a real broker would close the channel with an error."""


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic matching: `*` is exactly one word, `#` is zero or more words."""
    return _match_words(pattern.split("."), routing_key.split("."))


def _match_words(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match_words(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match_words(rest, words[1:])
    return False


@dataclass
class _Queue:
    name: str
    messages: deque[InboundDelivery] = field(default_factory=deque)
    consumers: list[tuple[str, DeliveryCallback, "InMemoryChannel"]] = field(default_factory=list)
    _next_consumer: int = 0

    def pick_consumer(self) -> tuple[str, DeliveryCallback, "InMemoryChannel"] | None:
        if not self.consumers:
            return None
        consumer = self.consumers[self._next_consumer % len(self.consumers)]
        self._next_consumer += 1
        return consumer


class InMemoryBroker:
    def __init__(self) -> None:
        self.exchanges: dict[str, str] = {}
        self.queues: dict[str, _Queue] = {}
        self.bindings: list[tuple[str, str, str]] = []
        self._delivery_tags = itertools.count(1)
        self._queue_names = itertools.count(1)
        self._consumer_tags = itertools.count(1)
        self._tasks: set[asyncio.Task[None]] = set()

    def declare_exchange(self, name: str, exchange_type: str) -> None:
        existing = self.exchanges.get(name)
        if existing is not None and existing != exchange_type:
            raise InMemoryBrokerError(
                f"PRECONDITION_FAILED - inequivalent arg 'type' for exchange '{name}': "
                f"received '{exchange_type}' but current is '{existing}'"
            )
        self.exchanges[name] = exchange_type

    def declare_queue(self, name: str) -> _Queue:
        if not name:
            name = f"amq.gen-{next(self._queue_names)}"
        if name not in self.queues:
            self.queues[name] = _Queue(name=name)
        return self.queues[name]

    def bind(self, queue: str, exchange: str, routing_key: str) -> None:
        if queue not in self.queues:
            raise InMemoryBrokerError(f"NOT_FOUND - no queue '{queue}'")
        if exchange not in self.exchanges:
            raise InMemoryBrokerError(f"NOT_FOUND - no exchange '{exchange}'")
        binding = (queue, exchange, routing_key)
        if binding not in self.bindings:
            self.bindings.append(binding)

    def route(self, exchange: str, routing_key: str) -> list[str]:
        if not exchange:
            return [routing_key] if routing_key in self.queues else []
        exchange_type = self.exchanges.get(exchange)
        if exchange_type is None:
            raise InMemoryBrokerError(f"NOT_FOUND - no exchange '{exchange}'")
        matched: list[str] = []
        for queue, bound_exchange, pattern in self.bindings:
            if bound_exchange != exchange or queue in matched:
                continue
            if exchange_type == "fanout":
                matched.append(queue)
            elif exchange_type == "topic" and topic_matches(pattern, routing_key):
                matched.append(queue)
            elif pattern == routing_key:
                matched.append(queue)
        return matched

    def enqueue(self, queue_name: str, exchange: str, routing_key: str, body: bytes, redelivered: bool = False) -> None:
        self.queues[queue_name].messages.append(
            InboundDelivery(
                body=body,
                delivery_tag=next(self._delivery_tags),
                routing_key=routing_key,
                exchange=exchange,
                redelivered=redelivered,
            )
        )
        self.dispatch(queue_name)

    def new_consumer_tag(self) -> str:
        return f"ctag-{next(self._consumer_tags)}"

    def dispatch(self, queue_name: str) -> None:
        queue = self.queues[queue_name]
        while queue.messages:
            consumer = queue.pick_consumer()
            if consumer is None:
                return
            _, callback, channel = consumer
            delivery = queue.messages.popleft()
            channel.track(queue_name, delivery)
            task = asyncio.get_running_loop().create_task(callback(delivery))
            self._tasks.add(task)
            task.add_done_callback(self._on_delivery_done)

    def _on_delivery_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("in-memory consumer callback failed")

    async def drain(self) -> None:
        """Wait until every in-flight delivery callback has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class InMemoryChannel:
    def __init__(self, broker: InMemoryBroker, connection: "InMemoryConnection") -> None:
        self._broker = broker
        self._connection = connection
        self._error_handlers: list[ErrorHandler] = []
        self._unacked: dict[int, tuple[str, InboundDelivery]] = {}
        self._consumer_tags: set[str] = set()
        self.acked: list[InboundDelivery] = []
        self.closed = False

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def fail(self, error: BaseException) -> None:
        """Simulate the broker closing this channel with an error."""
        self._close_now()
        for handler in list(self._error_handlers):
            handler(error)

    async def assert_exchange(self, name: str, exchange_type: str) -> None:
        self._ensure_open()
        self._broker.declare_exchange(name, exchange_type)

    async def assert_queue(self, name: str) -> QueueDeclaration:
        self._ensure_open()
        queue = self._broker.declare_queue(name)
        return QueueDeclaration(
            queue=queue.name,
            message_count=len(queue.messages),
            consumer_count=len(queue.consumers),
        )

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None:
        self._ensure_open()
        self._broker.bind(queue, exchange, routing_key)

    async def consume(self, queue: str, callback: DeliveryCallback) -> str:
        self._ensure_open()
        if queue not in self._broker.queues:
            raise InMemoryBrokerError(f"NOT_FOUND - no queue '{queue}'")
        consumer_tag = self._broker.new_consumer_tag()
        self._broker.queues[queue].consumers.append((consumer_tag, callback, self))
        self._consumer_tags.add(consumer_tag)
        self._broker.dispatch(queue)
        return consumer_tag

    async def ack(self, delivery: InboundDelivery) -> None:
        self._ensure_open()
        if delivery.delivery_tag not in self._unacked:
            raise InMemoryBrokerError(f"PRECONDITION_FAILED - unknown delivery tag {delivery.delivery_tag}")
        _, tracked = self._unacked.pop(delivery.delivery_tag)
        self.acked.append(tracked)

    async def publish(self, exchange: str, routing_key: str, body: bytes) -> bool:
        self._ensure_open()
        for queue in self._broker.route(exchange, routing_key):
            self._broker.enqueue(queue, exchange, routing_key, body)
        return True

    async def cancel(self, consumer_tag: str) -> None:
        for queue in self._broker.queues.values():
            queue.consumers = [c for c in queue.consumers if c[0] != consumer_tag]
        self._consumer_tags.discard(consumer_tag)

    async def close(self) -> None:
        self._close_now()

    def track(self, queue_name: str, delivery: InboundDelivery) -> None:
        self._unacked[delivery.delivery_tag] = (queue_name, delivery)

    @property
    def unacked(self) -> list[InboundDelivery]:
        return [delivery for _, delivery in self._unacked.values()]

    def _ensure_open(self) -> None:
        if self.closed:
            raise InMemoryBrokerError("channel is closed")

    def _close_now(self) -> None:
        if self.closed:
            return
        self.closed = True
        for queue in self._broker.queues.values():
            queue.consumers = [c for c in queue.consumers if c[0] not in self._consumer_tags]
        self._consumer_tags.clear()
        requeued = list(self._unacked.values())
        self._unacked.clear()
        for queue_name, delivery in requeued:
            self._broker.enqueue(queue_name, delivery.exchange or "", delivery.routing_key or "", delivery.body, redelivered=True)
        self._connection.channels.discard(self)


class InMemoryConnection:
    def __init__(self, broker: InMemoryBroker) -> None:
        self._broker = broker
        self._error_handlers: list[ErrorHandler] = []
        self.channels: set[InMemoryChannel] = set()
        self.closed = False

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def fail(self, error: BaseException) -> None:
        """Simulate the broker dropping this connection."""
        self.closed = True
        for channel in list(self.channels):
            channel._close_now()
        for handler in list(self._error_handlers):
            handler(error)

    async def create_channel(self) -> InMemoryChannel:
        if self.closed:
            raise InMemoryBrokerError("connection is closed")
        channel = InMemoryChannel(self._broker, self)
        self.channels.add(channel)
        return channel

    async def close(self) -> None:
        for channel in list(self.channels):
            await channel.close()
        self.closed = True


class InMemoryTransport:
    def __init__(self, broker: InMemoryBroker | None = None) -> None:
        self.broker = broker or InMemoryBroker()
        self.connections: list[InMemoryConnection] = []
        self.configurations: list[BrokerConfiguration] = []

    async def connect(self, configuration: BrokerConfiguration) -> InMemoryConnection:
        self.configurations.append(configuration)
        connection = InMemoryConnection(self.broker)
        self.connections.append(connection)
        return connection

