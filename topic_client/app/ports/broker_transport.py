"""Port: broker transport contract. Implementations live in infrastructure.

Mirrors the operations an AMQP driver offers: connect, create a channel,
declare exchange and queue, bind, consume, ack and publish. Error signals are
delivered through plain callbacks registered with on_error().
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from topic_client.app.domain.models import BrokerConfiguration, InboundDelivery, QueueDeclaration

ErrorHandler = Callable[[BaseException], None]
DeliveryCallback = Callable[[InboundDelivery], Awaitable[None]]


class BrokerChannel(Protocol):
    def on_error(self, handler: ErrorHandler) -> None: ...

    async def assert_exchange(self, name: str, exchange_type: str) -> None: ...

    async def assert_queue(self, name: str) -> QueueDeclaration: ...

    async def bind_queue(self, queue: str, exchange: str, routing_key: str) -> None: ...

    async def consume(self, queue: str, callback: DeliveryCallback) -> str:
        """Subscribe callback to queue. Returns consumer tag for cancellation."""
        ...

    async def ack(self, delivery: InboundDelivery) -> None: ...

    async def publish(self, exchange: str, routing_key: str, body: bytes) -> Any:
        """Publish body; returns the driver's acceptance indicator."""
        ...

    async def cancel(self, consumer_tag: str) -> None: ...

    async def close(self) -> None: ...


class BrokerConnection(Protocol):
    def on_error(self, handler: ErrorHandler) -> None: ...

    async def create_channel(self) -> BrokerChannel: ...

    async def close(self) -> None: ...


class BrokerTransport(Protocol):
    async def connect(self, configuration: BrokerConfiguration) -> BrokerConnection: ...
