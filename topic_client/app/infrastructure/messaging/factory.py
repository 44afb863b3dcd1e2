"""Transport factory: selects implementation from config. Only place that imports concrete transports."""
from __future__ import annotations

from topic_client.app.infrastructure.messaging.inmemory.in_memory_transport import InMemoryTransport
from topic_client.app.infrastructure.messaging.rabbitmq.aio_pika_transport import AioPikaTransport
from topic_client.app.ports.broker_transport import BrokerTransport


def create_transport(backend: str = "rabbitmq") -> BrokerTransport:
    backend = backend.strip().lower()

    if backend == "rabbitmq":
        return AioPikaTransport()

    if backend == "inmemory":
        return InMemoryTransport()

    raise ValueError(f"Unsupported transport backend: {backend}")
