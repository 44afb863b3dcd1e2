"""Composition root: wire a BrokerClient to a concrete transport.

Composition may import concrete classes and call factories; the client itself
only sees the transport port.
"""
from __future__ import annotations

from typing import Any, Mapping

from topic_client.app.application.broker_client import BrokerClient
from topic_client.app.application.event_stream import EventStream
from topic_client.app.config.settings import Settings
from topic_client.app.domain.models import BrokerConfiguration, ClientOptions
from topic_client.app.infrastructure.messaging.factory import create_transport
from topic_client.app.ports.broker_transport import BrokerTransport


def create_broker_client(
    configuration: BrokerConfiguration | Mapping[str, Any] | None,
    topic: str,
    options: ClientOptions | None = None,
    *,
    transport: BrokerTransport | None = None,
    backend: str = "rabbitmq",
    events: EventStream | None = None,
) -> BrokerClient:
    """Build a client. Must be called with an event loop running; setup starts immediately."""
    return BrokerClient(
        configuration,
        topic,
        options,
        transport=transport or create_transport(backend),
        events=events,
    )


def create_broker_client_from_settings(
    settings: Settings | None = None,
    *,
    events: EventStream | None = None,
) -> BrokerClient:
    settings = settings or Settings()
    return create_broker_client(
        settings.broker_configuration(),
        settings.topic,
        settings.client_options(),
        backend=settings.transport_backend,
        events=events,
    )
