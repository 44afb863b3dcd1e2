"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from topic_client.app.constants import NO_CONFIGURATION_ERROR
from topic_client.app.domain.errors import ConfigurationError


class ExchangeDescriptor(BaseModel):
    """Exchange the topic queue is bound to."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "topic"


class BrokerConfiguration(BaseModel):
    """Connection parameters handed to the transport as-is.

    Field names follow the broker URL vocabulary; camelCase keys (frameMax) are
    accepted so configuration written for other AMQP clients loads unchanged.
    Unknown keys are kept.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    protocol: str = "amqp"
    hostname: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    vhost: str = "/"
    locale: str = "en_US"
    frame_max: int = Field(0, alias="frameMax")
    heartbeat: int = 0
    exchange: ExchangeDescriptor


def coerce_configuration(configuration: BrokerConfiguration | Mapping[str, Any] | None) -> BrokerConfiguration:
    """Return a BrokerConfiguration or raise ConfigurationError."""
    if not configuration:
        raise ConfigurationError(NO_CONFIGURATION_ERROR)
    if isinstance(configuration, BrokerConfiguration):
        return configuration
    try:
        return BrokerConfiguration.model_validate(dict(configuration))
    except (ValidationError, TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid broker configuration: {e}") from e


@dataclass(frozen=True)
class ClientOptions:
    """Behaviour flags for a BrokerClient."""

    consume: bool = True
    acknowledge: bool = True


@dataclass(frozen=True)
class QueueDeclaration:
    """Result of asserting a queue (value object)."""

    queue: str
    message_count: int = 0
    consumer_count: int = 0


@dataclass(frozen=True)
class InboundDelivery:
    """One message handed to the consumer by the broker, body still raw."""

    body: bytes
    delivery_tag: int | None = None
    routing_key: str | None = None
    exchange: str | None = None
    redelivered: bool = False
    content_type: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    # transport-specific handle used to acknowledge this delivery
    raw: Any = field(default=None, repr=False, compare=False)
