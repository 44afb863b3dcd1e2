"""Events emitted by a BrokerClient.

Each variant carries the EventKind it is published under, so listeners can
subscribe by kind (connected/system/message/error) or to everything.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Union

from topic_client.app.constants import ClientState, EventKind
from topic_client.app.domain.models import InboundDelivery, QueueDeclaration


@dataclass(frozen=True)
class Connected:
    kind: ClassVar[EventKind] = EventKind.CONNECTED

    hostname: str
    port: int
    vhost: str


@dataclass(frozen=True)
class Ready:
    """Exchange and queue declared and bound; carries the queue assertion result."""

    kind: ClassVar[EventKind] = EventKind.SYSTEM

    result: QueueDeclaration


@dataclass(frozen=True)
class Published:
    kind: ClassVar[EventKind] = EventKind.SYSTEM

    push_result: Any
    message: Any


@dataclass(frozen=True)
class Delivery(InboundDelivery):
    """An inbound delivery with its parsed payload in `message`."""

    kind: ClassVar[EventKind] = EventKind.MESSAGE

    message: Any = None

    @classmethod
    def from_inbound(cls, inbound: InboundDelivery, message: Any) -> "Delivery":
        values = {f.name: getattr(inbound, f.name) for f in fields(InboundDelivery)}
        return cls(**values, message=message)


@dataclass(frozen=True)
class Failure:
    """Something went wrong; `state` is where the client was when it happened."""

    kind: ClassVar[EventKind] = EventKind.ERROR

    error: BaseException
    state: ClientState
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def description(self) -> str:
        return str(self.error) or type(self.error).__name__


ClientEvent = Union[Connected, Ready, Published, Delivery, Failure]
