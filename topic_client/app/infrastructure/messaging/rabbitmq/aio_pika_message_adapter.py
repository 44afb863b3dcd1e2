"""Adapter: turn aio_pika.IncomingMessage into the transport-agnostic InboundDelivery."""
from __future__ import annotations

from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from topic_client.app.domain.models import InboundDelivery


def to_inbound_delivery(message: AbstractIncomingMessage) -> InboundDelivery:
    properties: dict[str, Any] = {
        key: value
        for key, value in message.info().items()
        if value is not None and key not in ("headers", "routing_key", "exchange", "delivery_tag", "redelivered")
    }
    return InboundDelivery(
        body=message.body,
        delivery_tag=message.delivery_tag,
        routing_key=message.routing_key,
        exchange=message.exchange,
        redelivered=bool(message.redelivered),
        content_type=message.content_type,
        headers=dict(message.headers or {}),
        properties=properties,
        raw=message,
    )
