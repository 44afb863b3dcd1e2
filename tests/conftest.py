from __future__ import annotations

from typing import Any

import pytest

from topic_client.app.domain.models import BrokerConfiguration
from tests.fakes import FakeTransport, Recorder


@pytest.fixture()
def mq_connection() -> dict[str, Any]:
    """Connection settings in the shape other AMQP clients use (camelCase, extra keys)."""
    return {
        "topic": "#",
        "protocol": "amqp",
        "hostname": "notif-rabbitmq0.pillar.phz",
        "port": 5672,
        "username": "notifications",
        "password": "plokij",
        "locale": "en_US",
        "frameMax": 0,
        "heartbeat": 1,
        "vhost": "notifications",
        "exchange": {
            "name": "pillar",
            "type": "topic",
        },
    }


@pytest.fixture()
def configuration(mq_connection: dict[str, Any]) -> BrokerConfiguration:
    return BrokerConfiguration.model_validate(mq_connection)


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def recorder() -> Recorder:
    return Recorder()
