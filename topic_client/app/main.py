import asyncio
import signal
from typing import Any

from loguru import logger

from topic_client.app.composition import create_broker_client_from_settings
from topic_client.app.config.settings import Settings
from topic_client.app.constants import EventKind
from topic_client.app.core import SERVICE_NAME
from topic_client.app.domain.events import Delivery, Failure


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_client() -> None:
    settings = Settings()
    client = create_broker_client_from_settings(settings)

    def on_message(delivery: Delivery) -> None:
        _log("delivery", routing_key=delivery.routing_key, delivery_tag=delivery.delivery_tag, message=delivery.message)

    def on_error(failure: Failure) -> None:
        logger.warning("client error in state {}: {}", failure.state.value, failure.description)

    def on_system(event: Any) -> None:
        _log("system", payload=repr(event))

    client.on(EventKind.MESSAGE, on_message)
    client.on(EventKind.ERROR, on_error)
    client.on(EventKind.SYSTEM, on_system)

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    state = await client.wait_for_setup()
    _log("client_started", state=state.value, topic=settings.topic)
    await shutdown.wait()
    await client.close()
    _log("client_stopped")


def main() -> None:
    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        _log("client_interrupted")
    except Exception as e:
        logger.exception("client failed: {}", e)
        raise


if __name__ == "__main__":
    main()
