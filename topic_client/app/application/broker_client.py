"""
Broker client: connection/channel lifecycle, consume loop and publish.

Lifecycle:
  IDLE -> CONNECTING -> CHANNEL_OPENING -> DECLARING_EXCHANGE -> DECLARING_QUEUE ->
  BINDING -> READY (-> CONSUMING when options.consume).
  Any failure: -> FAILED, reported as an `error` event. Nothing is retried.
  On close(): -> CLOSING -> cancel consumer, close channel/connection -> CLOSED.

Setup starts on construction as a task on the running event loop, so listeners
attached right after constructing the client see every event. Failures after
construction are never raised to the caller; they are emitted as Failure events.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping

from loguru import logger

from topic_client.app.application.event_stream import EventStream, Listener
from topic_client.app.constants import (
    NO_CHANNEL_ERROR,
    SETUP_COMPLETE_STATES,
    ClientState,
    EventKind,
)
from topic_client.app.core import SERVICE_NAME
from topic_client.app.domain.codec import decode_body, encode_message
from topic_client.app.domain.errors import (
    AcknowledgeError,
    BrokerSignalledError,
    ChannelNotReadyError,
    MessageDecodeError,
    PublishError,
)
from topic_client.app.domain.events import Connected, Delivery, Failure, Published, Ready
from topic_client.app.domain.models import (
    BrokerConfiguration,
    ClientOptions,
    InboundDelivery,
    coerce_configuration,
)
from topic_client.app.ports.broker_transport import BrokerChannel, BrokerConnection, BrokerTransport


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BrokerClient:
    """Binds one topic queue to one exchange; consumes from and publishes to it."""

    def __init__(
        self,
        configuration: BrokerConfiguration | Mapping[str, Any] | None,
        topic: str,
        options: ClientOptions | None = None,
        *,
        transport: BrokerTransport,
        events: EventStream | None = None,
    ) -> None:
        self._configuration = coerce_configuration(configuration)
        self._topic = topic
        self._options = options or ClientOptions()
        self._transport = transport
        self._events = events or EventStream()
        self._state = ClientState.IDLE
        self._connection: BrokerConnection | None = None
        self._channel: BrokerChannel | None = None
        self._consumer_tag: str | None = None
        self._consume_lock = asyncio.Lock()
        self._failure: Failure | None = None
        self._closing = False
        self._signal_tasks: set[asyncio.Task[None]] = set()
        self._setup_task: asyncio.Task[None] = asyncio.get_running_loop().create_task(self._run_setup())

    @property
    def configuration(self) -> BrokerConfiguration:
        return self._configuration

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def options(self) -> ClientOptions:
        return self._options

    @property
    def events(self) -> EventStream:
        return self._events

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def failure(self) -> Failure | None:
        return self._failure

    @property
    def channel_open(self) -> bool:
        return self._channel is not None

    @property
    def ready(self) -> bool:
        return self._state in SETUP_COMPLETE_STATES

    def on(self, kind: EventKind | str, listener: Listener) -> Callable[[], None]:
        return self._events.on(kind, listener)

    def _set_state(self, state: ClientState) -> None:
        self._state = state

    async def wait_for_setup(self) -> ClientState:
        """Wait until setup has finished, successfully or not. Never raises setup failures."""
        try:
            await asyncio.shield(self._setup_task)
        except asyncio.CancelledError:
            if not self._setup_task.cancelled():
                raise
        return self._state

    async def _run_setup(self) -> None:
        try:
            await self._connect()
            await self._open_channel_and_bind()
            if self._options.consume:
                await self.start_consuming()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(e)

    async def _connect(self) -> None:
        self._set_state(ClientState.CONNECTING)
        _log("broker_connecting", hostname=self._configuration.hostname, port=self._configuration.port)
        self._connection = await self._transport.connect(self._configuration)
        self._connection.on_error(self._on_connection_error)
        _log("broker_connected")
        await self._events.emit(
            Connected(
                hostname=self._configuration.hostname,
                port=self._configuration.port,
                vhost=self._configuration.vhost,
            )
        )

    async def _open_channel_and_bind(self) -> None:
        if self._connection is None:
            raise ChannelNotReadyError("cannot open a channel without a connection")
        exchange = self._configuration.exchange

        self._set_state(ClientState.CHANNEL_OPENING)
        self._channel = await self._connection.create_channel()
        self._channel.on_error(self._on_channel_error)
        _log("channel_open")

        self._set_state(ClientState.DECLARING_EXCHANGE)
        await self._channel.assert_exchange(exchange.name, exchange.type)
        _log("exchange_declared", exchange=exchange.name, exchange_type=exchange.type)

        self._set_state(ClientState.DECLARING_QUEUE)
        result = await self._channel.assert_queue(self._topic)
        _log("queue_declared", queue=result.queue, message_count=result.message_count)

        self._set_state(ClientState.BINDING)
        await self._channel.bind_queue(self._topic, exchange.name, self._topic)
        _log("queue_bound", queue=self._topic, exchange=exchange.name)

        self._set_state(ClientState.READY)
        _log("client_ready", topic=self._topic)
        await self._events.emit(Ready(result=result))

    async def start_consuming(self) -> str | None:
        """Attach the consume loop to the channel. At most once per channel.

        Returns the consumer tag, or None (after emitting an error) when no
        channel is open.
        """
        async with self._consume_lock:
            if self._consumer_tag is not None:
                return self._consumer_tag
            channel = self._channel
            if channel is not None:
                self._consumer_tag = await channel.consume(self._topic, self._handle_delivery)
                self._set_state(ClientState.CONSUMING)
                _log("consumer_started", topic=self._topic, consumer_tag=self._consumer_tag)
                return self._consumer_tag
        await self._emit_failure(ChannelNotReadyError(NO_CHANNEL_ERROR))
        return None

    async def _handle_delivery(self, inbound: InboundDelivery) -> None:
        try:
            try:
                payload = decode_body(inbound.body)
            except MessageDecodeError as e:
                _log("message_decode_failed", delivery_tag=inbound.delivery_tag, error=str(e))
                await self._emit_failure(e, delivery_tag=inbound.delivery_tag)
                return
            _log("message_received", delivery_tag=inbound.delivery_tag, routing_key=inbound.routing_key)
            await self._events.emit(Delivery.from_inbound(inbound, payload))
        finally:
            if self._options.acknowledge:
                await self._acknowledge(inbound)

    async def _acknowledge(self, inbound: InboundDelivery) -> None:
        channel = self._channel
        if channel is None:
            await self._emit_failure(
                AcknowledgeError(f"channel closed before delivery {inbound.delivery_tag} could be acknowledged"),
                delivery_tag=inbound.delivery_tag,
            )
            return
        try:
            await channel.ack(inbound)
        except Exception as e:
            logger.warning("ack failed for delivery {}: {}", inbound.delivery_tag, e)
            error = AcknowledgeError(f"ack failed for delivery {inbound.delivery_tag}: {e}")
            error.__cause__ = e
            await self._emit_failure(error, delivery_tag=inbound.delivery_tag)
            return
        _log("message_acked", delivery_tag=inbound.delivery_tag)

    async def publish(self, message: Any) -> bool:
        """Publish message to the exchange with the topic as routing key.

        Returns False (after emitting an error) when no channel is open or the
        transport rejects the publish. Raises MessageEncodeError for payloads
        that cannot be encoded.
        """
        channel = self._channel
        if channel is None:
            _log("publish_rejected", reason="no_channel")
            await self._emit_failure(ChannelNotReadyError(NO_CHANNEL_ERROR))
            return False

        body = encode_message(message)
        exchange = self._configuration.exchange.name
        try:
            result = await channel.publish(exchange, self._topic, body)
        except Exception as e:
            logger.warning("publish failed: {}", e)
            error = PublishError(f"publish to {exchange}/{self._topic} failed: {e}")
            error.__cause__ = e
            await self._emit_failure(error)
            return False

        _log("publish_success", exchange=exchange, routing_key=self._topic, size=len(body))
        await self._events.emit(Published(push_result=result, message=message))
        return True

    def _on_connection_error(self, error: BaseException | None) -> None:
        self._on_signalled_error("connection", error)

    def _on_channel_error(self, error: BaseException | None) -> None:
        self._on_signalled_error("channel", error)

    def _on_signalled_error(self, source: str, error: BaseException | None) -> None:
        if self._closing:
            return
        # channel is unusable once either side has errored
        self._channel = None
        self._consumer_tag = None
        if source == "connection":
            self._connection = None
        if error is None:
            error = BrokerSignalledError(f"{source} reported an error")
        task = asyncio.get_running_loop().create_task(self._fail(error, source=source))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    async def _fail(self, error: BaseException, **details: Any) -> None:
        failed_in = self._state
        self._set_state(ClientState.FAILED)
        logger.warning("broker client failed in state {}: {}", failed_in.value, error)
        _log("client_failed", state=failed_in.value, error=str(error), **details)
        self._failure = Failure(error=error, state=failed_in, details=details)
        await self._events.emit(self._failure)

    async def _emit_failure(self, error: BaseException, **details: Any) -> None:
        await self._events.emit(Failure(error=error, state=self._state, details=details))

    async def close(self) -> None:
        self._closing = True
        self._set_state(ClientState.CLOSING)
        _log("client_shutdown", topic=self._topic)
        if not self._setup_task.done():
            self._setup_task.cancel()
            try:
                await self._setup_task
            except asyncio.CancelledError:
                pass
        async with self._consume_lock:
            await self._close_channel_and_connection()
        self._set_state(ClientState.CLOSED)

    async def _close_channel_and_connection(self) -> None:
        if self._channel is not None and self._consumer_tag is not None:
            try:
                await self._channel.cancel(self._consumer_tag)
            except Exception as e:
                logger.warning("consumer cancel failed (continuing to close channel): {}", e)
        self._consumer_tag = None
        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None
