"""MQTT bridge with automatic reconnection.

This module keeps one long-lived aiomqtt connection to the broker, routes inbound
messages to the handler registered for their topic filter and publishes outbound
messages with at-most-once delivery.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import aiomqtt

from music_coordinator.config import MqttSettings
from music_coordinator.errors import TransportError

MessageHandler = Callable[[bytes], Awaitable[None]]


def payload_to_bytes(payload: bytes | bytearray | str | int | float | None) -> bytes:
    """Normalize an aiomqtt payload to raw bytes."""
    if payload is None:
        return b""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload)
    return str(payload).encode()


class MessageBridge:
    """Long-lived MQTT connection shared by every component that talks to the broker.

    Handlers are awaited one at a time in the receive loop, so a handler that
    blocks stalls further inbound delivery. Handlers should hand work off quickly.

    Attributes:
        mqtt_settings: Broker address and credentials.
        client_id: MQTT client identifier.
        logger: Logger instance for connection events.
        retry_interval: Seconds to wait before reconnecting after a connection loss.
        keepalive: MQTT keep-alive interval in seconds.
    """

    def __init__(
        self,
        mqtt_settings: MqttSettings,
        client_id: str,
        logger: logging.Logger,
        retry_interval: float = 5,
        keepalive: int = 60,
    ) -> None:
        self.mqtt_settings = mqtt_settings
        self.client_id = client_id
        self.logger = logger
        self.retry_interval = retry_interval
        self.keepalive = keepalive

        self._client: aiomqtt.Client | None = None
        self._handlers: dict[str, MessageHandler] = {}
        self._connected = asyncio.Event()
        self._has_connected = False

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def wait_until_connected(self) -> None:
        await self._connected.wait()

    def _create_client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self.mqtt_settings.host,
            port=self.mqtt_settings.port,
            username=self.mqtt_settings.username,
            password=self.mqtt_settings.password,
            identifier=self.client_id,
            keepalive=self.keepalive,
        )

    async def subscribe(self, topic_filter: str, handler: MessageHandler) -> None:
        """Register the handler for a topic filter.

        The subscription is sent right away when connected and re-sent after every
        reconnect.

        Raises:
            TransportError: If the broker rejects the subscription.
        """
        self._handlers[topic_filter] = handler
        if self._client is None:
            return
        try:
            await self._client.subscribe(topic_filter, qos=0)
        except aiomqtt.MqttError as e:
            raise TransportError(f"failed to subscribe to {topic_filter}: {e}") from e
        self.logger.info("Subscribed to %s", topic_filter)

    async def publish(self, topic: str, payload: str | bytes) -> None:
        """Publish a message with QoS 0.

        Delivery is not confirmed end-to-end and failures are not retried here.

        Raises:
            TransportError: If not connected or the message cannot be handed to the client.
        """
        client = self._client
        if client is None:
            raise TransportError(f"cannot publish to {topic}: not connected to broker")
        try:
            await client.publish(topic, payload=payload, qos=0)
        except aiomqtt.MqttError as e:
            raise TransportError(f"failed to publish to {topic}: {e}") from e

    async def run(self) -> None:
        """Connect and deliver messages until cancelled, reconnecting on connection loss.

        Raises:
            TransportError: If a subscription fails on the very first connection.
        """
        while True:
            try:
                async with self._create_client() as client:
                    await self._on_connect(client)
                    async for message in client.messages:
                        await self._deliver(message)
            except aiomqtt.MqttError as e:
                self._reset_connection()
                self.logger.warning(
                    "Connection to broker lost: %s. Reconnecting in %s seconds.", e, self.retry_interval
                )
                await asyncio.sleep(self.retry_interval)
            finally:
                self._reset_connection()

    def _reset_connection(self) -> None:
        self._client = None
        self._connected.clear()

    async def _on_connect(self, client: aiomqtt.Client) -> None:
        if self._has_connected:
            self.logger.info("Reconnected to broker %s:%d", self.mqtt_settings.host, self.mqtt_settings.port)
        else:
            self.logger.info(
                "Connected to broker %s:%d as %s", self.mqtt_settings.host, self.mqtt_settings.port, self.client_id
            )
        for topic_filter in self._handlers:
            try:
                await client.subscribe(topic_filter, qos=0)
            except aiomqtt.MqttError as e:
                # AIDEV-NOTE: Startup subscription failure is fatal; after a reconnect it is treated as connection loss
                if not self._has_connected:
                    raise TransportError(f"failed to subscribe to {topic_filter}: {e}") from e
                raise
            self.logger.info("Subscribed to %s", topic_filter)
        self._client = client
        self._has_connected = True
        self._connected.set()

    async def _deliver(self, message: aiomqtt.Message) -> None:
        for topic_filter, handler in self._handlers.items():
            if message.topic.matches(topic_filter):
                await handler(payload_to_bytes(message.payload))
                return
        self.logger.debug("No handler registered for topic %s", message.topic)
