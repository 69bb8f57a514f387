"""MQTT broker subscription transport."""

from __future__ import annotations

import asyncio
import logging
import random
import socket
import ssl
from contextlib import AsyncExitStack, suppress
from typing import Any, Callable
from urllib.parse import urlsplit

import aiomqtt

from config.defaults import APP_NAME, MQTT_QOS, MQTT_RECONNECT_DELAY_SEC, MQTT_WAIT_TIMEOUT_SEC
from config.settings import MqttSettings
from handlers.base import HandlerStartError, OneShotGuard, forward
from server.message_channel import MessageChannel
from services.metrics import ListenerMetrics

TLS_SCHEMES = {"ssl", "tls", "mqtts"}

ClientFactory = Callable[[MqttSettings], Any]

logger = logging.getLogger(__name__)


def client_id() -> str:
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = ""
    if not hostname:
        return f"{APP_NAME}-{random.getrandbits(63)}"
    return f"{APP_NAME}-{hostname}"


def new_client(settings: MqttSettings) -> aiomqtt.Client:
    url = urlsplit(settings.host)
    tls_context = ssl.create_default_context() if url.scheme in TLS_SCHEMES else None
    return aiomqtt.Client(
        url.hostname or "",
        url.port or 1883,
        username=settings.user,
        password=settings.password,
        identifier=client_id(),
        timeout=MQTT_WAIT_TIMEOUT_SEC,
        tls_context=tls_context,
    )


class MqttHandler:
    name = "mqtt"

    def __init__(
        self,
        settings: MqttSettings,
        metrics: ListenerMetrics | None = None,
        client_factory: ClientFactory = new_client,
        reconnect_delay: float = MQTT_RECONNECT_DELAY_SEC,
    ) -> None:
        self._settings = settings
        self._metrics = metrics
        self._client_factory = client_factory
        self._reconnect_delay = reconnect_delay
        self._guard = OneShotGuard(self.name)
        self._client: Any | None = None
        self._stack: AsyncExitStack | None = None
        self._outbound: MessageChannel | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def connected(self) -> bool:
        return self._stack is not None

    async def start(self, outbound: MessageChannel) -> None:
        self._guard.claim()
        if self._stopped:
            return
        self._client = self._client_factory(self._settings)
        try:
            await self._connect()
        except aiomqtt.MqttError as exc:
            logger.error("Can not connect to broker %s: %s", self._settings.host, exc)
            raise HandlerStartError(self.name, f"can not connect to broker {self._settings.host}: {exc}") from exc
        if self._stopped:
            # shutdown() ran while the handshake was in flight
            logger.info("Shut down during connect, disconnecting from %s", self._settings.host)
            await self._disconnect()
            return
        self._outbound = outbound
        self._task = asyncio.create_task(self._maintain(), name="mqtt-consumer")

    async def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down mqtt handler...")
        self._outbound = None
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._stack is not None:
            try:
                await self._client.unsubscribe(self._settings.topic)
            except aiomqtt.MqttError as exc:
                logger.warning("Unsubscribe from %s failed: %s", self._settings.topic, exc)
            await self._disconnect()
        logger.info("Shut down mqtt handler")

    def _on_message(self, payload: Any) -> None:
        if payload is None:
            payload = ""
        elif not isinstance(payload, (bytes, bytearray, str)):
            payload = str(payload)
        if not forward(self._outbound, payload):
            logger.warning("Dropping mqtt message on %s, handler is not accepting messages", self._settings.topic)

    async def _connect(self) -> None:
        stack = AsyncExitStack()
        await stack.enter_async_context(self._client)
        try:
            await self._client.subscribe(self._settings.topic, qos=MQTT_QOS)
        except aiomqtt.MqttError:
            await stack.aclose()
            raise
        self._stack = stack
        logger.info("Successfully connected to broker %s, subscribed to %s", self._settings.host, self._settings.topic)

    async def _disconnect(self) -> None:
        stack, self._stack = self._stack, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except aiomqtt.MqttError as exc:
            logger.warning("Disconnect from broker failed: %s", exc)

    async def _maintain(self) -> None:
        while True:
            try:
                async for message in self._client.messages:
                    self._on_message(message.payload)
            except aiomqtt.MqttError as exc:
                logger.info("Connection lost: %s", exc)
                if self._metrics is not None:
                    self._metrics.mqtt_reconnections.inc()
            await self._disconnect()
            await self._reconnect()

    async def _reconnect(self) -> None:
        while True:
            await asyncio.sleep(self._reconnect_delay)
            try:
                await self._connect()
                return
            except aiomqtt.MqttError as exc:
                logger.warning("Reconnecting to broker %s failed: %s", self._settings.host, exc)
