from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Awaitable, Callable, Protocol

import aiomqtt

from hue_mqtt_bridge.config import MqttConfig


logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[object]]
ConnectHook = Callable[[], Awaitable[object]]

RECONNECT_MIN_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0


class MessageBus(Protocol):
    @property
    def connected(self) -> bool: ...

    async def publish(self, topic: str, payload: str | bytes, *, retain: bool = False) -> None: ...


class MqttBus:
    """aiomqtt connection loop: subscribe, fan messages out to handler tasks, reconnect.

    Each inbound message gets its own task so a slow dispatch does not hold
    up later messages. Publishes while disconnected are logged and dropped.
    """

    def __init__(self, *, config: MqttConfig) -> None:
        self._config = config
        self._client: aiomqtt.Client | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _make_client(self) -> aiomqtt.Client:
        cfg = self._config
        return aiomqtt.Client(
            hostname=cfg.host,
            port=cfg.port,
            username=cfg.username,
            password=cfg.password,
            identifier=cfg.client_id,
            keepalive=cfg.keepalive,
            tls_context=ssl.create_default_context() if cfg.tls else None,
        )

    async def run(
        self,
        *,
        subscriptions: list[str],
        handler: MessageHandler,
        on_connect: ConnectHook | None = None,
    ) -> None:
        backoff = RECONNECT_MIN_DELAY
        while True:
            try:
                async with self._make_client() as client:
                    self._client = client
                    logger.info("[MQTT] Connected to broker %s:%s", self._config.host, self._config.port)
                    for topic in subscriptions:
                        await client.subscribe(topic)
                    backoff = RECONNECT_MIN_DELAY
                    if on_connect is not None:
                        self._spawn(on_connect())
                    async for message in client.messages:
                        payload = message.payload
                        if isinstance(payload, str):
                            payload = payload.encode("utf-8")
                        elif not isinstance(payload, (bytes, bytearray)):
                            payload = b"" if payload is None else str(payload).encode("utf-8")
                        self._spawn(handler(str(message.topic), bytes(payload)))
            except aiomqtt.MqttError as exc:
                logger.warning("[MQTT] Disconnected: %s; reconnecting in %.0fs", exc, backoff)
            finally:
                self._client = None
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, RECONNECT_MAX_DELAY)

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def publish(self, topic: str, payload: str | bytes, *, retain: bool = False) -> None:
        client = self._client
        if client is None:
            logger.warning("[MQTT] Not connected; dropping publish to %s", topic)
            return
        try:
            await client.publish(topic, payload, retain=retain)
        except aiomqtt.MqttError as exc:
            logger.warning("[MQTT] Publish to %s failed: %s", topic, exc)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
