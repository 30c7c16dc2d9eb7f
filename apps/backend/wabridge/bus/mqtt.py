from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from wabridge.config.schema import MqttConfig
from wabridge.pipeline.router import EventRouter
from wabridge.state.store import StateStore
from wabridge.util.logging import get_logger
from wabridge.util.security import sanitize_url

logger = get_logger(__name__)


def parse_broker(host: str) -> tuple[str, int, bool]:
    """Split `mqtt://host:port` (or `mqtts://`) into hostname, port and a TLS flag."""
    parts = urlsplit(host if "://" in host else f"mqtt://{host}")
    tls = parts.scheme in {"mqtts", "ssl"}
    port = parts.port or (8883 if tls else 1883)
    return parts.hostname or "localhost", port, tls


class MqttListener:
    """Feeds broker messages into the event router on the asyncio loop.

    paho runs its network loop on its own thread; every callback hops back onto
    the event loop before touching shared state.
    """

    def __init__(
        self,
        config: MqttConfig,
        store: StateStore,
        router: EventRouter,
        client_factory: Callable[..., Any] = mqtt.Client,
    ) -> None:
        self.config = config
        self.store = store
        self.router = router
        self.client_factory = client_factory
        self._client: Any | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def subscription(self) -> str:
        return f"{self.config.topic_root}/#"

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._client is not None:
            return
        self._loop = loop
        client = self.client_factory(callback_api_version=CallbackAPIVersion.VERSION2, client_id=self.config.client_id)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        host, port, tls = parse_broker(self.config.host)
        if tls:
            client.tls_set()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.reconnect_delay_set(min_delay=1, max_delay=30)

        logger.info("Connecting to MQTT broker %s", sanitize_url(self.config.host))
        client.connect_async(host, port, keepalive=self.config.keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
        logger.info("MQTT listener stopped")

    def _hop(self, fn: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Event loop unavailable; dropping MQTT callback")
            return
        loop.call_soon_threadsafe(fn, *args)

    def _on_connect(self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("MQTT connection refused: %s", reason_code)
            self._hop(self.store.set, "mqtt_connected", False)
            return
        logger.info("Connected to MQTT broker")
        result, _mid = client.subscribe(self.subscription)
        if result == mqtt.MQTT_ERR_SUCCESS:
            logger.info("Subscribed to topic %s", self.subscription)
        else:
            logger.error("Error subscribing to topic %s: %s", self.subscription, result)
        self._hop(self.store.set, "mqtt_connected", True)

    def _on_disconnect(self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None) -> None:
        logger.warning("Disconnected from MQTT broker: %s", reason_code)
        self._hop(self.store.set, "mqtt_connected", False)

    def _on_message(self, _client: Any, _userdata: Any, message: Any) -> None:
        self._hop(self._route, message.topic, bytes(message.payload))

    def _route(self, topic: str, payload: bytes) -> None:
        try:
            self.router.handle_message(topic, payload)
        except Exception:
            logger.exception("Error routing MQTT message on %s", topic)
