from __future__ import annotations

import json
from typing import Any

from wabridge.config.defaults import DEFAULT_TOPIC_ROOT
from wabridge.state.store import StateStore
from wabridge.util.logging import get_logger

from . import events
from .cameras import CameraRegistry, is_camera_name

logger = get_logger(__name__)

BINARY_SEGMENTS = {"snapshot", "clip"}


class EventRouter:
    """Classifies inbound Frigate topics: camera discovery, domain events, binary media."""

    def __init__(self, store: StateStore, cameras: CameraRegistry, topic_root: str = DEFAULT_TOPIC_ROOT) -> None:
        self.store = store
        self.cameras = cameras
        self.topic_root = topic_root

    def handle_message(self, topic: str, payload: bytes | str) -> dict[str, Any] | None:
        parts = topic.split("/")
        if len(parts) < 2 or parts[0] != self.topic_root:
            return None

        candidate = parts[1]
        if is_camera_name(candidate):
            self.cameras.add_camera(candidate)

        third = parts[2] if len(parts) >= 3 else None
        if third in BINARY_SEGMENTS:
            logger.debug("Ignored binary message on topic %s", topic)
            return None

        is_event_topic = third == "events" or (third is None and candidate == "events")
        if not is_event_topic:
            return None

        body = self._decode(topic, payload)
        if body is None:
            return None

        formatted = events.format_frigate_event(body)
        if not formatted.get("camera") and is_camera_name(candidate):
            formatted["camera"] = candidate
        logger.info("%s event: %s %s on %s", formatted["severity"].upper(), formatted["type"], formatted["label"], formatted["camera"])
        self.store.announce(events.FORMATTED_EVENT, formatted)
        return formatted

    @staticmethod
    def _decode(topic: str, payload: bytes | str) -> dict[str, Any] | None:
        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
            body = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Ignoring non-readable message on topic %s", topic)
            return None
        if not isinstance(body, dict):
            logger.debug("Ignoring non-object payload on topic %s", topic)
            return None
        return body
