from __future__ import annotations

from collections.abc import Callable
from typing import Any

from wabridge.config.defaults import DEFAULT_CAMERA_COLOR, EXCLUDED_CAMERA_WORDS
from wabridge.state.store import StateStore
from wabridge.util.logging import get_logger

from . import events

logger = get_logger(__name__)


class UnknownCameraError(LookupError):
    pass


def is_camera_name(segment: str) -> bool:
    lowered = segment.lower()
    return bool(segment) and not any(word in lowered for word in EXCLUDED_CAMERA_WORDS)


class CameraRegistry:
    def __init__(
        self,
        store: StateStore,
        persist_mappings: Callable[[dict[str, str]], None] | None = None,
    ) -> None:
        self.store = store
        self._persist_mappings = persist_mappings

    def cameras(self) -> dict[str, dict[str, Any]]:
        return self.store.get("cameras")

    def has_camera(self, camera_id: str) -> bool:
        return camera_id in self.store.get("cameras")

    def add_camera(self, camera_id: str, details: dict[str, Any] | None = None) -> bool:
        cameras = self.store.get("cameras")
        if camera_id in cameras:
            return False
        cameras[camera_id] = dict(details or {"color": DEFAULT_CAMERA_COLOR})
        if not self.store.set("cameras", cameras):
            return False
        logger.info("Discovered camera %s", camera_id)
        self.store.announce(events.NEW_CAMERA, {"camera": camera_id, **cameras[camera_id]})
        return True

    def mappings(self) -> dict[str, str]:
        return self.store.get("camera_group_mappings")

    def group_for(self, camera_id: str) -> str | None:
        return self.store.get("camera_group_mappings").get(camera_id)

    def assign_camera_to_group(self, camera_id: str, group_id: str) -> dict[str, str]:
        if not self.has_camera(camera_id):
            msg = f"Camera {camera_id} does not exist"
            raise UnknownCameraError(msg)
        mappings = self.store.get("camera_group_mappings")
        mappings[camera_id] = group_id
        if not self.store.set("camera_group_mappings", mappings):
            return self.store.get("camera_group_mappings")
        if self._persist_mappings is not None:
            self._persist_mappings(mappings)
        logger.info("Camera %s assigned to group %s", camera_id, group_id)
        return mappings

    def load_mappings(self, mappings: dict[str, str]) -> None:
        """Seed mappings saved in settings; cameras they reference are registered too."""
        for camera_id in mappings:
            self.add_camera(camera_id)
        self.store.set("camera_group_mappings", dict(mappings))
