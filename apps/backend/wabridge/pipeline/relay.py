from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from wabridge.util.logging import get_logger

from . import events
from .cameras import CameraRegistry
from .notifier import Notifier

if TYPE_CHECKING:
    from wabridge.account.driver import LifecycleDriver

logger = get_logger(__name__)


class EventRelay:
    """Sends formatted NVR events to the WhatsApp group mapped to their camera."""

    def __init__(
        self,
        notifier: Notifier,
        cameras: CameraRegistry,
        driver: LifecycleDriver,
        event_types: list[str] | None = None,
    ) -> None:
        self.notifier = notifier
        self.cameras = cameras
        self.driver = driver
        self.event_types = set(event_types or ["new"])
        self._tasks: set[asyncio.Task[bool]] = set()

    def attach(self) -> None:
        self.notifier.add_listener(events.FORMATTED_EVENT, self.on_event)

    def detach(self) -> None:
        self.notifier.remove_listener(events.FORMATTED_EVENT, self.on_event)

    def on_event(self, event: dict[str, Any]) -> None:
        if event.get("type") not in self.event_types:
            return
        camera = event.get("camera")
        group = self.cameras.group_for(str(camera)) if camera else None
        if group is None:
            logger.debug("No group mapped for camera %s", camera)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; cannot relay event for %s", camera)
            return
        task = loop.create_task(self.driver.send_message(group, events.describe_event(event)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
