from __future__ import annotations

import asyncio
import json

import pytest

from fake_account import FakeClientFactory, RecordingSubscriber
from wabridge.account.driver import LifecycleDriver
from wabridge.account.sessions import SessionStorage
from wabridge.config.schema import WhatsAppConfig
from wabridge.pipeline.cameras import CameraRegistry, UnknownCameraError
from wabridge.pipeline.notifier import Notifier
from wabridge.pipeline.relay import EventRelay
from wabridge.pipeline.router import EventRouter
from wabridge.state.store import StateStore


def _event(camera: str, event_type: str = "new") -> bytes:
    body = {"type": event_type, "after": {"camera": camera, "label": "person", "top_score": 0.87}}
    return json.dumps(body).encode()


def _stack(tmp_path, event_types=None):
    notifier = Notifier()
    notifier.add_subscriber(RecordingSubscriber())
    store = StateStore(notifier)
    persisted: list[dict[str, str]] = []
    cameras = CameraRegistry(store, persist_mappings=persisted.append)
    factory = FakeClientFactory(init_events=[("ready", None)])
    driver = LifecycleDriver(
        store,
        SessionStorage(tmp_path / "sessions"),
        factory,
        WhatsAppConfig(retry_delay_seconds=0, group_poll_seconds=60),
    )
    relay = EventRelay(notifier, cameras, driver, event_types)
    return EventRouter(store, cameras), cameras, driver, relay, factory, persisted


def test_mapped_camera_event_is_sent_to_group(tmp_path) -> None:
    router, cameras, driver, relay, factory, persisted = _stack(tmp_path)

    async def scenario() -> None:
        relay.attach()
        await driver.initialize("default")
        router.handle_message("frigate/driveway/events", _event("driveway"))
        cameras.assign_camera_to_group("driveway", "120363001@g.us")
        router.handle_message("frigate/driveway/events", _event("driveway"))
        router.handle_message("frigate/driveway/events", _event("driveway", "end"))
        await relay.drain()
        await driver.aclose()

    asyncio.run(scenario())

    assert factory.last.sent == [("120363001@g.us", "person detected on driveway | score: 87%")]
    assert persisted == [{"driveway": "120363001@g.us"}]


def test_relay_drops_events_while_disconnected(tmp_path) -> None:
    router, cameras, driver, relay, factory, _ = _stack(tmp_path)
    cameras.load_mappings({"porch": "120363002@g.us"})

    async def scenario() -> None:
        relay.attach()
        router.handle_message("frigate/porch/events", _event("porch"))
        await relay.drain()

    asyncio.run(scenario())

    assert factory.created == []
    assert cameras.has_camera("porch")


def test_detached_relay_ignores_events(tmp_path) -> None:
    router, cameras, driver, relay, factory, _ = _stack(tmp_path, event_types=["new", "update"])
    cameras.load_mappings({"porch": "120363002@g.us"})

    async def scenario() -> None:
        relay.attach()
        relay.detach()
        await driver.initialize("default")
        router.handle_message("frigate/porch/events", _event("porch", "update"))
        await relay.drain()
        await driver.aclose()

    asyncio.run(scenario())

    assert factory.last.sent == []


def test_assigning_unknown_camera_fails(tmp_path) -> None:
    _, cameras, _, _, _, persisted = _stack(tmp_path)
    with pytest.raises(UnknownCameraError, match="Camera attic does not exist"):
        cameras.assign_camera_to_group("attic", "g1")
    assert persisted == []


def test_assignment_during_a_broadcast_is_not_applied(tmp_path) -> None:
    _, cameras, _, _, _, persisted = _stack(tmp_path)
    cameras.add_camera("driveway")
    results: list[dict[str, str]] = []

    def _assign_while_notifying(_data: object) -> None:
        results.append(cameras.assign_camera_to_group("driveway", "g1"))

    cameras.store.notifier.add_listener("cameras-update", _assign_while_notifying)
    cameras.add_camera("porch")

    assert results == [{}]
    assert cameras.mappings() == {}
    assert persisted == []
