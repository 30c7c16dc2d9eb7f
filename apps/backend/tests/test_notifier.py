from __future__ import annotations

import asyncio

from fake_account import RecordingSubscriber
from wabridge.pipeline.notifier import Notifier, QueueSubscriber


class _BrokenSubscriber:
    def is_open(self) -> bool:
        return True

    def send_text(self, message: str) -> None:
        raise ConnectionResetError("socket gone")


def test_notify_outside_mutation_is_rejected(caplog) -> None:
    notifier = Notifier()
    subscriber = RecordingSubscriber()
    notifier.add_subscriber(subscriber)

    assert notifier.notify("wa-error", {}) is False
    assert subscriber.messages == []
    assert "outside a state mutation" in caplog.text


def test_closed_and_failing_subscribers_do_not_block_others() -> None:
    notifier = Notifier()
    closed = RecordingSubscriber(open_=False)
    healthy = RecordingSubscriber()
    notifier.add_subscriber(closed)
    notifier.add_subscriber(_BrokenSubscriber())
    notifier.add_subscriber(healthy)

    with notifier.mutation_window():
        assert notifier.notify("wa-connected-update", True) is True

    assert closed.messages == []
    assert healthy.messages == [{"event": "wa-connected-update", "data": True}]


def test_local_listeners_receive_matching_events_only() -> None:
    notifier = Notifier()
    seen: list[object] = []
    notifier.add_listener("formatted-event", seen.append)

    def _explode(_data) -> None:
        raise RuntimeError("listener bug")

    notifier.add_listener("formatted-event", _explode)
    with notifier.mutation_window():
        notifier.notify("formatted-event", {"camera": "driveway"})
        notifier.notify("new-camera", {"camera": "porch"})

    assert seen == [{"camera": "driveway"}]

    notifier.remove_listener("formatted-event", seen.append)
    with notifier.mutation_window():
        notifier.notify("formatted-event", {"camera": "garage"})
    assert len(seen) == 1


def test_subscriber_registration_is_idempotent() -> None:
    notifier = Notifier()
    subscriber = RecordingSubscriber()
    notifier.add_subscriber(subscriber)
    notifier.add_subscriber(subscriber)
    assert notifier.subscriber_count == 1
    notifier.remove_subscriber(subscriber)
    notifier.remove_subscriber(subscriber)
    assert notifier.subscriber_count == 0


def test_queue_subscriber_delivers_on_loop() -> None:
    async def scenario() -> list[str]:
        subscriber = QueueSubscriber(asyncio.get_running_loop())
        notifier = Notifier()
        notifier.add_subscriber(subscriber)
        with notifier.mutation_window():
            notifier.notify("mqtt-status", {"connected": True})
        notifier.send_direct(subscriber, "config", {"wsUrl": "ws://x/ws"})
        subscriber.close()
        with notifier.mutation_window():
            notifier.notify("mqtt-status", {"connected": False})
        await asyncio.sleep(0)
        out = []
        while not subscriber.queue.empty():
            out.append(subscriber.queue.get_nowait())
        return out

    messages = asyncio.run(scenario())
    assert messages == [
        '{"event": "mqtt-status", "data": {"connected": true}}',
        '{"event": "config", "data": {"wsUrl": "ws://x/ws"}}',
    ]
