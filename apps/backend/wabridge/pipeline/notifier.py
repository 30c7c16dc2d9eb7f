from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol

from wabridge.util.logging import get_logger

from .events import Envelope

logger = get_logger(__name__)

Listener = Callable[[Any], None]


class Subscriber(Protocol):
    def is_open(self) -> bool: ...

    def send_text(self, message: str) -> None: ...


class QueueSubscriber:
    """Live-transport subscriber backed by an asyncio queue drained by a writer task."""

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 256) -> None:
        self._loop = loop
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._open = True

    def is_open(self) -> bool:
        return self._open and not self._loop.is_closed()

    def close(self) -> None:
        self._open = False

    def send_text(self, message: str) -> None:
        self._loop.call_soon_threadsafe(self._offer, message)

    def _offer(self, message: str) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Dropping message for slow live subscriber")


class Notifier:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._window_depth = 0

    @contextmanager
    def mutation_window(self) -> Iterator[None]:
        self._window_depth += 1
        try:
            yield
        finally:
            self._window_depth -= 1

    @property
    def in_mutation(self) -> bool:
        return self._window_depth > 0

    def add_subscriber(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def remove_subscriber(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_listener(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def notify(self, event: str, data: Any = None) -> bool:
        if not self.in_mutation:
            logger.warning("notify(%s) called outside a state mutation; ignored", event)
            return False

        message = Envelope(event=event, data=data).to_json()
        for subscriber in list(self._subscribers):
            try:
                if not subscriber.is_open():
                    continue
                subscriber.send_text(message)
            except Exception:
                logger.exception("Failed to deliver %s to a live subscriber", event)

        for listener in list(self._listeners.get(event, ())):
            try:
                listener(data)
            except Exception:
                logger.exception("Listener for %s failed", event)
        return True

    def send_direct(self, subscriber: Subscriber, event: str, data: Any = None) -> None:
        """Reply to a single subscriber, outside the broadcast path."""
        if subscriber.is_open():
            subscriber.send_text(Envelope(event=event, data=data).to_json())
