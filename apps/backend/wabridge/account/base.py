from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from wabridge.util.logging import get_logger

logger = get_logger(__name__)

EventListener = Callable[[str, Any], Awaitable[None] | None]


class AccountClient(ABC):
    """One messaging-account session. Events are pushed to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def on_event(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: str, data: Any = None) -> None:
        for listener in list(self._listeners):
            result = listener(event, data)
            if inspect.isawaitable(result):
                await result

    @abstractmethod
    async def initialize(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def logout(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def destroy(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_chats(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def get_contact_by_id(self, contact_id: str) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def send_message(self, chat_id: str, body: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def get_info(self) -> dict[str, Any] | None:
        """Return `{"wid", "user", "pushname"}` for the logged-in account, if known."""
        raise NotImplementedError
