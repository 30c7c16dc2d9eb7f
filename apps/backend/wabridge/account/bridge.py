from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from pathlib import Path
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from wabridge.util.logging import get_logger
from wabridge.util.security import sanitize_url

from .base import AccountClient

logger = get_logger(__name__)


class BridgeError(RuntimeError):
    pass


class BridgeAccountClient(AccountClient):
    """Account client speaking JSON frames to a whatsapp-web.js sidecar over a websocket.

    Commands are `{"type", "requestId", "sessionId", "payload"}` and are answered by
    `{"type": "response", "requestId", "ok", "result" | "error"}`. Account events
    arrive as `{"type": "event", "event", "data"}` and are emitted in arrival order.
    """

    def __init__(
        self,
        url: str,
        session_id: str,
        session_path: Path,
        token: str | None = None,
        request_timeout: float = 60.0,
    ) -> None:
        super().__init__()
        self.url = url
        self.session_id = session_id
        self.session_path = session_path
        self.token = token
        self.request_timeout = request_timeout
        self._ws: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._events: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._send_lock = asyncio.Lock()
        self._closing = False

    async def initialize(self) -> None:
        await self._ensure_connected()
        await self._send_command("initialize", {"dataPath": str(self.session_path)})

    async def logout(self) -> None:
        await self._send_command("logout", {})

    async def destroy(self) -> None:
        self._closing = True
        if self._ws is not None:
            with contextlib.suppress(BridgeError, asyncio.TimeoutError):
                await self._send_command("destroy", {}, timeout=5.0)
            await self._ws.close()
            self._ws = None
        self._fail_pending("Client destroyed")
        current = asyncio.current_task()
        for task in (self._reader_task, self._dispatch_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._dispatch_task = None

    async def get_chats(self) -> list[dict[str, Any]]:
        result = await self._send_command("getChats", {})
        return result if isinstance(result, list) else []

    async def get_contact_by_id(self, contact_id: str) -> dict[str, Any]:
        result = await self._send_command("getContactById", {"contactId": contact_id})
        return result if isinstance(result, dict) else {}

    async def send_message(self, chat_id: str, body: str) -> dict[str, Any] | None:
        return await self._send_command("sendMessage", {"chatId": chat_id, "body": body})

    async def get_info(self) -> dict[str, Any] | None:
        result = await self._send_command("getInfo", {})
        return result if isinstance(result, dict) else None

    async def _ensure_connected(self) -> None:
        if self._ws is not None:
            return
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        logger.info("Connecting to WhatsApp bridge at %s", sanitize_url(self.url))
        try:
            self._ws = await websockets.connect(self.url, additional_headers=headers, ping_interval=20, ping_timeout=20)
        except (OSError, InvalidHandshake) as exc:
            raise BridgeError(f"Cannot reach WhatsApp bridge: {exc}") from exc
        self._closing = False
        self._reader_task = asyncio.create_task(self._read_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def _send_command(self, command: str, payload: dict[str, Any], timeout: float | None = None) -> Any:
        if self._ws is None:
            raise BridgeError("Bridge websocket not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        frame = {
            "type": command,
            "requestId": request_id,
            "sessionId": self.session_id,
            "payload": payload,
        }
        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(frame))
            return await asyncio.wait_for(future, timeout=timeout or self.request_timeout)
        except ConnectionClosed as exc:
            raise BridgeError(f"Bridge connection closed during {command}") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed:
            pass
        finally:
            if not self._closing:
                logger.warning("WhatsApp bridge connection lost")
                self._ws = None
                self._fail_pending("Bridge connection closed")
                self._events.put_nowait(("disconnected", "CONNECTION_LOST"))

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from WhatsApp bridge")
            return
        if not isinstance(frame, dict):
            logger.warning("Invalid bridge frame shape")
            return

        kind = frame.get("type")
        if kind == "response":
            self._resolve_pending(frame)
        elif kind == "event" and isinstance(frame.get("event"), str):
            self._events.put_nowait((frame["event"], frame.get("data")))
        else:
            logger.debug("Ignoring bridge frame of type %r", kind)

    async def _dispatch_loop(self) -> None:
        while True:
            event, data = await self._events.get()
            try:
                await self.emit(event, data)
            except Exception:
                logger.exception("Account event listener failed for %s", event)

    def _resolve_pending(self, frame: dict[str, Any]) -> None:
        future = self._pending.get(str(frame.get("requestId")))
        if future is None or future.done():
            return
        if frame.get("ok"):
            future.set_result(frame.get("result"))
            return
        error = frame.get("error")
        message = error.get("message") if isinstance(error, dict) else error
        future.set_exception(BridgeError(str(message or "Bridge command failed")))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(BridgeError(reason))
        self._pending.clear()
