from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from websockets.asyncio.server import serve

from wabridge.account.bridge import BridgeAccountClient, BridgeError


class _Sidecar:
    """Minimal stand-in for the WhatsApp sidecar speaking the JSON command protocol."""

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []
        self.auth_headers: list[str | None] = []
        self.drop_after_initialize = False

    async def handler(self, ws: Any) -> None:
        self.auth_headers.append(ws.request.headers.get("Authorization"))
        async for raw in ws:
            frame = json.loads(raw)
            self.frames.append(frame)
            kind = frame["type"]
            if kind == "initialize":
                await ws.send(json.dumps({"type": "event", "event": "qr", "data": "qr-1"}))
                await ws.send(json.dumps({"type": "event", "event": "authenticated", "data": None}))
                await self._reply(ws, frame, ok=True, result=None)
                if self.drop_after_initialize:
                    await ws.close()
                    return
            elif kind == "getInfo":
                await self._reply(ws, frame, ok=True, result={"wid": "1555@c.us", "user": "1555"})
            elif kind == "getChats":
                await self._reply(ws, frame, ok=True, result=[{"id": "g1@g.us", "isGroup": True}])
            elif kind == "logout":
                await self._reply(ws, frame, ok=False, error={"message": "not logged in"})
            else:
                await self._reply(ws, frame, ok=True, result={"echo": frame["payload"]})

    @staticmethod
    async def _reply(ws: Any, frame: dict[str, Any], ok: bool, result: Any = None, error: Any = None) -> None:
        reply = {"type": "response", "requestId": frame["requestId"], "ok": ok}
        if ok:
            reply["result"] = result
        else:
            reply["error"] = error
        await ws.send(json.dumps(reply))


async def _wait_for(received: list[tuple[str, Any]], count: int) -> None:
    for _ in range(200):
        if len(received) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} events, got {received}")


def test_commands_and_events_round_trip(tmp_path) -> None:
    sidecar = _Sidecar()
    received: list[tuple[str, Any]] = []

    async def scenario() -> tuple[Any, ...]:
        async with serve(sidecar.handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            client = BridgeAccountClient(f"ws://127.0.0.1:{port}/ws", "default", tmp_path / "default", token="t0k")
            client.on_event(lambda event, data: received.append((event, data)))

            await client.initialize()
            await _wait_for(received, 2)
            info = await client.get_info()
            chats = await client.get_chats()
            sent = await client.send_message("g1@g.us", "person detected")
            with pytest.raises(BridgeError, match="not logged in"):
                await client.logout()
            await client.destroy()
            return info, chats, sent

    info, chats, sent = asyncio.run(scenario())

    assert received == [("qr", "qr-1"), ("authenticated", None)]
    assert info == {"wid": "1555@c.us", "user": "1555"}
    assert chats == [{"id": "g1@g.us", "isGroup": True}]
    assert sent == {"echo": {"chatId": "g1@g.us", "body": "person detected"}}
    assert sidecar.auth_headers == ["Bearer t0k"]
    assert sidecar.frames[0]["type"] == "initialize"
    assert sidecar.frames[0]["sessionId"] == "default"
    assert sidecar.frames[0]["payload"] == {"dataPath": str(tmp_path / "default")}
    assert sidecar.frames[-1]["type"] == "destroy"


def test_lost_connection_is_reported_as_disconnect(tmp_path) -> None:
    sidecar = _Sidecar()
    sidecar.drop_after_initialize = True
    received: list[tuple[str, Any]] = []

    async def scenario() -> None:
        async with serve(sidecar.handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            client = BridgeAccountClient(f"ws://127.0.0.1:{port}/ws", "default", tmp_path / "default")
            client.on_event(lambda event, data: received.append((event, data)))
            await client.initialize()
            await _wait_for(received, 3)
            with pytest.raises(BridgeError, match="not connected"):
                await client.get_chats()
            await client.destroy()

    asyncio.run(scenario())

    assert received[-1] == ("disconnected", "CONNECTION_LOST")
    assert sidecar.auth_headers == [None]


def test_unreachable_bridge_raises_bridge_error(tmp_path) -> None:
    async def scenario() -> None:
        async with serve(_Sidecar().handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
        client = BridgeAccountClient(f"ws://127.0.0.1:{port}/ws", "default", tmp_path / "default")
        await client.initialize()

    with pytest.raises(BridgeError, match="Cannot reach WhatsApp bridge"):
        asyncio.run(scenario())
