from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from wabridge.pipeline import events
from wabridge.pipeline.cameras import UnknownCameraError
from wabridge.pipeline.events import InboundMessage
from wabridge.pipeline.notifier import QueueSubscriber
from wabridge.util.logging import get_logger
from wabridge.util.security import InvalidSessionError

logger = get_logger(__name__)

router = APIRouter(tags=["live"])


class DashboardConnection:
    """One dashboard socket: pushes broadcasts and answers client intents."""

    def __init__(self, state: Any, subscriber: QueueSubscriber, session_id: str) -> None:
        self.state = state
        self.subscriber = subscriber
        self.session_id = session_id
        self._tasks: set[asyncio.Task[None]] = set()

    def send(self, event: str, data: Any = None) -> None:
        self.state.notifier.send_direct(self.subscriber, event, data)

    def error(self, message: str) -> None:
        self.send(events.ERROR, message)

    def has_session_data(self) -> bool:
        try:
            return self.state.sessions.has_session_data(self.session_id)
        except InvalidSessionError:
            logger.warning("Dashboard connected with an invalid session id")
            return False

    def greet(self, ws_url: str) -> None:
        store = self.state.store
        if self.has_session_data():
            logger.info("Session restored for %s", self.session_id)
            self.send(events.SESSION_RESTORED, {})
        self.send(events.CONFIG, {"wsUrl": ws_url})
        self.send(
            events.INITIAL_STATUS,
            {
                "connected": store.get("wa_connected"),
                "account": store.get("wa_account"),
                "subscribed": store.get("is_subscribed"),
                "state": store.connection_state.value,
            },
        )
        self.send(events.SERVER_CONNECTED, "Welcome to the WebSocket server!")

    def receive(self, raw: str) -> None:
        try:
            message = InboundMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Invalid payload received on dashboard socket")
            self.error("Invalid payload")
            return
        task = asyncio.create_task(self.handle(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle(self, message: InboundMessage) -> None:
        driver = self.state.driver
        data = message.data
        logger.info("Dashboard intent %s", message.event)

        if message.event == events.WA_SUBSCRIBE_REQUEST:
            try:
                await driver.subscribe(self.session_id)
            except Exception as exc:
                logger.error("Error initializing WhatsApp: %s", exc)
                self.send(events.WA_ERROR, {"message": "Failed to initialize WhatsApp"})
                return
            qr = self.state.store.get("qr_code")
            if qr:
                self.send("qr", qr)
        elif message.event == events.WA_UNSUBSCRIBE_REQUEST:
            try:
                await driver.unlink()
            except Exception as exc:
                logger.error("Error unsubscribing WhatsApp: %s", exc)
                self.error("Failed to unsubscribe WhatsApp")
        elif message.event == events.WA_CONNECT_REQUEST:
            if not await driver.connect():
                self.error("Failed to connect WhatsApp")
        elif message.event == events.WA_DISCONNECT_REQUEST:
            if not await driver.disconnect():
                self.error("Failed to disconnect WhatsApp")
        elif message.event == events.WA_AUTHORIZE_REQUEST:
            if data.get("authorize"):
                try:
                    await driver.authorize(self.session_id)
                except Exception as exc:
                    logger.error("Error authorizing WhatsApp: %s", exc)
                    self.error("Failed to authorize WhatsApp")
            elif not await driver.unauthorize():
                self.error("Failed to unauthorize WhatsApp")
        elif message.event == events.WA_FORWARDING_REQUEST:
            forwarding = bool(data.get("forwarding"))
            driver.set_forwarding(forwarding)
            self.send(events.WA_FORWARDING, {"forwarding": forwarding})
        elif message.event == events.ASSIGN_CAMERA_TO_GROUP:
            camera, group = data.get("camera"), data.get("group")
            try:
                if not camera or not group:
                    msg = "Camera and group are required"
                    raise UnknownCameraError(msg)
                self.state.cameras.assign_camera_to_group(str(camera), str(group))
            except UnknownCameraError as exc:
                logger.error("Error assigning camera to group: %s", exc)
                self.error(f"Failed to assign camera to group: {exc}")
        else:
            logger.warning("Unknown dashboard event %s", message.event)
            self.error("Unknown event")


async def _pump(websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    try:
        while True:
            message = await subscriber.queue.get()
            await websocket.send_text(message)
    except (WebSocketDisconnect, RuntimeError):
        logger.debug("Dashboard writer stopped")


@router.websocket("/ws")
async def dashboard_socket(websocket: WebSocket, session_id: str | None = Query(default=None, alias="sessionId")) -> None:
    state = websocket.app.state.bridge
    await websocket.accept()

    subscriber = QueueSubscriber(asyncio.get_running_loop())
    connection = DashboardConnection(state, subscriber, session_id or state.settings.whatsapp.session_id)
    state.notifier.add_subscriber(subscriber)
    writer = asyncio.create_task(_pump(websocket, subscriber))
    logger.info("Dashboard connected (session %s)", connection.session_id)

    try:
        connection.greet(str(websocket.url.replace(query="")))
        while True:
            connection.receive(await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Dashboard disconnected")
    finally:
        subscriber.close()
        state.notifier.remove_subscriber(subscriber)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
