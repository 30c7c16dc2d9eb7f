from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any

from wabridge.config.schema import WhatsAppConfig
from wabridge.pipeline import events
from wabridge.state.connection import ConnectionState, empty_identity
from wabridge.state.store import StateStore
from wabridge.util.logging import get_logger

from .base import AccountClient
from .retry import retry
from .sessions import SessionStorage

logger = get_logger(__name__)

ClientFactory = Callable[[str, Path], AccountClient]

TRANSIENT_REASON_MARKERS = ("NAVIGATION", "TIMEOUT", "NETWORK", "CONNECTION_LOST", "ECONNRESET")
STATUS_REPLY = "[WhatsApp] This is an automated status response."

# Account events that are relayed to the dashboard unchanged.
PASSTHROUGH_EVENTS = frozenset(
    {
        "call",
        "change_state",
        "change_battery",
        "message_create",
        "message_revoke_everyone",
        "message_revoke_me",
        "message_ack",
        "media_uploaded",
        "loading_screen",
    }
)


def is_transient_reason(reason: Any) -> bool:
    text = str(reason or "").upper()
    return any(marker in text for marker in TRANSIENT_REASON_MARKERS)


class LifecycleDriver:
    """Owns the account client and turns its events into state transitions."""

    def __init__(
        self,
        store: StateStore,
        sessions: SessionStorage,
        client_factory: ClientFactory,
        config: WhatsAppConfig | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.client_factory = client_factory
        self.config = config or WhatsAppConfig()
        self.session_id: str | None = None
        self._client: AccountClient | None = None
        self._is_initializing = False
        self._own_wid: str | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._qr_timer: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "qr": self._on_qr,
            "ready": self._on_ready,
            "authenticated": self._on_authenticated,
            "auth_failure": self._on_auth_failure,
            "disconnected": self._on_disconnected,
            "contact_changed": self._on_contact_changed,
            "group_join": self._relay(events.WA_GROUP_JOINED),
            "group_leave": self._relay(events.WA_GROUP_LEFT),
            "group_update": self._relay(events.WA_GROUP_UPDATE),
            "group_membership_request": self._on_membership_request,
            "message": self._on_message,
        }

    @property
    def client(self) -> AccountClient | None:
        return self._client

    @property
    def is_initializing(self) -> bool:
        return self._is_initializing

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _retry(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await retry(fn, self.config.max_retries, self.config.retry_delay_seconds)

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self, session_id: str) -> None:
        if self._is_initializing:
            logger.info("Client is already initializing; skipping")
            return

        path = self.sessions.create_session(session_id)
        self._is_initializing = True
        self.session_id = session_id
        logger.info("Initializing WhatsApp client for session %s", session_id)
        self._drop_qr()
        self.store.set_connection_state(ConnectionState.INITIALIZING)

        if self.sessions.has_session_data(session_id):
            logger.info("Restoring existing session %s", session_id)
            self.store.set_connection_state(ConnectionState.AUTHENTICATED)

        if self._client is not None:
            await self._teardown_client(self._client)

        client = self.client_factory(session_id, path)
        client.on_event(self.handle_event)
        self._client = client

        try:
            await self._retry(client.initialize)
        except Exception as exc:
            logger.exception("Error initializing WhatsApp client")
            self._is_initializing = False
            self.store.set("is_subscribing", False)
            self.store.set_connection_state(ConnectionState.INITIALIZATION_FAILED)
            self.store.announce(events.WA_ERROR, {"message": "Error initializing WhatsApp client", "error": str(exc)})
            return
        logger.info("WhatsApp client initialized")

    async def handle_event(self, name: str, data: Any = None) -> None:
        try:
            handler = self._handlers.get(name)
            if handler is not None:
                await handler(data)
            elif name in PASSTHROUGH_EVENTS:
                logger.debug("Account event %s", name)
                self.store.announce(name, data)
            else:
                logger.warning("Unhandled account event %s", name)
                self.store.announce(name, data)
                self.store.announce(events.WA_ERROR, {"message": "Unknown WhatsApp event", "error": name})
        except Exception as exc:
            logger.exception("Error handling account event %s", name)
            self.store.announce(events.WA_ERROR, {"message": f"Error handling {name}", "error": str(exc)})

    async def _on_qr(self, qr: Any) -> None:
        logger.info("QR code received")
        if self.store.connection_state is ConnectionState.AUTHENTICATED and not self.store.get("wa_connected"):
            logger.info("Stored session could not be restored; a new QR scan is required")
            self.store.set_connection_state(ConnectionState.FAILED_RESTORE)
        self.store.set_connection_state(ConnectionState.AWAITING_QR)
        self.store.set("qr_code", qr)
        self._start_qr_timer()

    async def _on_ready(self, _data: Any) -> None:
        self._is_initializing = False
        logger.info("WhatsApp client is ready")
        self._drop_qr()
        self.store.set("wa_connected", True)
        self.store.set("is_subscribed", True)
        self.store.set("is_subscribing", False)
        self.store.set_connection_state(ConnectionState.CONNECTED)
        await self.refresh_identity()
        self.start_group_polling()

    async def _on_authenticated(self, _data: Any) -> None:
        self._is_initializing = False
        logger.info("WhatsApp authentication successful")
        self._drop_qr()
        self.store.set_connection_state(ConnectionState.AUTHENTICATED)
        await self.refresh_identity()

    async def _on_auth_failure(self, message: Any) -> None:
        logger.error("WhatsApp authentication failed: %s", message)
        self._drop_qr()
        self._clear_flags()
        self.stop_group_polling()
        self.store.set_connection_state(ConnectionState.AUTH_FAILURE)
        self._remove_session_data()
        self._detach_client()

    async def _on_disconnected(self, reason: Any) -> None:
        logger.info("WhatsApp client disconnected: %s", reason)
        self._drop_qr()
        self._clear_flags()
        self.stop_group_polling()
        self.store.set_connection_state(ConnectionState.DISCONNECTED)
        self._own_wid = None
        self.store.set("wa_account", empty_identity())
        self._remove_session_data()
        self._detach_client()

        if is_transient_reason(reason) and self.session_id is not None:
            logger.info("Transient disconnect; reinitializing session %s", self.session_id)
            self._spawn(self.initialize(self.session_id))

    async def _on_contact_changed(self, _data: Any) -> None:
        await self.refresh_identity()

    async def _on_membership_request(self, request: Any) -> None:
        logger.info("Group membership request received")
        pending = self.store.get("group_membership_requests")
        pending.append(request)
        self.store.set("group_membership_requests", pending)
        self.store.announce(events.WA_MEMBERSHIP_REQUEST, request)

    def _relay(self, event: str) -> Callable[[Any], Awaitable[None]]:
        async def handler(data: Any) -> None:
            logger.info("Account group event %s", event)
            self.store.announce(event, data)

        return handler

    async def _on_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.debug("Ignoring malformed message event")
            return
        client = self._client
        if client is None:
            return
        sender = message.get("from")
        body = str(message.get("body") or "")
        if message.get("fromMe") or (self._own_wid is not None and sender == self._own_wid):
            logger.debug("Ignoring message from the linked account")
            return

        if "status" in body.lower() and sender:
            await client.send_message(str(sender), STATUS_REPLY)
            logger.info("Sent automated status response to %s", sender)

        if self.store.get("forwarding") and body:
            await client.send_message(self.config.forward_to, body)
            logger.info("Forwarded message to %s", self.config.forward_to)

    # -- identity and groups ----------------------------------------------

    async def refresh_identity(self) -> None:
        client = self._client
        if client is None:
            logger.info("Client not initialized; cannot update account info")
            return
        try:
            info = await client.get_info()
            if not info or not info.get("wid"):
                logger.info("Account info not available yet")
                return
            wid = str(info["wid"])
            contact = await client.get_contact_by_id(wid)
        except Exception:
            logger.exception("Error updating account info")
            return

        self._own_wid = wid
        name = contact.get("pushname") or contact.get("name") or info.get("pushname") or "Unknown"
        number = info.get("user") or wid.split("@", 1)[0]
        if self.store.set("wa_account", {"name": name, "number": number}):
            logger.info("Account info updated for %s", number)

    async def fetch_groups(self) -> bool:
        """Refresh the group list. Returns False when polling should stop."""
        client = self._client
        if client is None:
            logger.info("Client not initialized; cannot fetch groups")
            return False
        try:
            chats = await client.get_chats()
        except Exception as exc:
            logger.error("Error fetching WhatsApp groups: %s", exc)
            self.store.announce(
                events.WA_ERROR,
                {"message": "WhatsApp Error", "error": f"Error fetching or updating user groups: {exc}"},
            )
            if "Session closed" in str(exc):
                logger.info("Session closed; stopping group polling")
                return False
            return True

        groups = []
        for chat in chats:
            if not chat.get("isGroup"):
                continue
            participants = chat.get("participants") or []
            groups.append(
                {
                    "id": chat.get("id"),
                    "name": chat.get("name"),
                    "isMember": True,
                    "isAdmin": any(p.get("id") == self._own_wid and bool(p.get("isAdmin")) for p in participants),
                }
            )
        if self.store.set("groups", groups):
            logger.info("User groups updated (%s)", len(groups))
        return True

    def start_group_polling(self) -> None:
        if self._client is None or not self.store.get("wa_connected"):
            logger.info("Client not connected; cannot start group polling")
            return
        if self.is_polling:
            return
        logger.info("Starting group polling")
        self._poll_task = asyncio.create_task(self._poll_groups())

    def stop_group_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.info("Group polling stopped")

    async def _poll_groups(self) -> None:
        while True:
            if self._client is None or not self.store.get("wa_connected"):
                logger.info("Client is not connected; stopping group polling")
                return
            if not await self.fetch_groups():
                return
            await asyncio.sleep(self.config.group_poll_seconds)

    # -- user intents ------------------------------------------------------

    async def subscribe(self, session_id: str) -> None:
        if not self.store.get("is_subscribed"):
            self.store.set("is_subscribing", True)
        try:
            await self.initialize(session_id)
        except Exception:
            self.store.set("is_subscribing", False)
            raise

    async def authorize(self, session_id: str) -> None:
        logger.info("Authorizing WhatsApp")
        try:
            await self.subscribe(session_id)
        except Exception as exc:
            logger.error("Error authorizing WhatsApp: %s", exc)
            self.store.announce(events.WA_ERROR, {"message": "Error authorizing WhatsApp", "error": str(exc)})
            raise
        self.store.announce(events.WA_AUTHORIZED, {"authorized": True})

    async def unauthorize(self) -> bool:
        logger.info("Unauthorizing WhatsApp")
        client = self._client
        try:
            if client is None:
                msg = "Client not initialized"
                raise RuntimeError(msg)
            await self._retry(client.logout)
        except Exception as exc:
            logger.error("Error unauthorizing WhatsApp: %s", exc)
            self.store.announce(events.WA_ERROR, {"message": "Error unauthorizing WhatsApp", "error": str(exc)})
            return False
        self._drop_qr()
        self._clear_flags()
        self.stop_group_polling()
        self.store.announce(events.WA_AUTHORIZED, {"authorized": False})
        return True

    async def connect(self) -> bool:
        client = self._client
        if client is None:
            logger.info("Client not initialized; cannot connect")
            return False
        logger.info("Connecting to WhatsApp")
        try:
            await self._retry(client.initialize)
        except Exception as exc:
            logger.error("Error connecting to WhatsApp: %s", exc)
            self.store.announce(events.WA_ERROR, {"message": "Error connecting to WhatsApp", "error": str(exc)})
            return False
        return True

    async def disconnect(self) -> bool:
        """Log out without clearing the account identity."""
        client = self._client
        if client is None:
            logger.info("Client not initialized; cannot disconnect")
            return False
        try:
            await self._retry(client.logout)
        except Exception as exc:
            logger.error("Error disconnecting from WhatsApp: %s", exc)
            self.store.announce(events.WA_ERROR, {"message": "Error disconnecting from WhatsApp", "error": str(exc)})
            return False
        self._drop_qr()
        self._clear_flags()
        self.stop_group_polling()
        logger.info("Disconnected from WhatsApp")
        return True

    async def unlink(self) -> None:
        client = self._client
        if client is None:
            logger.info("Client not initialized; resetting state only")
        else:
            self._drop_qr()
            self.store.set_connection_state(ConnectionState.UNSUBSCRIBING)
            try:
                await self._retry(client.logout)
                logger.info("Client logged out")
            except Exception as exc:
                logger.error("Error during logout: %s", exc)
                self.store.announce(events.WA_ERROR, {"message": "Error during logout", "error": str(exc)})
        await self._reset()

    def set_forwarding(self, enabled: bool) -> None:
        logger.info("%s message forwarding", "Starting" if enabled else "Stopping")
        self.store.set("forwarding", bool(enabled))

    async def send_message(self, chat_id: str, body: str) -> bool:
        client = self._client
        if client is None or not self.store.get("wa_connected"):
            logger.info("Not connected; dropping message to %s", chat_id)
            return False
        try:
            await client.send_message(chat_id, body)
        except Exception as exc:
            logger.error("Error sending message to %s: %s", chat_id, exc)
            self.store.announce(events.WA_ERROR, {"message": "Error sending message", "error": str(exc)})
            return False
        return True

    # -- housekeeping ------------------------------------------------------

    async def wait_idle(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        self._cancel_qr_timer()
        self.stop_group_polling()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        client = self._client
        self._client = None
        if client is not None:
            await self._teardown_client(client)

    async def _reset(self) -> None:
        self._drop_qr()
        self._clear_flags()
        self.stop_group_polling()
        self._own_wid = None
        self.store.set("wa_account", empty_identity())
        client = self._client
        self._client = None
        if client is not None:
            await self._teardown_client(client)
        self._remove_session_data()
        self.store.set_connection_state(ConnectionState.DISCONNECTED)

    def _clear_flags(self) -> None:
        self._is_initializing = False
        self.store.set("wa_connected", False)
        self.store.set("is_subscribed", False)
        self.store.set("is_subscribing", False)

    def _remove_session_data(self) -> None:
        if self.session_id is None:
            return
        try:
            self.sessions.remove_session(self.session_id)
        except OSError:
            logger.exception("Could not remove session data for %s", self.session_id)

    def _detach_client(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            self._spawn(self._teardown_client(client))

    async def _teardown_client(self, client: AccountClient) -> None:
        try:
            await client.destroy()
        except Exception:
            logger.exception("Error destroying WhatsApp client")

    def _drop_qr(self) -> None:
        self._drop_qr()

    def _start_qr_timer(self) -> None:
        self._cancel_qr_timer()
        if self.config.qr_timeout_seconds > 0:
            self._qr_timer = asyncio.create_task(self._expire_qr(self.config.qr_timeout_seconds))

    def _cancel_qr_timer(self) -> None:
        task = self._qr_timer
        self._qr_timer = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _expire_qr(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._qr_timer = None
        if self.store.connection_state in (ConnectionState.AWAITING_QR, ConnectionState.QR_RECEIVED):
            logger.info("QR code expired without authentication")
            self._is_initializing = False
            self.store.set("qr_code", None)
            self.store.set_connection_state(ConnectionState.TIMEOUT)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
