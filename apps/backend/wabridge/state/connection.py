from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    INITIALIZING = "initializing"
    QR_RECEIVED = "qr_received"
    AWAITING_QR = "awaiting_qr"
    LOADING = "loading"
    FAILED_RESTORE = "failed_restore"
    TIMEOUT = "timeout"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    INITIALIZATION_FAILED = "initialization_failed"
    DESTROYED = "destroyed"
    CONFLICT = "conflict"
    UNLAUNCHED = "unlaunched"
    UNPAIRED = "unpaired"
    UNPAIRED_IDLE = "unpaired_idle"
    NOT_READY = "not_ready"
    PROXY_ERROR = "proxy_error"
    SUBSCRIBING = "subscribing"
    UNSUBSCRIBING = "unsubscribing"


QR_STATES = frozenset({ConnectionState.AWAITING_QR, ConnectionState.QR_RECEIVED})


def parse_connection_state(value: str | ConnectionState) -> ConnectionState | None:
    if isinstance(value, ConnectionState):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ConnectionState(value.strip().lower())
    except ValueError:
        return None


def empty_identity() -> dict[str, str | None]:
    return {"name": None, "number": None}
