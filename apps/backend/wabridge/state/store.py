from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from wabridge.pipeline import events
from wabridge.pipeline.notifier import Notifier
from wabridge.util.logging import get_logger

from .connection import ConnectionState, empty_identity, parse_connection_state
from .equality import deep_equal

logger = get_logger(__name__)


def _same(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class FieldSpec:
    event: str
    default: Callable[[], Any]
    payload: Callable[[Any], Any] = _same


FIELDS: dict[str, FieldSpec] = {
    "cameras": FieldSpec(events.CAMERAS_UPDATE, dict, lambda cams: list(cams)),
    "script_process": FieldSpec(events.SCRIPT_PROCESS_UPDATE, lambda: None),
    "wa_connected": FieldSpec(events.WA_CONNECTED_UPDATE, lambda: False),
    "wa_account": FieldSpec(events.WA_ACCOUNT_UPDATE, empty_identity),
    "qr_code": FieldSpec(events.QR_CODE_UPDATE, lambda: None),
    "camera_group_mappings": FieldSpec(events.CAMERA_GROUP_MAPPINGS_UPDATE, dict),
    "is_subscribed": FieldSpec(events.IS_SUBSCRIBED_UPDATE, lambda: False),
    "is_subscribing": FieldSpec(events.IS_SUBSCRIBING_UPDATE, lambda: False),
    "connection_state": FieldSpec(
        events.CONNECTION_STATE_UPDATE,
        lambda: ConnectionState.DISCONNECTED,
        lambda state: state.value,
    ),
    "group_membership_requests": FieldSpec(events.GROUP_MEMBERSHIP_REQUESTS_UPDATE, list),
    "forwarding": FieldSpec(events.WA_FORWARDING_UPDATE, lambda: False),
    "groups": FieldSpec(events.WA_GROUPS_UPDATE, list),
    "mqtt_connected": FieldSpec(events.MQTT_STATUS, lambda: False, lambda value: {"connected": value}),
}


class StateStore:
    """In-memory bridge state. Every accepted change is announced through the notifier.

    While a change notification is being delivered, further writes (from listeners
    or subscribers) are dropped rather than applied.
    """

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._values: dict[str, Any] = {name: spec.default() for name, spec in FIELDS.items()}
        self._depth = 0

    @property
    def busy(self) -> bool:
        return self._depth > 0

    def get(self, field: str) -> Any:
        if field not in FIELDS:
            raise KeyError(field)
        return copy.deepcopy(self._values[field])

    def set(self, field: str, value: Any) -> bool:
        spec = FIELDS.get(field)
        if spec is None:
            raise KeyError(field)

        if field == "connection_state":
            parsed = parse_connection_state(value)
            if parsed is None:
                logger.warning("Rejected unknown connection state %r", value)
                return False
            value = parsed

        if self._depth > 0:
            logger.debug("Dropped nested set of %s while a notification is in flight", field)
            return False

        if deep_equal(self._values[field], value):
            return False

        self._values[field] = copy.deepcopy(value)
        self._dispatch(spec.event, spec.payload(copy.deepcopy(value)))
        return True

    def set_connection_state(self, state: str | ConnectionState) -> bool:
        return self.set("connection_state", state)

    @property
    def connection_state(self) -> ConnectionState:
        return self._values["connection_state"]

    def announce(self, event: str, data: Any = None) -> bool:
        """Broadcast an event that is not tied to a stored field."""
        if self._depth > 0:
            logger.debug("Dropped nested announce of %s", event)
            return False
        self._dispatch(event, data)
        return True

    def snapshot(self) -> dict[str, Any]:
        values = copy.deepcopy(self._values)
        values["cameras"] = list(values["cameras"])
        values["connection_state"] = values["connection_state"].value
        return values

    def _dispatch(self, event: str, data: Any) -> None:
        self._depth += 1
        try:
            with self.notifier.mutation_window():
                self.notifier.notify(event, data)
        finally:
            self._depth -= 1
