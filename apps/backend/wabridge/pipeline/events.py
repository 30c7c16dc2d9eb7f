from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict

from wabridge.config.defaults import ALERT_COLOR, DETECTION_COLOR
from wabridge.util.time import epoch_to_local_iso

# Outbound event names shared by every transport.
CAMERAS_UPDATE = "cameras-update"
SCRIPT_PROCESS_UPDATE = "script-process-update"
WA_CONNECTED_UPDATE = "wa-connected-update"
WA_ACCOUNT_UPDATE = "wa-account-update"
QR_CODE_UPDATE = "qr-code-update"
CAMERA_GROUP_MAPPINGS_UPDATE = "camera-group-mappings-update"
IS_SUBSCRIBED_UPDATE = "is-subscribed-update"
IS_SUBSCRIBING_UPDATE = "is-subscribing-update"
CONNECTION_STATE_UPDATE = "connection-state-update"
GROUP_MEMBERSHIP_REQUESTS_UPDATE = "group-membership-requests-update"
WA_FORWARDING_UPDATE = "wa-forwarding-update"
WA_GROUPS_UPDATE = "wa-groups-update"
MQTT_STATUS = "mqtt-status"

NEW_CAMERA = "new-camera"
FORMATTED_EVENT = "formatted-event"
WA_ERROR = "wa-error"
WA_AUTHORIZED = "wa-authorized"
WA_FORWARDING = "wa-forwarding"
WA_GROUP_JOINED = "wa-group-joined"
WA_GROUP_LEFT = "wa-group-left"
WA_GROUP_UPDATE = "wa-group-update"
WA_MESSAGE = "wa-message"
WA_MEMBERSHIP_REQUEST = "wa-group-membership-request"
SESSION_RESTORED = "session-restored"
CONFIG = "config"
INITIAL_STATUS = "initial-status"
SERVER_CONNECTED = "server-connected"
ERROR = "error"

# Inbound dashboard intents.
WA_SUBSCRIBE_REQUEST = "wa-subscribe-request"
WA_UNSUBSCRIBE_REQUEST = "wa-unsubscribe-request"
WA_CONNECT_REQUEST = "wa-connect-request"
WA_DISCONNECT_REQUEST = "wa-disconnect-request"
WA_AUTHORIZE_REQUEST = "wa-authorize-request"
WA_FORWARDING_REQUEST = "wa-forwarding-request"
ASSIGN_CAMERA_TO_GROUP = "assign-camera-to-group"


class Envelope(BaseModel):
    event: str
    data: Any = None

    def to_json(self) -> str:
        return json.dumps({"event": self.event, "data": self.data}, ensure_ascii=True, default=str)


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    data: dict[str, Any]


def format_frigate_event(payload: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Frigate `events` message into the dashboard/relay shape."""
    event_type = str(payload.get("type") or "new")
    after = payload.get("after") if isinstance(payload.get("after"), dict) else None
    body: dict[str, Any] = after or payload

    severity = str(body.get("severity") or "info")
    zones = body.get("current_zones") or body.get("zones") or []
    if not isinstance(zones, list):
        zones = [zones]
    score = body.get("top_score", body.get("score"))

    return {
        "camera": body.get("camera"),
        "label": body.get("label"),
        "zones": [str(zone) for zone in zones],
        "startTime": epoch_to_local_iso(body.get("start_time")),
        "endTime": epoch_to_local_iso(body.get("end_time")),
        "score": score,
        "severity": severity,
        "color": ALERT_COLOR if severity == "alert" else DETECTION_COLOR,
        "type": event_type,
    }


def describe_event(event: dict[str, Any]) -> str:
    label = event.get("label") or "object"
    camera = event.get("camera") or "unknown camera"
    parts = [f"{label} detected on {camera}"]
    zones = event.get("zones") or []
    if zones:
        parts.append(f"zones: {', '.join(zones)}")
    score = event.get("score")
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        parts.append(f"score: {score:.0%}")
    if event.get("startTime"):
        parts.append(f"at {event['startTime']}")
    return " | ".join(parts)
