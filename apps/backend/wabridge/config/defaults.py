from __future__ import annotations

from pathlib import Path

from wabridge.util.paths import platform_default_data_dir

APP_VERSION = 1
DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MQTT_HOST = "mqtt://localhost:1883"
DEFAULT_TOPIC_ROOT = "frigate"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_GROUP_POLL_SECONDS = 30.0
MIN_GROUP_POLL_SECONDS = 1.0
DEFAULT_QR_TIMEOUT_SECONDS = 60.0
DEFAULT_SESSION_ID = "default"
DEFAULT_CAMERA_COLOR = "#2ca02c"
DEFAULT_RELAY_EVENT_TYPES = ["new"]
DEFAULT_FORWARD_TO = "1234567890@c.us"

# Topic segments that are Frigate service channels rather than camera names.
EXCLUDED_CAMERA_WORDS = ("notifications", "events", "available", "reviews", "stats", "zone")

ALERT_COLOR = "#ff4d4d"
DETECTION_COLOR = "#007bff"


def default_data_dir() -> Path:
    return platform_default_data_dir()
