from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from wabridge.util.security import validate_session_id

from .defaults import (
    APP_VERSION,
    DEFAULT_BIND,
    DEFAULT_FORWARD_TO,
    DEFAULT_GROUP_POLL_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MQTT_HOST,
    DEFAULT_PORT,
    DEFAULT_QR_TIMEOUT_SECONDS,
    DEFAULT_RELAY_EVENT_TYPES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_SESSION_ID,
    DEFAULT_TOPIC_ROOT,
    MIN_GROUP_POLL_SECONDS,
)


class MqttConfig(BaseModel):
    host: str = DEFAULT_MQTT_HOST
    username: str | None = None
    password: str | None = None
    topic_root: str = DEFAULT_TOPIC_ROOT
    client_id: str = "wabridge"
    keepalive: int = 60

    @field_validator("topic_root")
    @classmethod
    def strip_slashes(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            msg = "topic_root cannot be empty"
            raise ValueError(msg)
        return value


class WhatsAppConfig(BaseModel):
    bridge_url: str = "ws://127.0.0.1:3001/ws"
    bridge_token: str | None = None
    session_id: str = DEFAULT_SESSION_ID
    autostart: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    group_poll_seconds: float = DEFAULT_GROUP_POLL_SECONDS
    qr_timeout_seconds: float = DEFAULT_QR_TIMEOUT_SECONDS
    forward_to: str = DEFAULT_FORWARD_TO

    @field_validator("session_id")
    @classmethod
    def safe_session_id(cls, value: str) -> str:
        return validate_session_id(value)

    @field_validator("max_retries")
    @classmethod
    def non_negative_retries(cls, value: int) -> int:
        return max(0, value)

    @field_validator("retry_delay_seconds", "qr_timeout_seconds")
    @classmethod
    def non_negative_seconds(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("group_poll_seconds")
    @classmethod
    def bounded_poll_interval(cls, value: float) -> float:
        return max(MIN_GROUP_POLL_SECONDS, value)


class AppSettings(BaseModel):
    version: int = APP_VERSION
    data_dir: str
    bind: str = DEFAULT_BIND
    port: int = DEFAULT_PORT
    debug: bool = False
    mqtt: MqttConfig = Field(default_factory=MqttConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    relay_event_types: list[str] = Field(default_factory=lambda: list(DEFAULT_RELAY_EVENT_TYPES))
    camera_group_mappings: dict[str, str] = Field(default_factory=dict)

    @field_validator("data_dir")
    @classmethod
    def data_dir_not_empty(cls, value: str) -> str:
        if not value.strip():
            msg = "data_dir cannot be empty"
            raise ValueError(msg)
        return value
