from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from wabridge.util.logging import get_logger
from wabridge.util.paths import bootstrap_config_path, ensure_data_tree, resolve_data_dir

from .defaults import (
    APP_VERSION,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_SESSION_ID,
    default_data_dir,
)
from .schema import AppSettings

logger = get_logger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


class SettingsStore:
    def __init__(self, cli_data_dir: str | None = None) -> None:
        self.bootstrap_path = bootstrap_config_path()
        self.bootstrap_path.parent.mkdir(parents=True, exist_ok=True)
        bootstrap = self._read_json(self.bootstrap_path, default={})

        configured = bootstrap.get("data_dir")
        chosen_dir = resolve_data_dir(cli_data_dir or configured or str(default_data_dir()))
        self._data_tree = ensure_data_tree(chosen_dir)

        self.settings_path = self._data_tree["config"] / "settings.json"
        raw_settings = self._read_json(self.settings_path, default={})
        migrated = migrate_settings(raw_settings, str(chosen_dir))
        self._settings = AppSettings.model_validate(migrated)
        self._settings.data_dir = str(chosen_dir)
        self.save()
        self._write_json(self.bootstrap_path, {"data_dir": str(chosen_dir)})

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def data_tree(self) -> dict[str, Path]:
        return self._data_tree

    def update(self, **changes: Any) -> AppSettings:
        merged = self._settings.model_dump()
        merged.update(changes)
        self._settings = AppSettings.model_validate(merged)
        self.save()
        return self._settings

    def save(self) -> None:
        payload = self._settings.model_dump(mode="json")
        self._write_json(self.settings_path, payload)

    @staticmethod
    def _read_json(path: Path, default: dict[str, Any]) -> dict[str, Any]:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable settings file %s", path)
            return default

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")


def migrate_settings(raw: dict[str, Any], data_dir: str) -> dict[str, Any]:
    if not raw:
        return {
            "version": APP_VERSION,
            "data_dir": data_dir,
            "debug": False,
            "mqtt": {},
            "whatsapp": {"session_id": DEFAULT_SESSION_ID},
            "relay_event_types": ["new"],
            "camera_group_mappings": {},
        }

    raw.setdefault("version", APP_VERSION)
    raw.setdefault("data_dir", data_dir)
    raw.setdefault("debug", False)
    raw.setdefault("mqtt", {})
    raw.setdefault("whatsapp", {})
    raw["whatsapp"].setdefault("session_id", DEFAULT_SESSION_ID)
    raw["whatsapp"].setdefault("max_retries", DEFAULT_MAX_RETRIES)
    raw["whatsapp"].setdefault("retry_delay_seconds", DEFAULT_RETRY_DELAY_SECONDS)
    raw.setdefault("relay_event_types", ["new"])
    raw.setdefault("camera_group_mappings", {})
    return raw


def normalize_mqtt_host(value: str) -> str:
    value = value.strip()
    if "://" in value:
        return value
    return f"mqtt://{value}"


def apply_env_overrides(settings: AppSettings, environ: Mapping[str, str]) -> AppSettings:
    data = settings.model_dump()
    mqtt = data["mqtt"]
    whatsapp = data["whatsapp"]

    if environ.get("MQTT_HOST"):
        mqtt["host"] = normalize_mqtt_host(environ["MQTT_HOST"])
    if environ.get("MQTT_USERNAME"):
        mqtt["username"] = environ["MQTT_USERNAME"]
    if environ.get("MQTT_PASSWORD"):
        mqtt["password"] = environ["MQTT_PASSWORD"]
    if environ.get("MAX_RETRIES"):
        try:
            whatsapp["max_retries"] = int(environ["MAX_RETRIES"])
        except ValueError:
            logger.warning("Ignoring non-integer MAX_RETRIES=%s", environ["MAX_RETRIES"])
    if environ.get("RETRY_DELAY"):
        try:
            whatsapp["retry_delay_seconds"] = float(environ["RETRY_DELAY"]) / 1000.0
        except ValueError:
            logger.warning("Ignoring non-numeric RETRY_DELAY=%s", environ["RETRY_DELAY"])
    if environ.get("DEBUG"):
        data["debug"] = environ["DEBUG"].strip().lower() in TRUTHY
    if environ.get("WA_BRIDGE_URL"):
        whatsapp["bridge_url"] = environ["WA_BRIDGE_URL"]
    if environ.get("WA_BRIDGE_TOKEN"):
        whatsapp["bridge_token"] = environ["WA_BRIDGE_TOKEN"]
    if environ.get("WA_SESSION_ID"):
        whatsapp["session_id"] = environ["WA_SESSION_ID"]

    return AppSettings.model_validate(data)
