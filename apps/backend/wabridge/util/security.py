from __future__ import annotations

import re
from pathlib import Path
from typing import Any
from urllib.parse import SplitResult, urlsplit, urlunsplit

URL_PASSWORD_RE = re.compile(r"((?:mqtts?|wss?|tcp)://[^:@/\s]+:)([^@/\s]+)(@)", re.IGNORECASE)
PASSWORD_PAIR_RE = re.compile(r"(password\s*[=:]\s*)([^\s,;]+)", re.IGNORECASE)
TOKEN_RE = re.compile(r"(token\s*[=:]\s*)([^\s,;]+)", re.IGNORECASE)
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class InvalidSessionError(ValueError):
    pass


def sanitize_url(url: str) -> str:
    try:
        parts: SplitResult = urlsplit(url)
        if not parts.scheme or not (parts.username or parts.password):
            return url
        hostname = parts.hostname or ""
        port = f":{parts.port}" if parts.port else ""
        netloc = f"{parts.username or 'user'}:***@{hostname}{port}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    except ValueError:
        return URL_PASSWORD_RE.sub(r"\1***\3", url)


def resolve_path_within_base(base_dir: Path, untrusted_path: str | Path) -> Path | None:
    try:
        resolved_base = base_dir.resolve()
        target = (resolved_base / Path(untrusted_path)).resolve()
    except (OSError, RuntimeError, ValueError):
        return None

    try:
        target.relative_to(resolved_base)
    except ValueError:
        return None
    return target


def validate_session_id(session_id: str) -> str:
    value = str(session_id)
    if not SESSION_ID_RE.fullmatch(value):
        raise InvalidSessionError("Invalid session id")
    return value


def redact_secrets(text: str) -> str:
    text = URL_PASSWORD_RE.sub(r"\1***\3", text)
    text = PASSWORD_PAIR_RE.sub(r"\1***", text)
    text = TOKEN_RE.sub(r"\1***", text)
    return text


def scrub_sensitive(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for key, value in obj.items():
            lowered = str(key).lower()
            if "password" in lowered or "token" in lowered or "secret" in lowered:
                out[key] = "***" if value else value
            elif lowered in {"host", "url", "bridge_url"} and isinstance(value, str):
                out[key] = sanitize_url(value)
            else:
                out[key] = scrub_sensitive(value)
        return out
    if isinstance(obj, list):
        return [scrub_sensitive(v) for v in obj]
    if isinstance(obj, str):
        return redact_secrets(obj)
    return obj
