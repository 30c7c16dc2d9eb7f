from __future__ import annotations

import shutil
from pathlib import Path

from wabridge.util.logging import get_logger
from wabridge.util.security import InvalidSessionError, resolve_path_within_base, validate_session_id

logger = get_logger(__name__)


class SessionStorage:
    """Per-session data directories under a single sessions root."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def session_path(self, session_id: str) -> Path:
        validate_session_id(session_id)
        target = resolve_path_within_base(self.root, session_id)
        if target is None or target == self.root.resolve():
            raise InvalidSessionError("Invalid session path")
        return target

    def create_session(self, session_id: str) -> Path:
        path = self.session_path(session_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def remove_session(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        logger.info("Removed session data for %s", session_id)
        return True

    def has_session_data(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        return path.is_dir() and any(path.iterdir())
