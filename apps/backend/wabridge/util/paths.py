from __future__ import annotations

import os
import sys
from pathlib import Path


def platform_default_data_dir() -> Path:
    home = Path.home()
    if sys.platform.startswith("win"):
        root = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
        return root / "wabridge"
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "wabridge"
    return Path(os.environ.get("XDG_DATA_HOME", home / ".local" / "share")) / "wabridge"


def bootstrap_config_path() -> Path:
    home = Path.home()
    return home / ".wabridge" / "bootstrap.json"


def ensure_data_tree(data_dir: Path) -> dict[str, Path]:
    tree = {
        "root": data_dir,
        "sessions": data_dir / "sessions",
        "logs": data_dir / "logs",
        "config": data_dir / "config",
    }
    for path in tree.values():
        path.mkdir(parents=True, exist_ok=True)
    return tree


def resolve_data_dir(cli_data_dir: str | None) -> Path:
    if cli_data_dir:
        return Path(cli_data_dir).expanduser().resolve()
    return platform_default_data_dir().resolve()
