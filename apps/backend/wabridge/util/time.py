from __future__ import annotations

import datetime as dt


def epoch_to_local_iso(value: float | int | str | None) -> str | None:
    """Render a Frigate epoch timestamp (seconds) in the host's local timezone."""
    if value is None or value == "":
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc).astimezone().isoformat(timespec="seconds")
