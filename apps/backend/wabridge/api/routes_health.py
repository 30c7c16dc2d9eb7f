from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def get_health(request: Request) -> dict[str, object]:
    state = request.app.state.bridge
    settings = state.settings
    store = state.store
    return {
        "ok": True,
        "version": request.app.version,
        "bind": settings.bind,
        "port": settings.port,
        "data_dir": settings.data_dir,
        "mqtt_connected": store.get("mqtt_connected"),
        "wa_connected": store.get("wa_connected"),
        "connection_state": store.connection_state.value,
        "cameras": len(store.get("cameras")),
        "live_subscribers": state.notifier.subscriber_count,
    }
