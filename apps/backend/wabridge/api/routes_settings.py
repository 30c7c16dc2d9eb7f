from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from wabridge.util.security import scrub_sensitive

router = APIRouter(prefix="/settings", tags=["settings"])


class RuntimeExitResponse(BaseModel):
    ok: bool
    message: str


@router.get("")
def get_settings(request: Request) -> dict[str, object]:
    state = request.app.state.bridge
    return {
        "settings": scrub_sensitive(state.settings.model_dump(mode="json")),
        "data_tree": {name: str(path) for name, path in state.settings_store.data_tree.items()},
    }


@router.post("/exit", response_model=RuntimeExitResponse)
def request_runtime_exit(request: Request) -> RuntimeExitResponse:
    state = request.app.state.bridge
    state.begin_shutdown()

    request_exit = getattr(request.app.state, "request_exit", None)
    if callable(request_exit):
        request_exit()
        return RuntimeExitResponse(ok=True, message="Bridge shutdown requested.")

    raise HTTPException(status_code=503, detail="Runtime exit is unavailable in this launch mode.")
