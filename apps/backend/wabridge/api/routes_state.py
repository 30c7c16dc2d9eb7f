from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/state", tags=["state"])


@router.get("")
def get_state(request: Request) -> dict[str, object]:
    """Polling view of the same state pushed to live subscribers."""
    return request.app.state.bridge.store.snapshot()
