from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from wabridge.util.security import InvalidSessionError, validate_session_id

router = APIRouter(prefix="/wa", tags=["whatsapp"])


class AuthorizePayload(BaseModel):
    authorize: bool = True
    session_id: str | None = None


class ForwardingPayload(BaseModel):
    forwarding: bool


@router.get("/qr")
def get_qr(request: Request) -> dict[str, object]:
    qr = request.app.state.bridge.store.get("qr_code")
    if not qr:
        raise HTTPException(status_code=404, detail="QR code not available")
    return {"qr": qr}


@router.get("/status")
def get_status(request: Request) -> dict[str, object]:
    store = request.app.state.bridge.store
    return {
        "connected": store.get("wa_connected"),
        "account": store.get("wa_account"),
        "state": store.connection_state.value,
        "forwarding": store.get("forwarding"),
    }


@router.get("/subscription-status")
def get_subscription_status(request: Request) -> dict[str, object]:
    store = request.app.state.bridge.store
    return {"subscribed": store.get("is_subscribed"), "subscribing": store.get("is_subscribing")}


@router.get("/groups")
def get_groups(request: Request) -> dict[str, object]:
    store = request.app.state.bridge.store
    return {
        "groups": store.get("groups"),
        "membership_requests": store.get("group_membership_requests"),
    }


@router.post("/unlink")
async def unlink(request: Request) -> dict[str, object]:
    await request.app.state.bridge.driver.unlink()
    return {"ok": True}


@router.post("/authorize")
async def authorize(payload: AuthorizePayload, request: Request) -> dict[str, object]:
    state = request.app.state.bridge
    if payload.authorize:
        try:
            session_id = validate_session_id(payload.session_id or state.settings.whatsapp.session_id)
        except InvalidSessionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await state.driver.authorize(session_id)
        return {"ok": True, "state": state.store.connection_state.value}

    if not await state.driver.unauthorize():
        raise HTTPException(status_code=409, detail="WhatsApp client is not connected")
    return {"ok": True, "state": state.store.connection_state.value}


@router.post("/forwarding")
async def set_forwarding(payload: ForwardingPayload, request: Request) -> dict[str, object]:
    driver = request.app.state.bridge.driver
    driver.set_forwarding(payload.forwarding)
    return {"forwarding": payload.forwarding}
