from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from wabridge.pipeline.cameras import UnknownCameraError

router = APIRouter(tags=["cameras"])


class AssignCameraPayload(BaseModel):
    camera: str | None = None
    group: str | None = None


@router.get("/cameras")
def list_cameras(request: Request) -> dict[str, object]:
    cameras = request.app.state.bridge.cameras.cameras()
    if not cameras:
        raise HTTPException(status_code=404, detail="No cameras found")
    return {"cameras": list(cameras), "details": cameras}


@router.get("/camera-group-mappings")
def get_mappings(request: Request) -> dict[str, str]:
    return request.app.state.bridge.cameras.mappings()


@router.post("/assign-camera")
async def assign_camera(payload: AssignCameraPayload, request: Request) -> dict[str, object]:
    if not payload.camera or not payload.group:
        raise HTTPException(status_code=400, detail="Camera and group are required")
    try:
        mappings = request.app.state.bridge.cameras.assign_camera_to_group(payload.camera, payload.group)
    except UnknownCameraError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "mappings": mappings}
