"""Mobile pairing routes: QR code issue/redeem, transport actions and status."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel

from exam_proctor.auth_utils import generate_device_id
from exam_proctor.deps import get_pairing_codec, get_pairing_store, require_login
from exam_proctor.models import User
from exam_proctor.services.pairing import (
    PairingCodec,
    PairingCodeError,
    PairingCodeExpired,
    PairingStore,
)

router = APIRouter()


class PairingActionIn(BaseModel):
    session_id: str
    action: str
    device_id: Optional[str] = None


class CodeIn(BaseModel):
    session_id: str


class RedeemIn(BaseModel):
    code: str
    device_id: Optional[str] = None


@router.get("/pairing")
def pairing_status(session_id: str = Query(...), store: PairingStore = Depends(get_pairing_store)):
    return store.get_status(session_id).model_dump(mode="json")


@router.post("/pairing")
def pairing_action(payload: PairingActionIn = Body(...), store: PairingStore = Depends(get_pairing_store)):
    try:
        store.apply(payload.session_id, payload.action, payload.device_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return {"success": True, "status": store.get_status(payload.session_id).model_dump(mode="json")}


@router.post("/pairing/code")
def issue_code(
    payload: CodeIn = Body(...),
    store: PairingStore = Depends(get_pairing_store),
    codec: PairingCodec = Depends(get_pairing_codec),
    current_user: User = Depends(require_login),
):
    """Issue the signed code the exam screen renders as a QR code."""
    code, data = codec.issue(payload.session_id, current_user.username)
    store.init(payload.session_id, pairing_code=code)
    return {"code": code, **data.model_dump(mode="json")}


@router.post("/pairing/redeem")
def redeem_code(
    payload: RedeemIn = Body(...),
    store: PairingStore = Depends(get_pairing_store),
    codec: PairingCodec = Depends(get_pairing_codec),
):
    """Phone side: scan the code and pair this device with the session."""
    try:
        data = codec.decode(payload.code)
    except PairingCodeExpired as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc))
    except PairingCodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    device_id = payload.device_id or generate_device_id()
    store.pair(data.session_id, device_id)
    return {"session_id": data.session_id, "student_id": data.student_id, "device_id": device_id}
