"""Session registry routes: the command channel, dashboard reads and proctor control."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from exam_proctor.deps import get_registry, require_role
from exam_proctor.models import User
from exam_proctor.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


class CommandIn(BaseModel):
    action: str
    session_id: Optional[str] = None
    data: Optional[dict] = None


class WarnIn(BaseModel):
    message: str


@router.get("/admin/sessions")
def list_sessions(
    registry: SessionRegistry = Depends(get_registry),
    current_user: User = Depends(require_role(["admin"])),
):
    return [view.model_dump(mode="json") for view in registry.get_active_sessions()]


@router.get("/admin/sessions/{session_id}")
def get_session_view(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    current_user: User = Depends(require_role(["admin"])),
):
    view = registry.get_session(session_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return view.model_dump(mode="json")


@router.post("/admin/sessions")
def apply_command(payload: CommandIn = Body(...), registry: SessionRegistry = Depends(get_registry)):
    """Registry command channel used by exam clients.

    Commands against an unknown session are accepted and have no effect.
    """
    try:
        applied = registry.apply(payload.action, payload.session_id, payload.data)
    except ValueError as exc:
        # Includes pydantic ValidationError for rejected update fields
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return {"success": True, "applied": applied}


@router.post("/admin/sessions/{session_id}/terminate")
def terminate_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    current_user: User = Depends(require_role(["admin"])),
):
    if not registry.terminate(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    logger.info("%s terminated session %s", current_user.username, session_id)
    return {"success": True}


@router.post("/admin/sessions/{session_id}/warn")
def warn_session(
    session_id: str,
    payload: WarnIn = Body(...),
    registry: SessionRegistry = Depends(get_registry),
    current_user: User = Depends(require_role(["admin"])),
):
    try:
        found = registry.warn(session_id, payload.message)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return {"success": True}


@router.get("/sessions/{session_id}/control")
def poll_control(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return registry.poll_control(session_id).model_dump()
