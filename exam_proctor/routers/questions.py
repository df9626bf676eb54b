"""Question bank routes: versioned reads for exam clients, edits for proctors."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from exam_proctor.deps import get_question_bank, require_role
from exam_proctor.models import User
from exam_proctor.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)

router = APIRouter()


class QuestionCommandIn(BaseModel):
    action: str  # update | add | reset
    question_id: Optional[str] = None
    question: Optional[dict] = None
    updates: Optional[dict] = None


@router.get("/admin/questions")
def get_questions(bank: QuestionBank = Depends(get_question_bank)):
    return {
        "questions": [q.model_dump() for q in bank.get_questions()],
        "version": bank.version,
    }


@router.post("/admin/questions")
def edit_questions(
    payload: QuestionCommandIn = Body(...),
    bank: QuestionBank = Depends(get_question_bank),
    current_user: User = Depends(require_role(["admin"])),
):
    try:
        if payload.action == "update":
            if not payload.question_id or payload.updates is None:
                raise ValueError("update needs question_id and updates")
            if not bank.update_question(payload.question_id, payload.updates):
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
        elif payload.action == "add":
            if payload.question is None:
                raise ValueError("add needs a question")
            bank.add_question(payload.question)
        elif payload.action == "reset":
            bank.reset_question_bank()
        else:
            raise ValueError(f"Unknown question action: {payload.action}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    logger.info("%s applied question action %s", current_user.username, payload.action)
    return {"success": True, "version": bank.version}
