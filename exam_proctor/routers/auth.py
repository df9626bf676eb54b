"""Authentication and roster routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlmodel import Session

from exam_proctor.database import get_session
from exam_proctor.deps import get_current_user, require_role
from exam_proctor.models import User
from exam_proctor.services import identity

router = APIRouter()


class LoginIn(BaseModel):
    username: str
    password: str


class StudentIn(BaseModel):
    student_id: str
    name: str
    email: str
    password: str


@router.post("/login")
def login(request: Request, payload: LoginIn = Body(...), session: Session = Depends(get_session)):
    result = identity.login(session, payload.username, payload.password)
    if result is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid student ID or password")
    student, exam_session = result
    user = identity.find_user(session, student.student_id, "student")

    # Clear any existing session first to avoid conflicts
    request.session.clear()
    request.session["user_id"] = user.id
    request.session["exam_session_id"] = exam_session.session_id
    return {
        "student": student.model_dump(),
        "session": exam_session.model_dump(mode="json"),
    }


@router.post("/admin-login")
def admin_login(request: Request, payload: LoginIn = Body(...), session: Session = Depends(get_session)):
    user = identity.admin_login(session, payload.username, payload.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    request.session.clear()
    request.session["user_id"] = user.id
    return {"username": user.username, "name": user.name, "role": user.role}


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@router.get("/me")
def me(request: Request, current_user: Optional[User] = Depends(get_current_user)):
    if current_user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return {
        "username": current_user.username,
        "name": current_user.name,
        "email": current_user.email,
        "role": current_user.role,
        "exam_session_id": request.session.get("exam_session_id"),
    }


@router.get("/students")
def list_students(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return [s.model_dump() for s in identity.list_students(session)]


@router.post("/students", status_code=status.HTTP_201_CREATED)
def add_student(
    payload: StudentIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    try:
        student = identity.add_student(
            session, payload.student_id, payload.name, payload.email, payload.password
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return student.model_dump()


@router.delete("/students/{student_id}")
def remove_student(
    student_id: str,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    if not identity.remove_student(session, student_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return {"ok": True}
