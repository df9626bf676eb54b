"""Shared FastAPI dependencies for database access, authentication and services."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session

from exam_proctor.database import get_session
from exam_proctor.models import User
from exam_proctor.services.pairing import PairingCodec, PairingStore
from exam_proctor.services.question_bank import QuestionBank
from exam_proctor.services.session_registry import SessionRegistry


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in."""
    if current_user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return current_user

    return wrapper


# ----- services held on app.state by create_app() -----


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_pairing_store(request: Request) -> PairingStore:
    return request.app.state.pairing


def get_pairing_codec(request: Request) -> PairingCodec:
    return request.app.state.pairing_codec


def get_question_bank(request: Request) -> QuestionBank:
    return request.app.state.questions
