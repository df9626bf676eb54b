"""Roster and login for students and proctors."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from exam_proctor.auth_utils import generate_session_id, hash_password, verify_password
from exam_proctor.models import User
from exam_proctor.schemas import ExamSessionInfo, StudentProfile
from exam_proctor.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_STUDENTS = [
    ("STU001", "John Smith", "john.smith@university.edu"),
    ("STU002", "Sarah Johnson", "sarah.j@university.edu"),
    ("STU003", "Michael Chen", "m.chen@university.edu"),
]
DEFAULT_STUDENT_PASSWORD = "password123"
DEFAULT_ADMIN = ("admin", "Exam Proctor", "proctor@university.edu", "admin123")


def _to_profile(user: User) -> StudentProfile:
    return StudentProfile(student_id=user.username, name=user.name, email=user.email)


def find_user(session: Session, username: str, role: str) -> Optional[User]:
    return session.exec(
        select(User).where(User.username == username.strip(), User.role == role)
    ).first()


def _authenticate(session: Session, username: str, password: str, role: str) -> Optional[User]:
    user = find_user(session, username, role)
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def login(
    session: Session, student_id: str, password: str
) -> Optional[Tuple[StudentProfile, ExamSessionInfo]]:
    """Authenticate a student and open a new pending exam session.

    Returns None on bad credentials.
    """
    user = _authenticate(session, student_id, password, "student")
    if user is None:
        logger.info("Failed student login for %s", student_id)
        return None
    profile = _to_profile(user)
    exam_session = ExamSessionInfo(
        session_id=generate_session_id(),
        student_id=profile.student_id,
        student_name=profile.name,
    )
    logger.info("Student %s logged in (session %s)", profile.student_id, exam_session.session_id)
    return profile, exam_session


def admin_login(session: Session, username: str, password: str) -> Optional[User]:
    user = _authenticate(session, username, password, "admin")
    if user is None:
        logger.info("Failed admin login for %s", username)
    return user


def list_students(session: Session) -> List[StudentProfile]:
    users = session.exec(
        select(User).where(User.role == "student").order_by(User.username)
    ).all()
    return [_to_profile(u) for u in users]


def add_student(
    session: Session, student_id: str, name: str, email: str, password: str
) -> StudentProfile:
    """Add a student to the roster.

    Raises:
        ValueError: If a field is empty or the student id is taken
    """
    student_id = student_id.strip()
    name = name.strip()
    email = email.strip().lower()
    if not student_id or not name or not email or not password:
        raise ValueError("student_id, name, email and password are required")
    if session.exec(select(User).where(User.username == student_id)).first():
        raise ValueError(f"Student {student_id} already exists")

    user = User(
        username=student_id,
        name=name,
        email=email,
        password_hash=hash_password(password),
        role="student",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Added student %s", student_id)
    return _to_profile(user)


def remove_student(session: Session, student_id: str) -> bool:
    user = find_user(session, student_id, "student")
    if user is None:
        return False
    session.delete(user)
    session.commit()
    logger.info("Removed student %s", student_id)
    return True


def seed_default_users(session: Session) -> None:
    """Install the demo roster and proctor account if they are missing."""
    for student_id, name, email in DEFAULT_STUDENTS:
        if find_user(session, student_id, "student") is None:
            session.add(
                User(
                    username=student_id,
                    name=name,
                    email=email,
                    password_hash=hash_password(DEFAULT_STUDENT_PASSWORD),
                    role="student",
                )
            )
    username, name, email, password = DEFAULT_ADMIN
    if find_user(session, username, "admin") is None:
        session.add(
            User(
                username=username,
                name=name,
                email=email,
                password_hash=hash_password(password),
                role="admin",
            )
        )
    session.commit()
