"""SQLModel tables for the exam proctor service."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from exam_proctor.utils import utcnow


class User(SQLModel, table=True):
    """Account that can log in as a student or as a proctor/admin."""

    __table_args__ = (UniqueConstraint("username", name="uq_user_username"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str  # student id (e.g. "STU001") or admin login name
    name: str
    email: str
    password_hash: str
    role: str = Field(default="student")  # "admin", "student"
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None


# ===================== DURABLE REGISTRY / QUESTION BANK =====================


class ActiveSessionRow(SQLModel, table=True):
    """Registry record persisted by the SQL session repository."""

    session_id: str = Field(primary_key=True)
    student_id: str
    student_name: str
    exam_id: str
    start_time: datetime
    total_duration_seconds: int
    total_questions: int
    current_question: int = 1
    answered_count: int = 0
    webcam_active: bool = False
    screen_share_active: bool = False
    mobile_connected: bool = False
    # JSON lists are always replaced wholesale, never mutated in place
    behavior_flags: list = Field(default_factory=list, sa_column=Column(JSON))
    activity_log: list = Field(default_factory=list, sa_column=Column(JSON))
    last_update: datetime
    terminated: bool = False
    pending_warnings: list = Field(default_factory=list, sa_column=Column(JSON))


class QuestionRow(SQLModel, table=True):
    """Question stored by the SQL question bank, ordered by ``position``."""

    question_id: str = Field(primary_key=True)
    position: int
    text: str
    options: list = Field(default_factory=list, sa_column=Column(JSON))
    correct_answer_index: int
    difficulty: str  # easy | medium | hard
    minimum_expected_time_seconds: int


class QuestionBankState(SQLModel, table=True):
    """Single-row table holding the bank's monotonic version counter."""

    id: int = Field(default=1, primary_key=True)
    version: int = 1
