import os
from datetime import datetime, timedelta

# Must be set before exam_proctor.config is imported
os.environ.setdefault("PROCTOR_DATABASE_URL", "sqlite://")
os.environ.setdefault("PROCTOR_BCRYPT_ROUNDS", "4")
os.environ.setdefault("PROCTOR_STORAGE_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from exam_proctor import models  # noqa: F401  (registers tables)
from exam_proctor.main import create_app
from exam_proctor.schemas import ExamSessionInfo, Question
from exam_proctor.services.identity import seed_default_users


# ============================================================================
# CONTROLLABLE CLOCK
# ============================================================================


class FakeClock:
    """Callable clock for services that take ``clock=``; advance it by hand."""

    def __init__(self, start: datetime = datetime(2025, 1, 6, 9, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine; StaticPool shares one connection across threads."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def db_session(engine):
    with Session(engine) as session:
        seed_default_users(session)
        yield session


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def app(engine):
    return create_app(storage="memory", engine=engine)


@pytest.fixture
def client(app):
    # Entering the context runs the startup handler (tables + seed users)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_client(client):
    response = client.post("/auth/admin-login", json={"username": "admin", "password": "admin123"})
    assert response.status_code == 200
    return client


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================


def make_question(question_id: str, difficulty: str = "medium", minimum: int = 30, correct: int = 0) -> Question:
    return Question(
        question_id=question_id,
        text=f"Question {question_id}",
        options=["A", "B", "C", "D"],
        correct_answer_index=correct,
        difficulty=difficulty,
        minimum_expected_time_seconds=minimum,
    )


@pytest.fixture
def session_info():
    return ExamSessionInfo(session_id="session_test_1", student_id="STU001", student_name="John Smith")


@pytest.fixture
def questions():
    return [
        make_question("q1", "easy", 15),
        make_question("q2", "medium", 30),
        make_question("q3", "hard", 45),
    ]
