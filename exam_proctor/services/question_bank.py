"""Question bank with a monotonic version counter.

Exam clients poll ``version`` to notice edits made while an exam is running.
Every successful update, addition or reset bumps the version, so the counter
never repeats a value: a reset restores the seed questions under a new
version.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from exam_proctor.models import QuestionBankState, QuestionRow
from exam_proctor.sample_questions import sample_questions
from exam_proctor.schemas import Question, QuestionPatch
from exam_proctor.utils import sanitize_question_text

logger = logging.getLogger(__name__)


def _clean(question: Question) -> Question:
    text = sanitize_question_text(question.text)
    if not text:
        raise ValueError("Question text cannot be empty after sanitization")
    return question.model_copy(update={"text": text})


def apply_patch(question: Question, patch: Union[QuestionPatch, dict]) -> Question:
    """Return ``question`` with the patch applied and re-validated."""
    changes = QuestionPatch.model_validate(patch).model_dump(exclude_unset=True)
    merged = Question.model_validate({**question.model_dump(), **changes})
    return _clean(merged)


class QuestionBank:
    """Storage contract of the question store."""

    def get_questions(self) -> List[Question]:
        raise NotImplementedError

    @property
    def version(self) -> int:
        raise NotImplementedError

    def update_question(self, question_id: str, patch: Union[QuestionPatch, dict]) -> bool:
        raise NotImplementedError

    def add_question(self, question: Union[Question, dict]) -> Question:
        raise NotImplementedError

    def reset_question_bank(self) -> None:
        raise NotImplementedError


class InMemoryQuestionBank(QuestionBank):
    def __init__(self, seed: Optional[Callable[[], List[Question]]] = None) -> None:
        self._seed = seed or sample_questions
        self._questions: List[Question] = self._seed()
        self._version = 1
        self._lock = threading.Lock()

    def get_questions(self) -> List[Question]:
        return [q.model_copy(deep=True) for q in self._questions]

    @property
    def version(self) -> int:
        return self._version

    def update_question(self, question_id: str, patch: Union[QuestionPatch, dict]) -> bool:
        with self._lock:
            for index, existing in enumerate(self._questions):
                if existing.question_id == question_id:
                    self._questions[index] = apply_patch(existing, patch)
                    self._version += 1
                    logger.info("Question %s updated (version %d)", question_id, self._version)
                    return True
        return False

    def add_question(self, question: Union[Question, dict]) -> Question:
        question = _clean(Question.model_validate(question))
        with self._lock:
            if any(q.question_id == question.question_id for q in self._questions):
                raise ValueError(f"Question with id={question.question_id} already exists")
            self._questions.append(question)
            self._version += 1
        return question

    def reset_question_bank(self) -> None:
        with self._lock:
            self._questions = self._seed()
            self._version += 1
        logger.info("Question bank reset to seed questions")


class SqlQuestionBank(QuestionBank):
    """Durable question bank backed by ``QuestionRow`` and ``QuestionBankState``."""

    def __init__(self, engine: Engine, seed: Optional[Callable[[], List[Question]]] = None) -> None:
        self._engine = engine
        self._seed = seed or sample_questions
        with Session(self._engine) as session:
            if session.get(QuestionBankState, 1) is None:
                self._write_seed(session, version=1)

    def _write_seed(self, session: Session, version: int) -> None:
        for row in session.exec(select(QuestionRow)).all():
            session.delete(row)
        session.flush()
        for position, question in enumerate(self._seed()):
            session.add(QuestionRow(position=position, **question.model_dump()))
        state = session.get(QuestionBankState, 1) or QuestionBankState(id=1)
        state.version = version
        session.add(state)
        session.commit()

    @staticmethod
    def _current_version(session: Session) -> int:
        state = session.get(QuestionBankState, 1)
        return state.version if state else 0

    @staticmethod
    def _bump(session: Session) -> None:
        state = session.get(QuestionBankState, 1)
        state.version += 1
        session.add(state)

    @staticmethod
    def _to_question(row: QuestionRow) -> Question:
        return Question.model_validate(row.model_dump(exclude={"position"}))

    def get_questions(self) -> List[Question]:
        with Session(self._engine) as session:
            rows = session.exec(select(QuestionRow).order_by(QuestionRow.position)).all()
            return [self._to_question(row) for row in rows]

    @property
    def version(self) -> int:
        with Session(self._engine) as session:
            return session.get(QuestionBankState, 1).version

    def update_question(self, question_id: str, patch: Union[QuestionPatch, dict]) -> bool:
        with Session(self._engine) as session:
            row = session.get(QuestionRow, question_id)
            if row is None:
                return False
            updated = apply_patch(self._to_question(row), patch)
            for key, value in updated.model_dump().items():
                setattr(row, key, value)
            session.add(row)
            self._bump(session)
            session.commit()
        logger.info("Question %s updated", question_id)
        return True

    def add_question(self, question: Union[Question, dict]) -> Question:
        question = _clean(Question.model_validate(question))
        with Session(self._engine) as session:
            if session.get(QuestionRow, question.question_id) is not None:
                raise ValueError(f"Question with id={question.question_id} already exists")
            position = len(session.exec(select(QuestionRow)).all())
            session.add(QuestionRow(position=position, **question.model_dump()))
            self._bump(session)
            session.commit()
        return question

    def reset_question_bank(self) -> None:
        with Session(self._engine) as session:
            self._write_seed(session, version=self._current_version(session) + 1)
        logger.info("Question bank reset to seed questions")
