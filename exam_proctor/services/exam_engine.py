"""State machine for one student's exam attempt.

Lifecycle: not started -> active (``initialize_exam``) -> submitted
(``submit_exam``, timer expiry or proctor termination). Once submitted the
exam state is frozen and every mutator becomes a no-op.

Input that does not apply to the current state (unknown question, locked
answer, out-of-range navigation) is ignored rather than raised: these are
races between the exam screen and the state, not faults.

Registry side effects are queued in order and sent by ``flush``. Mutators
never wait on the network, so a slow registry cannot delay the exam.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from exam_proctor.config import DEFAULT_EXAM_DURATION_MINUTES, DEFAULT_EXAM_ID
from exam_proctor.schemas import (
    ActivityEntry,
    AnalysisResult,
    Answer,
    BehaviorFlag,
    ExamLog,
    ExamSessionInfo,
    ExamState,
    FaceTrackingLog,
    IntegrityReport,
    Question,
    QuestionLog,
    SessionRegistration,
    SessionUpdate,
)
from exam_proctor.services.behavior_analyzer import analyze_exam_session, build_integrity_report
from exam_proctor.services.proctor_client import ProctorClient
from exam_proctor.utils import elapsed_seconds, utcnow

logger = logging.getLogger(__name__)


class ExamStateError(RuntimeError):
    """Raised when an operation is invalid for the exam's lifecycle stage."""


class ExamStateMachine:
    """Owns the questions, answers, timer and log of a single exam session."""

    def __init__(
        self,
        session_info: ExamSessionInfo,
        client: Optional[ProctorClient] = None,
        exam_id: str = DEFAULT_EXAM_ID,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_info = session_info
        self.exam_id = exam_id
        self._client = client
        self._clock = clock
        self.exam_state: Optional[ExamState] = None
        self.exam_log: Optional[ExamLog] = None
        self.analysis: Optional[AnalysisResult] = None
        # Start of the current (uncounted) dwell on the active question
        self._question_started_at: Optional[datetime] = None
        self._outbox: List[Tuple[str, tuple]] = []

    # ----- state helpers -----

    @property
    def session_id(self) -> str:
        return self.session_info.session_id

    @property
    def is_active(self) -> bool:
        return self.exam_state is not None and not self.exam_state.is_submitted

    @property
    def is_submitted(self) -> bool:
        return self.exam_state is not None and self.exam_state.is_submitted

    @property
    def pending_commands(self) -> int:
        return len(self._outbox)

    def _find_answer_index(self, question_id: str) -> int:
        for index, answer in enumerate(self.exam_state.answers):
            if answer.question_id == question_id:
                return index
        return -1

    def _fold_dwell_time(self, now: datetime, carry_remainder: bool) -> None:
        """Add whole seconds spent on the active question to its answer."""
        answer = self.exam_state.answers[self.exam_state.current_question_index]
        if self._question_started_at is None or answer.is_locked:
            self._question_started_at = now
            return
        seconds = elapsed_seconds(self._question_started_at, now)
        answer.time_spent += seconds
        if carry_remainder:
            self._question_started_at += timedelta(seconds=seconds)
        else:
            self._question_started_at = now

    def _send(self, command: str, *args) -> None:
        if self._client is not None:
            self._outbox.append((command, args))

    async def flush(self) -> int:
        """Send queued registry commands in order; returns how many were sent.

        A command leaves the queue only once its call returns, so a flush
        cancelled mid-send resumes with that command on the next flush.
        """
        sent = 0
        while self._outbox:
            command, args = self._outbox[0]
            await getattr(self._client, command)(*args)
            self._outbox.pop(0)
            sent += 1
        return sent

    # ----- lifecycle -----

    def initialize_exam(
        self,
        questions: Sequence[Question],
        duration_minutes: float = DEFAULT_EXAM_DURATION_MINUTES,
        webcam_active: bool = True,
        screen_share_active: bool = True,
        mobile_connected: bool = False,
    ) -> ExamState:
        """Start the exam and queue the session's registration.

        Raises:
            ExamStateError: If this machine was already initialized
            ValueError: If there are no questions or the duration is not positive
        """
        if self.exam_state is not None:
            raise ExamStateError(f"Exam for session {self.session_id} is already initialized")
        if not questions:
            raise ValueError("An exam needs at least one question")
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        now = self._clock()
        total = int(duration_minutes * 60)
        snapshot = [q.model_copy(deep=True) for q in questions]

        self.exam_state = ExamState(
            questions=snapshot,
            answers=[Answer(question_id=q.question_id) for q in snapshot],
            current_question_index=0,
            start_time=now,
            total_duration_seconds=total,
            remaining_time_seconds=total,
        )
        self.exam_log = ExamLog(
            session_id=self.session_id,
            student_id=self.session_info.student_id,
            total_questions=len(snapshot),
            start_time=now,
        )
        self._question_started_at = now
        self.session_info.status = "active"
        self.session_info.start_time = now

        self._send(
            "register",
            SessionRegistration(
                session_id=self.session_id,
                student_id=self.session_info.student_id,
                student_name=self.session_info.student_name or "Unknown",
                exam_id=self.exam_id,
                start_time=now,
                total_duration_seconds=total,
                total_questions=len(snapshot),
                current_question=1,
                answered_count=0,
                webcam_active=webcam_active,
                screen_share_active=screen_share_active,
                mobile_connected=mobile_connected,
                activity_log=[ActivityEntry(action="Started exam", timestamp=now)],
            ),
        )
        logger.info("Exam started for session %s (%d questions)", self.session_id, len(snapshot))
        return self.exam_state

    def select_answer(self, question_id: str, option_index: int) -> bool:
        """Record an option for a question. Returns False if ignored."""
        if not self.is_active:
            return False
        index = self._find_answer_index(question_id)
        if index == -1:
            return False
        answer = self.exam_state.answers[index]
        if answer.is_locked:
            return False
        if not 0 <= option_index < len(self.exam_state.questions[index].options):
            return False

        now = self._clock()
        # Dwell time only accrues to the question on screen
        if index == self.exam_state.current_question_index:
            self._fold_dwell_time(now, carry_remainder=True)
        answer.selected_option = option_index
        answer.answered_at = now

        self._send("log_activity", self.session_id, f"Answered Q{index + 1}")
        return True

    def navigate_to_question(self, index: int) -> bool:
        if not self.is_active:
            return False
        if index < 0 or index >= len(self.exam_state.questions):
            return False
        self._fold_dwell_time(self._clock(), carry_remainder=False)
        self.exam_state.current_question_index = index
        return True

    def lock_answer(self, question_id: str) -> bool:
        """Commit an answer; a locked answer is never changed again."""
        if not self.is_active:
            return False
        index = self._find_answer_index(question_id)
        if index == -1:
            return False
        answer = self.exam_state.answers[index]
        if answer.is_locked:
            return False
        if index == self.exam_state.current_question_index:
            self._fold_dwell_time(self._clock(), carry_remainder=False)
        answer.is_locked = True
        return True

    def tick(self) -> None:
        """Advance the countdown by one second, submitting at zero."""
        if not self.is_active or self.exam_state.remaining_time_seconds <= 0:
            return
        self.exam_state.remaining_time_seconds -= 1
        if self.exam_state.remaining_time_seconds == 0:
            logger.info("Time expired for session %s, auto-submitting", self.session_id)
            self.submit_exam()

    def update_questions(self, new_questions: Sequence[Question]) -> int:
        """Merge edited questions by id, skipping any whose answer is locked.

        Returns the number of questions replaced.
        """
        if not self.is_active:
            return 0
        incoming = {q.question_id: q for q in new_questions}
        replaced = 0
        for index, existing in enumerate(self.exam_state.questions):
            if self.exam_state.answers[index].is_locked:
                continue
            edited = incoming.get(existing.question_id)
            if edited is not None and edited != existing:
                self.exam_state.questions[index] = edited.model_copy(deep=True)
                replaced += 1
        if replaced:
            logger.info("Applied %d question edit(s) to session %s", replaced, self.session_id)
        return replaced

    def add_behavior_flag(self, flag_type: str, description: str, severity: str) -> Optional[BehaviorFlag]:
        """Attach a flag raised during the exam (face tracking, proctor note)."""
        if not self.is_active:
            return None
        flag = BehaviorFlag(
            type=flag_type, description=description, severity=severity, timestamp=self._clock()
        )
        self.exam_log.behavior_flags = self.exam_log.behavior_flags + [flag]
        self._send("add_flag", self.session_id, flag)
        return flag

    def submit_exam(self) -> bool:
        """Finish the exam, analyze it and notify the registry.

        Idempotent: a second call returns False and has no side effects.
        """
        if not self.is_active:
            return False

        state = self.exam_state
        now = self._clock()
        self._fold_dwell_time(now, carry_remainder=False)

        question_logs: List[QuestionLog] = []
        total_correct = 0
        for question, answer in zip(state.questions, state.answers):
            is_correct = answer.selected_option == question.correct_answer_index
            if is_correct:
                total_correct += 1
            question_logs.append(
                QuestionLog(
                    question_id=question.question_id,
                    difficulty=question.difficulty,
                    time_spent=answer.time_spent,
                    is_correct=is_correct,
                    answered_below_min_time=answer.time_spent < question.minimum_expected_time_seconds,
                    timestamp=answer.answered_at or now,
                )
            )

        analysis = analyze_exam_session(
            state.questions, state.answers, question_logs, self.exam_log.behavior_flags
        )
        self.analysis = analysis

        for answer in state.answers:
            answer.is_locked = True
        state.end_time = now
        state.remaining_time_seconds = 0
        state.is_submitted = True

        total_questions = len(state.questions)
        self.exam_log = self.exam_log.model_copy(
            update={
                "question_logs": question_logs,
                "behavior_flags": analysis.flags,
                "total_correct": total_correct,
                "accuracy": (total_correct / total_questions) * 100 if total_questions else 0.0,
                "exam_duration_seconds": elapsed_seconds(state.start_time, now),
                "end_time": now,
            }
        )

        flagged = any(f.severity == "high" for f in analysis.flags)
        self.session_info.status = "flagged" if flagged else "completed"
        self.session_info.end_time = now

        self._send(
            "update",
            self.session_id,
            SessionUpdate(answered_count=self.answered_count, behavior_flags=analysis.flags),
        )
        self._send("complete", self.session_id)
        self._send("log_activity", self.session_id, "Completed exam")

        logger.info(
            "Session %s submitted: %d/%d correct, integrity %d (%s)",
            self.session_id,
            total_correct,
            total_questions,
            analysis.integrity_score,
            analysis.recommendation,
        )
        return True

    def terminate(self) -> bool:
        """Proctor termination: submit immediately with whatever was answered."""
        if not self.is_active:
            return False
        logger.warning("Session %s terminated by proctor", self.session_id)
        return self.submit_exam()

    # ----- read models -----

    @property
    def answered_count(self) -> int:
        if self.exam_state is None:
            return 0
        return sum(1 for a in self.exam_state.answers if a.selected_option is not None)

    def progress_snapshot(self) -> SessionUpdate:
        """Fields the periodic registry push reports for this session."""
        if self.exam_state is None:
            raise ExamStateError("Exam has not been initialized")
        return SessionUpdate(
            current_question=self.exam_state.current_question_index + 1,
            answered_count=self.answered_count,
            behavior_flags=list(self.exam_log.behavior_flags),
        )

    def integrity_report(self, face_tracking_log: Optional[FaceTrackingLog] = None) -> IntegrityReport:
        if not self.is_submitted:
            raise ExamStateError("Integrity report is only available after submission")
        return build_integrity_report(
            self.exam_log, self.analysis, self.session_info.student_name, face_tracking_log
        )
