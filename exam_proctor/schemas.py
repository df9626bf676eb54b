"""Pydantic models shared by the exam engine, the registry and the API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from exam_proctor.utils import utcnow

Difficulty = Literal["easy", "medium", "hard"]
Severity = Literal["low", "medium", "high"]
FlagType = Literal[
    "fast_correct",
    "high_accuracy_hard",
    "suspicious_pattern",
    "face_absent",
    "multiple_faces",
]
Recommendation = Literal["pass", "review", "investigate"]
SessionStatus = Literal["pending", "paired", "active", "completed", "flagged"]
MonitorStatus = Literal["active", "paused", "completed", "terminated"]


# ===================== QUESTIONS & ANSWERS =====================


class Question(BaseModel):
    """Multiple-choice question with exactly four options."""

    question_id: str
    text: str
    options: List[str]
    correct_answer_index: int
    difficulty: Difficulty
    minimum_expected_time_seconds: int = Field(ge=0)

    @field_validator("options")
    @classmethod
    def _four_options(cls, value: List[str]) -> List[str]:
        if len(value) != 4:
            raise ValueError("a question needs exactly four options")
        return value

    @field_validator("correct_answer_index")
    @classmethod
    def _index_in_range(cls, value: int) -> int:
        if not 0 <= value < 4:
            raise ValueError("correct_answer_index must be between 0 and 3")
        return value


class QuestionPatch(BaseModel):
    """Partial question edit coming from the admin question editor."""

    model_config = ConfigDict(extra="forbid")

    text: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer_index: Optional[int] = None
    difficulty: Optional[Difficulty] = None
    minimum_expected_time_seconds: Optional[int] = Field(default=None, ge=0)


class Answer(BaseModel):
    question_id: str
    selected_option: Optional[int] = None
    time_spent: int = 0  # seconds, across every visit
    answered_at: Optional[datetime] = None
    is_locked: bool = False


class ExamState(BaseModel):
    questions: List[Question]
    answers: List[Answer]
    current_question_index: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_duration_seconds: int
    remaining_time_seconds: int
    is_submitted: bool = False


# ===================== BEHAVIOR LOGGING =====================


class BehaviorFlag(BaseModel):
    """Advisory record of a behavior pattern that may merit review."""

    model_config = ConfigDict(frozen=True)

    type: FlagType
    description: str
    timestamp: datetime = Field(default_factory=utcnow)
    severity: Severity


class QuestionLog(BaseModel):
    question_id: str
    difficulty: Difficulty
    time_spent: int
    is_correct: bool
    answered_below_min_time: bool
    timestamp: datetime


class ExamLog(BaseModel):
    session_id: str
    student_id: str
    question_logs: List[QuestionLog] = Field(default_factory=list)
    behavior_flags: List[BehaviorFlag] = Field(default_factory=list)
    total_correct: int = 0
    total_questions: int = 0
    accuracy: float = 0.0  # percent
    exam_duration_seconds: int = 0
    start_time: datetime
    end_time: Optional[datetime] = None


class AnalysisResult(BaseModel):
    flags: List[BehaviorFlag]
    integrity_score: int
    recommendation: Recommendation


class FaceDetection(BaseModel):
    is_present: bool
    face_count: int = 0
    confidence: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class FaceTrackingLog(BaseModel):
    total_absences: int = 0
    absence_durations: List[int] = Field(default_factory=list)
    multiple_face_detections: int = 0
    average_confidence: float = 0.0


class IntegrityReport(BaseModel):
    """Read model assembled on demand after submission."""

    session_id: str
    student_id: str
    student_name: str
    exam_date: datetime
    duration: int
    score: int
    accuracy: float
    integrity_score: int = Field(ge=0, le=100)
    recommendation: Recommendation
    flags: List[BehaviorFlag]
    face_tracking_log: FaceTrackingLog
    passed: bool


# ===================== IDENTITY =====================


class StudentProfile(BaseModel):
    student_id: str
    name: str
    email: str


class ExamSessionInfo(BaseModel):
    """Join key between the identity provider and the exam state machine."""

    session_id: str
    student_id: str
    student_name: str
    status: SessionStatus = "pending"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


# ===================== SESSION REGISTRY =====================


class ActivityEntry(BaseModel):
    action: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionRegistration(BaseModel):
    """Payload of the ``register`` command."""

    session_id: str
    student_id: str
    student_name: str
    exam_id: str
    start_time: datetime
    total_duration_seconds: int = Field(ge=0)
    total_questions: int = Field(ge=0)
    current_question: int = 1
    answered_count: int = 0
    webcam_active: bool = False
    screen_share_active: bool = False
    mobile_connected: bool = False
    behavior_flags: List[BehaviorFlag] = Field(default_factory=list)
    activity_log: List[ActivityEntry] = Field(default_factory=list)


class ActiveSessionRecord(SessionRegistration):
    """Stored registry entry, one per session id."""

    last_update: datetime
    # Written only by the administrative terminate/warn commands
    terminated: bool = False
    pending_warnings: List[str] = Field(default_factory=list)


class SessionUpdate(BaseModel):
    """Fields the ``update`` command may merge; identity fields are not among them."""

    model_config = ConfigDict(extra="forbid")

    exam_id: Optional[str] = None
    start_time: Optional[datetime] = None
    total_duration_seconds: Optional[int] = Field(default=None, ge=0)
    total_questions: Optional[int] = Field(default=None, ge=0)
    current_question: Optional[int] = None
    answered_count: Optional[int] = None
    webcam_active: Optional[bool] = None
    screen_share_active: Optional[bool] = None
    mobile_connected: Optional[bool] = None
    behavior_flags: Optional[List[BehaviorFlag]] = None


class StudentSessionView(BaseModel):
    """Derived projection of a registry record shown on the dashboard."""

    session_id: str
    exam_id: str
    student_id: str
    student_name: str
    status: MonitorStatus
    start_time: datetime
    time_remaining: int
    current_question: int
    answered_count: int
    total_questions: int
    webcam_active: bool
    screen_share_active: bool
    mobile_connected: bool
    behavior_flags: List[BehaviorFlag]
    activity_log: List[ActivityEntry]


class ControlState(BaseModel):
    """What a student client learns from one control poll."""

    terminated: bool = False
    warning: Optional[str] = None


class DashboardStats(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    terminated: int = 0
    flagged: int = 0
    total_flags: int = 0


# ===================== PAIRING =====================


class PairingRecord(BaseModel):
    is_paired: bool = False  # raw flag set by the phone
    device_id: Optional[str] = None
    pairing_code: Optional[str] = None
    last_heartbeat: Optional[datetime] = None
    camera_confirmed: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class PairingStatus(BaseModel):
    found: bool
    is_paired: bool = False
    device_id: Optional[str] = None
    last_heartbeat: Optional[datetime] = None
    camera_confirmed: bool = False
    connected: bool = False


class PairingCodeData(BaseModel):
    session_id: str
    student_id: str
    issued_at: datetime
    expires_at: datetime
