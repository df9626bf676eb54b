"""Directory of active exam sessions watched by the proctor dashboard.

Writers never overwrite a whole record after registration. They go through
a small command set (register, update, log_activity, add_flag, complete,
remove) so that the student client, the analyzer and the dashboard only
touch the fields they own. Conflicts resolve last-write-wins per field.

Storage sits behind ``SessionRepository``: ``InMemorySessionRepository`` is
the ephemeral reference backend and ``SqlSessionRepository`` keeps records
in the database.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from exam_proctor.config import STALE_SESSION_SECONDS
from exam_proctor.models import ActiveSessionRow
from exam_proctor.schemas import (
    ActiveSessionRecord,
    ActivityEntry,
    BehaviorFlag,
    ControlState,
    SessionRegistration,
    SessionUpdate,
    StudentSessionView,
)
from exam_proctor.utils import elapsed_seconds, sanitize_message, utcnow

logger = logging.getLogger(__name__)

COMMANDS = ("register", "update", "log_activity", "add_flag", "complete", "remove")


# ===================== REPOSITORIES =====================


class SessionRepository:
    """Storage contract for registry records."""

    def get(self, session_id: str) -> Optional[ActiveSessionRecord]:
        raise NotImplementedError

    def put(self, record: ActiveSessionRecord) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> None:
        raise NotImplementedError

    def list(self) -> List[ActiveSessionRecord]:
        raise NotImplementedError


class InMemorySessionRepository(SessionRepository):
    """Process-memory backend; contents vanish on restart."""

    def __init__(self) -> None:
        self._records: Dict[str, ActiveSessionRecord] = {}

    def get(self, session_id: str) -> Optional[ActiveSessionRecord]:
        record = self._records.get(session_id)
        return record.model_copy(deep=True) if record else None

    def put(self, record: ActiveSessionRecord) -> None:
        self._records[record.session_id] = record.model_copy(deep=True)

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    def list(self) -> List[ActiveSessionRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]


class SqlSessionRepository(SessionRepository):
    """Durable backend storing one ``ActiveSessionRow`` per session."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @staticmethod
    def _to_record(row: ActiveSessionRow) -> ActiveSessionRecord:
        return ActiveSessionRecord.model_validate(row.model_dump())

    @staticmethod
    def _to_row(record: ActiveSessionRecord) -> ActiveSessionRow:
        data = record.model_dump()
        # JSON columns need plain values (ISO timestamps inside flags/log entries)
        data.update(
            record.model_dump(
                mode="json", include={"behavior_flags", "activity_log", "pending_warnings"}
            )
        )
        return ActiveSessionRow(**data)

    def get(self, session_id: str) -> Optional[ActiveSessionRecord]:
        with Session(self._engine) as session:
            row = session.get(ActiveSessionRow, session_id)
            return self._to_record(row) if row else None

    def put(self, record: ActiveSessionRecord) -> None:
        with Session(self._engine) as session:
            session.merge(self._to_row(record))
            session.commit()

    def delete(self, session_id: str) -> None:
        with Session(self._engine) as session:
            row = session.get(ActiveSessionRow, session_id)
            if row:
                session.delete(row)
                session.commit()

    def list(self) -> List[ActiveSessionRecord]:
        with Session(self._engine) as session:
            rows = session.exec(select(ActiveSessionRow)).all()
            return [self._to_record(row) for row in rows]


# ===================== REGISTRY =====================


def is_stale(record: ActiveSessionRecord, now: datetime) -> bool:
    return (now - record.last_update).total_seconds() > STALE_SESSION_SECONDS


def to_student_session(record: ActiveSessionRecord, now: datetime) -> StudentSessionView:
    """Project a stored record into the dashboard view.

    Stale or terminated sessions read as ``terminated`` with every activity
    indicator off, whatever the stored booleans say.
    """
    time_remaining = max(
        0, record.total_duration_seconds - elapsed_seconds(record.start_time, now)
    )
    ended = record.terminated or is_stale(record, now)
    if ended:
        status = "terminated"
    elif time_remaining > 0:
        status = "active"
    else:
        status = "completed"

    return StudentSessionView(
        session_id=record.session_id,
        exam_id=record.exam_id,
        student_id=record.student_id,
        student_name=record.student_name,
        status=status,
        start_time=record.start_time,
        time_remaining=time_remaining,
        current_question=record.current_question,
        answered_count=record.answered_count,
        total_questions=record.total_questions,
        webcam_active=not ended and record.webcam_active,
        screen_share_active=not ended and record.screen_share_active,
        mobile_connected=not ended and record.mobile_connected,
        behavior_flags=list(record.behavior_flags),
        activity_log=list(record.activity_log),
    )


class SessionRegistry:
    """Applies registry commands against a repository."""

    def __init__(
        self,
        repository: Optional[SessionRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository or InMemorySessionRepository()
        self._clock = clock
        # Serializes read-modify-write within this process
        self._lock = threading.RLock()

    # ----- commands -----

    def register(self, data: Union[SessionRegistration, dict]) -> ActiveSessionRecord:
        registration = SessionRegistration.model_validate(data)
        with self._lock:
            record = ActiveSessionRecord(**registration.model_dump(), last_update=self._clock())
            self._repository.put(record)
        logger.info("Registered session %s for %s", record.session_id, record.student_id)
        return record

    def update(self, session_id: str, fields: Union[SessionUpdate, dict]) -> bool:
        """Merge the given fields; an explicit null leaves the stored value as is."""
        changes = SessionUpdate.model_validate(fields).model_dump(exclude_unset=True, exclude_none=True)
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            data = record.model_dump()
            data.update(changes, last_update=self._clock())
            self._repository.put(ActiveSessionRecord.model_validate(data))
        return True

    def log_activity(self, session_id: str, action: str) -> bool:
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            now = self._clock()
            record.activity_log = record.activity_log + [ActivityEntry(action=action, timestamp=now)]
            record.last_update = now
            self._repository.put(record)
        return True

    def add_flag(self, session_id: str, flag: Union[BehaviorFlag, dict]) -> bool:
        flag = BehaviorFlag.model_validate(flag)
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            record.behavior_flags = record.behavior_flags + [flag]
            record.last_update = self._clock()
            self._repository.put(record)
        return True

    def complete(self, session_id: str) -> bool:
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            record.webcam_active = False
            record.screen_share_active = False
            record.mobile_connected = False
            record.last_update = self._clock()
            self._repository.put(record)
        return True

    def remove(self, session_id: str) -> bool:
        with self._lock:
            if self._repository.get(session_id) is None:
                return False
            self._repository.delete(session_id)
        logger.info("Removed session %s", session_id)
        return True

    def apply(self, action: str, session_id: Optional[str] = None, data: Optional[dict] = None) -> bool:
        """Dispatch one wire command; returns whether a record was touched."""
        data = data or {}
        if action == "register":
            self.register(data)
            return True
        if action not in COMMANDS:
            raise ValueError(f"Unknown registry action: {action}")
        if not session_id:
            raise ValueError(f"session_id is required for '{action}'")
        if action == "update":
            return self.update(session_id, data)
        if action == "log_activity":
            if "action" not in data:
                raise ValueError("log_activity needs data.action")
            return self.log_activity(session_id, str(data["action"]))
        if action == "add_flag":
            if "flag" not in data:
                raise ValueError("add_flag needs data.flag")
            return self.add_flag(session_id, data["flag"])
        if action == "complete":
            return self.complete(session_id)
        return self.remove(session_id)

    # ----- administrative control -----

    def terminate(self, session_id: str) -> bool:
        """Mark a session terminated by a proctor; the student sees it on the next poll."""
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            now = self._clock()
            record.terminated = True
            record.webcam_active = False
            record.screen_share_active = False
            record.mobile_connected = False
            record.activity_log = record.activity_log + [
                ActivityEntry(action="Session terminated by proctor", timestamp=now)
            ]
            record.last_update = now
            self._repository.put(record)
        logger.info("Session %s terminated by proctor", session_id)
        return True

    def warn(self, session_id: str, message: str) -> bool:
        """Queue a warning for the student; each warning is delivered once."""
        message = sanitize_message(message)
        if not message:
            raise ValueError("Warning message cannot be empty")
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return False
            now = self._clock()
            record.pending_warnings = record.pending_warnings + [message]
            record.activity_log = record.activity_log + [
                ActivityEntry(action=f"Proctor warning: {message}", timestamp=now)
            ]
            self._repository.put(record)
        logger.info("Warning queued for session %s", session_id)
        return True

    def poll_control(self, session_id: str) -> ControlState:
        """Return the control state for a student client, consuming one warning."""
        with self._lock:
            record = self._repository.get(session_id)
            if record is None:
                return ControlState()
            warning = None
            if record.pending_warnings:
                warning = record.pending_warnings[0]
                record.pending_warnings = record.pending_warnings[1:]
                self._repository.put(record)
            return ControlState(terminated=record.terminated, warning=warning)

    # ----- reads -----

    def get_record(self, session_id: str) -> Optional[ActiveSessionRecord]:
        return self._repository.get(session_id)

    def get_session(self, session_id: str) -> Optional[StudentSessionView]:
        record = self._repository.get(session_id)
        return to_student_session(record, self._clock()) if record else None

    def get_active_sessions(self) -> List[StudentSessionView]:
        now = self._clock()
        records = sorted(self._repository.list(), key=lambda r: r.start_time)
        return [to_student_session(record, now) for record in records]
