"""Drives a running exam on the student side, and the phone heartbeat.

``ExamRunner`` owns the periodic loops of one exam session:

* tick            - countdown, auto-submit at zero
* registry push   - progress, media state and flags for the dashboard
* control poll    - proctor terminate / warn
* question poll   - picks up question bank edits
* face sampling   - optional, when a face tracker is attached

All loops stop together when the exam is submitted, terminated or the
runner is stopped.

The countdown is tied to the event loop clock: if the loop stalls, the next
tick applies every second that elapsed meanwhile, so a stall never extends
the exam.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from exam_proctor.config import (
    CONTROL_POLL_INTERVAL_SECONDS,
    DEFAULT_EXAM_DURATION_MINUTES,
    HEARTBEAT_INTERVAL_SECONDS,
    QUESTION_POLL_INTERVAL_SECONDS,
    REGISTRY_PUSH_INTERVAL_SECONDS,
    TICK_INTERVAL_SECONDS,
)
from exam_proctor.schemas import BehaviorFlag, Question, SessionUpdate
from exam_proctor.services.exam_engine import ExamStateMachine
from exam_proctor.services.proctor_client import ProctorClient
from exam_proctor.services.recorder import FaceTracker, Recorder
from exam_proctor.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

FACE_SAMPLE_INTERVAL_SECONDS = 1


class ExamSetupError(Exception):
    """The exam cannot start until the listed requirements are met."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = missing
        super().__init__("Cannot start exam, missing: " + ", ".join(missing))


class ExamRunner:
    def __init__(
        self,
        machine: ExamStateMachine,
        client: ProctorClient,
        recorder: Recorder,
        face_tracker: Optional[FaceTracker] = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        push_interval: float = REGISTRY_PUSH_INTERVAL_SECONDS,
        control_interval: float = CONTROL_POLL_INTERVAL_SECONDS,
        question_interval: float = QUESTION_POLL_INTERVAL_SECONDS,
        face_interval: float = FACE_SAMPLE_INTERVAL_SECONDS,
    ) -> None:
        self.machine = machine
        self.client = client
        self.recorder = recorder
        self.face_tracker = face_tracker
        self.admin_message: Optional[str] = None
        self.recording: Optional[bytes] = None
        self._question_version: Optional[int] = None
        self._finished: Optional[asyncio.Event] = None
        self._finishing = False
        self._tick_interval = tick_interval
        self._tick_origin = 0.0
        self._ticks_applied = 0

        self._tasks = [
            PeriodicTask("exam-tick", tick_interval, self._on_tick),
            PeriodicTask("registry-push", push_interval, self._push_progress),
            PeriodicTask("control-poll", control_interval, self._poll_control),
            PeriodicTask("question-poll", question_interval, self._poll_questions),
        ]
        if face_tracker is not None:
            if face_tracker.on_flag is None:
                face_tracker.on_flag = self.record_flag
            self._tasks.append(PeriodicTask("face-tracking", face_interval, face_tracker.sample))

    @property
    def session_id(self) -> str:
        return self.machine.session_id

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks)

    @property
    def finished(self) -> bool:
        return self._finished is not None and self._finished.is_set()

    # ----- setup -----

    async def _mobile_connected(self) -> bool:
        status = await self.client.get_pairing_status(self.session_id)
        return bool(status and status.connected)

    async def check_preconditions(self) -> None:
        """Raise ``ExamSetupError`` listing every missing requirement."""
        missing = []
        if not self.recorder.request_webcam_access():
            missing.append("webcam")
        if not self.recorder.request_screen_access():
            missing.append("screen share")
        status = await self.client.get_pairing_status(self.session_id)
        if not (status and status.is_paired):
            missing.append("mobile pairing")
        if missing:
            raise ExamSetupError(missing)

    async def start(
        self,
        questions: Sequence[Question],
        duration_minutes: float = DEFAULT_EXAM_DURATION_MINUTES,
    ) -> None:
        await self.check_preconditions()
        mobile_connected = await self._mobile_connected()
        self._question_version = await self.client.get_question_version()
        self.recorder.start_recording()
        self.machine.initialize_exam(
            questions,
            duration_minutes,
            webcam_active=self.recorder.webcam_active,
            screen_share_active=self.recorder.screen_share_active,
            mobile_connected=mobile_connected,
        )
        self._finished = asyncio.Event()
        self._tick_origin = asyncio.get_running_loop().time()
        self._ticks_applied = 0
        for task in self._tasks:
            task.start()
        logger.info("Exam runner started for session %s", self.session_id)

    # ----- periodic callbacks -----

    async def _on_tick(self) -> None:
        elapsed = asyncio.get_running_loop().time() - self._tick_origin
        due = int(elapsed / self._tick_interval)
        while self._ticks_applied < due and self.machine.is_active:
            self.machine.tick()
            self._ticks_applied += 1
        if self.machine.is_submitted:
            await self._finish()

    async def _push_progress(self) -> None:
        await self.machine.flush()
        if not self.machine.is_active:
            return
        snapshot = self.machine.progress_snapshot()
        mobile_connected = await self._mobile_connected()
        await self.client.update(
            self.session_id,
            SessionUpdate(
                current_question=snapshot.current_question,
                answered_count=snapshot.answered_count,
                behavior_flags=snapshot.behavior_flags,
                webcam_active=self.recorder.webcam_active,
                screen_share_active=self.recorder.screen_share_active,
                mobile_connected=mobile_connected,
            ),
        )

    async def _poll_control(self) -> None:
        control = await self.client.poll_control(self.session_id)
        if control.terminated:
            self.machine.terminate()
            await self._finish()
            return
        if control.warning:
            logger.info("Proctor warning for session %s", self.session_id)
            self.admin_message = control.warning

    async def _poll_questions(self) -> None:
        version = await self.client.get_question_version()
        if version is None or version == self._question_version:
            return
        bank = await self.client.get_questions()
        if bank is None:
            return
        questions, version = bank
        self.machine.update_questions(questions)
        self._question_version = version

    # ----- student actions -----

    def clear_admin_message(self) -> None:
        self.admin_message = None

    def record_flag(self, flag: BehaviorFlag) -> None:
        """Sink for face tracker flags."""
        self.machine.add_behavior_flag(flag.type, flag.description, flag.severity)

    async def submit(self) -> bool:
        submitted = self.machine.submit_exam()
        await self._finish()
        return submitted

    async def stop(self) -> None:
        """Tear down without submitting (logout, page unload)."""
        await self._finish()

    async def wait_finished(self) -> None:
        if self._finished is not None:
            await self._finished.wait()

    async def _finish(self) -> None:
        if self._finished is None:
            return
        if self._finishing:
            await self._finished.wait()
            return
        self._finishing = True
        for task in self._tasks:
            task.cancel()
        self.recording = self.recorder.stop_recording()
        for task in self._tasks:
            await task.stop()
        # Deliver whatever the loops had not sent yet (submission, last flags)
        await self.machine.flush()
        self._finished.set()
        logger.info("Exam runner finished for session %s", self.session_id)


class HeartbeatSender:
    """Phone side of the pairing: heartbeats every few seconds while paired."""

    def __init__(
        self,
        client: ProctorClient,
        session_id: str,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
    ) -> None:
        self.client = client
        self.session_id = session_id
        self._task = PeriodicTask("mobile-heartbeat", interval, self._beat)

    @property
    def running(self) -> bool:
        return self._task.running

    async def _beat(self) -> None:
        await self.client.heartbeat(self.session_id)

    async def start(self) -> None:
        await self._beat()
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
