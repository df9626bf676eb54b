"""Media capture and face tracking seams.

Real capture lives in the browser or a desktop shell; the server side only
needs to know whether the webcam and the screen share are live and to
collect the recording artifact at the end. ``SimulatedRecorder`` and
``StubFaceDetector`` stand in where no device is attached.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from exam_proctor.schemas import BehaviorFlag, FaceDetection, FaceTrackingLog
from exam_proctor.services.behavior_analyzer import create_face_flag
from exam_proctor.utils import elapsed_seconds, utcnow

logger = logging.getLogger(__name__)


class Recorder(ABC):
    """Webcam and screen capture for one exam session."""

    @abstractmethod
    def request_webcam_access(self) -> bool:
        ...

    @abstractmethod
    def request_screen_access(self) -> bool:
        ...

    @abstractmethod
    def start_recording(self) -> None:
        ...

    @abstractmethod
    def stop_recording(self) -> Optional[bytes]:
        """Stop capture and return the recorded artifact, if any."""

    @property
    @abstractmethod
    def webcam_active(self) -> bool:
        ...

    @property
    @abstractmethod
    def screen_share_active(self) -> bool:
        ...


class SimulatedRecorder(Recorder):
    """Recorder whose permissions and stream state are set by the caller."""

    def __init__(self, webcam_allowed: bool = True, screen_allowed: bool = True) -> None:
        self.webcam_allowed = webcam_allowed
        self.screen_allowed = screen_allowed
        self._webcam_granted = False
        self._screen_granted = False
        self._recording = False
        self._chunks: List[bytes] = []

    def request_webcam_access(self) -> bool:
        self._webcam_granted = self.webcam_allowed
        return self._webcam_granted

    def request_screen_access(self) -> bool:
        self._screen_granted = self.screen_allowed
        return self._screen_granted

    def start_recording(self) -> None:
        if not (self._webcam_granted or self._screen_granted):
            logger.warning("start_recording called without any media access")
            return
        self._recording = True
        self._chunks = []

    def write(self, chunk: bytes) -> None:
        if self._recording:
            self._chunks.append(chunk)

    def drop_screen_share(self) -> None:
        """Simulate the student stopping the screen share mid-exam."""
        self._screen_granted = False

    def stop_recording(self) -> Optional[bytes]:
        if not self._recording:
            return None
        self._recording = False
        self._webcam_granted = False
        self._screen_granted = False
        return b"".join(self._chunks)

    @property
    def webcam_active(self) -> bool:
        return self._recording and self._webcam_granted

    @property
    def screen_share_active(self) -> bool:
        return self._recording and self._screen_granted


# ===================== FACE TRACKING =====================


class FaceDetector(ABC):
    @abstractmethod
    def detect(self) -> FaceDetection:
        ...


class StubFaceDetector(FaceDetector):
    """Replays a scripted sequence of detections, then reports one face."""

    def __init__(self, script: Optional[List[FaceDetection]] = None) -> None:
        self._script = list(script or [])

    def detect(self) -> FaceDetection:
        if self._script:
            return self._script.pop(0)
        return FaceDetection(is_present=True, face_count=1, confidence=0.95)


class FaceTracker:
    """Turns a stream of detections into face flags and a tracking log.

    An absence is flagged when the face comes back, graded by how long it
    was missing. Every frame with more than one face counts as a multiple
    face detection and raises a flag graded by the running count.
    """

    def __init__(
        self,
        detector: FaceDetector,
        on_flag: Optional[Callable[[BehaviorFlag], None]] = None,
        clock: Callable = utcnow,
    ) -> None:
        self._detector = detector
        self.on_flag = on_flag
        self._clock = clock
        self._absent_since = None
        self._confidences: List[float] = []
        self.log = FaceTrackingLog()

    def _emit(self, flag: BehaviorFlag) -> None:
        if self.on_flag is not None:
            self.on_flag(flag)

    def sample(self) -> FaceDetection:
        detection = self._detector.detect()
        now = self._clock()

        if detection.is_present:
            self._confidences.append(detection.confidence)
            self.log.average_confidence = sum(self._confidences) / len(self._confidences)
            if self._absent_since is not None:
                duration = elapsed_seconds(self._absent_since, now)
                self._absent_since = None
                self.log.absence_durations.append(duration)
                self._emit(create_face_flag("face_absent", duration=duration))
            if detection.face_count > 1:
                self.log.multiple_face_detections += 1
                self._emit(
                    create_face_flag("multiple_faces", count=self.log.multiple_face_detections)
                )
        elif self._absent_since is None:
            self._absent_since = now
            self.log.total_absences += 1

        return detection
