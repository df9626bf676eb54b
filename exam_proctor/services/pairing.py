"""Secondary-device pairing and heartbeat liveness.

A phone pairs with an exam session by scanning a short-lived signed code,
confirms its camera placement and then heartbeats every few seconds. The
session counts as paired only once the camera is confirmed, and as
connected only while heartbeats keep arriving inside
``HEARTBEAT_WINDOW_SECONDS``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from itsdangerous import BadSignature, URLSafeSerializer

from exam_proctor.config import (
    HEARTBEAT_WINDOW_SECONDS,
    PAIRING_CODE_LIFETIME_SECONDS,
    SECRET_KEY,
)
from exam_proctor.schemas import PairingCodeData, PairingRecord, PairingStatus
from exam_proctor.utils import utcnow

logger = logging.getLogger(__name__)

PAIRING_ACTIONS = ("init", "pair", "heartbeat", "confirm_camera", "reset")


class PairingCodeError(ValueError):
    """A pairing code could not be decoded or verified."""


class PairingCodeExpired(PairingCodeError):
    """A pairing code was presented after its expiry time."""


def is_paired(record: Optional[PairingRecord]) -> bool:
    """Paired means the phone joined AND its camera placement was confirmed."""
    return bool(record and record.is_paired and record.camera_confirmed)


def is_connected(record: Optional[PairingRecord], now: datetime) -> bool:
    """Paired with a heartbeat inside the heartbeat window."""
    if not is_paired(record) or record.last_heartbeat is None:
        return False
    return (now - record.last_heartbeat).total_seconds() < HEARTBEAT_WINDOW_SECONDS


class PairingCodec:
    """Issues and verifies signed pairing codes for the QR payload."""

    def __init__(
        self,
        secret_key: str = SECRET_KEY,
        lifetime_seconds: int = PAIRING_CODE_LIFETIME_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._serializer = URLSafeSerializer(secret_key, salt="exam-proctor-pairing")
        self._lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock

    def issue(self, session_id: str, student_id: str) -> tuple[str, PairingCodeData]:
        issued_at = self._clock()
        data = PairingCodeData(
            session_id=session_id,
            student_id=student_id,
            issued_at=issued_at,
            expires_at=issued_at + self._lifetime,
        )
        return self._serializer.dumps(data.model_dump(mode="json")), data

    def decode(self, code: str) -> PairingCodeData:
        """Verify a code and return its payload.

        Raises:
            PairingCodeError: If the code is malformed or not signed by us
            PairingCodeExpired: If ``now`` is past the code's expiry
        """
        try:
            payload = self._serializer.loads(code)
        except BadSignature as exc:
            raise PairingCodeError("Invalid pairing code") from exc
        try:
            data = PairingCodeData.model_validate(payload)
        except ValueError as exc:
            raise PairingCodeError("Invalid pairing code") from exc
        if self._clock() > data.expires_at:
            raise PairingCodeExpired("Pairing code expired, generate a new QR code")
        return data


class PairingStore:
    """In-memory pairing records keyed by session id."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._records: Dict[str, PairingRecord] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def _ensure(self, session_id: str) -> PairingRecord:
        record = self._records.get(session_id)
        if record is None:
            record = PairingRecord(updated_at=self._clock())
            self._records[session_id] = record
        return record

    def init(self, session_id: str, pairing_code: Optional[str] = None) -> PairingRecord:
        with self._lock:
            record = self._ensure(session_id)
            if pairing_code is not None:
                record.pairing_code = pairing_code
                record.updated_at = self._clock()
            return record.model_copy()

    def pair(self, session_id: str, device_id: str) -> PairingRecord:
        if not device_id:
            raise ValueError("device_id is required to pair")
        with self._lock:
            record = self._ensure(session_id)
            now = self._clock()
            record.is_paired = True
            record.device_id = device_id
            record.last_heartbeat = now
            record.updated_at = now
            paired = record.model_copy()
        logger.info("Device %s paired with session %s", device_id, session_id)
        return paired

    def heartbeat(self, session_id: str) -> PairingRecord:
        with self._lock:
            record = self._ensure(session_id)
            now = self._clock()
            record.last_heartbeat = now
            record.updated_at = now
            return record.model_copy()

    def confirm_camera(self, session_id: str) -> PairingRecord:
        with self._lock:
            record = self._ensure(session_id)
            record.camera_confirmed = True
            record.updated_at = self._clock()
            return record.model_copy()

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)

    def get(self, session_id: str) -> Optional[PairingRecord]:
        record = self._records.get(session_id)
        return record.model_copy() if record else None

    def get_status(self, session_id: str) -> PairingStatus:
        record = self.get(session_id)
        if record is None:
            return PairingStatus(found=False)
        return PairingStatus(
            found=True,
            is_paired=is_paired(record),
            device_id=record.device_id,
            last_heartbeat=record.last_heartbeat,
            camera_confirmed=record.camera_confirmed,
            connected=is_connected(record, self._clock()),
        )

    def apply(self, session_id: str, action: str, device_id: Optional[str] = None) -> Optional[PairingRecord]:
        """Dispatch one pairing transport action."""
        if action == "init":
            return self.init(session_id)
        if action == "pair":
            return self.pair(session_id, device_id or "")
        if action == "heartbeat":
            return self.heartbeat(session_id)
        if action == "confirm_camera":
            return self.confirm_camera(session_id)
        if action == "reset":
            self.reset(session_id)
            return None
        raise ValueError(f"Unknown pairing action: {action}")
