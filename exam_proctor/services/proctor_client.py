"""Client side of the registry, pairing and question channels.

The exam runners talk to the server through ``ProctorClient``. Every
operation is a coroutine so that a slow server only delays the loop that
made the call. Two backends implement it:

* ``LocalProctorClient`` calls the services in the same process
* ``HttpProctorClient`` calls the HTTP API with ``httpx.AsyncClient``

Network failures never propagate out of ``HttpProctorClient``: they are
logged and dropped, and the next periodic cycle supersedes the lost call.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import httpx

from exam_proctor.config import HTTP_TIMEOUT_SECONDS
from exam_proctor.schemas import (
    BehaviorFlag,
    ControlState,
    PairingStatus,
    Question,
    SessionRegistration,
    SessionUpdate,
    StudentSessionView,
)
from exam_proctor.services.pairing import PairingStore
from exam_proctor.services.question_bank import QuestionBank
from exam_proctor.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ProctorClient:
    """Operations an exam client or dashboard needs from the server."""

    # ----- registry commands -----
    async def register(self, registration: SessionRegistration) -> None:
        raise NotImplementedError

    async def update(self, session_id: str, fields: SessionUpdate) -> None:
        raise NotImplementedError

    async def log_activity(self, session_id: str, action: str) -> None:
        raise NotImplementedError

    async def add_flag(self, session_id: str, flag: BehaviorFlag) -> None:
        raise NotImplementedError

    async def complete(self, session_id: str) -> None:
        raise NotImplementedError

    async def remove(self, session_id: str) -> None:
        raise NotImplementedError

    # ----- reads / polls -----
    async def list_sessions(self) -> List[StudentSessionView]:
        raise NotImplementedError

    async def poll_control(self, session_id: str) -> ControlState:
        raise NotImplementedError

    async def get_pairing_status(self, session_id: str) -> Optional[PairingStatus]:
        raise NotImplementedError

    async def heartbeat(self, session_id: str) -> None:
        raise NotImplementedError

    async def get_question_version(self) -> Optional[int]:
        raise NotImplementedError

    async def get_questions(self) -> Optional[Tuple[List[Question], int]]:
        raise NotImplementedError


class LocalProctorClient(ProctorClient):
    """In-process client used by tests and single-process deployments."""

    def __init__(
        self,
        registry: SessionRegistry,
        pairing: Optional[PairingStore] = None,
        questions: Optional[QuestionBank] = None,
    ) -> None:
        self.registry = registry
        self.pairing = pairing or PairingStore()
        self.questions = questions

    async def register(self, registration: SessionRegistration) -> None:
        self.registry.register(registration)

    async def update(self, session_id: str, fields: SessionUpdate) -> None:
        self.registry.update(session_id, fields)

    async def log_activity(self, session_id: str, action: str) -> None:
        self.registry.log_activity(session_id, action)

    async def add_flag(self, session_id: str, flag: BehaviorFlag) -> None:
        self.registry.add_flag(session_id, flag)

    async def complete(self, session_id: str) -> None:
        self.registry.complete(session_id)

    async def remove(self, session_id: str) -> None:
        self.registry.remove(session_id)

    async def list_sessions(self) -> List[StudentSessionView]:
        return self.registry.get_active_sessions()

    async def poll_control(self, session_id: str) -> ControlState:
        return self.registry.poll_control(session_id)

    async def get_pairing_status(self, session_id: str) -> Optional[PairingStatus]:
        return self.pairing.get_status(session_id)

    async def heartbeat(self, session_id: str) -> None:
        self.pairing.heartbeat(session_id)

    async def get_question_version(self) -> Optional[int]:
        return self.questions.version if self.questions else None

    async def get_questions(self) -> Optional[Tuple[List[Question], int]]:
        if self.questions is None:
            return None
        return self.questions.get_questions(), self.questions.version


class HttpProctorClient(ProctorClient):
    """Client for the HTTP API; every call is best-effort."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Optional[httpx.Response]:
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            return None

    async def _command(
        self, action: str, session_id: Optional[str] = None, data: Optional[dict] = None
    ) -> None:
        payload = {"action": action, "session_id": session_id, "data": data}
        await self._request("POST", "/api/admin/sessions", json=payload)

    async def login_admin(self, username: str, password: str) -> bool:
        """Log in as a proctor so the dashboard reads are authorized."""
        response = await self._request(
            "POST", "/auth/admin-login", json={"username": username, "password": password}
        )
        return response is not None

    async def register(self, registration: SessionRegistration) -> None:
        await self._command("register", data=registration.model_dump(mode="json"))

    async def update(self, session_id: str, fields: SessionUpdate) -> None:
        data = fields.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        await self._command("update", session_id, data)

    async def log_activity(self, session_id: str, action: str) -> None:
        await self._command("log_activity", session_id, {"action": action})

    async def add_flag(self, session_id: str, flag: BehaviorFlag) -> None:
        await self._command("add_flag", session_id, {"flag": flag.model_dump(mode="json")})

    async def complete(self, session_id: str) -> None:
        await self._command("complete", session_id)

    async def remove(self, session_id: str) -> None:
        await self._command("remove", session_id)

    async def list_sessions(self) -> List[StudentSessionView]:
        response = await self._request("GET", "/api/admin/sessions")
        if response is None:
            return []
        return [StudentSessionView.model_validate(item) for item in response.json()]

    async def poll_control(self, session_id: str) -> ControlState:
        response = await self._request("GET", f"/api/sessions/{session_id}/control")
        if response is None:
            return ControlState()
        return ControlState.model_validate(response.json())

    async def get_pairing_status(self, session_id: str) -> Optional[PairingStatus]:
        response = await self._request("GET", "/api/pairing", params={"session_id": session_id})
        if response is None:
            return None
        return PairingStatus.model_validate(response.json())

    async def heartbeat(self, session_id: str) -> None:
        await self._request(
            "POST", "/api/pairing", json={"session_id": session_id, "action": "heartbeat"}
        )

    async def get_question_version(self) -> Optional[int]:
        bank = await self.get_questions()
        return bank[1] if bank else None

    async def get_questions(self) -> Optional[Tuple[List[Question], int]]:
        response = await self._request("GET", "/api/admin/questions")
        if response is None:
            return None
        body = response.json()
        return [Question.model_validate(q) for q in body["questions"]], body["version"]
