"""Proctor dashboard monitor: polls the registry and keeps summary stats."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from exam_proctor.config import DASHBOARD_POLL_INTERVAL_SECONDS
from exam_proctor.schemas import DashboardStats, StudentSessionView
from exam_proctor.services.proctor_client import ProctorClient
from exam_proctor.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


def compute_stats(sessions: List[StudentSessionView]) -> DashboardStats:
    """Counts shown in the dashboard header.

    ``flagged`` counts sessions carrying at least one high-severity flag.
    """
    counts: Dict[str, int] = {"active": 0, "completed": 0, "terminated": 0}
    for session in sessions:
        if session.status in counts:
            counts[session.status] += 1
    return DashboardStats(
        total=len(sessions),
        flagged=sum(
            1 for s in sessions if any(f.severity == "high" for f in s.behavior_flags)
        ),
        total_flags=sum(len(s.behavior_flags) for s in sessions),
        **counts,
    )


class DashboardMonitor:
    def __init__(
        self, client: ProctorClient, interval: float = DASHBOARD_POLL_INTERVAL_SECONDS
    ) -> None:
        self.client = client
        self.sessions: List[StudentSessionView] = []
        self._task = PeriodicTask("dashboard-poll", interval, self.refresh)

    async def refresh(self) -> List[StudentSessionView]:
        self.sessions = await self.client.list_sessions()
        return self.sessions

    def stats(self) -> DashboardStats:
        return compute_stats(self.sessions)

    def find(self, session_id: str) -> Optional[StudentSessionView]:
        return next((s for s in self.sessions if s.session_id == session_id), None)

    async def start(self) -> None:
        await self.refresh()
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
