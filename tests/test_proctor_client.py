"""
Tests for the HTTP and in-process proctor clients and the dashboard monitor.
"""

import asyncio

import httpx
import pytest

from exam_proctor.schemas import BehaviorFlag, SessionUpdate, StudentSessionView
from exam_proctor.services.dashboard import DashboardMonitor, compute_stats
from exam_proctor.services.exam_engine import ExamStateMachine
from exam_proctor.services.proctor_client import HttpProctorClient, LocalProctorClient
from exam_proctor.services.session_registry import SessionRegistry
from exam_proctor.utils import utcnow


def failing_client(status_code=None):
    def handler(request):
        if status_code is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status_code)

    http = httpx.AsyncClient(base_url="http://proctor.invalid", transport=httpx.MockTransport(handler))
    return HttpProctorClient(http=http)


def app_client(app):
    """Async client wired straight to the ASGI app; keeps its own cookies."""
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    return HttpProctorClient(http=http)


class TestHttpProctorClient:
    def test_exam_flow_over_http(self, app, client, session_info, questions):
        async def scenario():
            # Given: an exam client and a proctor talking to the same app
            student = app_client(app)
            proctor = app_client(app)
            machine = ExamStateMachine(session_info, student)

            # When
            machine.initialize_exam(questions, duration_minutes=30)
            machine.select_answer("q1", 0)
            machine.add_behavior_flag("face_absent", "Face not detected for 12 seconds", "medium")
            assert await machine.flush() == 3
            await student.update(session_info.session_id, SessionUpdate(current_question=2))

            # Then
            assert await proctor.login_admin("admin", "admin123") is True
            sessions = await proctor.list_sessions()
            assert len(sessions) == 1
            view = sessions[0]
            assert view.current_question == 2
            assert [e.action for e in view.activity_log] == ["Started exam", "Answered Q1"]
            assert view.behavior_flags[0].type == "face_absent"

            machine.submit_exam()
            await machine.flush()
            view = (await proctor.list_sessions())[0]
            assert view.activity_log[-1].action == "Completed exam"
            assert view.webcam_active is False

            await student.aclose()
            await proctor.aclose()

        asyncio.run(scenario())

    def test_explicit_null_update_keeps_stored_value(self, app, client, session_info, questions):
        async def scenario():
            student = app_client(app)
            machine = ExamStateMachine(session_info, student)
            machine.initialize_exam(questions, duration_minutes=30)
            await machine.flush()

            await student.update(
                session_info.session_id, SessionUpdate(answered_count=2, webcam_active=None)
            )
            await student.aclose()

        asyncio.run(scenario())

        record = app.state.registry.get_record(session_info.session_id)
        assert record.answered_count == 2
        assert record.webcam_active is True

    def test_control_and_questions_over_http(self, app, admin_client):
        admin_client.post(
            "/api/admin/sessions",
            json={
                "action": "register",
                "data": {
                    "session_id": "s1",
                    "student_id": "STU001",
                    "student_name": "John Smith",
                    "exam_id": "exam-001",
                    "start_time": utcnow().isoformat(),
                    "total_duration_seconds": 600,
                    "total_questions": 10,
                },
            },
        )
        admin_client.post("/api/admin/sessions/s1/warn", json={"message": "Hands visible please"})

        async def scenario():
            http_client = app_client(app)
            assert (await http_client.poll_control("s1")).warning == "Hands visible please"
            assert await http_client.get_question_version() == 1
            questions, version = await http_client.get_questions()
            assert len(questions) == 10 and version == 1
            assert (await http_client.get_pairing_status("s1")).found is False
            await http_client.aclose()

        asyncio.run(scenario())

    def test_network_failures_are_dropped(self, session_info, questions):
        async def scenario():
            # Given: a server that cannot be reached
            offline = failing_client()
            machine = ExamStateMachine(session_info, offline)

            # When: the whole exam runs against it
            machine.initialize_exam(questions, duration_minutes=30)
            machine.select_answer("q1", 0)

            # Then: the exam still submits locally
            assert machine.submit_exam() is True
            assert await machine.flush() == 5
            assert (await offline.poll_control("s1")).terminated is False
            assert await offline.list_sessions() == []
            assert await offline.get_pairing_status("s1") is None
            assert await offline.get_questions() is None
            assert await offline.login_admin("admin", "admin123") is False

        asyncio.run(scenario())

    def test_server_errors_are_dropped(self):
        async def scenario():
            broken = failing_client(status_code=500)
            await broken.heartbeat("s1")
            return await broken.get_question_version()

        assert asyncio.run(scenario()) is None


class TestLocalProctorClient:
    def test_without_question_bank(self):
        local = LocalProctorClient(SessionRegistry())

        async def scenario():
            assert await local.get_question_version() is None
            assert await local.get_questions() is None
            assert (await local.get_pairing_status("s1")).found is False

        asyncio.run(scenario())


def view(session_id, status, flags=()):
    return StudentSessionView(
        session_id=session_id,
        exam_id="exam-001",
        student_id="STU001",
        student_name="John Smith",
        status=status,
        start_time=utcnow(),
        time_remaining=0,
        current_question=1,
        answered_count=0,
        total_questions=10,
        webcam_active=False,
        screen_share_active=False,
        mobile_connected=False,
        behavior_flags=list(flags),
        activity_log=[],
    )


class TestDashboard:
    def test_stats_count_statuses_and_flags(self):
        high = BehaviorFlag(type="fast_correct", description="x", severity="high")
        low = BehaviorFlag(type="face_absent", description="y", severity="low")
        sessions = [
            view("a", "active", [high, low]),
            view("b", "completed", [low]),
            view("c", "terminated"),
        ]

        stats = compute_stats(sessions)

        assert stats.total == 3
        assert (stats.active, stats.completed, stats.terminated) == (1, 1, 1)
        assert stats.flagged == 1
        assert stats.total_flags == 3

    def test_monitor_polls_registry(self, session_info, questions):
        registry = SessionRegistry()
        local = LocalProctorClient(registry)
        monitor = DashboardMonitor(local, interval=0.01)

        async def scenario():
            await monitor.start()
            assert monitor.sessions == []
            machine = ExamStateMachine(session_info, local)
            machine.initialize_exam(questions, duration_minutes=30)
            await machine.flush()
            for _ in range(200):
                if monitor.sessions:
                    break
                await asyncio.sleep(0.01)
            await monitor.stop()

        asyncio.run(scenario())

        assert monitor.stats().active == 1
        assert monitor.find(session_info.session_id).student_name == "John Smith"
        assert monitor.find("ghost") is None


@pytest.mark.parametrize("status_code", [401, 403])
def test_unauthorized_dashboard_read_is_empty(status_code):
    assert asyncio.run(failing_client(status_code=status_code).list_sessions()) == []
