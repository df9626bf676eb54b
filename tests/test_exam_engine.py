"""
Tests for the exam state machine.

Covers:
- initialization and queued registry commands
- answer selection, navigation and dwell-time accounting
- countdown, auto-submit and idempotent submission
- lock invariant and safe question merges
"""

import asyncio

import pytest
from conftest import make_question

from exam_proctor.config import DEFAULT_EXAM_DURATION_MINUTES
from exam_proctor.schemas import SessionUpdate
from exam_proctor.services.exam_engine import ExamStateError, ExamStateMachine
from exam_proctor.services.proctor_client import LocalProctorClient
from exam_proctor.services.session_registry import SessionRegistry


@pytest.fixture
def registry(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def machine(session_info, registry, clock):
    return ExamStateMachine(session_info, LocalProctorClient(registry), clock=clock)


@pytest.fixture
def started(machine, questions):
    machine.initialize_exam(questions, duration_minutes=1)
    return machine


def flush(machine):
    return asyncio.run(machine.flush())


def activity(registry, session_id):
    return [entry.action for entry in registry.get_record(session_id).activity_log]


class TestInitialization:
    def test_initialize_registers_active_session(self, machine, questions, registry, session_info):
        # When
        state = machine.initialize_exam(questions, duration_minutes=30)
        flush(machine)

        # Then: state is fresh
        assert state.remaining_time_seconds == 1800
        assert state.current_question_index == 0
        assert all(a.selected_option is None and not a.is_locked for a in state.answers)
        assert session_info.status == "active"
        assert session_info.start_time is not None

        # And the registry reads back as active with the full time remaining
        view = registry.get_session(session_info.session_id)
        assert view.status == "active"
        assert view.time_remaining == 1800
        assert view.total_questions == 3
        assert activity(registry, session_info.session_id) == ["Started exam"]

    def test_default_duration(self, machine, questions):
        state = machine.initialize_exam(questions)
        assert state.total_duration_seconds == DEFAULT_EXAM_DURATION_MINUTES * 60
        assert state.remaining_time_seconds == DEFAULT_EXAM_DURATION_MINUTES * 60

    def test_initialize_twice_raises(self, started, questions):
        with pytest.raises(ExamStateError):
            started.initialize_exam(questions, duration_minutes=1)

    def test_initialize_needs_questions(self, machine):
        with pytest.raises(ValueError):
            machine.initialize_exam([], duration_minutes=1)

    def test_operations_before_initialize_are_ignored(self, machine):
        assert machine.select_answer("q1", 0) is False
        assert machine.navigate_to_question(1) is False
        assert machine.submit_exam() is False
        machine.tick()
        assert machine.exam_state is None


class TestAnswering:
    def test_select_answer_records_choice_and_time(self, started, clock, registry, session_info):
        # Given: 12 seconds on the first question
        clock.advance(12)
        # When
        assert started.select_answer("q1", 2) is True
        flush(started)
        # Then
        answer = started.exam_state.answers[0]
        assert answer.selected_option == 2
        assert answer.time_spent == 12
        assert answer.answered_at == clock.now
        assert activity(registry, session_info.session_id)[-1] == "Answered Q1"

    def test_changing_answer_does_not_double_count_time(self, started, clock):
        clock.advance(5)
        started.select_answer("q1", 0)
        clock.advance(3)
        started.select_answer("q1", 1)
        assert started.exam_state.answers[0].time_spent == 8

    def test_time_accumulates_across_visits(self, started, clock):
        # Given: 5s on q1, 3s on q2, back to q1 for 4s
        clock.advance(5)
        started.navigate_to_question(1)
        clock.advance(3)
        started.navigate_to_question(0)
        clock.advance(4)
        started.navigate_to_question(2)

        answers = started.exam_state.answers
        assert answers[0].time_spent == 9
        assert answers[1].time_spent == 3

    def test_unknown_question_or_option_is_ignored(self, started):
        assert started.select_answer("nope", 0) is False
        assert started.select_answer("q1", 7) is False
        assert started.exam_state.answers[0].selected_option is None

    @pytest.mark.parametrize("index", [-1, 3, 99])
    def test_navigation_out_of_range_is_ignored(self, started, index):
        assert started.navigate_to_question(index) is False
        assert started.exam_state.current_question_index == 0

    def test_answered_count_and_progress_snapshot(self, started):
        started.select_answer("q1", 0)
        started.navigate_to_question(1)
        started.select_answer("q2", 1)

        snapshot = started.progress_snapshot()

        assert isinstance(snapshot, SessionUpdate)
        assert snapshot.current_question == 2
        assert snapshot.answered_count == 2


class TestLocking:
    def test_locked_answer_cannot_change(self, started, clock):
        started.select_answer("q1", 1)
        clock.advance(10)
        assert started.lock_answer("q1") is True

        assert started.select_answer("q1", 3) is False
        answer = started.exam_state.answers[0]
        assert answer.selected_option == 1
        assert answer.is_locked
        # Time stops accruing once locked
        frozen = answer.time_spent
        clock.advance(20)
        started.navigate_to_question(1)
        assert started.exam_state.answers[0].time_spent == frozen

    def test_update_questions_skips_locked(self, started):
        # Given: q1 locked, q2 open
        started.lock_answer("q1")
        edited = [
            make_question("q1", "easy", 15, correct=3),
            make_question("q2", "medium", 30, correct=2),
        ]
        # When
        replaced = started.update_questions(edited)
        # Then
        assert replaced == 1
        assert started.exam_state.questions[0].correct_answer_index == 0
        assert started.exam_state.questions[1].correct_answer_index == 2

    def test_update_questions_ignores_unknown_ids(self, started):
        assert started.update_questions([make_question("q99")]) == 0


class TestTimerAndSubmission:
    def test_tick_counts_down_and_auto_submits(self, started):
        for _ in range(59):
            started.tick()
        assert started.exam_state.remaining_time_seconds == 1
        assert started.is_active

        started.tick()

        assert started.is_submitted
        assert started.exam_state.remaining_time_seconds == 0
        started.tick()
        assert started.exam_state.remaining_time_seconds == 0

    def test_remaining_time_never_increases(self, started):
        seen = []
        for _ in range(70):
            started.tick()
            seen.append(started.exam_state.remaining_time_seconds)
        assert seen == sorted(seen, reverse=True)
        assert min(seen) == 0

    def test_submit_is_idempotent(self, started, registry, session_info):
        assert started.submit_exam() is True
        log_after_first = started.exam_log

        assert started.submit_exam() is False
        assert started.terminate() is False
        flush(started)

        assert started.exam_log is log_after_first
        assert activity(registry, session_info.session_id).count("Completed exam") == 1

    def test_submit_locks_and_completes(self, started, registry, session_info, clock):
        started.select_answer("q1", 0)
        clock.advance(40)

        started.submit_exam()
        flush(started)

        state = started.exam_state
        assert state.is_submitted
        assert all(a.is_locked for a in state.answers)
        assert state.end_time == clock.now
        assert started.exam_log.total_correct == 1
        assert started.exam_log.accuracy == pytest.approx(100 / 3)
        assert started.exam_log.exam_duration_seconds == 40
        assert len(started.exam_log.question_logs) == 3

        record = registry.get_record(session_info.session_id)
        assert not record.webcam_active and not record.screen_share_active and not record.mobile_connected
        assert activity(registry, session_info.session_id)[-1] == "Completed exam"

    def test_mutators_are_noops_after_submit(self, started):
        started.submit_exam()
        assert started.select_answer("q1", 0) is False
        assert started.navigate_to_question(1) is False
        assert started.lock_answer("q1") is False
        assert started.add_behavior_flag("face_absent", "gone", "low") is None
        assert started.update_questions([make_question("q1", correct=3)]) == 0

    def test_high_flag_marks_session_flagged(self, started, session_info):
        # Submitting with no time spent trips the total-time check (high)
        started.submit_exam()
        assert any(f.severity == "high" for f in started.exam_log.behavior_flags)
        assert session_info.status == "flagged"

    def test_clean_submission_marks_session_completed(self, started, session_info, clock):
        for index, qid in enumerate(["q1", "q2", "q3"]):
            started.navigate_to_question(index)
            clock.advance(60)
            started.select_answer(qid, 1)  # wrong everywhere, slow everywhere
        started.submit_exam()
        assert started.analysis.recommendation == "pass"
        assert session_info.status == "completed"

    def test_terminate_submits_immediately(self, started, session_info):
        started.select_answer("q1", 0)
        assert started.terminate() is True
        assert started.is_submitted
        assert started.exam_log.total_correct == 1


class TestFlagsAndReport:
    def test_manual_flag_reaches_log_and_registry(self, started, registry, session_info):
        flag = started.add_behavior_flag("multiple_faces", "Multiple faces detected 1 times", "medium")
        assert started.exam_log.behavior_flags == [flag]
        flush(started)
        assert registry.get_record(session_info.session_id).behavior_flags == [flag]

    def test_flags_raised_during_exam_survive_submission(self, started):
        flag = started.add_behavior_flag("face_absent", "Face not detected for 12 seconds", "medium")
        started.submit_exam()
        assert started.exam_log.behavior_flags[0] == flag

    def test_integrity_report_requires_submission(self, started):
        with pytest.raises(ExamStateError):
            started.integrity_report()

    def test_integrity_report_after_submission(self, started, session_info):
        started.select_answer("q1", 0)
        started.submit_exam()
        report = started.integrity_report()
        assert report.session_id == session_info.session_id
        assert report.student_name == "John Smith"
        assert report.score == 1
        assert report.passed is False


class TestRegistryOutbox:
    def test_commands_wait_for_flush(self, machine, questions, registry, session_info):
        # When: the exam starts and one answer is chosen
        machine.initialize_exam(questions, duration_minutes=1)
        machine.select_answer("q1", 0)

        # Then: nothing reached the registry yet
        assert machine.pending_commands == 2
        assert registry.get_record(session_info.session_id) is None

        # And flushing delivers both, in order
        assert flush(machine) == 2
        assert machine.pending_commands == 0
        assert activity(registry, session_info.session_id) == ["Started exam", "Answered Q1"]

    def test_failed_send_stays_queued(self, machine, questions, registry, session_info):
        # Given: a registry that is down for the first attempt
        calls = []
        original = machine._client.register

        async def flaky_register(registration):
            calls.append(registration.session_id)
            if len(calls) == 1:
                raise ConnectionError("registry down")
            await original(registration)

        machine._client.register = flaky_register
        machine.initialize_exam(questions, duration_minutes=1)

        # When
        with pytest.raises(ConnectionError):
            flush(machine)

        # Then: the registration is retried on the next flush
        assert machine.pending_commands == 1
        assert flush(machine) == 1
        assert registry.get_record(session_info.session_id) is not None


class TestWithoutClient:
    def test_machine_runs_standalone(self, session_info, questions, clock):
        machine = ExamStateMachine(session_info, client=None, clock=clock)
        machine.initialize_exam(questions, duration_minutes=1)
        machine.select_answer("q1", 0)
        assert machine.submit_exam() is True
        assert machine.pending_commands == 0
