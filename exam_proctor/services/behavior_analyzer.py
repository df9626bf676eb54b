"""Behavior analysis over a finished exam.

Produces advisory flags only. A flag marks a pattern that may warrant human
review; it is never evidence of cheating and never changes the score.

Three independent passes run over the questions and answers:

* timing    - correct answers given well below the expected minimum time
* accuracy  - unusually high or inverted accuracy on hard questions
* sequence  - streaks of correct hard answers and implausible overall pacing

Each pass carries its own penalty weights; the integrity score is
``100 - penalty`` clamped at zero.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from exam_proctor.config import (
    FACE_ABSENT_HIGH_SECONDS,
    FACE_ABSENT_MEDIUM_SECONDS,
    MULTIPLE_FACES_HIGH_COUNT,
    PASS_THRESHOLD_PERCENT,
)
from exam_proctor.schemas import (
    AnalysisResult,
    Answer,
    BehaviorFlag,
    ExamLog,
    FaceTrackingLog,
    IntegrityReport,
    Question,
    QuestionLog,
)

TIMING_PENALTY = 5
ACCURACY_PENALTY = {"high": 15, "medium": 8, "low": 3}
SEQUENCE_PENALTY = 10

VERY_FAST_RATIO = 0.5
HIGH_HARD_ACCURACY = 0.8
INVERSION_MARGIN = 0.2
MIN_HARD_STREAK = 3


def analyze_exam_session(
    questions: Sequence[Question],
    answers: Sequence[Answer],
    question_logs: Sequence[QuestionLog] = (),
    existing_flags: Sequence[BehaviorFlag] = (),
) -> AnalysisResult:
    """Analyze a complete exam session.

    Args:
        questions: Questions in exam order
        answers: One answer per question, same order
        question_logs: Per-question logs built at submission; when given they
            must list the same question ids in the same order
        existing_flags: Flags raised during the exam (face tracking, manual)

    Returns:
        AnalysisResult with ``existing_flags`` followed by the new flags

    Raises:
        ValueError: If answers, questions and logs are not paired one to one
    """
    if len(answers) != len(questions):
        raise ValueError(
            f"answers ({len(answers)}) and questions ({len(questions)}) must have the same length"
        )
    if question_logs and [log.question_id for log in question_logs] != [
        q.question_id for q in questions
    ]:
        raise ValueError("question_logs do not match the exam questions")

    flags: List[BehaviorFlag] = list(existing_flags)
    penalty = 0

    timing_flags = analyze_timing_patterns(questions, answers)
    flags.extend(timing_flags)
    penalty += len(timing_flags) * TIMING_PENALTY

    accuracy_flags = analyze_accuracy_patterns(questions, answers)
    flags.extend(accuracy_flags)
    penalty += sum(ACCURACY_PENALTY[f.severity] for f in accuracy_flags)

    sequence_flags = analyze_answer_sequence(questions, answers)
    flags.extend(sequence_flags)
    penalty += len(sequence_flags) * SEQUENCE_PENALTY

    integrity_score = max(0, 100 - penalty)
    return AnalysisResult(
        flags=flags,
        integrity_score=integrity_score,
        recommendation=recommend(integrity_score, flags),
    )


def recommend(integrity_score: int, flags: Sequence[BehaviorFlag]) -> str:
    """Triage bucket; a single high-severity flag always escalates."""
    if integrity_score < 50 or any(f.severity == "high" for f in flags):
        return "investigate"
    if integrity_score < 75 or len(flags) > 3:
        return "review"
    return "pass"


def analyze_timing_patterns(
    questions: Sequence[Question], answers: Sequence[Answer]
) -> List[BehaviorFlag]:
    """Flag correct answers given far below the expected minimum time."""
    flags: List[BehaviorFlag] = []
    below_min: Dict[str, int] = {"easy": 0, "medium": 0, "hard": 0}

    for index, (question, answer) in enumerate(zip(questions, answers)):
        if answer.selected_option is None:
            continue

        is_correct = answer.selected_option == question.correct_answer_index
        minimum = question.minimum_expected_time_seconds

        if is_correct and answer.time_spent < minimum:
            below_min[question.difficulty] += 1

        if (
            is_correct
            and answer.time_spent < minimum * VERY_FAST_RATIO
            and question.difficulty != "easy"
        ):
            flags.append(
                BehaviorFlag(
                    type="fast_correct",
                    description=(
                        f"Q{index + 1} ({question.difficulty}): Answered correctly in "
                        f"{answer.time_spent}s (expected min: {minimum}s)"
                    ),
                    severity="high" if question.difficulty == "hard" else "medium",
                )
            )

    if below_min["hard"] >= 2:
        flags.append(
            BehaviorFlag(
                type="suspicious_pattern",
                description=(
                    f"{below_min['hard']} hard questions answered correctly below "
                    "minimum expected time"
                ),
                severity="high",
            )
        )

    if below_min["medium"] >= 3:
        flags.append(
            BehaviorFlag(
                type="suspicious_pattern",
                description=(
                    f"{below_min['medium']} medium questions answered correctly below "
                    "minimum expected time"
                ),
                severity="medium",
            )
        )

    return flags


def analyze_accuracy_patterns(
    questions: Sequence[Question], answers: Sequence[Answer]
) -> List[BehaviorFlag]:
    """Flag high accuracy on hard questions and easy/hard inversions.

    Only answered questions count towards the per-difficulty accuracy.
    """
    flags: List[BehaviorFlag] = []
    stats = {d: {"total": 0, "correct": 0} for d in ("easy", "medium", "hard")}

    for question, answer in zip(questions, answers):
        if answer.selected_option is None:
            continue
        stats[question.difficulty]["total"] += 1
        if answer.selected_option == question.correct_answer_index:
            stats[question.difficulty]["correct"] += 1

    hard = stats["hard"]
    easy = stats["easy"]

    if hard["total"] >= 3:
        hard_accuracy = hard["correct"] / hard["total"]
        if hard_accuracy > HIGH_HARD_ACCURACY:
            flags.append(
                BehaviorFlag(
                    type="high_accuracy_hard",
                    description=(
                        f"{hard['correct']}/{hard['total']} ({hard_accuracy * 100:.0f}%) "
                        "hard questions answered correctly"
                    ),
                    severity="high" if hard_accuracy == 1 else "medium",
                )
            )

    if easy["total"] >= 2 and hard["total"] >= 2:
        easy_accuracy = easy["correct"] / easy["total"]
        hard_accuracy = hard["correct"] / hard["total"]
        if hard_accuracy > easy_accuracy + INVERSION_MARGIN:
            flags.append(
                BehaviorFlag(
                    type="suspicious_pattern",
                    description=(
                        f"Unusual pattern: Higher accuracy on hard ({hard_accuracy * 100:.0f}%) "
                        f"than easy ({easy_accuracy * 100:.0f}%) questions"
                    ),
                    severity="medium",
                )
            )

    return flags


def longest_hard_streak(questions: Sequence[Question], answers: Sequence[Answer]) -> int:
    """Longest run of correctly answered hard questions.

    Easy and medium questions are skipped: they neither extend nor break a run.
    """
    streak = 0
    longest = 0
    for question, answer in zip(questions, answers):
        if question.difficulty != "hard":
            continue
        if answer.selected_option == question.correct_answer_index:
            streak += 1
            longest = max(longest, streak)
        else:
            streak = 0
    return longest


def analyze_answer_sequence(
    questions: Sequence[Question], answers: Sequence[Answer]
) -> List[BehaviorFlag]:
    """Flag long correct hard streaks and implausibly fast overall pacing."""
    flags: List[BehaviorFlag] = []

    streak = longest_hard_streak(questions, answers)
    if streak >= MIN_HARD_STREAK:
        flags.append(
            BehaviorFlag(
                type="suspicious_pattern",
                description=f"{streak} consecutive hard questions answered correctly",
                severity="medium",
            )
        )

    total_time = sum(a.time_spent for a in answers)
    expected_min_time = sum(q.minimum_expected_time_seconds for q in questions)
    if total_time < expected_min_time * 0.5:
        flags.append(
            BehaviorFlag(
                type="suspicious_pattern",
                description=(
                    f"Total time ({total_time}s) is less than half the expected "
                    f"minimum ({expected_min_time}s)"
                ),
                severity="high",
            )
        )

    return flags


def create_face_flag(
    flag_type: str, duration: Optional[int] = None, count: Optional[int] = None
) -> BehaviorFlag:
    """Build a flag for a face-tracking anomaly.

    ``face_absent`` is graded by how long the face was missing, ``multiple_faces``
    by how often more than one face was seen.
    """
    if flag_type == "face_absent":
        seconds = duration or 0
        if seconds > FACE_ABSENT_HIGH_SECONDS:
            severity = "high"
        elif seconds > FACE_ABSENT_MEDIUM_SECONDS:
            severity = "medium"
        else:
            severity = "low"
        return BehaviorFlag(
            type="face_absent",
            description=f"Face not detected for {seconds} seconds",
            severity=severity,
        )

    if flag_type == "multiple_faces":
        times = count or 1
        return BehaviorFlag(
            type="multiple_faces",
            description=f"Multiple faces detected {times} times",
            severity="high" if times > MULTIPLE_FACES_HIGH_COUNT else "medium",
        )

    raise ValueError(f"Unsupported face flag type: {flag_type}")


def build_integrity_report(
    exam_log: ExamLog,
    analysis: AnalysisResult,
    student_name: str,
    face_tracking_log: Optional[FaceTrackingLog] = None,
) -> IntegrityReport:
    """Assemble the integrity report for a submitted exam."""
    return IntegrityReport(
        session_id=exam_log.session_id,
        student_id=exam_log.student_id,
        student_name=student_name,
        exam_date=exam_log.start_time,
        duration=exam_log.exam_duration_seconds,
        score=exam_log.total_correct,
        accuracy=exam_log.accuracy,
        integrity_score=analysis.integrity_score,
        recommendation=analysis.recommendation,
        flags=list(exam_log.behavior_flags),
        face_tracking_log=face_tracking_log or FaceTrackingLog(),
        passed=exam_log.accuracy >= PASS_THRESHOLD_PERCENT,
    )
