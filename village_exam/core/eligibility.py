"""Eligibility and scheduling rules.

Pure functions over an exam, the current time, the student's standard and the
student's prior attempts for that exam. ``exam`` and attempts may be ORM rows
or the pydantic read models; only attributes are read.
"""

from datetime import datetime
from typing import Iterable, Optional

from village_exam.models import AttemptStatus, ExamStatus
from village_exam.utils import parse_standard

DEFAULT_FROM_STANDARD = 0
DEFAULT_TO_STANDARD = 12


class Blocker:
    """Reasons a student may not start (or resume) an exam."""

    ALREADY_COMPLETED = "already_completed"
    EXAM_NOT_OPEN = "exam_not_open"
    NOT_STARTED_YET = "not_started_yet"
    ENDED = "ended"
    STANDARD_NOT_SET = "standard_not_set"
    STANDARD_OUT_OF_RANGE = "standard_out_of_range"


BLOCKER_MESSAGES = {
    Blocker.ALREADY_COMPLETED: "You have already completed this exam",
    Blocker.EXAM_NOT_OPEN: "This exam is not open for attempts",
    Blocker.NOT_STARTED_YET: "The exam has not started yet, please try again after the scheduled time",
    Blocker.ENDED: "The exam time is over, this exam is no longer available",
    Blocker.STANDARD_NOT_SET: "Your standard is not set, please contact the administrator",
    Blocker.STANDARD_OUT_OF_RANGE: "This exam is not meant for your standard",
}


class ExamState:
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"
    RESUME = "resume"
    COMPLETED = "completed"


def has_standard_restriction(exam) -> bool:
    return bool(exam.from_standard or exam.to_standard)


def is_eligible_by_standard(exam, student_standard: Optional[str]) -> bool:
    """Check the student's standard against the exam's inclusive range.

    Fails closed: a restricted exam rejects a missing or unparseable standard.
    """
    if not has_standard_restriction(exam):
        return True

    student = parse_standard(student_standard)
    if student is None:
        return False

    low = parse_standard(exam.from_standard)
    high = parse_standard(exam.to_standard)
    if low is None:
        low = DEFAULT_FROM_STANDARD
    if high is None:
        high = DEFAULT_TO_STANDARD
    return low <= student <= high


def is_within_window(exam, now: datetime) -> bool:
    return exam.scheduled_at <= now <= exam.ends_at


def reattempt_permitted(exam, attempt) -> bool:
    return bool(exam.allow_reattempt_till_end_date or attempt.can_reattempt)


def is_completed(attempt) -> bool:
    return attempt.status == AttemptStatus.SUBMITTED or attempt.score is not None


def start_blocker(
    exam,
    now: datetime,
    student_standard: Optional[str],
    prior_attempts: Iterable = (),
) -> Optional[str]:
    """Return the first reason the student may not start this exam, or None."""
    for attempt in prior_attempts:
        if attempt.status == AttemptStatus.SUBMITTED and not reattempt_permitted(exam, attempt):
            return Blocker.ALREADY_COMPLETED

    if exam.status not in ExamStatus.OPEN:
        return Blocker.EXAM_NOT_OPEN
    if now < exam.scheduled_at:
        return Blocker.NOT_STARTED_YET
    if now > exam.ends_at:
        return Blocker.ENDED

    if not is_eligible_by_standard(exam, student_standard):
        if parse_standard(student_standard) is None:
            return Blocker.STANDARD_NOT_SET
        return Blocker.STANDARD_OUT_OF_RANGE
    return None


def can_start(
    exam,
    now: datetime,
    student_standard: Optional[str],
    prior_attempts: Iterable = (),
) -> bool:
    return start_blocker(exam, now, student_standard, prior_attempts) is None


def classify(exam, now: datetime, prior_attempts: Iterable = ()) -> str:
    """Dashboard state of an exam for one student.

    Priority: completed > resume > upcoming > ended > active. A completed
    attempt wins over a stale in-progress row for the same exam.
    """
    attempts = list(prior_attempts)
    if any(is_completed(a) for a in attempts):
        return ExamState.COMPLETED
    if any(a.status in AttemptStatus.ACTIVE for a in attempts):
        return ExamState.RESUME
    if now < exam.scheduled_at:
        return ExamState.UPCOMING
    if now > exam.ends_at:
        return ExamState.ENDED
    return ExamState.ACTIVE
