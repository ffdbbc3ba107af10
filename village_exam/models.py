"""SQLModel models for the village exam service."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from village_exam.utils import utcnow


class ExamStatus:
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (DRAFT, SCHEDULED, ACTIVE, COMPLETED, CANCELLED)
    # Only these allow a student to start or resume an attempt.
    OPEN = (SCHEDULED, ACTIVE)


class AttemptStatus:
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"

    ACTIVE = (NOT_STARTED, IN_PROGRESS)
    # Position in the lifecycle; a write may never lower it.
    ORDER = {NOT_STARTED: 0, IN_PROGRESS: 1, SUBMITTED: 2}


OPTIONS = ("A", "B", "C", "D")
ADMIN_ROLES = ("admin", "sub_admin")


class User(SQLModel, table=True):
    """Portal account; students carry the standard used for exam eligibility."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str
    password_hash: str
    role: str = Field(default="student")  # "student", "admin", "sub_admin"
    standard: Optional[str] = None  # e.g. "7th"
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    subject: str
    description: Optional[str] = None
    total_questions: int
    duration_minutes: int
    scheduled_at: datetime
    ends_at: datetime
    status: str = Field(default=ExamStatus.DRAFT)
    from_standard: Optional[str] = None
    to_standard: Optional[str] = None
    shuffle_questions: bool = Field(default=False)
    allow_reattempt_till_end_date: bool = Field(default=False)
    pass_marks: int = Field(default=35)
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExamQuestion(SQLModel, table=True):
    """A four-option question in an exam's pool. Immutable once attempts exist."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: str
    explanation: Optional[str] = None


class ExamAttempt(SQLModel, table=True):
    """One student's instance of taking an exam."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    student_name: str
    total_questions: int
    status: str = Field(default=AttemptStatus.NOT_STARTED)
    remaining_time_seconds: Optional[int] = None
    # Set once at creation; a resumed attempt sees the same set in the same order.
    shuffled_question_order: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    integrity_pledge_accepted: bool = Field(default=False)
    start_snapshot_url: Optional[str] = Field(default=None, sa_column=Column(Text))
    can_reattempt: bool = Field(default=False)

    # Null until SUBMITTED, then written exactly once
    score: Optional[int] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    unanswered: Optional[int] = None

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ExamAnswer(SQLModel, table=True):
    """Selected option for one question of an attempt; upserted, never duplicated."""

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id", index=True)
    question_id: int = Field(foreign_key="examquestion.id")
    selected_option: str
    is_correct: bool = Field(default=False)
    time_taken_seconds: int = Field(default=0)
    answered_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
