"""Request/response models shared by the HTTP routes and the client core."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Read models ---------------------------------------------------------


class ExamRead(_ReadModel):
    id: int
    title: str
    subject: str
    description: Optional[str] = None
    total_questions: int
    duration_minutes: int
    scheduled_at: datetime
    ends_at: datetime
    status: str
    from_standard: Optional[str] = None
    to_standard: Optional[str] = None
    shuffle_questions: bool = False
    allow_reattempt_till_end_date: bool = False
    pass_marks: int = 35


class QuestionRead(_ReadModel):
    id: int
    exam_id: int
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: str
    explanation: Optional[str] = None


class AttemptRead(_ReadModel):
    id: int
    exam_id: int
    user_id: int
    student_name: str
    total_questions: int
    status: str
    remaining_time_seconds: Optional[int] = None
    shuffled_question_order: List[int] = Field(default_factory=list)
    integrity_pledge_accepted: bool = False
    start_snapshot_url: Optional[str] = None
    can_reattempt: bool = False
    score: Optional[int] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    unanswered: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    created_at: datetime


class AnswerRead(_ReadModel):
    attempt_id: int
    question_id: int
    selected_option: str
    is_correct: bool
    time_taken_seconds: int
    answered_at: datetime


class ProfileRead(_ReadModel):
    id: int
    full_name: str
    email: str
    role: str
    standard: Optional[str] = None


class AttemptSummary(_ReadModel):
    id: int
    status: str
    score: Optional[int] = None
    can_reattempt: bool = False


class StudentExamCard(BaseModel):
    """One row of the student dashboard."""

    exam: ExamRead
    state: str  # upcoming | active | ended | resume | completed
    can_start: bool
    latest_attempt: Optional[AttemptSummary] = None


class ReviewItem(BaseModel):
    question_id: int
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    selected_option: Optional[str] = None
    correct_option: str
    is_correct: bool
    explanation: Optional[str] = None


class AttemptResults(BaseModel):
    exam_id: int
    attempt_id: int
    exam_title: str
    student_name: str
    score: int
    correct_answers: int
    wrong_answers: int
    unanswered: int
    total_questions: int
    pass_marks: int
    passed: bool
    end_time: Optional[datetime] = None
    review: List[ReviewItem] = Field(default_factory=list)


# --- Write models --------------------------------------------------------


class AttemptCreate(BaseModel):
    exam_id: int
    user_id: int
    student_name: str
    total_questions: int
    shuffled_question_order: List[int]


class AttemptUpdate(BaseModel):
    """Partial attempt write; only fields that were set are applied."""

    status: Optional[str] = None
    remaining_time_seconds: Optional[int] = None
    integrity_pledge_accepted: Optional[bool] = None
    start_snapshot_url: Optional[str] = None
    shuffled_question_order: Optional[List[int]] = None
    can_reattempt: Optional[bool] = None
    score: Optional[int] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    unanswered: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


class AttemptUpdateRequest(BaseModel):
    user_id: int
    fields: AttemptUpdate


class SaveAnswerRequest(BaseModel):
    """Arguments of the ``save_exam_answer`` procedure. Correctness is derived server-side."""

    attempt_id: int
    question_id: int
    selected_option: str
    time_taken_seconds: int = 0
    user_id: Optional[int] = None


class ResetAttemptRequest(BaseModel):
    admin_user_id: int
    attempt_id: int


class QuestionLookup(BaseModel):
    ids: List[int]


class LoginRequest(BaseModel):
    email: str
    password: str


class ExamPayload(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    total_questions: Optional[int] = None
    duration_minutes: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    status: str = "draft"
    pass_marks: int = 35
    from_standard: Optional[str] = None
    to_standard: Optional[str] = None
    shuffle_questions: bool = False
    allow_reattempt_till_end_date: bool = False


class SaveExamRequest(BaseModel):
    exam_id: Optional[int] = None
    exam: ExamPayload


class QuestionCreate(BaseModel):
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_option: str
    explanation: Optional[str] = None
