"""Admin-side exam management: save exam, add questions, attempt reports."""

import logging
from typing import Dict, List, Optional

from sqlmodel import Session, select

from village_exam.errors import ExamValidationError, InvalidTransitionError
from village_exam.models import OPTIONS, Exam, ExamAttempt, ExamQuestion, ExamStatus, User
from village_exam.schemas import ExamPayload, QuestionCreate
from village_exam.services.attempt_service import get_exam
from village_exam.utils import sanitize_plain, sanitize_question_text, utcnow

logger = logging.getLogger(__name__)

# Validation constraints
EXAM_TITLE_MAX_LENGTH = 200
QUESTION_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000
MAX_DURATION_MINUTES = 600
DEFAULT_SUBJECT = "General"


def _validate_exam_payload(payload: ExamPayload) -> Dict[str, str]:
    """Validate an exam payload and return an error dictionary."""
    errors: Dict[str, str] = {}

    title = sanitize_plain(payload.title) or ""
    if not title:
        errors["title"] = "Title is required."
    elif len(title) > EXAM_TITLE_MAX_LENGTH:
        errors["title"] = f"Title must be at most {EXAM_TITLE_MAX_LENGTH} characters."

    if payload.scheduled_at is None:
        errors["scheduled_at"] = "Start date and time is required."
    if payload.ends_at is None:
        errors["ends_at"] = "End date and time is required."
    if payload.scheduled_at and payload.ends_at and payload.ends_at <= payload.scheduled_at:
        errors["ends_at"] = "End time must be after the start time."

    if payload.status not in ExamStatus.ALL:
        errors["status"] = f"Status must be one of: {', '.join(ExamStatus.ALL)}."

    if payload.total_questions is None or payload.total_questions < 1:
        errors["total_questions"] = "An exam needs at least one question."

    if payload.duration_minutes is None:
        errors["duration_minutes"] = "Duration is required."
    elif not 1 <= payload.duration_minutes <= MAX_DURATION_MINUTES:
        errors["duration_minutes"] = f"Duration must be between 1 and {MAX_DURATION_MINUTES} minutes."

    if not 0 <= payload.pass_marks <= 100:
        errors["pass_marks"] = "Pass marks must be between 0 and 100."

    return errors


def save_exam(session: Session, admin: User, payload: ExamPayload, exam_id: Optional[int] = None) -> Exam:
    """Create an exam, or update it when ``exam_id`` is given.

    Args:
        session: Database session
        admin: The admin or sub-admin performing the save
        payload: Exam fields
        exam_id: ID of the exam to update (optional)

    Returns:
        The saved Exam

    Raises:
        ExamValidationError: If the payload is invalid
        ExamNotFoundError: If ``exam_id`` does not exist
    """
    errors = _validate_exam_payload(payload)
    if errors:
        raise ExamValidationError("Invalid exam payload", errors=errors)

    values = {
        "title": sanitize_plain(payload.title),
        "subject": sanitize_plain(payload.subject) or DEFAULT_SUBJECT,
        "description": sanitize_plain(payload.description) or None,
        "total_questions": payload.total_questions,
        "duration_minutes": payload.duration_minutes,
        "scheduled_at": payload.scheduled_at,
        "ends_at": payload.ends_at,
        "status": payload.status,
        "pass_marks": payload.pass_marks,
        "from_standard": sanitize_plain(payload.from_standard) or None,
        "to_standard": sanitize_plain(payload.to_standard) or None,
        "shuffle_questions": payload.shuffle_questions,
        "allow_reattempt_till_end_date": payload.allow_reattempt_till_end_date,
    }

    if exam_id is not None:
        exam = get_exam(session, exam_id)
        for key, value in values.items():
            setattr(exam, key, value)
        exam.updated_at = utcnow()
        logger.info("Exam %s updated by user %s", exam_id, admin.id)
    else:
        exam = Exam(**values, created_by=admin.id)

    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def _validate_question_inputs(data: QuestionCreate) -> Dict[str, str]:
    """Validate MCQ inputs and return an error dictionary."""
    errors: Dict[str, str] = {}

    question_clean = sanitize_question_text(data.question or "")
    options = {
        "option_a": (data.option_a or "").strip(),
        "option_b": (data.option_b or "").strip(),
        "option_c": (data.option_c or "").strip(),
        "option_d": (data.option_d or "").strip(),
    }
    correct_clean = (data.correct_option or "").strip().upper()

    if not question_clean:
        errors["question"] = "Question text is required."
    elif len(question_clean) > QUESTION_MAX_LENGTH:
        errors["question"] = f"Question text must be at most {QUESTION_MAX_LENGTH} characters."

    for name, value in options.items():
        if not value:
            errors[name] = "All options must be provided and non-empty."
        elif len(value) > OPTION_MAX_LENGTH:
            errors[name] = f"Option {name[-1].upper()} must be at most {OPTION_MAX_LENGTH} characters."

    # Only check duplicates if basic validation passed
    if not errors:
        lowered = [value.lower() for value in options.values()]
        if len(lowered) != len(set(lowered)):
            errors["options"] = "All options must be unique."

    if not correct_clean:
        errors["correct_option"] = "Correct option must be specified."
    elif correct_clean not in OPTIONS:
        errors["correct_option"] = "Correct option must be one of: A, B, C, or D."

    return errors


def add_question(session: Session, exam_id: int, data: QuestionCreate) -> ExamQuestion:
    """Add a four-option question to an exam's pool.

    Questions are part of every attempt's fixed set, so the pool is closed
    once students have started.
    """
    get_exam(session, exam_id)
    errors = _validate_question_inputs(data)
    if errors:
        raise ExamValidationError("Invalid question", errors=errors)

    started = session.exec(select(ExamAttempt.id).where(ExamAttempt.exam_id == exam_id)).first()
    if started is not None:
        raise InvalidTransitionError("Questions cannot be added after students have started the exam")

    question = ExamQuestion(
        exam_id=exam_id,
        question=sanitize_question_text(data.question),
        option_a=sanitize_plain(data.option_a),
        option_b=sanitize_plain(data.option_b),
        option_c=sanitize_plain(data.option_c),
        option_d=sanitize_plain(data.option_d),
        correct_option=data.correct_option.strip().upper(),
        explanation=sanitize_plain(data.explanation) or None,
    )
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def list_exam_attempts(session: Session, exam_id: int) -> List[ExamAttempt]:
    """All attempts of an exam, newest first, for the admin report."""
    get_exam(session, exam_id)
    stmt = (
        select(ExamAttempt)
        .where(ExamAttempt.exam_id == exam_id)
        .order_by(ExamAttempt.created_at.desc(), ExamAttempt.id.desc())
    )
    return list(session.exec(stmt).all())
