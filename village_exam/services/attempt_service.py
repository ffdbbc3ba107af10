"""Attempt and answer procedures: the server half of the exam store.

Every function takes an open ``Session`` and raises an ``ExamError`` subclass
on a rejected call. Routes and the in-process store both go through here, so
the invariants below hold regardless of the client:

- at most one NOT_STARTED/IN_PROGRESS attempt per (exam, student);
- attempt status only moves forward and a SUBMITTED attempt is frozen;
- the question set of an attempt never changes after creation;
- answer correctness is always derived here from the question row.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from village_exam.core import eligibility
from village_exam.core.scoring import score_attempt
from village_exam.errors import (
    ActiveAttemptExistsError,
    AdminRequiredError,
    AlreadyCompletedError,
    AnswerRejectedError,
    AttemptNotFoundError,
    AttemptOwnershipError,
    EligibilityError,
    ExamNotFoundError,
    InvalidTransitionError,
)
from village_exam.models import (
    ADMIN_ROLES,
    OPTIONS,
    AttemptStatus,
    Exam,
    ExamAnswer,
    ExamAttempt,
    ExamQuestion,
    ExamStatus,
    User,
)
from village_exam.schemas import (
    AttemptCreate,
    AttemptResults,
    AttemptSummary,
    AttemptUpdate,
    ExamRead,
    ReviewItem,
    StudentExamCard,
)
from village_exam.utils import utcnow

logger = logging.getLogger(__name__)

_SCORE_FIELDS = ("score", "correct_answers", "wrong_answers", "unanswered")
_NOT_NULL_FIELDS = ("status", "integrity_pledge_accepted", "can_reattempt")


# --- Exams and questions --------------------------------------------------


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise ExamNotFoundError()
    return exam


def list_question_ids(session: Session, exam_id: int) -> List[int]:
    """Question ids of an exam in creation order."""
    get_exam(session, exam_id)
    stmt = select(ExamQuestion.id).where(ExamQuestion.exam_id == exam_id).order_by(ExamQuestion.id)
    return list(session.exec(stmt).all())


def get_questions_by_ids(session: Session, ids: Sequence[int]) -> List[ExamQuestion]:
    if not ids:
        return []
    return list(session.exec(select(ExamQuestion).where(ExamQuestion.id.in_(list(ids)))).all())


# --- Attempts -------------------------------------------------------------


def get_attempt(session: Session, attempt_id: int) -> ExamAttempt:
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt:
        raise AttemptNotFoundError()
    return attempt


def get_owned_attempt(session: Session, attempt_id: int, user_id: int) -> ExamAttempt:
    attempt = get_attempt(session, attempt_id)
    if attempt.user_id != user_id:
        raise AttemptOwnershipError()
    return attempt


def get_latest_attempt(session: Session, exam_id: int, user_id: int) -> Optional[ExamAttempt]:
    """Most recent attempt of a student for an exam, by creation time."""
    stmt = (
        select(ExamAttempt)
        .where((ExamAttempt.exam_id == exam_id) & (ExamAttempt.user_id == user_id))
        .order_by(ExamAttempt.created_at.desc(), ExamAttempt.id.desc())
    )
    return session.exec(stmt).first()


def _find_active_attempt(session: Session, exam_id: int, user_id: int) -> Optional[ExamAttempt]:
    stmt = select(ExamAttempt).where(
        (ExamAttempt.exam_id == exam_id)
        & (ExamAttempt.user_id == user_id)
        & (ExamAttempt.status.in_(AttemptStatus.ACTIVE))
    )
    return session.exec(stmt).first()


def create_attempt(session: Session, data: AttemptCreate, now: Optional[datetime] = None) -> ExamAttempt:
    """Insert a NOT_STARTED attempt with its fixed question set.

    Raises:
        ActiveAttemptExistsError: The student already has an active attempt.
        AlreadyCompletedError: A submitted attempt exists and no reattempt is permitted.
        EligibilityError: The exam is closed, outside its window or not for the student's standard.
        AnswerRejectedError: The question order contains foreign or repeated ids.
    """
    now = now or utcnow()
    exam = get_exam(session, data.exam_id)
    user = session.get(User, data.user_id)
    if not user:
        raise AttemptOwnershipError("Unknown student")

    if _find_active_attempt(session, exam.id, user.id) is not None:
        raise ActiveAttemptExistsError()

    latest = get_latest_attempt(session, exam.id, user.id)
    blocker = eligibility.start_blocker(exam, now, user.standard, [latest] if latest else [])
    if blocker == eligibility.Blocker.ALREADY_COMPLETED:
        raise AlreadyCompletedError()
    if blocker is not None:
        raise EligibilityError(eligibility.BLOCKER_MESSAGES[blocker], reason=blocker)

    order = list(data.shuffled_question_order)
    pool = set(list_question_ids(session, exam.id))
    if len(set(order)) != len(order) or not set(order) <= pool:
        raise AnswerRejectedError("Question order does not match the exam's questions")

    attempt = ExamAttempt(
        exam_id=exam.id,
        user_id=user.id,
        student_name=data.student_name,
        total_questions=data.total_questions,
        status=AttemptStatus.NOT_STARTED,
        remaining_time_seconds=exam.duration_minutes * 60,
        shuffled_question_order=order,
        created_at=now,
    )
    session.add(attempt)
    session.commit()
    session.refresh(attempt)
    return attempt


def update_attempt(session: Session, attempt_id: int, user_id: int, fields: AttemptUpdate) -> ExamAttempt:
    """Apply a partial write to the student's own attempt.

    Score fields sent by the client are never stored. On the SUBMITTED
    transition the score and the correct/wrong/unanswered counts are
    recomputed from the saved answers of the attempt.

    The pledge flag and the start snapshot are written once, and
    ``can_reattempt`` may only be cleared here; granting a reattempt is
    :func:`reset_exam_attempt`.

    Raises:
        AttemptOwnershipError: The attempt belongs to someone else.
        AdminRequiredError: The write would grant a reattempt.
        InvalidTransitionError: The attempt is submitted, the status would move
            backwards, score fields are written without submitting, the
            question order would change, or the pledge or snapshot would be
            rewritten.
    """
    attempt = get_owned_attempt(session, attempt_id, user_id)
    if attempt.status == AttemptStatus.SUBMITTED:
        raise InvalidTransitionError("This attempt has already been submitted")

    data = fields.model_dump(exclude_unset=True)
    for key in _NOT_NULL_FIELDS:
        if key in data and data[key] is None:
            del data[key]

    new_status = data.get("status")
    if new_status is not None:
        if new_status not in AttemptStatus.ORDER:
            raise InvalidTransitionError(f"Unknown attempt status '{new_status}'")
        if AttemptStatus.ORDER[new_status] < AttemptStatus.ORDER[attempt.status]:
            raise InvalidTransitionError(f"Attempt cannot move from {attempt.status} to {new_status}")

    if any(key in data for key in _SCORE_FIELDS) and new_status != AttemptStatus.SUBMITTED:
        raise InvalidTransitionError("Scores are only written when the attempt is submitted")
    for key in _SCORE_FIELDS:
        data.pop(key, None)

    if data.get("can_reattempt"):
        raise AdminRequiredError("Only an admin can allow a reattempt")
    if "integrity_pledge_accepted" in data and attempt.integrity_pledge_accepted:
        if not data["integrity_pledge_accepted"]:
            raise InvalidTransitionError("The integrity pledge cannot be withdrawn")
    snapshot = data.get("start_snapshot_url")
    if "start_snapshot_url" in data and attempt.start_snapshot_url and snapshot != attempt.start_snapshot_url:
        raise InvalidTransitionError("The start snapshot is already stored")

    order = data.pop("shuffled_question_order", None)
    if order is not None and list(order) != list(attempt.shuffled_question_order):
        raise InvalidTransitionError("The question order of an attempt cannot change")

    for key, value in data.items():
        setattr(attempt, key, value)
    if new_status == AttemptStatus.SUBMITTED:
        _apply_score(session, attempt)

    session.add(attempt)
    session.commit()
    session.refresh(attempt)
    if new_status == AttemptStatus.SUBMITTED:
        logger.info("Attempt %s submitted with score %s", attempt.id, attempt.score)
    return attempt


def _apply_score(session: Session, attempt: ExamAttempt) -> None:
    order = list(attempt.shuffled_question_order)
    answers = session.exec(select(ExamAnswer).where(ExamAnswer.attempt_id == attempt.id)).all()
    questions = get_questions_by_ids(session, order)
    card = score_attempt(
        order,
        {q.id: (q.correct_option or "").strip().upper() for q in questions},
        {a.question_id: a.selected_option for a in answers},
        attempt.total_questions,
    )
    attempt.score = card.score
    attempt.correct_answers = card.correct
    attempt.wrong_answers = card.wrong
    attempt.unanswered = card.unanswered

def reset_exam_attempt(session: Session, admin_user_id: int, attempt_id: int) -> ExamAttempt:
    """Allow one more attempt after a submitted one."""
    admin = session.get(User, admin_user_id)
    if not admin or admin.role not in ADMIN_ROLES:
        raise AdminRequiredError()

    attempt = get_attempt(session, attempt_id)
    if attempt.status != AttemptStatus.SUBMITTED:
        raise InvalidTransitionError("Only a submitted attempt can be reset")

    attempt.can_reattempt = True
    session.add(attempt)
    session.commit()
    session.refresh(attempt)
    logger.info("Admin %s reset attempt %s for a reattempt", admin_user_id, attempt_id)
    return attempt


# --- Answers --------------------------------------------------------------


def save_exam_answer(
    session: Session,
    attempt_id: int,
    question_id: int,
    selected_option: str,
    time_taken_seconds: int = 0,
    user_id: Optional[int] = None,
) -> ExamAnswer:
    """Upsert the answer for (attempt, question) and bump the attempt's activity time."""
    option = (selected_option or "").strip().upper()
    if option not in OPTIONS:
        raise AnswerRejectedError(f"Option must be one of {', '.join(OPTIONS)}")

    attempt = get_attempt(session, attempt_id)
    if user_id is not None and attempt.user_id != user_id:
        raise AttemptOwnershipError()
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise InvalidTransitionError("Answers can only be saved while the exam is in progress")
    if question_id not in attempt.shuffled_question_order:
        raise AnswerRejectedError("Question is not part of this attempt")

    question = session.get(ExamQuestion, question_id)
    if not question:
        raise AnswerRejectedError("Question not found")

    is_correct = (question.correct_option or "").strip().upper() == option
    time_taken = max(0, int(time_taken_seconds or 0))
    now = utcnow()

    try:
        answer = _upsert_answer(session, attempt, question_id, option, is_correct, time_taken, now)
    except IntegrityError:
        # A concurrent insert won the unique constraint; apply ours as an update.
        session.rollback()
        attempt = get_attempt(session, attempt_id)
        answer = _upsert_answer(session, attempt, question_id, option, is_correct, time_taken, now)
    return answer


def _upsert_answer(
    session: Session,
    attempt: ExamAttempt,
    question_id: int,
    option: str,
    is_correct: bool,
    time_taken: int,
    now: datetime,
) -> ExamAnswer:
    stmt = select(ExamAnswer).where(
        (ExamAnswer.attempt_id == attempt.id) & (ExamAnswer.question_id == question_id)
    )
    answer = session.exec(stmt).first()
    if answer is None:
        answer = ExamAnswer(
            attempt_id=attempt.id,
            question_id=question_id,
            answered_at=now,
            selected_option=option,
        )
    answer.selected_option = option
    answer.is_correct = is_correct
    answer.time_taken_seconds = time_taken
    answer.updated_at = now
    attempt.last_activity_at = now

    session.add(answer)
    session.add(attempt)
    session.commit()
    session.refresh(answer)
    return answer


def list_answers(session: Session, attempt_id: int, user_id: int) -> List[ExamAnswer]:
    get_owned_attempt(session, attempt_id, user_id)
    stmt = select(ExamAnswer).where(ExamAnswer.attempt_id == attempt_id).order_by(ExamAnswer.id)
    return list(session.exec(stmt).all())


# --- Student views --------------------------------------------------------


def list_student_exams(session: Session, user: User, now: Optional[datetime] = None) -> List[StudentExamCard]:
    """Open exams the student may see, with their dashboard state."""
    now = now or utcnow()
    exams = session.exec(
        select(Exam).where(Exam.status.in_(ExamStatus.OPEN)).order_by(Exam.scheduled_at, Exam.id)
    ).all()
    attempts = session.exec(
        select(ExamAttempt)
        .where(ExamAttempt.user_id == user.id)
        .order_by(ExamAttempt.created_at.desc(), ExamAttempt.id.desc())
    ).all()

    latest_by_exam: Dict[int, ExamAttempt] = {}
    for attempt in attempts:
        latest_by_exam.setdefault(attempt.exam_id, attempt)

    cards = []
    for exam in exams:
        if not eligibility.is_eligible_by_standard(exam, user.standard):
            continue
        latest = latest_by_exam.get(exam.id)
        prior = [latest] if latest else []
        cards.append(
            StudentExamCard(
                exam=ExamRead.model_validate(exam),
                state=eligibility.classify(exam, now, prior),
                can_start=eligibility.can_start(exam, now, user.standard, prior),
                latest_attempt=AttemptSummary.model_validate(latest) if latest else None,
            )
        )
    return cards


def get_attempt_results(session: Session, exam_id: int, attempt_id: int, user_id: int) -> AttemptResults:
    """Score and per-question review of the student's own submitted attempt."""
    attempt = get_owned_attempt(session, attempt_id, user_id)
    if attempt.exam_id != exam_id:
        raise AttemptNotFoundError()
    if attempt.status != AttemptStatus.SUBMITTED:
        raise InvalidTransitionError("Results are available once the exam is submitted")

    exam = get_exam(session, exam_id)
    questions = {q.id: q for q in get_questions_by_ids(session, attempt.shuffled_question_order)}
    answers = {a.question_id: a for a in list_answers(session, attempt.id, user_id)}

    review = []
    for question_id in attempt.shuffled_question_order:
        question = questions.get(question_id)
        if question is None:
            continue
        answer = answers.get(question_id)
        selected = answer.selected_option if answer else None
        review.append(
            ReviewItem(
                question_id=question.id,
                question=question.question,
                option_a=question.option_a,
                option_b=question.option_b,
                option_c=question.option_c,
                option_d=question.option_d,
                selected_option=selected,
                correct_option=question.correct_option,
                is_correct=selected is not None and selected == question.correct_option,
                explanation=question.explanation,
            )
        )

    score = attempt.score or 0
    return AttemptResults(
        exam_id=exam.id,
        attempt_id=attempt.id,
        exam_title=exam.title,
        student_name=attempt.student_name,
        score=score,
        correct_answers=attempt.correct_answers or 0,
        wrong_answers=attempt.wrong_answers or 0,
        unanswered=attempt.unanswered or 0,
        total_questions=attempt.total_questions,
        pass_marks=exam.pass_marks,
        passed=score >= exam.pass_marks,
        end_time=attempt.end_time,
        review=review,
    )
