"""Stored-procedure style endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from village_exam.database import get_session
from village_exam.deps import ensure_acting_user, require_login
from village_exam.models import User
from village_exam.schemas import AnswerRead, AttemptRead, ResetAttemptRequest, SaveAnswerRequest
from village_exam.services import attempt_service

router = APIRouter()


@router.post("/save_exam_answer", response_model=AnswerRead)
def save_exam_answer(
    data: SaveAnswerRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    """Upsert one answer. ``is_correct`` is computed here, never taken from the client."""
    ensure_acting_user(current_user, data.user_id)
    return attempt_service.save_exam_answer(
        session,
        data.attempt_id,
        data.question_id,
        data.selected_option,
        data.time_taken_seconds,
        user_id=current_user.id,
    )


@router.post("/reset_exam_attempt", response_model=AttemptRead)
def reset_exam_attempt(
    data: ResetAttemptRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    ensure_acting_user(current_user, data.admin_user_id)
    return attempt_service.reset_exam_attempt(session, data.admin_user_id, data.attempt_id)
