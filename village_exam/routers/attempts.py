"""Attempt table routes. Every call names the acting student explicitly."""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from village_exam.database import get_session
from village_exam.deps import ensure_acting_user, require_login
from village_exam.models import User
from village_exam.schemas import AnswerRead, AttemptCreate, AttemptRead, AttemptUpdateRequest
from village_exam.services import attempt_service

router = APIRouter()


@router.get("/latest", response_model=Optional[AttemptRead])
def latest_attempt(
    exam_id: int,
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    ensure_acting_user(current_user, user_id)
    return attempt_service.get_latest_attempt(session, exam_id, user_id)


@router.post("", response_model=AttemptRead, status_code=status.HTTP_201_CREATED)
def create_attempt(
    data: AttemptCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    ensure_acting_user(current_user, data.user_id)
    return attempt_service.create_attempt(session, data)


@router.patch("/{attempt_id}", response_model=AttemptRead)
def update_attempt(
    attempt_id: int,
    data: AttemptUpdateRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    ensure_acting_user(current_user, data.user_id)
    return attempt_service.update_attempt(session, attempt_id, data.user_id, data.fields)


@router.get("/{attempt_id}/answers", response_model=List[AnswerRead])
def attempt_answers(
    attempt_id: int,
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    ensure_acting_user(current_user, user_id)
    return attempt_service.list_answers(session, attempt_id, user_id)
