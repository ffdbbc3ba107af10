"""Admin exam management routes (admin and sub_admin only)."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from village_exam.database import get_session
from village_exam.deps import require_admin
from village_exam.models import User
from village_exam.schemas import AttemptRead, ExamRead, QuestionCreate, QuestionRead, SaveExamRequest
from village_exam.services import exam_admin_service

router = APIRouter()


@router.post("/exams", response_model=ExamRead)
def save_exam(
    data: SaveExamRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_admin),
):
    """Create an exam, or update the one named by ``exam_id``."""
    return exam_admin_service.save_exam(session, current_user, data.exam, exam_id=data.exam_id)


@router.post("/exams/{exam_id}/questions", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
def add_question(
    exam_id: int,
    data: QuestionCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_admin),
):
    return exam_admin_service.add_question(session, exam_id, data)


@router.get("/exams/{exam_id}/attempts", response_model=List[AttemptRead])
def exam_attempts(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_admin),
):
    return exam_admin_service.list_exam_attempts(session, exam_id)
