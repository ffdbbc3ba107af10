"""Student-facing exam routes: dashboard, exam data and results."""

from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from village_exam.database import get_session
from village_exam.deps import require_login
from village_exam.models import User
from village_exam.schemas import AttemptResults, ExamRead, QuestionLookup, QuestionRead, StudentExamCard
from village_exam.services import attempt_service

router = APIRouter()


@router.get("/student", response_model=List[StudentExamCard])
def student_dashboard(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    """Open exams for the student's standard with their current state."""
    return attempt_service.list_student_exams(session, current_user)


@router.post("/questions/lookup", response_model=List[QuestionRead])
def lookup_questions(
    data: QuestionLookup,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return attempt_service.get_questions_by_ids(session, data.ids)


@router.get("/{exam_id}", response_model=ExamRead)
def get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return attempt_service.get_exam(session, exam_id)


@router.get("/{exam_id}/question-ids", response_model=List[int])
def question_ids(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return attempt_service.list_question_ids(session, exam_id)


@router.get("/{exam_id}/results/{attempt_id}", response_model=AttemptResults)
def attempt_results(
    exam_id: int,
    attempt_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return attempt_service.get_attempt_results(session, exam_id, attempt_id, current_user.id)
