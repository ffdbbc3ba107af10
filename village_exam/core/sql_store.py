"""In-process exam store backed by the SQLModel services.

Each call opens its own session and converts rows to read models before the
session closes. Calls run inline on the event loop; they are short
single-row statements.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from village_exam.core.ports import ExamStore
from village_exam.errors import StoreUnavailableError
from village_exam.schemas import (
    AnswerRead,
    AttemptCreate,
    AttemptRead,
    AttemptUpdate,
    ExamRead,
    QuestionRead,
)
from village_exam.services import attempt_service

logger = logging.getLogger(__name__)


class SqlExamStore(ExamStore):
    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self._engine) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.warning("Database call failed: %s", exc)
            raise StoreUnavailableError() from exc

    async def fetch_exam(self, exam_id: int) -> ExamRead:
        with self._session() as session:
            return ExamRead.model_validate(attempt_service.get_exam(session, exam_id))

    async def fetch_question_pool(self, exam_id: int) -> List[int]:
        with self._session() as session:
            return attempt_service.list_question_ids(session, exam_id)

    async def fetch_questions_by_ids(self, ids: Sequence[int]) -> List[QuestionRead]:
        with self._session() as session:
            rows = attempt_service.get_questions_by_ids(session, ids)
            return [QuestionRead.model_validate(row) for row in rows]

    async def fetch_latest_attempt(self, exam_id: int, user_id: int) -> Optional[AttemptRead]:
        with self._session() as session:
            attempt = attempt_service.get_latest_attempt(session, exam_id, user_id)
            return AttemptRead.model_validate(attempt) if attempt else None

    async def create_attempt(self, data: AttemptCreate) -> AttemptRead:
        with self._session() as session:
            return AttemptRead.model_validate(attempt_service.create_attempt(session, data))

    async def update_attempt(self, attempt_id: int, user_id: int, fields: AttemptUpdate) -> AttemptRead:
        with self._session() as session:
            attempt = attempt_service.update_attempt(session, attempt_id, user_id, fields)
            return AttemptRead.model_validate(attempt)

    async def save_answer(
        self,
        attempt_id: int,
        user_id: int,
        question_id: int,
        selected_option: str,
        time_taken_seconds: int,
    ) -> AnswerRead:
        with self._session() as session:
            answer = attempt_service.save_exam_answer(
                session,
                attempt_id,
                question_id,
                selected_option,
                time_taken_seconds,
                user_id=user_id,
            )
            return AnswerRead.model_validate(answer)

    async def fetch_answers_for_attempt(self, attempt_id: int, user_id: int) -> List[AnswerRead]:
        with self._session() as session:
            rows = attempt_service.list_answers(session, attempt_id, user_id)
            return [AnswerRead.model_validate(row) for row in rows]
