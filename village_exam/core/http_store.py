"""Exam store over the service's HTTP API.

Error responses carry ``{"detail", "code"}`` and are turned back into the
matching ``ExamError`` subclass; transport failures become
``StoreUnavailableError``. The client keeps the session cookie set by
:meth:`HttpExamStore.login`.
"""

import logging
from typing import Any, List, Optional, Sequence

import httpx

from village_exam.core.ports import ExamStore, StudentSession
from village_exam.errors import ExamError, StoreUnavailableError, error_from_body
from village_exam.schemas import (
    AnswerRead,
    AttemptCreate,
    AttemptRead,
    AttemptUpdate,
    ExamRead,
    QuestionRead,
)

logger = logging.getLogger(__name__)


class HttpExamStore(ExamStore):
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def login(self, email: str, password: str) -> StudentSession:
        """Log in and return the explicit session to hand to the controller."""
        profile = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        return StudentSession(
            user_id=profile["id"],
            student_name=profile["full_name"],
            standard=profile.get("standard"),
        )

    async def logout(self) -> None:
        await self._request("GET", "/auth/logout")

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise StoreUnavailableError() from exc

        if response.is_error:
            raise self._error_for(response)
        return response.json()

    @staticmethod
    def _error_for(response: httpx.Response) -> ExamError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("code"):
            return error_from_body(body)
        if response.status_code >= 500:
            return StoreUnavailableError()
        detail = body.get("detail") if isinstance(body, dict) else None
        return ExamError(detail if isinstance(detail, str) else f"Request failed ({response.status_code})")

    async def fetch_exam(self, exam_id: int) -> ExamRead:
        return ExamRead.model_validate(await self._request("GET", f"/exams/{exam_id}"))

    async def fetch_question_pool(self, exam_id: int) -> List[int]:
        return list(await self._request("GET", f"/exams/{exam_id}/question-ids"))

    async def fetch_questions_by_ids(self, ids: Sequence[int]) -> List[QuestionRead]:
        rows = await self._request("POST", "/exams/questions/lookup", json={"ids": list(ids)})
        return [QuestionRead.model_validate(row) for row in rows]

    async def fetch_latest_attempt(self, exam_id: int, user_id: int) -> Optional[AttemptRead]:
        row = await self._request(
            "GET", "/attempts/latest", params={"exam_id": exam_id, "user_id": user_id}
        )
        return AttemptRead.model_validate(row) if row else None

    async def create_attempt(self, data: AttemptCreate) -> AttemptRead:
        row = await self._request("POST", "/attempts", json=data.model_dump(mode="json"))
        return AttemptRead.model_validate(row)

    async def update_attempt(self, attempt_id: int, user_id: int, fields: AttemptUpdate) -> AttemptRead:
        payload = {"user_id": user_id, "fields": fields.model_dump(mode="json", exclude_unset=True)}
        row = await self._request("PATCH", f"/attempts/{attempt_id}", json=payload)
        return AttemptRead.model_validate(row)

    async def save_answer(
        self,
        attempt_id: int,
        user_id: int,
        question_id: int,
        selected_option: str,
        time_taken_seconds: int,
    ) -> AnswerRead:
        payload = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "selected_option": selected_option,
            "time_taken_seconds": time_taken_seconds,
            "user_id": user_id,
        }
        return AnswerRead.model_validate(await self._request("POST", "/rpc/save_exam_answer", json=payload))

    async def fetch_answers_for_attempt(self, attempt_id: int, user_id: int) -> List[AnswerRead]:
        rows = await self._request("GET", f"/attempts/{attempt_id}/answers", params={"user_id": user_id})
        return [AnswerRead.model_validate(row) for row in rows]
