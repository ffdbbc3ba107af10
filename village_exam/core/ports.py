"""Ports the exam core depends on.

``ExamStore`` is the Remote Persistence Adapter: the system of record for
attempts and answers. ``FrameCapture`` is the camera used by the integrity
gate. Both are injected so tests can substitute fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from village_exam.schemas import (
    AnswerRead,
    AttemptCreate,
    AttemptRead,
    AttemptUpdate,
    ExamRead,
    QuestionRead,
)


@dataclass(frozen=True)
class StudentSession:
    """Explicit identity passed into every controller and store call."""

    user_id: int
    student_name: str
    standard: Optional[str] = None


@dataclass(frozen=True)
class Notice:
    """A user-facing notification."""

    level: str  # "info" | "error"
    title: str
    message: str


class ExamStore(ABC):
    """Query/update/RPC contract against the exam store.

    Implementations raise :class:`village_exam.errors.ExamError` subclasses;
    transport failures surface as ``StoreUnavailableError``.
    """

    @abstractmethod
    async def fetch_exam(self, exam_id: int) -> ExamRead:
        ...

    @abstractmethod
    async def fetch_question_pool(self, exam_id: int) -> List[int]:
        """Ids of every question of the exam in creation order."""

    @abstractmethod
    async def fetch_questions_by_ids(self, ids: Sequence[int]) -> List[QuestionRead]:
        ...

    @abstractmethod
    async def fetch_latest_attempt(self, exam_id: int, user_id: int) -> Optional[AttemptRead]:
        """Most recent attempt by creation time, or None."""

    @abstractmethod
    async def create_attempt(self, data: AttemptCreate) -> AttemptRead:
        """Insert a NOT_STARTED attempt."""

    @abstractmethod
    async def update_attempt(self, attempt_id: int, user_id: int, fields: AttemptUpdate) -> AttemptRead:
        ...

    @abstractmethod
    async def save_answer(
        self,
        attempt_id: int,
        user_id: int,
        question_id: int,
        selected_option: str,
        time_taken_seconds: int,
    ) -> AnswerRead:
        """The ``save_exam_answer`` procedure: upsert on (attempt, question)."""

    @abstractmethod
    async def fetch_answers_for_attempt(self, attempt_id: int, user_id: int) -> List[AnswerRead]:
        ...


class FrameCapture(Protocol):
    """Camera port: open a live stream, grab one still, release it.

    ``open`` raises ``CameraUnavailableError`` when the device cannot be
    acquired; ``grab_frame`` returns encoded image bytes or None.
    """

    async def open(self) -> None:
        ...

    async def grab_frame(self) -> Optional[bytes]:
        ...

    def close(self) -> None:
        ...
