"""Attempt lifecycle controller.

Owns one student's session on one exam::

    NOT_STARTED -> IN_PROGRESS -> SUBMITTED

``open`` creates or resumes the attempt after the eligibility checks. A fresh
attempt goes through the integrity gate before it becomes IN_PROGRESS; an
attempt whose pledge was already accepted skips straight to the exam. While
IN_PROGRESS the countdown timer and the answer store run side by side, both
writing through the exam store. Submission, confirmed by the student or
triggered by the timer reaching zero, goes through one scoring routine and
one terminal write.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set

from village_exam.config import AUTOSAVE_DEBOUNCE_SECONDS, TIME_CHECKPOINT_SECONDS
from village_exam.core import eligibility
from village_exam.core.answer_store import AnswerStore
from village_exam.core.integrity import IntegrityGate
from village_exam.core.ports import ExamStore, FrameCapture, Notice, StudentSession
from village_exam.core.scoring import ScoreCard, score_attempt, select_question_set
from village_exam.core.timer import CountdownTimer
from village_exam.errors import (
    AlreadyCompletedError,
    AnswerRejectedError,
    EligibilityError,
    ExamError,
    InvalidTransitionError,
    SubmissionError,
)
from village_exam.models import OPTIONS, AttemptStatus
from village_exam.schemas import AttemptCreate, AttemptRead, AttemptUpdate, ExamRead, QuestionRead
from village_exam.utils import utcnow

logger = logging.getLogger(__name__)


class Phase:
    CLOSED = "closed"
    GATE = "gate"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    LEFT = "left"


@dataclass(frozen=True)
class SubmissionSummary:
    """Figures shown in the confirmation dialog before a manual submit."""

    answered: int
    total: int
    remaining_seconds: int


@dataclass(frozen=True)
class SubmissionResult:
    exam_id: int
    attempt_id: int
    score: int
    correct: int
    wrong: int
    unanswered: int
    total_questions: int
    auto_submitted: bool

    @property
    def results_path(self) -> str:
        return f"/exams/{self.exam_id}/results/{self.attempt_id}"


class ExamAttemptController:
    def __init__(
        self,
        store: ExamStore,
        student: StudentSession,
        camera: Optional[FrameCapture] = None,
        notify: Optional[Callable[[Notice], None]] = None,
        debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS,
        checkpoint_every: int = TIME_CHECKPOINT_SECONDS,
        tick_seconds: float = 1.0,
        now: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        sleep=asyncio.sleep,
    ):
        self._store = store
        self.student = student
        self._camera = camera
        self._notify_cb = notify
        self._debounce_seconds = debounce_seconds
        self._checkpoint_every = checkpoint_every
        self._tick_seconds = tick_seconds
        self._now = now
        self._monotonic = monotonic
        self._rng = rng
        self._sleep = sleep

        self.exam: Optional[ExamRead] = None
        self.attempt: Optional[AttemptRead] = None
        self.questions: List[QuestionRead] = []
        self.answers: Optional[AnswerStore] = None
        self.gate: Optional[IntegrityGate] = None
        self.timer: Optional[CountdownTimer] = None
        self.cursor = 0

        self._remaining = 0
        self._question_shown_at = 0.0
        self._submitting = False
        self._left = False
        self._scorecard: Optional[ScoreCard] = None
        self._result: Optional[SubmissionResult] = None
        self._submit_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # --- state -------------------------------------------------------------

    @property
    def phase(self) -> str:
        if self._result is not None:
            return Phase.SUBMITTED
        if self._left:
            return Phase.LEFT
        if self._submitting:
            return Phase.SUBMITTING
        if self.attempt is None:
            return Phase.CLOSED
        if self.gate is not None and not self.gate.done:
            return Phase.GATE
        return Phase.IN_PROGRESS

    @property
    def result(self) -> Optional[SubmissionResult]:
        return self._result

    @property
    def question_ids(self) -> List[int]:
        return [q.id for q in self.questions]

    @property
    def current_question(self) -> Optional[QuestionRead]:
        if not self.questions:
            return None
        return self.questions[self.cursor]

    @property
    def remaining_seconds(self) -> int:
        if self.timer is not None:
            return self.timer.remaining
        return self._remaining

    def submission_summary(self) -> SubmissionSummary:
        answered = self.answers.answered_count(self.question_ids) if self.answers else 0
        return SubmissionSummary(
            answered=answered,
            total=self.attempt.total_questions if self.attempt else 0,
            remaining_seconds=self.remaining_seconds,
        )

    # --- create or resume --------------------------------------------------

    async def open(self, exam_id: int) -> "ExamAttemptController":
        """Create a new attempt or resume the student's active one."""
        if self.attempt is not None:
            raise InvalidTransitionError("This session already holds an attempt")
        user_id = self.student.user_id
        try:
            exam = await self._store.fetch_exam(exam_id)
            latest = await self._store.fetch_latest_attempt(exam_id, user_id)

            prior = [latest] if latest is not None else []
            blocker = eligibility.start_blocker(exam, self._now(), self.student.standard, prior)
            if blocker == eligibility.Blocker.ALREADY_COMPLETED:
                raise AlreadyCompletedError()
            if blocker is not None:
                raise EligibilityError(eligibility.BLOCKER_MESSAGES[blocker], reason=blocker)

            self.exam = exam
            if latest is None or latest.status == AttemptStatus.SUBMITTED:
                # A permitted reattempt gets a fresh row; the submitted one stays as history.
                attempt = await self._create_attempt(exam)
                logger.info("Created attempt %s for exam %s user %s", attempt.id, exam_id, user_id)
            else:
                attempt = latest
                logger.info("Resuming attempt %s (%s) for exam %s", attempt.id, attempt.status, exam_id)

            await self._load(attempt)
        except ExamError as exc:
            self._notify("error", "Cannot open exam", exc.message)
            raise
        return self

    async def _create_attempt(self, exam: ExamRead) -> AttemptRead:
        pool = await self._store.fetch_question_pool(exam.id)
        order = select_question_set(pool, exam.total_questions, exam.shuffle_questions, self._rng)
        return await self._store.create_attempt(
            AttemptCreate(
                exam_id=exam.id,
                user_id=self.student.user_id,
                student_name=self.student.student_name,
                total_questions=exam.total_questions,
                shuffled_question_order=order,
            )
        )

    async def _load(self, attempt: AttemptRead) -> None:
        self.attempt = attempt
        user_id = self.student.user_id

        rows = await self._store.fetch_questions_by_ids(attempt.shuffled_question_order)
        by_id = {q.id: q for q in rows}
        self.questions = [by_id[qid] for qid in attempt.shuffled_question_order if qid in by_id]

        self.answers = AnswerStore(
            self._store,
            attempt.id,
            user_id,
            debounce_seconds=self._debounce_seconds,
            on_error=self._answer_failed,
            sleep=self._sleep,
        )
        self.answers.hydrate(await self._store.fetch_answers_for_attempt(attempt.id, user_id))
        self.cursor = self.answers.first_unanswered(self.question_ids)

        if attempt.remaining_time_seconds is None:
            self._remaining = self.exam.duration_minutes * 60
        else:
            self._remaining = attempt.remaining_time_seconds

        if attempt.integrity_pledge_accepted:
            if attempt.status == AttemptStatus.NOT_STARTED:
                now = self._now()
                self.attempt = await self._store.update_attempt(
                    attempt.id,
                    user_id,
                    AttemptUpdate(
                        status=AttemptStatus.IN_PROGRESS,
                        start_time=attempt.start_time or now,
                        last_activity_at=now,
                    ),
                )
            self._activate()
        else:
            self.gate = IntegrityGate(self.exam, self._camera, on_complete=self._integrity_passed)

    # --- integrity gate ----------------------------------------------------

    def accept_instructions(self) -> None:
        self._require_gate().accept_instructions()

    async def accept_pledge(self, accepted: bool) -> None:
        await self._gate_call(self._require_gate().accept_pledge(accepted))

    async def retry_camera(self) -> None:
        await self._gate_call(self._require_gate().start_camera())

    async def capture_snapshot(self) -> str:
        return await self._gate_call(self._require_gate().capture())

    def cancel(self) -> None:
        """Abandon the gate and go back to the exam list; nothing more is persisted."""
        if self.gate is not None:
            self.gate.cancel()
        self._left = True

    def _require_gate(self) -> IntegrityGate:
        if self.phase != Phase.GATE:
            raise InvalidTransitionError("The integrity check is not in progress")
        return self.gate

    async def _gate_call(self, coro):
        try:
            return await coro
        except ExamError as exc:
            self._notify("error", "Integrity check", exc.message)
            raise

    async def _integrity_passed(self, snapshot: str) -> None:
        now = self._now()
        self.attempt = await self._store.update_attempt(
            self.attempt.id,
            self.student.user_id,
            AttemptUpdate(
                status=AttemptStatus.IN_PROGRESS,
                integrity_pledge_accepted=True,
                start_snapshot_url=snapshot,
                start_time=now,
                last_activity_at=now,
            ),
        )
        logger.info("Attempt %s passed the integrity check", self.attempt.id)
        self._activate()

    def _activate(self) -> None:
        self._question_shown_at = self._monotonic()
        self.timer = CountdownTimer(
            self._remaining,
            on_expire=self.auto_submit,
            on_checkpoint=self._checkpoint,
            checkpoint_every=self._checkpoint_every,
            tick_seconds=self._tick_seconds,
            sleep=self._sleep,
        )
        self.timer.start()

    # --- answering ---------------------------------------------------------

    def select_answer(self, option: str, question_id: Optional[int] = None) -> None:
        """Select an option for the displayed question (or ``question_id``)."""
        self._require_in_progress()
        if question_id is None:
            question_id = self.current_question.id
        option = (option or "").strip().upper()
        if option not in OPTIONS:
            raise AnswerRejectedError(f"Option must be one of {', '.join(OPTIONS)}")
        if question_id not in self.question_ids:
            raise AnswerRejectedError("Question is not part of this attempt")

        time_taken = int(self._monotonic() - self._question_shown_at + 0.5)
        self.answers.select(question_id, option, time_taken)

    def go_next(self) -> None:
        self.jump_to(self.cursor + 1)

    def go_previous(self) -> None:
        self.jump_to(self.cursor - 1)

    def jump_to(self, index: int) -> None:
        if not 0 <= index < len(self.questions) or index == self.cursor:
            return
        self.cursor = index
        self._question_shown_at = self._monotonic()

    def _require_in_progress(self) -> None:
        if self.phase != Phase.IN_PROGRESS:
            raise InvalidTransitionError(f"The exam is not in progress ({self.phase})")

    def _answer_failed(self, question_id: int, exc: ExamError) -> None:
        self._notify(
            "error",
            "Error while saving",
            "Your answer could not be saved. Please select it again.",
        )

    # --- timer -------------------------------------------------------------

    async def _checkpoint(self, remaining: int) -> None:
        if self._submitting or self._result is not None:
            return
        self.attempt = await self._store.update_attempt(
            self.attempt.id,
            self.student.user_id,
            AttemptUpdate(remaining_time_seconds=remaining, last_activity_at=self._now()),
        )

    # --- submission --------------------------------------------------------

    async def submit(self) -> SubmissionResult:
        """Submit after the student confirmed the summary dialog."""
        return await self._finalize(auto=False)

    async def auto_submit(self) -> SubmissionResult:
        """Submit because the timer reached zero. Repeated triggers are no-ops."""
        return await self._finalize(auto=True)

    async def _finalize(self, auto: bool) -> SubmissionResult:
        if self._result is not None:
            return self._result
        task = self._submit_task
        if task is None or task.done():
            task = self._submit_task = asyncio.create_task(self._submit(auto))
        return await asyncio.shield(task)

    async def _submit(self, auto: bool) -> SubmissionResult:
        if self.phase not in (Phase.IN_PROGRESS, Phase.SUBMITTING):
            raise InvalidTransitionError(f"The exam cannot be submitted ({self.phase})")

        first_try = not self._submitting
        self._submitting = True
        if self.timer is not None:
            self._remaining = self.timer.cancel()
        # No answer write may follow the terminal write. Writes already in
        # flight are awaited so the score covers exactly what was stored.
        self.answers.close()
        await self.answers.drain()
        if auto and first_try:
            self._notify("info", "Time is up!", "Your exam is being submitted automatically.")

        if self._scorecard is None:
            self._scorecard = score_attempt(
                self.attempt.shuffled_question_order,
                {q.id: q.correct_option for q in self.questions},
                self.answers.confirmed_selections(),
                self.attempt.total_questions,
            )
        card = self._scorecard

        now = self._now()
        fields = AttemptUpdate(
            status=AttemptStatus.SUBMITTED,
            score=card.score,
            correct_answers=card.correct,
            wrong_answers=card.wrong,
            unanswered=card.unanswered,
            end_time=now,
            remaining_time_seconds=0,
            can_reattempt=False,
            last_activity_at=now,
        )
        try:
            self.attempt = await self._store.update_attempt(self.attempt.id, self.student.user_id, fields)
        except ExamError as exc:
            logger.warning("Submitting attempt %s failed: %s", self.attempt.id, exc.message)
            self._notify("error", "Submission failed", "Your answers are kept. Please try submitting again.")
            raise SubmissionError() from exc

        # The stored row carries the server's own scoring of the saved answers.
        attempt = self.attempt
        self._result = SubmissionResult(
            exam_id=attempt.exam_id,
            attempt_id=attempt.id,
            score=attempt.score,
            correct=attempt.correct_answers,
            wrong=attempt.wrong_answers,
            unanswered=attempt.unanswered,
            total_questions=attempt.total_questions,
            auto_submitted=auto,
        )
        if attempt.score != card.score:
            logger.warning(
                "Attempt %s: local score %s differs from stored score %s", attempt.id, card.score, attempt.score
            )
        logger.info(
            "Attempt %s submitted (%s): score %s%%",
            attempt.id,
            "auto" if auto else "manual",
            attempt.score,
        )
        self._notify("info", "Exam submitted!", f"Your score: {attempt.score}%")
        return self._result

    # --- leaving -----------------------------------------------------------

    def leave(self) -> None:
        """Navigate away: stop the timer and save the remaining time best-effort.

        Answer writes already started are left to land.
        """
        if self.gate is not None and not self.gate.done:
            self.gate.cancel()
        if self.timer is not None and self.timer.running and not self._submitting:
            self._remaining = self.timer.cancel()
            self._spawn(self._save_remaining_time(self._remaining))
        self._left = True

    async def _save_remaining_time(self, remaining: int) -> None:
        try:
            await self._store.update_attempt(
                self.attempt.id,
                self.student.user_id,
                AttemptUpdate(remaining_time_seconds=remaining, last_activity_at=self._now()),
            )
        except ExamError as exc:
            logger.warning("Saving remaining time on exit failed: %s", exc.message)

    async def settle(self) -> None:
        """Wait for pending answer writes, timer callbacks and exit saves."""
        if self.answers is not None:
            await self.answers.drain()
        if self.timer is not None:
            await self.timer.wait()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- helpers -----------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _notify(self, level: str, title: str, message: str) -> None:
        if self._notify_cb is not None:
            self._notify_cb(Notice(level, title, message))
