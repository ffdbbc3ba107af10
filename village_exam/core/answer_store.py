"""In-memory answers of an attempt, auto-saved to the exam store.

Selections update the local map immediately. The durable write waits for a
debounce window; each question owns a single pending-write slot, and a new
selection cancels and replaces the slot's write while it is still waiting.
Once a write is in flight it is left alone: the store's upsert decides which
arrival wins.

On a failed write the local value rolls back to the last confirmed one and the
error is reported; there is no automatic retry, the student re-selects.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from village_exam.config import AUTOSAVE_DEBOUNCE_SECONDS
from village_exam.core.ports import ExamStore
from village_exam.errors import ExamError, InvalidTransitionError
from village_exam.schemas import AnswerRead
from village_exam.utils import utcnow

logger = logging.getLogger(__name__)


class SaveStatus:
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass(frozen=True)
class AnswerEntry:
    selected_option: str
    time_taken_seconds: int = 0


@dataclass
class PendingWrite:
    """Single-slot register holding the next write for one question."""

    entry: AnswerEntry
    task: Optional[asyncio.Task] = None
    in_flight: bool = False


@dataclass
class _Counters:
    writes: int = 0
    failures: int = 0
    coalesced: int = 0


class AnswerStore:
    def __init__(
        self,
        store: ExamStore,
        attempt_id: int,
        user_id: int,
        debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS,
        on_error: Optional[Callable[[int, ExamError], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self.attempt_id = attempt_id
        self.user_id = user_id
        self.debounce_seconds = debounce_seconds
        self._on_error = on_error
        self._sleep = sleep

        self.answers: Dict[int, AnswerEntry] = {}
        self._confirmed: Dict[int, AnswerEntry] = {}
        self._slots: Dict[int, PendingWrite] = {}
        # Includes in-flight writes whose slot was already replaced
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

        self.status = SaveStatus.IDLE
        self.last_saved_at = None
        self.counters = _Counters()

    # --- reading -----------------------------------------------------------

    def selected(self, question_id: int) -> Optional[str]:
        entry = self.answers.get(question_id)
        return entry.selected_option if entry else None

    def selections(self) -> Dict[int, str]:
        return {qid: entry.selected_option for qid, entry in self.answers.items()}

    def confirmed_selections(self) -> Dict[int, str]:
        """Selections the store has acknowledged; what a submission is scored on."""
        return {qid: entry.selected_option for qid, entry in self._confirmed.items()}

    def answered_count(self, question_ids: Iterable[int]) -> int:
        return sum(1 for qid in question_ids if qid in self.answers)

    def first_unanswered(self, question_ids: List[int]) -> int:
        """Index of the first question without an answer; 0 when all are answered."""
        for index, qid in enumerate(question_ids):
            if qid not in self.answers:
                return index
        return 0

    @property
    def pending(self) -> int:
        return len(self._slots)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- writing -----------------------------------------------------------

    def hydrate(self, rows: Iterable[AnswerRead]) -> None:
        """Rebuild the map from persisted answers of a resumed attempt."""
        for row in rows:
            if not row.selected_option:
                continue
            entry = AnswerEntry(row.selected_option, row.time_taken_seconds or 0)
            self.answers[row.question_id] = entry
            self._confirmed[row.question_id] = entry

    def select(self, question_id: int, option: str, time_taken_seconds: int = 0) -> None:
        """Record a selection locally and (re)start its debounced write."""
        if self._closed:
            raise InvalidTransitionError("Answers can no longer be changed for this attempt")

        entry = AnswerEntry(option, time_taken_seconds)
        self.answers[question_id] = entry

        slot = self._slots.get(question_id)
        if slot is not None and not slot.in_flight:
            slot.task.cancel()
            self.counters.coalesced += 1

        slot = PendingWrite(entry)
        slot.task = asyncio.create_task(self._write_later(question_id, slot))
        self._tasks.add(slot.task)
        slot.task.add_done_callback(self._tasks.discard)
        self._slots[question_id] = slot
        self.status = SaveStatus.SAVING

    def close(self) -> None:
        """Stop accepting selections and drop writes still waiting out their debounce.

        Writes already in flight are not cancelled, but their outcome no longer
        touches local state.
        """
        if self._closed:
            return
        self._closed = True
        for question_id, slot in list(self._slots.items()):
            if not slot.in_flight:
                slot.task.cancel()
                del self._slots[question_id]
        if self.status == SaveStatus.SAVING and not self._slots:
            self.status = SaveStatus.IDLE

    async def drain(self) -> None:
        """Wait until no write is waiting or in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _write_later(self, question_id: int, slot: PendingWrite) -> None:
        try:
            await self._sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            # Replaced by a newer selection or dropped by close()
            return

        slot.in_flight = True
        try:
            await self._store.save_answer(
                self.attempt_id,
                self.user_id,
                question_id,
                slot.entry.selected_option,
                slot.entry.time_taken_seconds,
            )
        except ExamError as exc:
            self.counters.failures += 1
            logger.warning(
                "Saving answer for attempt %s question %s failed: %s",
                self.attempt_id,
                question_id,
                exc.message,
            )
            if not self._closed:
                self._roll_back(question_id, slot.entry)
                self.status = SaveStatus.ERROR
                if self._on_error is not None:
                    self._on_error(question_id, exc)
        else:
            self.counters.writes += 1
            if not self._closed:
                self._confirmed[question_id] = slot.entry
                self.last_saved_at = utcnow()
                if not self._has_other_slots(slot):
                    self.status = SaveStatus.SAVED
        finally:
            if self._slots.get(question_id) is slot:
                del self._slots[question_id]

    def _has_other_slots(self, slot: PendingWrite) -> bool:
        return any(other is not slot for other in self._slots.values())

    def _roll_back(self, question_id: int, failed: AnswerEntry) -> None:
        # A newer selection made while this write was in flight stays put.
        if self.answers.get(question_id) != failed:
            return
        confirmed = self._confirmed.get(question_id)
        if confirmed is None:
            self.answers.pop(question_id, None)
        else:
            self.answers[question_id] = confirmed
