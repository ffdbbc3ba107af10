"""Integrity gate: instructions, pledge and camera snapshot before an attempt starts.

Steps are strictly ordered and each one gates the next. Nothing is persisted
until the snapshot is captured; the completion callback then writes the
attempt as IN_PROGRESS. The gate can be cancelled at any step.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from village_exam.core.ports import FrameCapture
from village_exam.errors import (
    CameraUnavailableError,
    InvalidTransitionError,
    PledgeRequiredError,
    SnapshotCaptureError,
)

logger = logging.getLogger(__name__)

EXAM_RULES: Tuple[str, ...] = (
    "Once the exam starts the timer cannot be paused.",
    "When the time runs out the exam is submitted automatically.",
    "The remaining time is shown on screen throughout the exam.",
    "Every answer is saved automatically as soon as you select it.",
    "Your answers stay safe if the page reloads or the internet drops.",
    "If you log in again the exam continues from where you stopped.",
    "Do not switch tabs or open other applications during the exam.",
    "A photo is taken before the exam starts to confirm your identity.",
)


class GateStep:
    INSTRUCTIONS = "instructions"
    PLEDGE = "pledge"
    CAMERA = "camera"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExamInstructions:
    exam_title: str
    duration_minutes: int
    total_questions: int
    rules: Tuple[str, ...] = EXAM_RULES


def encode_snapshot(frame: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode a captured still as a data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(frame).decode('ascii')}"


class IntegrityGate:
    def __init__(
        self,
        exam,
        camera: Optional[FrameCapture],
        on_complete: Callable[[str], Awaitable[None]],
    ):
        self.instructions = ExamInstructions(
            exam_title=exam.title,
            duration_minutes=exam.duration_minutes,
            total_questions=exam.total_questions,
        )
        self._camera = camera
        self._on_complete = on_complete
        self._camera_open = False
        self.step = GateStep.INSTRUCTIONS
        self.snapshot: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.step == GateStep.COMPLETE

    @property
    def camera_ready(self) -> bool:
        return self._camera_open

    def _require(self, step: str) -> None:
        if self.step != step:
            raise InvalidTransitionError(f"Integrity check is at step '{self.step}', not '{step}'")

    def accept_instructions(self) -> None:
        self._require(GateStep.INSTRUCTIONS)
        self.step = GateStep.PLEDGE

    async def accept_pledge(self, accepted: bool) -> None:
        """Advance to the camera step and try to acquire the camera.

        A camera failure is raised but the gate stays at the camera step so
        :meth:`start_camera` can be retried.
        """
        self._require(GateStep.PLEDGE)
        if not accepted:
            raise PledgeRequiredError()
        self.step = GateStep.CAMERA
        await self.start_camera()

    async def start_camera(self) -> None:
        self._require(GateStep.CAMERA)
        if self._camera_open:
            return
        if self._camera is None:
            raise CameraUnavailableError("No camera is available on this device")
        try:
            await self._camera.open()
        except CameraUnavailableError:
            logger.warning("Camera could not be acquired")
            raise
        except OSError as exc:
            logger.warning("Camera could not be acquired: %s", exc)
            raise CameraUnavailableError() from exc
        self._camera_open = True

    async def capture(self) -> str:
        """Take the identity photo and persist the start of the attempt."""
        self._require(GateStep.CAMERA)
        if not self._camera_open:
            raise CameraUnavailableError()

        frame = await self._camera.grab_frame()
        if not frame:
            raise SnapshotCaptureError()

        snapshot = encode_snapshot(frame)
        # On a failed write the camera stays open so the student can capture again.
        await self._on_complete(snapshot)

        self.snapshot = snapshot
        self._release_camera()
        self.step = GateStep.COMPLETE
        return snapshot

    def cancel(self) -> None:
        if self.step == GateStep.COMPLETE:
            return
        self._release_camera()
        self.step = GateStep.CANCELLED

    def _release_camera(self) -> None:
        if self._camera_open and self._camera is not None:
            self._camera.close()
        self._camera_open = False
