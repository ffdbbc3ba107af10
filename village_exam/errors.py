"""Exception hierarchy shared by the server routes and the client core.

Every error carries an HTTP ``status_code`` and a machine-readable ``code``.
The FastAPI app renders them as ``{"detail": ..., "code": ...}`` and the HTTP
store maps that body back to the same class with :func:`error_from_body`.
"""

from typing import Dict, Optional, Type


class ExamError(Exception):
    """Base exception for the exam service."""

    status_code: int = 400
    code: str = "EXAM_ERROR"

    def __init__(self, message: str = "Exam operation failed"):
        self.message = message
        super().__init__(message)


class EligibilityError(ExamError):
    """The student may not start or resume this exam. Not retryable."""

    status_code = 403
    code = "NOT_ELIGIBLE"

    def __init__(self, message: str = "You are not eligible for this exam", reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class AlreadyCompletedError(EligibilityError):
    status_code = 403
    code = "ALREADY_COMPLETED"

    def __init__(self, message: str = "You have already completed this exam", reason: Optional[str] = "already_completed"):
        super().__init__(message, reason=reason)


class ExamNotFoundError(ExamError):
    status_code = 404
    code = "EXAM_NOT_FOUND"

    def __init__(self, message: str = "Exam not found"):
        super().__init__(message)


class AttemptNotFoundError(ExamError):
    status_code = 404
    code = "ATTEMPT_NOT_FOUND"

    def __init__(self, message: str = "Exam attempt not found"):
        super().__init__(message)


class AttemptOwnershipError(ExamError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "This attempt belongs to another student"):
        super().__init__(message)


class AdminRequiredError(ExamError):
    status_code = 403
    code = "ADMIN_REQUIRED"

    def __init__(self, message: str = "Admin role required"):
        super().__init__(message)


class AuthenticationError(ExamError):
    status_code = 401
    code = "AUTH_REQUIRED"

    def __init__(self, message: str = "Login required"):
        super().__init__(message)


class InvalidTransitionError(ExamError):
    """A write that would move an attempt backwards or touch a closed attempt."""

    status_code = 409
    code = "INVALID_TRANSITION"


class ActiveAttemptExistsError(ExamError):
    status_code = 409
    code = "ACTIVE_ATTEMPT_EXISTS"

    def __init__(self, message: str = "An active attempt already exists for this exam"):
        super().__init__(message)


class AnswerRejectedError(ExamError):
    status_code = 400
    code = "ANSWER_REJECTED"


class ExamValidationError(ExamError):
    """Invalid admin payload; ``errors`` maps field name to message."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Invalid exam payload", errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class PledgeRequiredError(ExamError):
    status_code = 400
    code = "PLEDGE_REQUIRED"

    def __init__(self, message: str = "Please accept the integrity pledge"):
        super().__init__(message)


class CameraUnavailableError(ExamError):
    status_code = 400
    code = "CAMERA_UNAVAILABLE"

    def __init__(self, message: str = "Allow camera access to continue"):
        super().__init__(message)


class SnapshotCaptureError(ExamError):
    status_code = 400
    code = "CAMERA_CAPTURE_FAILED"

    def __init__(self, message: str = "Could not take the photo, please try again"):
        super().__init__(message)


class StoreUnavailableError(ExamError):
    status_code = 503
    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str = "The exam server could not be reached"):
        super().__init__(message)


class SubmissionError(ExamError):
    """Final submission did not reach the store; safe to retry."""

    status_code = 503
    code = "SUBMISSION_FAILED"

    def __init__(self, message: str = "Exam submission failed, please retry"):
        super().__init__(message)


_BY_CODE: Dict[str, Type[ExamError]] = {
    cls.code: cls
    for cls in (
        ExamError,
        EligibilityError,
        AlreadyCompletedError,
        ExamNotFoundError,
        AttemptNotFoundError,
        AttemptOwnershipError,
        AdminRequiredError,
        AuthenticationError,
        InvalidTransitionError,
        ActiveAttemptExistsError,
        AnswerRejectedError,
        ExamValidationError,
        PledgeRequiredError,
        CameraUnavailableError,
        SnapshotCaptureError,
        StoreUnavailableError,
        SubmissionError,
    )
}


def error_from_body(body: dict) -> ExamError:
    """Rebuild the exception a server error response describes."""
    cls = _BY_CODE.get(body.get("code") or "", ExamError)
    detail = body.get("detail")
    exc = cls(detail) if isinstance(detail, str) and detail else cls()
    if isinstance(exc, EligibilityError) and body.get("reason"):
        exc.reason = body["reason"]
    if isinstance(exc, ExamValidationError):
        exc.errors = body.get("errors") or {}
    return exc


def error_body(exc: ExamError) -> dict:
    body = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, EligibilityError) and exc.reason:
        body["reason"] = exc.reason
    if isinstance(exc, ExamValidationError) and exc.errors:
        body["errors"] = exc.errors
    return body
