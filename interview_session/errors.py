"""Error taxonomy surfaced by the interview orchestrator.

Every error carries a machine ``kind``, the HTTP status the API layer maps it
to, and a human-readable ``message`` that never contains raw provider text.
Parse failures are not part of this module: the response parser returns
``NeedsRepair`` values instead of raising.
"""
from __future__ import annotations

from typing import Optional


class InterviewError(Exception):
    kind = "InterviewError"
    status_code = 500
    default_message = "Something went wrong with the interview. Please try again."

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None) -> None:
        self.message = message or self.default_message
        self.retry_after = retry_after
        super().__init__(self.message)


class PrecursorMissing(InterviewError):
    kind = "PrecursorMissing"
    status_code = 400
    default_message = "No resume found. Please upload your resume before starting an interview."


class ValidationFailure(InterviewError):
    kind = "ValidationError"
    status_code = 400
    default_message = "The request was not valid."


class SessionNotFound(InterviewError):
    kind = "SessionNotFound"
    status_code = 404
    default_message = "No active interview session found. Please start a new interview."


class ResetNotAllowed(InterviewError):
    kind = "ResetNotAllowed"
    status_code = 403
    default_message = "Reset limit reached. You can only reset this interview once."


class CancelNotAllowed(InterviewError):
    kind = "CancelNotAllowed"
    status_code = 400
    default_message = (
        "Cannot cancel an interview with progress. Please use the End Interview option to save your results."
    )


class SessionConflict(InterviewError):
    kind = "SessionConflict"
    status_code = 409
    default_message = "The interview was updated by another request. Please reload and try again."


class RateLimited(InterviewError):
    kind = "RateLimited"
    status_code = 429
    default_message = "The AI service is experiencing high demand. Please wait a moment and try again."


class ModelUnavailable(InterviewError):
    kind = "ModelUnavailable"
    status_code = 503
    default_message = "The AI service is temporarily unavailable. Please try again in a few minutes."


class TransientUpstream(InterviewError):
    kind = "TransientUpstream"
    status_code = 503
    default_message = "Unable to reach the AI service right now. Please try again in a few moments."


class StoreUnavailable(InterviewError):
    kind = "StoreUnavailable"
    status_code = 500
    default_message = "Interview storage is unavailable. Your progress was not changed."


__all__ = [
    "InterviewError",
    "PrecursorMissing",
    "ValidationFailure",
    "SessionNotFound",
    "ResetNotAllowed",
    "CancelNotAllowed",
    "SessionConflict",
    "RateLimited",
    "ModelUnavailable",
    "TransientUpstream",
    "StoreUnavailable",
]
