"""
Exception hierarchy for the quiz attempt client.
"""
from typing import Optional


class QuizAttemptError(Exception):
    """Base exception for quiz attempt errors."""

    default_user_message = "An unexpected error occurred."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class NotFoundError(QuizAttemptError):
    """Raised when a question set or attempt row does not exist."""

    default_user_message = "This quiz could not be found."


class BackendError(QuizAttemptError):
    """Raised by a store when the backend rejects or fails a request."""

    default_user_message = "The server could not be reached."


class TransientWriteFailure(QuizAttemptError):
    """Raised when an answer or progress write fails. Logged, never shown."""
    pass


class FinishFailure(QuizAttemptError):
    """Raised when the finish-quiz call fails. The user stays on the last question."""

    default_user_message = "Failed to submit the quiz. Please try again."


class ResetFailure(QuizAttemptError):
    """Raised when resetting an attempt fails. Local state is left untouched."""

    default_user_message = "Failed to reset the quiz. Please try again."


class InvalidActionError(QuizAttemptError):
    """Raised when the reducer receives an action it does not know."""
    pass
