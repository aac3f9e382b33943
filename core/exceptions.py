"""
Error taxonomy for the quiz attempt workflow.

Every error carries an HTTP status code and a message that is safe to show to
the client. Internal details go to the log, never into ``message``.
"""
from typing import Any, Dict, Optional


class QuizServiceError(Exception):
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)


class Unauthorized(QuizServiceError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(QuizServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(QuizServiceError):
    status_code = 404
    default_message = "Not found"


class AttemptsExhausted(QuizServiceError):
    status_code = 409
    default_message = "Maximum attempts reached"


class IncompleteAttempt(QuizServiceError):
    status_code = 400
    default_message = "Cannot mark incomplete quiz as done"


class ValidationError(QuizServiceError):
    status_code = 422
    default_message = "Invalid submission"


class TransientStoreError(QuizServiceError):
    status_code = 503
    default_message = "Service temporarily unavailable, please try again"
