# besty/core/errors.py
from typing import Optional


class BestyError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BestyError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class Unauthenticated(BestyError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class InvalidToken(Unauthenticated):
    code = "invalid_token"
    default_message = "Invalid or expired token"


class Forbidden(BestyError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class NotFound(BestyError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class TurnInProgress(BestyError):
    status_code = 409
    code = "turn_in_progress"
    default_message = "A turn is already in progress for this conversation"


class NoSpeechDetected(BestyError):
    status_code = 422
    code = "no_speech_detected"
    default_message = "I didn't catch that. Please try speaking again."


class UpstreamServiceFailure(BestyError):
    status_code = 502
    code = "upstream_failure"
    default_message = "An external AI service failed"


class MicrophoneUnavailable(BestyError):
    status_code = 503
    code = "microphone_unavailable"
    default_message = "Microphone access denied or not available"
