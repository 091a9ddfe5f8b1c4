"""Error taxonomy for live meeting sessions."""

from __future__ import annotations


class MeetingError(Exception):
    """Base class for meeting session errors."""


class AlreadyActiveError(MeetingError):
    """Raised when starting a session while another one is active."""


class NoActiveSessionError(MeetingError):
    """Raised when an operation needs a running session and there is none."""


class MissingConfigurationError(MeetingError):
    """Missing credentials or configuration; fatal to session start."""


class AssistantUnavailableError(MeetingError):
    """Raised when the assistant is invoked before the realtime link is ready."""


class RealtimeLinkError(MeetingError):
    """Transport failure on the realtime model connection."""

    def __init__(
        self,
        message: str,
        *,
        close_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.close_code = close_code
        self.retryable = retryable


class LinkTimeoutError(RealtimeLinkError):
    """The socket never opened within the connection timeout."""


class BackendError(MeetingError):
    """A transcription backend failed to start or misbehaved."""


class CorrectionError(MeetingError):
    """The correction call failed or returned an unusable reply."""


class PersistenceError(MeetingError):
    """Storing session data failed."""
