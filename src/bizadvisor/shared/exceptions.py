"""
Domain exception taxonomy.

Local, recoverable errors (extraction, transient sync) are retried or degraded
by their callers; only QueueFullError and dead-lettered sync items reach the user.
"""

from typing import Any, Sequence


class BizAdvisorError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}


class ExtractionError(BizAdvisorError):
    """Malformed utterance input (e.g. empty text). Recoverable by re-prompting."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message, session_id=session_id)
        self.session_id = session_id


class MergeConflictError(BizAdvisorError):
    """Two explicit values could not be ordered. Signals a logic bug."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, session_id=session_id, field=field)
        self.session_id = session_id
        self.field = field


class QueueFullError(BizAdvisorError):
    """Local queue storage is exhausted."""

    def __init__(self, message: str, capacity: int, item_type: str | None = None) -> None:
        super().__init__(message, capacity=capacity, item_type=item_type)
        self.capacity = capacity
        self.item_type = item_type


class SyncError(BizAdvisorError):
    """Upload/download failure against the remote sync endpoint."""

    def __init__(
        self,
        message: str,
        item_ids: Sequence[str] | None = None,
        attempt: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, attempt=attempt, status_code=status_code)
        self.item_ids = list(item_ids or [])
        self.attempt = attempt
        self.status_code = status_code


class ConnectivityLostError(SyncError):
    """The network went away while talking to the sync endpoint."""


class SessionNotFoundError(BizAdvisorError):
    """No session with the given id exists in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", session_id=session_id)
        self.session_id = session_id


class SessionClosedError(BizAdvisorError):
    """Mutation attempted on a closed session."""

    def __init__(self, session_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Session is closed: {session_id}", session_id=session_id)
        self.session_id = session_id


class SessionTimeoutError(SessionClosedError):
    """The session was closed for inactivity. A lifecycle transition, not a fault."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, f"Session timed out: {session_id}")


class SpeechUnavailableError(BizAdvisorError):
    """A speech engine (STT or TTS) could not be reached, e.g. device offline."""
