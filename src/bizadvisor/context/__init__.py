"""Session context: models, persistence, merging and lifecycle."""

from bizadvisor.context.merger import ContextMerger, MergeReport
from bizadvisor.context.models import (
    FIELD_PRIORITY,
    CloseReason,
    ContextField,
    DialoguePhase,
    DialogueState,
    LocationInfo,
    Message,
    MessageRole,
    Provenance,
    SessionContext,
    SessionStatus,
    TrackedValue,
    UserProfile,
)
from bizadvisor.context.store import ContextStore
from bizadvisor.context.sweeper import SessionSweeper

__all__ = [
    "FIELD_PRIORITY",
    "CloseReason",
    "ContextField",
    "ContextMerger",
    "ContextStore",
    "DialoguePhase",
    "DialogueState",
    "LocationInfo",
    "MergeReport",
    "Message",
    "MessageRole",
    "Provenance",
    "SessionContext",
    "SessionStatus",
    "SessionSweeper",
    "TrackedValue",
    "UserProfile",
]
