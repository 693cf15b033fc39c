"""
Domain models for session context and user profiles.

Models are plain dataclasses; the store persists them as JSON payloads through
`to_dict` / `from_dict`. Timestamps are always timezone-aware UTC.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from bizadvisor.context.ids import global_session_id
from bizadvisor.shared.clock import as_utc


class Provenance(str, Enum):
    """Where a field value came from."""

    EXPLICIT = "explicit"
    INFERRED = "inferred"
    UNSET = "unset"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class CloseReason(str, Enum):
    EXPLICIT = "explicit"
    TIMEOUT = "timeout"


class ContextField(str, Enum):
    """Fields the dialogue policy gathers, in asking priority order."""

    BUSINESS_TYPE = "business_type"
    LOCATION = "location"
    OPERATING_CONDITIONS = "operating_conditions"


FIELD_PRIORITY: tuple[ContextField, ...] = (
    ContextField.BUSINESS_TYPE,
    ContextField.LOCATION,
    ContextField.OPERATING_CONDITIONS,
)


class DialoguePhase(str, Enum):
    GATHERING = "gathering"
    READY = "ready"
    CLOSED = "closed"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# Inference sources for LocationInfo.inferred_location, strongest first.
INFERENCE_RANKS: dict[str, int] = {
    "place": 3,
    "landmark": 2,
    "environmental_cue": 1,
}


def _dt_out(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def _dt_in(value: str | None) -> datetime | None:
    return as_utc(datetime.fromisoformat(value)) if value else None


@dataclass
class TrackedValue:
    """A field value with its provenance, confidence and write time."""

    value: str | None = None
    provenance: Provenance = Provenance.UNSET
    confidence: float = 0.0
    updated_at: datetime | None = None

    @property
    def is_set(self) -> bool:
        return self.value is not None and self.provenance != Provenance.UNSET

    @property
    def is_explicit(self) -> bool:
        return self.is_set and self.provenance == Provenance.EXPLICIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "provenance": self.provenance.value,
            "confidence": self.confidence,
            "updated_at": _dt_out(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TrackedValue:
        if not data:
            return cls()
        return cls(
            value=data.get("value"),
            provenance=Provenance(data.get("provenance", Provenance.UNSET.value)),
            confidence=float(data.get("confidence", 0.0)),
            updated_at=_dt_in(data.get("updated_at")),
        )


@dataclass
class LocationInfo:
    """Location knowledge: an explicit place beats anything inferred."""

    explicit: str | None = None
    explicit_at: datetime | None = None
    explicit_confidence: float = 0.0
    landmarks: list[str] = field(default_factory=list)
    environmental_cues: list[str] = field(default_factory=list)
    inferred_location: str | None = None
    inferred_source: str | None = None
    inferred_at: datetime | None = None

    @property
    def resolved(self) -> str | None:
        """The value every location-dependent read should use."""
        return self.explicit or self.inferred_location

    @property
    def provenance(self) -> Provenance:
        if self.explicit:
            return Provenance.EXPLICIT
        if self.inferred_location:
            return Provenance.INFERRED
        return Provenance.UNSET

    @property
    def inferred_rank(self) -> int:
        return INFERENCE_RANKS.get(self.inferred_source or "", 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "explicit": self.explicit,
            "explicit_at": _dt_out(self.explicit_at),
            "explicit_confidence": self.explicit_confidence,
            "landmarks": list(self.landmarks),
            "environmental_cues": list(self.environmental_cues),
            "inferred_location": self.inferred_location,
            "inferred_source": self.inferred_source,
            "inferred_at": _dt_out(self.inferred_at),
            "resolved": self.resolved,
            "provenance": self.provenance.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LocationInfo:
        if not data:
            return cls()
        return cls(
            explicit=data.get("explicit"),
            explicit_at=_dt_in(data.get("explicit_at")),
            explicit_confidence=float(data.get("explicit_confidence", 0.0)),
            landmarks=list(data.get("landmarks") or []),
            environmental_cues=list(data.get("environmental_cues") or []),
            inferred_location=data.get("inferred_location"),
            inferred_source=data.get("inferred_source"),
            inferred_at=_dt_in(data.get("inferred_at")),
        )


@dataclass
class Message:
    """One conversation turn."""

    role: MessageRole
    text: str
    timestamp: datetime
    language: str = "en"
    kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "text": self.text,
            "timestamp": _dt_out(self.timestamp),
            "language": self.language,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=MessageRole(data["role"]),
            text=data["text"],
            timestamp=_dt_in(data["timestamp"]),  # type: ignore[arg-type]
            language=data.get("language", "en"),
            kind=data.get("kind"),
        )


@dataclass
class DialogueState:
    """Bookkeeping the dialogue policy carries between turns."""

    phase: DialoguePhase = DialoguePhase.GATHERING
    pending_field: ContextField | None = None
    pending_subdetail: str | None = None
    decline_counts: dict[str, int] = field(default_factory=dict)
    accepted_unset: list[str] = field(default_factory=list)
    followed_up: list[str] = field(default_factory=list)
    reconfirm: list[str] = field(default_factory=list)
    turn_count: int = 0

    def copy(self) -> DialogueState:
        return DialogueState.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "pending_field": self.pending_field.value if self.pending_field else None,
            "pending_subdetail": self.pending_subdetail,
            "decline_counts": dict(self.decline_counts),
            "accepted_unset": list(self.accepted_unset),
            "followed_up": list(self.followed_up),
            "reconfirm": list(self.reconfirm),
            "turn_count": self.turn_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DialogueState:
        if not data:
            return cls()
        pending = data.get("pending_field")
        return cls(
            phase=DialoguePhase(data.get("phase", DialoguePhase.GATHERING.value)),
            pending_field=ContextField(pending) if pending else None,
            pending_subdetail=data.get("pending_subdetail"),
            decline_counts={k: int(v) for k, v in (data.get("decline_counts") or {}).items()},
            accepted_unset=list(data.get("accepted_unset") or []),
            followed_up=list(data.get("followed_up") or []),
            reconfirm=list(data.get("reconfirm") or []),
            turn_count=int(data.get("turn_count", 0)),
        )


@dataclass
class SessionContext:
    """State of one conversation."""

    session_id: str
    user_id: str
    created_at: datetime
    last_updated: datetime
    business_type: TrackedValue = field(default_factory=TrackedValue)
    location: LocationInfo = field(default_factory=LocationInfo)
    operating_conditions: TrackedValue = field(default_factory=TrackedValue)
    preferences: dict[str, TrackedValue] = field(default_factory=dict)
    conversation_history: list[Message] = field(default_factory=list)
    language: str = "en"
    status: SessionStatus = SessionStatus.ACTIVE
    close_reason: CloseReason | None = None
    closed_at: datetime | None = None
    archived_at: datetime | None = None
    server_suffix: str | None = None
    version: int = 0
    dialogue: DialogueState = field(default_factory=DialogueState)

    @property
    def is_closed(self) -> bool:
        return self.status == SessionStatus.CLOSED

    @property
    def global_id(self) -> str:
        """Local id plus the server suffix once the session has synced."""
        return global_session_id(self.session_id, self.server_suffix)

    def field_is_set(self, context_field: ContextField) -> bool:
        if context_field == ContextField.LOCATION:
            return self.location.resolved is not None
        return self._tracked(context_field).is_set

    def field_provenance(self, context_field: ContextField) -> Provenance:
        if context_field == ContextField.LOCATION:
            return self.location.provenance
        tracked = self._tracked(context_field)
        return tracked.provenance if tracked.is_set else Provenance.UNSET

    def field_value(self, context_field: ContextField) -> str | None:
        if context_field == ContextField.LOCATION:
            return self.location.resolved
        return self._tracked(context_field).value

    def _tracked(self, context_field: ContextField) -> TrackedValue:
        if context_field == ContextField.BUSINESS_TYPE:
            return self.business_type
        return self.operating_conditions

    def is_expired(self, now: datetime, timeout_seconds: float) -> bool:
        return (as_utc(now) - as_utc(self.last_updated)).total_seconds() > timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "global_id": self.global_id,
            "user_id": self.user_id,
            "created_at": _dt_out(self.created_at),
            "last_updated": _dt_out(self.last_updated),
            "business_type": self.business_type.to_dict(),
            "location": self.location.to_dict(),
            "operating_conditions": self.operating_conditions.to_dict(),
            "preferences": {k: v.to_dict() for k, v in self.preferences.items()},
            "conversation_history": [m.to_dict() for m in self.conversation_history],
            "language": self.language,
            "status": self.status.value,
            "close_reason": self.close_reason.value if self.close_reason else None,
            "closed_at": _dt_out(self.closed_at),
            "archived_at": _dt_out(self.archived_at),
            "server_suffix": self.server_suffix,
            "version": self.version,
            "dialogue": self.dialogue.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionContext:
        close_reason = data.get("close_reason")
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            created_at=_dt_in(data["created_at"]),  # type: ignore[arg-type]
            last_updated=_dt_in(data["last_updated"]),  # type: ignore[arg-type]
            business_type=TrackedValue.from_dict(data.get("business_type")),
            location=LocationInfo.from_dict(data.get("location")),
            operating_conditions=TrackedValue.from_dict(data.get("operating_conditions")),
            preferences={
                k: TrackedValue.from_dict(v) for k, v in (data.get("preferences") or {}).items()
            },
            conversation_history=[
                Message.from_dict(m) for m in data.get("conversation_history") or []
            ],
            language=data.get("language", "en"),
            status=SessionStatus(data.get("status", SessionStatus.ACTIVE.value)),
            close_reason=CloseReason(close_reason) if close_reason else None,
            closed_at=_dt_in(data.get("closed_at")),
            archived_at=_dt_in(data.get("archived_at")),
            server_suffix=data.get("server_suffix"),
            version=int(data.get("version", 0)),
            dialogue=DialogueState.from_dict(data.get("dialogue")),
        )

    def snapshot(self) -> dict[str, Any]:
        """Field values in the shape accepted by `ExtractedContext.from_snapshot`."""
        result: dict[str, Any] = {"language": self.language}
        for name, tracked in (
            ("business_type", self.business_type),
            ("operating_conditions", self.operating_conditions),
        ):
            if tracked.is_set:
                result[name] = {
                    "value": tracked.value,
                    "confidence": tracked.confidence,
                    "explicit": tracked.is_explicit,
                }
        location: dict[str, Any] = {
            "landmarks": list(self.location.landmarks),
            "environmental_cues": list(self.location.environmental_cues),
        }
        if self.location.explicit:
            location["explicit"] = self.location.explicit
            location["confidence"] = self.location.explicit_confidence
        result["location"] = location
        result["preferences"] = {
            key: {"value": tv.value, "confidence": tv.confidence, "explicit": tv.is_explicit}
            for key, tv in self.preferences.items()
            if tv.is_set
        }
        return result


@dataclass
class UserProfile:
    """Long-lived per-user memory."""

    user_id: str
    preferred_languages: list[str] = field(default_factory=list)
    preferences: dict[str, TrackedValue] = field(default_factory=dict)
    session_count: int = 0
    last_active: datetime | None = None

    @property
    def language(self) -> str:
        return self.preferred_languages[0] if self.preferred_languages else "en"

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "preferred_languages": list(self.preferred_languages),
            "preferences": {k: v.to_dict() for k, v in self.preferences.items()},
            "session_count": self.session_count,
            "last_active": _dt_out(self.last_active),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        return cls(
            user_id=data["user_id"],
            preferred_languages=list(data.get("preferred_languages") or []),
            preferences={
                k: TrackedValue.from_dict(v) for k, v in (data.get("preferences") or {}).items()
            },
            session_count=int(data.get("session_count", 0)),
            last_active=_dt_in(data.get("last_active")),
        )
