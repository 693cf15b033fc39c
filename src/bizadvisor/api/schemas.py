"""
Pydantic schemas for the HTTP surface.
"""

import base64
import binascii
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from bizadvisor.context.models import ContextField, SessionContext


class SessionCreate(BaseModel):
    """Schema for starting a session."""

    user_id: str = Field(..., min_length=1, max_length=128)


class SessionResponse(BaseModel):
    """Read-only projection of a session."""

    session_id: str
    global_id: str
    user_id: str
    status: str
    close_reason: str | None = None
    phase: str
    language: str
    business_type: str | None = None
    location: str | None = None
    location_provenance: str
    landmarks: list[str] = Field(default_factory=list)
    environmental_cues: list[str] = Field(default_factory=list)
    operating_conditions: str | None = None
    preferences: dict[str, str] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    turn_count: int = 0
    version: int = 0
    created_at: datetime
    last_updated: datetime

    @classmethod
    def from_context(
        cls,
        context: SessionContext,
        missing_fields: list[ContextField],
    ) -> "SessionResponse":
        return cls(
            session_id=context.session_id,
            global_id=context.global_id,
            user_id=context.user_id,
            status=context.status.value,
            close_reason=context.close_reason.value if context.close_reason else None,
            phase=context.dialogue.phase.value,
            language=context.language,
            business_type=context.field_value(ContextField.BUSINESS_TYPE),
            location=context.location.resolved,
            location_provenance=context.location.provenance.value,
            landmarks=list(context.location.landmarks),
            environmental_cues=list(context.location.environmental_cues),
            operating_conditions=context.field_value(ContextField.OPERATING_CONDITIONS),
            preferences={k: v.value for k, v in context.preferences.items() if v.value},
            missing_fields=[f.value for f in missing_fields],
            turn_count=context.dialogue.turn_count,
            version=context.version,
            created_at=context.created_at,
            last_updated=context.last_updated,
        )


class UtteranceCreate(BaseModel):
    """One user turn: typed text or a base64-encoded recording."""

    text: str | None = Field(default=None, max_length=4000)
    audio_base64: str | None = Field(default=None, description="Base64-encoded audio bytes")

    @model_validator(mode="after")
    def exactly_one_input(self) -> "UtteranceCreate":
        if (self.text is None) == (self.audio_base64 is None):
            raise ValueError("Provide exactly one of text or audio_base64")
        return self

    @field_validator("audio_base64")
    @classmethod
    def valid_base64(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("audio_base64 is not valid base64") from exc
        return v

    def audio_bytes(self) -> bytes | None:
        return base64.b64decode(self.audio_base64) if self.audio_base64 is not None else None


class NoticeResponse(BaseModel):
    kind: str
    message: str
    options: list[str]
    item_ids: list[str] = Field(default_factory=list)


class DecisionResponse(BaseModel):
    """Reply to one turn."""

    kind: str
    text: str
    speech_text: str
    speech_audio_base64: str | None = None
    session_id: str
    phase: str
    field: str | None = None
    subdetail: str | None = None
    reason: str | None = None
    language: str
    rotated_from: str | None = None
    guidance: dict[str, Any] | None = None
    notices: list[NoticeResponse] = Field(default_factory=list)


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class FeedbackResponse(BaseModel):
    item_id: str
    notices: list[NoticeResponse] = Field(default_factory=list)


class ConnectivityUpdate(BaseModel):
    online: bool


class SyncErrorResponse(BaseModel):
    item_ids: list[str]
    error: str
    at: datetime


class SyncStatusResponse(BaseModel):
    is_online: bool
    is_syncing: bool
    pending_items: int
    dead_letter_items: int
    last_sync: datetime | None = None
    state: str
    notices: list[SyncErrorResponse] = Field(default_factory=list)


class DeadLetterResponse(BaseModel):
    id: str
    type: str
    session_id: str
    retry_count: int
    last_error: str | None = None
    timestamp: datetime


class RedriveRequest(BaseModel):
    """Item ids to retry; omit to retry every dead-lettered item."""

    item_ids: list[str] | None = None


class RedriveResponse(BaseModel):
    redriven: int
