"""
Domain models for dialogue orchestration.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from dataclasses import field as dc_field
from enum import Enum
from typing import Any

from bizadvisor.advisor.models import GuidanceResponse
from bizadvisor.context.merger import MergeReport
from bizadvisor.context.models import ContextField, DialoguePhase, DialogueState
from bizadvisor.extraction.models import ExtractedContext


class DecisionKind(str, Enum):
    """What the policy wants to happen next."""

    ASK = "ask"
    GUIDE = "guide"
    CLARIFY = "clarify"


class ClarifyReason(str, Enum):
    UNUSABLE_INPUT = "unusable_input"
    LOW_STT_CONFIDENCE = "low_stt_confidence"
    SPEECH_UNAVAILABLE = "speech_unavailable"
    LOW_CONFIDENCE_HINT = "low_confidence_hint"
    ADVISOR_UNAVAILABLE = "advisor_unavailable"


class NoticeKind(str, Enum):
    STORAGE_FULL = "storage_full"
    SYNC_FAILED = "sync_failed"


@dataclass
class TurnInput:
    """Everything the policy may look at for one turn."""

    extracted: ExtractedContext | None = None
    report: MergeReport | None = None
    usable: bool = True
    unusable_reason: ClarifyReason | None = None


@dataclass
class PolicyDecision:
    """Policy output. The caller persists `next_state`."""

    kind: DecisionKind
    next_state: DialogueState
    field: ContextField | None = None
    subdetail: str | None = None
    reason: ClarifyReason | None = None
    hint: str | None = None
    reconfirm: bool = False

    @property
    def phase(self) -> DialoguePhase:
        return self.next_state.phase


@dataclass
class UserNotice:
    """A condition surfaced to the user with its options."""

    kind: NoticeKind
    message: str
    options: list[str] = dc_field(default_factory=lambda: ["retry", "exit"])
    item_ids: list[str] = dc_field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "options": list(self.options),
            "item_ids": list(self.item_ids),
        }


@dataclass
class DialogueDecision:
    """Result of one submitted utterance."""

    kind: DecisionKind
    text: str
    session_id: str
    phase: DialoguePhase
    field: ContextField | None = None
    subdetail: str | None = None
    reason: ClarifyReason | None = None
    guidance: GuidanceResponse | None = None
    language: str = "en"
    speech_text: str = ""
    # Synthesized reply, present only when a TTS engine is configured.
    speech_audio: bytes | None = None
    rotated_from: str | None = None
    notices: list[UserNotice] = dc_field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "text": self.text,
            "session_id": self.session_id,
            "phase": self.phase.value,
            "field": self.field.value if self.field else None,
            "subdetail": self.subdetail,
            "reason": self.reason.value if self.reason else None,
            "guidance": self.guidance.model_dump(mode="json") if self.guidance else None,
            "language": self.language,
            "speech_text": self.speech_text,
            "speech_audio_base64": (
                base64.b64encode(self.speech_audio).decode("ascii") if self.speech_audio else None
            ),
            "rotated_from": self.rotated_from,
            "notices": [n.to_dict() for n in self.notices],
        }
