"""Dialogue policy and the per-turn orchestration service."""

from bizadvisor.dialogue.models import (
    ClarifyReason,
    DecisionKind,
    DialogueDecision,
    NoticeKind,
    PolicyDecision,
    TurnInput,
    UserNotice,
)
from bizadvisor.dialogue.policy import DialoguePolicy
from bizadvisor.dialogue.service import DialogueService
from bizadvisor.dialogue.speech import SpeechOptions, SpeechToText, TextToSpeech, Transcription

__all__ = [
    "ClarifyReason",
    "DecisionKind",
    "DialogueDecision",
    "DialoguePolicy",
    "DialogueService",
    "NoticeKind",
    "PolicyDecision",
    "SpeechOptions",
    "SpeechToText",
    "TextToSpeech",
    "Transcription",
    "TurnInput",
    "UserNotice",
]
