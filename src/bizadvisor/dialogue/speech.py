"""
Speech collaborator interfaces (speech-to-text and text-to-speech).

The engines themselves live outside this package; the dialogue service only
depends on these protocols.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Transcription:
    """STT result."""

    text: str
    confidence: float
    language: str = "en"


@dataclass(frozen=True)
class SpeechOptions:
    language: str = "en"
    voice: str | None = None
    rate: float = 1.0
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SpeechToText(Protocol):
    async def transcribe(self, audio: bytes) -> Transcription:
        """Transcribe one recording.

        Raises:
            SpeechUnavailableError: If the engine cannot be reached.
        """
        ...


@runtime_checkable
class TextToSpeech(Protocol):
    async def synthesize(self, text: str, options: SpeechOptions) -> bytes:
        ...
