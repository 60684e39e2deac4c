"""
Voice turn value types
Transient, never persisted.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from app.core.errors import NoSpeechDetected, PersistenceError, VoiceTurnError


class TurnState(str, Enum):
    """State of one voice turn."""

    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class AudioClip:
    """One finalized, contiguous recording."""

    data: bytes
    content_type: str = "audio/webm"

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SynthesizedSpeech:
    audio: bytes
    text: str
    voice_model: str
    content_type: str = "audio/mpeg"

    @property
    def audio_format(self) -> str:
        return self.content_type.split("/")[-1]


@dataclass
class VoiceTurnResult:
    """Outcome of one turn: text and audio together, or the stage that failed."""

    state: TurnState = TurnState.IDLE
    history: List[TurnState] = field(default_factory=list)
    transcript: Optional[str] = None
    response_text: Optional[str] = None
    speech: Optional[SynthesizedSpeech] = None
    error: Optional[VoiceTurnError] = None
    failed_stage: Optional[TurnState] = None
    turn_ids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == TurnState.COMPLETE

    @property
    def no_speech(self) -> bool:
        return isinstance(self.error, NoSpeechDetected)

    @property
    def persisted(self) -> bool:
        return bool(self.turn_ids)

    @property
    def playable(self) -> bool:
        """Audio is available even when persisting failed."""
        return self.speech is not None and (self.ok or isinstance(self.error, PersistenceError))
