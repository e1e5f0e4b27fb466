"""
cliniq/stt/types.py
====================
Recognition Data Model — ClinIQ

Responsibility:
    - TranscriptEntry: the immutable unit emitted to downstream consumers
    - RecognitionResult: what an adapter hands to the session
    - SessionState and its enums: the session's observable state

This module does NOT:
    - Create entries (handled by cliniq.stt.session)
    - Attribute speakers or detect languages
"""

import itertools
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Speaker(str, Enum):
    """Consultation role an utterance is attributed to."""
    DOCTOR = "doctor"
    PATIENT = "patient"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"


DEFAULT_CONFIDENCE: float = 0.85

_sequence = itertools.count(1)


@dataclass(frozen=True)
class RecognitionResult:
    """
    One recognition event from an adapter.

    ``speaker`` is only set when the backend diarized the utterance and the
    adapter mapped the label to a role; ``speaker_label`` keeps the raw
    diarization label for debugging.
    """
    transcript: str
    is_final: bool
    confidence: float = DEFAULT_CONFIDENCE
    language: Optional[str] = None
    speaker: Optional[Speaker] = None
    speaker_label: Optional[str] = None
    provider: Optional[str] = None


@dataclass(frozen=True)
class TranscriptEntry:
    """An attributed, finalized utterance. Never mutated after creation."""
    id: str
    speaker: Speaker
    text: str
    timestamp: str
    language: str
    confidence: int
    voice_signature: str

    @classmethod
    def create(
        cls,
        text: str,
        speaker: Speaker,
        language: str,
        confidence: Optional[float],
        provider: str,
        now: Optional[float] = None,
    ) -> "TranscriptEntry":
        """
        Build an entry from a final result.

        Args:
            text:       Final transcript text (stripped, non-empty).
            speaker:    Attributed role.
            language:   Short language code, e.g. "hi".
            confidence: Provider confidence in [0, 1]; None uses 0.85.
            provider:   Provider id, used in the id and voice signature.
            now:        Epoch seconds, injectable for tests.

        Raises:
            ValueError: If ``text`` is empty after stripping.
        """
        text = text.strip()
        if not text:
            raise ValueError("TranscriptEntry text must be non-empty")

        now = time.time() if now is None else now
        epoch_ms = int(now * 1000)
        if confidence is None:
            confidence = DEFAULT_CONFIDENCE
        score = max(0, min(100, round(float(confidence) * 100)))

        return cls(
            id=f"{provider}-{epoch_ms}-{next(_sequence)}",
            speaker=Speaker(speaker),
            text=text,
            timestamp=datetime.fromtimestamp(now).strftime("%H:%M:%S"),
            language=language,
            confidence=score,
            voice_signature=f"{provider}-{Speaker(speaker).value}-{epoch_ms}",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp,
            "language": self.language,
            "confidence": self.confidence,
            "voiceSignature": self.voice_signature,
        }


@dataclass
class SessionState:
    """Mutable session state. Written only by RecognitionSession."""
    is_recording: bool = False
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    current_language: str = "en-US"
    current_speaker: Speaker = Speaker.DOCTOR
    active_provider: Optional[str] = None
    phase: SessionPhase = SessionPhase.IDLE
    entry_count: int = 0
    restart_count: int = 0

    def to_dict(self) -> dict:
        return {
            "is_recording": self.is_recording,
            "connection_status": self.connection_status.value,
            "language": self.current_language,
            "speaker": self.current_speaker.value,
            "provider": self.active_provider,
            "phase": self.phase.value,
            "entry_count": self.entry_count,
            "restart_count": self.restart_count,
        }
