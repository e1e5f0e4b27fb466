"""
cliniq/audio/capture.py
========================
Audio Capture Contract — ClinIQ

Responsibility:
    - Define the AudioSource / AudioStream contract adapters capture through
    - Provide PushAudioSource: a source whose PCM chunks are pushed in by
      the transport (the consultation WebSocket) and whose permission state
      mirrors what the client reported for its microphone
    - Guarantee that at most one AudioStream is open per source

This module does NOT:
    - Encode or gate audio (handled by cliniq.audio.encoding)
    - Talk to any recognition backend
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from cliniq.errors import AlreadyRecording, CaptureUnavailable, PermissionDenied

logger = logging.getLogger("cliniq.audio.capture")

ChunkCallback = Callable[[bytes], None]


class MicrophonePermission(str, Enum):
    """Microphone permission state reported by the client."""
    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class AudioStream(ABC):
    """An open microphone capture. Exclusive: one per source at a time."""

    sample_rate: int = 16000

    @abstractmethod
    def on_chunk(self, callback: Optional[ChunkCallback]) -> None:
        """Register the single chunk consumer (last registration wins)."""

    @abstractmethod
    async def close(self) -> None:
        """Release the capture. Idempotent."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


class AudioSource(ABC):
    """Something that can hand out an AudioStream."""

    @abstractmethod
    def is_supported(self) -> bool:
        """Side-effect free probe for capture support."""

    @abstractmethod
    async def request_access(self) -> AudioStream:
        """
        Open the capture.

        Raises:
            PermissionDenied:   The user refused microphone access.
            CaptureUnavailable: No input device, or capture unsupported.
            AlreadyRecording:   A stream from this source is still open.
        """


# ---------------------------------------------------------------------------
# Push-fed implementation
# ---------------------------------------------------------------------------


class PushStream(AudioStream):

    def __init__(self, source: "PushAudioSource", sample_rate: int):
        self._source = source
        self.sample_rate = sample_rate
        self._callback: Optional[ChunkCallback] = None
        self._closed = False
        self.bytes_received = 0

    def on_chunk(self, callback: Optional[ChunkCallback]) -> None:
        self._callback = callback

    def deliver(self, chunk: bytes) -> None:
        if self._closed or not chunk:
            return
        self.bytes_received += len(chunk)
        if self._callback is not None:
            self._callback(chunk)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._callback = None
        self._source._release(self)
        logger.debug("Audio stream closed after %d bytes", self.bytes_received)

    @property
    def closed(self) -> bool:
        return self._closed


class PushAudioSource(AudioSource):
    """
    AudioSource fed by a transport.

    The transport calls ``set_permission()`` with the client's microphone
    state and ``feed()`` with every PCM16 chunk it receives. Chunks fed
    while no stream is open are dropped.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        permission: MicrophonePermission = MicrophonePermission.GRANTED,
    ):
        self.sample_rate = sample_rate
        self.permission = MicrophonePermission(permission)
        self._stream: Optional[PushStream] = None
        self.dropped_bytes = 0

    def set_permission(self, permission: MicrophonePermission | str) -> None:
        self.permission = MicrophonePermission(permission)

    def is_supported(self) -> bool:
        return self.permission != MicrophonePermission.UNAVAILABLE

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    async def request_access(self) -> AudioStream:
        if self.permission == MicrophonePermission.UNAVAILABLE:
            raise CaptureUnavailable("No microphone available on the client.")
        if self.permission == MicrophonePermission.DENIED:
            raise PermissionDenied("Microphone permission denied. Allow access and start again.")
        if self._stream is not None:
            raise AlreadyRecording("Audio capture is already in use.")

        self._stream = PushStream(self, self.sample_rate)
        logger.debug("Audio stream opened (%d Hz)", self.sample_rate)
        return self._stream

    def feed(self, chunk: bytes) -> None:
        if self._stream is None:
            self.dropped_bytes += len(chunk)
            return
        self._stream.deliver(chunk)

    def _release(self, stream: PushStream) -> None:
        if self._stream is stream:
            self._stream = None
