"""
cliniq/stt/providers/base.py
=============================
Provider Adapter Contract — ClinIQ

Responsibility:
    - ProviderAdapter: the uniform start / stop / abort contract and the
      single-slot event callbacks every backend adapter exposes
    - BatchProviderAdapter: keeps the audio stream open, rotates the PCM
      buffer every window and transcribes windows one at a time, in order
    - StreamingProviderAdapter: forwards PCM chunks as they arrive and reads
      interim / final results from a background task

Callback slots hold one callback each; registering again replaces the
previous one and ``None`` clears it.

This module does NOT:
    - Choose a provider (handled by cliniq.stt.selector)
    - Restart adapters or create TranscriptEntry values (cliniq.stt.session)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, ClassVar, Optional

from cliniq.audio.capture import AudioSource, AudioStream
from cliniq.audio.encoding import has_speech, pcm16_to_wav, pcm_duration
from cliniq.config import SessionConfig
from cliniq.errors import (
    AlreadyRecording,
    TranscriptionError,
    classify_provider_exception,
)
from cliniq.stt.types import RecognitionResult, Speaker

logger = logging.getLogger("cliniq.stt.providers")

ResultCallback = Callable[[RecognitionResult], None]
ErrorCallback = Callable[[TranscriptionError], None]
EndCallback = Callable[[], None]
LanguageCallback = Callable[[str], None]
SpeakerCallback = Callable[[Speaker], None]


class ProviderAdapter(ABC):
    """
    One speech recognition backend behind the uniform contract.

    Subclasses implement ``_open``, ``_close`` and ``_abort``. The base class
    owns the audio stream: it is acquired before ``_open`` and released after
    ``_close`` / ``_abort`` even when they raise.
    """

    provider_id: ClassVar[str] = ""

    def __init__(self, config: SessionConfig, audio_source: AudioSource, language: str):
        self.config = config
        self.audio_source = audio_source
        self.language = language
        self._stream: Optional[AudioStream] = None
        self._started = False
        self._end_emitted = False

        self._on_result: Optional[ResultCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._on_end: Optional[EndCallback] = None
        self._on_language: Optional[LanguageCallback] = None
        self._on_speaker: Optional[SpeakerCallback] = None

    # ------------------------------------------------------------------
    # Event registration (single slot, last registration wins)
    # ------------------------------------------------------------------

    def on_result(self, callback: Optional[ResultCallback]) -> None:
        self._on_result = callback

    def on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._on_error = callback

    def on_end(self, callback: Optional[EndCallback]) -> None:
        self._on_end = callback

    def on_language_detected(self, callback: Optional[LanguageCallback]) -> None:
        self._on_language = callback

    def on_speaker_detected(self, callback: Optional[SpeakerCallback]) -> None:
        self._on_speaker = callback

    def clear_callbacks(self) -> None:
        self._on_result = None
        self._on_error = None
        self._on_end = None
        self._on_language = None
        self._on_speaker = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_supported(self) -> bool:
        """Side-effect free capability check."""
        return self.audio_source.is_supported()

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def stop_deadline(self) -> float:
        """Seconds a graceful stop may take before the session aborts."""
        return self.config.stop_timeout

    async def start(self) -> None:
        """
        Acquire the audio stream and begin recognition.

        Raises:
            AlreadyRecording:   The adapter is already started.
            PermissionDenied:   Microphone access refused.
            CaptureUnavailable: No capture device.
            TranscriptionError: The backend could not be reached.
        """
        if self._started:
            raise AlreadyRecording(f"{self.provider_id} is already recording", self.provider_id)

        self._stream = await self.audio_source.request_access()
        self._end_emitted = False
        try:
            await self._open(self._stream)
        except Exception as exc:
            await self._release_stream()
            raise classify_provider_exception(exc, self.provider_id) from exc

        self._started = True
        logger.info("%s adapter started (language=%s)", self.provider_id, self.language)

    async def stop(self) -> None:
        """Flush in-flight work, release the stream and emit on_end. No-op when idle."""
        if not self._started:
            return
        self._started = False
        try:
            await self._close()
        finally:
            await self._release_stream()
        logger.info("%s adapter stopped", self.provider_id)
        self._emit_end()

    async def abort(self) -> None:
        """Release everything immediately without flushing or emitting on_end."""
        self._started = False
        try:
            await self._abort()
        finally:
            await self._release_stream()
        logger.warning("%s adapter aborted", self.provider_id)

    @abstractmethod
    async def _open(self, stream: AudioStream) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _abort(self) -> None:
        ...

    async def _end_spontaneously(self) -> None:
        """Backend ended on its own: release capture and report the end."""
        if not self._started:
            return
        self._started = False
        try:
            await self._abort()
        finally:
            await self._release_stream()
        logger.info("%s recognition ended by backend", self.provider_id)
        self._emit_end()

    async def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.on_chunk(None)
            await stream.close()

    # ------------------------------------------------------------------
    # Event emission
    # ------------------------------------------------------------------

    def _emit_result(self, result: RecognitionResult) -> None:
        if self._on_result is not None:
            self._on_result(result)

    def _emit_error(self, error: TranscriptionError) -> None:
        if error.provider is None:
            error.provider = self.provider_id
        if self._on_error is not None:
            self._on_error(error)
        else:
            logger.warning("%s error with no listener: %s", self.provider_id, error)

    def _emit_end(self) -> None:
        if self._end_emitted:
            return
        self._end_emitted = True
        if self._on_end is not None:
            self._on_end()

    def _emit_language(self, language: str) -> None:
        if self._on_language is not None:
            self._on_language(language)

    def _emit_speaker(self, speaker: Speaker) -> None:
        if self._on_speaker is not None:
            self._on_speaker(speaker)


# ---------------------------------------------------------------------------
# Batch flavor
# ---------------------------------------------------------------------------

# Windows shorter than this are not worth a request
MIN_WINDOW_SECONDS: float = 0.3
BATCH_FLUSH_GRACE: float = 10.0
STREAMING_CLOSE_GRACE: float = 1.0


class BatchProviderAdapter(ProviderAdapter):
    """
    Windowed recognition for request / response backends.

    The stream stays open for the whole session. Every ``chunk_duration``
    seconds the buffer is swapped for an empty one and the full window is
    queued; a single worker transcribes queued windows in order so results
    are emitted in speech order. Words straddling a boundary may be split
    across two results.
    """

    def __init__(self, config: SessionConfig, audio_source: AudioSource, language: str):
        super().__init__(config, audio_source, language)
        self._buffer = bytearray()
        self._queue: Optional[asyncio.Queue] = None
        self._ticker: Optional[asyncio.Task] = None
        self._worker: Optional[asyncio.Task] = None
        self.windows_submitted = 0
        self.windows_skipped = 0

    @property
    def stop_deadline(self) -> float:
        # The last window is flushed on stop and needs a full request round trip
        return self.config.stop_timeout + BATCH_FLUSH_GRACE

    @abstractmethod
    async def transcribe_window(self, wav_bytes: bytes) -> list[RecognitionResult]:
        """
        Transcribe one WAV window.

        Returns:
            Final results for the window, in order. May be empty.

        Raises:
            TranscriptionError: classified backend failure.
        """

    async def _open(self, stream: AudioStream) -> None:
        self._buffer = bytearray()
        self._queue = asyncio.Queue()
        stream.on_chunk(self._buffer_chunk)
        self._worker = asyncio.create_task(self._drain_windows())
        self._ticker = asyncio.create_task(self._rotate_windows())

    async def _close(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
        self._rotate()
        if self._queue is not None:
            self._queue.put_nowait(None)
        if self._worker is not None:
            await self._worker
        self._ticker = self._worker = self._queue = None

    async def _abort(self) -> None:
        for task in (self._ticker, self._worker):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._buffer = bytearray()
        self._ticker = self._worker = self._queue = None

    def _buffer_chunk(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)

    def _rotate(self) -> None:
        window, self._buffer = bytes(self._buffer), bytearray()
        if self._queue is not None and window:
            self._queue.put_nowait(window)

    async def _rotate_windows(self) -> None:
        while True:
            await asyncio.sleep(self.config.chunk_duration)
            self._rotate()

    async def _drain_windows(self) -> None:
        queue = self._queue
        while queue is not None:
            window = await queue.get()
            if window is None:
                return
            await self._process_window(window)

    async def _process_window(self, pcm: bytes) -> None:
        sample_rate = self.config.sample_rate
        if pcm_duration(pcm, sample_rate) < MIN_WINDOW_SECONDS or not has_speech(
            pcm, sample_rate, self.config.silence_rms_threshold,
        ):
            self.windows_skipped += 1
            logger.debug("%s skipped silent window (%d bytes)", self.provider_id, len(pcm))
            return

        self.windows_submitted += 1
        wav_bytes = pcm16_to_wav(pcm, sample_rate)
        try:
            results = await self.transcribe_window(wav_bytes)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_provider_exception(exc, self.provider_id)
            logger.warning("%s window failed: %s", self.provider_id, error)
            self._emit_error(error)
            return

        for result in results:
            if result.language:
                self._emit_language(result.language)
            if result.speaker is not None:
                self._emit_speaker(result.speaker)
            self._emit_result(result)


# ---------------------------------------------------------------------------
# Streaming flavor
# ---------------------------------------------------------------------------


class StreamingProviderAdapter(ProviderAdapter):
    """
    Incremental recognition over a persistent connection.

    Subclasses implement ``_connect``, ``_send_audio``, ``_send_close``,
    ``_disconnect`` and ``_read_results``. Audio chunks are queued from the
    stream callback and sent by a writer task; ``_read_results`` runs in a
    reader task and emits results until the backend closes. A backend close
    that was not requested counts as a spontaneous end.
    """

    def __init__(self, config: SessionConfig, audio_source: AudioSource, language: str):
        super().__init__(config, audio_source, language)
        self._outgoing: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def stop_deadline(self) -> float:
        # The drain below may use all of stop_timeout before disconnecting
        return self.config.stop_timeout + STREAMING_CLOSE_GRACE

    @abstractmethod
    async def _connect(self) -> None:
        ...

    @abstractmethod
    async def _send_audio(self, chunk: bytes) -> None:
        ...

    @abstractmethod
    async def _send_close(self) -> None:
        ...

    @abstractmethod
    async def _disconnect(self) -> None:
        ...

    @abstractmethod
    async def _read_results(self) -> None:
        """Read backend messages until the connection closes."""

    async def _open(self, stream: AudioStream) -> None:
        self._closing = False
        await self._connect()
        self._outgoing = asyncio.Queue()
        stream.on_chunk(self._outgoing.put_nowait)
        self._writer = asyncio.create_task(self._write_audio())
        self._reader = asyncio.create_task(self._run_reader())

    async def _close(self) -> None:
        self._closing = True
        if self._outgoing is not None:
            self._outgoing.put_nowait(None)
        if self._writer is not None:
            await self._writer
        try:
            await self._send_close()
        except Exception as exc:
            logger.debug("%s close frame failed: %s", self.provider_id, exc)
        # Drain final results the backend flushes after the close frame
        if self._reader is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._reader), self.config.stop_timeout)
            except asyncio.TimeoutError:
                self._reader.cancel()
        await self._disconnect()
        self._writer = self._reader = self._outgoing = None

    async def _abort(self) -> None:
        self._closing = True
        current = asyncio.current_task()
        for task in (self._writer, self._reader):
            if task is not None and task is not current:
                task.cancel()
        await self._disconnect()
        self._writer = self._reader = self._outgoing = None

    async def _write_audio(self) -> None:
        queue = self._outgoing
        while queue is not None:
            chunk = await queue.get()
            if chunk is None:
                return
            try:
                await self._send_audio(chunk)
            except Exception as exc:
                if not self._closing:
                    self._emit_error(classify_provider_exception(exc, self.provider_id))
                return

    async def _run_reader(self) -> None:
        try:
            await self._read_results()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._closing:
                self._emit_error(classify_provider_exception(exc, self.provider_id))
        # No reader left: the adapter has ended whether or not it failed
        if not self._closing:
            await self._end_spontaneously()
