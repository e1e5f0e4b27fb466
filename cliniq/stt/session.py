"""
cliniq/stt/session.py
======================
Recognition Session Manager — ClinIQ

Responsibility:
    - Own the single active provider adapter of a consultation
    - Turn final recognition results into TranscriptEntry values (speaker
      attribution, language tagging) and pass interim text through
    - Restart the adapter after a spontaneous end or a transient error,
      with backoff; escalate after too many consecutive failures
    - Re-run provider selection when the spoken language changes and swap
      or restart the adapter accordingly
    - Guarantee that at most one adapter captures audio at any instant

Lifecycle: idle → starting → active → stopping → idle, with error reachable
from starting and active. start / stop / restart / swap are serialized by
one asyncio.Lock; adapter callbacks never await teardown inline, they
schedule it.

Consumer callbacks (on_entry, on_interim, on_error, on_language, on_status)
are plain functions called on the event loop. They must not block.

This module does NOT:
    - Know any backend protocol (handled by cliniq.stt.providers)
    - Persist or summarize transcripts
"""

import asyncio
import logging
from typing import Callable, Optional

from cliniq.audio.capture import AudioSource
from cliniq.config import SessionConfig
from cliniq.errors import (
    AlreadyRecording,
    CaptureUnavailable,
    MalformedBackendResponse,
    NoSpeechDetected,
    PermissionDenied,
    ProviderExhausted,
    TranscriptionError,
    TransientProviderError,
    classify_provider_exception,
)
from cliniq.stt.language_detector import (
    DetectionBuffer,
    base_language,
    detect_language,
    normalize_language,
    same_language,
)
from cliniq.stt.providers.base import ProviderAdapter
from cliniq.stt.providers.browser import BrowserSpeechBridge
from cliniq.stt.registry import ProviderDescriptor, create_adapter
from cliniq.stt.role_classifier import SpeakerAttributor
from cliniq.stt.selector import ProviderSelector
from cliniq.stt.types import (
    ConnectionStatus,
    RecognitionResult,
    SessionPhase,
    SessionState,
    Speaker,
    TranscriptEntry,
)

logger = logging.getLogger("cliniq.stt.session")

AdapterFactory = Callable[..., ProviderAdapter]

# Capture failures end the session immediately; no other provider can help
_CAPTURE_ERRORS = (PermissionDenied, CaptureUnavailable)


class RecognitionSession:
    """
    One long-lived recognition session across restarts and provider swaps.

    Args:
        config:          Frozen session configuration.
        audio_source:    Microphone source adapters capture from.
        selector:        Provider selector; built from ``config`` if omitted.
        adapter_factory: ``factory(provider_id, config, audio_source, language,
                         browser_bridge=...)``; defaults to the registry's.
        browser_bridge:  Client relay for the browser recognizer, if any.
        on_entry:        Receives every TranscriptEntry.
        on_interim:      Receives interim transcript text.
        on_error:        Receives fatal, user-visible TranscriptionErrors.
        on_language:     Receives the new short language code on a switch.
        on_status:       Receives SessionState.to_dict() on every state change.
    """

    def __init__(
        self,
        config: SessionConfig,
        audio_source: AudioSource,
        selector: Optional[ProviderSelector] = None,
        adapter_factory: AdapterFactory = create_adapter,
        browser_bridge: Optional[BrowserSpeechBridge] = None,
        on_entry: Optional[Callable[[TranscriptEntry], None]] = None,
        on_interim: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[TranscriptionError], None]] = None,
        on_language: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[dict], None]] = None,
    ):
        self.config = config
        self.audio_source = audio_source
        self.selector = selector or ProviderSelector(config)
        self.adapter_factory = adapter_factory
        self.browser_bridge = browser_bridge

        self.on_entry = on_entry
        self.on_interim = on_interim
        self.on_error = on_error
        self.on_language = on_language
        self.on_status = on_status

        self.state = SessionState(current_language=normalize_language(config.language))

        self._lock = asyncio.Lock()
        self._adapter: Optional[ProviderAdapter] = None
        self._descriptor: Optional[ProviderDescriptor] = None
        self._draining: set[ProviderAdapter] = set()
        self._restart_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._manually_stopped = True
        self._consecutive_errors = 0

        self._buffer = DetectionBuffer()
        self._attributor = SpeakerAttributor()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def adapter(self) -> Optional[ProviderAdapter]:
        return self._adapter

    @property
    def is_active(self) -> bool:
        return self.state.phase == SessionPhase.ACTIVE

    async def start(self, language: Optional[str] = None) -> None:
        """
        Select a provider and start recognition.

        Args:
            language: Requested locale; defaults to the current language.

        Raises:
            AlreadyRecording:   The session is not idle.
            ProviderExhausted:  No provider could be started.
            PermissionDenied:   Microphone access refused.
            CaptureUnavailable: No capture device.
        """
        async with self._lock:
            if self.state.phase not in (SessionPhase.IDLE, SessionPhase.ERROR):
                raise AlreadyRecording(f"Session is already {self.state.phase.value}")

            self._manually_stopped = False
            self._consecutive_errors = 0
            if language:
                self.state.current_language = normalize_language(language)
            self._buffer.clear()
            self._attributor.reset()
            self.state.current_speaker = Speaker.DOCTOR

            self._set_state(SessionPhase.STARTING, ConnectionStatus.CONNECTING)
            try:
                await self._launch(self.state.current_language)
            except TranscriptionError as exc:
                self._manually_stopped = True
                self._set_state(SessionPhase.ERROR, ConnectionStatus.ERROR, recording=False)
                self._notify(self.on_error, exc)
                raise

            self._set_state(SessionPhase.ACTIVE, ConnectionStatus.CONNECTED, recording=True)

    async def stop(self) -> None:
        """Stop recognition and release audio. Idempotent; safe before start."""
        self._manually_stopped = True
        self._cancel_pending()

        async with self._lock:
            if self.state.phase == SessionPhase.IDLE and self._adapter is None:
                return

            self._set_state(SessionPhase.STOPPING, self.state.connection_status)
            adapter = self._adapter
            if adapter is not None:
                await self._retire(adapter)
            self._set_state(SessionPhase.IDLE, ConnectionStatus.DISCONNECTED, recording=False)
            logger.info(
                "Session stopped: %d entries, %d restarts",
                self.state.entry_count, self.state.restart_count,
            )

    async def aclose(self) -> None:
        """Unmount path. Equivalent to stop()."""
        await self.stop()

    async def __aenter__(self) -> "RecognitionSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Adapter lifecycle (caller holds the lock)
    # ------------------------------------------------------------------

    async def _launch(self, language: str) -> None:
        """Start the best provider that can be started for ``language``."""
        ranked = self.selector.rank(language)
        if not ranked:
            # select() raises ProviderExhausted with the user-facing message
            self.selector.select(language)

        last_error: Optional[TranscriptionError] = None
        for descriptor, score in ranked:
            adapter = self.adapter_factory(
                descriptor.provider_id,
                self.config,
                self.audio_source,
                language,
                browser_bridge=self.browser_bridge,
            )
            if not adapter.is_supported():
                logger.info("Skipping %s: not supported by this client", descriptor.provider_id.value)
                continue

            self._wire(adapter)
            try:
                await adapter.start()
            except _CAPTURE_ERRORS:
                await self._discard(adapter)
                raise
            except TranscriptionError as exc:
                await self._discard(adapter)
                logger.warning(
                    "Provider %s failed to start (%s), trying next", descriptor.provider_id.value, exc,
                )
                last_error = exc
                continue
            except BaseException:
                await self._discard(adapter)
                raise

            self._adapter = adapter
            self._descriptor = descriptor
            self.state.active_provider = descriptor.provider_id.value
            self.state.current_language = language
            logger.info(
                "Recognition running on %s (%s, score %.1f)",
                descriptor.provider_id.value, language, score,
            )
            return

        raise ProviderExhausted(
            f"No provider could be started for {language}"
            + (f": {last_error.message}" if last_error else "")
        )

    async def _retire(self, adapter: ProviderAdapter) -> None:
        """Stop ``adapter`` gracefully within its deadline, abort otherwise."""
        if self._adapter is adapter:
            self._adapter = None
            self._descriptor = None
            self.state.active_provider = None

        self._draining.add(adapter)
        try:
            await asyncio.wait_for(adapter.stop(), adapter.stop_deadline)
        except asyncio.TimeoutError:
            logger.warning(
                "%s did not stop within %.1fs, aborting", adapter.provider_id, adapter.stop_deadline,
            )
            await adapter.abort()
        except asyncio.CancelledError:
            await adapter.abort()
            raise
        except Exception as exc:
            logger.warning("%s stop failed (%s), aborting", adapter.provider_id, exc)
            await adapter.abort()
        finally:
            adapter.clear_callbacks()
            self._draining.discard(adapter)

    async def _discard(self, adapter: ProviderAdapter) -> None:
        adapter.clear_callbacks()
        try:
            await adapter.abort()
        except Exception as exc:
            logger.debug("Abort of failed %s adapter raised: %s", adapter.provider_id, exc)

    async def _relaunch(self, language: str, reason: str) -> None:
        """Replace the active adapter (restart or swap). Caller holds the lock."""
        old = self._adapter
        if old is not None:
            await self._retire(old)

        self._set_state(SessionPhase.ACTIVE, ConnectionStatus.CONNECTING)
        try:
            await self._launch(language)
        except _CAPTURE_ERRORS as exc:
            await self._fail_locked(exc)
            return
        except TranscriptionError as exc:
            logger.warning("Relaunch after %s failed: %s", reason, exc)
            self._register_transient(
                exc if isinstance(exc, TransientProviderError)
                else TransientProviderError(exc.message, exc.provider)
            )
            return

        self._set_state(SessionPhase.ACTIVE, ConnectionStatus.CONNECTED, recording=True)

    def _wire(self, adapter: ProviderAdapter) -> None:
        adapter.on_result(lambda result: self._handle_result(adapter, result))
        adapter.on_error(lambda error: self._handle_error(adapter, error))
        adapter.on_end(lambda: self._handle_end(adapter))
        adapter.on_language_detected(lambda language: self._handle_provider_language(adapter, language))
        adapter.on_speaker_detected(lambda speaker: self._handle_provider_speaker(adapter, speaker))

    def _accepts(self, adapter: ProviderAdapter) -> bool:
        return adapter is self._adapter or adapter in self._draining

    # ------------------------------------------------------------------
    # Adapter events
    # ------------------------------------------------------------------

    def _handle_result(self, adapter: ProviderAdapter, result: RecognitionResult) -> None:
        if not self._accepts(adapter):
            logger.debug("Dropping result from retired %s adapter", adapter.provider_id)
            return

        text = (result.transcript or "").strip()
        if not text:
            return

        if not result.is_final:
            self._notify(self.on_interim, text)
            return

        self._consecutive_errors = 0
        language = normalize_language(result.language, default=self.state.current_language)

        if self.config.auto_detect_language:
            self._buffer.push(text)
            detection = detect_language(
                self._buffer.text(),
                self.state.current_language,
                self.config.supported_languages,
            )
            if detection.changed and detection.is_supported:
                language = detection.language
                if adapter is self._adapter:
                    self._schedule(self._switch_language(detection.language))

        speaker = self._attributor.attribute(text, result.speaker)
        self.state.current_speaker = speaker

        entry = TranscriptEntry.create(
            text=text,
            speaker=speaker,
            language=base_language(language),
            confidence=result.confidence,
            provider=result.provider or adapter.provider_id,
        )
        self.state.entry_count += 1
        logger.info("[%s] %s: %s", entry.language, entry.speaker.value, entry.text)
        self._notify(self.on_entry, entry)

    def _handle_error(self, adapter: ProviderAdapter, error: TranscriptionError) -> None:
        if not self._accepts(adapter):
            return

        if isinstance(error, MalformedBackendResponse):
            logger.warning("Dropped utterance from %s: %s", adapter.provider_id, error)
            return

        if adapter in self._draining:
            logger.info("Ignoring %s error from stopping adapter: %s", adapter.provider_id, error)
            return

        if error.fatal:
            logger.error("Fatal %s error: %s", adapter.provider_id, error)
            self._schedule(self._fail(error))
            return

        if not isinstance(error, TransientProviderError):
            error = classify_provider_exception(error, adapter.provider_id)
            if not isinstance(error, TransientProviderError):
                self._schedule(self._fail(error))
                return

        self._register_transient(error)

    def _handle_end(self, adapter: ProviderAdapter) -> None:
        if adapter is not self._adapter:
            return
        if self._manually_stopped or self.state.phase != SessionPhase.ACTIVE:
            return
        logger.info("%s ended on its own, restarting", adapter.provider_id)
        self._schedule_restart("spontaneous end")

    def _handle_provider_language(self, adapter: ProviderAdapter, language: str) -> None:
        if adapter is not self._adapter:
            return
        locale = normalize_language(language, default=self.state.current_language)
        if same_language(locale, self.state.current_language):
            return
        logger.info("%s reported language %s", adapter.provider_id, locale)
        self._schedule(self._switch_language(locale))

    def _handle_provider_speaker(self, adapter: ProviderAdapter, speaker: Speaker) -> None:
        if self._accepts(adapter):
            logger.debug("%s diarized speaker: %s", adapter.provider_id, speaker.value)

    # ------------------------------------------------------------------
    # Restart, language switch, failure
    # ------------------------------------------------------------------

    def _register_transient(self, error: TransientProviderError) -> None:
        if isinstance(error, NoSpeechDetected):
            logger.debug("No speech detected, restarting")
            self._schedule_restart("no speech")
            return

        self._consecutive_errors += 1
        if self._consecutive_errors > self.config.max_restart_attempts:
            escalated = TransientProviderError(
                f"Speech recognition failed {self._consecutive_errors} times in a row: {error.message}",
                error.provider,
            )
            escalated.fatal = True
            logger.error("Giving up after %d consecutive errors", self._consecutive_errors)
            self._schedule(self._fail(escalated))
            return

        logger.warning(
            "Transient error (%d/%d): %s",
            self._consecutive_errors, self.config.max_restart_attempts, error,
        )
        self._schedule_restart("transient error")

    def _schedule_restart(self, reason: str) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = self._schedule(self._restart_after(self.config.restart_backoff, reason))

    async def _restart_after(self, delay: float, reason: str) -> None:
        await asyncio.sleep(delay)
        # Past the backoff: a later failure schedules its own restart
        if self._restart_task is asyncio.current_task():
            self._restart_task = None
        async with self._lock:
            if self._manually_stopped or self.state.phase != SessionPhase.ACTIVE:
                return
            self.state.restart_count += 1
            logger.info("Restarting recognition (%s, restart #%d)", reason, self.state.restart_count)
            await self._relaunch(self.state.current_language, reason)

    async def _switch_language(self, locale: str) -> None:
        async with self._lock:
            if self._manually_stopped or self.state.phase != SessionPhase.ACTIVE:
                return
            if same_language(locale, self.state.current_language):
                return

            previous = self.state.current_language
            self.state.current_language = locale
            # Fragments in the old language must not pin detection to it
            self._buffer.clear()
            logger.info("Language switch %s → %s", previous, locale)
            self._notify(self.on_language, base_language(locale))

            try:
                best = self.selector.select(locale)
            except ProviderExhausted:
                logger.warning("No provider for %s, keeping current adapter", locale)
                self._notify_status()
                return

            current = self._descriptor
            if current is None or best.provider_id != current.provider_id:
                logger.info(
                    "Swapping provider %s → %s for %s",
                    current.provider_id.value if current else None, best.provider_id.value, locale,
                )
                await self._relaunch(locale, "provider swap")
            elif not current.auto_detection:
                await self._relaunch(locale, "language switch")
            else:
                if self._adapter is not None:
                    self._adapter.language = locale
                self._notify_status()

    async def _fail(self, error: TranscriptionError) -> None:
        async with self._lock:
            await self._fail_locked(error)

    async def _fail_locked(self, error: TranscriptionError) -> None:
        if self._manually_stopped:
            return
        self._manually_stopped = True
        if self._restart_task is not None and self._restart_task is not asyncio.current_task():
            self._restart_task.cancel()
        self._restart_task = None

        adapter = self._adapter
        if adapter is not None:
            await self._retire(adapter)

        self._set_state(SessionPhase.ERROR, ConnectionStatus.ERROR, recording=False)
        self._notify(self.on_error, error)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session background task failed: %s", exc, exc_info=exc)

    def _cancel_pending(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
        self._restart_task = None

    def _set_state(
        self,
        phase: SessionPhase,
        status: ConnectionStatus,
        recording: Optional[bool] = None,
    ) -> None:
        self.state.phase = phase
        self.state.connection_status = status
        if recording is not None:
            self.state.is_recording = recording
        self._notify_status()

    def _notify_status(self) -> None:
        self._notify(self.on_status, self.state.to_dict())

    def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Session consumer callback failed")
