"""
cliniq/stt/providers/browser.py
================================
Browser Web Speech Adapter — ClinIQ

Responsibility:
    - Drive the client's native Web Speech recognizer over the consultation
      socket: send start / stop / abort commands, receive its results
    - Relay recognizer results, errors and end events into the adapter
      contract (BrowserSpeechBridge)

The recognizer runs in the browser and captures the microphone itself. The
adapter still claims the server-side AudioStream so no other adapter can
capture while it is active. It is free, but has no diarization and no
automatic language detection.

This module does NOT:
    - Touch the WebSocket directly (the bridge's ``send`` callable does)
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from cliniq.audio.capture import AudioStream
from cliniq.errors import CaptureUnavailable, MalformedBackendResponse, classify_browser_error
from cliniq.stt.language_detector import normalize_language
from cliniq.stt.providers.base import ProviderAdapter
from cliniq.stt.types import DEFAULT_CONFIDENCE, RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.browser")

CommandSender = Callable[[dict], Awaitable[None]]

# Extra time past the recognizer's own stop wait before the session aborts
BROWSER_STOP_GRACE: float = 1.0


class BrowserSpeechBridge:
    """
    Link between the consultation socket and a BrowserSpeechAdapter.

    The transport constructs the bridge with a coroutine that sends a JSON
    command to the client, and forwards recognizer events with
    ``deliver_result``, ``deliver_error`` and ``deliver_end``. Events that
    arrive while no adapter is attached are dropped.
    """

    def __init__(self, send: CommandSender, available: bool = False):
        self._send = send
        self.available = available
        self._adapter: Optional["BrowserSpeechAdapter"] = None

    @property
    def attached(self) -> bool:
        return self._adapter is not None

    def attach(self, adapter: "BrowserSpeechAdapter") -> None:
        self._adapter = adapter

    def detach(self, adapter: "BrowserSpeechAdapter") -> None:
        if self._adapter is adapter:
            self._adapter = None

    async def send_command(self, action: str, language: Optional[str] = None) -> None:
        message: dict[str, Any] = {"type": "recognizer", "action": action}
        if language:
            message["language"] = language
        await self._send(message)

    async def deliver_result(self, payload: dict) -> None:
        if self._adapter is not None:
            self._adapter.handle_result(payload)

    async def deliver_error(self, name: str) -> None:
        if self._adapter is not None:
            self._adapter.handle_error(name)

    async def deliver_end(self) -> None:
        if self._adapter is not None:
            await self._adapter.handle_end()


class BrowserSpeechAdapter(ProviderAdapter):

    provider_id = "browser"

    def __init__(self, config, audio_source, language, bridge: Optional[BrowserSpeechBridge] = None):
        super().__init__(config, audio_source, language)
        self.bridge = bridge
        self._ended = asyncio.Event()
        self._closing = False

    def is_supported(self) -> bool:
        return (
            self.bridge is not None
            and self.bridge.available
            and self.audio_source.is_supported()
        )

    @property
    def stop_deadline(self) -> float:
        return self.config.stop_timeout + BROWSER_STOP_GRACE

    async def _open(self, stream: AudioStream) -> None:
        if self.bridge is None or not self.bridge.available:
            raise CaptureUnavailable("Browser speech recognition is not supported by this client.", self.provider_id)
        self._closing = False
        self._ended = asyncio.Event()
        self.bridge.attach(self)
        await self.bridge.send_command("start", self.language)

    async def _close(self) -> None:
        self._closing = True
        if self.bridge is None:
            return
        try:
            await self.bridge.send_command("stop")
            # The recognizer flushes its last final result before "end"
            await asyncio.wait_for(self._ended.wait(), self.config.stop_timeout)
        except asyncio.TimeoutError:
            logger.debug("Browser recognizer did not confirm stop in %.1fs", self.config.stop_timeout)
        finally:
            self.bridge.detach(self)

    async def _abort(self) -> None:
        self._closing = True
        if self.bridge is None:
            return
        self.bridge.detach(self)
        try:
            await self.bridge.send_command("abort")
        except Exception as exc:
            logger.debug("Browser abort command failed: %s", exc)

    # ------------------------------------------------------------------
    # Events relayed by the bridge
    # ------------------------------------------------------------------

    def handle_result(self, payload: dict) -> None:
        try:
            text = str(payload.get("transcript") or "").strip()
            is_final = bool(payload.get("is_final", payload.get("isFinal", False)))
            confidence = float(payload.get("confidence") or DEFAULT_CONFIDENCE)
        except (AttributeError, TypeError, ValueError) as exc:
            self._emit_error(MalformedBackendResponse(f"Bad recognizer result: {exc}", self.provider_id))
            return

        if not text:
            return

        language = payload.get("language")
        self._emit_result(
            RecognitionResult(
                transcript=text,
                is_final=is_final,
                confidence=confidence,
                language=normalize_language(language, default=self.language) if language else self.language,
                provider=self.provider_id,
            )
        )

    def handle_error(self, name: str) -> None:
        self._emit_error(classify_browser_error(str(name), self.provider_id))

    async def handle_end(self) -> None:
        self._ended.set()
        if not self._closing:
            await self._end_spontaneously()
