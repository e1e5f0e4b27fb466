"""
cliniq/stt/providers/google_streaming.py
=========================================
Google Cloud Speech Streaming Adapter — ClinIQ

Responsibility:
    - Stream PCM16 audio to a Google Cloud Speech streaming proxy over a
      WebSocket (aiohttp)
    - Request speaker diarization (two speakers) and alternative Indian
      language codes
    - Emit interim and final results; map speakerTag 1 / 2 to roles

Proxy protocol:
    client → proxy   {"type": "config", "config": {...}}, binary PCM16, {"type": "stop"}
    proxy  → client  {"type": "transcript", "transcript", "isFinal", "confidence",
                      "languageCode", "speakerTag"}
                     {"type": "error", "message"}
                     {"type": "end"}

This module does NOT:
    - Talk to Google directly (credentials live in the proxy)
"""

import json
import logging

import aiohttp

from cliniq.errors import MalformedBackendResponse, TransientProviderError
from cliniq.stt.language_detector import normalize_language
from cliniq.stt.providers.base import StreamingProviderAdapter
from cliniq.stt.role_classifier import map_diarized_speaker
from cliniq.stt.types import RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.google")

ALTERNATIVE_LANGUAGE_CODES: list[str] = [
    "hi-IN", "bn-IN", "ta-IN", "te-IN", "mr-IN", "gu-IN", "kn-IN", "ml-IN", "pa-IN", "ur-IN",
]
DEFAULT_CONFIDENCE = 0.9
CONNECT_TIMEOUT_SECONDS = 10


def proxy_ws_url(url: str) -> str:
    """http(s) proxy URL → ws(s) URL."""
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


class GoogleStreamingAdapter(StreamingProviderAdapter):

    provider_id = "google"

    def __init__(self, config, audio_source, language):
        super().__init__(config, audio_source, language)
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    def build_config_message(self) -> dict:
        alternatives = [code for code in ALTERNATIVE_LANGUAGE_CODES if code != self.language]
        return {
            "type": "config",
            "config": {
                "languageCode": self.language,
                "alternativeLanguageCodes": alternatives if self.config.auto_detect_language else [],
                "diarization": {
                    "enableSpeakerDiarization": True,
                    "minSpeakerCount": 2,
                    "maxSpeakerCount": 2,
                },
                "sampleRateHertz": self.config.sample_rate,
            },
        }

    async def _connect(self) -> None:
        url = proxy_ws_url(self.config.credential("google"))
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT_SECONDS),
        )
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=15)
            await self._ws.send_json(self.build_config_message())
        except Exception:
            await self._disconnect()
            raise
        logger.info("Connected to Google streaming proxy (%s)", self.language)

    async def _send_audio(self, chunk: bytes) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.send_bytes(chunk)

    async def _send_close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.send_json({"type": "stop"})

    async def _disconnect(self) -> None:
        ws, self._ws = self._ws, None
        session, self._session = self._session, None
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None:
            await session.close()

    async def _read_results(self) -> None:
        ws = self._ws
        if ws is None:
            return
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                if not self.handle_message(msg.data):
                    return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransientProviderError(
                    f"Google proxy socket error: {ws.exception()}", self.provider_id,
                )

    def handle_message(self, raw: str) -> bool:
        """
        Process one proxy message.

        Returns:
            False when the proxy announced the end of the stream.
        """
        try:
            msg = json.loads(raw)
            msg_type = msg["type"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            self._emit_error(MalformedBackendResponse(f"Google proxy sent {raw[:120]!r}: {exc}", self.provider_id))
            return True

        if msg_type == "end":
            return False

        if msg_type == "error":
            self._emit_error(
                TransientProviderError(msg.get("message") or "Streaming error", self.provider_id),
            )
            return True

        if msg_type != "transcript":
            logger.debug("Ignoring Google proxy message type %r", msg_type)
            return True

        try:
            text = str(msg.get("transcript") or "").strip()
            is_final = bool(msg.get("isFinal"))
            confidence = float(msg.get("confidence") or DEFAULT_CONFIDENCE)
            language = normalize_language(msg.get("languageCode"), default=self.language)
            tag = msg.get("speakerTag")
        except (AttributeError, TypeError, ValueError) as exc:
            self._emit_error(MalformedBackendResponse(f"Bad Google transcript {raw[:120]!r}: {exc}", self.provider_id))
            return True

        if not text:
            return True

        speaker = None
        if tag:
            speaker = map_diarized_speaker(str(tag), text, first_label="1")

        if is_final:
            self._emit_language(language)
            if speaker is not None:
                self._emit_speaker(speaker)

        self._emit_result(
            RecognitionResult(
                transcript=text,
                is_final=is_final,
                confidence=confidence,
                language=language,
                speaker=speaker,
                speaker_label=None if tag is None else str(tag),
                provider=self.provider_id,
            )
        )
        return True
