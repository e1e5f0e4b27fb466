"""
cliniq/api/consultation.py
===========================
Consultation WebSocket Endpoint — ClinIQ

Responsibility:
    - Expose GET /health and GET /api/v1/providers
    - Expose WS /api/v1/consultation: one RecognitionSession per connection
    - Feed binary PCM16 frames into the connection's PushAudioSource
    - Relay browser recognizer events through a BrowserSpeechBridge
    - Push status, interim text, transcript entries, language switches,
      recognizer commands and errors back to the client as JSON

Client → server messages:
    {"type": "start", "language": "hi-IN", "microphone": "granted", "web_speech": true}
    <binary PCM16 frames>
    {"type": "stop"}
    {"type": "speech_result", "transcript": "...", "is_final": true, "confidence": 0.9}
    {"type": "speech_error", "error": "no-speech"}
    {"type": "speech_end"}

Server → client messages:
    status, interim, transcript, language, recognizer, error

This module does NOT:
    - Summarize transcripts or extract medical entities
    - Persist anything
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from cliniq.audio.capture import MicrophonePermission, PushAudioSource
from cliniq.config import SessionConfig, load_config
from cliniq.errors import AlreadyRecording, TranscriptionError
from cliniq.stt.language_detector import base_language, normalize_language
from cliniq.stt.providers.browser import BrowserSpeechBridge
from cliniq.stt.registry import PROVIDER_REGISTRY, create_adapter
from cliniq.stt.selector import ProviderSelector, score_provider
from cliniq.stt.session import RecognitionSession
from cliniq.stt.types import SessionPhase, TranscriptEntry

logger = logging.getLogger("cliniq.api")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ClinIQ",
    description="Real-time medical consultation transcription.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.config = None
app.state.adapter_factory = create_adapter


def get_config() -> SessionConfig:
    """Process-wide base configuration, loaded from the environment once."""
    if app.state.config is None:
        app.state.config = load_config()
    return app.state.config


# ---------------------------------------------------------------------------
# HTTP endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/v1/providers")
async def list_providers(language: Optional[str] = None):
    """
    Describe every registered provider for ``language``.

    Browser recognition is reported as unavailable here because it depends
    on the client declaring Web Speech support when it starts a session.
    """
    config = get_config()
    locale = normalize_language(language or config.language)
    selector = ProviderSelector(config)
    eligible = {d.provider_id for d in selector.candidates()}

    providers = []
    for descriptor in PROVIDER_REGISTRY:
        entry = descriptor.to_dict()
        entry["available"] = descriptor.provider_id in eligible
        entry["score"] = score_provider(descriptor, locale, config.auto_detect_language)
        providers.append(entry)

    return {"language": locale, "providers": providers}


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


@app.websocket("/api/v1/consultation")
async def consultation(websocket: WebSocket):
    await websocket.accept()
    connection = ConsultationConnection(
        websocket,
        get_config(),
        adapter_factory=app.state.adapter_factory,
    )
    await connection.run()


class ConsultationConnection:
    """Drives one RecognitionSession for one client socket."""

    def __init__(self, websocket: WebSocket, config: SessionConfig, adapter_factory=create_adapter):
        self.websocket = websocket
        self.config = config
        self.adapter_factory = adapter_factory
        self.source = PushAudioSource(sample_rate=config.sample_rate)
        self.bridge = BrowserSpeechBridge(self._enqueue_command)
        self.session: Optional[RecognitionSession] = None
        self._start_task: Optional[asyncio.Task] = None

        self._outgoing: asyncio.Queue = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        sender = asyncio.create_task(self._send_loop())
        logger.info("Consultation connection opened")
        try:
            while True:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("bytes") is not None:
                    self.source.feed(message["bytes"])
                elif message.get("text") is not None:
                    await self._dispatch(message["text"])
        except WebSocketDisconnect:
            pass
        finally:
            logger.info("Consultation connection closing")
            if self.session is not None:
                await self.session.aclose()
            for task in list(self._tasks):
                task.cancel()
            self._outgoing.put_nowait(None)
            await sender

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _dispatch(self, raw: str) -> None:
        try:
            message = json.loads(raw)
            msg_type = message["type"]
        except (json.JSONDecodeError, KeyError, TypeError):
            self._send_error("invalid_message", "Messages must be JSON objects with a 'type'.")
            return

        if msg_type == "start":
            self._start(message)
        elif msg_type == "stop":
            if self.session is not None:
                self._spawn(self.session.stop())
        elif msg_type == "speech_result":
            await self.bridge.deliver_result(message)
        elif msg_type == "speech_error":
            await self.bridge.deliver_error(str(message.get("error", "")))
        elif msg_type == "speech_end":
            await self.bridge.deliver_end()
        else:
            self._send_error("invalid_message", f"Unknown message type: {msg_type}")

    def _start(self, message: dict) -> None:
        starting = self._start_task is not None and not self._start_task.done()
        if starting or (
            self.session is not None
            and self.session.state.phase not in (SessionPhase.IDLE, SessionPhase.ERROR)
        ):
            self._send_error(AlreadyRecording.code, "A recording is already in progress.")
            return

        try:
            permission = MicrophonePermission(message.get("microphone", "granted"))
        except ValueError:
            self._send_error("invalid_message", f"Unknown microphone state: {message.get('microphone')}")
            return

        web_speech = bool(message.get("web_speech", False))
        language = normalize_language(message.get("language") or self.config.language)

        self.source.set_permission(permission)
        self.bridge.available = web_speech
        config = self.config.with_browser_speech(web_speech)

        self.session = RecognitionSession(
            config,
            self.source,
            adapter_factory=self.adapter_factory,
            browser_bridge=self.bridge,
            on_entry=self._on_entry,
            on_interim=self._on_interim,
            on_error=self._on_error,
            on_language=self._on_language,
            on_status=self._on_status,
        )
        self._start_task = self._spawn(self._start_session(self.session, language))

    async def _start_session(self, session: RecognitionSession, language: str) -> None:
        try:
            await session.start(language)
        except TranscriptionError as exc:
            # Already reported through on_error
            logger.warning("Session start failed: %s", exc)

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _on_entry(self, entry: TranscriptEntry) -> None:
        self._outgoing.put_nowait({"type": "transcript", "entry": entry.to_dict()})

    def _on_interim(self, text: str) -> None:
        self._outgoing.put_nowait({"type": "interim", "text": text})

    def _on_error(self, error: TranscriptionError) -> None:
        self._outgoing.put_nowait({"type": "error", **error.to_dict()})

    def _on_language(self, language: str) -> None:
        self._outgoing.put_nowait({"type": "language", "language": base_language(language)})

    def _on_status(self, state: dict) -> None:
        self._outgoing.put_nowait({"type": "status", **state})

    async def _enqueue_command(self, command: dict) -> None:
        self._outgoing.put_nowait(command)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send_error(self, code: str, message: str) -> None:
        self._outgoing.put_nowait({"type": "error", "code": code, "message": message, "provider": None})

    async def _send_loop(self) -> None:
        while True:
            message = await self._outgoing.get()
            if message is None:
                return
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("Dropping outbound %s message: %s", message.get("type"), exc)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
