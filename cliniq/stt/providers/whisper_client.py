"""
cliniq/stt/providers/whisper_client.py
=======================================
OpenAI Whisper Adapter — ClinIQ

Responsibility:
    - Transcribe 5 s PCM windows with the OpenAI Whisper API
    - Prime Whisper with a medical-vocabulary prompt
    - Report the language Whisper detected for each window

Whisper returns no speaker labels; attribution falls back to the keyword
heuristic in the session.

This module does NOT:
    - Buffer or gate audio (handled by BatchProviderAdapter)
    - Retry indefinitely (bounded by cliniq.retry)
"""

import io
import logging

from openai import OpenAI

from cliniq.errors import MalformedBackendResponse
from cliniq.retry import call_with_retry
from cliniq.stt.language_detector import base_language, normalize_language
from cliniq.stt.providers.base import BatchProviderAdapter
from cliniq.stt.types import RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.whisper")

WHISPER_MODEL = "whisper-1"
WHISPER_CONFIDENCE = 0.95

MEDICAL_CONTEXT_PROMPT = (
    "This is a medical consultation transcript. Please transcribe accurately "
    "including medical terms, symptoms, diagnoses, medications, and anatomical "
    "references. Common terms include: chest pain, shortness of breath, blood "
    "pressure, diabetes, hypertension, medication, prescription, symptoms, "
    "diagnosis, treatment, examination, patient, doctor."
)


class WhisperAdapter(BatchProviderAdapter):

    provider_id = "whisper"

    def __init__(self, config, audio_source, language):
        super().__init__(config, audio_source, language)
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.config.credential("openai"))
        return self._client

    async def transcribe_window(self, wav_bytes: bytes) -> list[RecognitionResult]:
        response = await call_with_retry(
            self._transcribe, wav_bytes, provider=self.provider_id,
        )

        text = (_get(response, "text", "") or "").strip()
        if not text:
            logger.debug("Whisper returned no text for window (%d bytes)", len(wav_bytes))
            return []

        detected = _get(response, "language", None)
        language = normalize_language(detected, default=self.language) if detected else self.language

        return [
            RecognitionResult(
                transcript=text,
                is_final=True,
                confidence=WHISPER_CONFIDENCE,
                language=language,
                provider=self.provider_id,
            )
        ]

    def _transcribe(self, wav_bytes: bytes):
        """Blocking Whisper call, run in a worker thread."""
        audio_file = io.BytesIO(wav_bytes)
        audio_file.name = "audio.wav"

        kwargs = {
            "model": WHISPER_MODEL,
            "file": audio_file,
            "response_format": "verbose_json",
            "prompt": MEDICAL_CONTEXT_PROMPT,
            "temperature": 0.0,
        }
        # Whisper auto-detects when no language is given
        if not self.config.auto_detect_language:
            kwargs["language"] = base_language(self.language)

        response = self._get_client().audio.transcriptions.create(**kwargs)
        if response is None:
            raise MalformedBackendResponse("Whisper returned an empty response", self.provider_id)
        return response


def _get(obj, name: str, default):
    """Read an attribute from an SDK object or a dict key."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
