"""
cliniq/stt/providers/sarvam_client.py
======================================
Sarvam AI Adapter — ClinIQ

Responsibility:
    - Transcribe 5 s PCM windows with the Sarvam AI speech-to-text API
      (saaras model), the preferred backend for Indian languages
    - Send the session locale as a fixed language code

Sarvam has no diarization and no auto-detection: a language switch restarts
this adapter with the new locale.

This module does NOT:
    - Translate text
    - Buffer or gate audio (handled by BatchProviderAdapter)
"""

import io
import logging

import requests

from cliniq.errors import MalformedBackendResponse
from cliniq.retry import call_with_retry
from cliniq.stt.language_detector import base_language, normalize_language
from cliniq.stt.providers.base import BatchProviderAdapter
from cliniq.stt.types import RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.sarvam")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SARVAM_API_BASE = "https://api.sarvam.ai"
SARVAM_STT_ENDPOINT = f"{SARVAM_API_BASE}/speech-to-text"
SARVAM_MODEL = "saaras:v2"
SARVAM_TIMEOUT_SECONDS = 30
SARVAM_CONFIDENCE = 0.88

# Map ISO 639-1 to Sarvam BCP 47 language codes
_LANGUAGE_CODE_MAP: dict[str, str] = {
    "en": "en-IN",
    "hi": "hi-IN",
    "mr": "mr-IN",
    "ta": "ta-IN",
    "te": "te-IN",
    "kn": "kn-IN",
    "ml": "ml-IN",
    "gu": "gu-IN",
    "pa": "pa-IN",
    "bn": "bn-IN",
    "or": "od-IN",  # Sarvam uses "od-IN" for Odia
    "ur": "ur-IN",
}


def sarvam_language_code(locale: str) -> str:
    lang = base_language(locale)
    return _LANGUAGE_CODE_MAP.get(lang, f"{lang}-IN")


class SarvamAdapter(BatchProviderAdapter):

    provider_id = "sarvam"

    async def transcribe_window(self, wav_bytes: bytes) -> list[RecognitionResult]:
        body = await call_with_retry(self._post_window, wav_bytes, provider=self.provider_id)

        if not isinstance(body, dict) or "transcript" not in body:
            raise MalformedBackendResponse(
                f"Sarvam response missing 'transcript': {str(body)[:200]}", self.provider_id,
            )

        text = (body.get("transcript") or "").strip()
        if not text:
            return []

        reported = body.get("language_code")
        language = normalize_language(reported, default=self.language) if reported else self.language

        return [
            RecognitionResult(
                transcript=text,
                is_final=True,
                confidence=SARVAM_CONFIDENCE,
                language=language,
                provider=self.provider_id,
            )
        ]

    def _post_window(self, wav_bytes: bytes) -> dict:
        """Blocking Sarvam request, run in a worker thread."""
        headers = {
            "api-subscription-key": self.config.credential("sarvam"),
        }

        files = {
            "file": ("audio.wav", io.BytesIO(wav_bytes), "audio/wav"),
        }

        data = {
            "language_code": sarvam_language_code(self.language),
            "model": SARVAM_MODEL,
        }

        resp = requests.post(
            SARVAM_STT_ENDPOINT,
            headers=headers,
            files=files,
            data=data,
            timeout=SARVAM_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp.json()
