"""
cliniq/stt/providers/assemblyai_client.py
==========================================
AssemblyAI Adapter — ClinIQ

Responsibility:
    - Upload each 5 s window to AssemblyAI, request a transcript with
      speaker labels, language detection and a medical word boost
    - Poll until the transcript completes
    - Emit one final result per diarized utterance, with the diarization
      label mapped to a doctor / patient role

This module does NOT:
    - Buffer or gate audio (handled by BatchProviderAdapter)
    - Keep speaker labels stable across windows (AssemblyAI labels are
      per request)
"""

import asyncio
import logging
import time

import requests

from cliniq.errors import MalformedBackendResponse, TransientProviderError
from cliniq.retry import call_with_retry
from cliniq.stt.language_detector import normalize_language
from cliniq.stt.providers.base import BatchProviderAdapter
from cliniq.stt.role_classifier import map_diarized_speaker
from cliniq.stt.types import DEFAULT_CONFIDENCE, RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.assemblyai")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

ASSEMBLYAI_API_BASE = "https://api.assemblyai.com/v2"
ASSEMBLYAI_UPLOAD_ENDPOINT = f"{ASSEMBLYAI_API_BASE}/upload"
ASSEMBLYAI_TRANSCRIPT_ENDPOINT = f"{ASSEMBLYAI_API_BASE}/transcript"
REQUEST_TIMEOUT_SECONDS = 30
POLL_INTERVAL_SECONDS = 1.0
POLL_TIMEOUT_SECONDS = 60.0

MEDICAL_WORD_BOOST: list[str] = [
    # Common medical terms
    "hypertension", "diabetes", "medication", "prescription", "symptoms",
    "diagnosis", "treatment", "patient", "doctor", "blood pressure",
    "heart rate", "temperature", "fever", "cough", "headache", "nausea",
    "dizziness", "fatigue", "infection", "antibiotics", "aspirin",
    "paracetamol", "insulin", "asthma", "allergy", "chronic",
    # Transliterated Hindi terms
    "davai", "dava", "bukhar", "sir dard", "pet dard", "khasi",
    "saans lene mein takleef", "chakkar aana", "kamjori",
]

CUSTOM_SPELLING: list[dict] = [
    {"from": ["davai", "dava"], "to": "medicine"},
    {"from": ["bukhar"], "to": "fever"},
    {"from": ["sir dard"], "to": "headache"},
    {"from": ["pet dard"], "to": "abdominal pain"},
    {"from": ["khasi"], "to": "cough"},
    {"from": ["saans lene mein takleef"], "to": "breathing difficulty"},
    {"from": ["chakkar aana"], "to": "dizziness"},
    {"from": ["kamjori"], "to": "weakness"},
]


class AssemblyAIAdapter(BatchProviderAdapter):

    provider_id = "assemblyai"

    async def transcribe_window(self, wav_bytes: bytes) -> list[RecognitionResult]:
        upload_url = await call_with_retry(self._upload, wav_bytes, provider=self.provider_id)
        transcript_id = await call_with_retry(
            self._create_transcript, upload_url, provider=self.provider_id,
        )
        result = await self._poll(transcript_id)
        return self._parse_result(result)

    # ------------------------------------------------------------------
    # Blocking HTTP calls (run in worker threads)
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"authorization": self.config.credential("assemblyai")}

    def _upload(self, wav_bytes: bytes) -> str:
        resp = requests.post(
            ASSEMBLYAI_UPLOAD_ENDPOINT,
            headers=self._headers(),
            data=wav_bytes,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp.json()["upload_url"]

    def _create_transcript(self, upload_url: str) -> str:
        payload = {
            "audio_url": upload_url,
            "speaker_labels": True,
            "punctuate": True,
            "format_text": True,
            "disfluencies": False,
            "word_boost": MEDICAL_WORD_BOOST,
            "boost_param": "high",
            "speech_threshold": 0.3,
            "custom_spelling": CUSTOM_SPELLING,
        }
        if self.config.auto_detect_language:
            payload["language_detection"] = True
        else:
            payload["language_code"] = self.language.split("-")[0].lower()

        resp = requests.post(
            ASSEMBLYAI_TRANSCRIPT_ENDPOINT,
            headers=self._headers(),
            json=payload,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def _fetch(self, transcript_id: str) -> dict:
        resp = requests.get(
            f"{ASSEMBLYAI_TRANSCRIPT_ENDPOINT}/{transcript_id}",
            headers=self._headers(),
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp.json()

    # ------------------------------------------------------------------
    # Polling & parsing
    # ------------------------------------------------------------------

    async def _poll(self, transcript_id: str) -> dict:
        deadline = time.monotonic() + POLL_TIMEOUT_SECONDS
        while True:
            result = await call_with_retry(self._fetch, transcript_id, provider=self.provider_id)
            status = result.get("status")

            if status == "completed":
                return result
            if status == "error":
                raise TransientProviderError(
                    f"AssemblyAI transcription error: {result.get('error')}", self.provider_id,
                )
            if time.monotonic() >= deadline:
                raise TransientProviderError(
                    f"AssemblyAI transcript {transcript_id} not ready after "
                    f"{POLL_TIMEOUT_SECONDS:.0f}s", self.provider_id,
                )
            # queued / processing
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    def _parse_result(self, result: dict) -> list[RecognitionResult]:
        reported = result.get("language_code")
        language = normalize_language(reported, default=self.language) if reported else self.language

        utterances = result.get("utterances")
        if utterances is None:
            text = (result.get("text") or "").strip()
            if not text:
                return []
            utterances = [{"speaker": None, "text": text, "confidence": result.get("confidence")}]

        if not isinstance(utterances, list):
            raise MalformedBackendResponse("AssemblyAI 'utterances' is not a list", self.provider_id)

        results: list[RecognitionResult] = []
        for utterance in utterances:
            text = (utterance.get("text") or "").strip()
            if not text:
                continue
            label = utterance.get("speaker")
            confidence = utterance.get("confidence")
            results.append(
                RecognitionResult(
                    transcript=text,
                    is_final=True,
                    confidence=DEFAULT_CONFIDENCE if confidence is None else float(confidence),
                    language=language,
                    speaker=map_diarized_speaker(label, text) if label is not None else None,
                    speaker_label=label,
                    provider=self.provider_id,
                )
            )

        logger.debug("AssemblyAI window produced %d utterances", len(results))
        return results
