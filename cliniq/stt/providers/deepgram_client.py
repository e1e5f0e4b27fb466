"""
cliniq/stt/providers/deepgram_client.py
========================================
Deepgram Adapter — ClinIQ

Responsibility:
    - Transcribe 5 s PCM windows with Deepgram Nova-3 through the Deepgram SDK
    - Request diarized utterances and language detection
    - Map Deepgram speaker indices to doctor / patient roles

This module does NOT:
    - Buffer or gate audio (handled by BatchProviderAdapter)
    - Keep speaker indices stable across windows
"""

import logging

from cliniq.retry import call_with_retry
from cliniq.stt.language_detector import normalize_language
from cliniq.stt.providers.base import BatchProviderAdapter
from cliniq.stt.role_classifier import map_diarized_speaker
from cliniq.stt.types import DEFAULT_CONFIDENCE, RecognitionResult

logger = logging.getLogger("cliniq.stt.providers.deepgram")

DEEPGRAM_MODEL = "nova-3"


class DeepgramAdapter(BatchProviderAdapter):

    provider_id = "deepgram"

    def __init__(self, config, audio_source, language):
        super().__init__(config, audio_source, language)
        self._client = None

    def _get_client(self):
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(api_key=self.config.credential("deepgram"))
        return self._client

    async def transcribe_window(self, wav_bytes: bytes) -> list[RecognitionResult]:
        response = await call_with_retry(self._transcribe, wav_bytes, provider=self.provider_id)
        return self._parse_response(response)

    def _transcribe(self, wav_bytes: bytes):
        """Blocking Deepgram call, run in a worker thread."""
        options = {
            "model": DEEPGRAM_MODEL,
            "diarize": True,
            "utterances": True,
            "smart_format": True,
            "punctuate": True,
        }
        if self.config.auto_detect_language:
            options["detect_language"] = True
        else:
            options["language"] = self.language

        logger.debug("Sending window (%d bytes) to Deepgram %s", len(wav_bytes), DEEPGRAM_MODEL)
        return self._get_client().listen.v1.media.transcribe_file(request=wav_bytes, **options)

    def _parse_response(self, response) -> list[RecognitionResult]:
        results = _get_attr(response, "results", None)
        if results is None:
            logger.warning("Deepgram response has no 'results' field.")
            return []

        language = self.language
        channels = _get_attr(results, "channels", None) or []
        if channels:
            detected = _get_attr(channels[0], "detected_language", None)
            if detected:
                language = normalize_language(detected, default=self.language)

        parsed: list[RecognitionResult] = []
        for utterance in _get_attr(results, "utterances", None) or []:
            text = (_get_attr(utterance, "transcript", "") or "").strip()
            if not text:
                continue
            speaker_index = _get_attr(utterance, "speaker", None)
            label = None if speaker_index is None else str(speaker_index)
            confidence = _get_attr(utterance, "confidence", None)
            parsed.append(
                RecognitionResult(
                    transcript=text,
                    is_final=True,
                    confidence=DEFAULT_CONFIDENCE if confidence is None else float(confidence),
                    language=language,
                    speaker=map_diarized_speaker(label, text, first_label="0") if label is not None else None,
                    speaker_label=label,
                    provider=self.provider_id,
                )
            )

        if not parsed and channels:
            # No utterances block: fall back to the channel transcript
            alternatives = _get_attr(channels[0], "alternatives", None) or []
            if alternatives:
                text = (_get_attr(alternatives[0], "transcript", "") or "").strip()
                if text:
                    confidence = _get_attr(alternatives[0], "confidence", None)
                    parsed.append(
                        RecognitionResult(
                            transcript=text,
                            is_final=True,
                            confidence=DEFAULT_CONFIDENCE if confidence is None else float(confidence),
                            language=language,
                            provider=self.provider_id,
                        )
                    )

        return parsed


def _get_attr(obj, name: str, default):
    """Get an attribute from an SDK object or dict key, with a default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
