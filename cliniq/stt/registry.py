"""
cliniq/stt/registry.py
=======================
Provider Capability Registry — ClinIQ

Responsibility:
    - Describe every supported recognition backend with an immutable
      ProviderDescriptor (languages, accuracy, streaming, diarization,
      medical vocabulary, auto-detection, cost, credential)
    - Map each ProviderId to its adapter class (closed set)
    - Construct adapters

Registry order is significant: it breaks selector score ties.

This module does NOT:
    - Score or choose providers (handled by cliniq.stt.selector)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cliniq.audio.capture import AudioSource
from cliniq.config import BROWSER_SPEECH, SessionConfig
from cliniq.stt.providers.assemblyai_client import AssemblyAIAdapter
from cliniq.stt.providers.base import ProviderAdapter
from cliniq.stt.providers.browser import BrowserSpeechAdapter, BrowserSpeechBridge
from cliniq.stt.providers.deepgram_client import DeepgramAdapter
from cliniq.stt.providers.google_streaming import GoogleStreamingAdapter
from cliniq.stt.providers.sarvam_client import SarvamAdapter
from cliniq.stt.providers.whisper_client import WhisperAdapter

logger = logging.getLogger("cliniq.stt.registry")


class ProviderId(str, Enum):
    ASSEMBLYAI = "assemblyai"
    GOOGLE = "google"
    WHISPER = "whisper"
    DEEPGRAM = "deepgram"
    SARVAM = "sarvam"
    BROWSER = "browser"


class Cost(str, Enum):
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static capabilities of one backend. Never mutated."""
    provider_id: ProviderId
    name: str
    languages: frozenset[str]
    accuracy: float
    real_time: bool
    diarization: bool
    medical_terms: bool
    auto_detection: bool
    cost: Cost
    credential: Optional[str]

    def to_dict(self) -> dict:
        return {
            "id": self.provider_id.value,
            "name": self.name,
            "languages": sorted(self.languages),
            "accuracy": self.accuracy,
            "real_time": self.real_time,
            "diarization": self.diarization,
            "medical_terms": self.medical_terms,
            "auto_detection": self.auto_detection,
            "cost": self.cost.value,
        }


_INDIAN_LOCALES = (
    "hi-IN", "bn-IN", "ta-IN", "te-IN", "mr-IN", "gu-IN", "kn-IN", "ml-IN", "pa-IN", "ur-IN",
)

# ---------------------------------------------------------------------------
# Registry (order breaks score ties)
# ---------------------------------------------------------------------------

PROVIDER_REGISTRY: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        provider_id=ProviderId.ASSEMBLYAI,
        name="AssemblyAI",
        languages=frozenset({
            "en-US", "es-ES", "fr-FR", "de-DE", "it-IT", "pt-PT",
            "nl-NL", "hi-IN", "ja-JP", "ko-KR", "zh-CN",
        }),
        accuracy=0.95,
        real_time=False,
        diarization=True,
        medical_terms=True,
        auto_detection=True,
        cost=Cost.MEDIUM,
        credential="assemblyai",
    ),
    ProviderDescriptor(
        provider_id=ProviderId.GOOGLE,
        name="Google Cloud Speech (streaming)",
        languages=frozenset(("en-US", "en-IN") + _INDIAN_LOCALES),
        accuracy=0.92,
        real_time=True,
        diarization=True,
        medical_terms=False,
        auto_detection=True,
        cost=Cost.LOW,
        credential="google",
    ),
    ProviderDescriptor(
        provider_id=ProviderId.WHISPER,
        name="OpenAI Whisper",
        languages=frozenset(("en-US", "es-ES", "fr-FR", "de-DE") + _INDIAN_LOCALES),
        accuracy=0.93,
        real_time=False,
        diarization=False,
        medical_terms=True,
        auto_detection=True,
        cost=Cost.LOW,
        credential="openai",
    ),
    ProviderDescriptor(
        provider_id=ProviderId.DEEPGRAM,
        name="Deepgram Nova-3",
        languages=frozenset({
            "en-US", "en-IN", "hi-IN", "es-ES", "fr-FR", "de-DE",
            "it-IT", "pt-PT", "nl-NL", "ja-JP",
        }),
        accuracy=0.90,
        real_time=False,
        diarization=True,
        medical_terms=False,
        auto_detection=True,
        cost=Cost.LOW,
        credential="deepgram",
    ),
    ProviderDescriptor(
        provider_id=ProviderId.SARVAM,
        name="Sarvam AI",
        languages=frozenset(("en-IN", "or-IN") + _INDIAN_LOCALES),
        accuracy=0.88,
        real_time=False,
        diarization=False,
        medical_terms=False,
        auto_detection=False,
        cost=Cost.LOW,
        credential="sarvam",
    ),
    ProviderDescriptor(
        provider_id=ProviderId.BROWSER,
        name="Browser Web Speech",
        languages=frozenset({"en-US", "hi-IN", "es-ES", "fr-FR", "de-DE"}),
        accuracy=0.85,
        real_time=True,
        diarization=False,
        medical_terms=False,
        auto_detection=False,
        cost=Cost.FREE,
        credential=BROWSER_SPEECH,
    ),
)

ADAPTER_CLASSES: dict[ProviderId, type[ProviderAdapter]] = {
    ProviderId.ASSEMBLYAI: AssemblyAIAdapter,
    ProviderId.GOOGLE: GoogleStreamingAdapter,
    ProviderId.WHISPER: WhisperAdapter,
    ProviderId.DEEPGRAM: DeepgramAdapter,
    ProviderId.SARVAM: SarvamAdapter,
    ProviderId.BROWSER: BrowserSpeechAdapter,
}

_BY_ID: dict[ProviderId, ProviderDescriptor] = {d.provider_id: d for d in PROVIDER_REGISTRY}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_descriptor(provider_id: ProviderId | str) -> ProviderDescriptor:
    """
    Look up a descriptor.

    Raises:
        ValueError: If ``provider_id`` is not a registered provider.
    """
    return _BY_ID[ProviderId(provider_id)]


def create_adapter(
    provider_id: ProviderId | str,
    config: SessionConfig,
    audio_source: AudioSource,
    language: str,
    browser_bridge: Optional[BrowserSpeechBridge] = None,
) -> ProviderAdapter:
    """
    Instantiate the adapter registered for ``provider_id``.

    Args:
        provider_id:    Registered provider.
        config:         Session configuration (credentials, windows).
        audio_source:   Capture source the adapter acquires on start().
        language:       Locale the adapter recognizes.
        browser_bridge: Client relay, used only by the browser adapter.
    """
    pid = ProviderId(provider_id)
    adapter_cls = ADAPTER_CLASSES[pid]
    if pid is ProviderId.BROWSER:
        return BrowserSpeechAdapter(config, audio_source, language, bridge=browser_bridge)
    logger.debug("Creating %s adapter for %s", pid.value, language)
    return adapter_cls(config, audio_source, language)
