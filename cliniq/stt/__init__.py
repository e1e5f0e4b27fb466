# cliniq/stt/__init__.py
# =======================
# Speech-to-Text Layer — ClinIQ
#
# Session pipeline:
#   1. ProviderSelector scores credentialed providers from the registry
#   2. RecognitionSession starts the winning adapter on the audio source
#   3. Final results → language script detection → speaker attribution
#   4. TranscriptEntry values are emitted to the consumer
#   5. Spontaneous ends / transient errors → backoff restart
#   6. Detected language change → selector re-run → swap or restart
#
# Public API:
#   RecognitionSession(config, audio_source, on_entry=...)

from cliniq.stt.language_detector import (  # noqa: F401
    DetectionBuffer,
    LanguageDetectionResult,
    detect_language,
)
from cliniq.stt.registry import PROVIDER_REGISTRY, ProviderDescriptor, ProviderId  # noqa: F401
from cliniq.stt.role_classifier import SpeakerAttributor  # noqa: F401
from cliniq.stt.selector import ProviderSelector  # noqa: F401
from cliniq.stt.session import RecognitionSession  # noqa: F401
from cliniq.stt.types import (  # noqa: F401
    RecognitionResult,
    SessionState,
    Speaker,
    TranscriptEntry,
)

__all__ = [
    "DetectionBuffer",
    "LanguageDetectionResult",
    "detect_language",
    "PROVIDER_REGISTRY",
    "ProviderDescriptor",
    "ProviderId",
    "SpeakerAttributor",
    "ProviderSelector",
    "RecognitionSession",
    "RecognitionResult",
    "SessionState",
    "Speaker",
    "TranscriptEntry",
]
