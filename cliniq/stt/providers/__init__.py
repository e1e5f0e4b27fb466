# cliniq/stt/providers/__init__.py
# =================================
# Provider Adapters — ClinIQ
#
# One adapter per recognition backend, all behind ProviderAdapter:
#   streaming — GoogleStreamingAdapter (proxy WebSocket), BrowserSpeechAdapter
#   batch     — AssemblyAIAdapter, WhisperAdapter, DeepgramAdapter, SarvamAdapter
#
# Backend wire protocols stay private to each module.

from cliniq.stt.providers.base import (  # noqa: F401
    BatchProviderAdapter,
    ProviderAdapter,
    StreamingProviderAdapter,
)
from cliniq.stt.providers.browser import BrowserSpeechAdapter, BrowserSpeechBridge  # noqa: F401

__all__ = [
    "ProviderAdapter",
    "BatchProviderAdapter",
    "StreamingProviderAdapter",
    "BrowserSpeechAdapter",
    "BrowserSpeechBridge",
]
