# cliniq/audio/__init__.py
# =========================
# Audio Layer — ClinIQ
#
# Responsibility:
#   - Microphone capture contract (AudioSource / AudioStream)
#   - PushAudioSource fed by the consultation WebSocket
#   - PCM16 → WAV encoding and the energy speech gate for batch windows

from cliniq.audio.capture import (  # noqa: F401
    AudioSource,
    AudioStream,
    MicrophonePermission,
    PushAudioSource,
)
from cliniq.audio.encoding import has_speech, pcm16_to_wav  # noqa: F401

__all__ = [
    "AudioSource",
    "AudioStream",
    "MicrophonePermission",
    "PushAudioSource",
    "has_speech",
    "pcm16_to_wav",
]
