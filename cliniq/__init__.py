# cliniq/__init__.py
# ===================
# ClinIQ — real-time consultation transcription.
#
# Packages:
#   cliniq.audio — capture contract, PCM/WAV encoding, speech gate
#   cliniq.stt   — detector, attribution, registry, selector, adapters, session
#   cliniq.api   — FastAPI WebSocket surface

__version__ = "1.0.0"
