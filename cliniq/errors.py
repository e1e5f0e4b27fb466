"""
cliniq/errors.py
=================
Error Taxonomy — ClinIQ

Responsibility:
    - Define the typed failures raised by audio capture, provider adapters,
      the provider selector and the recognition session
    - Classify SDK / HTTP exceptions and browser recognizer error names into
      that taxonomy

Every error carries a stable ``code`` (sent to the client verbatim) and a
``fatal`` flag. Fatal errors end the session without an automatic restart.

This module does NOT:
    - Decide restart timing (handled by cliniq.stt.session)
    - Log anything
"""

import json

import requests


class TranscriptionError(Exception):
    """Base class for every ClinIQ recognition failure."""

    code: str = "transcription_error"
    fatal: bool = False

    def __init__(self, message: str, provider: str | None = None):
        self.message = message
        self.provider = provider
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "provider": self.provider}


class PermissionDenied(TranscriptionError):
    """The user refused microphone access."""

    code = "permission_denied"
    fatal = True


class CaptureUnavailable(TranscriptionError):
    """No audio input device, or capture is not supported by the client."""

    code = "capture_unavailable"
    fatal = True


class AlreadyRecording(TranscriptionError):
    """start() was called on a session, adapter or source that is already capturing."""

    code = "already_recording"
    fatal = False


class TransientProviderError(TranscriptionError):
    """Network drop, rate limit, server error or silence timeout at a backend."""

    code = "transient_provider_error"
    fatal = False


class NoSpeechDetected(TransientProviderError):
    """The recognizer timed out on silence. Restarted without counting as a failure."""

    code = "no_speech"


class ProviderAuthError(TranscriptionError):
    """The backend rejected the configured credential."""

    code = "provider_auth"
    fatal = True


class ProviderExhausted(TranscriptionError):
    """No credentialed provider is available for the session."""

    code = "provider_exhausted"
    fatal = True


class MalformedBackendResponse(TranscriptionError):
    """A backend returned a payload that could not be parsed."""

    code = "malformed_backend_response"
    fatal = False


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# HTTP status codes worth retrying on
TRANSIENT_STATUS_CODES: set[int] = {408, 429, 500, 502, 503, 504}
AUTH_STATUS_CODES: set[int] = {401, 403}

_TRANSIENT_EXCEPTION_NAMES = {
    "RateLimitError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    "ClientConnectionError",
    "ClientConnectorError",
    "ServerDisconnectedError",
    "WSServerHandshakeError",
}

# Web Speech API ``SpeechRecognitionErrorEvent.error`` names
_BROWSER_ERRORS: dict[str, type[TranscriptionError]] = {
    "not-allowed": PermissionDenied,
    "service-not-allowed": PermissionDenied,
    "audio-capture": CaptureUnavailable,
    "no-speech": NoSpeechDetected,
    "network": TransientProviderError,
    "aborted": TransientProviderError,
}


def _status_code(exc: Exception) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_provider_exception(
    exc: Exception,
    provider: str | None = None,
) -> TranscriptionError:
    """
    Map an arbitrary backend exception onto the ClinIQ taxonomy.

    Args:
        exc:      The exception raised by an SDK or HTTP call.
        provider: Provider id used for error reporting.

    Returns:
        A TranscriptionError instance. Unknown failures are treated as
        transient so the session gets a bounded number of retries.
    """
    if isinstance(exc, TranscriptionError):
        return exc

    status = _status_code(exc)
    if status in AUTH_STATUS_CODES:
        return ProviderAuthError(f"{provider or 'provider'} rejected credentials ({status})", provider)
    if status in TRANSIENT_STATUS_CODES:
        return TransientProviderError(f"{provider or 'provider'} returned {status}", provider)

    if isinstance(exc, (json.JSONDecodeError, KeyError, ValueError, TypeError)):
        return MalformedBackendResponse(f"unparseable response: {exc}", provider)

    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError, ConnectionError)):
        return TransientProviderError(f"{provider or 'provider'} unreachable: {exc}", provider)

    if type(exc).__name__ in _TRANSIENT_EXCEPTION_NAMES:
        return TransientProviderError(f"{provider or 'provider'} unreachable: {exc}", provider)

    if status is not None and 400 <= status < 500:
        return MalformedBackendResponse(f"{provider or 'provider'} rejected request ({status})", provider)

    return TransientProviderError(f"{provider or 'provider'} failed: {exc}", provider)


def classify_browser_error(name: str, provider: str = "browser") -> TranscriptionError:
    """Map a Web Speech API error name onto the ClinIQ taxonomy."""
    error_cls = _BROWSER_ERRORS.get(name, TransientProviderError)
    if error_cls is PermissionDenied:
        message = "Microphone permission denied. Allow access and start again."
    elif error_cls is CaptureUnavailable:
        message = "No microphone found. Check your audio input device."
    elif error_cls is NoSpeechDetected:
        message = "No speech detected."
    else:
        message = f"Speech recognition interrupted: {name}"
    return error_cls(message, provider)
