"""
cliniq/config.py
=================
Session Configuration — ClinIQ

Responsibility:
    - Load provider credentials and session tuning from the environment
      (``.env`` via python-dotenv)
    - Freeze them into an explicit SessionConfig handed to each session

Environment variables:
    ASSEMBLYAI_API_KEY, OPENAI_API_KEY, SARVAM_API_KEY, DEEPGRAM_API_KEY,
    GOOGLE_STT_PROXY_URL                  — provider credentials
    CLINIQ_DEFAULT_LANGUAGE               — requested locale (en-US)
    CLINIQ_AUTO_DETECT_LANGUAGE           — true / false
    CLINIQ_SUPPORTED_LANGUAGES            — comma separated locales
    CLINIQ_REQUIRE_REAL_TIME              — exclude batch providers
    CLINIQ_RESTART_BACKOFF                — seconds before auto-restart (0-10, default 0.4)
    CLINIQ_MAX_RESTART_ATTEMPTS           — consecutive transient errors tolerated
    CLINIQ_STOP_TIMEOUT                   — graceful stop bound (seconds)
    CLINIQ_CHUNK_DURATION                 — batch window (seconds)
    CLINIQ_SAMPLE_RATE                    — PCM sample rate
    CLINIQ_SILENCE_RMS                    — batch speech gate threshold

This module does NOT:
    - Validate credentials against the backends
    - Hold any mutable runtime state
"""

import logging
import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("cliniq.config")


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_LANGUAGE = "en-US"
MAX_RESTART_BACKOFF = 10.0

DEFAULT_SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "en-US",
    "hi-IN",
    "or-IN",
    "bn-IN",
    "ta-IN",
    "te-IN",
    "ml-IN",
    "kn-IN",
    "gu-IN",
    "mr-IN",
    "pa-IN",
    "ur-IN",
)

# Credential name → environment variable
CREDENTIAL_ENV_VARS: dict[str, str] = {
    "assemblyai": "ASSEMBLYAI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "sarvam": "SARVAM_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
    "google": "GOOGLE_STT_PROXY_URL",
}

# Credential-free browser recognition is gated on a client capability flag
BROWSER_SPEECH = "browser_speech"


@dataclass(frozen=True)
class SessionConfig:
    """Immutable per-session settings. Build with load_config() or directly in tests."""

    language: str = DEFAULT_LANGUAGE
    auto_detect_language: bool = True
    supported_languages: tuple[str, ...] = DEFAULT_SUPPORTED_LANGUAGES
    require_real_time: bool = False
    restart_backoff: float = 0.4  # 0.4-2.0 s in production; 0-10 s accepted
    max_restart_attempts: int = 5
    stop_timeout: float = 2.0
    chunk_duration: float = 5.0
    sample_rate: int = 16000
    silence_rms_threshold: float = 0.01
    credentials: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.restart_backoff <= MAX_RESTART_BACKOFF:
            raise ValueError(f"restart_backoff out of range: {self.restart_backoff}")
        if self.max_restart_attempts < 0:
            raise ValueError("max_restart_attempts must be >= 0")
        if self.chunk_duration <= 0:
            raise ValueError("chunk_duration must be positive")
        # Drop empty credentials and freeze the mapping
        cleaned = {k: v for k, v in dict(self.credentials).items() if v}
        object.__setattr__(self, "credentials", MappingProxyType(cleaned))

    def has_credential(self, name: str | None) -> bool:
        """True if the named credential is present (``None`` means credential-free)."""
        if name is None:
            return True
        return bool(self.credentials.get(name))

    def credential(self, name: str) -> str:
        """
        Return a credential value.

        Raises:
            RuntimeError: If the credential is missing.
        """
        value = self.credentials.get(name)
        if not value:
            env_var = CREDENTIAL_ENV_VARS.get(name, name)
            raise RuntimeError(f"{env_var} environment variable is not set.")
        return value

    def with_browser_speech(self, available: bool) -> "SessionConfig":
        """Copy of this config with the client's Web Speech capability applied."""
        creds = dict(self.credentials)
        if available:
            creds[BROWSER_SPEECH] = "1"
        else:
            creds.pop(BROWSER_SPEECH, None)
        return replace(self, credentials=creds)


# ---------------------------------------------------------------------------
# Environment loading
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def load_config() -> SessionConfig:
    """
    Build a SessionConfig from environment variables.

    Returns:
        SessionConfig with every credential found in the environment.
    """
    credentials = {
        name: os.environ.get(env_var, "").strip()
        for name, env_var in CREDENTIAL_ENV_VARS.items()
    }

    supported_raw = os.environ.get("CLINIQ_SUPPORTED_LANGUAGES", "")
    supported = tuple(s.strip() for s in supported_raw.split(",") if s.strip())

    config = SessionConfig(
        language=os.environ.get("CLINIQ_DEFAULT_LANGUAGE", DEFAULT_LANGUAGE),
        auto_detect_language=_env_bool("CLINIQ_AUTO_DETECT_LANGUAGE", True),
        supported_languages=supported or DEFAULT_SUPPORTED_LANGUAGES,
        require_real_time=_env_bool("CLINIQ_REQUIRE_REAL_TIME", False),
        restart_backoff=_env_float("CLINIQ_RESTART_BACKOFF", 0.4),
        max_restart_attempts=_env_int("CLINIQ_MAX_RESTART_ATTEMPTS", 5),
        stop_timeout=_env_float("CLINIQ_STOP_TIMEOUT", 2.0),
        chunk_duration=_env_float("CLINIQ_CHUNK_DURATION", 5.0),
        sample_rate=_env_int("CLINIQ_SAMPLE_RATE", 16000),
        silence_rms_threshold=_env_float("CLINIQ_SILENCE_RMS", 0.01),
        credentials=credentials,
    )

    logger.info(
        "Configuration loaded: language=%s, auto_detect=%s, credentials=%s",
        config.language,
        config.auto_detect_language,
        sorted(config.credentials),
    )
    return config
