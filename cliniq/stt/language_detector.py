"""
cliniq/stt/language_detector.py
================================
Language Script Detection — ClinIQ

Responsibility:
    - Classify transcript text into its most likely spoken language by the
      Unicode script its characters belong to
    - Apply switch hysteresis: a new language wins only with at least
      MIN_SWITCH_CHARACTERS characters and only if it differs from the
      current language
    - Keep a bounded buffer of recent final fragments so single noisy
      utterances cannot flip the session language
    - Normalize language names / codes to canonical locales

Devanagari is shared by Hindi and Marathi. It always resolves to Hindi.
A non-Latin script with at least MIN_SWITCH_CHARACTERS characters wins even
when Latin letters outnumber it (code-mixed speech). Latin letters decide
English only when no other script qualifies. Digits, punctuation and
whitespace are not classified.

This module does NOT:
    - Inspect audio (text only)
    - Swap providers (handled by cliniq.stt.session)
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger("cliniq.stt.language_detector")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MIN_SWITCH_CHARACTERS: int = 6
NO_SIGNAL_CONFIDENCE: float = 0.9
DETECTION_BUFFER_SIZE: int = 10

# (first code point, last code point, locale). Order breaks count ties.
SCRIPT_RANGES: tuple[tuple[int, int, str], ...] = (
    (0x0900, 0x097F, "hi-IN"),   # Devanagari (Hindi; Marathi shares the block)
    (0x0980, 0x09FF, "bn-IN"),   # Bengali
    (0x0A00, 0x0A7F, "pa-IN"),   # Gurmukhi
    (0x0A80, 0x0AFF, "gu-IN"),   # Gujarati
    (0x0B00, 0x0B7F, "or-IN"),   # Oriya
    (0x0B80, 0x0BFF, "ta-IN"),   # Tamil
    (0x0C00, 0x0C7F, "te-IN"),   # Telugu
    (0x0C80, 0x0CFF, "kn-IN"),   # Kannada
    (0x0D00, 0x0D7F, "ml-IN"),   # Malayalam
    (0x0600, 0x06FF, "ur-IN"),   # Arabic script (Urdu)
)

LATIN_LOCALE = "en-US"

# Lower-cased aliases → canonical locale
_LANGUAGE_ALIASES: dict[str, str] = {
    "en": "en-US", "en-us": "en-US", "en-in": "en-US", "english": "en-US",
    "hi": "hi-IN", "hi-in": "hi-IN", "hindi": "hi-IN", "हिंदी": "hi-IN", "हिन्दी": "hi-IN",
    "mr": "mr-IN", "mr-in": "mr-IN", "marathi": "mr-IN", "मराठी": "mr-IN",
    "bn": "bn-IN", "bn-in": "bn-IN", "bengali": "bn-IN", "bangla": "bn-IN", "বাংলা": "bn-IN",
    "pa": "pa-IN", "pa-in": "pa-IN", "punjabi": "pa-IN", "ਪੰਜਾਬੀ": "pa-IN",
    "gu": "gu-IN", "gu-in": "gu-IN", "gujarati": "gu-IN", "ગુજરાતી": "gu-IN",
    "or": "or-IN", "or-in": "or-IN", "od": "or-IN", "od-in": "or-IN",
    "odia": "or-IN", "oriya": "or-IN", "ଓଡ଼ିଆ": "or-IN",
    "ta": "ta-IN", "ta-in": "ta-IN", "tamil": "ta-IN", "தமிழ்": "ta-IN",
    "te": "te-IN", "te-in": "te-IN", "telugu": "te-IN", "తెలుగు": "te-IN",
    "kn": "kn-IN", "kn-in": "kn-IN", "kannada": "kn-IN", "ಕನ್ನಡ": "kn-IN",
    "ml": "ml-IN", "ml-in": "ml-IN", "malayalam": "ml-IN", "മലയാളം": "ml-IN",
    "ur": "ur-IN", "ur-in": "ur-IN", "urdu": "ur-IN", "اردو": "ur-IN",
    "es": "es-ES", "es-es": "es-ES", "spanish": "es-ES",
    "fr": "fr-FR", "fr-fr": "fr-FR", "french": "fr-FR",
    "de": "de-DE", "de-de": "de-DE", "german": "de-DE",
}


@dataclass(frozen=True)
class LanguageDetectionResult:
    """Outcome of one detection pass."""
    language: str
    confidence: float
    is_supported: bool
    changed: bool = False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def base_language(locale: Optional[str]) -> str:
    """Short language code of a locale: ``"hi-IN"`` → ``"hi"``."""
    if not locale:
        return ""
    return locale.replace("_", "-").split("-")[0].lower()


def normalize_language(value: Optional[str], default: str = LATIN_LOCALE) -> str:
    """
    Map a language code, locale, English name or native name to a locale.

    Unknown values with a region (``"it-IT"``) are returned as given;
    unknown bare values fall back to ``default``.
    """
    if not value:
        return default
    key = value.strip().replace("_", "-").lower()
    if key in _LANGUAGE_ALIASES:
        return _LANGUAGE_ALIASES[key]
    if "-" in key:
        lang, region = key.split("-", 1)
        return f"{lang}-{region.upper()}"
    return default


def same_language(a: Optional[str], b: Optional[str]) -> bool:
    return base_language(a) == base_language(b)


def classify_character(ch: str) -> Optional[str]:
    """Locale whose script contains ``ch``, or None for unclassified characters."""
    cp = ord(ch)
    for start, end, locale in SCRIPT_RANGES:
        if start <= cp <= end:
            return locale
    if ch.isalpha() and cp <= 0x024F:
        return LATIN_LOCALE
    return None


def count_scripts(text: str) -> dict[str, int]:
    """Per-locale character counts for ``text``."""
    counts: dict[str, int] = {}
    for ch in text:
        locale = classify_character(ch)
        if locale is not None:
            counts[locale] = counts.get(locale, 0) + 1
    return counts


def detect_language(
    text: str,
    current_language: str,
    supported_languages: Iterable[str] = (),
) -> LanguageDetectionResult:
    """
    Detect the language of ``text`` relative to the active language.

    Args:
        text:                Fragment or joined detection buffer.
        current_language:    Active session locale.
        supported_languages: Locales the session is configured for.

    Returns:
        LanguageDetectionResult. ``changed`` is True only when a different
        language won with at least MIN_SWITCH_CHARACTERS characters; the
        confidence is then above 0.8. Otherwise the current language is
        returned with confidence 0.9.
    """
    supported = tuple(supported_languages)
    counts = count_scripts(text or "")

    # Any qualifying non-Latin script outranks Latin letters in code-mixed text
    winner: Optional[str] = None
    winner_count = 0
    for _, _, locale in SCRIPT_RANGES:
        count = counts.get(locale, 0)
        if count > winner_count:
            winner, winner_count = locale, count
    if winner_count < MIN_SWITCH_CHARACTERS:
        winner, winner_count = LATIN_LOCALE, counts.get(LATIN_LOCALE, 0)

    if (
        winner_count >= MIN_SWITCH_CHARACTERS
        and not same_language(winner, current_language)
    ):
        total = sum(counts.values())
        confidence = 0.8 + 0.2 * (winner_count / total)
        logger.info(
            "Script detection: %s → %s (%d/%d characters, confidence %.2f)",
            current_language, winner, winner_count, total, confidence,
        )
        return LanguageDetectionResult(
            language=winner,
            confidence=round(confidence, 4),
            is_supported=_is_supported(winner, supported),
            changed=True,
        )

    return LanguageDetectionResult(
        language=current_language,
        confidence=NO_SIGNAL_CONFIDENCE,
        is_supported=_is_supported(current_language, supported),
        changed=False,
    )


class DetectionBuffer:
    """FIFO of the last ``max_size`` final fragments."""

    def __init__(self, max_size: int = DETECTION_BUFFER_SIZE):
        self._fragments: deque[str] = deque(maxlen=max_size)

    def push(self, fragment: str) -> None:
        fragment = fragment.strip()
        if fragment:
            self._fragments.append(fragment)

    def text(self) -> str:
        return " ".join(self._fragments)

    def clear(self) -> None:
        self._fragments.clear()

    def __len__(self) -> int:
        return len(self._fragments)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _is_supported(locale: str, supported: tuple[str, ...]) -> bool:
    if not supported:
        return True
    return any(same_language(locale, s) for s in supported)
