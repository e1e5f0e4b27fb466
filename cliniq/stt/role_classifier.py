"""
cliniq/stt/role_classifier.py
==============================
Speaker Attribution — ClinIQ

Responsibility:
    - Attribute each final utterance to DOCTOR or PATIENT
    - Prefer a provider-native diarization role when the adapter supplies one
    - Otherwise score doctor vs patient keywords in the text; a tie keeps the
      previously attributed speaker
    - Map raw diarization labels (AssemblyAI "A"/"B", Google speakerTag,
      Deepgram speaker index) to roles using conversational phrases

This is a text-content heuristic. It does not identify voices: two
utterances with the same keywords get the same role regardless of who
spoke them.

This module does NOT:
    - Perform acoustic diarization
    - Call any LLM or backend
"""

import logging
from typing import Optional

from cliniq.stt.types import Speaker

logger = logging.getLogger("cliniq.stt.role_classifier")

# ---------------------------------------------------------------------------
# Keyword sets (case-insensitive substring matches)
# ---------------------------------------------------------------------------

DOCTOR_KEYWORDS: tuple[str, ...] = (
    "diagnosis",
    "prescription",
    "treatment",
    "recommend",
    "examine",
    "prescribe",
    "medical",
    "symptoms",
    "condition",
    "therapy",
    "medication",
    "follow up",
    "test results",
    "blood pressure",
    "heart rate",
    "temperature",
    "breathing",
)

PATIENT_KEYWORDS: tuple[str, ...] = (
    "feel",
    "hurt",
    "pain",
    "ache",
    "tired",
    "dizzy",
    "nausea",
    "headache",
    "stomach",
    "chest",
    "back",
    "leg",
    "arm",
    "throat",
    "cough",
    "fever",
    "sleep",
    "appetite",
    "worry",
    "concerned",
    "problem",
    "issue",
    "help",
)

# Conversational phrases used to resolve diarization labels, 2 points each
_DOCTOR_PHRASES: tuple[str, ...] = (
    "may i know your name",
    "what brings you here",
    "how are you feeling",
    "can you describe",
    "let me check",
    "i need to examine",
    "take this medication",
    "come back in",
    "any other symptoms",
    "how long",
    "when did this start",
    "please tell me",
    "let me examine",
    "i will prescribe",
    "follow up",
    "treatment plan",
)

_PATIENT_PHRASES: tuple[str, ...] = (
    "hello doctor",
    "my name is",
    "i am feeling",
    "i have pain",
    "it hurts",
    "i am experiencing",
    "thank you doctor",
    "since yesterday",
    "since last week",
    "yes doctor",
    "no doctor",
    "i think",
    "i feel",
    "my symptoms",
    "the pain",
    "i cannot",
    "i need help",
)

_PHRASE_WEIGHT = 2


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def count_keywords(text: str, keywords: tuple[str, ...]) -> int:
    lowered = text.lower()
    return sum(1 for kw in keywords if kw in lowered)


def score_roles(text: str) -> tuple[int, int]:
    """Return ``(doctor_score, patient_score)`` keyword counts for ``text``."""
    return count_keywords(text, DOCTOR_KEYWORDS), count_keywords(text, PATIENT_KEYWORDS)


def classify_speaker(text: str, previous: Speaker) -> Speaker:
    """
    Keyword heuristic with hysteresis.

    Args:
        text:     Utterance text.
        previous: Last attributed speaker, returned on a tie.

    Returns:
        DOCTOR if doctor keywords strictly outnumber patient keywords,
        PATIENT for the symmetric case, ``previous`` otherwise.
    """
    doctor_score, patient_score = score_roles(text)
    if doctor_score > patient_score:
        return Speaker.DOCTOR
    if patient_score > doctor_score:
        return Speaker.PATIENT
    return previous


def map_diarized_speaker(
    label: Optional[str],
    text: str,
    first_label: str = "A",
) -> Speaker:
    """
    Resolve a provider diarization label to a role.

    Phrase evidence in the text decides first; when it is balanced, the
    first diarized speaker is taken as the doctor, who conventionally opens
    the consultation.

    Args:
        label:       Raw diarization label from the backend.
        text:        Utterance text.
        first_label: The backend's label for its first speaker
                     (AssemblyAI "A", Google speakerTag "1", Deepgram "0").
    """
    lowered = text.lower()
    doctor_score = sum(_PHRASE_WEIGHT for p in _DOCTOR_PHRASES if p in lowered)
    patient_score = sum(_PHRASE_WEIGHT for p in _PATIENT_PHRASES if p in lowered)

    if doctor_score > patient_score:
        return Speaker.DOCTOR
    if patient_score > doctor_score:
        return Speaker.PATIENT

    normalized = str(label).strip().lower() if label is not None else ""
    return Speaker.DOCTOR if normalized == first_label.lower() else Speaker.PATIENT


class SpeakerAttributor:
    """Stateful attributor remembering the last speaker for tie-breaks."""

    def __init__(self, initial: Speaker = Speaker.DOCTOR):
        self.last_speaker = Speaker(initial)

    def attribute(self, text: str, provider_speaker: Optional[Speaker | str] = None) -> Speaker:
        """
        Attribute one utterance.

        Args:
            text:             Final transcript text.
            provider_speaker: Role reported by a diarizing backend, if any.

        Returns:
            The attributed Speaker, also recorded as the new last speaker.
        """
        speaker: Optional[Speaker] = None
        if provider_speaker is not None:
            try:
                speaker = Speaker(provider_speaker)
            except ValueError:
                logger.debug("Ignoring unknown provider speaker label %r", provider_speaker)

        if speaker is None:
            speaker = classify_speaker(text, self.last_speaker)

        self.last_speaker = speaker
        return speaker

    def reset(self, initial: Speaker = Speaker.DOCTOR) -> None:
        self.last_speaker = Speaker(initial)
