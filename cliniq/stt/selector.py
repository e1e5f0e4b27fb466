"""
cliniq/stt/selector.py
=======================
Provider Selector — ClinIQ

Responsibility:
    - Filter the registry down to providers whose credential is present
    - Score each candidate for a requested language and pick the best
    - Re-run on every detected language change so the session can swap

Scoring:
    accuracy × 100
    + 20 if the provider boosts medical vocabulary
    + 15 if it auto-detects language and auto-detection is enabled
    + 25 if it supports the requested language (matched on base code)
    + cost bonus: free +10, low +5, medium 0, high −10

The highest score wins; ties go to the provider listed first in the
registry.

This module does NOT:
    - Instantiate or start adapters (handled by cliniq.stt.session)
"""

import logging
from typing import Iterable, Optional

from cliniq.config import SessionConfig
from cliniq.errors import ProviderExhausted
from cliniq.stt.language_detector import base_language
from cliniq.stt.registry import PROVIDER_REGISTRY, Cost, ProviderDescriptor, ProviderId

logger = logging.getLogger("cliniq.stt.selector")

# ---------------------------------------------------------------------------
# Scoring weights
# ---------------------------------------------------------------------------

ACCURACY_WEIGHT: float = 100.0
MEDICAL_TERMS_BONUS: float = 20.0
AUTO_DETECTION_BONUS: float = 15.0
LANGUAGE_MATCH_BONUS: float = 25.0

COST_BONUS: dict[Cost, float] = {
    Cost.FREE: 10.0,
    Cost.LOW: 5.0,
    Cost.MEDIUM: 0.0,
    Cost.HIGH: -10.0,
}


def supports_language(descriptor: ProviderDescriptor, language: str) -> bool:
    wanted = base_language(language)
    return any(base_language(lang) == wanted for lang in descriptor.languages)


def score_provider(
    descriptor: ProviderDescriptor,
    language: str,
    auto_detect: bool,
) -> float:
    """Score one provider for ``language``. Pure function of its inputs."""
    score = descriptor.accuracy * ACCURACY_WEIGHT
    if descriptor.medical_terms:
        score += MEDICAL_TERMS_BONUS
    if descriptor.auto_detection and auto_detect:
        score += AUTO_DETECTION_BONUS
    if supports_language(descriptor, language):
        score += LANGUAGE_MATCH_BONUS
    score += COST_BONUS[descriptor.cost]
    return round(score, 4)


class ProviderSelector:
    """
    Chooses a provider for a session.

    Args:
        config:    Session configuration (credentials, auto-detect, real-time).
        registry:  Ordered descriptors; defaults to PROVIDER_REGISTRY.
        allowed:   Optional subset of provider ids to consider.
    """

    def __init__(
        self,
        config: SessionConfig,
        registry: Iterable[ProviderDescriptor] = PROVIDER_REGISTRY,
        allowed: Optional[Iterable[ProviderId | str]] = None,
    ):
        self.config = config
        self.registry = tuple(registry)
        self.allowed = None if allowed is None else {ProviderId(p) for p in allowed}

    def candidates(self) -> list[ProviderDescriptor]:
        """Providers eligible for selection, in registry order."""
        eligible = []
        for descriptor in self.registry:
            if self.allowed is not None and descriptor.provider_id not in self.allowed:
                continue
            if self.config.require_real_time and not descriptor.real_time:
                continue
            if not self.config.has_credential(descriptor.credential):
                continue
            eligible.append(descriptor)
        return eligible

    def rank(self, language: str) -> list[tuple[ProviderDescriptor, float]]:
        """All candidates with their scores, best first (stable on ties)."""
        scored = [
            (d, score_provider(d, language, self.config.auto_detect_language))
            for d in self.candidates()
        ]
        # sorted() is stable, so equal scores keep registry order
        return sorted(scored, key=lambda pair: pair[1], reverse=True)

    def select(self, language: str) -> ProviderDescriptor:
        """
        Pick the best provider for ``language``.

        Raises:
            ProviderExhausted: No credentialed provider is available.
        """
        ranked = self.rank(language)
        if not ranked:
            raise ProviderExhausted(
                "No speech recognition provider is configured. Set a provider "
                "API key or enable browser speech recognition."
            )

        best, best_score = ranked[0]
        logger.info(
            "Selected provider %s for %s (score %.1f; ranking: %s)",
            best.provider_id.value,
            language,
            best_score,
            ", ".join(f"{d.provider_id.value}={s:.1f}" for d, s in ranked),
        )
        return best
