"""
tests/test_selector.py
=======================
Provider Registry & Selector Tests

Test categories:
    1. REGISTRY — descriptor immutability, closed adapter mapping
    2. SCORING — the weighted score of each capability
    3. SELECTION — credential filtering, ties, real-time restriction,
       ProviderExhausted
"""

import dataclasses
import os
import sys
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cliniq.audio.capture import PushAudioSource
from cliniq.config import SessionConfig
from cliniq.errors import ProviderExhausted
from cliniq.stt.providers.browser import BrowserSpeechAdapter
from cliniq.stt.providers.sarvam_client import SarvamAdapter
from cliniq.stt.registry import (
    ADAPTER_CLASSES,
    PROVIDER_REGISTRY,
    Cost,
    ProviderDescriptor,
    ProviderId,
    create_adapter,
    get_descriptor,
)
from cliniq.stt.selector import ProviderSelector, score_provider


def _descriptor(provider_id, accuracy, medical, auto, cost, languages=("en-US",), credential="key"):
    return ProviderDescriptor(
        provider_id=provider_id,
        name=provider_id.value,
        languages=frozenset(languages),
        accuracy=accuracy,
        real_time=True,
        diarization=False,
        medical_terms=medical,
        auto_detection=auto,
        cost=cost,
        credential=credential,
    )


# Provider A: accurate, medical, medium cost. Provider B: cheaper, free.
PROVIDER_A = _descriptor(ProviderId.ASSEMBLYAI, 0.95, True, False, Cost.MEDIUM, credential="a")
PROVIDER_B = _descriptor(ProviderId.BROWSER, 0.85, False, False, Cost.FREE, credential="b")


# ===================================================================
# 1. REGISTRY
# ===================================================================


class TestRegistry(unittest.TestCase):

    def test_every_provider_has_an_adapter(self):
        self.assertEqual(set(ADAPTER_CLASSES), set(ProviderId))
        self.assertEqual({d.provider_id for d in PROVIDER_REGISTRY}, set(ProviderId))

    def test_descriptors_are_immutable(self):
        descriptor = get_descriptor("assemblyai")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            descriptor.accuracy = 0.1

    def test_unknown_provider_rejected(self):
        with self.assertRaises(ValueError):
            get_descriptor("watson")

    def test_create_adapter(self):
        config = SessionConfig(credentials={"sarvam": "key"})
        source = PushAudioSource()
        adapter = create_adapter(ProviderId.SARVAM, config, source, "hi-IN")
        self.assertIsInstance(adapter, SarvamAdapter)
        self.assertEqual(adapter.language, "hi-IN")
        self.assertFalse(adapter.is_started)

        browser = create_adapter("browser", config, source, "en-US")
        self.assertIsInstance(browser, BrowserSpeechAdapter)
        self.assertFalse(browser.is_supported())


# ===================================================================
# 2. SCORING
# ===================================================================


class TestScoring(unittest.TestCase):

    def test_scenario_medical_provider_beats_free_provider(self):
        self.assertEqual(score_provider(PROVIDER_A, "en-US", auto_detect=True), 140.0)
        self.assertEqual(score_provider(PROVIDER_B, "en-US", auto_detect=True), 120.0)

    def test_auto_detection_bonus_only_when_enabled(self):
        auto = dataclasses.replace(PROVIDER_A, auto_detection=True)
        self.assertEqual(score_provider(auto, "en-US", auto_detect=True), 155.0)
        self.assertEqual(score_provider(auto, "en-US", auto_detect=False), 140.0)

    def test_language_match_on_base_code(self):
        self.assertEqual(score_provider(PROVIDER_B, "en-GB", auto_detect=False), 120.0)
        self.assertEqual(score_provider(PROVIDER_B, "hi-IN", auto_detect=False), 95.0)

    def test_cost_bonus(self):
        high = dataclasses.replace(PROVIDER_B, cost=Cost.HIGH)
        low = dataclasses.replace(PROVIDER_B, cost=Cost.LOW)
        self.assertEqual(score_provider(high, "fr-FR", auto_detect=False), 75.0)
        self.assertEqual(score_provider(low, "fr-FR", auto_detect=False), 90.0)


# ===================================================================
# 3. SELECTION
# ===================================================================


class TestSelection(unittest.TestCase):

    def test_selects_highest_score(self):
        config = SessionConfig(credentials={"a": "1", "b": "1"})
        selector = ProviderSelector(config, registry=(PROVIDER_B, PROVIDER_A))
        self.assertIs(selector.select("en-US"), PROVIDER_A)

    def test_uncredentialed_providers_excluded(self):
        config = SessionConfig(credentials={"b": "1"})
        selector = ProviderSelector(config, registry=(PROVIDER_A, PROVIDER_B))
        self.assertIs(selector.select("en-US"), PROVIDER_B)

    def test_empty_credentials_excluded(self):
        config = SessionConfig(credentials={"a": "", "b": "1"})
        selector = ProviderSelector(config, registry=(PROVIDER_A, PROVIDER_B))
        self.assertEqual([d.provider_id for d in selector.candidates()], [ProviderId.BROWSER])

    def test_ties_broken_by_registry_order(self):
        twin = dataclasses.replace(PROVIDER_A, provider_id=ProviderId.WHISPER)
        config = SessionConfig(credentials={"a": "1"})
        self.assertIs(ProviderSelector(config, registry=(PROVIDER_A, twin)).select("en-US"), PROVIDER_A)
        self.assertIs(ProviderSelector(config, registry=(twin, PROVIDER_A)).select("en-US"), twin)

    def test_no_credentials_raises_provider_exhausted(self):
        selector = ProviderSelector(SessionConfig())
        with self.assertRaises(ProviderExhausted):
            selector.select("en-US")

    def test_require_real_time_excludes_batch_providers(self):
        config = SessionConfig(
            credentials={"assemblyai": "k", "openai": "k", "google": "ws://proxy"},
            require_real_time=True,
        )
        self.assertEqual(ProviderSelector(config).select("en-US").provider_id, ProviderId.GOOGLE)

    def test_allowed_subset(self):
        config = SessionConfig(credentials={"assemblyai": "k", "sarvam": "k"})
        selector = ProviderSelector(config, allowed=["sarvam"])
        self.assertEqual(selector.select("hi-IN").provider_id, ProviderId.SARVAM)

    def test_default_registry_prefers_assemblyai_for_english(self):
        config = SessionConfig(credentials={"assemblyai": "k", "openai": "k", "sarvam": "k"})
        ranked = ProviderSelector(config).rank("en-US")
        self.assertEqual(ranked[0][0].provider_id, ProviderId.ASSEMBLYAI)
        scores = [score for _, score in ranked]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_browser_requires_client_support(self):
        config = SessionConfig()
        self.assertEqual(ProviderSelector(config).candidates(), [])
        with_browser = config.with_browser_speech(True)
        self.assertEqual(
            ProviderSelector(with_browser).select("en-US").provider_id, ProviderId.BROWSER,
        )


if __name__ == "__main__":
    unittest.main()
