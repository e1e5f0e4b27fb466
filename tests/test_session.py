"""
tests/test_session.py
======================
Recognition Session Tests

Drives RecognitionSession with in-memory adapters created by a recording
factory, so no backend or network is touched.

Test categories:
    1. ENTRIES — final results become attributed entries, interim results
       do not
    2. LIFECYCLE — idempotent stop, double start, capture failures,
       fallback to the next provider, bounded stop with abort
    3. RESTARTS — spontaneous end, transient errors and escalation,
       ignored malformed responses, fatal errors
    4. LANGUAGE SWITCHING — relaunch of fixed-language providers, provider
       swap, provider-reported language
"""

import asyncio
import os
import sys
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cliniq.audio.capture import MicrophonePermission, PushAudioSource
from cliniq.config import SessionConfig
from cliniq.errors import (
    AlreadyRecording,
    MalformedBackendResponse,
    NoSpeechDetected,
    PermissionDenied,
    ProviderAuthError,
    ProviderExhausted,
    TransientProviderError,
)
from cliniq.stt.providers.base import ProviderAdapter
from cliniq.stt.registry import ProviderId
from cliniq.stt.session import RecognitionSession
from cliniq.stt.types import RecognitionResult, SessionPhase, Speaker

HINDI_TEXT = "मुझे सिर में दर्द है"
TAMIL_TEXT = "எனக்கு தலைவலி இருக்கிறது"

SETTLE = 0.1


# ===================================================================
# Fakes
# ===================================================================


class FakeAdapter(ProviderAdapter):
    """Adapter whose backend is the test itself."""

    def __init__(self, provider_id, config, audio_source, language, fail_start=None, hang_stop=False):
        super().__init__(config, audio_source, language)
        self.provider_id = provider_id
        self.fail_start = fail_start
        self.hang_stop = hang_stop
        self.flush_text = None
        self.opened = 0
        self.closed = 0
        self.aborted = 0

    async def _open(self, stream):
        self.opened += 1
        if self.fail_start is not None:
            raise self.fail_start

    async def _close(self):
        if self.hang_stop:
            await asyncio.sleep(3600)
        if self.flush_text:
            self.emit(self.flush_text)
        self.closed += 1

    async def _abort(self):
        self.aborted += 1

    def emit(self, transcript, is_final=True, **kwargs):
        self._emit_result(
            RecognitionResult(transcript, is_final, provider=self.provider_id, **kwargs)
        )

    def fail(self, error):
        self._emit_error(error)


class FakeFactory:
    """Adapter factory recording every adapter it creates."""

    def __init__(self):
        self.created = []
        self.fail = {}
        self.hang = set()

    def __call__(self, provider_id, config, audio_source, language, browser_bridge=None):
        pid = ProviderId(provider_id).value
        adapter = FakeAdapter(
            pid, config, audio_source, language,
            fail_start=self.fail.get(pid),
            hang_stop=pid in self.hang,
        )
        self.created.append(adapter)
        return adapter

    @property
    def last(self):
        return self.created[-1]


class SessionTestCase(unittest.IsolatedAsyncioTestCase):

    credentials = {"openai": "test-key"}
    config_overrides = {}

    def make_session(self, **overrides):
        options = dict(
            credentials=self.credentials,
            restart_backoff=0.01,
            stop_timeout=0.2,
        )
        options.update(self.config_overrides)
        options.update(overrides)
        self.config = SessionConfig(**options)
        self.source = PushAudioSource()
        self.factory = FakeFactory()
        self.entries = []
        self.interims = []
        self.errors = []
        self.languages = []
        self.statuses = []
        self.session = RecognitionSession(
            self.config,
            self.source,
            adapter_factory=self.factory,
            on_entry=self.entries.append,
            on_interim=self.interims.append,
            on_error=self.errors.append,
            on_language=self.languages.append,
            on_status=self.statuses.append,
        )
        return self.session

    async def asyncSetUp(self):
        self.make_session()

    async def asyncTearDown(self):
        await self.session.aclose()


# ===================================================================
# 1. ENTRIES
# ===================================================================


class TestEntries(SessionTestCase):

    async def test_final_result_creates_patient_entry(self):
        await self.session.start("en-US")
        self.factory.last.emit("I have chest pain")

        self.assertEqual(len(self.entries), 1)
        entry = self.entries[0]
        self.assertEqual(entry.speaker, Speaker.PATIENT)
        self.assertEqual(entry.text, "I have chest pain")
        self.assertEqual(entry.confidence, 85)
        self.assertEqual(entry.language, "en")
        self.assertTrue(entry.id.startswith("whisper-"))
        self.assertEqual(self.session.state.entry_count, 1)

    async def test_interim_result_is_not_an_entry(self):
        await self.session.start("en-US")
        self.factory.last.emit("I have", is_final=False)

        self.assertEqual(self.entries, [])
        self.assertEqual(self.interims, ["I have"])

    async def test_blank_final_result_ignored(self):
        await self.session.start("en-US")
        self.factory.last.emit("   ")
        self.assertEqual(self.entries, [])

    async def test_provider_speaker_label_preferred(self):
        await self.session.start("en-US")
        self.factory.last.emit("I have chest pain", speaker=Speaker.DOCTOR)
        self.assertEqual(self.entries[0].speaker, Speaker.DOCTOR)

    async def test_result_flushed_during_stop_is_kept(self):
        await self.session.start("en-US")
        adapter = self.factory.last
        adapter.flush_text = "The pain started yesterday"
        await self.session.stop()

        self.assertEqual([e.text for e in self.entries], ["The pain started yesterday"])

        # Retired adapters are unwired
        adapter.emit("late result")
        self.assertEqual(len(self.entries), 1)

    async def test_failing_consumer_callback_does_not_break_session(self):
        def explode(entry):
            raise RuntimeError("consumer bug")

        self.session.on_entry = explode
        await self.session.start("en-US")
        self.factory.last.emit("I have chest pain")
        self.assertTrue(self.session.is_active)


# ===================================================================
# 2. LIFECYCLE
# ===================================================================


class TestLifecycle(SessionTestCase):

    async def test_start_runs_best_provider(self):
        await self.session.start("en-US")
        self.assertTrue(self.session.is_active)
        self.assertEqual(self.session.state.active_provider, "whisper")
        self.assertTrue(self.session.state.is_recording)
        self.assertTrue(self.source.is_open)
        self.assertEqual(self.statuses[-1]["phase"], "active")

    async def test_stop_before_start_is_noop(self):
        await self.session.stop()
        self.assertEqual(self.session.state.phase, SessionPhase.IDLE)
        self.assertEqual(self.factory.created, [])

    async def test_stop_is_idempotent(self):
        await self.session.start("en-US")
        await self.session.stop()
        await self.session.stop()

        adapter = self.factory.last
        self.assertEqual(adapter.closed, 1)
        self.assertFalse(adapter.is_started)
        self.assertFalse(self.source.is_open)
        self.assertEqual(self.session.state.phase, SessionPhase.IDLE)
        self.assertFalse(self.session.state.is_recording)

    async def test_double_start_rejected(self):
        await self.session.start("en-US")
        with self.assertRaises(AlreadyRecording):
            await self.session.start("en-US")
        self.assertEqual(len(self.factory.created), 1)

    async def test_restart_after_stop(self):
        await self.session.start("en-US")
        await self.session.stop()
        await self.session.start("en-US")
        self.assertTrue(self.session.is_active)
        self.assertEqual(len(self.factory.created), 2)

    async def test_permission_denied(self):
        self.source.set_permission(MicrophonePermission.DENIED)
        with self.assertRaises(PermissionDenied):
            await self.session.start("en-US")

        self.assertEqual(self.session.state.phase, SessionPhase.ERROR)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], PermissionDenied)
        self.assertFalse(self.source.is_open)

    async def test_no_credentials(self):
        self.make_session(credentials={})
        with self.assertRaises(ProviderExhausted):
            await self.session.start("en-US")
        self.assertIsInstance(self.errors[0], ProviderExhausted)
        self.assertEqual(self.session.state.phase, SessionPhase.ERROR)

    async def test_falls_back_when_first_provider_fails(self):
        self.make_session(credentials={"openai": "k", "sarvam": "k"})
        self.factory.fail["whisper"] = TransientProviderError("whisper down")
        await self.session.start("en-US")

        self.assertEqual([a.provider_id for a in self.factory.created], ["whisper", "sarvam"])
        self.assertEqual(self.session.state.active_provider, "sarvam")
        self.assertTrue(self.source.is_open)
        self.assertEqual(self.errors, [])

    async def test_all_providers_failing_exhausts(self):
        self.make_session(credentials={"openai": "k", "sarvam": "k"})
        self.factory.fail["whisper"] = TransientProviderError("whisper down")
        self.factory.fail["sarvam"] = TransientProviderError("sarvam down")
        with self.assertRaises(ProviderExhausted):
            await self.session.start("en-US")
        self.assertFalse(self.source.is_open)

    async def test_hanging_stop_is_aborted(self):
        self.factory.hang.add("whisper")
        await self.session.start("en-US")
        await self.session.stop()

        adapter = self.factory.last
        self.assertEqual(adapter.aborted, 1)
        self.assertFalse(self.source.is_open)
        self.assertEqual(self.session.state.phase, SessionPhase.IDLE)

    async def test_context_manager_stops(self):
        async with self.session as session:
            await session.start("en-US")
        self.assertFalse(self.source.is_open)


# ===================================================================
# 3. RESTARTS
# ===================================================================


class TestRestarts(SessionTestCase):

    async def test_spontaneous_end_restarts_once(self):
        await self.session.start("en-US")
        first = self.factory.last
        await first._end_spontaneously()
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 2)
        self.assertEqual(self.session.state.restart_count, 1)
        self.assertTrue(self.factory.last.is_started)
        self.assertTrue(self.session.is_active)

    async def test_end_during_stop_does_not_restart(self):
        await self.session.start("en-US")
        await self.session.stop()
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.session.state.restart_count, 0)

    async def test_stop_during_backoff_cancels_restart(self):
        self.make_session(restart_backoff=0.05)
        await self.session.start("en-US")
        await self.factory.last._end_spontaneously()
        await self.session.stop()
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.session.state.restart_count, 0)
        self.assertEqual(self.session.state.phase, SessionPhase.IDLE)
        self.assertFalse(self.source.is_open)

    async def test_restart_skipped_when_manually_stopped_before_backoff_ends(self):
        self.make_session(restart_backoff=0.05)
        await self.session.start("en-US")
        await self.factory.last._end_spontaneously()
        # Flag set without cancelling the pending restart timer
        self.session._manually_stopped = True
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.session.state.restart_count, 0)

    async def test_transient_error_restarts(self):
        await self.session.start("en-US")
        self.factory.last.fail(TransientProviderError("503"))
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 2)
        self.assertTrue(self.session.is_active)
        self.assertEqual(self.errors, [])

    async def test_transient_errors_escalate_after_limit(self):
        self.make_session(max_restart_attempts=2)
        await self.session.start("en-US")
        for _ in range(3):
            self.factory.last.fail(TransientProviderError("network"))
            await asyncio.sleep(SETTLE)

        self.assertEqual(self.session.state.phase, SessionPhase.ERROR)
        self.assertEqual(len(self.errors), 1)
        self.assertTrue(self.errors[0].fatal)
        self.assertFalse(self.source.is_open)

    async def test_final_result_resets_error_count(self):
        self.make_session(max_restart_attempts=1)
        await self.session.start("en-US")
        self.factory.last.fail(TransientProviderError("network"))
        await asyncio.sleep(SETTLE)
        self.factory.last.emit("Let me examine you")
        self.factory.last.fail(TransientProviderError("network"))
        await asyncio.sleep(SETTLE)

        self.assertTrue(self.session.is_active)
        self.assertEqual(self.errors, [])

    async def test_no_speech_does_not_count(self):
        self.make_session(max_restart_attempts=0)
        await self.session.start("en-US")
        self.factory.last.fail(NoSpeechDetected("No speech detected."))
        await asyncio.sleep(SETTLE)

        self.assertTrue(self.session.is_active)
        self.assertEqual(self.session.state.restart_count, 1)

    async def test_malformed_response_ignored(self):
        await self.session.start("en-US")
        self.factory.last.fail(MalformedBackendResponse("bad json"))
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertTrue(self.session.is_active)
        self.assertEqual(self.errors, [])

    async def test_fatal_error_does_not_restart(self):
        await self.session.start("en-US")
        adapter = self.factory.last
        adapter.fail(ProviderAuthError("401"))
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.session.state.phase, SessionPhase.ERROR)
        self.assertIsInstance(self.errors[0], ProviderAuthError)
        self.assertEqual(self.errors[0].provider, "whisper")
        self.assertFalse(adapter.is_started)
        self.assertFalse(self.source.is_open)


# ===================================================================
# 4. LANGUAGE SWITCHING
# ===================================================================


class TestLanguageSwitching(SessionTestCase):

    async def test_fixed_language_provider_relaunched(self):
        self.make_session(credentials={"sarvam": "k"})
        await self.session.start("en-US")
        first = self.factory.last
        first.emit(HINDI_TEXT)
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.entries[0].language, "hi")
        self.assertEqual(self.languages, ["hi"])
        self.assertEqual(len(self.factory.created), 2)
        second = self.factory.last
        self.assertEqual(second.provider_id, "sarvam")
        self.assertEqual(second.language, "hi-IN")
        self.assertFalse(first.is_started)
        self.assertEqual(self.session.state.current_language, "hi-IN")
        self.assertEqual(self.session.state.restart_count, 0)

    async def test_switch_back_after_language_change(self):
        self.make_session(credentials={"sarvam": "k"})
        await self.session.start("en-US")
        self.factory.last.emit(HINDI_TEXT)
        await asyncio.sleep(SETTLE)
        self.factory.last.emit("I have chest pain since morning")
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.languages, ["hi", "en"])
        self.assertEqual(self.session.state.current_language, "en-US")
        self.assertEqual(self.factory.last.language, "en-US")
        self.assertEqual(len(self.factory.created), 3)

    async def test_provider_swapped_for_unsupported_language(self):
        base = SessionConfig(credentials={"sarvam": "k"}, restart_backoff=0.01, stop_timeout=0.2)
        self.make_session(credentials=base.with_browser_speech(True).credentials)
        await self.session.start("en-US")
        self.assertEqual(self.factory.last.provider_id, "browser")

        self.factory.last.emit(TAMIL_TEXT)
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.factory.last.provider_id, "sarvam")
        self.assertEqual(self.factory.last.language, "ta-IN")
        self.assertEqual(self.session.state.active_provider, "sarvam")
        self.assertEqual(self.languages, ["ta"])

    async def test_auto_detecting_provider_kept(self):
        await self.session.start("en-US")
        self.factory.last.emit(HINDI_TEXT)
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.factory.last.language, "hi-IN")
        self.assertEqual(self.session.state.current_language, "hi-IN")

    async def test_short_fragment_does_not_switch(self):
        await self.session.start("en-US")
        self.factory.last.emit("दर्द")
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.languages, [])
        self.assertEqual(self.session.state.current_language, "en-US")

    async def test_auto_detection_disabled(self):
        self.make_session(credentials={"sarvam": "k"}, auto_detect_language=False)
        await self.session.start("en-US")
        self.factory.last.emit(HINDI_TEXT)
        await asyncio.sleep(SETTLE)

        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.languages, [])

    async def test_provider_reported_language_keeps_best_provider(self):
        await self.session.start("en-US")
        self.factory.last._emit_language("hi")
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.session.state.current_language, "hi-IN")
        self.assertEqual(self.languages, ["hi"])
        self.assertEqual(len(self.factory.created), 1)
        self.assertEqual(self.factory.last.language, "hi-IN")

    async def test_provider_reported_language_reruns_selector(self):
        self.make_session(credentials={"deepgram": "k", "sarvam": "k"})
        await self.session.start("en-US")
        first = self.factory.last
        self.assertEqual(first.provider_id, "deepgram")

        # Batch backends report the window language before its results
        first._emit_language("ta")
        first.emit(TAMIL_TEXT, language="ta")
        await asyncio.sleep(SETTLE)

        self.assertEqual(self.entries[0].language, "ta")
        self.assertEqual(self.languages, ["ta"])
        self.assertEqual(self.session.state.current_language, "ta-IN")
        self.assertEqual(self.session.state.active_provider, "sarvam")
        self.assertEqual(self.factory.last.provider_id, "sarvam")
        self.assertEqual(self.factory.last.language, "ta-IN")
        self.assertFalse(first.is_started)


if __name__ == "__main__":
    unittest.main()
