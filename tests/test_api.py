"""
tests/test_api.py
==================
Consultation API Tests

Exercises the FastAPI app end to end with TestClient. The WebSocket tests
drive the browser recognizer path, which needs no credentials: the test
plays the client's Web Speech recognizer by answering recognizer commands
with speech_result / speech_end messages.

Test categories:
    1. HTTP — /health, /api/v1/providers
    2. WEBSOCKET SESSION — start, transcript, auto-restart, stop
    3. WEBSOCKET ERRORS — invalid messages, permission, no provider
"""

import os
import sys
import unittest

from fastapi.testclient import TestClient

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cliniq.api.consultation import app
from cliniq.config import SessionConfig
from cliniq.stt.registry import create_adapter


def receive_until(ws, predicate, limit=30):
    """Read messages until one matches ``predicate``; return it and everything seen."""
    seen = []
    for _ in range(limit):
        message = ws.receive_json()
        seen.append(message)
        if predicate(message):
            return message, seen
    raise AssertionError(f"Expected message never arrived; received {seen}")


def is_command(action):
    return lambda m: m.get("type") == "recognizer" and m.get("action") == action


def is_type(msg_type):
    return lambda m: m.get("type") == msg_type


class ApiTestCase(unittest.TestCase):

    config = SessionConfig(credentials={}, restart_backoff=0.01, stop_timeout=0.5)

    def setUp(self):
        app.state.config = self.config
        app.state.adapter_factory = create_adapter
        self.client = TestClient(app)

    def tearDown(self):
        app.state.config = None


# ===================================================================
# 1. HTTP
# ===================================================================


class TestHttpEndpoints(ApiTestCase):

    config = SessionConfig(credentials={"openai": "sk-test"})

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_providers(self):
        response = self.client.get("/api/v1/providers", params={"language": "hi"})
        self.assertEqual(response.status_code, 200)
        body = response.json()

        self.assertEqual(body["language"], "hi-IN")
        providers = {p["id"]: p for p in body["providers"]}
        self.assertEqual(
            list(providers), ["assemblyai", "google", "whisper", "deepgram", "sarvam", "browser"],
        )
        self.assertTrue(providers["whisper"]["available"])
        self.assertFalse(providers["assemblyai"]["available"])
        self.assertFalse(providers["browser"]["available"])
        # 93 + 20 medical + 15 auto-detect + 25 language + 5 low cost
        self.assertEqual(providers["whisper"]["score"], 158.0)


# ===================================================================
# 2. WEBSOCKET SESSION
# ===================================================================


class TestConsultationSocket(ApiTestCase):

    def start(self, ws, **fields):
        message = {"type": "start", "language": "en-US", "microphone": "granted", "web_speech": True}
        message.update(fields)
        ws.send_json(message)

    def test_transcript_flow(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            self.start(ws)
            command, _ = receive_until(ws, is_command("start"))
            self.assertEqual(command["language"], "en-US")
            receive_until(ws, lambda m: m.get("type") == "status" and m["phase"] == "active")

            ws.send_json({"type": "speech_result", "transcript": "I have", "is_final": False})
            interim, _ = receive_until(ws, is_type("interim"))
            self.assertEqual(interim["text"], "I have")

            ws.send_json({
                "type": "speech_result", "transcript": "I have chest pain",
                "is_final": True, "confidence": 0.92,
            })
            message, _ = receive_until(ws, is_type("transcript"))
            entry = message["entry"]
            self.assertEqual(entry["speaker"], "patient")
            self.assertEqual(entry["text"], "I have chest pain")
            self.assertEqual(entry["confidence"], 92)
            self.assertEqual(entry["language"], "en")
            self.assertIn("voiceSignature", entry)

    def test_recognizer_restarted_after_end(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            self.start(ws)
            receive_until(ws, is_command("start"))

            ws.send_json({"type": "speech_end"})
            receive_until(ws, is_command("abort"))
            command, _ = receive_until(ws, is_command("start"))
            self.assertEqual(command["language"], "en-US")
            status, _ = receive_until(
                ws,
                lambda m: m.get("type") == "status"
                and m["restart_count"] == 1
                and m["connection_status"] == "connected",
            )
            self.assertEqual(status["provider"], "browser")

    def test_stop(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            self.start(ws)
            receive_until(ws, is_command("start"))

            ws.send_bytes(b"\x00\x00" * 160)
            ws.send_json({"type": "stop"})
            receive_until(ws, is_command("stop"))
            ws.send_json({"type": "speech_end"})
            status, _ = receive_until(ws, lambda m: m.get("type") == "status" and m["phase"] == "idle")
            self.assertFalse(status["is_recording"])
            self.assertEqual(status["connection_status"], "disconnected")

    def test_double_start_rejected(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            self.start(ws)
            receive_until(ws, is_command("start"))
            self.start(ws)
            error, _ = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "already_recording")

    def test_language_switch_reported(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            self.start(ws)
            receive_until(ws, is_command("start"))

            ws.send_json({"type": "speech_result", "transcript": "मुझे सिर में दर्द है", "is_final": True})
            message, _ = receive_until(ws, is_type("transcript"))
            self.assertEqual(message["entry"]["language"], "hi")
            language, _ = receive_until(ws, is_type("language"))
            self.assertEqual(language["language"], "hi")
            # Browser recognition has a fixed language and is restarted in Hindi
            command, _ = receive_until(ws, is_command("start"))
            self.assertEqual(command["language"], "hi-IN")


# ===================================================================
# 3. WEBSOCKET ERRORS
# ===================================================================


class TestConsultationErrors(ApiTestCase):

    def test_invalid_json(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            ws.send_text("not json")
            error, _ = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "invalid_message")

    def test_unknown_type(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            ws.send_json({"type": "pause"})
            error, _ = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "invalid_message")

    def test_microphone_denied(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            ws.send_json({"type": "start", "microphone": "denied", "web_speech": True})
            error, seen = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "permission_denied")
            statuses = [m for m in seen if m.get("type") == "status"]
            self.assertEqual(statuses[-1]["phase"], "error")
            self.assertFalse(statuses[-1]["is_recording"])

    def test_no_provider_available(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            ws.send_json({"type": "start", "web_speech": False})
            error, _ = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "provider_exhausted")

    def test_stop_before_start(self):
        with self.client.websocket_connect("/api/v1/consultation") as ws:
            ws.send_json({"type": "stop"})
            ws.send_text("not json")
            error, _ = receive_until(ws, is_type("error"))
            self.assertEqual(error["code"], "invalid_message")


if __name__ == "__main__":
    unittest.main()
