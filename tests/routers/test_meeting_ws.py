"""Tests for the meeting websocket and health endpoints."""

from __future__ import annotations

import base64
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from meetlive.core.settings import Settings
from meetlive.routers import meeting_ws
from meetlive.routers.meeting_models import MEETING_CLIENT_EVENT_ADAPTER
from tests.services.meeting._meeting_fakes import (
    FakeLinkServer,
    FakeSummaryGenerator,
    InMemoryMeetingStore,
    build_orchestrator,
)

WS_PATH = "/api/meetings/ws"


class Harness:
    def __init__(self) -> None:
        self.server = FakeLinkServer()
        self.store = InMemoryMeetingStore()
        self.summarizer = FakeSummaryGenerator("Resumen breve")
        self.app = FastAPI()
        self.app.include_router(meeting_ws.router, prefix="/api")
        self.app.dependency_overrides[meeting_ws.get_orchestrator_builder] = lambda: self.build
        self.client = TestClient(self.app)

    def build(self, audio_source, speaker_tracker, events):
        return build_orchestrator(
            audio_source=audio_source,
            store=self.store,
            server=self.server,
            events=events,
            speaker_tracker=speaker_tracker,
            summary_generator=self.summarizer,
        )


def _receive_until(websocket, event_type: str) -> list[dict]:
    received = []
    while True:
        message = websocket.receive_json()
        received.append(message)
        if message["type"] == event_type:
            return received


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        time.sleep(0.01)


def test_client_event_adapter_defaults():
    start = MEETING_CLIENT_EVENT_ADAPTER.validate_python({"type": "session.start", "user_id": "u1"})
    assert start.platform == "google_meet"

    end = MEETING_CLIENT_EVENT_ADAPTER.validate_python({"type": "session.end"})
    assert end.generate_summary is True

    summary = MEETING_CLIENT_EVENT_ADAPTER.validate_python({"type": "summary.request"})
    assert summary.kind.value == "detailed"


def test_health_reports_configuration(monkeypatch):
    settings = Settings(
        _env_file=None,
        google_api_key=None,
        openai_api_key="o",
        transcription_backends="gemini,whisper",
    )
    monkeypatch.setattr(meeting_ws, "get_settings", lambda: settings)
    harness = Harness()

    response = harness.client.get("/api/meetings/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ready"] is False
    assert body["google_api_configured"] is False
    assert body["openai_api_configured"] is True
    assert body["transcription_backends"] == ["whisper"]
    assert body["readiness_reasons"] == ["GOOGLE_API_KEY is not configured"]


def test_invalid_messages_are_reported_without_closing():
    harness = Harness()

    with harness.client.websocket_connect(WS_PATH) as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json()["code"] == "invalid_payload"

        websocket.send_json({"type": "unknown.event"})
        assert websocket.receive_json()["code"] == "validation_error"

        websocket.send_json({"type": "audio.frame", "pcm16_b64": "%%%"})
        assert websocket.receive_json()["code"] == "invalid_audio"

        websocket.send_json({"type": "assistant.invoke", "prompt": "hola"})
        error = websocket.receive_json()
        assert error["code"] == "no_active_session"
        assert error["fatal"] is False


def test_session_lifecycle_over_websocket():
    harness = Harness()
    frame = b"\x01\x00" * 160

    with harness.client.websocket_connect(WS_PATH) as websocket:
        websocket.send_json(
            {"type": "session.start", "user_id": "user-1", "tab_id": 3, "title": "Daily"}
        )
        started = _receive_until(websocket, "session.started")[-1]
        assert started["session_id"] in harness.store.sessions

        websocket.send_json(
            {"type": "audio.frame", "pcm16_b64": base64.b64encode(frame).decode(), "seq": 1}
        )
        _wait_for(lambda: harness.server.all_audio() == [frame])

        harness.server.latest.push(
            {"serverContent": {"inputTranscription": {"text": "Cerramos el sprint hoy."}}}
        )
        segment = _receive_until(websocket, "transcript.segment")[-1]
        assert segment["text"] == "Cerramos el sprint hoy."

        websocket.send_json({"type": "session.end"})
        ended = _receive_until(websocket, "session.ended")[-1]
        assert ended["summary"] == "Resumen breve"
        assert ended["summary_kind"] == "detailed"
        with pytest.raises(WebSocketDisconnect):
            websocket.receive_json()

    assert len(harness.store.ended) == 1
    assert harness.server.latest.closed is True


def test_summary_request_returns_summary_event():
    harness = Harness()

    with harness.client.websocket_connect(WS_PATH) as websocket:
        websocket.send_json({"type": "session.start", "user_id": "user-1"})
        _receive_until(websocket, "session.started")
        harness.server.latest.push(
            {"serverContent": {"inputTranscription": {"text": "Ana prepara la demo."}}}
        )
        _receive_until(websocket, "transcript.segment")

        websocket.send_json({"type": "summary.request", "kind": "action_items"})
        summary = _receive_until(websocket, "summary")[-1]

        assert summary == {"type": "summary", "kind": "action_items", "text": "Resumen breve"}
        websocket.send_json({"type": "session.end", "generate_summary": False})
        _receive_until(websocket, "session.ended")


def test_speaker_updates_reach_transcript():
    harness = Harness()

    with harness.client.websocket_connect(WS_PATH) as websocket:
        websocket.send_json({"type": "session.start", "user_id": "user-1"})
        _receive_until(websocket, "session.started")

        websocket.send_json({"type": "speaker.update", "speaker": "Marta"})
        assert _receive_until(websocket, "speaker.changed")[-1]["speaker"] == "Marta"
        websocket.send_json({"type": "participants.update", "participants": ["Marta", "Leo"]})
        roster = _receive_until(websocket, "participants.updated")[-1]
        assert roster["participants"] == ["Marta", "Leo"]

        harness.server.latest.push(
            {"serverContent": {"inputTranscription": {"text": "Yo me encargo del informe."}}}
        )
        segment = _receive_until(websocket, "transcript.segment")[-1]
        assert segment["speaker"] == "Marta"

        websocket.send_json({"type": "session.end", "generate_summary": False})
        _receive_until(websocket, "session.ended")


def test_disconnect_ends_session_without_summary():
    harness = Harness()

    with harness.client.websocket_connect(WS_PATH) as websocket:
        websocket.send_json({"type": "session.start", "user_id": "user-1"})
        _receive_until(websocket, "session.started")

    _wait_for(lambda: len(harness.store.ended) == 1)
    assert harness.store.ended[0]["summary"] is None
    assert harness.summarizer.calls == []


def test_builder_failure_closes_with_fatal_error():
    harness = Harness()

    def failing_builder(audio_source, speaker_tracker, events):
        raise meeting_ws.MissingConfigurationError("GOOGLE_API_KEY is not configured")

    harness.app.dependency_overrides[meeting_ws.get_orchestrator_builder] = lambda: failing_builder

    with harness.client.websocket_connect(WS_PATH) as websocket:
        error = websocket.receive_json()
        assert error["code"] == "missing_configuration"
        assert error["fatal"] is True
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()
        assert exc_info.value.code == 1011
