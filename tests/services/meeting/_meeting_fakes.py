"""Shared fakes for meeting service tests."""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import Callable
from typing import Any

import websockets
from websockets.frames import Close

from meetlive.models.meeting import MeetingMode, MeetingSession
from meetlive.services.meeting.contracts import ParticipantsSnapshot, TranscriptionResult
from meetlive.services.meeting.errors import PersistenceError
from meetlive.services.meeting.events import MeetingEventEmitter
from meetlive.services.meeting.orchestrator import MeetingTimings, SessionOrchestrator
from meetlive.services.meeting.realtime_link import RealtimeLinkCallbacks, RealtimeModelLink


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, *, auto_setup: bool = True) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self._loop = asyncio.get_running_loop()
        if auto_setup:
            self.push({"setupComplete": {}})

    def _put(self, item: Any) -> None:
        # Router tests push frames from the TestClient's caller thread.
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self.incoming.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self.incoming.put_nowait, item)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("socket is closed")
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame: dict[str, Any]) -> None:
        self._put(json.dumps(frame))

    def server_close(self, code: int = 1006, reason: str = "") -> None:
        self.closed = True
        self._put(websockets.ConnectionClosed(Close(code, reason), None))

    def audio_payloads(self) -> list[bytes]:
        return [
            base64.b64decode(message["realtimeInput"]["mediaChunks"][0]["data"])
            for message in self.sent
            if "realtimeInput" in message
        ]

    def text_turns(self) -> list[str]:
        return [
            message["clientContent"]["turns"][0]["parts"][0]["text"]
            for message in self.sent
            if "clientContent" in message
        ]


class FakeLinkServer:
    """Hands out fake sockets to ``RealtimeModelLink`` and records every attempt."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.connect_urls: list[str] = []
        self.fail_next = 0
        self.auto_setup = True

    async def connect(self, url: str) -> FakeSocket:
        self.connect_urls.append(url)
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection refused")
        socket = FakeSocket(auto_setup=self.auto_setup)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]

    def all_audio(self) -> list[bytes]:
        return [payload for socket in self.sockets for payload in socket.audio_payloads()]

    def link_factory(self, api_key: str = "test-key") -> Callable[..., RealtimeModelLink]:
        def factory(callbacks: RealtimeLinkCallbacks, mode: MeetingMode) -> RealtimeModelLink:
            return RealtimeModelLink(
                callbacks,
                api_key=api_key,
                model="test-live-model",
                voice_name="Aoede",
                url="wss://live.test/ws",
                connect_timeout_seconds=1.0,
                setup_grace_seconds=0.2,
                pending_audio_max_chunks=500,
                connector=self.connect,
                mode=mode,
            )

        return factory


class InMemoryMeetingStore:
    def __init__(self) -> None:
        self.sessions: dict[str, MeetingSession] = {}
        self.saved: dict[str, dict[str, str]] = {}
        self.participants: dict[str, list[str]] = {}
        self.ended: list[dict[str, Any]] = []
        self.save_calls = 0
        self.fail_saves = 0

    async def create_session(self, session: MeetingSession) -> MeetingSession:
        self.sessions[session.id] = session
        return session

    async def add_transcript_batch(self, session_id, segments) -> None:
        self.save_calls += 1
        if self.fail_saves:
            self.fail_saves -= 1
            raise PersistenceError("database unavailable")
        bucket = self.saved.setdefault(session_id, {})
        for segment in segments:
            bucket[segment.id] = segment.text

    async def update_participants(self, session_id, participants) -> None:
        self.participants[session_id] = list(participants)

    async def end_session(self, session_id, *, ended_at, summary=None, summary_kind=None) -> None:
        self.ended.append(
            {
                "session_id": session_id,
                "ended_at": ended_at,
                "summary": summary,
                "summary_kind": summary_kind,
            }
        )


class FakeBackend:
    """Scriptable transcription backend."""

    def __init__(
        self, name: str = "fake", *, fail_on_start: bool = False, start_delay: float = 0.0
    ) -> None:
        self.name = name
        self.fail_on_start = fail_on_start
        self.start_delay = start_delay
        self.start_calls = 0
        self.chunks: list[bytes] = []
        self.started = False
        self.stopped = False
        self.on_result = None
        self.on_error = None

    async def start(self, on_result, on_error) -> None:
        self.start_calls += 1
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_on_start:
            raise RuntimeError(f"{self.name} unavailable")
        self.on_result = on_result
        self.on_error = on_error
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def add_audio_data(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def deliver(
        self,
        text: str,
        speaker: str | None = None,
        *,
        language: str | None = None,
        confidence: float | None = None,
    ) -> None:
        self.on_result(
            TranscriptionResult(
                text=text, speaker=speaker, language=language, confidence=confidence
            )
        )

    def fail(self, message: str = "backend crashed") -> None:
        self.on_error(RuntimeError(message))


class FakeSummaryGenerator:
    def __init__(self, text: str = "Resumen de la reunión", *, error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[tuple[str, Any]] = []

    async def generate(self, transcript_text, kind):
        self.calls.append((transcript_text, kind))
        if self.error is not None:
            raise self.error
        return self.text


class FakeCorrector:
    def __init__(self, fixes: dict[str, str] | None = None) -> None:
        self.fixes = fixes or {}
        self.batches: list[list[str]] = []

    async def correct(self, lines):
        self.batches.append(list(lines))
        return [self.fixes.get(line, line) for line in lines]


class FakeSpeakerTracker:
    def __init__(self) -> None:
        self.on_speaker = None
        self.on_participants = None
        self.stopped = 0

    async def start(self, on_speaker, on_participants) -> None:
        self.on_speaker = on_speaker
        self.on_participants = on_participants

    async def stop(self) -> None:
        self.stopped += 1

    def speaker(self, name: str | None) -> None:
        self.on_speaker(name)

    def roster(self, names: list[str]) -> None:
        self.on_participants(ParticipantsSnapshot(participants=names))


def fast_timings(**overrides: Any) -> MeetingTimings:
    values: dict[str, Any] = {
        "flush_delay_seconds": 0.05,
        "min_segment_chars": 3,
        "correction_delay_seconds": 0.02,
        "correction_min_chars": 10,
        "autosave_interval_seconds": 60.0,
        "max_session_seconds": 840.0,
        "refresh_buffer_seconds": 60.0,
        "session_check_interval_seconds": 60.0,
        "max_reconnect_attempts": 3,
        "reconnect_base_delay_seconds": 0.01,
    }
    values.update(overrides)
    return MeetingTimings(**values)


def build_orchestrator(
    *,
    audio_source,
    store: InMemoryMeetingStore,
    server: FakeLinkServer,
    api_key: str = "test-key",
    events: MeetingEventEmitter | None = None,
    timings: MeetingTimings | None = None,
    **kwargs: Any,
) -> SessionOrchestrator:
    return SessionOrchestrator(
        audio_source=audio_source,
        store=store,
        link_factory=server.link_factory(api_key=api_key),
        events=events or MeetingEventEmitter(),
        timings=timings or fast_timings(),
        language="es",
        **kwargs,
    )
