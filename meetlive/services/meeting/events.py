"""Typed events published by the session orchestrator."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, ClassVar

from meetlive.core.logging import get_logger
from meetlive.models.meeting import MeetingSession, MeetingStatus, TranscriptSegment

logger = get_logger(__name__)


@dataclass
class MeetingEvent:
    type: ClassVar[str] = "event"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass
class SegmentUpdated(MeetingEvent):
    """New segment, or a correction of an existing one when ``is_update`` is set."""

    type: ClassVar[str] = "transcript.segment"
    segment: TranscriptSegment
    is_update: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "is_update": self.is_update, **self.segment.to_payload()}


@dataclass
class AssistantReply(MeetingEvent):
    type: ClassVar[str] = "assistant.reply"
    text: str
    segment_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text, "segment_id": self.segment_id}


@dataclass
class AssistantAudio(MeetingEvent):
    """One assistant speech buffer scheduled on the playback clock."""

    type: ClassVar[str] = "assistant.audio"
    pcm16_b64: str
    sample_rate_hz: int
    start_at: float
    duration: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "pcm16_b64": self.pcm16_b64,
            "sample_rate_hz": self.sample_rate_hz,
            "start_at": round(self.start_at, 4),
            "duration": round(self.duration, 4),
        }


@dataclass
class StatusChanged(MeetingEvent):
    type: ClassVar[str] = "status.changed"
    previous: MeetingStatus
    current: MeetingStatus

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "previous": self.previous.value, "status": self.current.value}


@dataclass
class SpeakerChanged(MeetingEvent):
    type: ClassVar[str] = "speaker.changed"
    speaker: str | None

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "speaker": self.speaker}


@dataclass
class ParticipantsUpdated(MeetingEvent):
    type: ClassVar[str] = "participants.updated"
    participants: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "participants": list(self.participants)}


@dataclass
class MeetingWarning(MeetingEvent):
    """Degraded functionality that does not stop the session."""

    type: ClassVar[str] = "warning"
    code: str
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "code": self.code, "message": self.message}


@dataclass
class MeetingFailure(MeetingEvent):
    type: ClassVar[str] = "error"
    code: str
    message: str
    fatal: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "code": self.code,
            "message": self.message,
            "fatal": self.fatal,
        }


@dataclass
class SessionEnded(MeetingEvent):
    type: ClassVar[str] = "session.ended"
    session: MeetingSession

    def to_payload(self) -> dict[str, Any]:
        session = self.session
        return {
            "type": self.type,
            "session_id": session.id,
            "started_at": session.started_at.isoformat(),
            "ended_at": session.ended_at.isoformat() if session.ended_at else None,
            "participants": list(session.participants),
            "summary": session.summary,
            "summary_kind": session.summary_kind.value if session.summary_kind else None,
        }


Listener = Callable[[MeetingEvent], Awaitable[Any] | None]


class MeetingEventEmitter:
    """Fan events out to listeners in publish order.

    Synchronous listeners run inline. Coroutine listeners are awaited one at a
    time by a single dispatcher task so their delivery order matches ``emit``
    order.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._pending: asyncio.Queue[tuple[Awaitable[Any], MeetingEvent]] | None = None
        self._dispatcher: asyncio.Task[None] | None = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: MeetingEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception:
                logger.exception(
                    "Meeting event listener failed",
                    extra={
                        "component": "meeting_events",
                        "operation": "emit",
                        "context_data": {"event_type": event.type},
                    },
                )
                continue
            if inspect.isawaitable(result):
                # Listener returned a coroutine; hand it to the ordered dispatcher.
                self._enqueue(result, event)

    def _enqueue(self, awaitable: Awaitable[Any], event: MeetingEvent) -> None:
        if self._pending is None:
            self._pending = asyncio.Queue()
        self._pending.put_nowait((awaitable, event))
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(self._dispatch())

    async def _dispatch(self) -> None:
        assert self._pending is not None
        while not self._pending.empty():
            awaitable, event = self._pending.get_nowait()
            try:
                await awaitable
            except Exception:
                logger.exception(
                    "Async meeting event listener failed",
                    extra={
                        "component": "meeting_events",
                        "operation": "dispatch",
                        "context_data": {"event_type": event.type},
                    },
                )

    async def drain(self) -> None:
        """Wait until every queued coroutine listener has run."""

        while self._dispatcher is not None and not self._dispatcher.done():
            await asyncio.shield(self._dispatcher)
