"""In-memory domain types for one live meeting session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class MeetingStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    TRANSCRIBING = "transcribing"
    LIA_RESPONDING = "lia_responding"
    PAUSED = "paused"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    ENDED = "ended"


TERMINAL_STATUSES = frozenset({MeetingStatus.ENDED, MeetingStatus.ERROR})


class MeetingMode(str, Enum):
    TRANSCRIPTION = "transcription"
    INTERACTIVE = "interactive"


class SummaryKind(str, Enum):
    SHORT = "short"
    DETAILED = "detailed"
    ACTION_ITEMS = "action_items"
    EXECUTIVE = "executive"


@dataclass
class MeetingSession:
    """One captured meeting, owned by the orchestrator while active."""

    id: str
    platform: str
    user_id: str
    tab_id: int | str | None = None
    title: str | None = None
    url: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None
    participants: list[str] = field(default_factory=list)
    detected_language: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    summary: str | None = None
    summary_kind: SummaryKind | None = None

    @property
    def is_closed(self) -> bool:
        return self.ended_at is not None


@dataclass
class TranscriptSegment:
    """One finished unit of transcript text.

    Segments are append-only once emitted; the correction pass may replace
    ``text`` once, keeping the same ``id``.
    """

    text: str
    timestamp: datetime
    offset_seconds: float
    speaker: str | None = None
    is_assistant_reply: bool = False
    is_assistant_invocation: bool = False
    language: str | None = None
    confidence: float | None = None
    corrected: bool = False
    id: str = field(default_factory=lambda: f"seg_{uuid4().hex}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "offset_seconds": round(self.offset_seconds, 3),
            "speaker": self.speaker,
            "text": self.text,
            "is_assistant_reply": self.is_assistant_reply,
            "is_assistant_invocation": self.is_assistant_invocation,
            "language": self.language,
            "confidence": self.confidence,
            "corrected": self.corrected,
        }


def new_session_id() -> str:
    return f"meeting_{uuid4().hex}"
