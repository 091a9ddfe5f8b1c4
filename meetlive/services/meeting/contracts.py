"""Narrow interfaces the session orchestrator depends on."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

import numpy as np

from meetlive.models.meeting import MeetingSession, SummaryKind, TranscriptSegment

ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class TranscriptionResult:
    """Best-effort text from a transcription backend; ``text`` may be empty."""

    text: str
    speaker: str | None = None
    language: str | None = None
    confidence: float | None = None


ResultCallback = Callable[[TranscriptionResult], None]


@dataclass
class ParticipantsSnapshot:
    participants: list[str] = field(default_factory=list)


SpeakerCallback = Callable[[str | None], None]
ParticipantsCallback = Callable[[ParticipantsSnapshot], None]


@runtime_checkable
class AudioSource(Protocol):
    """Delivers 16 kHz mono PCM16 chunks mixed from tab and microphone audio."""

    async def start(self, on_chunk: ChunkCallback, on_error: ErrorCallback) -> None: ...

    async def stop(self) -> None: ...

    def set_muted(self, muted: bool) -> None: ...

    def set_volume(self, source: str, level: float) -> None: ...


@runtime_checkable
class TranscriptionBackend(Protocol):
    name: str

    async def start(self, on_result: ResultCallback, on_error: ErrorCallback) -> None: ...

    async def stop(self) -> None: ...

    def add_audio_data(self, chunk: bytes) -> None: ...


BackendFactory = Callable[[], TranscriptionBackend]


@runtime_checkable
class SpeakerTracker(Protocol):
    async def start(
        self, on_speaker: SpeakerCallback, on_participants: ParticipantsCallback
    ) -> None: ...

    async def stop(self) -> None: ...


class MeetingStore(Protocol):
    """Persistence for sessions and transcript batches."""

    async def create_session(self, session: MeetingSession) -> MeetingSession: ...

    async def add_transcript_batch(
        self, session_id: str, segments: Sequence[TranscriptSegment]
    ) -> None: ...

    async def update_participants(self, session_id: str, participants: list[str]) -> None: ...

    async def end_session(
        self,
        session_id: str,
        *,
        ended_at: datetime,
        summary: str | None = None,
        summary_kind: SummaryKind | None = None,
    ) -> None: ...


class SummaryGenerator(Protocol):
    async def generate(self, transcript_text: str, kind: SummaryKind) -> str: ...


class TranscriptCorrector(Protocol):
    async def correct(self, lines: list[str]) -> list[str]: ...


class AudioOutput(Protocol):
    """Clocked output device that plays float32 mono buffers at scheduled times."""

    def current_time(self) -> float: ...

    def schedule(self, samples: np.ndarray, sample_rate: int, start_at: float) -> None: ...

    def close(self) -> None: ...


AudioOutputFactory = Callable[[], AudioOutput]
