"""Buffered speech-to-text backends for meeting audio."""

from __future__ import annotations

import asyncio
import io
import re
import wave
from abc import ABC, abstractmethod
from contextlib import suppress

from meetlive.core.logging import get_logger
from meetlive.core.settings import Settings
from meetlive.services.meeting.contracts import ErrorCallback, ResultCallback, TranscriptionResult
from meetlive.services.meeting.errors import BackendError
from meetlive.services.transcription.vad import VoiceActivityGate

logger = get_logger(__name__)

INPUT_SAMPLE_RATE_HZ = 16_000
SPEAKER_LABEL_PREFIX = "Participante"
SPEAKER_LABEL_PATTERN = re.compile(
    r"^\s*\[?(Hablante|Speaker|Participante)\s*(\d+)\]?\s*:?\s*", re.IGNORECASE
)


def parse_speaker_label(text: str) -> tuple[str | None, str]:
    """Split a leading ``Speaker 2:`` style label off transcribed text.

    Labels in any of the recognized spellings come back as ``Participante N``.

    >>> parse_speaker_label("[Hablante 1] hola")
    ('Participante 1', 'hola')
    """

    match = SPEAKER_LABEL_PATTERN.match(text)
    if not match:
        return None, text
    label = f"{SPEAKER_LABEL_PREFIX} {match.group(2)}"
    return label, text[match.end():].strip()


def pcm16_to_wav(pcm: bytes, sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ) -> bytes:
    """Wrap mono little-endian PCM16 in a 44-byte-header WAV container."""

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate_hz)
        wav.writeframes(pcm)
    return buffer.getvalue()


class TranscriptionBackend(ABC):
    """Interface implemented by every speech-to-text backend."""

    name: str = "backend"

    @classmethod
    def is_available(cls, settings: Settings) -> bool:
        return True

    @classmethod
    def from_settings(cls, settings: Settings) -> TranscriptionBackend:
        return cls()

    @abstractmethod
    async def start(self, on_result: ResultCallback, on_error: ErrorCallback) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    def add_audio_data(self, chunk: bytes) -> None: ...


class BufferedTranscriptionBackend(TranscriptionBackend):
    """Accumulate PCM and transcribe it on a fixed interval.

    Buffers shorter than ``min_audio_seconds`` wait for the next tick. With a
    voice gate, buffers with no detected speech are discarded unsent. Provider
    calls are blocking and run in a worker thread; one at a time.
    """

    interval_seconds: float = 2.0
    min_audio_seconds: float = 1.0

    def __init__(
        self,
        *,
        interval_seconds: float | None = None,
        min_audio_seconds: float | None = None,
        vad: VoiceActivityGate | None = None,
        sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ,
    ) -> None:
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        if min_audio_seconds is not None:
            self.min_audio_seconds = min_audio_seconds
        self.vad = vad
        self.sample_rate_hz = sample_rate_hz
        self._chunks: list[bytes] = []
        self._has_voice = False
        self._processing = False
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._on_result: ResultCallback | None = None
        self._on_error: ErrorCallback | None = None
        self.requests_sent = 0
        self.buffers_skipped_silent = 0

    @property
    def running(self) -> bool:
        return self._running

    def buffered_seconds(self) -> float:
        return sum(len(chunk) for chunk in self._chunks) / 2 / self.sample_rate_hz

    async def start(self, on_result: ResultCallback, on_error: ErrorCallback) -> None:
        self._on_result = on_result
        self._on_error = on_error
        self._chunks = []
        self._has_voice = False
        self._processing = False
        if self.vad is not None:
            self.vad.reset()
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Transcription backend started",
            extra={
                "component": "transcription",
                "operation": "start",
                "context_data": {"backend": self.name, "interval": self.interval_seconds},
            },
        )

    async def stop(self) -> None:
        self._running = False
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._chunks = []
        self._on_result = None
        self._on_error = None

    def add_audio_data(self, chunk: bytes) -> None:
        if not self._running:
            raise BackendError(f"{self.name} backend is not running")
        if self.vad is not None and self.vad.process_frame(chunk):
            self._has_voice = True
        self._chunks.append(chunk)

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.process_buffer()

    async def process_buffer(self) -> TranscriptionResult | None:
        """Transcribe everything buffered so far, if there is enough of it."""

        if self._processing or not self._chunks:
            return None
        if self.buffered_seconds() < self.min_audio_seconds:
            return None
        if self.vad is not None and not self._has_voice:
            self.buffers_skipped_silent += 1
            self._chunks = []
            return None

        pcm = b"".join(self._chunks)
        self._chunks = []
        self._has_voice = False
        self._processing = True
        try:
            self.requests_sent += 1
            result = await asyncio.to_thread(self.transcribe_pcm, pcm)
        except Exception as exc:
            logger.warning(
                "Transcription request failed",
                extra={
                    "component": "transcription",
                    "operation": "process_buffer",
                    "context_data": {"backend": self.name, "error": str(exc)},
                },
            )
            if self._on_error is not None:
                self._on_error(exc)
            return None
        finally:
            self._processing = False

        if result is None or not result.text.strip():
            return None
        if result.speaker is None:
            result.speaker, result.text = parse_speaker_label(result.text)
        if result.text and self._on_result is not None:
            self._on_result(result)
        return result

    @abstractmethod
    def transcribe_pcm(self, pcm: bytes) -> TranscriptionResult | None:
        """Blocking provider call for one PCM16 buffer."""
