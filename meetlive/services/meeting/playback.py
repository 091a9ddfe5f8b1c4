"""Gapless scheduling of the assistant's spoken replies."""

from __future__ import annotations

import base64
import binascii
import time
from collections import deque
from collections.abc import Callable

import numpy as np

from meetlive.core.logging import get_logger
from meetlive.services.meeting.contracts import AudioOutput, AudioOutputFactory
from meetlive.services.meeting.events import AssistantAudio

logger = get_logger(__name__)

OUTPUT_SAMPLE_RATE_HZ = 24_000
MIN_CHUNK_BYTES = 100
SCHEDULE_EPSILON_SECONDS = 0.01


def decode_pcm16(data: bytes) -> np.ndarray:
    """Decode little-endian PCM16 mono bytes into float32 samples in [-1, 1)."""

    if len(data) % 2:
        data = data + b"\x00"
    samples = np.frombuffer(data, dtype="<i2")
    return samples.astype(np.float32) / 32768.0


def encode_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples * 32768.0, -32768, 32767)
    return clipped.astype("<i2").tobytes()


class EventAudioOutput:
    """Output that forwards scheduled buffers to the client as events.

    The client plays each buffer at ``start_at`` seconds on a clock whose zero
    is the creation of this output; a new output means a new clock.
    """

    def __init__(
        self,
        publish: Callable[[AssistantAudio], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._publish = publish
        self._clock = clock
        self._origin = clock()
        self.closed = False

    def current_time(self) -> float:
        return self._clock() - self._origin

    def schedule(self, samples: np.ndarray, sample_rate: int, start_at: float) -> None:
        if self.closed:
            return
        self._publish(
            AssistantAudio(
                pcm16_b64=base64.b64encode(encode_pcm16(samples)).decode("ascii"),
                sample_rate_hz=sample_rate,
                start_at=start_at,
                duration=len(samples) / sample_rate,
            )
        )

    def close(self) -> None:
        self.closed = True


class AudioPlaybackQueue:
    """Queue decoded buffers and schedule each right after the previous one.

    Each buffer starts at ``max(now + epsilon, next_play_time)``. The output
    device is created lazily on first use and closed on ``stop``; a later
    ``enqueue`` creates a fresh one.
    """

    def __init__(
        self,
        output_factory: AudioOutputFactory,
        *,
        sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
        epsilon_seconds: float = SCHEDULE_EPSILON_SECONDS,
    ) -> None:
        self._output_factory = output_factory
        self.sample_rate_hz = sample_rate_hz
        self.epsilon_seconds = epsilon_seconds
        self._output: AudioOutput | None = None
        self._queue: deque[np.ndarray] = deque()
        self.next_play_time = 0.0
        self.outputs_created = 0
        self.scheduled: list[tuple[float, float]] = []

    @property
    def output(self) -> AudioOutput | None:
        return self._output

    def enqueue_base64(self, encoded: str) -> bool:
        try:
            data = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError):
            logger.warning(
                "Invalid base64 assistant audio",
                extra={"component": "audio_playback", "operation": "decode"},
            )
            return False
        return self.enqueue_pcm(data)

    def enqueue_pcm(self, data: bytes) -> bool:
        """Decode and schedule one PCM16 chunk. Tiny chunks are ignored."""

        if len(data) < MIN_CHUNK_BYTES:
            return False
        self._queue.append(decode_pcm16(data))
        self._drain()
        return True

    def _ensure_output(self) -> AudioOutput:
        if self._output is None:
            self._output = self._output_factory()
            self.outputs_created += 1
            self.next_play_time = 0.0
        return self._output

    def _drain(self) -> None:
        output = self._ensure_output()
        while self._queue:
            samples = self._queue.popleft()
            duration = len(samples) / self.sample_rate_hz
            start_at = max(output.current_time() + self.epsilon_seconds, self.next_play_time)
            output.schedule(samples, self.sample_rate_hz, start_at)
            self.next_play_time = start_at + duration
            self.scheduled.append((start_at, duration))

    def stop(self) -> None:
        """Drop queued audio and tear down the output device."""

        self._queue.clear()
        self.next_play_time = 0.0
        output = self._output
        self._output = None
        if output is not None:
            try:
                output.close()
            except Exception:
                logger.exception(
                    "Failed to close audio output",
                    extra={"component": "audio_playback", "operation": "stop"},
                )
