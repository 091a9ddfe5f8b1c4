"""Audio source fed by frames the meeting client pushes over the websocket."""

from __future__ import annotations

import numpy as np

from meetlive.core.logging import get_logger
from meetlive.services.meeting.contracts import ChunkCallback, ErrorCallback

logger = get_logger(__name__)

AUDIO_SOURCES = ("tab", "mic", "mixed")


def apply_gain(data: bytes, gain: float) -> bytes:
    """Scale PCM16 samples by ``gain``, clipping to the int16 range."""

    if gain == 1.0:
        return data
    if len(data) % 2:
        data = data[:-1]
    samples = np.frombuffer(data, dtype="<i2").astype(np.float32) * gain
    return np.clip(samples, -32768, 32767).astype("<i2").tobytes()


class ClientAudioSource:
    """16 kHz PCM16 frames tagged ``tab``, ``mic`` or ``mixed`` by the client.

    Frames pushed while stopped or muted are dropped. Volumes are per source
    and clamped to [0, 1]; an already-mixed frame uses the ``mixed`` volume.
    """

    def __init__(self) -> None:
        self._on_chunk: ChunkCallback | None = None
        self._on_error: ErrorCallback | None = None
        self.running = False
        self.muted = False
        self.volumes = {source: 1.0 for source in AUDIO_SOURCES}
        self.frames_received = 0
        self.frames_dropped = 0

    async def start(self, on_chunk: ChunkCallback, on_error: ErrorCallback) -> None:
        self._on_chunk = on_chunk
        self._on_error = on_error
        self.running = True

    async def stop(self) -> None:
        self.running = False
        self._on_chunk = None
        self._on_error = None

    def set_muted(self, muted: bool) -> None:
        self.muted = muted

    def set_volume(self, source: str, level: float) -> None:
        if source not in self.volumes:
            raise ValueError(f"Unknown audio source: {source}")
        self.volumes[source] = min(1.0, max(0.0, float(level)))

    def push_frame(self, data: bytes, source: str = "mixed") -> bool:
        """Deliver one client frame downstream; False when it was dropped."""

        self.frames_received += 1
        on_chunk = self._on_chunk
        if not self.running or self.muted or on_chunk is None or not data:
            self.frames_dropped += 1
            return False
        try:
            chunk = apply_gain(data, self.volumes.get(source, 1.0))
            on_chunk(chunk)
        except Exception as exc:
            logger.exception(
                "Audio frame delivery failed",
                extra={
                    "component": "audio_source",
                    "operation": "push_frame",
                    "context_data": {"source": source, "bytes": len(data)},
                },
            )
            if self._on_error is not None:
                self._on_error(exc)
            return False
        return True

    def report_error(self, exc: Exception) -> None:
        """Surface a capture failure reported by the client."""

        if self._on_error is not None:
            self._on_error(exc)
