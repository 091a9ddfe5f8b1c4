"""Energy-based voice activity detection for PCM16 audio."""

from __future__ import annotations

from enum import Enum

import numpy as np


class VoiceActivity(str, Enum):
    VOICE_START = "voice_start"
    VOICE_ACTIVE = "voice_active"
    VOICE_END = "voice_end"
    SILENCE = "silence"


def rms_energy(samples: np.ndarray) -> float:
    """RMS of int16 samples normalized to [-1, 1]."""

    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float64) / 32768.0
    return float(np.sqrt(np.mean(normalized * normalized)))


class VoiceActivityGate:
    """Hangover state machine over per-frame RMS energy.

    Speech starts after ``min_voice_frames`` consecutive frames above the
    threshold and ends after ``min_silence_frames`` consecutive frames below it.
    """

    def __init__(
        self,
        threshold: float = 0.01,
        min_voice_frames: int = 3,
        min_silence_frames: int = 10,
    ) -> None:
        self.threshold = threshold
        self.min_voice_frames = min_voice_frames
        self.min_silence_frames = min_silence_frames
        self.reset()

    def reset(self) -> None:
        self.is_active = False
        self.voice_frames = 0
        self.silence_frames = 0
        self.last_energy = 0.0
        self.last_event = VoiceActivity.SILENCE

    def process_frame(self, data: bytes) -> bool:
        """Feed one PCM16 frame and return whether speech is active."""

        if len(data) % 2:
            data = data[:-1]
        samples = np.frombuffer(data, dtype="<i2")
        return self.process_samples(samples)

    def process_samples(self, samples: np.ndarray) -> bool:
        energy = rms_energy(samples)
        self.last_energy = energy

        if energy > self.threshold:
            self.voice_frames += 1
            self.silence_frames = 0
            if not self.is_active and self.voice_frames >= self.min_voice_frames:
                self.is_active = True
                self.last_event = VoiceActivity.VOICE_START
            elif self.is_active:
                self.last_event = VoiceActivity.VOICE_ACTIVE
        else:
            self.silence_frames += 1
            self.voice_frames = 0
            if self.is_active and self.silence_frames >= self.min_silence_frames:
                self.is_active = False
                self.last_event = VoiceActivity.VOICE_END
            elif not self.is_active:
                self.last_event = VoiceActivity.SILENCE

        return self.is_active
