import numpy as np
import pytest

from meetlive.services.transcription.vad import VoiceActivity, VoiceActivityGate, rms_energy

LOUD = np.full(160, 8000, dtype="<i2").tobytes()
QUIET = np.zeros(160, dtype="<i2").tobytes()


def test_rms_energy():
    assert rms_energy(np.array([], dtype="<i2")) == 0.0
    assert rms_energy(np.full(10, 16384, dtype="<i2")) == pytest.approx(0.5)


def test_speech_starts_after_consecutive_voice_frames():
    gate = VoiceActivityGate(threshold=0.01, min_voice_frames=3, min_silence_frames=2)

    assert gate.process_frame(LOUD) is False
    assert gate.process_frame(LOUD) is False
    assert gate.process_frame(LOUD) is True
    assert gate.last_event == VoiceActivity.VOICE_START
    assert gate.process_frame(LOUD) is True
    assert gate.last_event == VoiceActivity.VOICE_ACTIVE


def test_silence_interrupts_voice_count():
    gate = VoiceActivityGate(threshold=0.01, min_voice_frames=2, min_silence_frames=2)

    gate.process_frame(LOUD)
    gate.process_frame(QUIET)
    assert gate.process_frame(LOUD) is False
    assert gate.voice_frames == 1


def test_hangover_keeps_speech_through_short_pauses():
    gate = VoiceActivityGate(threshold=0.01, min_voice_frames=1, min_silence_frames=3)
    gate.process_frame(LOUD)

    assert gate.process_frame(QUIET) is True
    assert gate.process_frame(QUIET) is True
    assert gate.process_frame(QUIET) is False
    assert gate.last_event == VoiceActivity.VOICE_END
    gate.process_frame(QUIET)
    assert gate.last_event == VoiceActivity.SILENCE


def test_odd_length_frames_and_reset():
    gate = VoiceActivityGate(threshold=0.01, min_voice_frames=1)
    assert gate.process_frame(LOUD + b"\x01") is True
    assert gate.last_energy > 0.2

    gate.reset()
    assert gate.is_active is False
    assert gate.last_event == VoiceActivity.SILENCE
