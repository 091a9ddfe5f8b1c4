"""Tests for the client-fed audio source and speaker tracker."""

from __future__ import annotations

import numpy as np
import pytest

from meetlive.services.meeting.audio_source import ClientAudioSource, apply_gain
from meetlive.services.meeting.speakers import ClientSpeakerTracker


def _pcm(*values: int) -> bytes:
    return np.array(values, dtype="<i2").tobytes()


def test_apply_gain_scales_and_clips():
    assert apply_gain(_pcm(1000, -1000), 0.5) == _pcm(500, -500)
    assert apply_gain(_pcm(30000), 2.0) == _pcm(32767)
    data = _pcm(7, 8)
    assert apply_gain(data, 1.0) is data


@pytest.mark.asyncio
async def test_frames_flow_only_while_running_and_unmuted():
    source = ClientAudioSource()
    chunks: list[bytes] = []
    frame = _pcm(10, 20)

    assert source.push_frame(frame) is False
    await source.start(chunks.append, lambda exc: None)
    assert source.push_frame(frame) is True
    source.set_muted(True)
    assert source.push_frame(frame) is False
    source.set_muted(False)
    assert source.push_frame(b"") is False
    await source.stop()
    assert source.push_frame(frame) is False

    assert chunks == [frame]
    assert source.frames_received == 5
    assert source.frames_dropped == 4


@pytest.mark.asyncio
async def test_volume_applies_per_source():
    source = ClientAudioSource()
    chunks: list[bytes] = []
    await source.start(chunks.append, lambda exc: None)

    source.set_volume("mic", 0.5)
    source.set_volume("tab", 7)
    source.push_frame(_pcm(1000), "mic")
    source.push_frame(_pcm(1000), "tab")

    assert chunks == [_pcm(500), _pcm(1000)]
    assert source.volumes["tab"] == 1.0
    with pytest.raises(ValueError):
        source.set_volume("speaker", 0.3)


@pytest.mark.asyncio
async def test_downstream_failure_reports_error():
    source = ClientAudioSource()
    errors: list[Exception] = []

    def broken(chunk):
        raise RuntimeError("routing failed")

    await source.start(broken, errors.append)

    assert source.push_frame(_pcm(1)) is False
    assert str(errors[0]) == "routing failed"

    source.report_error(OSError("capture lost"))
    assert isinstance(errors[1], OSError)


@pytest.mark.asyncio
async def test_speaker_tracker_dedupes_reports():
    tracker = ClientSpeakerTracker()
    speakers: list[str | None] = []
    rosters = []
    tracker.report_speaker("Ignored before start")

    await tracker.start(speakers.append, rosters.append)
    assert tracker.running is True
    tracker.report_speaker(" Ana ")
    tracker.report_speaker("Ana")
    tracker.report_speaker("")
    tracker.report_participants(["Ana", " Luis ", "", "Ana"])
    await tracker.stop()
    tracker.report_speaker("Luis")

    assert speakers == ["Ana", None]
    assert rosters[0].participants == ["Ana", "Luis"]
    assert tracker.running is False
