"""Tests for the batched transcript correction queue."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from meetlive.services.meeting import correction
from meetlive.services.meeting.correction import CorrectionQueue, GeminiTranscriptCorrector
from meetlive.services.meeting.errors import CorrectionError, MissingConfigurationError


class SlowCorrector:
    def __init__(self, replies: list[list[str]] | None = None, *, delay: float = 0.05) -> None:
        self.replies = list(replies or [])
        self.delay = delay
        self.batches: list[list[str]] = []
        self.active = 0
        self.max_active = 0

    async def correct(self, lines):
        self.batches.append(list(lines))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if self.replies:
            return self.replies.pop(0)
        return list(lines)


class FailingCorrector:
    async def correct(self, lines):
        raise CorrectionError("model unavailable")


def _recorder():
    applied: list[tuple[str, str]] = []
    return applied, lambda segment_id, text: applied.append((segment_id, text))


@pytest.mark.asyncio
async def test_applies_changed_lines_by_position():
    applied, on_corrected = _recorder()
    corrector = SlowCorrector([["La reunión funciona.", "Sin cambios aquí."]], delay=0)
    queue = CorrectionQueue(corrector, on_corrected, delay_seconds=0.01)

    queue.enqueue("seg-1", "La reunión fun ciona.")
    queue.enqueue("seg-2", "Sin cambios aquí.")
    await asyncio.sleep(0.05)

    assert corrector.batches == [["La reunión fun ciona.", "Sin cambios aquí."]]
    assert applied == [("seg-1", "La reunión funciona.")]


@pytest.mark.asyncio
async def test_only_one_batch_in_flight():
    applied, on_corrected = _recorder()
    corrector = SlowCorrector(delay=0.1)
    queue = CorrectionQueue(corrector, on_corrected, delay_seconds=0.01)

    queue.enqueue("seg-1", "primer texto largo")
    await asyncio.sleep(0.03)
    assert queue.corrections_in_flight == 1
    queue.enqueue("seg-2", "segundo texto largo")
    queue.enqueue("seg-3", "tercer texto largo")
    await asyncio.sleep(0.3)

    assert corrector.batches == [
        ["primer texto largo"],
        ["segundo texto largo", "tercer texto largo"],
    ]
    assert corrector.max_active == 1
    assert queue.max_concurrent_batches == 1
    await queue.aclose()


@pytest.mark.asyncio
async def test_short_or_missing_lines_are_ignored():
    applied, on_corrected = _recorder()
    corrector = SlowCorrector([["ok"]], delay=0)
    queue = CorrectionQueue(corrector, on_corrected, delay_seconds=0.01)

    queue.enqueue("seg-1", "texto original")
    queue.enqueue("seg-2", "otro texto original")
    await asyncio.sleep(0.05)

    assert applied == []


@pytest.mark.asyncio
async def test_failure_leaves_originals():
    applied, on_corrected = _recorder()
    queue = CorrectionQueue(FailingCorrector(), on_corrected, delay_seconds=0.01)

    queue.enqueue("seg-1", "texto original largo")
    await asyncio.sleep(0.05)

    assert applied == []
    assert queue.corrections_in_flight == 0


@pytest.mark.asyncio
async def test_aclose_cancels_pending_work():
    applied, on_corrected = _recorder()
    corrector = SlowCorrector(delay=0)
    queue = CorrectionQueue(corrector, on_corrected, delay_seconds=0.05)

    queue.enqueue("seg-1", "texto original largo")
    await queue.aclose()
    queue.enqueue("seg-2", "llega tarde")
    await asyncio.sleep(0.1)

    assert corrector.batches == []
    assert queue.pending == []


def test_gemini_corrector_requires_key(monkeypatch):
    monkeypatch.setattr(
        correction, "get_settings", lambda: SimpleNamespace(google_api_key=None, correction_model="m")
    )
    with pytest.raises(MissingConfigurationError):
        GeminiTranscriptCorrector()


@pytest.mark.asyncio
async def test_gemini_corrector_splits_reply_lines(monkeypatch):
    calls = []

    class FakeModels:
        def generate_content(self, **kwargs):
            calls.append(kwargs)
            return SimpleNamespace(text="Primera línea\n\n Segunda línea \n")

    class FakeClient:
        def __init__(self, api_key):
            self.api_key = api_key
            self.models = FakeModels()

    monkeypatch.setattr(correction.genai, "Client", FakeClient)
    corrector = GeminiTranscriptCorrector(api_key="k", model_name="gemini-test")

    lines = await corrector.correct(["primera linea", "segunda linea"])

    assert lines == ["Primera línea", "Segunda línea"]
    assert calls[0]["model"] == "gemini-test"
    assert "primera linea\nsegunda linea" in calls[0]["contents"]
