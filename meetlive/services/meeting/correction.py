"""Batched, best-effort correction of word-splitting errors in transcript segments."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress

from google import genai

from meetlive.core.logging import get_logger
from meetlive.core.settings import get_settings
from meetlive.services.meeting.contracts import TranscriptCorrector
from meetlive.services.meeting.errors import CorrectionError, MissingConfigurationError

logger = get_logger(__name__)

CORRECTION_PROMPT = """Fix ONLY transcription errors in the text below.
Words are sometimes split incorrectly (for example "fun cion a" should be "funciona").
Do NOT change the meaning, do NOT summarize, do NOT add extra punctuation.
Keep the original language.
Return ONLY the corrected text, one line per input line, in the same order:

{lines}"""


class GeminiTranscriptCorrector:
    """Correct transcript lines with a single Gemini text call per batch."""

    def __init__(self, api_key: str | None = None, model_name: str | None = None) -> None:
        settings = get_settings()
        api_key = api_key or settings.google_api_key
        if not api_key:
            raise MissingConfigurationError("Google API key is required for transcript correction")
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name or settings.correction_model

    async def correct(self, lines: list[str]) -> list[str]:
        prompt = CORRECTION_PROMPT.format(lines="\n".join(lines))
        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.model_name,
            contents=prompt,
            config={"temperature": 0.0, "max_output_tokens": 4_000},
        )
        text = response.text if hasattr(response, "text") else ""
        if not text:
            raise CorrectionError("Empty correction response")
        return [line.strip() for line in text.split("\n") if line.strip()]


CorrectionCallback = Callable[[str, str], None]


class CorrectionQueue:
    """Ordered ``(segment_id, text)`` queue drained by at most one batch at a time.

    Enqueueing (re)arms a batching timer unless a batch is already in flight;
    items queued during a batch wait for the next one, scheduled when the
    current batch finishes.
    """

    def __init__(
        self,
        corrector: TranscriptCorrector,
        on_corrected: CorrectionCallback,
        *,
        delay_seconds: float = 3.0,
        min_corrected_chars: int = 3,
    ) -> None:
        self._corrector = corrector
        self._on_corrected = on_corrected
        self._delay = delay_seconds
        self._min_corrected_chars = min_corrected_chars
        self._items: list[tuple[str, str]] = []
        self._timer: asyncio.TimerHandle | None = None
        self._batch_task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._closed = False
        self.batches_started = 0
        self.max_concurrent_batches = 0

    @property
    def pending(self) -> list[tuple[str, str]]:
        return list(self._items)

    @property
    def corrections_in_flight(self) -> int:
        return int(self._in_flight)

    def enqueue(self, segment_id: str, text: str) -> None:
        if self._closed:
            return
        self._items.append((segment_id, text))
        if not self._in_flight:
            self._arm_timer()

    async def aclose(self) -> None:
        """Stop scheduling batches and cancel any batch in flight."""

        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = self._batch_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._items.clear()

    def _arm_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._start_batch)

    def _start_batch(self) -> None:
        self._timer = None
        if self._closed or self._in_flight or not self._items:
            return
        self._batch_task = asyncio.get_running_loop().create_task(self.process_batch())

    async def process_batch(self) -> None:
        """Run one correction batch over everything queued so far."""

        if self._in_flight or not self._items:
            return

        self._in_flight = True
        self.batches_started += 1
        self.max_concurrent_batches = max(self.max_concurrent_batches, self.corrections_in_flight)
        batch = self._items
        self._items = []
        try:
            corrected = await self._corrector.correct([text for _, text in batch])
            for (segment_id, original), line in zip(batch, corrected, strict=False):
                line = line.strip()
                if line and line != original and len(line) > self._min_corrected_chars:
                    self._on_corrected(segment_id, line)
        except Exception as exc:
            # Correction is best-effort; originals stay as they are.
            logger.warning(
                "Transcript correction batch failed",
                extra={
                    "component": "transcript_correction",
                    "operation": "process_batch",
                    "context_data": {"batch_size": len(batch), "error": str(exc)},
                },
            )
        finally:
            self._in_flight = False
            if self._items and not self._closed:
                self._arm_timer()
