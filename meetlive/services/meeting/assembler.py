"""Assemble streamed transcription fragments into punctuation-bounded segments."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable

from meetlive.core.logging import get_logger
from meetlive.models.meeting import TranscriptSegment
from meetlive.services.meeting.correction import CorrectionQueue
from meetlive.services.meeting.text_cleanup import quick_clean

logger = get_logger(__name__)

# Sentence-final punctuation, a comma before a capitalized word, or any line break.
SEGMENT_BOUNDARY = re.compile(r"(?<=[.!?])\s+|(?<=,)\s+(?=[A-ZÁÉÍÓÚÑ¿¡])|[\r\n]+")
_SENTENCE_END = re.compile(r"[.!?…]['\"»)]*$")
_ATTACHED_PUNCTUATION = re.compile(r"^[.,!?;:…»)\]]+")

SegmentSink = Callable[..., TranscriptSegment | None]


class TranscriptAssembler:
    """Turn raw text fragments into finished segments.

    ``emit_segment(text, speaker, language=..., confidence=...)`` receives
    cleaned text plus the attributes of the latest fragment, and returns the
    segment it created, or ``None`` when it dropped it. Emitted segments that
    are not assistant replies are queued for asynchronous correction.
    """

    def __init__(
        self,
        *,
        emit_segment: SegmentSink,
        flush_delay_seconds: float = 2.0,
        min_segment_chars: int = 3,
        correction_queue: CorrectionQueue | None = None,
        correction_min_chars: int = 10,
    ) -> None:
        self._emit_segment = emit_segment
        self._flush_delay = flush_delay_seconds
        self._min_chars = min_segment_chars
        self._correction_queue = correction_queue
        self._correction_min_chars = correction_min_chars
        self._buffer = ""
        self._speaker: str | None = None
        self._language: str | None = None
        self._confidence: float | None = None
        self._flush_handle: asyncio.TimerHandle | None = None
        self.flush_timers_armed_total = 0

    @property
    def pending_text(self) -> str:
        return self._buffer

    @property
    def armed_flush_timers(self) -> int:
        """Number of live flush timers; never more than one."""

        return int(self._flush_handle is not None and not self._flush_handle.cancelled())

    def add_fragment(
        self,
        text: str,
        *,
        speaker: str | None = None,
        language: str | None = None,
        confidence: float | None = None,
    ) -> list[TranscriptSegment]:
        """Append a fragment and emit every completed piece."""

        fragment = (text or "").strip()
        if not fragment:
            return []

        self._cancel_flush_timer()
        if speaker:
            self._speaker = speaker
        self._language = language
        self._confidence = confidence

        if not self._buffer:
            self._buffer = fragment
        elif _ATTACHED_PUNCTUATION.match(fragment):
            self._buffer += fragment
        else:
            self._buffer += " " + fragment

        pieces = [piece.strip() for piece in SEGMENT_BOUNDARY.split(self._buffer)]
        tail = pieces.pop()
        # A buffer ending on sentence-final punctuation is complete already.
        if _SENTENCE_END.search(tail):
            pieces.append(tail)
            tail = ""

        emitted: list[TranscriptSegment] = []
        carry = ""
        for piece in pieces:
            candidate = f"{carry} {piece}".strip() if carry else piece
            if len(candidate) <= self._min_chars:
                # Too short to stand alone; join the next piece instead of dropping it.
                carry = candidate
                continue
            carry = ""
            segment = self._emit(candidate)
            if segment is not None:
                emitted.append(segment)

        if carry:
            tail = f"{carry} {tail}".strip()
        self._buffer = tail

        if self._buffer:
            self._arm_flush_timer()
        return emitted

    def flush(self, *, force: bool = False) -> TranscriptSegment | None:
        """Emit the pending buffer as a segment.

        Buffers at or below the minimum length are kept pending, unless
        ``force`` is set, in which case they are discarded as noise.
        """

        self._cancel_flush_timer()
        pending = self._buffer.strip()
        if len(pending) <= self._min_chars:
            if force:
                self._buffer = ""
            return None
        self._buffer = ""
        return self._emit(pending)

    def reset(self) -> None:
        self._cancel_flush_timer()
        self._buffer = ""
        self._speaker = None
        self._language = None
        self._confidence = None

    def close(self) -> TranscriptSegment | None:
        """Cancel the flush timer and emit whatever is still pending."""

        return self.flush(force=True)

    def _emit(self, raw_text: str) -> TranscriptSegment | None:
        cleaned = quick_clean(raw_text)
        if len(cleaned) <= self._min_chars:
            return None
        segment = self._emit_segment(
            cleaned, self._speaker, language=self._language, confidence=self._confidence
        )
        if segment is None:
            return None
        if (
            self._correction_queue is not None
            and not segment.is_assistant_reply
            and len(segment.text) > self._correction_min_chars
        ):
            self._correction_queue.enqueue(segment.id, segment.text)
        return segment

    def _arm_flush_timer(self) -> None:
        self._cancel_flush_timer()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self._flush_delay, self._on_flush_timer)
        self.flush_timers_armed_total += 1

    def _cancel_flush_timer(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _on_flush_timer(self) -> None:
        self._flush_handle = None
        logger.debug(
            "Flushing transcript buffer",
            extra={
                "component": "transcript_assembler",
                "operation": "flush_timer",
                "context_data": {"pending_chars": len(self._buffer)},
            },
        )
        # Nothing followed within the delay; a short leftover is noise.
        self.flush(force=True)
