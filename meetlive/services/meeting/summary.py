"""Meeting summaries generated from the assembled transcript."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from google import genai
from tenacity import retry, stop_after_attempt, wait_exponential

from meetlive.core.logging import get_logger
from meetlive.core.settings import get_settings
from meetlive.models.meeting import SummaryKind, TranscriptSegment
from meetlive.services.meeting.errors import MissingConfigurationError

logger = get_logger(__name__)

EMPTY_TRANSCRIPT_SUMMARY = "There is no content to summarize."
DEFAULT_SPEAKER = "Participante"

SUMMARY_INSTRUCTIONS: dict[SummaryKind, str] = {
    SummaryKind.SHORT: "Summarize this meeting in 2-3 concise sentences:",
    SummaryKind.DETAILED: (
        "Provide a detailed summary of this meeting, including:\n"
        "- Main topics discussed\n"
        "- Decisions made\n"
        "- Action items\n"
        "- Next steps"
    ),
    SummaryKind.ACTION_ITEMS: (
        "Extract every action item and task mentioned in this meeting:\n"
        "- Who is responsible\n"
        "- What they must do\n"
        "- Deadline (if mentioned)\n"
        "Format: [ ] Owner: Task"
    ),
    SummaryKind.EXECUTIVE: (
        "Executive summary of the meeting:\n"
        "## Objective\n"
        "## Key points\n"
        "## Decisions\n"
        "## Next steps"
    ),
}


def format_transcript(segments: Iterable[TranscriptSegment], *, assistant_name: str = "Lia") -> str:
    """Render segments as ``[HH:MM] Speaker: text`` lines."""

    lines = []
    for segment in segments:
        clock = segment.timestamp.astimezone().strftime("%H:%M")
        speaker = segment.speaker or (assistant_name if segment.is_assistant_reply else DEFAULT_SPEAKER)
        lines.append(f"[{clock}] {speaker}: {segment.text}")
    return "\n".join(lines)


def build_summary_prompt(transcript_text: str, kind: SummaryKind) -> str:
    return f"{SUMMARY_INSTRUCTIONS[kind]}\n\nTranscript:\n{transcript_text}"


class GeminiSummaryGenerator:
    """Single-shot Gemini completion for meeting summaries."""

    def __init__(self, api_key: str | None = None, model_name: str | None = None) -> None:
        settings = get_settings()
        api_key = api_key or settings.google_api_key
        if not api_key:
            raise MissingConfigurationError("Google API key is required for meeting summaries")
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name or settings.summary_model

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=4, max=10))
    def _generate_sync(self, prompt: str) -> str:
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config={"temperature": 0.3, "max_output_tokens": 4_000},
        )
        text = response.text if hasattr(response, "text") else ""
        if not text:
            raise ValueError("Empty summary response")
        return text.strip()

    async def generate(self, transcript_text: str, kind: SummaryKind) -> str:
        if not transcript_text.strip():
            return EMPTY_TRANSCRIPT_SUMMARY
        prompt = build_summary_prompt(transcript_text, SummaryKind(kind))
        logger.info(
            "Generating meeting summary",
            extra={
                "component": "meeting_summary",
                "operation": "generate",
                "context_data": {"kind": SummaryKind(kind).value, "chars": len(transcript_text)},
            },
        )
        return await asyncio.to_thread(self._generate_sync, prompt)
