"""Gemini audio transcription backend."""

from __future__ import annotations

import json
import re
from collections import deque

from google import genai
from google.genai.types import Part

from meetlive.core.logging import get_logger
from meetlive.core.settings import Settings, get_settings
from meetlive.services.meeting.contracts import TranscriptionResult
from meetlive.services.meeting.errors import MissingConfigurationError
from meetlive.services.transcription.base import BufferedTranscriptionBackend, pcm16_to_wav
from meetlive.services.transcription.vad import VoiceActivityGate

logger = get_logger(__name__)

MAX_CONTEXT_TRANSCRIPTS = 3
MIN_CONTEXT_CHARS = 5
MIN_TRANSCRIPT_CHARS = 5
LONG_TRANSCRIPT_CHARS = 50

SYSTEM_INSTRUCTION = """You are a real-time audio transcriber for meetings.
CRITICAL RULES:
- ONLY transcribe what is said CLEARLY in the audio. If there is no clear speech, return EXACTLY: {"text": "", "speaker": null}
- NEVER invent text you are not hearing directly. An empty result is better than an invented one.
- Background noise, silence or unclear speech produce empty text.
- Transcribe in the spoken language without translating.
- Preserve proper names such as "Lia"."""

TRANSCRIBE_PROMPT = """Transcribe the audio. If there is no clear speech, answer {{"text": "", "speaker": null}}.
{context}
Answer ONLY with JSON: {{"text": "transcribed text or empty", "speaker": null}}"""

REFUSAL_PHRASES = (
    "no puedo transcribir",
    "no es posible transcribir",
    "no hay audio",
    "no se escucha nada",
    "solo silencio",
    "audio vacío",
    "sin contenido de audio",
    "no contiene audio",
    "no tiene audio",
    "unable to transcribe",
    "cannot process audio",
    "no speech detected",
    "i cannot transcribe",
    "[inaudible]",
    "el audio no contiene",
    "no detecté",
)

_CODE_FENCE = re.compile(r"```(?:json)?\n?|\n?```")


def is_valid_transcription(text: str) -> bool:
    """Reject empty output and short model refusals; keep anything substantial."""

    if len(text) < MIN_TRANSCRIPT_CHARS:
        return False
    if len(text) > LONG_TRANSCRIPT_CHARS:
        return True
    lowered = text.lower().strip()
    return not any(
        phrase in lowered and len(text) < len(phrase) + 30 for phrase in REFUSAL_PHRASES
    )


def parse_transcription_response(raw_text: str) -> tuple[str, str | None]:
    """Read ``{"text", "speaker"}`` JSON, falling back to the raw text."""

    cleaned = _CODE_FENCE.sub("", raw_text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        return raw_text.strip(), None
    if not isinstance(parsed, dict):
        return raw_text.strip(), None
    speaker = parsed.get("speaker")
    return str(parsed.get("text") or "").strip(), str(speaker) if speaker else None


class GeminiTranscriptionBackend(BufferedTranscriptionBackend):
    """Send VAD-gated WAV buffers to Gemini every couple of seconds."""

    name = "gemini"
    interval_seconds = 2.0
    min_audio_seconds = 1.0

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        *,
        vad: VoiceActivityGate | None = None,
        client: genai.Client | None = None,
        **kwargs,
    ) -> None:
        super().__init__(
            vad=vad or VoiceActivityGate(threshold=0.008, min_voice_frames=2, min_silence_frames=8),
            **kwargs,
        )
        settings = get_settings()
        if client is None:
            api_key = api_key or settings.google_api_key
            if not api_key:
                raise MissingConfigurationError("Google API key is required for Gemini transcription")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model_name = model_name or settings.gemini_transcription_model
        self.recent_transcripts: deque[str] = deque(maxlen=MAX_CONTEXT_TRANSCRIPTS)

    @classmethod
    def is_available(cls, settings: Settings) -> bool:
        return bool(settings.google_api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiTranscriptionBackend:
        return cls(
            api_key=settings.google_api_key,
            model_name=settings.gemini_transcription_model,
            vad=VoiceActivityGate(
                threshold=settings.vad_threshold,
                min_voice_frames=settings.vad_min_voice_frames,
                min_silence_frames=settings.vad_min_silence_frames,
            ),
        )

    def build_prompt(self) -> str:
        context = ""
        if self.recent_transcripts:
            context = "\nPREVIOUS CONTEXT (latest transcripts):\n" + "\n".join(
                self.recent_transcripts
            )
        return TRANSCRIBE_PROMPT.format(context=context)

    def transcribe_pcm(self, pcm: bytes) -> TranscriptionResult | None:
        audio_part = Part.from_bytes(data=pcm16_to_wav(pcm, self.sample_rate_hz), mime_type="audio/wav")
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=[audio_part, self.build_prompt()],
            config={
                "system_instruction": SYSTEM_INSTRUCTION,
                "temperature": 0.1,
                "top_k": 40,
                "top_p": 0.95,
            },
        )
        raw_text = (response.text if hasattr(response, "text") else "") or ""
        text, speaker = parse_transcription_response(raw_text)
        if not is_valid_transcription(text):
            logger.debug(
                "Discarded Gemini transcription",
                extra={
                    "component": "transcription",
                    "operation": "gemini_transcribe",
                    "context_data": {"chars": len(text)},
                },
            )
            return None
        if len(text) > MIN_CONTEXT_CHARS:
            self.recent_transcripts.append(text)
        return TranscriptionResult(text=text, speaker=speaker)
