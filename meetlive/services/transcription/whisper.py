"""OpenAI Whisper transcription backend."""

from __future__ import annotations

import io

from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from meetlive.core.logging import get_logger
from meetlive.core.settings import Settings, get_settings
from meetlive.services.meeting.contracts import TranscriptionResult
from meetlive.services.meeting.errors import MissingConfigurationError
from meetlive.services.transcription.base import BufferedTranscriptionBackend, pcm16_to_wav

logger = get_logger(__name__)


class WhisperTranscriptionBackend(BufferedTranscriptionBackend):
    """Upload longer WAV buffers to the OpenAI transcription endpoint."""

    name = "whisper"
    interval_seconds = 8.0
    min_audio_seconds = 2.0

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        *,
        language: str | None = None,
        prompt: str | None = None,
        client: OpenAI | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        settings = get_settings()
        if client is None:
            api_key = api_key or settings.openai_api_key
            if not api_key:
                raise MissingConfigurationError("OpenAI API key is required for Whisper transcription")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model_name = model_name or settings.whisper_model
        self.language = language or settings.default_language
        self.prompt = prompt

    @classmethod
    def is_available(cls, settings: Settings) -> bool:
        return bool(settings.openai_api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> WhisperTranscriptionBackend:
        return cls(
            api_key=settings.openai_api_key,
            model_name=settings.whisper_model,
            language=settings.default_language,
        )

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=4, max=10))
    def transcribe_pcm(self, pcm: bytes) -> TranscriptionResult | None:
        audio_file = io.BytesIO(pcm16_to_wav(pcm, self.sample_rate_hz))
        audio_file.name = "audio.wav"
        params = {
            "model": self.model_name,
            "file": audio_file,
            "response_format": "json",
            "temperature": 0,
        }
        if self.language:
            params["language"] = self.language
        if self.prompt:
            params["prompt"] = self.prompt

        transcription = self.client.audio.transcriptions.create(**params)
        text = (transcription.text or "").strip()
        logger.info(
            "Whisper transcription received",
            extra={
                "component": "transcription",
                "operation": "whisper_transcribe",
                "context_data": {"chars": len(text), "bytes": len(pcm)},
            },
        )
        if not text:
            return None
        return TranscriptionResult(
            text=text, language=getattr(transcription, "language", None) or self.language
        )
