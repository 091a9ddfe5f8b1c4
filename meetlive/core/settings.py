from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database - SQLite by default for local development
    database_url: str = "sqlite:///./meetlive.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Application
    app_name: str = "meetlive"
    debug: bool = False
    log_level: str = "INFO"
    logs_dir: Path = Path("logs")
    default_language: str = "es"

    # External services
    google_api_key: str | None = None
    openai_api_key: str | None = None

    # Realtime model link
    live_api_url: str = (
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
    )
    live_model: str = "gemini-2.0-flash-exp"
    live_voice_name: str = "Aoede"
    live_connect_timeout_seconds: float = 15.0
    live_setup_grace_seconds: float = 5.0
    live_max_session_seconds: float = 14 * 60
    live_refresh_buffer_seconds: float = 60.0
    live_session_check_interval_seconds: float = 30.0
    live_max_reconnect_attempts: int = 5
    live_reconnect_base_delay_seconds: float = 2.0
    live_pending_audio_max_chunks: int = 250

    # Transcript assembly
    transcript_flush_delay_seconds: float = 2.0
    transcript_min_segment_chars: int = 3
    correction_batch_delay_seconds: float = 3.0
    correction_min_chars: int = 10
    autosave_interval_seconds: float = 30.0

    # Text models
    correction_model: str = "gemini-2.0-flash"
    summary_model: str = "gemini-2.0-flash"

    # Pluggable transcription backends, in preference order
    transcription_backends: str = "gemini,whisper"
    gemini_transcription_model: str = "gemini-2.0-flash"
    whisper_model: str = "whisper-1"

    # Voice activity gate in front of Gemini transcription
    vad_threshold: float = 0.008
    vad_min_voice_frames: int = 2
    vad_min_silence_frames: int = 8

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL must be set")
        return v

    @property
    def transcription_backend_order(self) -> list[str]:
        """Backend names in preference order, lower-cased."""
        return [
            part.strip().lower() for part in self.transcription_backends.split(",") if part.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
