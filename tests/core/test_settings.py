"""Tests for environment-driven settings."""

from meetlive.core.settings import Settings


def test_defaults_match_live_session_limits():
    settings = Settings(_env_file=None)
    assert settings.live_max_session_seconds == 840
    assert settings.live_refresh_buffer_seconds == 60
    assert settings.live_max_reconnect_attempts == 5
    assert settings.transcript_flush_delay_seconds == 2.0
    assert settings.default_language == "es"


def test_backend_order_is_parsed_from_comma_list():
    settings = Settings(_env_file=None, transcription_backends=" Whisper, gemini ,,")
    assert settings.transcription_backend_order == ["whisper", "gemini"]


def test_backend_order_from_environment(monkeypatch):
    monkeypatch.setenv("TRANSCRIPTION_BACKENDS", "whisper")
    monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
    settings = Settings(_env_file=None)
    assert settings.transcription_backend_order == ["whisper"]
    assert settings.google_api_key == "env-key"
