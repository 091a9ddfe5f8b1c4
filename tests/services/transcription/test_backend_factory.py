from unittest.mock import patch

from meetlive.core.settings import Settings
from meetlive.services.transcription.factory import (
    build_backend_preferences,
    configured_backend_names,
)
from meetlive.services.transcription.gemini import GeminiTranscriptionBackend
from meetlive.services.transcription.whisper import WhisperTranscriptionBackend


def _settings(**overrides) -> Settings:
    values = {"google_api_key": None, "openai_api_key": None}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_keeps_configured_order_and_skips_unknown_names():
    settings = _settings(
        google_api_key="g",
        openai_api_key="o",
        transcription_backends="whisper,deepgram,gemini,whisper",
    )
    assert configured_backend_names(settings) == ["whisper", "gemini"]


def test_skips_backends_without_credentials():
    assert configured_backend_names(_settings(openai_api_key="o")) == ["whisper"]
    assert configured_backend_names(_settings()) == []


@patch("meetlive.services.transcription.whisper.OpenAI")
@patch("meetlive.services.transcription.gemini.genai.Client")
def test_factories_build_backends_from_settings(mock_genai_client, mock_openai):
    settings = _settings(
        google_api_key="g",
        openai_api_key="o",
        whisper_model="whisper-large",
        default_language="en",
    )

    factories = build_backend_preferences(settings)
    backends = [factory() for factory in factories]

    assert [factory.__name__ for factory in factories] == ["gemini", "whisper"]
    assert isinstance(backends[0], GeminiTranscriptionBackend)
    assert isinstance(backends[1], WhisperTranscriptionBackend)
    mock_genai_client.assert_called_once_with(api_key="g")
    mock_openai.assert_called_once_with(api_key="o")
    assert backends[1].model_name == "whisper-large"
    assert backends[1].language == "en"
