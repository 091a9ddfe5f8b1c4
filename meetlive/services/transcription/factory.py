"""Resolve configured transcription backends into ordered factories."""

from __future__ import annotations

from meetlive.core.logging import get_logger
from meetlive.core.settings import Settings, get_settings
from meetlive.services.meeting.contracts import BackendFactory
from meetlive.services.transcription.base import TranscriptionBackend
from meetlive.services.transcription.gemini import GeminiTranscriptionBackend
from meetlive.services.transcription.whisper import WhisperTranscriptionBackend

logger = get_logger(__name__)

BACKEND_REGISTRY: dict[str, type[TranscriptionBackend]] = {
    GeminiTranscriptionBackend.name: GeminiTranscriptionBackend,
    WhisperTranscriptionBackend.name: WhisperTranscriptionBackend,
}


def _make_factory(
    name: str, backend_cls: type[TranscriptionBackend], settings: Settings
) -> BackendFactory:
    def factory() -> TranscriptionBackend:
        return backend_cls.from_settings(settings)

    factory.__name__ = name
    return factory


def configured_backend_names(settings: Settings | None = None) -> list[str]:
    """Names from the preference list that are known and have credentials."""

    settings = settings or get_settings()
    names = []
    for name in settings.transcription_backend_order:
        backend_cls = BACKEND_REGISTRY.get(name)
        if backend_cls is None:
            logger.warning(
                "Unknown transcription backend in settings",
                extra={
                    "component": "transcription",
                    "operation": "build_preferences",
                    "context_data": {"backend": name},
                },
            )
            continue
        if not backend_cls.is_available(settings):
            continue
        if name not in names:
            names.append(name)
    return names


def build_backend_preferences(settings: Settings | None = None) -> list[BackendFactory]:
    settings = settings or get_settings()
    return [
        _make_factory(name, BACKEND_REGISTRY[name], settings)
        for name in configured_backend_names(settings)
    ]
