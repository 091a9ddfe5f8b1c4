"""Live meeting websocket and health endpoints."""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections.abc import Callable
from contextlib import suppress
from typing import Annotated, Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from meetlive.core.logging import get_logger
from meetlive.core.settings import get_settings
from meetlive.models.meeting import MeetingStatus, SummaryKind
from meetlive.routers.meeting_models import MEETING_CLIENT_EVENT_ADAPTER, MeetingHealthResponse
from meetlive.services.meeting.audio_source import ClientAudioSource
from meetlive.services.meeting.correction import GeminiTranscriptCorrector
from meetlive.services.meeting.errors import (
    AlreadyActiveError,
    AssistantUnavailableError,
    MeetingError,
    MissingConfigurationError,
    NoActiveSessionError,
)
from meetlive.services.meeting.events import MeetingEvent, MeetingEventEmitter
from meetlive.services.meeting.orchestrator import SessionOrchestrator
from meetlive.services.meeting.persistence import SqlMeetingStore
from meetlive.services.meeting.speakers import ClientSpeakerTracker
from meetlive.services.meeting.summary import GeminiSummaryGenerator
from meetlive.services.transcription.factory import (
    build_backend_preferences,
    configured_backend_names,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])

OrchestratorBuilder = Callable[
    [ClientAudioSource, ClientSpeakerTracker, MeetingEventEmitter], SessionOrchestrator
]

ERROR_CODES: dict[type[MeetingError], str] = {
    AlreadyActiveError: "already_active",
    NoActiveSessionError: "no_active_session",
    MissingConfigurationError: "missing_configuration",
    AssistantUnavailableError: "assistant_unavailable",
}


def _error_code(exc: MeetingError) -> str:
    for error_type, code in ERROR_CODES.items():
        if isinstance(exc, error_type):
            return code
    return "meeting_error"


def build_default_orchestrator(
    audio_source: ClientAudioSource,
    speaker_tracker: ClientSpeakerTracker,
    events: MeetingEventEmitter,
) -> SessionOrchestrator:
    settings = get_settings()
    summary_generator = None
    corrector = None
    if settings.google_api_key:
        summary_generator = GeminiSummaryGenerator()
        corrector = GeminiTranscriptCorrector()
    return SessionOrchestrator(
        audio_source=audio_source,
        store=SqlMeetingStore(),
        backend_factories=build_backend_preferences(settings),
        speaker_tracker=speaker_tracker,
        summary_generator=summary_generator,
        corrector=corrector,
        events=events,
    )


def get_orchestrator_builder() -> OrchestratorBuilder:
    return build_default_orchestrator


async def _send_ws_event(
    websocket: WebSocket,
    send_lock: asyncio.Lock,
    payload: dict[str, Any],
) -> bool:
    """Send one websocket event payload safely."""

    try:
        async with send_lock:
            await websocket.send_json(payload)
        return True
    except Exception:
        return False


async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
    """Cancel task and wait for shutdown."""

    if task is None:
        return
    if task.done():
        with suppress(asyncio.CancelledError, Exception):
            task.result()
        return
    task.cancel()
    with suppress(asyncio.CancelledError, Exception):
        await task


@router.get("/health", response_model=MeetingHealthResponse)
async def meeting_health() -> MeetingHealthResponse:
    """Return which meeting capabilities are configured."""

    settings = get_settings()
    reasons = []
    if not settings.google_api_key:
        reasons.append("GOOGLE_API_KEY is not configured")
    backends = configured_backend_names(settings)
    if not backends:
        reasons.append("No transcription backend configured; realtime model fallback only")
    return MeetingHealthResponse(
        ready=bool(settings.google_api_key),
        google_api_configured=bool(settings.google_api_key),
        openai_api_configured=bool(settings.openai_api_key),
        live_model=settings.live_model,
        transcription_backends=backends,
        readiness_reasons=reasons,
    )


@router.websocket("/ws")
async def meeting_websocket(
    websocket: WebSocket,
    builder: Annotated[OrchestratorBuilder, Depends(get_orchestrator_builder)],
) -> None:
    """Drive one live meeting session per websocket connection."""

    await websocket.accept()
    send_lock = asyncio.Lock()
    audio_source = ClientAudioSource()
    speaker_tracker = ClientSpeakerTracker()
    events = MeetingEventEmitter()
    summary_tasks: set[asyncio.Task[Any]] = set()

    async def emit(payload: dict[str, Any]) -> bool:
        return await _send_ws_event(websocket, send_lock, payload)

    async def forward_event(event: MeetingEvent) -> None:
        await emit(event.to_payload())

    unsubscribe = events.subscribe(forward_event)

    try:
        orchestrator = builder(audio_source, speaker_tracker, events)
    except MeetingError as exc:
        unsubscribe()
        await emit(
            {"type": "error", "code": _error_code(exc), "message": str(exc), "fatal": True}
        )
        await websocket.close(code=1011)
        return

    def log_ws_trace(operation: str, context_data: dict[str, Any]) -> None:
        session = orchestrator.get_session()
        logger.info(
            "Meeting websocket trace",
            extra={
                "component": "meeting_ws",
                "operation": operation,
                "item_id": session.id if session else None,
                "context_data": context_data,
            },
        )

    async def run_summary(kind: SummaryKind) -> None:
        try:
            text = await orchestrator.generate_summary(kind)
        except MeetingError as exc:
            await emit(
                {"type": "error", "code": _error_code(exc), "message": str(exc), "fatal": False}
            )
            return
        except Exception as exc:
            logger.exception(
                "Meeting summary request failed",
                extra={"component": "meeting_ws", "operation": "summary_request"},
            )
            await emit(
                {"type": "error", "code": "summary_failed", "message": str(exc), "fatal": False}
            )
            return
        await emit({"type": "summary", "kind": kind.value, "text": text})

    log_ws_trace("connect", {})
    try:
        while True:
            try:
                raw_payload = await websocket.receive_json()
            except WebSocketDisconnect as exc:
                log_ws_trace("disconnect", {"code": getattr(exc, "code", None)})
                return
            except Exception:
                is_open = await emit(
                    {
                        "type": "error",
                        "code": "invalid_payload",
                        "message": "Expected JSON websocket message.",
                        "fatal": False,
                    }
                )
                if not is_open:
                    return
                continue

            try:
                event = MEETING_CLIENT_EVENT_ADAPTER.validate_python(raw_payload)
            except ValidationError as exc:
                is_open = await emit(
                    {
                        "type": "error",
                        "code": "validation_error",
                        "message": exc.errors()[0]["msg"] if exc.errors() else "Invalid event.",
                        "fatal": False,
                    }
                )
                if not is_open:
                    return
                continue

            event_type = event.type
            if event_type != "audio.frame":
                log_ws_trace("client_event", {"event_type": event_type})

            try:
                if event_type == "audio.frame":
                    try:
                        data = base64.b64decode(event.pcm16_b64, validate=True)
                    except (binascii.Error, ValueError):
                        await emit(
                            {
                                "type": "error",
                                "code": "invalid_audio",
                                "message": "audio.frame must carry base64 PCM16.",
                                "fatal": False,
                            }
                        )
                        continue
                    audio_source.push_frame(data, event.source)
                    continue

                if event_type == "session.start":
                    session = await orchestrator.start_session(
                        event.tab_id,
                        event.platform,
                        event.user_id,
                        title=event.title,
                        url=event.url,
                    )
                    await emit({"type": "session.started", "session_id": session.id})
                elif event_type == "speaker.update":
                    speaker_tracker.report_speaker(event.speaker)
                elif event_type == "participants.update":
                    speaker_tracker.report_participants(event.participants)
                elif event_type == "assistant.invoke":
                    orchestrator.invoke_assistant(event.prompt)
                elif event_type == "text.send":
                    orchestrator.send_text(event.text)
                elif event_type == "session.pause":
                    orchestrator.pause()
                elif event_type == "session.resume":
                    orchestrator.resume()
                elif event_type == "volume.set":
                    orchestrator.set_volume(event.source, event.level)
                elif event_type == "summary.request":
                    task = asyncio.create_task(run_summary(event.kind))
                    summary_tasks.add(task)
                    task.add_done_callback(summary_tasks.discard)
                elif event_type == "session.end":
                    await orchestrator.end_session(generate_summary=event.generate_summary)
                    await events.drain()
                    await websocket.close(code=1000)
                    return
            except MeetingError as exc:
                is_open = await emit(
                    {
                        "type": "error",
                        "code": _error_code(exc),
                        "message": str(exc),
                        "fatal": orchestrator.get_status() == MeetingStatus.ERROR,
                    }
                )
                if not is_open:
                    return
            except Exception as exc:
                logger.exception(
                    "Meeting websocket event failed",
                    extra={
                        "component": "meeting_ws",
                        "operation": "client_event",
                        "context_data": {"event_type": event_type},
                    },
                )
                is_open = await emit(
                    {
                        "type": "error",
                        "code": "internal_error",
                        "message": str(exc),
                        "fatal": orchestrator.get_status() == MeetingStatus.ERROR,
                    }
                )
                if not is_open:
                    return
    finally:
        log_ws_trace("close", {"status": orchestrator.get_status().value})
        for task in list(summary_tasks):
            await _cancel_task(task)
        if orchestrator.get_status() not in (MeetingStatus.IDLE, MeetingStatus.ENDED):
            try:
                await orchestrator.end_session(generate_summary=False)
            except Exception:
                logger.exception(
                    "Failed to end meeting session on websocket close",
                    extra={"component": "meeting_ws", "operation": "close"},
                )
        unsubscribe()
