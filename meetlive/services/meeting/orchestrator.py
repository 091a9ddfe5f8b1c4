"""Live meeting session orchestration.

One ``SessionOrchestrator`` owns one meeting at a time: the session record,
audio routing between the transcription backend and the realtime model link,
transcript assembly, the link's reconnect and refresh cycle, assistant
playback, periodic persistence and finalization.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from meetlive.core.logging import get_logger
from meetlive.core.settings import Settings, get_settings
from meetlive.models.meeting import (
    TERMINAL_STATUSES,
    MeetingMode,
    MeetingSession,
    MeetingStatus,
    SummaryKind,
    TranscriptSegment,
    new_session_id,
)
from meetlive.services.meeting.assembler import TranscriptAssembler
from meetlive.services.meeting.contracts import (
    AudioOutputFactory,
    AudioSource,
    BackendFactory,
    MeetingStore,
    ParticipantsSnapshot,
    SpeakerTracker,
    SummaryGenerator,
    TranscriptCorrector,
    TranscriptionBackend,
    TranscriptionResult,
)
from meetlive.services.meeting.correction import CorrectionQueue
from meetlive.services.meeting.errors import (
    AlreadyActiveError,
    AssistantUnavailableError,
    MeetingError,
    MissingConfigurationError,
    NoActiveSessionError,
    RealtimeLinkError,
)
from meetlive.services.meeting.events import (
    AssistantReply,
    MeetingEventEmitter,
    MeetingFailure,
    MeetingWarning,
    ParticipantsUpdated,
    SegmentUpdated,
    SessionEnded,
    SpeakerChanged,
    StatusChanged,
)
from meetlive.services.meeting.playback import AudioPlaybackQueue, EventAudioOutput
from meetlive.services.meeting.realtime_link import RealtimeLinkCallbacks, RealtimeModelLink
from meetlive.services.meeting.summary import EMPTY_TRANSCRIPT_SUMMARY, format_transcript

logger = get_logger(__name__)

LinkFactory = Callable[[RealtimeLinkCallbacks, MeetingMode], RealtimeModelLink]

RECONNECT_EXHAUSTED_MESSAGE = (
    "Could not reconnect to the realtime model after several attempts. "
    "Restart the session to continue."
)


@dataclass
class MeetingTimings:
    """Delays and limits for one session; tests shrink these."""

    flush_delay_seconds: float = 2.0
    min_segment_chars: int = 3
    correction_delay_seconds: float = 3.0
    correction_min_chars: int = 10
    autosave_interval_seconds: float = 30.0
    max_session_seconds: float = 14 * 60
    refresh_buffer_seconds: float = 60.0
    session_check_interval_seconds: float = 30.0
    max_reconnect_attempts: int = 5
    reconnect_base_delay_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MeetingTimings:
        settings = settings or get_settings()
        return cls(
            flush_delay_seconds=settings.transcript_flush_delay_seconds,
            min_segment_chars=settings.transcript_min_segment_chars,
            correction_delay_seconds=settings.correction_batch_delay_seconds,
            correction_min_chars=settings.correction_min_chars,
            autosave_interval_seconds=settings.autosave_interval_seconds,
            max_session_seconds=settings.live_max_session_seconds,
            refresh_buffer_seconds=settings.live_refresh_buffer_seconds,
            session_check_interval_seconds=settings.live_session_check_interval_seconds,
            max_reconnect_attempts=settings.live_max_reconnect_attempts,
            reconnect_base_delay_seconds=settings.live_reconnect_base_delay_seconds,
        )

    def reconnect_delay(self, attempt: int) -> float:
        return self.reconnect_base_delay_seconds * (1.5 ** (attempt - 1))


def _default_link_factory(callbacks: RealtimeLinkCallbacks, mode: MeetingMode) -> RealtimeModelLink:
    return RealtimeModelLink(callbacks, mode=mode)


class SessionOrchestrator:
    """Stateful orchestrator for one live meeting.

    Construction has no side effects. Lifecycle is ``start_session`` ->
    ``pause``/``resume``/``invoke_assistant`` -> ``end_session``.
    """

    def __init__(
        self,
        *,
        audio_source: AudioSource,
        store: MeetingStore,
        backend_factories: Sequence[BackendFactory] = (),
        link_factory: LinkFactory | None = None,
        speaker_tracker: SpeakerTracker | None = None,
        summary_generator: SummaryGenerator | None = None,
        corrector: TranscriptCorrector | None = None,
        output_factory: AudioOutputFactory | None = None,
        events: MeetingEventEmitter | None = None,
        timings: MeetingTimings | None = None,
        language: str | None = None,
        assistant_name: str = "Lia",
    ) -> None:
        self.audio_source = audio_source
        self.store = store
        self.backend_factories = list(backend_factories)
        self.speaker_tracker = speaker_tracker
        self.summary_generator = summary_generator
        self.corrector = corrector
        self.events = events or MeetingEventEmitter()
        self.timings = timings or MeetingTimings.from_settings()
        self.language = language or get_settings().default_language
        self.assistant_name = assistant_name
        self._link_factory = link_factory or _default_link_factory
        self._output_factory = output_factory or (lambda: EventAudioOutput(self.events.emit))
        self._invocation_pattern = re.compile(rf"\b{re.escape(assistant_name)}\b", re.IGNORECASE)

        self._status = MeetingStatus.IDLE
        self._mode = MeetingMode.TRANSCRIPTION
        self._session: MeetingSession | None = None
        self._segments: list[TranscriptSegment] = []
        self._segments_by_id: dict[str, TranscriptSegment] = {}
        self._unsaved_ids: dict[str, None] = {}
        self._started_clock = 0.0

        self._link: RealtimeModelLink | None = None
        self._assembler: TranscriptAssembler | None = None
        self._correction: CorrectionQueue | None = None
        self._playback: AudioPlaybackQueue | None = None

        self._active_backend: TranscriptionBackend | None = None
        self._backend_index = 0
        self._backend_starting = False
        self.disabled_backends: list[str] = []

        self._autosave_task: asyncio.Task[None] | None = None
        self._session_check_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._release_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._save_lock = asyncio.Lock()
        self._reconnect_attempts = 0
        self._status_before_reconnect = MeetingStatus.TRANSCRIBING
        self._current_speaker: str | None = None
        self._reply_parts: list[str] = []
        self._tracker_running = False
        self._audio_stopped = False

        self.chunks_to_backend = 0
        self.chunks_to_link = 0
        self.chunks_dropped = 0
        self.refresh_count = 0

    def get_status(self) -> MeetingStatus:
        return self._status

    @property
    def mode(self) -> MeetingMode:
        return self._mode

    def get_session(self) -> MeetingSession | None:
        return self._session

    def get_transcript(self) -> list[TranscriptSegment]:
        return list(self._segments)

    def get_transcript_text(self) -> str:
        return format_transcript(self._segments, assistant_name=self.assistant_name)

    @property
    def active_backend(self) -> TranscriptionBackend | None:
        return self._active_backend

    @property
    def link(self) -> RealtimeModelLink | None:
        return self._link

    @property
    def assembler(self) -> TranscriptAssembler | None:
        return self._assembler

    @property
    def correction_queue(self) -> CorrectionQueue | None:
        return self._correction

    @property
    def playback(self) -> AudioPlaybackQueue | None:
        return self._playback

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def _set_status(self, status: MeetingStatus) -> None:
        previous = self._status
        if previous == status:
            return
        self._status = status
        self._log_trace("status_changed", {"previous": previous.value, "status": status.value})
        self.events.emit(StatusChanged(previous=previous, current=status))

    def _log_trace(self, operation: str, context_data: dict[str, Any]) -> None:
        logger.info(
            "Meeting session trace",
            extra={
                "component": "meeting_orchestrator",
                "operation": operation,
                "item_id": self._session.id if self._session else None,
                "context_data": context_data,
            },
        )

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def start_session(
        self,
        tab_id: int | str | None,
        platform: str,
        user_id: str,
        title: str | None = None,
        url: str | None = None,
    ) -> MeetingSession:
        """Start capturing a meeting.

        Raises:
            AlreadyActiveError: A session was already started on this orchestrator.
            MissingConfigurationError: The realtime link has no credentials.
        """

        if self._status != MeetingStatus.IDLE:
            raise AlreadyActiveError(f"A meeting session is already {self._status.value}")

        loop = asyncio.get_running_loop()
        self._set_status(MeetingStatus.CONNECTING)
        try:
            self._link = self._link_factory(self._build_link_callbacks(), self._mode)
            if not getattr(self._link, "api_key", None):
                raise MissingConfigurationError("Google API key is not configured")

            session = MeetingSession(
                id=new_session_id(),
                platform=platform,
                user_id=user_id,
                tab_id=tab_id,
                title=title,
                url=url,
                detected_language=self.language,
            )
            self._session = await self.store.create_session(session)
            self._started_clock = loop.time()
            self._build_pipeline()

            await self.audio_source.start(self._handle_audio_chunk, self._handle_audio_error)
            self._ensure_still_starting()
            if self.speaker_tracker is not None:
                await self.speaker_tracker.start(self._handle_speaker, self._handle_participants)
                self._tracker_running = True
                self._ensure_still_starting()
            await self._start_next_backend()
            self._ensure_still_starting()
            await self._link.connect()
            self._ensure_still_starting()

            self._autosave_task = loop.create_task(self._autosave_loop())
            self._session_check_task = loop.create_task(self._session_check_loop())
        except Exception as exc:
            if self._status == MeetingStatus.ENDED:
                # end_session ran while we were suspended; undo whatever started since.
                self._audio_stopped = False
                await self._release_resources()
                self._log_trace("start_aborted", {"error": str(exc)})
                if isinstance(exc, NoActiveSessionError):
                    raise
                raise NoActiveSessionError("Meeting session was ended while starting") from exc
            logger.exception(
                "Meeting session failed to start",
                extra={
                    "component": "meeting_orchestrator",
                    "operation": "start_session",
                    "context_data": {"platform": platform, "error": str(exc)},
                },
            )
            self._set_status(MeetingStatus.ERROR)
            self.events.emit(MeetingFailure(code="start_failed", message=str(exc), fatal=True))
            await self._release_resources()
            raise

        if self._status == MeetingStatus.CONNECTING:
            self._set_status(MeetingStatus.TRANSCRIBING)
        self._log_trace(
            "session_started",
            {
                "platform": platform,
                "backend": self._active_backend.name if self._active_backend else None,
            },
        )
        return self._session

    def _ensure_still_starting(self) -> None:
        if self._status == MeetingStatus.ENDED:
            raise NoActiveSessionError("Meeting session was ended while starting")

    def _build_pipeline(self) -> None:
        timings = self.timings
        if self.corrector is not None:
            self._correction = CorrectionQueue(
                self.corrector,
                self._apply_correction,
                delay_seconds=timings.correction_delay_seconds,
            )
        self._assembler = TranscriptAssembler(
            emit_segment=self._emit_transcribed_segment,
            flush_delay_seconds=timings.flush_delay_seconds,
            min_segment_chars=timings.min_segment_chars,
            correction_queue=self._correction,
            correction_min_chars=timings.correction_min_chars,
        )
        self._playback = AudioPlaybackQueue(self._output_factory)

    def _build_link_callbacks(self) -> RealtimeLinkCallbacks:
        return RealtimeLinkCallbacks(
            on_input_transcription=self._handle_link_transcription,
            on_model_text=self._handle_model_text,
            on_model_audio=self._handle_model_audio,
            on_turn_complete=self._handle_turn_complete,
            on_error=self._handle_link_error,
            on_close=self._handle_link_close,
        )

    async def end_session(self, generate_summary: bool = True) -> MeetingSession | None:
        """Stop everything, persist what is left and close the session.

        Returns the closed session, or None when it was already ended.
        """

        if self._status == MeetingStatus.ENDED:
            return None
        if self._status == MeetingStatus.IDLE or self._session is None:
            raise NoActiveSessionError("No meeting session to end")

        # Stops audio routing before anything else is torn down.
        self._set_status(MeetingStatus.ENDED)
        session = self._session
        await self._stop_audio_source()

        await self._cancel_loops()
        if self._release_task is not None:
            with suppress(Exception):
                await self._release_task

        if self._assembler is not None:
            self._assembler.close()
        await self._release_resources()
        self._flush_assistant_reply()

        await self._save_unsaved()

        if generate_summary and self.summary_generator is not None and self._segments:
            try:
                await self.generate_summary(SummaryKind.DETAILED)
            except Exception as exc:
                logger.warning(
                    "Summary generation failed at session end",
                    extra={
                        "component": "meeting_orchestrator",
                        "operation": "end_session_summary",
                        "item_id": session.id,
                        "context_data": {"error": str(exc)},
                    },
                )
                self.events.emit(
                    MeetingWarning(code="summary_failed", message="Summary could not be generated.")
                )

        session.ended_at = datetime.now(UTC)
        try:
            await self.store.end_session(
                session.id,
                ended_at=session.ended_at,
                summary=session.summary,
                summary_kind=session.summary_kind,
            )
        except Exception:
            logger.exception(
                "Failed to finalize meeting session",
                extra={
                    "component": "meeting_orchestrator",
                    "operation": "end_session",
                    "item_id": session.id,
                },
            )

        self._log_trace("session_ended", {"segments": len(self._segments)})
        self.events.emit(SessionEnded(session=session))
        return session

    async def _stop_audio_source(self) -> None:
        if self._audio_stopped:
            return
        self._audio_stopped = True
        try:
            await self.audio_source.stop()
        except Exception:
            logger.exception(
                "Failed to stop audio source",
                extra={"component": "meeting_orchestrator", "operation": "stop_audio_source"},
            )

    async def _cancel_loops(self) -> None:
        current = asyncio.current_task()
        tasks = [self._autosave_task, self._session_check_task, self._reconnect_task]
        self._autosave_task = self._session_check_task = self._reconnect_task = None
        for task in tasks:
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await task

    async def _release_resources(self) -> None:
        """Stop every live resource except the session record. Safe to repeat."""

        await self._stop_audio_source()
        await self._cancel_loops()

        if self._assembler is not None and self._status == MeetingStatus.ERROR:
            self._assembler.reset()

        backend = self._active_backend
        self._active_backend = None
        if backend is not None:
            await self._stop_backend(backend)

        if self.speaker_tracker is not None and self._tracker_running:
            self._tracker_running = False
            try:
                await self.speaker_tracker.stop()
            except Exception:
                logger.exception(
                    "Failed to stop speaker tracker",
                    extra={"component": "meeting_orchestrator", "operation": "stop_tracker"},
                )

        if self._correction is not None:
            await self._correction.aclose()

        if self._link is not None:
            with suppress(Exception):
                await self._link.close()

        if self._playback is not None:
            self._playback.stop()

        for task in list(self._background):
            if task is asyncio.current_task() or task.done():
                continue
            task.cancel()

    async def _stop_backend(self, backend: TranscriptionBackend) -> None:
        try:
            await backend.stop()
        except Exception:
            logger.exception(
                "Failed to stop transcription backend",
                extra={
                    "component": "meeting_orchestrator",
                    "operation": "stop_backend",
                    "context_data": {"backend": backend.name},
                },
            )

    def _fail(self, code: str, message: str) -> None:
        """Move to ``error``, notify, and release live resources in the background."""

        if self._status in TERMINAL_STATUSES:
            return
        self._set_status(MeetingStatus.ERROR)
        logger.error(
            "Meeting session failed",
            extra={
                "component": "meeting_orchestrator",
                "operation": "fail",
                "item_id": self._session.id if self._session else None,
                "context_data": {"code": code, "message": message},
            },
        )
        self.events.emit(MeetingFailure(code=code, message=message, fatal=True))
        self._release_task = asyncio.get_running_loop().create_task(self._release_resources())

    def pause(self) -> None:
        self._require_live()
        if self._status != MeetingStatus.TRANSCRIBING:
            return
        self.audio_source.set_muted(True)
        self._set_status(MeetingStatus.PAUSED)

    def resume(self) -> None:
        self._require_live()
        if self._status != MeetingStatus.PAUSED:
            return
        self.audio_source.set_muted(False)
        self._set_status(MeetingStatus.TRANSCRIBING)

    def set_volume(self, source: str, level: float) -> None:
        self.audio_source.set_volume(source, level)

    def invoke_assistant(self, prompt_text: str | None = None) -> None:
        """Hand the conversation to the assistant until its turn completes."""

        self._require_live()
        if self._link is None or not self._link.is_ready:
            raise AssistantUnavailableError("Realtime model link is not connected")
        if self._status not in (MeetingStatus.TRANSCRIBING, MeetingStatus.LIA_RESPONDING):
            raise AssistantUnavailableError(
                f"Assistant cannot be invoked while {self._status.value}"
            )

        self._mode = MeetingMode.INTERACTIVE
        self._link.mode = MeetingMode.INTERACTIVE
        self._reply_parts = []
        self._set_status(MeetingStatus.LIA_RESPONDING)

        if prompt_text and prompt_text.strip():
            self._link.send_text(prompt_text.strip())
            self._append_segment(
                prompt_text.strip(),
                speaker=self._current_speaker,
                is_assistant_invocation=True,
            )
        self._log_trace("assistant_invoked", {"has_prompt": bool(prompt_text)})

    def send_text(self, text: str) -> bool:
        self._require_live()
        if self._link is None:
            return False
        return self._link.send_text(text)

    def _return_to_transcription(self) -> None:
        self._mode = MeetingMode.TRANSCRIPTION
        if self._link is not None:
            self._link.mode = MeetingMode.TRANSCRIPTION
        if self._status == MeetingStatus.LIA_RESPONDING:
            self._set_status(MeetingStatus.TRANSCRIBING)

    def _require_live(self) -> None:
        if self._status == MeetingStatus.IDLE or self._status in TERMINAL_STATUSES:
            raise NoActiveSessionError(f"No live meeting session ({self._status.value})")

    async def generate_summary(self, kind: SummaryKind | str = SummaryKind.DETAILED) -> str:
        """Summarize the transcript so far and store it on the session."""

        if self._session is None:
            raise NoActiveSessionError("No meeting session to summarize")
        if self.summary_generator is None:
            raise MissingConfigurationError("No summary generator configured")

        kind = SummaryKind(kind)
        transcript_text = self.get_transcript_text()
        if not transcript_text:
            return EMPTY_TRANSCRIPT_SUMMARY

        summary = await self.summary_generator.generate(transcript_text, kind)
        self._session.summary = summary
        self._session.summary_kind = kind
        return summary

    def _handle_audio_chunk(self, chunk: bytes) -> None:
        status = self._status
        if (
            status in TERMINAL_STATUSES
            or status == MeetingStatus.IDLE
            or status == MeetingStatus.PAUSED
        ):
            self.chunks_dropped += 1
            return

        if self._mode == MeetingMode.INTERACTIVE:
            self._send_to_link(chunk)
            return

        backend = self._active_backend
        if backend is None or self._backend_starting:
            self._send_to_link(chunk)
            return

        try:
            backend.add_audio_data(chunk)
            self.chunks_to_backend += 1
        except Exception as exc:
            self._disable_backend(backend, exc)

    def _send_to_link(self, chunk: bytes) -> None:
        if self._link is None:
            self.chunks_dropped += 1
            return
        self._link.send_audio(chunk)
        self.chunks_to_link += 1

    def _handle_audio_error(self, exc: Exception) -> None:
        self._fail("audio_source_error", f"Audio capture failed: {exc}")

    async def _start_next_backend(self) -> TranscriptionBackend | None:
        while self._backend_index < len(self.backend_factories):
            if self._status in TERMINAL_STATUSES:
                return None
            factory = self.backend_factories[self._backend_index]
            self._backend_index += 1
            try:
                backend = factory()
            except Exception as exc:
                self._warn_backend_unavailable(getattr(factory, "__name__", "backend"), exc)
                continue

            self._active_backend = backend
            self._backend_starting = True
            try:
                await backend.start(
                    lambda result, b=backend: self._handle_backend_result(b, result),
                    lambda exc, b=backend: self._disable_backend(b, exc),
                )
            except Exception as exc:
                if self._active_backend is backend:
                    self._active_backend = None
                    self._warn_backend_unavailable(backend.name, exc)
                await self._stop_backend(backend)
                continue
            finally:
                self._backend_starting = False

            if self._status in TERMINAL_STATUSES:
                if self._active_backend is backend:
                    self._active_backend = None
                await self._stop_backend(backend)
                return None
            if self._active_backend is not backend:
                # Its error callback fired during start.
                await self._stop_backend(backend)
                continue

            self._log_trace("backend_started", {"backend": backend.name})
            return backend

        self._active_backend = None
        if self.backend_factories:
            self.events.emit(
                MeetingWarning(
                    code="transcription_fallback",
                    message="No transcription backend available; using the realtime model.",
                )
            )
        return None

    def _warn_backend_unavailable(self, name: str, exc: Exception) -> None:
        self.disabled_backends.append(name)
        logger.warning(
            "Transcription backend unavailable",
            extra={
                "component": "meeting_orchestrator",
                "operation": "backend_unavailable",
                "item_id": self._session.id if self._session else None,
                "context_data": {"backend": name, "error": str(exc)},
            },
        )
        self.events.emit(
            MeetingWarning(
                code="backend_disabled",
                message=f"Transcription backend '{name}' disabled: {exc}",
            )
        )

    def _disable_backend(self, backend: TranscriptionBackend, exc: Exception) -> None:
        """Permanently drop a misbehaving backend and move to the next one."""

        if backend is not self._active_backend:
            return
        self._active_backend = None
        self._warn_backend_unavailable(backend.name, exc)
        if self._backend_starting or self._status in TERMINAL_STATUSES:
            return
        self._spawn(self._replace_backend(backend))

    async def _replace_backend(self, failed: TranscriptionBackend) -> None:
        await self._stop_backend(failed)
        if self._status not in TERMINAL_STATUSES:
            await self._start_next_backend()

    def _handle_backend_result(
        self, backend: TranscriptionBackend, result: TranscriptionResult
    ) -> None:
        if backend is not self._active_backend or self._status in TERMINAL_STATUSES:
            return
        text = (result.text or "").strip()
        if not text or self._assembler is None:
            return
        # The speaker the client sees on screen beats a label guessed from the audio.
        self._assembler.add_fragment(
            text,
            speaker=self._current_speaker or result.speaker,
            language=result.language,
            confidence=result.confidence,
        )

    def _emit_transcribed_segment(
        self,
        text: str,
        speaker: str | None,
        *,
        language: str | None = None,
        confidence: float | None = None,
    ) -> TranscriptSegment:
        return self._append_segment(
            text,
            speaker=speaker or self._current_speaker,
            is_assistant_invocation=bool(self._invocation_pattern.search(text)),
            language=language,
            confidence=confidence,
        )

    def _append_segment(
        self,
        text: str,
        *,
        speaker: str | None = None,
        is_assistant_reply: bool = False,
        is_assistant_invocation: bool = False,
        language: str | None = None,
        confidence: float | None = None,
    ) -> TranscriptSegment:
        loop = asyncio.get_running_loop()
        segment = TranscriptSegment(
            text=text,
            timestamp=datetime.now(UTC),
            offset_seconds=max(0.0, loop.time() - self._started_clock),
            speaker=speaker,
            is_assistant_reply=is_assistant_reply,
            is_assistant_invocation=is_assistant_invocation,
            language=language or self.language,
            confidence=confidence,
        )
        self._segments.append(segment)
        self._segments_by_id[segment.id] = segment
        self._unsaved_ids[segment.id] = None
        self.events.emit(SegmentUpdated(segment=segment))
        return segment

    def _apply_correction(self, segment_id: str, corrected_text: str) -> None:
        segment = self._segments_by_id.get(segment_id)
        if segment is None or segment.corrected:
            return
        segment.text = corrected_text
        segment.corrected = True
        self._unsaved_ids[segment.id] = None
        self.events.emit(SegmentUpdated(segment=segment, is_update=True))

    def _handle_link_transcription(self, text: str) -> None:
        if self._status in TERMINAL_STATUSES or self._assembler is None:
            return
        self._assembler.add_fragment(text, speaker=self._current_speaker)

    def _handle_model_text(self, text: str) -> None:
        if self._mode == MeetingMode.INTERACTIVE:
            self._reply_parts.append(text)

    def _handle_model_audio(self, data_b64: str) -> None:
        if self._status in TERMINAL_STATUSES or self._playback is None:
            return
        self._playback.enqueue_base64(data_b64)

    def _handle_turn_complete(self) -> None:
        if self._mode != MeetingMode.INTERACTIVE:
            return
        self._flush_assistant_reply()
        self._return_to_transcription()

    def _flush_assistant_reply(self) -> None:
        text = "".join(self._reply_parts).strip()
        self._reply_parts = []
        if not text:
            return
        segment = self._append_segment(
            text, speaker=self.assistant_name, is_assistant_reply=True
        )
        self.events.emit(AssistantReply(text=text, segment_id=segment.id))

    def _handle_link_error(self, error: RealtimeLinkError) -> None:
        if self._status in TERMINAL_STATUSES:
            return
        if not error.retryable:
            self._fail("realtime_error", str(error))
            return
        self.events.emit(MeetingFailure(code="realtime_error", message=str(error), fatal=False))

    def _handle_link_close(self, error: RealtimeLinkError) -> None:
        if self._status in TERMINAL_STATUSES or self._status == MeetingStatus.IDLE:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._log_trace("link_closed", {"code": error.close_code, "reason": str(error)})
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    def _remember_status_for_reconnect(self) -> None:
        if self._status == MeetingStatus.PAUSED:
            self._status_before_reconnect = MeetingStatus.PAUSED
        elif self._status != MeetingStatus.RECONNECTING:
            self._status_before_reconnect = MeetingStatus.TRANSCRIBING

    async def _reconnect_loop(self) -> None:
        """Bounded reconnect with exponential backoff."""

        assert self._link is not None
        self._remember_status_for_reconnect()
        # An assistant turn cannot survive a new connection.
        self._reply_parts = []
        self._mode = MeetingMode.TRANSCRIPTION
        self._link.mode = MeetingMode.TRANSCRIPTION

        while True:
            if self._status in TERMINAL_STATUSES:
                return
            self._reconnect_attempts += 1
            if self._reconnect_attempts > self.timings.max_reconnect_attempts:
                self._fail("reconnect_exhausted", RECONNECT_EXHAUSTED_MESSAGE)
                return

            self._set_status(MeetingStatus.RECONNECTING)
            delay = self.timings.reconnect_delay(self._reconnect_attempts)
            self._log_trace(
                "reconnect_attempt",
                {"attempt": self._reconnect_attempts, "delay_seconds": delay},
            )
            await asyncio.sleep(delay)
            if self._status in TERMINAL_STATUSES:
                return

            try:
                await self._link.connect()
            except MeetingError as exc:
                logger.warning(
                    "Realtime reconnect attempt failed",
                    extra={
                        "component": "meeting_orchestrator",
                        "operation": "reconnect",
                        "item_id": self._session.id if self._session else None,
                        "context_data": {"attempt": self._reconnect_attempts, "error": str(exc)},
                    },
                )
                if isinstance(exc, MissingConfigurationError) or (
                    isinstance(exc, RealtimeLinkError) and not exc.retryable
                ):
                    self._fail("reconnect_failed", str(exc))
                    return
                continue

            if self._status in TERMINAL_STATUSES:
                await self._link.close()
                return
            self._reconnect_attempts = 0
            self._set_status(self._status_before_reconnect)
            self._log_trace("reconnected", {})
            return

    async def _session_check_loop(self) -> None:
        refresh_at = self.timings.max_session_seconds - self.timings.refresh_buffer_seconds
        while True:
            await asyncio.sleep(self.timings.session_check_interval_seconds)
            if self._status in TERMINAL_STATUSES:
                return
            link = self._link
            if link is None or not link.is_ready:
                continue
            if self._reconnect_task is not None and not self._reconnect_task.done():
                continue
            if link.elapsed_seconds() >= refresh_at:
                await self.refresh_link()

    async def refresh_link(self) -> None:
        """Reconnect ahead of the provider's session-duration cap."""

        if self._link is None or self._status in TERMINAL_STATUSES:
            return
        self._remember_status_for_reconnect()
        self._reply_parts = []
        self._mode = MeetingMode.TRANSCRIPTION
        self._link.mode = MeetingMode.TRANSCRIPTION
        self._set_status(MeetingStatus.RECONNECTING)
        self.refresh_count += 1
        self._log_trace("session_refresh", {"refresh_count": self.refresh_count})

        await self._link.disconnect()
        try:
            await self._link.connect()
        except MeetingError as exc:
            logger.warning(
                "Realtime session refresh failed",
                extra={
                    "component": "meeting_orchestrator",
                    "operation": "refresh",
                    "context_data": {"error": str(exc)},
                },
            )
            if self._status not in TERMINAL_STATUSES:
                self._reconnect_task = asyncio.get_running_loop().create_task(
                    self._reconnect_loop()
                )
            return

        if self._status in TERMINAL_STATUSES:
            await self._link.close()
            return
        self._set_status(self._status_before_reconnect)

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.timings.autosave_interval_seconds)
            if self._status in TERMINAL_STATUSES:
                return
            await self._save_unsaved()

    async def _save_unsaved(self) -> int:
        """Persist segments that are new or corrected since the last save."""

        if self._session is None:
            return 0
        async with self._save_lock:
            ids = list(self._unsaved_ids)
            if not ids:
                return 0
            batch = [self._segments_by_id[segment_id] for segment_id in ids]
            try:
                await self.store.add_transcript_batch(self._session.id, batch)
            except Exception as exc:
                # Retried on the next autosave tick.
                logger.error(
                    "Failed to save transcript batch",
                    extra={
                        "component": "meeting_orchestrator",
                        "operation": "save_transcript_batch",
                        "item_id": self._session.id,
                        "context_data": {"batch_size": len(batch), "error": str(exc)},
                    },
                )
                return 0
            for segment_id in ids:
                self._unsaved_ids.pop(segment_id, None)
            return len(batch)

    def _handle_speaker(self, speaker: str | None) -> None:
        if self._status in TERMINAL_STATUSES:
            return
        if speaker == self._current_speaker:
            return
        self._current_speaker = speaker
        self.events.emit(SpeakerChanged(speaker=speaker))

    def _handle_participants(self, snapshot: ParticipantsSnapshot) -> None:
        if self._session is None or self._status in TERMINAL_STATUSES:
            return
        known = self._session.participants
        added = 0
        for name in snapshot.participants:
            if name and name not in known:
                known.append(name)
                added += 1
        if not added:
            return
        self.events.emit(ParticipantsUpdated(participants=list(known)))
        self._spawn(self._persist_participants(list(known)))

    async def _persist_participants(self, participants: list[str]) -> None:
        assert self._session is not None
        try:
            await self.store.update_participants(self._session.id, participants)
        except Exception as exc:
            logger.warning(
                "Failed to persist participants",
                extra={
                    "component": "meeting_orchestrator",
                    "operation": "update_participants",
                    "item_id": self._session.id,
                    "context_data": {"error": str(exc)},
                },
            )
