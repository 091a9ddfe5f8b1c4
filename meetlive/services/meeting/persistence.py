"""SQLAlchemy persistence for meeting sessions and transcript batches."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlive.core.db import get_db
from meetlive.core.logging import get_logger
from meetlive.models.meeting import MeetingSession, SummaryKind, TranscriptSegment
from meetlive.models.schema import MeetingSessionRecord, TranscriptEntry
from meetlive.services.meeting.errors import PersistenceError

logger = get_logger(__name__)

DbScope = Callable[[], AbstractContextManager[Session]]
T = TypeVar("T")


def create_session_record(db: Session, session: MeetingSession) -> MeetingSessionRecord:
    record = MeetingSessionRecord(
        id=session.id,
        user_id=session.user_id,
        platform=session.platform,
        tab_id=str(session.tab_id) if session.tab_id is not None else None,
        title=session.title,
        url=session.url,
        started_at=session.started_at,
        participants=list(session.participants),
        detected_language=session.detected_language,
        session_metadata=dict(session.metadata),
    )
    db.add(record)
    db.flush()
    return record


def upsert_transcript_entries(
    db: Session, session_id: str, segments: Sequence[TranscriptSegment]
) -> int:
    """Insert new segments and overwrite corrected ones, keyed by segment id."""

    if not segments:
        return 0
    existing = {
        entry.segment_id: entry
        for entry in db.query(TranscriptEntry)
        .filter(TranscriptEntry.segment_id.in_([segment.id for segment in segments]))
        .all()
    }
    for segment in segments:
        entry = existing.get(segment.id)
        if entry is None:
            entry = TranscriptEntry(segment_id=segment.id, session_id=session_id)
            db.add(entry)
        entry.timestamp = segment.timestamp
        entry.offset_seconds = segment.offset_seconds
        entry.speaker = segment.speaker
        entry.text = segment.text
        entry.is_assistant_reply = segment.is_assistant_reply
        entry.is_assistant_invocation = segment.is_assistant_invocation
        entry.language = segment.language
        entry.confidence = segment.confidence
    db.flush()
    return len(segments)


def finalize_session_record(
    db: Session,
    session_id: str,
    *,
    ended_at: datetime,
    summary: str | None,
    summary_kind: SummaryKind | None,
) -> MeetingSessionRecord | None:
    record = db.get(MeetingSessionRecord, session_id)
    if record is None:
        return None
    record.ended_at = ended_at
    if summary is not None:
        record.summary = summary
        record.summary_kind = SummaryKind(summary_kind).value if summary_kind else None
    db.flush()
    return record


def set_session_participants(db: Session, session_id: str, participants: list[str]) -> bool:
    record = db.get(MeetingSessionRecord, session_id)
    if record is None:
        return False
    record.participants = list(participants)
    db.flush()
    return True


def load_transcript(db: Session, session_id: str) -> list[TranscriptSegment]:
    entries = (
        db.query(TranscriptEntry)
        .filter(TranscriptEntry.session_id == session_id)
        .order_by(TranscriptEntry.offset_seconds, TranscriptEntry.id)
        .all()
    )
    return [
        TranscriptSegment(
            id=entry.segment_id,
            text=entry.text,
            timestamp=entry.timestamp,
            offset_seconds=entry.offset_seconds,
            speaker=entry.speaker,
            is_assistant_reply=entry.is_assistant_reply,
            is_assistant_invocation=entry.is_assistant_invocation,
            language=entry.language,
            confidence=entry.confidence,
        )
        for entry in entries
    ]


class SqlMeetingStore:
    """Meeting persistence on a SQLAlchemy database; blocking work runs in threads."""

    def __init__(self, db_scope: DbScope = get_db) -> None:
        self._db_scope = db_scope

    def _run(self, operation: str, session_id: str, fn: Callable[[Session], T]) -> T:
        try:
            with self._db_scope() as db:
                return fn(db)
        except SQLAlchemyError as exc:
            logger.error(
                "Meeting persistence failed",
                extra={
                    "component": "meeting_store",
                    "operation": operation,
                    "item_id": session_id,
                    "context_data": {"error": str(exc)},
                },
            )
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    async def create_session(self, session: MeetingSession) -> MeetingSession:
        await asyncio.to_thread(
            self._run, "create_session", session.id, lambda db: create_session_record(db, session)
        )
        return session

    async def add_transcript_batch(
        self, session_id: str, segments: Sequence[TranscriptSegment]
    ) -> None:
        batch = list(segments)
        count = await asyncio.to_thread(
            self._run,
            "add_transcript_batch",
            session_id,
            lambda db: upsert_transcript_entries(db, session_id, batch),
        )
        logger.info(
            "Saved transcript batch",
            extra={
                "component": "meeting_store",
                "operation": "add_transcript_batch",
                "item_id": session_id,
                "context_data": {"segments": count},
            },
        )

    async def update_participants(self, session_id: str, participants: list[str]) -> None:
        await asyncio.to_thread(
            self._run,
            "update_participants",
            session_id,
            lambda db: set_session_participants(db, session_id, participants),
        )

    async def end_session(
        self,
        session_id: str,
        *,
        ended_at: datetime,
        summary: str | None = None,
        summary_kind: SummaryKind | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._run,
            "end_session",
            session_id,
            lambda db: finalize_session_record(
                db,
                session_id,
                ended_at=ended_at,
                summary=summary,
                summary_kind=summary_kind,
            ),
        )

    async def get_transcript(self, session_id: str) -> list[TranscriptSegment]:
        return await asyncio.to_thread(
            self._run, "get_transcript", session_id, lambda db: load_transcript(db, session_id)
        )
