from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from meetlive.core.db import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MeetingSessionRecord(Base):
    __tablename__ = "meeting_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    tab_id = Column(String(64), nullable=True)
    title = Column(String(500), nullable=True)
    url = Column(String(2048), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    participants = Column(JSON, default=list, nullable=False)
    detected_language = Column(String(16), nullable=True)
    session_metadata = Column(JSON, default=dict, nullable=False)

    summary = Column(Text, nullable=True)
    summary_kind = Column(String(32), nullable=True)

    entries = relationship(
        "TranscriptEntry",
        back_populates="session",
        order_by="TranscriptEntry.offset_seconds",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_meeting_user_started", "user_id", "started_at"),)

    def __repr__(self):
        return f"<MeetingSessionRecord(id={self.id}, platform={self.platform})>"


class TranscriptEntry(Base):
    __tablename__ = "transcript_entries"

    id = Column(Integer, primary_key=True)
    segment_id = Column(String(64), nullable=False, unique=True, index=True)
    session_id = Column(
        String(64), ForeignKey("meeting_sessions.id", ondelete="CASCADE"), nullable=False
    )

    timestamp = Column(DateTime(timezone=True), nullable=False)
    offset_seconds = Column(Float, nullable=False, default=0.0)
    speaker = Column(String(200), nullable=True)
    text = Column(Text, nullable=False)
    is_assistant_reply = Column(Boolean, default=False, nullable=False)
    is_assistant_invocation = Column(Boolean, default=False, nullable=False)
    language = Column(String(16), nullable=True)
    confidence = Column(Float, nullable=True)

    session = relationship("MeetingSessionRecord", back_populates="entries")

    __table_args__ = (Index("idx_transcript_session_offset", "session_id", "offset_seconds"),)

    def __repr__(self):
        return f"<TranscriptEntry(segment_id={self.segment_id}, session_id={self.session_id})>"
