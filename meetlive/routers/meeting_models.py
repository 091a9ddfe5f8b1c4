"""Pydantic DTOs for the meeting websocket and health endpoints."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from meetlive.models.meeting import SummaryKind


class MeetingHealthResponse(BaseModel):
    """Which meeting capabilities are configured."""

    ready: bool
    google_api_configured: bool
    openai_api_configured: bool
    live_model: str
    transcription_backends: list[str]
    readiness_reasons: list[str]


class MeetingClientSessionStartEvent(BaseModel):
    """Client event that opens a meeting session on this connection."""

    type: Literal["session.start"]
    platform: str = Field(default="google_meet", max_length=40)
    user_id: str = Field(min_length=1, max_length=128)
    tab_id: int | str | None = None
    title: str | None = Field(default=None, max_length=500)
    url: str | None = Field(default=None, max_length=2000)


class MeetingClientAudioFrameEvent(BaseModel):
    """Client event containing one 16 kHz PCM16 frame."""

    type: Literal["audio.frame"]
    pcm16_b64: str = Field(min_length=1)
    source: Literal["tab", "mic", "mixed"] = "mixed"
    seq: int | None = Field(default=None, ge=0)


class MeetingClientSpeakerUpdateEvent(BaseModel):
    type: Literal["speaker.update"]
    speaker: str | None = Field(default=None, max_length=200)


class MeetingClientParticipantsUpdateEvent(BaseModel):
    type: Literal["participants.update"]
    participants: list[str] = Field(default_factory=list)


class MeetingClientAssistantInvokeEvent(BaseModel):
    """Client event handing the conversation to the assistant."""

    type: Literal["assistant.invoke"]
    prompt: str | None = Field(default=None, max_length=4000)


class MeetingClientTextSendEvent(BaseModel):
    type: Literal["text.send"]
    text: str = Field(min_length=1, max_length=4000)


class MeetingClientPauseEvent(BaseModel):
    type: Literal["session.pause"]


class MeetingClientResumeEvent(BaseModel):
    type: Literal["session.resume"]


class MeetingClientVolumeEvent(BaseModel):
    type: Literal["volume.set"]
    source: Literal["tab", "mic", "mixed"]
    level: float = Field(ge=0.0, le=1.0)


class MeetingClientSummaryRequestEvent(BaseModel):
    type: Literal["summary.request"]
    kind: SummaryKind = SummaryKind.DETAILED


class MeetingClientSessionEndEvent(BaseModel):
    """Client event for intentional session shutdown."""

    type: Literal["session.end"]
    generate_summary: bool = True


MeetingClientEvent = Annotated[
    MeetingClientSessionStartEvent
    | MeetingClientAudioFrameEvent
    | MeetingClientSpeakerUpdateEvent
    | MeetingClientParticipantsUpdateEvent
    | MeetingClientAssistantInvokeEvent
    | MeetingClientTextSendEvent
    | MeetingClientPauseEvent
    | MeetingClientResumeEvent
    | MeetingClientVolumeEvent
    | MeetingClientSummaryRequestEvent
    | MeetingClientSessionEndEvent,
    Field(discriminator="type"),
]

MEETING_CLIENT_EVENT_ADAPTER = TypeAdapter(MeetingClientEvent)
