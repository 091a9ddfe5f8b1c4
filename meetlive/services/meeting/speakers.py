"""Speaker tracking driven by the meeting client's reports."""

from __future__ import annotations

from meetlive.services.meeting.contracts import (
    ParticipantsCallback,
    ParticipantsSnapshot,
    SpeakerCallback,
)


class ClientSpeakerTracker:
    """Forward the client's active-speaker and roster reports while started."""

    def __init__(self) -> None:
        self._on_speaker: SpeakerCallback | None = None
        self._on_participants: ParticipantsCallback | None = None
        self.current_speaker: str | None = None

    @property
    def running(self) -> bool:
        return self._on_speaker is not None

    async def start(
        self, on_speaker: SpeakerCallback, on_participants: ParticipantsCallback
    ) -> None:
        self._on_speaker = on_speaker
        self._on_participants = on_participants

    async def stop(self) -> None:
        self._on_speaker = None
        self._on_participants = None

    def report_speaker(self, name: str | None) -> None:
        name = (name or "").strip() or None
        if name == self.current_speaker:
            return
        self.current_speaker = name
        if self._on_speaker is not None:
            self._on_speaker(name)

    def report_participants(self, names: list[str]) -> None:
        cleaned: list[str] = []
        for name in names:
            name = (name or "").strip()
            if name and name not in cleaned:
                cleaned.append(name)
        if self._on_participants is not None:
            self._on_participants(ParticipantsSnapshot(participants=cleaned))
