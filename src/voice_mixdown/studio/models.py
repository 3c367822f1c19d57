"""Session models: clips, tracks, the current composition and events."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.decoder import AudioEncoding
from voice_mixdown.audio.export import ExportFormat
from voice_mixdown.audio.mixdown import TrackLevels
from voice_mixdown.audio.resources import ResourceHandle


class TrackKind(str, Enum):
    VOICE = "voice"
    MUSIC = "music"


class CompositionState(str, Enum):
    ABSENT = "absent"
    IN_PROGRESS = "in-progress"
    READY = "ready"
    FAILED = "failed"


class EventKind(str, Enum):
    TRACKS_CHANGED = "tracks_changed"
    INGEST_COMPLETED = "ingest_completed"
    COMPOSITION_STATE = "composition_state"
    EXPORT_COMPLETED = "export_completed"
    PLAYBACK_STATE = "playback_state"
    NORMALIZED = "normalized"
    NOTIFICATION = "notification"


@dataclass(slots=True)
class ClipUpload:
    name: str
    data: bytes = field(repr=False)
    encoding: AudioEncoding | None = None


@dataclass(slots=True)
class AudioClip:
    clip_id: str
    name: str
    track: TrackKind
    source: bytes = field(repr=False)
    handle: ResourceHandle | None
    encoding: AudioEncoding
    duration_sec: float
    position: int = 0


@dataclass(slots=True)
class TrackState:
    kind: TrackKind
    volume: float
    muted: bool = False
    gain_pct: float = 100.0
    pitch_pct: float = 100.0
    clips: list[AudioClip] = field(default_factory=list)
    clip_gains: dict[str, float] = field(default_factory=dict)

    @property
    def total_duration_sec(self) -> float:
        return sum(clip.duration_sec for clip in self.clips)

    def levels(self) -> TrackLevels:
        return TrackLevels(volume=self.volume, gain_pct=self.gain_pct, muted=self.muted)

    def clip_gain(self, clip_id: str) -> float:
        return self.clip_gains.get(clip_id, 1.0)

    def capture(self) -> TrackState:
        """Freeze order and levels; clip objects stay shared so handle recovery still applies."""
        return replace(self, clips=list(self.clips), clip_gains=dict(self.clip_gains))

    def snapshot(self) -> TrackState:
        return replace(
            self,
            clips=[replace(clip) for clip in self.clips],
            clip_gains=dict(self.clip_gains),
        )


@dataclass(slots=True)
class Composition:
    composition_id: str
    state: CompositionState
    generation: int
    revision: int
    created_at: datetime
    duration_sec: float = 0.0
    sample_rate: int = 0
    handle: ResourceHandle | None = None
    buffer: PcmBuffer | None = field(default=None, repr=False)
    error: str | None = None

    @staticmethod
    def new(state: CompositionState, generation: int = 0, revision: int = 0) -> Composition:
        return Composition(
            composition_id=str(uuid4()),
            state=state,
            generation=generation,
            revision=revision,
            created_at=datetime.now(UTC),
        )


@dataclass(slots=True)
class IngestFailure:
    name: str
    reason: str


@dataclass(slots=True)
class IngestReport:
    track: TrackKind
    added: list[AudioClip] = field(default_factory=list)
    failures: list[IngestFailure] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ExportArtifact:
    requested: ExportFormat
    container: ExportFormat
    mime_type: str
    file_name: str
    handle: ResourceHandle
    size_bytes: int


@dataclass(slots=True)
class StudioEvent:
    kind: EventKind
    message: str = ""
    level: Literal["info", "error"] = "info"
    payload: object | None = None
