"""Public API facade for UI collaborators."""

from __future__ import annotations

from concurrent.futures import Future
from typing import Callable, Literal, Sequence

from voice_mixdown.audio.export import ExportFormat
from voice_mixdown.audio.loudness import MeterReading
from voice_mixdown.audio.playback import PlaybackSession
from voice_mixdown.audio.resources import SweepReport
from voice_mixdown.studio.models import (
    ClipUpload,
    Composition,
    ExportArtifact,
    IngestReport,
    StudioEvent,
    TrackState,
)
from voice_mixdown.studio.service import StudioService

TrackName = Literal["voice", "music"]
ExportName = Literal["wav", "flac", "ogg", "mp3", "aac"]


class Studio:
    def __init__(self, service: StudioService | None = None) -> None:
        self._service = service or StudioService()

    @property
    def service(self) -> StudioService:
        return self._service

    def subscribe(self, listener: Callable[[StudioEvent], None]) -> Callable[[], None]:
        return self._service.subscribe(listener)

    def add_clips(self, files: Sequence[tuple[str, bytes]], track: TrackName) -> Future[IngestReport]:
        uploads = [ClipUpload(name=name, data=data) for name, data in files]
        return self._service.add_clips(uploads, track=track)

    def remove_clip(self, clip_id: str) -> None:
        self._service.remove_clip(clip_id)

    def reorder(self, track: TrackName, from_index: int, to_index: int) -> None:
        self._service.reorder(track, from_index=from_index, to_index=to_index)

    def set_volume(self, track: TrackName, value: float) -> None:
        self._service.set_volume(track, value)

    def set_muted(self, track: TrackName, muted: bool) -> None:
        self._service.set_muted(track, muted)

    def set_gain(self, track: TrackName, value: float) -> None:
        self._service.set_gain(track, value)

    def set_pitch(self, value: float) -> None:
        self._service.set_pitch("voice", value)

    def set_levels(
        self,
        track: TrackName,
        volume: float | None = None,
        muted: bool | None = None,
        gain: float | None = None,
        pitch: float | None = None,
    ) -> None:
        self._service.set_levels(track, volume=volume, muted=muted, gain=gain, pitch=pitch)

    def set_clip_gain(self, clip_id: str, value: float) -> None:
        self._service.set_clip_gain(clip_id, value)

    def normalize_voice_loudness(self) -> Future[dict[str, float]]:
        return self._service.normalize_voice_loudness()

    def play(self) -> PlaybackSession:
        return self._service.play()

    def stop(self) -> None:
        self._service.stop()

    def pause(self) -> None:
        self._service.pause()

    def compose(self) -> Future[Composition]:
        return self._service.compose()

    def export(self, formats: Sequence[ExportName] = ("wav",)) -> Future[list[ExportArtifact]]:
        return self._service.export([ExportFormat(item) for item in formats])

    def track(self, track: TrackName) -> TrackState:
        return self._service.get_track_state(track)

    def composition(self) -> Composition:
        return self._service.get_composition()

    def meter(self) -> MeterReading:
        return self._service.meter()

    def check_and_recover(self) -> SweepReport:
        return self._service.check_and_recover()

    def reset(self) -> None:
        self._service.reset()
