"""Track editing rules: dense ordinals, level ranges, per-clip gains."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from voice_mixdown.studio.models import AudioClip, TrackKind, TrackState


@dataclass(frozen=True, slots=True)
class LevelSpec:
    param_id: str
    default: float
    minimum: float
    maximum: float


LEVEL_SPECS: dict[str, LevelSpec] = {
    "volume": LevelSpec("volume", 100.0, 0.0, 100.0),
    "gain": LevelSpec("gain", 100.0, 0.0, 300.0),
    "pitch": LevelSpec("pitch", 100.0, 50.0, 200.0),
    "clip_gain": LevelSpec("clip_gain", 1.0, 0.0, 10.0),
}


def default_tracks() -> dict[TrackKind, TrackState]:
    return {
        TrackKind.VOICE: TrackState(kind=TrackKind.VOICE, volume=70.0),
        TrackKind.MUSIC: TrackState(kind=TrackKind.MUSIC, volume=30.0),
    }


def check_level(param_id: str, value: float) -> float:
    spec = LEVEL_SPECS.get(param_id)
    if spec is None:
        raise KeyError(f"Unknown level '{param_id}'")
    numeric = float(value)
    if not spec.minimum <= numeric <= spec.maximum:
        raise ValueError(f"{param_id} must be within [{spec.minimum:g}, {spec.maximum:g}], got {numeric:g}")
    return numeric


def append_clips(track: TrackState, clips: Iterable[AudioClip]) -> None:
    for clip in clips:
        if clip.track != track.kind:
            raise ValueError(f"Clip '{clip.name}' belongs to the {clip.track.value} track")
        track.clips.append(clip)
        if track.kind == TrackKind.VOICE:
            track.clip_gains[clip.clip_id] = 1.0
    _renumber(track)


def remove_clip(track: TrackState, clip_id: str) -> AudioClip:
    for index, clip in enumerate(track.clips):
        if clip.clip_id == clip_id:
            del track.clips[index]
            track.clip_gains.pop(clip_id, None)
            _renumber(track)
            return clip
    raise KeyError(f"Clip '{clip_id}' not found in {track.kind.value} track")


def move_clip(track: TrackState, from_index: int, to_index: int) -> None:
    size = len(track.clips)
    if not 0 <= from_index < size:
        raise ValueError(f"from_index {from_index} out of range for {size} clip(s)")
    if not 0 <= to_index < size:
        raise ValueError(f"to_index {to_index} out of range for {size} clip(s)")
    clip = track.clips.pop(from_index)
    track.clips.insert(to_index, clip)
    _renumber(track)


def find_clip(tracks: dict[TrackKind, TrackState], clip_id: str) -> tuple[TrackState, AudioClip]:
    for track in tracks.values():
        for clip in track.clips:
            if clip.clip_id == clip_id:
                return track, clip
    raise KeyError(f"Clip '{clip_id}' not found")


def _renumber(track: TrackState) -> None:
    for position, clip in enumerate(track.clips):
        clip.position = position
