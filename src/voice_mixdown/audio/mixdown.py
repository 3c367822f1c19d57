"""Offline mixdown of the sequential voice track and the looped music bed."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.errors import CompositionError

MIN_PITCH_RATE = 0.5
MAX_PITCH_RATE = 2.0
_EPSILON = 1e-9


@dataclass(frozen=True, slots=True)
class TrackLevels:
    volume: float = 100.0
    gain_pct: float = 100.0
    muted: bool = False

    def effective(self) -> float:
        if self.muted:
            return 0.0
        return (self.volume / 100.0) * (self.gain_pct / 100.0)


@dataclass(slots=True)
class VoiceSource:
    buffer: PcmBuffer
    clip_gain: float = 1.0
    duration_sec: float | None = None

    @property
    def resolved_duration_sec(self) -> float:
        if self.duration_sec is None:
            return self.buffer.duration_sec
        return self.duration_sec


@dataclass(frozen=True, slots=True)
class PlacedSegment:
    source_index: int
    start_sec: float
    length_sec: float
    truncated: bool = False

    @property
    def end_sec(self) -> float:
        return self.start_sec + self.length_sec


@dataclass(slots=True)
class MixdownResult:
    buffer: PcmBuffer
    duration_sec: float
    voice_segments: list[PlacedSegment]
    music_segments: list[PlacedSegment]


def clamp_pitch_rate(pitch_pct: float) -> float:
    if not math.isfinite(pitch_pct):
        return 1.0
    return min(max(pitch_pct / 100.0, MIN_PITCH_RATE), MAX_PITCH_RATE)


def plan_voice_segments(durations: Sequence[float], pitch_rate: float) -> list[PlacedSegment]:
    """Place clips back to back; a higher rate shortens every clip (pitch and speed are coupled)."""
    rate = min(max(pitch_rate, MIN_PITCH_RATE), MAX_PITCH_RATE)
    segments: list[PlacedSegment] = []
    offset = 0.0
    for index, duration in enumerate(durations):
        length = max(duration, 0.0) / rate
        segments.append(PlacedSegment(source_index=index, start_sec=offset, length_sec=length))
        offset += length
    return segments


def plan_music_segments(durations: Sequence[float], total_sec: float) -> list[PlacedSegment]:
    """Loop the clip sequence from the start until ``total_sec`` is covered, truncating the last pass."""
    if total_sec <= 0.0 or sum(max(duration, 0.0) for duration in durations) <= 0.0:
        return []

    segments: list[PlacedSegment] = []
    offset = 0.0
    while total_sec - offset > _EPSILON:
        for index, duration in enumerate(durations):
            remaining = total_sec - offset
            if remaining <= _EPSILON:
                break
            if duration <= 0.0:
                continue
            if duration >= remaining:
                segments.append(
                    PlacedSegment(
                        source_index=index,
                        start_sec=offset,
                        length_sec=remaining,
                        truncated=duration > remaining,
                    )
                )
                offset = total_sec
                break
            segments.append(PlacedSegment(source_index=index, start_sec=offset, length_sec=duration))
            offset += duration
    return segments


def voice_track_duration(durations: Sequence[float], pitch_rate: float) -> float:
    segments = plan_voice_segments(durations, pitch_rate)
    if not segments:
        return 0.0
    return segments[-1].end_sec


def render_mixdown(
    voice: Sequence[VoiceSource],
    music: Sequence[PcmBuffer],
    voice_levels: TrackLevels,
    music_levels: TrackLevels,
    pitch_pct: float = 100.0,
    sample_rate: int = 44_100,
    fallback_duration_sec: float = 60.0,
) -> MixdownResult:
    if sample_rate <= 0:
        raise ValueError("sample_rate must be positive")

    pitch_rate = clamp_pitch_rate(pitch_pct)
    voice_segments = plan_voice_segments([source.resolved_duration_sec for source in voice], pitch_rate)
    total_sec = voice_segments[-1].end_sec if voice_segments else fallback_duration_sec
    if total_sec <= 0.0:
        raise CompositionError("composition has zero total duration")

    output = PcmBuffer.silent(2, _frames_for(total_sec, sample_rate), sample_rate)
    left, right = output.channels

    voice_gain = voice_levels.effective()
    for segment, source in zip(voice_segments, voice, strict=True):
        _accumulate(
            left,
            right,
            source.buffer,
            start_frame=int(math.floor(segment.start_sec * sample_rate)),
            length_frames=int(math.floor(segment.length_sec * sample_rate)),
            step=pitch_rate * source.buffer.sample_rate / sample_rate,
            gain=voice_gain * source.clip_gain,
        )

    music_segments = plan_music_segments([buffer.duration_sec for buffer in music], total_sec)
    music_gain = music_levels.effective()
    for segment in music_segments:
        source = music[segment.source_index]
        _accumulate(
            left,
            right,
            source,
            start_frame=int(math.floor(segment.start_sec * sample_rate)),
            length_frames=int(math.floor(segment.length_sec * sample_rate)),
            step=source.sample_rate / sample_rate,
            gain=music_gain,
        )

    return MixdownResult(
        buffer=output,
        duration_sec=total_sec,
        voice_segments=voice_segments,
        music_segments=music_segments,
    )


def _frames_for(duration_sec: float, sample_rate: int) -> int:
    # Absorb float noise such as 0.1 * 44100 == 4410.000000000001.
    return int(math.ceil(duration_sec * sample_rate - 1e-6))


def _accumulate(
    left: list[float],
    right: list[float],
    source: PcmBuffer,
    start_frame: int,
    length_frames: int,
    step: float,
    gain: float,
) -> None:
    if gain == 0.0 or length_frames <= 0 or step <= 0.0:
        return
    source_left, source_right = source.stereo_view()
    source_frames = source.frame_count
    end_frame = min(start_frame + length_frames, len(left))
    for offset in range(max(end_frame - start_frame, 0)):
        source_index = int(offset * step)
        if source_index >= source_frames:
            break
        left[start_frame + offset] += source_left[source_index] * gain
        right[start_frame + offset] += source_right[source_index] * gain
