"""Preview playback: schedules clips onto an output graph with live gain/pitch."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence
from uuid import uuid4

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.mixdown import (
    PlacedSegment,
    TrackLevels,
    clamp_pitch_rate,
    plan_music_segments,
    plan_voice_segments,
)
from voice_mixdown.audio.output_graph import OutputGraph, PlaybackUnit, TrackStage

_LOGGER = logging.getLogger("voice_mixdown.playback")

OutputGraphFactory = Callable[[], OutputGraph]


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


@dataclass(slots=True)
class ScheduledClip:
    buffer: PcmBuffer
    duration_sec: float
    clip_gain: float = 1.0
    clip_id: str = ""


@dataclass(slots=True)
class PlaybackSession:
    session_id: str
    started_at: float
    total_duration_sec: float
    voice_stage: TrackStage
    music_stage: TrackStage
    voice_segments: list[PlacedSegment]
    music_segments: list[PlacedSegment]
    units: list[PlaybackUnit] = field(default_factory=list)


class PlaybackScheduler:
    def __init__(self, graph_factory: OutputGraphFactory) -> None:
        self._graph_factory = graph_factory
        self._graph: OutputGraph | None = None
        self._session: PlaybackSession | None = None
        self._lock = threading.RLock()
        self._voice: list[ScheduledClip] = []
        self._music: list[ScheduledClip] = []

    @property
    def state(self) -> PlaybackState:
        return PlaybackState.PLAYING if self._session is not None else PlaybackState.IDLE

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    def play(
        self,
        voice: Sequence[ScheduledClip],
        music: Sequence[ScheduledClip],
        voice_levels: TrackLevels,
        music_levels: TrackLevels,
        pitch_pct: float = 100.0,
        fallback_duration_sec: float = 60.0,
    ) -> PlaybackSession:
        # Prior-session teardown and the new schedule happen under one lock.
        with self._lock:
            return self._play_locked(voice, music, voice_levels, music_levels, pitch_pct, fallback_duration_sec)

    def _play_locked(
        self,
        voice: Sequence[ScheduledClip],
        music: Sequence[ScheduledClip],
        voice_levels: TrackLevels,
        music_levels: TrackLevels,
        pitch_pct: float,
        fallback_duration_sec: float,
    ) -> PlaybackSession:
        self._stop_locked()
        graph = self._ensure_graph()

        pitch_rate = clamp_pitch_rate(pitch_pct)
        voice_stage = TrackStage(gain=voice_levels.effective(), rate=pitch_rate)
        music_stage = TrackStage(gain=music_levels.effective())
        graph.attach(voice_stage)
        graph.attach(music_stage)

        voice_segments = plan_voice_segments([clip.duration_sec for clip in voice], pitch_rate)
        total_sec = voice_segments[-1].end_sec if voice_segments else fallback_duration_sec
        music_segments = plan_music_segments([clip.duration_sec for clip in music], total_sec)

        now = graph.current_time()
        session = PlaybackSession(
            session_id=str(uuid4()),
            started_at=now,
            total_duration_sec=total_sec,
            voice_stage=voice_stage,
            music_stage=music_stage,
            voice_segments=voice_segments,
            music_segments=music_segments,
        )
        for segment, clip in zip(voice_segments, voice, strict=True):
            unit = graph.create_playback_unit(clip.buffer, voice_stage, clip.clip_gain)
            unit.start(now + segment.start_sec)
            session.units.append(unit)
        for segment in music_segments:
            clip = music[segment.source_index]
            unit = graph.create_playback_unit(clip.buffer, music_stage)
            unit.start(now + segment.start_sec, segment.length_sec if segment.truncated else None)
            session.units.append(unit)

        self._session = session
        self._voice = list(voice)
        self._music = list(music)
        _LOGGER.info(
            "playback %s: %d unit(s) over %.2fs",
            session.session_id,
            len(session.units),
            total_sec,
        )
        return session

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        for unit in session.units:
            unit.stop()
        session.units.clear()
        if self._graph is not None:
            self._graph.detach(session.voice_stage)
            self._graph.detach(session.music_stage)
        self._voice = []
        self._music = []
        _LOGGER.info("playback %s stopped", session.session_id)

    def set_voice_gain(self, gain: float) -> None:
        if self._session is not None:
            self._session.voice_stage.gain = gain

    def set_music_gain(self, gain: float) -> None:
        if self._session is not None:
            self._session.music_stage.gain = gain

    def set_voice_pitch(self, pitch_pct: float) -> None:
        if self._session is not None:
            self._session.voice_stage.rate = clamp_pitch_rate(pitch_pct)

    def position_sec(self) -> float:
        if self._session is None or self._graph is None:
            return 0.0
        return max(self._graph.current_time() - self._session.started_at, 0.0)

    def sounding_window(self, window_sec: float = 0.05) -> list[float]:
        """Mono samples currently sounding, scaled by the live stage gains."""
        session = self._session
        if session is None or self._graph is None:
            return []
        position = self.position_sec()
        sample_rate = self._graph.sample_rate
        size = max(int(window_sec * sample_rate), 1)
        window = [0.0] * size
        _mix_window(window, position, session.voice_segments, self._voice, session.voice_stage, sample_rate, True)
        _mix_window(window, position, session.music_segments, self._music, session.music_stage, sample_rate, False)
        return window

    def _ensure_graph(self) -> OutputGraph:
        if self._graph is None:
            self._graph = self._graph_factory()
        return self._graph


def _mix_window(
    window: list[float],
    position: float,
    segments: Sequence[PlacedSegment],
    clips: Sequence[ScheduledClip],
    stage: TrackStage,
    sample_rate: int,
    use_clip_gain: bool,
) -> None:
    for segment in segments:
        if not segment.start_sec <= position < segment.end_sec:
            continue
        clip = clips[segment.source_index]
        left, right = clip.buffer.stereo_view()
        gain = stage.gain * (clip.clip_gain if use_clip_gain else 1.0)
        step = stage.rate * clip.buffer.sample_rate / sample_rate
        start = (position - segment.start_sec) * clip.buffer.sample_rate * stage.rate
        for offset in range(len(window)):
            index = int(start + offset * step)
            if index >= len(left):
                break
            window[offset] += 0.5 * (left[index] + right[index]) * gain
