"""Studio service: ingest, edit, normalize, play, compose and export."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Sequence
from uuid import uuid4

from voice_mixdown.audio.decoder import DecodedAudio, DecoderAdapter
from voice_mixdown.audio.export import ExportFormat, encode_export
from voice_mixdown.audio.gate import DEFAULT_GATE, GateSettings, apply_noise_gate
from voice_mixdown.audio.loudness import MeterReading, meter_reading
from voice_mixdown.audio.mixdown import MixdownResult, VoiceSource, render_mixdown
from voice_mixdown.audio.output_graph import OutputGraph, SoundDeviceOutputGraph
from voice_mixdown.audio.playback import PlaybackScheduler, PlaybackSession, PlaybackState, ScheduledClip
from voice_mixdown.audio.resources import ResourceHandle, ResourceManager, SweepReport
from voice_mixdown.audio.wav_encoder import WAV_MIME_TYPE, encode_wav
from voice_mixdown.config import StudioConfig
from voice_mixdown.errors import (
    CompositionError,
    DecodeError,
    HandleInvalidError,
    UnsupportedEnvironmentError,
    VoiceMixdownError,
)
from voice_mixdown.studio.models import (
    AudioClip,
    ClipUpload,
    Composition,
    CompositionState,
    EventKind,
    ExportArtifact,
    IngestFailure,
    IngestReport,
    StudioEvent,
    TrackKind,
    TrackState,
)
from voice_mixdown.studio.normalize import equalize_to_loudest, measure_clip_level
from voice_mixdown.studio.tracks import (
    append_clips,
    check_level,
    default_tracks,
    find_clip,
    move_clip,
    remove_clip,
)

_LOGGER = logging.getLogger("voice_mixdown.studio")

EventListener = Callable[[StudioEvent], None]


class StudioService:
    def __init__(
        self,
        config: StudioConfig | None = None,
        decoder: DecoderAdapter | None = None,
        resources: ResourceManager | None = None,
        graph_factory: Callable[[], OutputGraph] | None = None,
        gate: GateSettings = DEFAULT_GATE,
    ) -> None:
        self._config = config or StudioConfig.from_env()
        self._decoder = decoder or DecoderAdapter()
        self._resources = resources or ResourceManager()
        self._scheduler = PlaybackScheduler(graph_factory or self._default_graph)
        self._gate = gate
        self._jobs = ThreadPoolExecutor(max_workers=self._config.workers, thread_name_prefix="studio-job")
        self._decoders = ThreadPoolExecutor(max_workers=self._config.workers, thread_name_prefix="studio-decode")

        self._lock = threading.RLock()
        self._tracks = default_tracks()
        self._revision = 0
        self._generation = 0
        self._composition = Composition.new(CompositionState.ABSENT)
        self._ready: Composition | None = None
        self._exports: dict[str, ExportArtifact] = {}
        self._listeners: list[EventListener] = []

    # Events

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # Queries

    def get_track_state(self, track: TrackKind | str) -> TrackState:
        with self._lock:
            return self._tracks[TrackKind(track)].snapshot()

    def get_composition(self) -> Composition:
        with self._lock:
            return self._composition

    def get_ready_composition(self) -> Composition | None:
        with self._lock:
            return self._ready

    def get_resources(self) -> ResourceManager:
        return self._resources

    def get_export(self, handle_id: str) -> ExportArtifact:
        with self._lock:
            artifact = self._exports.get(handle_id)
        if artifact is None:
            raise KeyError(f"Export '{handle_id}' not found")
        return artifact

    def playback_state(self) -> PlaybackState:
        return self._scheduler.state

    def playback_session(self) -> PlaybackSession | None:
        return self._scheduler.session

    def playback_position(self) -> float:
        return self._scheduler.position_sec()

    def meter(self) -> MeterReading:
        return meter_reading(self._scheduler.sounding_window())

    # Track editing

    def add_clips(self, uploads: Sequence[ClipUpload], track: TrackKind | str) -> Future[IngestReport]:
        kind = TrackKind(track)
        if not uploads:
            raise ValueError("no files to add")
        jobs = [(upload, self._decoders.submit(self._ingest_one, upload, kind)) for upload in uploads]
        return self._jobs.submit(self._collect_ingest, kind, jobs)

    def remove_clip(self, clip_id: str) -> None:
        with self._lock:
            track, _ = find_clip(self._tracks, clip_id)
            clip = remove_clip(track, clip_id)
            self._resources.release(clip.handle)
            clip.handle = None
            self._revision += 1
        _LOGGER.info("removed %s clip '%s'", track.kind.value, clip.name)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, f"Removed '{clip.name}'", payload=track.kind))

    def reorder(self, track: TrackKind | str, from_index: int, to_index: int) -> None:
        kind = TrackKind(track)
        with self._lock:
            move_clip(self._tracks[kind], from_index, to_index)
            self._revision += 1
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_volume(self, track: TrackKind | str, value: float) -> None:
        kind = TrackKind(track)
        volume = check_level("volume", value)
        with self._lock:
            self._tracks[kind].volume = volume
            self._level_changed(kind)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_muted(self, track: TrackKind | str, muted: bool) -> None:
        kind = TrackKind(track)
        with self._lock:
            self._tracks[kind].muted = bool(muted)
            self._level_changed(kind)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_gain(self, track: TrackKind | str, value: float) -> None:
        kind = TrackKind(track)
        gain = check_level("gain", value)
        with self._lock:
            self._tracks[kind].gain_pct = gain
            self._level_changed(kind)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_pitch(self, track: TrackKind | str, value: float) -> None:
        kind = TrackKind(track)
        if kind != TrackKind.VOICE:
            raise ValueError("pitch is only adjustable on the voice track")
        pitch = check_level("pitch", value)
        with self._lock:
            self._tracks[kind].pitch_pct = pitch
            self._revision += 1
            self._scheduler.set_voice_pitch(pitch)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_levels(
        self,
        track: TrackKind | str,
        volume: float | None = None,
        muted: bool | None = None,
        gain: float | None = None,
        pitch: float | None = None,
    ) -> None:
        """Validate every provided level first, then apply them together."""
        kind = TrackKind(track)
        if pitch is not None and kind != TrackKind.VOICE:
            raise ValueError("pitch is only adjustable on the voice track")
        checked = {
            name: check_level(name, value)
            for name, value in (("volume", volume), ("gain", gain), ("pitch", pitch))
            if value is not None
        }
        with self._lock:
            state = self._tracks[kind]
            if "volume" in checked:
                state.volume = checked["volume"]
            if muted is not None:
                state.muted = bool(muted)
            if "gain" in checked:
                state.gain_pct = checked["gain"]
            if "pitch" in checked:
                state.pitch_pct = checked["pitch"]
                self._scheduler.set_voice_pitch(state.pitch_pct)
            self._level_changed(kind)
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))

    def set_clip_gain(self, clip_id: str, value: float) -> None:
        gain = check_level("clip_gain", value)
        with self._lock:
            track, _ = find_clip(self._tracks, clip_id)
            if track.kind != TrackKind.VOICE:
                raise ValueError("per-clip gain is only available on the voice track")
            track.clip_gains[clip_id] = gain
            self._revision += 1
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=track.kind))

    # Loudness

    def normalize_voice_loudness(self) -> Future[dict[str, float]]:
        with self._lock:
            voice = self._tracks[TrackKind.VOICE].capture()
        return self._jobs.submit(self._run_normalize, voice)

    # Playback

    def play(self) -> PlaybackSession:
        with self._lock:
            voice = self._tracks[TrackKind.VOICE].capture()
            music = self._tracks[TrackKind.MUSIC].capture()
        if not voice.clips and not music.clips:
            error = CompositionError("Add voice or music clips before playing")
            self._notify_error(str(error))
            raise error

        voice_units: list[ScheduledClip] = []
        for clip in voice.clips:
            decoded = self._decode_for_preview(clip)
            if decoded is None:
                continue
            voice_units.append(
                ScheduledClip(
                    buffer=apply_noise_gate(decoded.buffer, self._gate),
                    duration_sec=decoded.duration_sec,
                    clip_gain=voice.clip_gain(clip.clip_id),
                    clip_id=clip.clip_id,
                )
            )
        music_units: list[ScheduledClip] = []
        for clip in music.clips:
            decoded = self._decode_for_preview(clip)
            if decoded is None:
                continue
            music_units.append(ScheduledClip(buffer=decoded.buffer, duration_sec=decoded.duration_sec, clip_id=clip.clip_id))

        try:
            session = self._scheduler.play(
                voice=voice_units,
                music=music_units,
                voice_levels=voice.levels(),
                music_levels=music.levels(),
                pitch_pct=voice.pitch_pct,
                fallback_duration_sec=self._config.fallback_duration_sec,
            )
        except UnsupportedEnvironmentError as exc:
            self._notify_error(f"Playback failed: {exc}")
            raise
        self._emit(StudioEvent(EventKind.PLAYBACK_STATE, "Playback started", payload=PlaybackState.PLAYING))
        return session

    def stop(self) -> None:
        if self._scheduler.state == PlaybackState.IDLE:
            return
        self._scheduler.stop()
        self._emit(StudioEvent(EventKind.PLAYBACK_STATE, "Playback stopped", payload=PlaybackState.IDLE))

    def pause(self) -> None:
        # No resume position is kept; the next play() starts from zero.
        self.stop()

    # Composition

    def compose(self) -> Future[Composition]:
        with self._lock:
            voice = self._tracks[TrackKind.VOICE].capture()
            music = self._tracks[TrackKind.MUSIC].capture()
            pending = self._begin_composition()
        self._emit_composition(pending)
        return self._jobs.submit(self._run_compose, pending, voice, music, False)

    def export(self, formats: Sequence[ExportFormat | str]) -> Future[list[ExportArtifact]]:
        requested: list[ExportFormat] = []
        for item in formats or [ExportFormat.WAV]:
            export_format = ExportFormat(item)
            if export_format not in requested:
                requested.append(export_format)
        return self._jobs.submit(self._run_export, requested)

    def release_export(self, handle_id: str) -> None:
        with self._lock:
            artifact = self._exports.pop(handle_id, None)
        if artifact is None:
            raise KeyError(f"Export '{handle_id}' not found")
        self._resources.release(artifact.handle)

    # Handle lifecycle

    def check_and_recover(self) -> SweepReport:
        with self._lock:
            clips = [clip for track in self._tracks.values() for clip in track.clips]
        report = self._resources.sweep(clips, self._trial_decode)
        with self._lock:
            for clip in clips:
                if clip.clip_id in report.recovered and not self._is_present(clip):
                    self._resources.release(clip.handle)
                    clip.handle = None
        if report.recovered:
            _LOGGER.info("recovered %d clip handle(s)", len(report.recovered))
        if report.failed:
            names = ", ".join(clip.name for clip in clips if clip.clip_id in report.failed)
            self._notify_error(f"Could not recover {len(report.failed)} file(s): {names}")
        return report

    def log_active_handles(self) -> None:
        self._resources.log_active_handles()

    def reset(self) -> None:
        self.stop()
        with self._lock:
            for track in self._tracks.values():
                for clip in track.clips:
                    self._resources.release(clip.handle)
                    clip.handle = None
                track.clips.clear()
                track.clip_gains.clear()
            if self._ready is not None:
                self._resources.release(self._ready.handle)
                self._ready = None
            for artifact in self._exports.values():
                self._resources.release(artifact.handle)
            self._exports.clear()
            self._generation += 1
            self._revision += 1
            self._composition = Composition.new(CompositionState.ABSENT, self._generation, self._revision)
        _LOGGER.info("session reset")
        self._emit(StudioEvent(EventKind.TRACKS_CHANGED, "Reset all content"))
        self._emit_composition(self._composition)

    def shutdown(self) -> None:
        self.stop()
        self._jobs.shutdown(wait=True)
        self._decoders.shutdown(wait=True)

    # Internals

    def _default_graph(self) -> OutputGraph:
        return SoundDeviceOutputGraph(
            sample_rate=self._config.sample_rate,
            block_size=self._config.output_block_size,
        )

    def _ingest_one(self, upload: ClipUpload, kind: TrackKind) -> AudioClip:
        decoded = self._decoder.decode(upload.data, upload.encoding)
        handle = self._resources.create(upload.data, kind="clip", mime_type=f"audio/{decoded.encoding.value}")
        return AudioClip(
            clip_id=str(uuid4()),
            name=upload.name,
            track=kind,
            source=bytes(upload.data),
            handle=handle,
            encoding=decoded.encoding,
            duration_sec=decoded.duration_sec,
        )

    def _collect_ingest(self, kind: TrackKind, jobs: list[tuple[ClipUpload, Future[AudioClip]]]) -> IngestReport:
        report = IngestReport(track=kind)
        deadline = time.monotonic() + self._config.decode_timeout_sec
        for upload, job in jobs:
            try:
                clip = job.result(timeout=max(deadline - time.monotonic(), 0.0))
            except FutureTimeoutError:
                job.add_done_callback(self._discard_late_clip)
                report.failures.append(IngestFailure(upload.name, "decoding timed out"))
                continue
            except (DecodeError, UnsupportedEnvironmentError) as exc:
                _LOGGER.warning("failed to ingest '%s': %s", upload.name, exc)
                report.failures.append(IngestFailure(upload.name, str(exc)))
                continue
            report.added.append(clip)

        if report.added:
            with self._lock:
                append_clips(self._tracks[kind], report.added)
                self._revision += 1
            self._emit(StudioEvent(EventKind.TRACKS_CHANGED, payload=kind))
        self._emit(
            StudioEvent(
                EventKind.INGEST_COMPLETED,
                f"Added {len(report.added)} {kind.value} file(s)",
                payload=report,
            )
        )
        if report.failures:
            names = ", ".join(failure.name for failure in report.failures)
            self._notify_error(f"{len(report.failures)} file(s) failed to load: {names}")
        return report

    def _discard_late_clip(self, job: Future[AudioClip]) -> None:
        if job.cancelled() or job.exception() is not None:
            return
        self._resources.release(job.result().handle)

    def _decode_clip(self, clip: AudioClip) -> DecodedAudio:
        try:
            data = self._resources.resolve(clip.handle)
        except HandleInvalidError:
            if not self._is_present(clip):
                # Removed while a job held it: decode once, keep no handle.
                return self._decoder.decode(clip.source, clip.encoding)
            _LOGGER.warning("handle for '%s' is gone, recovering from source bytes", clip.name)
            recovered = self._resources.recover(clip, self._trial_decode)
            with self._lock:
                present = self._is_present(clip)
                if not present:
                    self._resources.release(recovered)
                    clip.handle = None
            if not present:
                return self._decoder.decode(clip.source, clip.encoding)
            data = self._resources.resolve(recovered)
        return self._decoder.decode(data, clip.encoding)

    def _is_present(self, clip: AudioClip) -> bool:
        with self._lock:
            return any(item is clip for track in self._tracks.values() for item in track.clips)

    def _decode_for_preview(self, clip: AudioClip) -> DecodedAudio | None:
        try:
            return self._decode_clip(clip)
        except (DecodeError, HandleInvalidError, UnsupportedEnvironmentError) as exc:
            self._notify_error(f"Skipped '{clip.name}' during playback: {exc}")
            return None

    def _decode_for_mix(self, clip: AudioClip) -> DecodedAudio:
        try:
            return self._decode_clip(clip)
        except (DecodeError, HandleInvalidError) as exc:
            raise CompositionError(f"cannot decode '{clip.name}': {exc}") from exc

    def _trial_decode(self, data: bytes) -> DecodedAudio:
        return self._decoder.decode(data)

    def _run_normalize(self, voice: TrackState) -> dict[str, float]:
        levels: dict[str, float] = {}
        try:
            for clip in voice.clips:
                levels[clip.clip_id] = measure_clip_level(self._decode_clip(clip).buffer, self._gate)
        except VoiceMixdownError as exc:
            self._notify_error(f"Loudness normalization failed: {exc}")
            raise
        gains = equalize_to_loudest(levels, cap=self._config.normalize_cap)

        with self._lock:
            track = self._tracks[TrackKind.VOICE]
            present = {clip.clip_id for clip in track.clips}
            track.clip_gains = {clip_id: gains.get(clip_id, 1.0) for clip_id in present}
            self._revision += 1
            applied = dict(track.clip_gains)
        _LOGGER.info("normalized %d voice clip(s)", len(gains))
        self._emit(StudioEvent(EventKind.NORMALIZED, "Voice loudness normalized", payload=applied))
        return applied

    def _begin_composition(self) -> Composition:
        self._generation += 1
        pending = Composition.new(CompositionState.IN_PROGRESS, self._generation, self._revision)
        self._composition = pending
        return pending

    def _run_compose(
        self,
        pending: Composition,
        voice: TrackState,
        music: TrackState,
        require_voice: bool,
    ) -> Composition:
        try:
            result = self._mix(voice, music, require_voice)
            data = encode_wav(result.buffer)
        except (CompositionError, UnsupportedEnvironmentError) as exc:
            self._fail_composition(pending, exc)
            raise
        except Exception as exc:
            _LOGGER.exception("unexpected composition failure")
            self._fail_composition(pending, exc)
            raise CompositionError(f"composition failed: {exc}") from exc

        handle = self._resources.create(data, kind="composition", mime_type=WAV_MIME_TYPE)
        with self._lock:
            if pending.generation != self._generation:
                self._resources.release(handle)
                pending.state = CompositionState.FAILED
                pending.error = "superseded by a newer composition"
                _LOGGER.info("composition %s superseded, result discarded", pending.composition_id)
                raise CompositionError(pending.error)
            previous = self._ready
            pending.state = CompositionState.READY
            pending.handle = handle
            pending.buffer = result.buffer
            pending.duration_sec = result.duration_sec
            pending.sample_rate = result.buffer.sample_rate
            self._ready = pending
            self._composition = pending
            if previous is not None:
                self._resources.release(previous.handle)
        _LOGGER.info("composition %s ready (%.2fs)", pending.composition_id, pending.duration_sec)
        self._emit_composition(pending)
        return pending

    def _mix(self, voice: TrackState, music: TrackState, require_voice: bool) -> MixdownResult:
        if not voice.clips and not music.clips:
            raise CompositionError("add voice or music clips before composing")
        if require_voice and not voice.clips:
            raise CompositionError("export needs at least one voice clip")

        voice_sources: list[VoiceSource] = []
        for clip in voice.clips:
            decoded = self._decode_for_mix(clip)
            voice_sources.append(
                VoiceSource(
                    buffer=apply_noise_gate(decoded.buffer, self._gate),
                    clip_gain=voice.clip_gain(clip.clip_id),
                    duration_sec=decoded.duration_sec,
                )
            )
        music_buffers = [self._decode_for_mix(clip).buffer for clip in music.clips]
        return render_mixdown(
            voice=voice_sources,
            music=music_buffers,
            voice_levels=voice.levels(),
            music_levels=music.levels(),
            pitch_pct=voice.pitch_pct,
            sample_rate=self._config.sample_rate,
            fallback_duration_sec=self._config.fallback_duration_sec,
        )

    def _fail_composition(self, pending: Composition, exc: BaseException) -> None:
        with self._lock:
            pending.state = CompositionState.FAILED
            pending.error = str(exc)
            current = pending.generation == self._generation
        if not current:
            return
        _LOGGER.warning("composition %s failed: %s", pending.composition_id, exc)
        self._emit_composition(pending)
        self._notify_error(f"Composition failed: {exc}")

    def _run_export(self, formats: list[ExportFormat]) -> list[ExportArtifact]:
        with self._lock:
            voice = self._tracks[TrackKind.VOICE].capture()
            music = self._tracks[TrackKind.MUSIC].capture()
            ready = self._ready
            reusable = ready is not None and ready.revision == self._revision and bool(voice.clips)
            pending = None if reusable else self._begin_composition()
        if pending is None:
            assert ready is not None
            composition = ready
        else:
            self._emit_composition(pending)
            composition = self._run_compose(pending, voice, music, True)

        assert composition.buffer is not None
        stamp = int(time.time() * 1000)
        artifacts: list[ExportArtifact] = []
        try:
            for export_format in formats:
                encoded = encode_export(composition.buffer, export_format)
                handle = self._resources.create(encoded.data, kind="export", mime_type=encoded.mime_type)
                artifacts.append(
                    ExportArtifact(
                        requested=encoded.requested,
                        container=encoded.container,
                        mime_type=encoded.mime_type,
                        file_name=f"composed-audio-{stamp}.{encoded.extension}",
                        handle=handle,
                        size_bytes=len(encoded.data),
                    )
                )
        except VoiceMixdownError as exc:
            for artifact in artifacts:
                self._resources.release(artifact.handle)
            self._notify_error(f"Export failed: {exc}")
            raise CompositionError(f"export failed: {exc}") from exc

        with self._lock:
            for artifact in artifacts:
                self._exports[artifact.handle.handle_id] = artifact
        self._emit(
            StudioEvent(EventKind.EXPORT_COMPLETED, f"Exported {len(artifacts)} file(s)", payload=artifacts)
        )
        return artifacts

    def _level_changed(self, kind: TrackKind) -> None:
        track = self._tracks[kind]
        self._revision += 1
        if kind == TrackKind.VOICE:
            self._scheduler.set_voice_gain(track.levels().effective())
        else:
            self._scheduler.set_music_gain(track.levels().effective())

    def _emit_composition(self, composition: Composition) -> None:
        self._emit(
            StudioEvent(
                EventKind.COMPOSITION_STATE,
                f"Composition {composition.state.value}",
                payload=composition,
            )
        )

    def _notify_error(self, message: str) -> None:
        self._emit(StudioEvent(EventKind.NOTIFICATION, message, level="error"))

    def _emit(self, event: StudioEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                _LOGGER.exception("event listener failed for %s", event.kind.value)


def playable_handle(composition: Composition | None) -> ResourceHandle | None:
    if composition is None or composition.state != CompositionState.READY:
        return None
    return composition.handle
