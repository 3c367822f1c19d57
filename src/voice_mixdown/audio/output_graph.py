"""Real-time output graph: the platform side of the playback scheduler."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.errors import UnsupportedEnvironmentError

_LOGGER = logging.getLogger("voice_mixdown.output")


@dataclass(slots=True)
class TrackStage:
    """Live parameter cell shared by every unit of one track.

    The audio thread reads ``gain`` and ``rate`` once per block, so a plain
    attribute assignment is an atomic parameter update.
    """

    gain: float = 1.0
    rate: float = 1.0
    attached: bool = False


class PlaybackUnit(Protocol):
    def start(self, when: float, duration: float | None = None) -> None: ...

    def stop(self) -> None: ...


class OutputGraph(Protocol):
    sample_rate: int

    def current_time(self) -> float: ...

    def attach(self, stage: TrackStage) -> None: ...

    def detach(self, stage: TrackStage) -> None: ...

    def create_playback_unit(self, buffer: PcmBuffer, stage: TrackStage, unit_gain: float = 1.0) -> PlaybackUnit: ...


class SoundDeviceOutputGraph:
    def __init__(self, sample_rate: int = 44_100, block_size: int = 512, device: int | str | None = None) -> None:
        self.sample_rate = sample_rate
        self._block_size = block_size
        self._device = device
        self._sd, self._np = _load_backend()
        self._units: list[_StreamUnit] = []
        self._units_lock = threading.Lock()
        self._frames_elapsed = 0
        self._stream: Any = None

    def current_time(self) -> float:
        return self._frames_elapsed / self.sample_rate

    def attach(self, stage: TrackStage) -> None:
        stage.attached = True
        self._ensure_stream()

    def detach(self, stage: TrackStage) -> None:
        stage.attached = False

    def create_playback_unit(self, buffer: PcmBuffer, stage: TrackStage, unit_gain: float = 1.0) -> _StreamUnit:
        left, right = buffer.stereo_view()
        frames = buffer.frame_count
        data = self._np.stack(
            [self._np.asarray(left[:frames], dtype="float32"), self._np.asarray(right[:frames], dtype="float32")],
            axis=1,
        )
        return _StreamUnit(self, data, buffer.sample_rate, stage, unit_gain)

    def close(self) -> None:
        with self._units_lock:
            self._units = []
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def _ensure_stream(self) -> None:
        if self._stream is not None:
            return
        try:
            self._stream = self._sd.OutputStream(
                samplerate=self.sample_rate,
                channels=2,
                dtype="float32",
                blocksize=self._block_size,
                device=self._device,
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise UnsupportedEnvironmentError(f"audio output device unavailable: {exc}") from exc
        _LOGGER.info("output stream started at %d Hz", self.sample_rate)

    def _add(self, unit: _StreamUnit) -> None:
        with self._units_lock:
            self._units = [*self._units, unit]

    def _remove(self, unit: _StreamUnit) -> None:
        with self._units_lock:
            self._units = [item for item in self._units if item is not unit]

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            _LOGGER.debug("output status: %s", status)
        block = self._np.zeros((frames, 2), dtype="float32")
        block_start = self._frames_elapsed
        for unit in self._units:
            unit.render_into(block, block_start)
        outdata[:] = self._np.clip(block, -1.0, 1.0)
        self._frames_elapsed += frames


class _StreamUnit:
    def __init__(self, graph: SoundDeviceOutputGraph, data: Any, source_rate: int, stage: TrackStage, unit_gain: float) -> None:
        self._graph = graph
        self._data = data
        self._source_rate = source_rate
        self._stage = stage
        self._unit_gain = unit_gain
        self._start_frame = 0
        self._stop_frame: int | None = None
        self._position = 0.0
        self._stopped = False

    def start(self, when: float, duration: float | None = None) -> None:
        rate = self._graph.sample_rate
        self._start_frame = int(round(when * rate))
        if duration is not None:
            self._stop_frame = self._start_frame + int(round(duration * rate))
        self._graph._add(self)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._graph._remove(self)

    def render_into(self, block: Any, block_start: int) -> None:
        if self._stopped or not self._stage.attached:
            return
        np = self._graph._np
        first = max(self._start_frame - block_start, 0)
        last = len(block)
        if self._stop_frame is not None:
            last = min(last, self._stop_frame - block_start)
        if first >= last:
            return

        step = self._stage.rate * self._source_rate / self._graph.sample_rate
        positions = self._position + np.arange(last - first) * step
        indices = positions.astype("int64")
        indices = indices[indices < len(self._data)]
        gain = self._stage.gain * self._unit_gain
        if len(indices):
            block[first : first + len(indices)] += self._data[indices] * gain
        self._position += (last - first) * step
        finished = self._stop_frame is not None and block_start + len(block) >= self._stop_frame
        if finished or self._position >= len(self._data):
            self.stop()


def _load_backend() -> tuple[Any, Any]:
    try:
        import numpy
        import sounddevice
    except (ImportError, OSError) as exc:
        raise UnsupportedEnvironmentError(
            "real-time playback needs sounddevice and PortAudio. Install it with: pip install sounddevice"
        ) from exc
    return sounddevice, numpy
