import pytest

from voice_mixdown.audio import output_graph
from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.output_graph import SoundDeviceOutputGraph, TrackStage

np = pytest.importorskip("numpy")


class _FakeStream:
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True


class _FakeSoundDevice:
    OutputStream = _FakeStream


def _graph(monkeypatch: pytest.MonkeyPatch, sample_rate: int = 10) -> SoundDeviceOutputGraph:
    monkeypatch.setattr(output_graph, "_load_backend", lambda: (_FakeSoundDevice, np))
    return SoundDeviceOutputGraph(sample_rate=sample_rate, block_size=4)


def _render(graph: SoundDeviceOutputGraph, frames: int = 4) -> list[list[float]]:
    block = np.zeros((frames, 2), dtype="float32")
    graph._callback(block, frames, None, None)
    return block.tolist()


def test_attach_opens_stereo_stream(monkeypatch: pytest.MonkeyPatch) -> None:
    graph = _graph(monkeypatch)
    stage = TrackStage()

    graph.attach(stage)

    assert stage.attached
    assert graph._stream.started
    assert graph._stream.kwargs["channels"] == 2
    graph.close()
    assert graph._stream is None


def test_units_start_on_schedule_and_follow_stage_gain(monkeypatch: pytest.MonkeyPatch) -> None:
    graph = _graph(monkeypatch)
    stage = TrackStage(gain=0.5)
    graph.attach(stage)
    unit = graph.create_playback_unit(PcmBuffer(sample_rate=10, channels=[[1.0] * 8]), stage, unit_gain=2.0)
    unit.start(0.2)

    first = _render(graph)
    stage.gain = 0.25
    second = _render(graph)

    assert [frame[0] for frame in first] == pytest.approx([0.0, 0.0, 1.0, 1.0])
    assert [frame[1] for frame in second] == pytest.approx([0.5] * 4)
    assert graph.current_time() == pytest.approx(0.8)


def test_truncated_unit_stops_after_duration(monkeypatch: pytest.MonkeyPatch) -> None:
    graph = _graph(monkeypatch)
    stage = TrackStage()
    graph.attach(stage)
    unit = graph.create_playback_unit(PcmBuffer(sample_rate=10, channels=[[0.5] * 20]), stage)
    unit.start(0.0, duration=0.3)

    block = _render(graph)
    after = _render(graph)

    assert [frame[0] for frame in block] == pytest.approx([0.5, 0.5, 0.5, 0.0])
    assert after == [[0.0, 0.0]] * 4


def test_detached_stage_is_silent(monkeypatch: pytest.MonkeyPatch) -> None:
    graph = _graph(monkeypatch)
    stage = TrackStage()
    graph.attach(stage)
    graph.create_playback_unit(PcmBuffer(sample_rate=10, channels=[[0.5] * 20]), stage).start(0.0)

    graph.detach(stage)

    assert _render(graph) == [[0.0, 0.0]] * 4
