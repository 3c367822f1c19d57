import pytest

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.gate import DEFAULT_GATE, GateSettings, apply_noise_gate


def test_gate_preserves_length_rate_and_channels() -> None:
    source = PcmBuffer(sample_rate=8000, channels=[[0.3] * 1234, [-0.3] * 1234])

    gated = apply_noise_gate(source)

    assert gated.sample_rate == 8000
    assert gated.channel_count == 2
    assert [len(channel) for channel in gated.channels] == [1234, 1234]
    assert gated is not source


def test_gate_keeps_silence_silent() -> None:
    gated = apply_noise_gate(PcmBuffer(sample_rate=8000, channels=[[0.0] * 800]))

    assert all(sample == 0.0 for sample in gated.channels[0])


def test_gate_passes_steady_loud_signal() -> None:
    gated = apply_noise_gate(PcmBuffer(sample_rate=8000, channels=[[0.5] * 8000]))

    assert gated.channels[0][0] == pytest.approx(0.5)
    assert gated.channels[0][-1] == pytest.approx(0.5, rel=1e-6)


def test_gate_attenuates_signal_below_threshold() -> None:
    quiet = 0.001
    gated = apply_noise_gate(PcmBuffer(sample_rate=8000, channels=[[quiet] * 8000]))

    # env/threshold = 0.1, ratio 3 -> gain 0.1 ** (1/3) ~ 0.464
    assert gated.channels[0][-1] == pytest.approx(quiet * 0.1 ** (1 / 3), rel=1e-3)


def test_gate_never_drops_below_floor_gain() -> None:
    settings = GateSettings(threshold=0.5, ratio=1.0, floor_gain=0.2)
    gated = apply_noise_gate(PcmBuffer(sample_rate=8000, channels=[[0.0001] * 8000]), settings)

    assert gated.channels[0][-1] == pytest.approx(0.0001 * settings.floor_gain, rel=1e-3)


def test_gate_processes_channels_independently() -> None:
    loud = [0.5] * 4000
    quiet = [0.001] * 4000
    gated = apply_noise_gate(PcmBuffer(sample_rate=8000, channels=[loud, quiet]), DEFAULT_GATE)

    assert gated.channels[0][-1] == pytest.approx(0.5, rel=1e-6)
    assert gated.channels[1][-1] < 0.001 * 0.5
