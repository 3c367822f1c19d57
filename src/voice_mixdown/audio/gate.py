"""Envelope-following noise gate applied to voice clips before mixing."""

from __future__ import annotations

import math
from dataclasses import dataclass

from voice_mixdown.audio.buffer import PcmBuffer


@dataclass(frozen=True, slots=True)
class GateSettings:
    threshold: float = 0.01
    ratio: float = 3.0
    attack_sec: float = 0.003
    release_sec: float = 0.1
    floor_gain: float = 0.05
    smoothing: float = 0.1


DEFAULT_GATE = GateSettings()


def apply_noise_gate(buffer: PcmBuffer, settings: GateSettings = DEFAULT_GATE) -> PcmBuffer:
    """Return a gated copy of ``buffer``; length, rate and channel count are preserved.

    Each channel is processed independently with its own envelope and gain state.
    """
    return PcmBuffer(
        sample_rate=buffer.sample_rate,
        channels=[_gate_channel(channel, buffer.sample_rate, settings) for channel in buffer.channels],
    )


def _gate_channel(samples: list[float], sample_rate: int, settings: GateSettings) -> list[float]:
    attack_coeff = _time_coeff(settings.attack_sec, sample_rate)
    release_coeff = _time_coeff(settings.release_sec, sample_rate)
    threshold = max(settings.threshold, 1e-12)
    exponent = 1.0 / max(settings.ratio, 1.0)
    dry = 1.0 - settings.smoothing

    env = 0.0
    gain = 1.0
    previous = 0.0
    out: list[float] = []
    for index, sample in enumerate(samples):
        level = abs(sample)
        coeff = attack_coeff if level > env else release_coeff
        env = coeff * env + (1.0 - coeff) * level

        target = 1.0
        if env < threshold:
            target = max(settings.floor_gain, (env / threshold) ** exponent)
        smooth = attack_coeff if target < gain else release_coeff
        gain = smooth * gain + (1.0 - smooth) * target

        value = sample * gain
        if index > 0:
            value = dry * value + settings.smoothing * previous
        out.append(value)
        previous = value
    return out


def _time_coeff(time_sec: float, sample_rate: int) -> float:
    if time_sec <= 0.0 or sample_rate <= 0:
        return 0.0
    return math.exp(-1.0 / (time_sec * sample_rate))
