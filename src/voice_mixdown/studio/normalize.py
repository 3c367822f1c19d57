"""Equalize voice clips to the loudest one."""

from __future__ import annotations

from typing import Mapping

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.gate import DEFAULT_GATE, GateSettings, apply_noise_gate
from voice_mixdown.audio.loudness import mean_absolute_level


def measure_clip_level(buffer: PcmBuffer, gate: GateSettings = DEFAULT_GATE) -> float:
    """Level of a clip as it will be heard: gated first, then mean absolute amplitude."""
    return mean_absolute_level(apply_noise_gate(buffer, gate))


def equalize_to_loudest(levels: Mapping[str, float], cap: float = 5.0) -> dict[str, float]:
    if cap < 1.0:
        raise ValueError("cap must be >= 1.0")
    loudest = max(levels.values(), default=0.0)
    gains: dict[str, float] = {}
    for clip_id, level in levels.items():
        if level <= 0.0 or loudest <= 0.0:
            gains[clip_id] = 1.0
            continue
        gains[clip_id] = min(loudest / level, cap)
    return gains
