"""Level measurement for loudness normalization and live meters."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from voice_mixdown.audio.buffer import PcmBuffer

_METER_FLOOR_DB = -60.0


@dataclass(frozen=True, slots=True)
class MeterReading:
    loudness_pct: float
    peak_pct: float
    rms: float
    peak: float


def mean_absolute_level(buffer: PcmBuffer) -> float:
    """Mean absolute amplitude over every sample of every channel."""
    total = 0.0
    count = 0
    for channel in buffer.channels:
        total += sum(abs(sample) for sample in channel)
        count += len(channel)
    if count == 0:
        return 0.0
    return total / count


def rms_level(buffer: PcmBuffer) -> float:
    energy = 0.0
    count = 0
    for channel in buffer.channels:
        energy += sum(sample * sample for sample in channel)
        count += len(channel)
    if count == 0:
        return 0.0
    return math.sqrt(energy / count)


def peak_level(buffer: PcmBuffer) -> float:
    peak = 0.0
    for channel in buffer.channels:
        if channel:
            peak = max(peak, max(abs(sample) for sample in channel))
    return peak


def meter_reading(samples: Sequence[float]) -> MeterReading:
    if not samples:
        return MeterReading(loudness_pct=0.0, peak_pct=0.0, rms=0.0, peak=0.0)
    peak = max(abs(sample) for sample in samples)
    rms = math.sqrt(sum(sample * sample for sample in samples) / len(samples))
    loudness_db = 20.0 * math.log10(rms + 0.001)
    return MeterReading(
        loudness_pct=_db_to_meter_pct(loudness_db),
        peak_pct=min(max(peak * 100.0, 0.0), 100.0),
        rms=rms,
        peak=peak,
    )


def _db_to_meter_pct(value_db: float) -> float:
    scaled = (value_db - _METER_FLOOR_DB) * (100.0 / -_METER_FLOOR_DB)
    return min(max(scaled, 0.0), 100.0)
