"""In-memory PCM buffer shared by every engine stage."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class PcmBuffer:
    sample_rate: int
    channels: list[list[float]] = field(default_factory=list)

    @staticmethod
    def silent(channel_count: int, frame_count: int, sample_rate: int) -> PcmBuffer:
        if channel_count <= 0:
            raise ValueError("channel_count must be positive")
        return PcmBuffer(
            sample_rate=sample_rate,
            channels=[[0.0] * max(frame_count, 0) for _ in range(channel_count)],
        )

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    @property
    def frame_count(self) -> int:
        if not self.channels:
            return 0
        return min(len(channel) for channel in self.channels)

    @property
    def duration_sec(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate

    def stereo_view(self) -> tuple[list[float], list[float]]:
        """Left/right sources: mono is duplicated, channels past the second are ignored."""
        if not self.channels:
            return [], []
        if len(self.channels) == 1:
            return self.channels[0], self.channels[0]
        return self.channels[0], self.channels[1]
