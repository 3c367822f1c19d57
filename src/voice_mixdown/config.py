"""Runtime configuration read from VOICE_MIXDOWN_* environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


@dataclass(slots=True)
class StudioConfig:
    sample_rate: int = 44_100
    fallback_duration_sec: float = 60.0
    normalize_cap: float = 5.0
    decode_timeout_sec: float = 10.0
    workers: int = 2
    output_block_size: int = 512
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> StudioConfig:
        defaults = StudioConfig()
        return StudioConfig(
            sample_rate=max(_env_int("VOICE_MIXDOWN_SAMPLE_RATE", defaults.sample_rate), 8_000),
            fallback_duration_sec=max(
                _env_float("VOICE_MIXDOWN_FALLBACK_DURATION_SEC", defaults.fallback_duration_sec),
                0.1,
            ),
            normalize_cap=max(_env_float("VOICE_MIXDOWN_NORMALIZE_CAP", defaults.normalize_cap), 1.0),
            decode_timeout_sec=max(
                _env_float("VOICE_MIXDOWN_DECODE_TIMEOUT_SEC", defaults.decode_timeout_sec),
                0.1,
            ),
            workers=max(_env_int("VOICE_MIXDOWN_WORKERS", defaults.workers), 1),
            output_block_size=max(_env_int("VOICE_MIXDOWN_OUTPUT_BLOCK_SIZE", defaults.output_block_size), 64),
            log_level=os.getenv("VOICE_MIXDOWN_LOG_LEVEL", defaults.log_level).strip().upper() or "INFO",
        )


def configure_logging(level: str | int | None = None) -> None:
    resolved = level if level is not None else StudioConfig.from_env().log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    logging.getLogger("voice_mixdown").setLevel(resolved)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
