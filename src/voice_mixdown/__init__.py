"""Voice + background music mixdown engine."""

from voice_mixdown.config import StudioConfig, configure_logging
from voice_mixdown.errors import (
    CompositionError,
    DecodeError,
    HandleInvalidError,
    UnsupportedEnvironmentError,
    VoiceMixdownError,
)

__all__ = [
    "CompositionError",
    "DecodeError",
    "HandleInvalidError",
    "StudioConfig",
    "UnsupportedEnvironmentError",
    "VoiceMixdownError",
    "configure_logging",
]
