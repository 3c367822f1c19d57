"""Error taxonomy shared by the engine, the studio service and the API."""

from __future__ import annotations


class VoiceMixdownError(Exception):
    """Base class for every typed failure raised by voice_mixdown."""


class DecodeError(VoiceMixdownError):
    """Raised when bytes are malformed, unsupported or decode to nothing."""


class HandleInvalidError(VoiceMixdownError):
    """Raised when a resource handle no longer resolves."""


class CompositionError(VoiceMixdownError):
    """Raised when a compose/export attempt cannot produce a result."""


class UnsupportedEnvironmentError(VoiceMixdownError):
    """Raised when a required platform capability is absent."""
