"""Studio domain public exports."""

from voice_mixdown.studio.facade import Studio
from voice_mixdown.studio.models import (
    AudioClip,
    ClipUpload,
    Composition,
    CompositionState,
    EventKind,
    ExportArtifact,
    IngestFailure,
    IngestReport,
    StudioEvent,
    TrackKind,
    TrackState,
)
from voice_mixdown.studio.service import StudioService

__all__ = [
    "AudioClip",
    "ClipUpload",
    "Composition",
    "CompositionState",
    "EventKind",
    "ExportArtifact",
    "IngestFailure",
    "IngestReport",
    "Studio",
    "StudioEvent",
    "StudioService",
    "TrackKind",
    "TrackState",
]
