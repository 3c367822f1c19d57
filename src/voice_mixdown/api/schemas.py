"""FastAPI request/response schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

TrackName = Literal["voice", "music"]
ExportName = Literal["wav", "flac", "ogg", "mp3", "aac"]


class ClipUploadItem(BaseModel):
    name: str = Field(min_length=1)
    content: str = Field(min_length=1, description="base64-encoded file bytes")


class AddClipsRequest(BaseModel):
    files: list[ClipUploadItem] = Field(min_length=1)


class ClipInfo(BaseModel):
    clip_id: str
    name: str
    position: int
    duration_sec: float
    encoding: str
    gain: float | None = None


class TrackStateResponse(BaseModel):
    track: TrackName
    volume: float
    muted: bool
    gain: float
    pitch: float | None = None
    total_duration_sec: float
    clips: list[ClipInfo]


class IngestFailureInfo(BaseModel):
    name: str
    reason: str


class AddClipsResponse(BaseModel):
    added: list[ClipInfo]
    failures: list[IngestFailureInfo]


class ReorderRequest(BaseModel):
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class LevelsRequest(BaseModel):
    volume: float | None = Field(default=None, ge=0.0, le=100.0)
    muted: bool | None = None
    gain: float | None = Field(default=None, ge=0.0, le=300.0)
    pitch: float | None = Field(default=None, ge=50.0, le=200.0)


class ClipGainRequest(BaseModel):
    gain: float = Field(ge=0.0, le=10.0)


class NormalizeResponse(BaseModel):
    gains: dict[str, float]


class PlaybackResponse(BaseModel):
    state: Literal["idle", "playing"]
    position_sec: float
    total_duration_sec: float | None = None
    loudness_pct: float = 0.0
    peak_pct: float = 0.0


class CompositionResponse(BaseModel):
    composition_id: str
    state: Literal["absent", "in-progress", "ready", "failed"]
    duration_sec: float
    sample_rate: int
    handle_id: str | None = None
    error: str | None = None


class ExportRequest(BaseModel):
    formats: list[ExportName] = Field(default_factory=lambda: ["wav"], min_length=1)


class ExportArtifactInfo(BaseModel):
    requested: str
    container: str
    mime_type: str
    file_name: str
    handle_id: str
    size_bytes: int


class ExportResponse(BaseModel):
    artifacts: list[ExportArtifactInfo]


class RecoverResponse(BaseModel):
    checked: int
    recovered: list[str]
    failed: dict[str, str]
