"""HTTP endpoints exposing the studio to UI collaborators."""

from __future__ import annotations

import base64
import binascii

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response

from voice_mixdown.api.schemas import (
    AddClipsRequest,
    AddClipsResponse,
    ClipGainRequest,
    ClipInfo,
    CompositionResponse,
    ExportArtifactInfo,
    ExportRequest,
    ExportResponse,
    IngestFailureInfo,
    LevelsRequest,
    NormalizeResponse,
    PlaybackResponse,
    RecoverResponse,
    ReorderRequest,
    TrackName,
    TrackStateResponse,
)
from voice_mixdown.config import configure_logging
from voice_mixdown.errors import (
    CompositionError,
    DecodeError,
    HandleInvalidError,
    UnsupportedEnvironmentError,
)
from voice_mixdown.studio.models import AudioClip, ClipUpload, Composition, TrackKind, TrackState
from voice_mixdown.studio.service import StudioService, playable_handle


def create_app(studio: StudioService | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="voice-mixdown API", version="0.1.0")
    service = studio or StudioService()

    @app.get("/")
    def root() -> dict[str, str]:
        return {
            "service": "voice-mixdown API",
            "status": "ok",
            "docs": "/docs",
        }

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/v1/tracks/{track}", response_model=TrackStateResponse)
    def get_track(track: TrackName) -> TrackStateResponse:
        return _track_response(service.get_track_state(track))

    @app.post("/v1/tracks/{track}/clips", response_model=AddClipsResponse)
    def add_clips(track: TrackName, payload: AddClipsRequest) -> AddClipsResponse:
        uploads: list[ClipUpload] = []
        for item in payload.files:
            try:
                data = base64.b64decode(item.content, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise HTTPException(status_code=400, detail=f"'{item.name}' is not valid base64") from exc
            uploads.append(ClipUpload(name=item.name, data=data))
        report = service.add_clips(uploads, track).result()
        gains = service.get_track_state(track).clip_gains
        return AddClipsResponse(
            added=[_clip_info(clip, gains.get(clip.clip_id)) for clip in report.added],
            failures=[IngestFailureInfo(name=item.name, reason=item.reason) for item in report.failures],
        )

    @app.delete("/v1/clips/{clip_id}", status_code=204)
    def remove_clip(clip_id: str) -> Response:
        try:
            service.remove_clip(clip_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return Response(status_code=204)

    @app.put("/v1/clips/{clip_id}/gain", response_model=TrackStateResponse)
    def set_clip_gain(clip_id: str, payload: ClipGainRequest) -> TrackStateResponse:
        try:
            service.set_clip_gain(clip_id, payload.gain)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _track_response(service.get_track_state(TrackKind.VOICE))

    @app.post("/v1/tracks/{track}/reorder", response_model=TrackStateResponse)
    def reorder(track: TrackName, payload: ReorderRequest) -> TrackStateResponse:
        try:
            service.reorder(track, payload.from_index, payload.to_index)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _track_response(service.get_track_state(track))

    @app.patch("/v1/tracks/{track}/levels", response_model=TrackStateResponse)
    def set_levels(track: TrackName, payload: LevelsRequest) -> TrackStateResponse:
        try:
            service.set_levels(
                track,
                volume=payload.volume,
                muted=payload.muted,
                gain=payload.gain,
                pitch=payload.pitch,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _track_response(service.get_track_state(track))

    @app.post("/v1/voice/normalize", response_model=NormalizeResponse)
    def normalize() -> NormalizeResponse:
        try:
            gains = service.normalize_voice_loudness().result()
        except DecodeError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except HandleInvalidError as exc:
            raise HTTPException(status_code=410, detail=str(exc)) from exc
        except UnsupportedEnvironmentError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return NormalizeResponse(gains=gains)

    @app.post("/v1/playback/play", response_model=PlaybackResponse)
    def play() -> PlaybackResponse:
        try:
            service.play()
        except CompositionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except UnsupportedEnvironmentError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _playback_response(service)

    @app.post("/v1/playback/stop", response_model=PlaybackResponse)
    def stop() -> PlaybackResponse:
        service.stop()
        return _playback_response(service)

    @app.get("/v1/playback", response_model=PlaybackResponse)
    def playback() -> PlaybackResponse:
        return _playback_response(service)

    @app.post("/v1/composition", response_model=CompositionResponse)
    def compose() -> CompositionResponse:
        try:
            composition = service.compose().result()
        except CompositionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except UnsupportedEnvironmentError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _composition_response(composition)

    @app.get("/v1/composition", response_model=CompositionResponse)
    def get_composition() -> CompositionResponse:
        return _composition_response(service.get_composition())

    @app.get("/v1/composition/audio")
    def composition_audio() -> Response:
        handle = playable_handle(service.get_ready_composition())
        if handle is None:
            raise HTTPException(status_code=404, detail="no composition is ready")
        try:
            data = service.get_resources().resolve(handle)
        except HandleInvalidError as exc:
            raise HTTPException(status_code=410, detail=str(exc)) from exc
        return Response(content=data, media_type=handle.mime_type)

    @app.post("/v1/export", response_model=ExportResponse)
    def export(payload: ExportRequest) -> ExportResponse:
        try:
            artifacts = service.export(payload.formats).result()
        except CompositionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except UnsupportedEnvironmentError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return ExportResponse(
            artifacts=[
                ExportArtifactInfo(
                    requested=item.requested.value,
                    container=item.container.value,
                    mime_type=item.mime_type,
                    file_name=item.file_name,
                    handle_id=item.handle.handle_id,
                    size_bytes=item.size_bytes,
                )
                for item in artifacts
            ]
        )

    @app.get("/v1/resources/{handle_id}")
    def download(handle_id: str) -> Response:
        resources = service.get_resources()
        handle = resources.find(handle_id)
        if handle is None:
            raise HTTPException(status_code=404, detail=f"Resource '{handle_id}' not found")
        try:
            data = resources.resolve(handle)
        except HandleInvalidError as exc:
            raise HTTPException(status_code=410, detail=str(exc)) from exc
        headers: dict[str, str] = {}
        try:
            artifact = service.get_export(handle_id)
        except KeyError:
            artifact = None
        if artifact is not None:
            headers["Content-Disposition"] = f'attachment; filename="{artifact.file_name}"'
        return Response(content=data, media_type=handle.mime_type, headers=headers)

    @app.post("/v1/recover", response_model=RecoverResponse)
    def recover() -> RecoverResponse:
        report = service.check_and_recover()
        return RecoverResponse(checked=report.checked, recovered=report.recovered, failed=report.failed)

    @app.post("/v1/reset", status_code=204)
    def reset() -> Response:
        service.reset()
        return Response(status_code=204)

    return app


def _clip_info(clip: AudioClip, gain: float | None = None) -> ClipInfo:
    return ClipInfo(
        clip_id=clip.clip_id,
        name=clip.name,
        position=clip.position,
        duration_sec=clip.duration_sec,
        encoding=clip.encoding.value,
        gain=gain,
    )


def _track_response(track: TrackState) -> TrackStateResponse:
    is_voice = track.kind == TrackKind.VOICE
    return TrackStateResponse(
        track=track.kind.value,
        volume=track.volume,
        muted=track.muted,
        gain=track.gain_pct,
        pitch=track.pitch_pct if is_voice else None,
        total_duration_sec=track.total_duration_sec,
        clips=[_clip_info(clip, track.clip_gains.get(clip.clip_id) if is_voice else None) for clip in track.clips],
    )


def _playback_response(service: StudioService) -> PlaybackResponse:
    session = service.playback_session()
    reading = service.meter()
    return PlaybackResponse(
        state=service.playback_state().value,
        position_sec=service.playback_position(),
        total_duration_sec=session.total_duration_sec if session is not None else None,
        loudness_pct=reading.loudness_pct,
        peak_pct=reading.peak_pct,
    )


def _composition_response(composition: Composition) -> CompositionResponse:
    return CompositionResponse(
        composition_id=composition.composition_id,
        state=composition.state.value,
        duration_sec=composition.duration_sec,
        sample_rate=composition.sample_rate,
        handle_id=composition.handle.handle_id if composition.handle is not None else None,
        error=composition.error,
    )


app = create_app()
