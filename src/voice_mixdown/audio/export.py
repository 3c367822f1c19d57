"""Export encoders: WAV is native, other containers are best effort."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from enum import Enum

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.decoder import load_soundfile
from voice_mixdown.audio.wav_encoder import WAV_MIME_TYPE, encode_wav
from voice_mixdown.errors import UnsupportedEnvironmentError

_LOGGER = logging.getLogger("voice_mixdown.export")


class ExportFormat(str, Enum):
    WAV = "wav"
    FLAC = "flac"
    OGG = "ogg"
    MP3 = "mp3"
    AAC = "aac"


@dataclass(frozen=True, slots=True)
class EncodedExport:
    requested: ExportFormat
    container: ExportFormat
    mime_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return self.container.value

    @property
    def fell_back(self) -> bool:
        return self.requested != self.container


# format -> (soundfile format, subtype, mime type)
_SOUNDFILE_TARGETS: dict[ExportFormat, tuple[str, str, str]] = {
    ExportFormat.FLAC: ("FLAC", "PCM_16", "audio/flac"),
    ExportFormat.OGG: ("OGG", "VORBIS", "audio/ogg"),
}


def encode_export(buffer: PcmBuffer, requested: ExportFormat | str) -> EncodedExport:
    target = ExportFormat(requested)
    if target in _SOUNDFILE_TARGETS:
        try:
            return _encode_with_soundfile(buffer, target)
        except UnsupportedEnvironmentError as exc:
            _LOGGER.warning("%s export unavailable, falling back to wav: %s", target.value, exc)
    elif target != ExportFormat.WAV:
        _LOGGER.info("%s export is not produced natively, falling back to wav", target.value)
    return EncodedExport(
        requested=target,
        container=ExportFormat.WAV,
        mime_type=WAV_MIME_TYPE,
        data=encode_wav(buffer),
    )


def _encode_with_soundfile(buffer: PcmBuffer, target: ExportFormat) -> EncodedExport:
    soundfile = load_soundfile()
    file_format, subtype, mime_type = _SOUNDFILE_TARGETS[target]
    if not soundfile.check_format(file_format, subtype):
        raise UnsupportedEnvironmentError(f"libsndfile build lacks {file_format}/{subtype}")

    frames = [
        [min(max(channel[index], -1.0), 1.0) for channel in buffer.channels]
        for index in range(buffer.frame_count)
    ]
    target_io = io.BytesIO()
    try:
        soundfile.write(target_io, frames, buffer.sample_rate, subtype=subtype, format=file_format)
    except (RuntimeError, TypeError, ValueError) as exc:
        raise UnsupportedEnvironmentError(f"{file_format} encoding failed: {exc}") from exc
    return EncodedExport(requested=target, container=target, mime_type=mime_type, data=target_io.getvalue())
