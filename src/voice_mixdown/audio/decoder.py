"""Decoder adapter: raw file bytes to PCM buffers."""

from __future__ import annotations

import io
import logging
import math
import wave
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.errors import DecodeError, UnsupportedEnvironmentError

_LOGGER = logging.getLogger("voice_mixdown.decoder")


class AudioEncoding(str, Enum):
    WAV = "wav"
    FLAC = "flac"
    OGG = "ogg"
    MP3 = "mp3"
    WEBM = "webm"
    MP4 = "mp4"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class DecodedAudio:
    buffer: PcmBuffer
    encoding: AudioEncoding
    reported_duration_sec: float | None = None

    @property
    def duration_sec(self) -> float:
        # Streamed captures report 0 or inf; the sample count is authoritative then.
        reported = self.reported_duration_sec
        if reported is not None and math.isfinite(reported) and reported > 0.0:
            return reported
        return self.buffer.duration_sec


class DecodeCapability(Protocol):
    def decode(self, data: bytes, encoding: AudioEncoding) -> DecodedAudio: ...


def sniff_encoding(data: bytes) -> AudioEncoding:
    head = data[:16]
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return AudioEncoding.WAV
    if head[:4] == b"fLaC":
        return AudioEncoding.FLAC
    if head[:4] == b"OggS":
        return AudioEncoding.OGG
    if head[:3] == b"ID3" or (len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0):
        return AudioEncoding.MP3
    if head[:4] == b"\x1a\x45\xdf\xa3":
        return AudioEncoding.WEBM
    if head[4:8] == b"ftyp":
        return AudioEncoding.MP4
    return AudioEncoding.UNKNOWN


class WaveDecodeCapability:
    def decode(self, data: bytes, encoding: AudioEncoding) -> DecodedAudio:
        try:
            with wave.open(io.BytesIO(_repair_riff_size(data)), "rb") as wav:
                channels = wav.getnchannels()
                sample_width = wav.getsampwidth()
                sample_rate = wav.getframerate()
                frame_count = wav.getnframes()
                raw = wav.readframes(frame_count)
        except (wave.Error, EOFError) as exc:
            raise DecodeError(f"malformed wav data: {exc}") from exc

        if channels <= 0:
            raise DecodeError("invalid channel count in wav data")
        if sample_width not in {1, 2, 3, 4}:
            raise DecodeError(f"unsupported sample width: {sample_width}")
        if sample_rate <= 0:
            raise DecodeError("invalid sample rate in wav data")
        if not raw:
            # Capture tools that stream WAV leave the data chunk size at zero.
            raw = _bytes_after_data_chunk(data)

        samples = _decode_interleaved(raw, channels, sample_width)
        decoded_frames = len(samples[0])
        return DecodedAudio(
            buffer=PcmBuffer(sample_rate=sample_rate, channels=samples),
            encoding=encoding,
            reported_duration_sec=frame_count / sample_rate if frame_count == decoded_frames else None,
        )


class SoundFileDecodeCapability:
    def decode(self, data: bytes, encoding: AudioEncoding) -> DecodedAudio:
        soundfile = load_soundfile()
        try:
            with soundfile.SoundFile(io.BytesIO(data)) as handle:
                sample_rate = int(handle.samplerate)
                frames = int(handle.frames)
                block = handle.read(dtype="float32", always_2d=True)
        except (RuntimeError, TypeError, ValueError) as exc:
            raise DecodeError(f"cannot decode {encoding.value} data: {exc}") from exc

        if sample_rate <= 0:
            raise DecodeError("invalid sample rate reported by decoder")
        channels = [block[:, index].tolist() for index in range(block.shape[1])]
        reported = frames / sample_rate if 0 < frames < 2**62 else None
        return DecodedAudio(
            buffer=PcmBuffer(sample_rate=sample_rate, channels=channels),
            encoding=encoding,
            reported_duration_sec=reported,
        )


class DecoderAdapter:
    def __init__(self, routes: dict[AudioEncoding, list[DecodeCapability]] | None = None) -> None:
        if routes is None:
            wave_decoder = WaveDecodeCapability()
            soundfile_decoder = SoundFileDecodeCapability()
            routes = {
                AudioEncoding.WAV: [wave_decoder, soundfile_decoder],
                AudioEncoding.FLAC: [soundfile_decoder],
                AudioEncoding.OGG: [soundfile_decoder],
                AudioEncoding.MP3: [soundfile_decoder],
            }
        self._routes = routes

    def supports(self, encoding: AudioEncoding | str) -> bool:
        return bool(self._routes.get(AudioEncoding(encoding)))

    def decode(self, data: bytes, encoding: AudioEncoding | str | None = None) -> DecodedAudio:
        if not data:
            raise DecodeError("empty byte source")
        resolved = AudioEncoding(encoding) if encoding else sniff_encoding(data)
        capabilities = self._routes.get(resolved, [])
        if not capabilities:
            raise DecodeError(f"unsupported encoding '{resolved.value}'")

        last_error: DecodeError | UnsupportedEnvironmentError | None = None
        for capability in capabilities:
            try:
                decoded = capability.decode(data, resolved)
            except (DecodeError, UnsupportedEnvironmentError) as exc:
                _LOGGER.debug("%s failed for %s: %s", type(capability).__name__, resolved.value, exc)
                if last_error is None or isinstance(exc, DecodeError):
                    last_error = exc
                continue
            if decoded.buffer.channel_count == 0 or decoded.buffer.frame_count == 0:
                last_error = DecodeError("decoded audio has zero length")
                continue
            return decoded

        assert last_error is not None
        raise last_error


def load_soundfile() -> Any:
    try:
        import soundfile
    except (ImportError, OSError) as exc:
        raise UnsupportedEnvironmentError(
            "soundfile (libsndfile) is required for this audio format. Install it with: pip install soundfile"
        ) from exc
    return soundfile


def _repair_riff_size(data: bytes) -> bytes:
    # Streaming writers leave the RIFF size at 0 or 0xFFFFFFFF until the capture ends.
    if len(data) >= 12 and data[:4] == b"RIFF" and data[4:8] in (b"\x00\x00\x00\x00", b"\xff\xff\xff\xff"):
        return data[:4] + (len(data) - 8).to_bytes(4, "little") + data[8:]
    return data


def _bytes_after_data_chunk(data: bytes) -> bytes:
    marker = data.find(b"data", 12)
    if marker < 0:
        return b""
    return data[marker + 8 :]


def _decode_interleaved(raw: bytes, channels: int, sample_width: int) -> list[list[float]]:
    samples: list[list[float]] = [[] for _ in range(channels)]
    frame_size = channels * sample_width
    for frame_start in range(0, len(raw), frame_size):
        frame = raw[frame_start : frame_start + frame_size]
        if len(frame) < frame_size:
            break
        for channel in range(channels):
            offset = channel * sample_width
            samples[channel].append(_decode_one_sample(frame[offset : offset + sample_width], sample_width))
    return samples


def _decode_one_sample(chunk: bytes, sample_width: int) -> float:
    if sample_width == 1:
        return (chunk[0] - 128) / 128.0
    if sample_width == 2:
        value = int.from_bytes(chunk, "little", signed=True)
        return value / 32768.0
    if sample_width == 3:
        sign = b"\xff" if chunk[2] & 0x80 else b"\x00"
        value = int.from_bytes(chunk + sign, "little", signed=True)
        return value / 8388608.0
    value = int.from_bytes(chunk, "little", signed=True)
    return value / 2147483648.0
