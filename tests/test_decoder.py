import io
import math
import wave

import pytest

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.decoder import AudioEncoding, DecodedAudio, DecoderAdapter, sniff_encoding
from voice_mixdown.errors import DecodeError


def _wav_bytes(sample_rate: int = 8000, duration_sec: float = 0.1, channels: int = 2) -> bytes:
    num_frames = int(sample_rate * duration_sec)
    frames = bytearray()
    for idx in range(num_frames):
        t = idx / sample_rate
        for channel in range(channels):
            value = int(12000 * math.sin(2 * math.pi * (220 * (channel + 1)) * t))
            frames += value.to_bytes(2, "little", signed=True)
    target = io.BytesIO()
    with wave.open(target, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(bytes(frames))
    return target.getvalue()


def _streamed_wav_bytes(sample_rate: int = 8000, num_frames: int = 400) -> bytes:
    header = bytearray()
    header += b"RIFF" + (0).to_bytes(4, "little") + b"WAVE"
    header += b"fmt " + (16).to_bytes(4, "little")
    header += (1).to_bytes(2, "little")  # PCM
    header += (1).to_bytes(2, "little")
    header += sample_rate.to_bytes(4, "little")
    header += (sample_rate * 2).to_bytes(4, "little")
    header += (2).to_bytes(2, "little")
    header += (16).to_bytes(2, "little")
    header += b"data" + (0).to_bytes(4, "little")
    body = b"".join((1000).to_bytes(2, "little", signed=True) for _ in range(num_frames))
    return bytes(header) + body


def test_sniff_encoding_recognizes_magic_bytes() -> None:
    assert sniff_encoding(_wav_bytes()) == AudioEncoding.WAV
    assert sniff_encoding(b"fLaC\x00\x00\x00\x22") == AudioEncoding.FLAC
    assert sniff_encoding(b"OggS\x00\x02") == AudioEncoding.OGG
    assert sniff_encoding(b"ID3\x04\x00") == AudioEncoding.MP3
    assert sniff_encoding(b"\xff\xfb\x90\x64") == AudioEncoding.MP3
    assert sniff_encoding(b"\x1a\x45\xdf\xa3\x01") == AudioEncoding.WEBM
    assert sniff_encoding(b"\x00\x00\x00\x20ftypM4A ") == AudioEncoding.MP4
    assert sniff_encoding(b"hello world") == AudioEncoding.UNKNOWN


def test_decode_wav_preserves_rate_channels_and_duration() -> None:
    decoded = DecoderAdapter().decode(_wav_bytes(sample_rate=8000, duration_sec=0.25))

    assert decoded.encoding == AudioEncoding.WAV
    assert decoded.buffer.sample_rate == 8000
    assert decoded.buffer.channel_count == 2
    assert decoded.buffer.frame_count == 2000
    assert decoded.duration_sec == pytest.approx(0.25)
    assert max(decoded.buffer.channels[0]) <= 1.0
    assert min(decoded.buffer.channels[1]) >= -1.0


def test_streamed_wav_with_zero_size_header_uses_sample_count() -> None:
    decoded = DecoderAdapter().decode(_streamed_wav_bytes(sample_rate=8000, num_frames=400))

    assert decoded.buffer.frame_count == 400
    assert decoded.duration_sec == pytest.approx(0.05)
    assert decoded.buffer.channels[0][0] == pytest.approx(1000 / 32768.0)


def test_reported_duration_falls_back_for_infinite_or_zero_values() -> None:
    buffer = PcmBuffer(sample_rate=1000, channels=[[0.0] * 500])

    assert DecodedAudio(buffer, AudioEncoding.WAV, float("inf")).duration_sec == pytest.approx(0.5)
    assert DecodedAudio(buffer, AudioEncoding.WAV, 0.0).duration_sec == pytest.approx(0.5)
    assert DecodedAudio(buffer, AudioEncoding.WAV, float("nan")).duration_sec == pytest.approx(0.5)
    assert DecodedAudio(buffer, AudioEncoding.WAV, 2.0).duration_sec == pytest.approx(2.0)


def test_decode_rejects_empty_and_garbage_input() -> None:
    decoder = DecoderAdapter()

    with pytest.raises(DecodeError):
        decoder.decode(b"")
    with pytest.raises(DecodeError):
        decoder.decode(b"definitely not audio data")


def test_decode_rejects_unsupported_encoding() -> None:
    decoder = DecoderAdapter()

    assert not decoder.supports("webm")
    with pytest.raises(DecodeError, match="unsupported encoding"):
        decoder.decode(b"\x1a\x45\xdf\xa3" + b"\x00" * 64)


def test_decode_tries_next_capability_after_failure() -> None:
    class _Broken:
        def decode(self, data: bytes, encoding: AudioEncoding) -> DecodedAudio:
            raise DecodeError("broken")

    class _Fixed:
        def decode(self, data: bytes, encoding: AudioEncoding) -> DecodedAudio:
            return DecodedAudio(PcmBuffer(sample_rate=100, channels=[[0.5] * 10]), encoding)

    decoder = DecoderAdapter(routes={AudioEncoding.WAV: [_Broken(), _Fixed()]})
    decoded = decoder.decode(_wav_bytes())

    assert decoded.buffer.frame_count == 10
    assert decoded.duration_sec == pytest.approx(0.1)


def test_decode_rejects_zero_length_output() -> None:
    decoder = DecoderAdapter()
    target = io.BytesIO()
    with wave.open(target, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(8000)
        wav.writeframes(b"")

    with pytest.raises(DecodeError):
        decoder.decode(target.getvalue(), AudioEncoding.WAV)
