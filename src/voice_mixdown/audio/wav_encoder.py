"""Lossless 16-bit PCM WAV container encoder."""

from __future__ import annotations

import io
import math
import wave

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.errors import CompositionError

WAV_HEADER_SIZE = 44
WAV_MIME_TYPE = "audio/wav"


def encode_wav(buffer: PcmBuffer) -> bytes:
    if buffer.channel_count <= 0:
        raise CompositionError("cannot encode a buffer without channels")
    if buffer.sample_rate <= 0:
        raise CompositionError("cannot encode a buffer without a sample rate")

    frames = bytearray()
    channels = buffer.channels
    for index in range(buffer.frame_count):
        for channel in channels:
            frames.extend(_encode_one_sample(channel[index]))

    target = io.BytesIO()
    with wave.open(target, "wb") as wav:
        wav.setnchannels(buffer.channel_count)
        wav.setsampwidth(2)
        wav.setframerate(buffer.sample_rate)
        wav.writeframes(bytes(frames))
    return target.getvalue()


def _encode_one_sample(sample: float) -> bytes:
    # The clamp is the only clipping protection in the pipeline.
    if math.isnan(sample):
        return b"\x00\x00"
    clipped = min(max(sample, -1.0), 1.0)
    return int(clipped * 32767.0).to_bytes(2, "little", signed=True)
