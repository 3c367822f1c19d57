"""Audio engine: decode, gate, analyze, mix, encode, hold handles, play."""

from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.decoder import AudioEncoding, DecodedAudio, DecoderAdapter, sniff_encoding
from voice_mixdown.audio.export import EncodedExport, ExportFormat, encode_export
from voice_mixdown.audio.gate import DEFAULT_GATE, GateSettings, apply_noise_gate
from voice_mixdown.audio.loudness import MeterReading, mean_absolute_level, meter_reading, rms_level
from voice_mixdown.audio.mixdown import MixdownResult, TrackLevels, VoiceSource, render_mixdown
from voice_mixdown.audio.playback import PlaybackScheduler, PlaybackSession, PlaybackState, ScheduledClip
from voice_mixdown.audio.resources import ResourceHandle, ResourceManager, SweepReport
from voice_mixdown.audio.wav_encoder import encode_wav

__all__ = [
    "AudioEncoding",
    "DEFAULT_GATE",
    "DecodedAudio",
    "DecoderAdapter",
    "EncodedExport",
    "ExportFormat",
    "GateSettings",
    "MeterReading",
    "MixdownResult",
    "PcmBuffer",
    "PlaybackScheduler",
    "PlaybackSession",
    "PlaybackState",
    "ResourceHandle",
    "ResourceManager",
    "ScheduledClip",
    "SweepReport",
    "TrackLevels",
    "VoiceSource",
    "apply_noise_gate",
    "encode_export",
    "encode_wav",
    "mean_absolute_level",
    "meter_reading",
    "render_mixdown",
    "rms_level",
    "sniff_encoding",
]
