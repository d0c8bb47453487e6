"""
Realtime Relay Package

Provides classes and utilities for:
- Relaying browser microphone audio to the OpenAI Realtime API
- PCM16 / base64 / WAV audio conversion
- Upstream websocket management and event dispatching
- Reassembly and sequential playback of assistant audio
- Per-client relay sessions
"""

from .api import UpstreamClient
from .audio_codec import (
    array_buffer_to_base64,
    base64_encode_audio,
    base64_to_bytes,
    build_wav_header,
    encode_wav,
    float_to_16bit_pcm,
    pcm16_to_float,
)
from .config import RealtimeSessionConfig, UpstreamConfig
from .errors import (
    AudioEncodingWarning,
    ConnectError,
    ProtocolError,
    RelayError,
    TransportError,
)
from .event_handler import RealtimeEventHandler
from .ingest import AudioIngestPipeline
from .playback import AudioPlaybackAssembler, PlayableAudioUnit, PlaybackQueue
from .session import ConnectResult, RelaySession

__all__ = [
    "UpstreamClient",
    "UpstreamConfig",
    "RealtimeSessionConfig",
    "RealtimeEventHandler",
    "AudioIngestPipeline",
    "AudioPlaybackAssembler",
    "PlayableAudioUnit",
    "PlaybackQueue",
    "RelaySession",
    "ConnectResult",
    "RelayError",
    "ConnectError",
    "TransportError",
    "ProtocolError",
    "AudioEncodingWarning",
    "float_to_16bit_pcm",
    "pcm16_to_float",
    "base64_encode_audio",
    "base64_to_bytes",
    "array_buffer_to_base64",
    "build_wav_header",
    "encode_wav",
]
