import base64
import binascii
import logging
import struct
import wave
from pathlib import Path
from typing import Iterable, Union

import numpy as np

from src.realtime_relay.errors import AudioEncodingWarning

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
CHANNELS = 1
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44

_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_WAVE_FORMAT_PCM = 1


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Converts float amplitude data in [-1, 1] to int16 samples.

    Values are clamped first; negatives scale by 0x8000 and non-negatives by
    0x7fff, truncating toward zero.

    Args:
        float32_array (np.ndarray): Input float numpy array.

    Returns:
        np.ndarray: Output int16 numpy array.
    """
    clipped = np.clip(np.asarray(float32_array, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return np.trunc(scaled).astype(np.int16)


def pcm16_to_float(pcm: Union[bytes, bytearray, np.ndarray]) -> np.ndarray:
    """
    Converts little-endian PCM16 bytes (or int16 samples) back to float32.

    Args:
        pcm: Raw PCM16 bytes or an int16 numpy array.

    Returns:
        np.ndarray: Float32 samples in [-1, 1].
    """
    if isinstance(pcm, np.ndarray):
        samples = pcm.astype(np.int16)
    else:
        samples = np.frombuffer(bytes(pcm), dtype="<i2")
    as_float = samples.astype(np.float64)
    restored = np.where(as_float < 0, as_float / 0x8000, as_float / 0x7FFF)
    return restored.astype(np.float32)


def float_to_pcm16_bytes(float32_array: np.ndarray) -> bytes:
    """Encodes float samples as little-endian PCM16 bytes."""
    return float_to_16bit_pcm(float32_array).astype("<i2").tobytes()


def array_buffer_to_base64(array_buffer: Union[bytes, bytearray, np.ndarray]) -> str:
    """
    Converts raw bytes or a numpy array to a base64 string.

    Float arrays are converted to PCM16 first.

    Args:
        array_buffer: Bytes or numpy array.

    Returns:
        str: Base64 encoded string.
    """
    if isinstance(array_buffer, np.ndarray):
        if np.issubdtype(array_buffer.dtype, np.floating):
            array_buffer = float_to_16bit_pcm(array_buffer)
        array_buffer = array_buffer.astype(array_buffer.dtype.newbyteorder("<")).tobytes()
    return base64.b64encode(bytes(array_buffer)).decode("utf-8")


def base64_to_bytes(base64_string: str) -> bytes:
    """
    Strictly decodes a base64 audio chunk.

    Args:
        base64_string (str): Base64 encoded PCM16 data.

    Returns:
        bytes: Decoded bytes.

    Raises:
        AudioEncodingWarning: If the chunk is empty, not a string, or not
            well-formed base64.
    """
    if not isinstance(base64_string, str) or not base64_string:
        raise AudioEncodingWarning("Received empty audio chunk.")
    try:
        return base64.b64decode(base64_string, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioEncodingWarning("Received malformed audio chunk.", detail=str(e)) from e


def is_valid_audio_chunk(base64_string: str) -> bool:
    """True when the chunk is non-empty, well-formed base64."""
    try:
        return len(base64_to_bytes(base64_string)) > 0
    except AudioEncodingWarning:
        return False


def base64_encode_audio(float32_array: np.ndarray) -> str:
    """Encodes one frame of float samples as a base64 PCM16 chunk."""
    return array_buffer_to_base64(float_to_pcm16_bytes(float32_array))


def merge_pcm_chunks(chunks: Iterable[bytes]) -> bytes:
    """Concatenates PCM byte spans in the order given."""
    return b"".join(chunks)


def build_wav_header(
    data_length: int,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    bits_per_sample: int = BITS_PER_SAMPLE,
) -> bytes:
    """
    Builds the 44-byte RIFF/WAVE header for uncompressed PCM.

    Args:
        data_length (int): Length of the PCM payload in bytes.
        sample_rate (int): Samples per second.
        channels (int): Channel count.
        bits_per_sample (int): Sample width in bits.

    Returns:
        bytes: The header.
    """
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return _WAV_HEADER.pack(
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,
        _WAVE_FORMAT_PCM,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_length,
    )


def encode_wav(
    pcm: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    bits_per_sample: int = BITS_PER_SAMPLE,
) -> bytes:
    """Wraps raw PCM in a playable WAV container."""
    return build_wav_header(len(pcm), sample_rate, channels, bits_per_sample) + pcm


def read_wav_as_float(path: Union[str, Path]) -> np.ndarray:
    """
    Reads the first channel of a 16-bit PCM WAV file as float32 samples.

    Args:
        path: Path of the WAV file.

    Returns:
        np.ndarray: Float32 samples of channel 0.

    Raises:
        ValueError: If the file is not 16-bit PCM.
    """
    with wave.open(str(path), "rb") as wf:
        if wf.getsampwidth() != 2:
            raise ValueError(f"{path}: expected 16-bit PCM, got {wf.getsampwidth() * 8}-bit")
        if wf.getframerate() != SAMPLE_RATE:
            logger.warning(
                f"{path}: sample rate {wf.getframerate()} Hz differs from {SAMPLE_RATE} Hz"
            )
        channels = wf.getnchannels()
        frames = wf.readframes(wf.getnframes())

    samples = np.frombuffer(frames, dtype="<i2")
    if channels > 1:
        samples = samples.reshape(-1, channels)[:, 0]
    return pcm16_to_float(samples)
