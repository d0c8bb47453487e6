"""
Reassembly and sequential playback of streamed assistant audio.

Audio deltas of one response are collected in arrival order, framed as a
WAV container when the response's audio is done, and handed to a playback
queue that plays exactly one unit at a time.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Deque, List, Optional, Protocol, Union

from src.realtime_relay.audio_codec import (
    BITS_PER_SAMPLE,
    CHANNELS,
    SAMPLE_RATE,
    base64_to_bytes,
    build_wav_header,
    merge_pcm_chunks,
)
from src.realtime_relay.errors import AudioEncodingWarning
from utils.ml_logging import LoggerLike


@dataclass(frozen=True)
class PlayableAudioUnit:
    pcm: bytes
    sequence: int
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    bits_per_sample: int = BITS_PER_SAMPLE

    @property
    def header(self) -> bytes:
        return build_wav_header(len(self.pcm), self.sample_rate, self.channels, self.bits_per_sample)

    @property
    def wav_bytes(self) -> bytes:
        return self.header + self.pcm

    @property
    def duration_seconds(self) -> float:
        bytes_per_second = self.sample_rate * self.channels * self.bits_per_sample // 8
        return len(self.pcm) / bytes_per_second


class AudioPlayer(Protocol):
    async def play(self, unit: PlayableAudioUnit) -> None:
        """Return once ``unit`` has finished playing; raise if playback fails."""
        ...


class NullAudioPlayer:
    """Completes every unit immediately. Used when nothing local plays audio."""

    def __init__(self, logger: Optional[LoggerLike] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    async def play(self, unit: PlayableAudioUnit) -> None:
        self.logger.debug(
            f"Audio unit {unit.sequence} ready ({len(unit.pcm)} bytes, {unit.duration_seconds:.2f}s)"
        )


class WavFileRecorder:
    """Writes each unit to ``<directory>/<prefix>_<sequence>.wav``."""

    def __init__(self, directory: Union[str, Path], prefix: str = "assistant") -> None:
        self.directory = Path(directory)
        self.prefix = prefix
        self.paths: List[Path] = []

    async def play(self, unit: PlayableAudioUnit) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{self.prefix}_{unit.sequence:04d}.wav"
        await asyncio.to_thread(path.write_bytes, unit.wav_bytes)
        self.paths.append(path)


class PlaybackQueue:
    """
    Strictly sequential playback of audio units.

    The head of the queue is the active unit. It leaves the queue only after
    the player returns or raises, and only then does the next unit start.
    """

    def __init__(self, player: AudioPlayer, logger: Optional[LoggerLike] = None) -> None:
        self.player = player
        self.logger = logger or logging.getLogger(__name__)
        self._units: Deque[PlayableAudioUnit] = deque()
        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.completed: List[int] = []
        self.failed: List[int] = []

    def __len__(self) -> int:
        return len(self._units)

    @property
    def active(self) -> Optional[PlayableAudioUnit]:
        return self._units[0] if self._units else None

    def enqueue(self, unit: PlayableAudioUnit) -> None:
        self._units.append(unit)
        self.logger.debug(f"Queued audio unit {unit.sequence}; queue length {len(self._units)}")
        if len(self._units) == 1:
            self._start_next()

    def _start_next(self) -> None:
        if not self._units:
            self._idle.set()
            return
        self._idle.clear()
        self._task = asyncio.create_task(self._play_active(self._units[0]))

    async def _play_active(self, unit: PlayableAudioUnit) -> None:
        try:
            await self.player.play(unit)
            self.completed.append(unit.sequence)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed.append(unit.sequence)
            self.logger.exception(f"Error during audio playback of unit {unit.sequence}")
        self._units.popleft()
        self._start_next()

    async def drain(self) -> None:
        """Wait until every queued unit has played."""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Stop the active unit and drop everything queued."""
        self._units.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._idle.set()


class AssemblerState(str, Enum):
    COLLECTING = "collecting"
    FINALIZED = "finalized"


class AudioPlaybackAssembler:
    """
    Collects the audio deltas of one response and enqueues them as one unit.
    """

    def __init__(self, queue: PlaybackQueue, logger: Optional[LoggerLike] = None) -> None:
        self.queue = queue
        self.logger = logger or logging.getLogger(__name__)
        self.state = AssemblerState.COLLECTING
        self._chunks: List[bytes] = []
        self._sequence = 0

    @property
    def buffered_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    def add_delta(self, delta: str) -> bool:
        """
        Decode one base64 delta and append it to the current response.

        Returns:
            bool: False if the delta was empty or malformed and was skipped.
        """
        if self.state is AssemblerState.FINALIZED:
            self.state = AssemblerState.COLLECTING
        try:
            data = base64_to_bytes(delta)
        except AudioEncodingWarning as w:
            self.logger.warning(f"Skipping audio delta: {w}")
            return False
        self._chunks.append(data)
        return True

    def finalize(self) -> Optional[PlayableAudioUnit]:
        """
        Close the current response: frame its audio and enqueue it.

        Returns:
            The enqueued unit, or None when the response carried no audio.
        """
        pcm = merge_pcm_chunks(self._chunks)
        self._chunks = []
        self.state = AssemblerState.FINALIZED

        if not pcm:
            self.logger.warning("Audio done without any audio deltas; nothing to play.")
            return None

        self._sequence += 1
        unit = PlayableAudioUnit(pcm=pcm, sequence=self._sequence)
        self.logger.debug(f"Total assistant audio data length: {len(pcm)} (unit {unit.sequence})")
        self.queue.enqueue(unit)
        return unit
