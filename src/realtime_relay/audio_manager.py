"""
PyAudio microphone capture and speaker playback for the local ``talk`` mode.

The microphone yields float32 frames for the ingest pipeline; the speaker
implements the playback queue's player interface and returns only when a
unit has been fully written to the device.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import numpy as np
import pyaudio

from src.realtime_relay.audio_codec import CHANNELS, SAMPLE_RATE
from src.realtime_relay.playback import PlayableAudioUnit

logger = logging.getLogger(__name__)

FRAME_SIZE = 4096
_STOP = object()


class MicrophoneCapture:
    def __init__(
        self,
        rate: int = SAMPLE_RATE,
        frame_size: int = FRAME_SIZE,
        device_index: Optional[int] = None,
    ):
        self.rate = rate
        self.frame_size = frame_size
        self.device_index = device_index
        self.audio = pyaudio.PyAudio()
        self.stream = None
        self.queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False

    def _mic_callback(self, in_data, frame_count, time_info, status):
        """
        Callback for microphone input stream; runs on PortAudio's thread.
        """
        frame = np.frombuffer(in_data, dtype=np.float32).copy()
        self._loop.call_soon_threadsafe(self.queue.put_nowait, frame)
        return (None, pyaudio.paContinue)

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.stream = self.audio.open(
            format=pyaudio.paFloat32,
            channels=CHANNELS,
            rate=self.rate,
            input=True,
            input_device_index=self.device_index,
            frames_per_buffer=self.frame_size,
            stream_callback=self._mic_callback,
        )
        self.running = True
        self.stream.start_stream()
        logger.info("Recording started. Speak into your microphone.")

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self.stream is not None:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        self.audio.terminate()
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.queue.put_nowait, _STOP)
        logger.info("Recording stopped.")

    async def frames(self) -> AsyncIterator[np.ndarray]:
        while True:
            frame = await self.queue.get()
            if frame is _STOP:
                return
            yield frame


class SpeakerPlayer:
    """Plays units on the default output device, one at a time."""

    def __init__(self, rate: int = SAMPLE_RATE, device_index: Optional[int] = None):
        self.rate = rate
        self.device_index = device_index
        self.audio = pyaudio.PyAudio()

    def _play_blocking(self, pcm: bytes) -> None:
        stream = self.audio.open(
            format=pyaudio.paInt16,
            channels=CHANNELS,
            rate=self.rate,
            output=True,
            output_device_index=self.device_index,
        )
        try:
            stream.write(pcm)
        finally:
            stream.stop_stream()
            stream.close()

    async def play(self, unit: PlayableAudioUnit) -> None:
        logger.info(f"🔈 Playing assistant audio unit {unit.sequence} ({unit.duration_seconds:.2f}s)")
        await asyncio.to_thread(self._play_blocking, unit.pcm)

    def close(self) -> None:
        self.audio.terminate()
