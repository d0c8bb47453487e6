"""
Offline variant: stream recorded WAV files instead of a live microphone.

Server VAD is still configured, but the buffer is committed and a response
requested explicitly once every file has been sent.
"""

import asyncio
import logging
import wave
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from src.enums.relay_events import UpstreamEventType
from src.realtime_relay.api import UpstreamClient
from src.realtime_relay.audio_codec import read_wav_as_float
from src.realtime_relay.ingest import AudioIngestPipeline
from src.realtime_relay.playback import AudioPlaybackAssembler, AudioPlayer, PlaybackQueue
from utils.ml_logging import LoggerLike

FILE_FRAME_SIZE = 4096


def iter_frames(samples: np.ndarray, frame_size: int = FILE_FRAME_SIZE) -> List[np.ndarray]:
    """Split a sample array into consecutive frames of at most ``frame_size``."""
    return [samples[i : i + frame_size] for i in range(0, len(samples), frame_size)]


class BatchAudioSender:
    """
    Sends WAV files upstream and collects the assistant's answer.

    Usage::

        sender = BatchAudioSender(client, player=WavFileRecorder("out"))
        result = await sender.run(["question.wav"])
    """

    def __init__(
        self,
        client: UpstreamClient,
        player: AudioPlayer,
        frame_size: int = FILE_FRAME_SIZE,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.frame_size = frame_size
        self.ingest = AudioIngestPipeline(client, self.logger)
        self.playback = PlaybackQueue(player, self.logger)
        self.assembler = AudioPlaybackAssembler(self.playback, self.logger)
        self.transcript: List[str] = []
        self.user_transcript: Optional[str] = None

        client.on(UpstreamEventType.RESPONSE_AUDIO_DELTA, lambda e: self.assembler.add_delta(e.get("delta", "")))
        client.on(UpstreamEventType.RESPONSE_AUDIO_DONE, lambda e: self.assembler.finalize())
        client.on(UpstreamEventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA, self._on_transcript_delta)
        client.on(UpstreamEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED, self._on_user_transcript)

    def _on_transcript_delta(self, event: Dict) -> None:
        if event.get("delta"):
            self.transcript.append(event["delta"])

    def _on_user_transcript(self, event: Dict) -> None:
        self.user_transcript = event.get("transcript")

    async def send_files(self, paths: Sequence[Union[str, Path]]) -> int:
        """Stream every file, then commit the buffer and ask for a response."""
        sent = 0
        for path in paths:
            try:
                samples = read_wav_as_float(path)
            except (OSError, EOFError, ValueError, wave.Error) as e:
                self.logger.error(f"Error processing file: {path}: {e}")
                continue
            for frame in iter_frames(samples, self.frame_size):
                await self.ingest.push_frame(frame)
            sent += 1
            self.logger.info(f"Sent {path} ({len(samples)} samples)")

        await self.client.commit_input_audio()
        await self.client.create_response()
        return sent

    async def run(self, paths: Sequence[Union[str, Path]], timeout: Optional[float] = None) -> Dict:
        """
        Send ``paths`` and wait for ``response.done`` and for playback to finish.

        Returns:
            dict: ``files_sent``, ``user_transcript``, ``assistant_transcript``
            and ``units`` (number of audio units played).
        """
        done = asyncio.ensure_future(self.client.dispatcher.wait_for_next(UpstreamEventType.RESPONSE_DONE))
        await asyncio.sleep(0)
        files_sent = await self.send_files(paths)
        try:
            await asyncio.wait_for(done, timeout=timeout)
        finally:
            if not done.done():
                done.cancel()
        await self.playback.drain()
        return {
            "files_sent": files_sent,
            "user_transcript": self.user_transcript,
            "assistant_transcript": "".join(self.transcript),
            "units": len(self.playback.completed),
        }
