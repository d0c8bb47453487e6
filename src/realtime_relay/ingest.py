import logging
from typing import AsyncIterator, Optional

import numpy as np

from src.realtime_relay.api import UpstreamClient
from src.realtime_relay.audio_codec import base64_encode_audio
from utils.ml_logging import LoggerLike


class AudioIngestPipeline:
    """
    Streams captured microphone frames upstream one frame at a time.

    Each frame is clamped, converted to PCM16, base64-encoded and sent
    immediately. Frames are never buffered, merged or reordered.
    """

    def __init__(self, client: UpstreamClient, logger: Optional[LoggerLike] = None) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.frames_sent = 0
        self.frames_skipped = 0

    @staticmethod
    def encode_frame(frame: np.ndarray) -> str:
        return base64_encode_audio(frame)

    async def push_frame(self, frame: np.ndarray) -> Optional[str]:
        """
        Encode one frame and forward it.

        Returns:
            The chunk handed to the upstream client, or None if the frame was
            empty and skipped.
        """
        if frame is None or len(frame) == 0:
            self.frames_skipped += 1
            self.logger.warning("Skipping empty microphone frame.")
            return None

        chunk = self.encode_frame(np.asarray(frame, dtype=np.float32))
        await self.client.send_audio_chunk(chunk)
        self.frames_sent += 1
        return chunk

    async def run(self, frames: AsyncIterator[np.ndarray]) -> int:
        """Forward every frame from ``frames`` until the source is exhausted."""
        async for frame in frames:
            await self.push_frame(frame)
        self.logger.info(
            f"Microphone stream ended: {self.frames_sent} frame(s) sent, {self.frames_skipped} skipped"
        )
        return self.frames_sent
