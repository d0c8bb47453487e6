import asyncio
import logging
from typing import Optional

from src.enums.relay_events import UpstreamEventType
from src.realtime_relay.api import UpstreamClient
from src.realtime_relay.audio_manager import MicrophoneCapture, SpeakerPlayer
from src.realtime_relay.config import UpstreamConfig
from src.realtime_relay.ingest import AudioIngestPipeline
from src.realtime_relay.playback import AudioPlaybackAssembler, PlaybackQueue
from utils.ml_logging import LoggerLike


class LocalVoiceAgent:
    """
    Talk to the realtime model from this machine's microphone and speaker.

    Wires the same ingest pipeline and playback assembler the relay uses,
    with PyAudio devices at both ends.
    """

    def __init__(self, config: UpstreamConfig, logger: Optional[LoggerLike] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.client = UpstreamClient(config, logger=self.logger)
        self.microphone = MicrophoneCapture()
        self.speaker = SpeakerPlayer()
        self.ingest = AudioIngestPipeline(self.client, self.logger)
        self.playback = PlaybackQueue(self.speaker, self.logger)
        self.assembler = AudioPlaybackAssembler(self.playback, self.logger)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.client.on(UpstreamEventType.RESPONSE_AUDIO_DELTA, self._on_audio_delta)
        self.client.on(UpstreamEventType.RESPONSE_AUDIO_DONE, lambda e: self.assembler.finalize())
        self.client.on(UpstreamEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED, self._on_user_transcript)
        self.client.on(UpstreamEventType.RESPONSE_AUDIO_TRANSCRIPT_DONE, self._on_transcript_done)
        self.client.on(UpstreamEventType.ERROR, lambda e: self.logger.error(f"Realtime error: {e.get('message')}"))
        self.client.on(UpstreamEventType.CLOSE, lambda e: self.microphone.stop())

    def _on_audio_delta(self, event) -> None:
        if event.get("delta"):
            self.assembler.add_delta(event["delta"])

    def _on_user_transcript(self, event) -> None:
        if event.get("transcript"):
            print(f"\n🎙️ You: {event['transcript'].strip()}")

    def _on_transcript_done(self, event) -> None:
        if event.get("transcript"):
            print(f"🤖 Assistant: {event['transcript'].strip()}")

    async def run(self) -> None:
        """Stream until the microphone stops or the upstream closes."""
        await self.client.connect()
        self.microphone.start()
        try:
            await self.ingest.run(self.microphone.frames())
        except asyncio.CancelledError:
            self.logger.info("Conversation cancelled.")
            raise
        finally:
            self.microphone.stop()
            await self.client.close()
            await self.playback.cancel()
            self.speaker.close()
