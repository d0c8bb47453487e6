"""
One relay session per connected browser client.

The session owns the upstream client, its event registry and the playback
assembler, and translates between the upstream realtime events and the
client-facing event contract.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import numpy as np
from pydantic import ValidationError

from src.enums.relay_events import ClientEvent, SessionState, UpstreamEventType
from src.realtime_relay.api import Connector, UpstreamClient
from src.realtime_relay.audio_codec import is_valid_audio_chunk
from src.realtime_relay.config import UpstreamConfig
from src.realtime_relay.errors import (
    AudioEncodingWarning,
    ConnectError,
    ProtocolError,
    RelayError,
    TransportError,
)
from src.realtime_relay.event_handler import RealtimeEventHandler
from src.realtime_relay.ingest import AudioIngestPipeline
from src.realtime_relay.playback import (
    AudioPlaybackAssembler,
    AudioPlayer,
    NullAudioPlayer,
    PlaybackQueue,
)
from src.realtime_relay.schemas import InputAudioPayload, InputTextPayload, RelayEnvelope
from utils.ml_logging import LoggerLike, session_logger

ClientSender = Callable[[str], Awaitable[None]]
ClientMessage = Union[str, bytes, Dict[str, Any]]

CONNECT_FAILED_MESSAGE = "Failed to connect to OpenAI Realtime API."


@dataclass(frozen=True)
class ConnectResult:
    ok: bool
    error: Optional[ConnectError] = None


class RelaySession:
    def __init__(
        self,
        session_id: str,
        upstream: UpstreamClient,
        send_to_client: ClientSender,
        player: Optional[AudioPlayer] = None,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self.session_id = session_id
        self.logger = logger or session_logger(logging.getLogger(__name__), session_id)
        self.upstream = upstream
        self.state = SessionState.CONNECTING
        self.created_at = datetime.now()

        self.playback = PlaybackQueue(player or NullAudioPlayer(self.logger), self.logger)
        self.assembler = AudioPlaybackAssembler(self.playback, self.logger)
        self.ingest = AudioIngestPipeline(upstream, self.logger)

        self._send_to_client = send_to_client
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer_task: Optional[asyncio.Task] = None
        self._started = False
        self._closed = False
        self.chunks_forwarded = 0

    @classmethod
    def create(
        cls,
        session_id: str,
        config: UpstreamConfig,
        send_to_client: ClientSender,
        player: Optional[AudioPlayer] = None,
        logger: Optional[LoggerLike] = None,
        connector: Optional[Connector] = None,
    ) -> "RelaySession":
        """Build a session with its own event registry and upstream client."""
        log = session_logger(logger or logging.getLogger(__name__), session_id)
        dispatcher = RealtimeEventHandler(logger=log)
        upstream = UpstreamClient(config, dispatcher=dispatcher, logger=log, connector=connector)
        return cls(session_id, upstream, send_to_client, player=player, logger=log)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self) -> ConnectResult:
        """
        Connect upstream and wire the event handlers.

        The session is live only if the returned result is ``ok``; on failure
        the client has been sent an ``error`` event and the session is in
        ``ERROR``.
        """
        if self._started:
            return ConnectResult(False, ConnectError("Session already started."))
        self._started = True
        self._writer_task = asyncio.create_task(self._write_loop())
        self._register_upstream_handlers()

        try:
            await self.upstream.connect()
        except ConnectError as e:
            self.state = SessionState.ERROR
            self.logger.error(f"Failed to connect to OpenAI Realtime API: {e}")
            self._emit_client(ClientEvent.ERROR, {"message": CONNECT_FAILED_MESSAGE})
            return ConnectResult(False, e)

        if self.state is not SessionState.CONNECTING:
            self.logger.info("Session closed while connecting; dropping upstream connection.")
            await self.upstream.close()
            return ConnectResult(False, ConnectError("Session closed before it opened."))

        self.state = SessionState.OPEN
        self.logger.info(f"Connected to OpenAI Realtime API for client {self.session_id}")
        return ConnectResult(True)

    async def close(self, drain_client: bool = False) -> None:
        """
        Tear the session down immediately. In-flight audio is not drained.

        Args:
            drain_client: Deliver already queued client events before the
                writer stops (used when the client socket is still open).
        """
        if self._closed:
            return
        self._closed = True
        if self.state is not SessionState.ERROR:
            self.state = SessionState.CLOSING

        await self.upstream.close()
        await self.playback.cancel()

        if self._writer_task is not None:
            if drain_client:
                await self._outbox.join()
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

        if self.state is SessionState.CLOSING:
            self.state = SessionState.CLOSED
        self.logger.info(f"Session closed ({self.chunks_forwarded} audio chunk(s) forwarded)")

    # ------------------------------------------------------------------ #
    # Client -> upstream
    # ------------------------------------------------------------------ #
    async def handle_client_message(self, raw: ClientMessage) -> None:
        """Route one client envelope. Faults are reported, never raised."""
        try:
            envelope = self._parse_envelope(raw)
        except ProtocolError as e:
            self.logger.warning(f"Dropping client message: {e}")
            self._report(e)
            return

        if not self._accepting(envelope.event):
            return

        if envelope.event == ClientEvent.INPUT_AUDIO.value:
            await self._handle_input_audio(envelope.data)
        elif envelope.event == ClientEvent.INPUT_TEXT.value:
            await self._handle_input_text(envelope.data)
        else:
            error = ProtocolError(f"Unsupported client event: {envelope.event}")
            self.logger.warning(str(error))
            self._report(error)

    async def handle_client_audio_frame(self, frame: Union[bytes, np.ndarray]) -> None:
        """Stream one raw float32 microphone frame through the ingest pipeline."""
        if not self._accepting(ClientEvent.INPUT_AUDIO.value):
            return
        if isinstance(frame, (bytes, bytearray)):
            if len(frame) % 4:
                warning = AudioEncodingWarning(
                    "Received malformed audio frame.", detail=f"{len(frame)} bytes"
                )
                self.logger.warning(str(warning))
                self._report(warning)
                return
            frame = np.frombuffer(bytes(frame), dtype="<f4")
        if await self.ingest.push_frame(frame) is not None:
            self.chunks_forwarded += 1

    def _accepting(self, event_name: str) -> bool:
        if self.state is SessionState.OPEN:
            return True
        error = TransportError("Session is not open.", detail=f"state={self.state.value}")
        self.logger.warning(f"Ignoring {event_name}: {error}")
        self._report(error)
        return False

    @staticmethod
    def _parse_envelope(raw: ClientMessage) -> RelayEnvelope:
        try:
            if isinstance(raw, dict):
                return RelayEnvelope.model_validate(raw)
            return RelayEnvelope.model_validate_json(raw)
        except ValidationError as e:
            raise ProtocolError("Received malformed client message.", detail=str(e)) from e

    async def _handle_input_audio(self, data: Optional[Dict[str, Any]]) -> None:
        try:
            payload = InputAudioPayload.model_validate(data or {})
        except ValidationError as e:
            payload = None
            detail = str(e)
        else:
            detail = None

        if payload is None or not is_valid_audio_chunk(payload.audio):
            warning = AudioEncodingWarning("Error processing your audio input.", detail=detail)
            self.logger.warning(f"Received empty or malformed input_audio from client {self.session_id}")
            self._report(warning)
            return

        self.logger.debug(f"Received input_audio: {len(payload.audio)} characters")
        await self.upstream.send_audio_chunk(payload.audio)
        self.chunks_forwarded += 1

    async def _handle_input_text(self, data: Optional[Dict[str, Any]]) -> None:
        try:
            payload = InputTextPayload.model_validate(data or {})
        except ValidationError as e:
            self._report(ProtocolError("Received malformed input_text.", detail=str(e)))
            return
        self.logger.info(f"Received text input: {payload.text}")
        await self.upstream.send_user_text(payload.text)

    # ------------------------------------------------------------------ #
    # Upstream -> client
    # ------------------------------------------------------------------ #
    def _register_upstream_handlers(self) -> None:
        on = self.upstream.on
        on(UpstreamEventType.RESPONSE_AUDIO_DELTA, self._on_audio_delta)
        on(UpstreamEventType.RESPONSE_AUDIO_DONE, self._on_audio_done)
        on(UpstreamEventType.RESPONSE_DONE, self._on_response_done)
        on(UpstreamEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED, self._on_transcription_completed)
        on(UpstreamEventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA, self._on_transcript_delta)
        on(UpstreamEventType.RESPONSE_AUDIO_TRANSCRIPT_DONE, self._on_transcript_done)
        on(UpstreamEventType.ERROR, self._on_upstream_error)
        on(UpstreamEventType.CLOSE, self._on_upstream_close)

    def _on_audio_delta(self, event: Dict[str, Any]) -> None:
        delta = event.get("delta")
        if not delta:
            self.logger.warning("Received empty audio chunk from OpenAI")
            self._report(AudioEncodingWarning("Received empty audio chunk from OpenAI."))
            return
        if not is_valid_audio_chunk(delta):
            self.logger.warning("Received malformed audio chunk from OpenAI")
            self._report(AudioEncodingWarning("Received malformed audio chunk from OpenAI."))
            return
        self._emit_client(ClientEvent.ASSISTANT_AUDIO_CHUNK, {"audio": delta})
        self.assembler.add_delta(delta)

    def _on_audio_done(self, event: Dict[str, Any]) -> None:
        self._emit_client(ClientEvent.ASSISTANT_AUDIO_DONE)
        self.assembler.finalize()

    def _on_response_done(self, event: Dict[str, Any]) -> None:
        response = event.get("response") or {}
        for item in response.get("output") or []:
            if item.get("type") != "message" or item.get("role") != "assistant":
                continue
            for content in item.get("content") or []:
                if content.get("type") == "text" and content.get("text"):
                    self._emit_client(ClientEvent.ASSISTANT_TEXT, {"text": content["text"]})

    def _on_transcription_completed(self, event: Dict[str, Any]) -> None:
        text = event.get("transcript") or (event.get("transcription") or {}).get("text")
        if text:
            self._emit_client(ClientEvent.TRANSCRIPT, {"text": text})

    def _on_transcript_delta(self, event: Dict[str, Any]) -> None:
        if event.get("delta"):
            self._emit_client(ClientEvent.ASSISTANT_TRANSCRIPT_DELTA, {"text": event["delta"]})

    def _on_transcript_done(self, event: Dict[str, Any]) -> None:
        self._emit_client(ClientEvent.ASSISTANT_TRANSCRIPT_DONE)

    def _on_upstream_error(self, error: Dict[str, Any]) -> None:
        message = error.get("message") or "Unknown error from OpenAI Realtime API."
        self.logger.error(f"OpenAI Realtime API Error: {message}")
        self._emit_client(ClientEvent.ERROR, {"message": message})

    def _on_upstream_close(self, event: Dict[str, Any]) -> None:
        self.logger.info(f"OpenAIClient WebSocket closed: {event.get('code')} - {event.get('reason')}")
        self._emit_client(
            ClientEvent.OPENAI_CONNECTION_CLOSED,
            {"code": event.get("code"), "reason": event.get("reason")},
        )

    # ------------------------------------------------------------------ #
    # Client delivery
    # ------------------------------------------------------------------ #
    def _report(self, error: RelayError) -> None:
        self._emit_client(ClientEvent.ERROR, error.to_payload())

    def _emit_client(self, event: ClientEvent, data: Optional[Dict[str, Any]] = None) -> None:
        if self._writer_task is None or self._writer_task.done():
            self.logger.debug(f"Client writer not running; dropping {event.value}")
            return
        self._outbox.put_nowait(RelayEnvelope(event=event.value, data=data))

    async def _write_loop(self) -> None:
        while True:
            envelope = await self._outbox.get()
            try:
                await self._send_to_client(envelope.to_json())
            except Exception as e:
                self.logger.warning(f"Failed to deliver {envelope.event} to client: {e}")
            finally:
                self._outbox.task_done()
