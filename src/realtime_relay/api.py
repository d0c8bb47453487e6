import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException

from src.enums.relay_events import ConnectionState, OutboundMessageType, UpstreamEventType
from src.realtime_relay.config import UpstreamConfig
from src.realtime_relay.errors import (
    AudioEncodingWarning,
    ConnectError,
    ProtocolError,
    TransportError,
)
from src.realtime_relay.event_handler import EventHandler, EventName, RealtimeEventHandler
from utils.ml_logging import LoggerLike

Connector = Callable[..., Awaitable[Any]]

_ALLOWED_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.CONFIGURING, ConnectionState.ERROR},
    ConnectionState.CONFIGURING: {ConnectionState.OPEN, ConnectionState.ERROR},
    ConnectionState.OPEN: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
    ConnectionState.ERROR: set(),
}


def _handshake_status(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status


class UpstreamClient:
    """
    Owns the websocket to the OpenAI Realtime API for one relay session.

    ``connect`` walks ``CONNECTING -> CONFIGURING -> OPEN``; audio is only
    accepted once the ``session.update`` has been sent. Outbound sends are
    fire-and-forget: failures surface as ``error`` events, not as return
    values.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        dispatcher: Optional[RealtimeEventHandler] = None,
        logger: Optional[LoggerLike] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.dispatcher = dispatcher or RealtimeEventHandler(logger=self.logger)
        self._connector = connector or websockets.connect
        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self._receive_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal upstream transition {self.state.value} -> {new_state.value}")
        self.logger.debug(f"Upstream state {self.state.value} -> {new_state.value}")
        self.state = new_state

    # ------------------------------------------------------------------ #
    # Event registry
    # ------------------------------------------------------------------ #
    def on(self, event_name: EventName, handler: EventHandler) -> bool:
        return self.dispatcher.on(event_name, handler)

    def dispatch(self, event_name: EventName, event: Optional[Dict[str, Any]] = None) -> None:
        self.dispatcher.dispatch(event_name, event)

    def _report(self, error: Exception) -> None:
        payload = error.to_payload() if hasattr(error, "to_payload") else {"message": str(error)}
        self.dispatch(UpstreamEventType.ERROR, payload)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def connect(self) -> None:
        """
        Open the websocket and send the session configuration.

        Raises:
            ConnectError: If the client was already used, the transport cannot
                be opened, authentication is rejected, or the configuration
                message cannot be sent.
        """
        if self.state is not ConnectionState.DISCONNECTED:
            raise ConnectError(
                "Upstream client cannot connect twice.", detail=f"state={self.state.value}"
            )

        self._transition(ConnectionState.CONNECTING)
        self.logger.info(f"Connecting to Realtime API at {self.config.connection_url}")
        try:
            self.ws = await self._connector(
                self.config.connection_url,
                additional_headers=self.config.headers(),
                max_size=self.config.max_message_size,
            )
        except InvalidHandshake as e:
            self._transition(ConnectionState.ERROR)
            status = _handshake_status(e)
            self.logger.error(f"Realtime API rejected the handshake (status={status}): {e}")
            raise ConnectError(
                "Failed to connect to OpenAI Realtime API.", detail=str(e), status_code=status
            ) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._transition(ConnectionState.ERROR)
            self.logger.error(f"Failed to connect to WebSocket: {e}")
            raise ConnectError("Failed to connect to OpenAI Realtime API.", detail=str(e)) from e

        self._transition(ConnectionState.CONFIGURING)
        self.logger.info("Connected to OpenAI Realtime API.")
        try:
            await self._send_json(
                {
                    "type": OutboundMessageType.SESSION_UPDATE.value,
                    "session": self.config.session.to_session_update(),
                }
            )
        except (ConnectionClosed, OSError) as e:
            self._transition(ConnectionState.ERROR)
            self.logger.error(f"Failed to send session.update: {e}")
            await self._close_transport()
            raise ConnectError("Failed to configure OpenAI Realtime session.", detail=str(e)) from e

        self.logger.info("Sent session.update message.")
        self._transition(ConnectionState.OPEN)
        self._receive_task = asyncio.create_task(self._receive_messages())

    async def close(self) -> None:
        """
        Close the transport if open. Safe to call any number of times.
        """
        if self.state is not ConnectionState.OPEN:
            return
        self._transition(ConnectionState.CLOSED)
        await self._close_transport()

        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _close_transport(self) -> None:
        if self.ws is None:
            return
        try:
            await self.ws.close()
        except (ConnectionClosed, OSError) as e:
            self.logger.warning(f"Error during WebSocket close: {e}")

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #
    async def _receive_messages(self) -> None:
        """
        Listen for upstream messages until the transport closes.
        """
        try:
            async for message in self.ws:
                self._handle_message(message)
        except (ConnectionClosed, OSError) as e:
            self.logger.error(f"WebSocket connection error: {e}")
            self._report(TransportError("Connection to OpenAI Realtime API was lost.", detail=str(e)))
        except Exception as e:
            self.logger.exception(f"Unexpected error in upstream receive loop: {e}")
            self._report(TransportError("Connection to OpenAI Realtime API was lost.", detail=str(e)))
        finally:
            if self.state is ConnectionState.OPEN:
                self._transition(ConnectionState.CLOSED)
            self.close_code = getattr(self.ws, "close_code", None)
            self.close_reason = getattr(self.ws, "close_reason", "") or ""
            self.logger.info(f"WebSocket closed: {self.close_code} - {self.close_reason}")
            self.dispatch(
                UpstreamEventType.CLOSE,
                {"code": self.close_code, "reason": self.close_reason},
            )

    def _handle_message(self, message: Any) -> None:
        try:
            event = self._decode(message)
        except ProtocolError as e:
            self.logger.warning(f"Dropping upstream message: {e}")
            self._report(e)
            return

        event_type = event["type"]
        self.logger.debug(f"Received event: {event_type}")
        kind = UpstreamEventType.from_wire(event_type)

        if kind is UpstreamEventType.UNHANDLED:
            self.logger.info(f"Unhandled event type: {event_type}")
            if self.dispatcher.has_handlers(UpstreamEventType.UNHANDLED):
                self.dispatch(UpstreamEventType.UNHANDLED, event)
            return

        if kind is UpstreamEventType.ERROR:
            error = event.get("error") or {}
            if not isinstance(error, dict):
                error = {"message": str(error)}
            error.setdefault("message", "Unknown error from OpenAI Realtime API.")
            self.logger.error(f"Realtime API error event: {error}")
            self.dispatch(kind, error)
            return

        self.dispatch(kind, event)

    @staticmethod
    def _decode(message: Any) -> Dict[str, Any]:
        if isinstance(message, (bytes, bytearray)):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ProtocolError("Received undecodable message from upstream.", detail=str(e)) from e
        try:
            event = json.loads(message)
        except (TypeError, ValueError) as e:
            raise ProtocolError("Received malformed message from upstream.", detail=str(e)) from e
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise ProtocolError("Received upstream message without a type.", detail=str(message)[:200])
        return event

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #
    async def _send_json(self, event: Dict[str, Any]) -> None:
        await self.ws.send(json.dumps(event))

    async def _send_fire_and_forget(self, event: Dict[str, Any], failure_message: str) -> bool:
        if self.state is not ConnectionState.OPEN:
            error = TransportError(
                "OpenAI Realtime connection is not open.", detail=f"state={self.state.value}"
            )
            self.logger.warning(f"Dropped {event['type']}: {error}")
            self._report(error)
            return False
        try:
            await self._send_json(event)
        except (ConnectionClosed, OSError) as e:
            self.logger.error(f"{failure_message}: {e}")
            self._report(TransportError(failure_message, detail=str(e)))
            return False
        return True

    async def send_audio_chunk(self, chunk: str) -> None:
        """
        Append one base64 PCM16 chunk to the upstream input buffer.

        No acknowledgment is awaited and nothing is retried.
        """
        if not chunk:
            warning = AudioEncodingWarning("Received empty audio chunk.")
            self.logger.warning(f"Skipping audio chunk: {warning}")
            self._report(warning)
            return
        sent = await self._send_fire_and_forget(
            {"type": OutboundMessageType.INPUT_AUDIO_BUFFER_APPEND.value, "audio": chunk},
            "Error sending audio chunk to OpenAI.",
        )
        if sent:
            self.logger.debug("Sent input_audio_buffer.append message.")

    async def send_user_text(self, text: str) -> None:
        """Send a user text turn and ask for a response."""
        if not text:
            self.logger.warning("Ignoring empty user text.")
            return
        sent = await self._send_fire_and_forget(
            {
                "type": OutboundMessageType.CONVERSATION_ITEM_CREATE.value,
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            },
            "Error sending text to OpenAI.",
        )
        if sent:
            await self.create_response()

    async def commit_input_audio(self) -> None:
        await self._send_fire_and_forget(
            {"type": OutboundMessageType.INPUT_AUDIO_BUFFER_COMMIT.value},
            "Error committing audio buffer.",
        )

    async def create_response(self) -> None:
        await self._send_fire_and_forget(
            {"type": OutboundMessageType.RESPONSE_CREATE.value},
            "Error requesting a response.",
        )
