from enum import Enum
from typing import Optional, Union


class UpstreamEventType(str, Enum):
    """Inbound realtime event kinds the relay understands.

    Wire types outside this set map to ``UNHANDLED``. ``CLOSE`` is raised
    locally when the upstream transport shuts down.
    """

    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_AUDIO_DONE = "response.audio.done"
    RESPONSE_DONE = "response.done"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    ERROR = "error"
    CLOSE = "close"
    UNHANDLED = "unhandled"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "UpstreamEventType":
        """Map an upstream ``type`` field to a kind, ``UNHANDLED`` if unknown."""
        if value in (cls.CLOSE.value, cls.UNHANDLED.value):
            return cls.UNHANDLED
        for kind in cls:
            if kind.value == value:
                return kind
        return cls.UNHANDLED

    @classmethod
    def from_string(cls, value: Union[str, "UpstreamEventType"]) -> "UpstreamEventType":
        """Resolve a registration name, raising on unknown names."""
        if isinstance(value, cls):
            return value
        for kind in cls:
            if kind.value == value:
                return kind
        raise ValueError(
            f"Invalid upstream event: {value}. Valid options: {[k.value for k in cls]}"
        )


class ClientEvent(str, Enum):
    """Named messages exchanged with the browser client."""

    INPUT_AUDIO = "input_audio"
    INPUT_TEXT = "input_text"
    ASSISTANT_AUDIO_CHUNK = "assistant_audio_chunk"
    ASSISTANT_AUDIO_DONE = "assistant_audio_done"
    ASSISTANT_TEXT = "assistant_text"
    ASSISTANT_TRANSCRIPT_DELTA = "assistant_transcript_delta"
    ASSISTANT_TRANSCRIPT_DONE = "assistant_transcript_done"
    TRANSCRIPT = "transcript"
    ERROR = "error"
    OPENAI_CONNECTION_CLOSED = "openai_connection_closed"

    def __str__(self) -> str:
        return self.value


class OutboundMessageType(str, Enum):
    """Message types the relay sends upstream."""

    SESSION_UPDATE = "session.update"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    RESPONSE_CREATE = "response.create"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"

    def __str__(self) -> str:
        return self.value


class ConnectionState(str, Enum):
    """Upstream connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.CLOSED, ConnectionState.ERROR)


class SessionState(str, Enum):
    """Client session lifecycle."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERROR)
