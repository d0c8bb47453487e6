"""
Shared fakes for the relay tests.

The upstream websocket is replaced by an in-memory socket handed out by a
fake connector, injected where ``websockets.connect`` would be used.
"""

import asyncio
import json
from typing import Any, List, Optional, Tuple

import pytest
from websockets.exceptions import ConnectionClosedError

from src.realtime_relay.config import RealtimeSessionConfig, UpstreamConfig

_CLOSED = object()
_DROPPED = object()


class FakeUpstreamSocket:
    """Mock upstream websocket: records sends, replays pushed messages."""

    def __init__(self):
        self.sent: List[dict] = []
        self._incoming: asyncio.Queue = asyncio.Queue()
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self.closed = False
        self.fail_sends = False

    @property
    def sent_types(self) -> List[str]:
        return [message["type"] for message in self.sent]

    async def send(self, data: str) -> None:
        """Mock send; raises like a dead connection when asked to."""
        if self.fail_sends or self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(data))

    def push(self, message: Any) -> None:
        """Queue an inbound message (dicts are JSON-encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def drop(self, code: int = 1011, reason: str = "upstream went away") -> None:
        """Simulate an abnormal close from the server side."""
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_DROPPED)

    def fail(self, error: Exception) -> None:
        """Make the next read raise ``error`` (a transport fault without a close frame)."""
        self.closed = True
        self._incoming.put_nowait(error)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DROPPED:
            raise ConnectionClosedError(None, None)
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """Stands in for ``websockets.connect``."""

    def __init__(self, socket: Optional[FakeUpstreamSocket] = None, error: Optional[Exception] = None):
        self.socket = socket
        self.error = error
        self.calls: List[Tuple[str, dict]] = []

    async def __call__(self, url: str, **kwargs) -> FakeUpstreamSocket:
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        if self.socket is None:
            self.socket = FakeUpstreamSocket()
        return self.socket


class RecordingClient:
    """Mock browser socket collecting the JSON envelopes sent to it."""

    def __init__(self):
        self.messages: List[dict] = []

    async def send_text(self, message: str) -> None:
        self.messages.append(json.loads(message))

    @property
    def events(self) -> List[str]:
        return [m["event"] for m in self.messages]

    def of(self, event: str) -> List[dict]:
        return [m for m in self.messages if m["event"] == event]


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Fixture yielding the event loop enough times for queued callbacks to run."""
    return _settle


@pytest.fixture
def upstream_config():
    return UpstreamConfig(
        api_key="sk-test",
        url="wss://realtime.test/v1/realtime",
        model="gpt-test-realtime",
        session=RealtimeSessionConfig(instructions="Be brief.", voice="coral"),
    )


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def recording_client():
    return RecordingClient()
