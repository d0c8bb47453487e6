"""
Tests for the per-session upstream event registry.
"""

import asyncio
import logging

import pytest

from src.enums.relay_events import UpstreamEventType
from src.realtime_relay.event_handler import RealtimeEventHandler


@pytest.fixture
def handler():
    return RealtimeEventHandler(logger=logging.getLogger("tests.event_handler"))


class TestRegistration:
    def test_handlers_run_in_registration_order_once_each(self, handler):
        """H1 then H2, exactly once each, before dispatch returns."""
        calls = []
        handler.on(UpstreamEventType.RESPONSE_DONE, lambda e: calls.append(("h1", e)))
        handler.on(UpstreamEventType.RESPONSE_DONE, lambda e: calls.append(("h2", e)))

        handler.dispatch(UpstreamEventType.RESPONSE_DONE, {"n": 1})

        assert calls == [("h1", {"n": 1}), ("h2", {"n": 1})]

    def test_wire_names_resolve_to_kinds(self, handler):
        calls = []
        assert handler.register("response.audio.delta", calls.append)

        handler.emit(UpstreamEventType.RESPONSE_AUDIO_DELTA, {"delta": "QQ=="})

        assert calls == [{"delta": "QQ=="}]
        assert handler.has_handlers("response.audio.delta")

    @pytest.mark.parametrize("name", ["", None])
    def test_empty_names_are_rejected(self, handler, caplog, name):
        with caplog.at_level(logging.ERROR, logger="tests.event_handler"):
            assert handler.on(name, lambda e: None) is False
        assert "undefined event" in caplog.text
        assert not handler.event_handlers

    def test_unknown_names_are_rejected(self, handler, caplog):
        with caplog.at_level(logging.ERROR, logger="tests.event_handler"):
            assert handler.on("conversation.updated", lambda e: None) is False
        assert "unknown event" in caplog.text

    def test_clear_event_handlers(self, handler):
        handler.on(UpstreamEventType.ERROR, lambda e: None)
        handler.clear_event_handlers()
        assert not handler.has_handlers(UpstreamEventType.ERROR)


class TestDispatch:
    def test_no_handlers_logs_warning_without_raising(self, handler, caplog):
        with caplog.at_level(logging.WARNING, logger="tests.event_handler"):
            handler.dispatch(UpstreamEventType.RESPONSE_AUDIO_DONE, {})

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "No handlers registered" in record.getMessage()

    def test_unhandled_error_event_is_escalated(self, handler, caplog):
        """An error nobody listens to is logged at ERROR, still without raising."""
        with caplog.at_level(logging.WARNING, logger="tests.event_handler"):
            handler.dispatch(UpstreamEventType.ERROR, {"message": "boom"})

        assert caplog.records[-1].levelno == logging.ERROR

    def test_failing_handler_does_not_stop_the_rest(self, handler, caplog):
        calls = []

        def broken(event):
            raise RuntimeError("handler bug")

        handler.on(UpstreamEventType.RESPONSE_DONE, broken)
        handler.on(UpstreamEventType.RESPONSE_DONE, calls.append)

        with caplog.at_level(logging.ERROR, logger="tests.event_handler"):
            handler.dispatch(UpstreamEventType.RESPONSE_DONE, {"ok": True})

        assert calls == [{"ok": True}]
        assert "handler bug" in caplog.text

    def test_handler_registered_during_dispatch_waits_for_next_event(self, handler):
        calls = []

        def register_more(event):
            handler.on(UpstreamEventType.RESPONSE_DONE, lambda e: calls.append("late"))
            calls.append("first")

        handler.on(UpstreamEventType.RESPONSE_DONE, register_more)
        handler.dispatch(UpstreamEventType.RESPONSE_DONE, {})

        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_wait_for_next(self, handler):
        waiter = asyncio.ensure_future(handler.wait_for_next(UpstreamEventType.RESPONSE_DONE))
        await asyncio.sleep(0)

        handler.dispatch(UpstreamEventType.RESPONSE_DONE, {"response": {"id": "r1"}})

        event = await asyncio.wait_for(waiter, timeout=1.0)
        assert event["response"]["id"] == "r1"
        assert not handler.has_handlers(UpstreamEventType.RESPONSE_DONE)


class TestEventKinds:
    def test_unknown_wire_types_map_to_unhandled(self):
        assert UpstreamEventType.from_wire("response.audio.done") is UpstreamEventType.RESPONSE_AUDIO_DONE
        assert UpstreamEventType.from_wire("session.created") is UpstreamEventType.UNHANDLED
        assert UpstreamEventType.from_wire(None) is UpstreamEventType.UNHANDLED

    def test_local_kinds_cannot_arrive_from_the_wire(self):
        """A server message typed ``close`` must not fake a transport close."""
        assert UpstreamEventType.from_wire("close") is UpstreamEventType.UNHANDLED

    def test_from_string_rejects_unknown_names(self):
        with pytest.raises(ValueError):
            UpstreamEventType.from_string("x")
