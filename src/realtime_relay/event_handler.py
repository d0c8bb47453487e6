import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Union

from src.enums.relay_events import UpstreamEventType
from utils.ml_logging import LoggerLike

EventHandler = Callable[[Dict[str, Any]], None]
EventName = Union[str, UpstreamEventType]

# Kinds that must never go unheard; missing handlers are logged as errors.
_ESCALATED_EVENTS = frozenset({UpstreamEventType.ERROR})


class RealtimeEventHandler:
    """
    Per-session registry of upstream event handlers.

    Handlers are plain callables invoked synchronously, in registration
    order, so one ``dispatch`` finishes before the next one starts.
    """

    def __init__(self, logger: Optional[LoggerLike] = None) -> None:
        self.event_handlers: Dict[UpstreamEventType, List[EventHandler]] = defaultdict(list)
        self.logger = logger or logging.getLogger(__name__)

    def _resolve(self, event_name: Optional[EventName], action: str) -> Optional[UpstreamEventType]:
        if not event_name:
            self.logger.error(f"Attempted to {action} an undefined event.")
            return None
        try:
            return UpstreamEventType.from_string(event_name)
        except ValueError:
            self.logger.error(f"Attempted to {action} an unknown event: {event_name}")
            return None

    def on(self, event_name: EventName, handler: EventHandler) -> bool:
        """
        Register a handler for an event kind.

        Args:
            event_name: Event kind or its wire name.
            handler: Callable receiving the event payload.

        Returns:
            bool: False when the name was empty or unknown and nothing was registered.
        """
        kind = self._resolve(event_name, "register a handler for")
        if kind is None:
            return False
        self.event_handlers[kind].append(handler)
        self.logger.debug(f"Handler registered for event: {kind}")
        return True

    register = on

    def has_handlers(self, event_name: EventName) -> bool:
        try:
            kind = UpstreamEventType.from_string(event_name)
        except ValueError:
            return False
        return bool(self.event_handlers.get(kind))

    def clear_event_handlers(self) -> None:
        """
        Clear all registered event handlers.
        """
        self.event_handlers.clear()
        self.logger.debug("All event handlers cleared.")

    def dispatch(self, event_name: EventName, event: Optional[Dict[str, Any]] = None) -> None:
        """
        Dispatch an event to all registered handlers.

        Args:
            event_name: Event kind or its wire name.
            event: Event payload.
        """
        kind = self._resolve(event_name, "emit")
        if kind is None:
            return

        handlers = list(self.event_handlers.get(kind, []))
        if not handlers:
            if kind in _ESCALATED_EVENTS:
                self.logger.error(f"No handlers registered for event: {kind} payload={event}")
            else:
                self.logger.warning(f"No handlers registered for event: {kind}")
            return

        self.logger.debug(f"Dispatching event: {kind} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(f"Error in handler for event {kind}")

    emit = dispatch

    async def wait_for_next(self, event_name: EventName) -> Dict[str, Any]:
        """
        Wait for the next occurrence of a specific event.

        Args:
            event_name: Event kind to wait for.

        Returns:
            dict: Event payload.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def handler(event):
            if not future.done():
                future.set_result(event)

        if not self.on(event_name, handler):
            raise ValueError(f"Cannot wait for unknown event: {event_name}")
        self.logger.debug(f"Waiting for next event: {event_name}")
        try:
            return await future
        finally:
            kind = UpstreamEventType.from_string(event_name)
            if handler in self.event_handlers.get(kind, []):
                self.event_handlers[kind].remove(handler)
