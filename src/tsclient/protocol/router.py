"""Routes decoded messages to the correlator or the event queues."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tsclient.logging import get_logger
from tsclient.protocol.messages import Event, Message, Response, decode_message

if TYPE_CHECKING:
    from tsclient.session.correlator import RequestCorrelator
    from tsclient.session.events import EventQueues

_log = get_logger("protocol.router")


class MessageRouter:
    """Dispatches responses by request_seq and events by file."""

    def __init__(self, correlator: RequestCorrelator, events: EventQueues) -> None:
        self.correlator = correlator
        self.events = events

    def route(self, data: dict[str, Any]) -> Message | None:
        """Decode and dispatch one raw message.

        Returns:
            The decoded message, or None if it was ignored.
        """
        message = decode_message(data)
        if isinstance(message, Response):
            self.correlator.resolve(message)
        elif isinstance(message, Event):
            self.events.dispatch(message)
        return message

    def route_all(self, messages: list[dict[str, Any]]) -> None:
        """Dispatch messages in framing order."""
        for data in messages:
            self.route(data)
