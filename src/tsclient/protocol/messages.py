"""Typed protocol messages.

Inbound dicts are decoded once into a tagged variant, ``Response`` or
``Event``, keyed on the ``type`` field. Unknown message types decode to None
so newer servers cannot crash older clients.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tsclient.logging import get_logger

_log = get_logger("protocol.messages")


class ProtocolModel(BaseModel):
    """Base model; unknown fields are kept so callbacks see the full payload."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Request(ProtocolModel):
    """Outbound request."""

    command: str
    seq: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {"command": self.command, "seq": self.seq, "arguments": self.arguments}


class Response(ProtocolModel):
    """Reply to a request, correlated through request_seq."""

    type: Literal["response"] = "response"
    request_seq: str
    success: bool
    command: str | None = None
    message: str | None = None
    body: Any = None

    @field_validator("request_seq", mode="before")
    @classmethod
    def _seq_as_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def failure(cls, request_seq: str, command: str | None, message: str) -> Response:
        """Synthesize a failed response for a request that can never complete."""
        return cls(request_seq=request_seq, success=False, command=command, message=message)


class Event(ProtocolModel):
    """Unsolicited server message, scoped to a file through body.file.

    Events produced by the server always carry success=True; the client
    synthesizes success=False events when the session dies.
    """

    type: Literal["event"] = "event"
    event: str = ""
    body: dict[str, Any] | None = None
    success: bool = True
    message: str | None = None

    @property
    def file(self) -> str | None:
        if not self.body:
            return None
        file = self.body.get("file")
        return file if isinstance(file, str) else None

    @classmethod
    def failure(cls, context: str, message: str) -> Event:
        """Synthesize a failed event for a queued consumer of context."""
        return cls(event="", body={"file": context}, success=False, message=message)


Message = Response | Event


def decode_message(data: dict[str, Any]) -> Message | None:
    """Decode a raw message dict into Response, Event, or None.

    Unknown ``type`` values and messages that fail validation are logged
    and dropped.
    """
    kind = data.get("type")
    try:
        if kind == "response":
            return Response.model_validate(data)
        if kind == "event":
            return Event.model_validate(data)
    except ValidationError as e:
        _log.warning("Dropping invalid %s message: %s", kind, e)
        return None

    _log.debug("Ignoring message with unknown type %r", kind)
    return None
