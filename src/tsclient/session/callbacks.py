"""Callback types and isolated invocation."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from tsclient.logging import get_logger
from tsclient.protocol.messages import Event, Response

_log = get_logger("session.callbacks")

ResponseCallback = Callable[[Response], None]
EventCallback = Callable[[Event], None]

_P = TypeVar("_P", Response, Event)


def invoke(callback: Callable[[_P], None], payload: _P, label: str) -> None:
    """Run a consumer callback to completion.

    A failing callback is logged and does not stop dispatch of the messages
    decoded after it.
    """
    try:
        callback(payload)
    except Exception:
        _log.exception("Callback for %s raised", label)
