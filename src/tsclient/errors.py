"""Exception types raised by tsclient.

Transport and timeout errors surface at the call site that issued the
request. Server-side failures (``success: false``) are not exceptions at the
transport level; only the operations layer turns them into
RequestFailedError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tsclient.protocol.messages import Response


class TsClientError(Exception):
    """Base class for all tsclient errors."""


class FramingError(TsClientError):
    """Inbound frame could not be decoded.

    Raised when a complete frame body is not valid UTF-8 JSON or is not a
    JSON object. Fatal for the session that produced it.
    """


class ServerNotRunningError(TsClientError):
    """No running server session for the project."""

    def __init__(self, project: str | None) -> None:
        self.project = project
        super().__init__(f"Server is not running for project {project!r}; start or restart it")


class SessionAlreadyRunningError(TsClientError):
    """start() was called for a project that already has a session."""

    def __init__(self, project: str) -> None:
        self.project = project
        super().__init__(f"Server is already running for project {project!r}")


class ServerStartError(TsClientError):
    """The server executable could not be located or spawned."""


class RequestTimeoutError(TsClientError):
    """A synchronous request did not receive its response in time."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Request timed out: {command} ({timeout:g}s)")


class RequestFailedError(TsClientError):
    """The server answered a request with success=false."""

    def __init__(self, response: Response) -> None:
        self.response = response
        detail = response.message or "no message"
        super().__init__(f"{response.command or 'request'} failed: {detail}")
