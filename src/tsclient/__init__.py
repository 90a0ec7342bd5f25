"""tsclient: editor-side client for a persistent tsserver-style analysis server."""

__version__ = "0.1.0"

from tsclient.config import Config, get_config, load_config
from tsclient.errors import (
    FramingError,
    RequestFailedError,
    RequestTimeoutError,
    ServerNotRunningError,
    ServerStartError,
    SessionAlreadyRunningError,
    TsClientError,
)
from tsclient.operations import ProjectClient
from tsclient.protocol import Event, FrameDecoder, Response
from tsclient.session import EventSpec, ServerSession, SessionManager, SessionState

__all__ = [
    # Entry points
    "ProjectClient",
    "SessionManager",
    "ServerSession",
    "SessionState",
    "EventSpec",
    # Protocol
    "Event",
    "FrameDecoder",
    "Response",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "FramingError",
    "RequestFailedError",
    "RequestTimeoutError",
    "ServerNotRunningError",
    "ServerStartError",
    "SessionAlreadyRunningError",
    "TsClientError",
]
