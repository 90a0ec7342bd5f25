"""Session core: server processes, correlation, event queues and buffers."""

from tsclient.session.buffers import BufferState, BufferTable
from tsclient.session.correlator import PendingRequest, RequestCorrelator
from tsclient.session.events import DIAGNOSTICS, EventQueues, EventSpec
from tsclient.session.manager import SessionManager
from tsclient.session.server import (
    ServerSession,
    SessionState,
    build_environment,
    locate_tsserver,
)

__all__ = [
    "BufferState",
    "BufferTable",
    "DIAGNOSTICS",
    "EventQueues",
    "EventSpec",
    "PendingRequest",
    "RequestCorrelator",
    "ServerSession",
    "SessionManager",
    "SessionState",
    "build_environment",
    "locate_tsserver",
]
