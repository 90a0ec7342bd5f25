"""Wire protocol: framing, typed messages and routing."""

from tsclient.protocol.framing import (
    FrameDecoder,
    encode_frame,
    encode_request,
    parse_header,
)
from tsclient.protocol.messages import (
    Event,
    Message,
    Request,
    Response,
    decode_message,
)
from tsclient.protocol.router import MessageRouter

__all__ = [
    "Event",
    "FrameDecoder",
    "Message",
    "MessageRouter",
    "Request",
    "Response",
    "decode_message",
    "encode_frame",
    "encode_request",
    "parse_header",
]
