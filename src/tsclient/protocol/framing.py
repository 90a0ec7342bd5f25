"""Wire framing for the server's stdio stream.

Inbound (server to client) messages are framed with a byte-count header:

    Content-Length: <length>\\r\\n
    \\r\\n
    <json-body>

The length counts encoded bytes, not characters. It decides when a frame is
ready: decoding waits until at least that many bytes follow the header. The
body itself is the JSON object that starts at the first opening delimiter
after the header, however long it turns out to be, so a count that is off
(tsserver includes the trailing newline, some servers do not) cannot split a
message. Whitespace after the body and anything before the next header are
boundary bytes and are skipped.

Outbound (client to server) messages are a single JSON object per line.
"""

from __future__ import annotations

import json
from typing import Any

from tsclient.errors import FramingError
from tsclient.logging import get_logger

CONTENT_LENGTH = b"Content-Length"
CONTENT_ENCODING = "utf-8"
HEADER_ENCODING = "ascii"

_CRLF_SEPARATOR = b"\r\n\r\n"
_LF_SEPARATOR = b"\n\n"

_WHITESPACE = frozenset(b" \t\r\n")
_OPENERS = frozenset(b"{[")
_CLOSERS = frozenset(b"}]")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")

_log = get_logger("protocol.framing")


def parse_header(header_bytes: bytes) -> int | None:
    """Parse a header block and return its Content-Length.

    Args:
        header_bytes: Header lines without the blank-line separator.

    Returns:
        The declared body length in bytes, or None if the block is malformed
        (missing, non-numeric or negative Content-Length, non-ASCII text).
    """
    try:
        header_text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError:
        return None

    length: int | None = None
    for line in header_text.splitlines():
        name, sep, value = line.partition(":")
        if not sep:
            return None
        if name.strip().lower() == "content-length":
            value = value.strip()
            if not value.isdigit():
                return None
            length = int(value)
    return length


def _find_separator(buffer: bytearray, start: int) -> tuple[int, int] | None:
    """Locate the earliest blank line after start as (index, width)."""
    found = [
        (index, len(sep))
        for sep in (_CRLF_SEPARATOR, _LF_SEPARATOR)
        if (index := buffer.find(sep, start)) != -1
    ]
    if not found:
        return None
    return min(found)


def _scan_json_end(buffer: bytearray, start: int) -> int | None:
    """Return the index just past the JSON value opening at start.

    Tracks nesting and string state byte by byte; multi-byte UTF-8 sequences
    never contain quote, backslash or bracket bytes. Returns None when the
    value is not complete yet.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(buffer)):
        byte = buffer[index]
        if in_string:
            if escaped:
                escaped = False
            elif byte == _BACKSLASH:
                escaped = True
            elif byte == _QUOTE:
                in_string = False
        elif byte == _QUOTE:
            in_string = True
        elif byte in _OPENERS:
            depth += 1
        elif byte in _CLOSERS:
            depth -= 1
            if depth == 0:
                return index + 1
    return None


class FrameDecoder:
    """Incremental decoder for Content-Length framed JSON messages.

    Bytes are appended with feed(); every complete frame is sliced off the
    front of the buffer and returned in arrival order. The result does not
    depend on how the stream was split into chunks.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet decoded."""
        return bytes(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Append a chunk and decode every complete message now available.

        Raises:
            FramingError: A complete body is not a JSON object.
        """
        if chunk:
            self._buffer.extend(chunk)

        messages: list[dict[str, Any]] = []
        while True:
            message = self._decode_one()
            if message is None:
                return messages
            messages.append(message)

    def _decode_one(self) -> dict[str, Any] | None:
        buffer = self._buffer

        while True:
            start = buffer.find(CONTENT_LENGTH)
            if start == -1:
                # Keep a tail that may be the start of a split header name
                keep = len(CONTENT_LENGTH) - 1
                if len(buffer) > keep:
                    del buffer[: len(buffer) - keep]
                return None
            if start > 0:
                del buffer[:start]

            separator = _find_separator(buffer, 0)
            if separator is None:
                return None
            sep_index, sep_width = separator

            length = parse_header(bytes(buffer[:sep_index]))
            if length is None:
                _log.warning("Skipping malformed frame header: %r", bytes(buffer[:sep_index]))
                del buffer[: sep_index + sep_width]
                continue
            break

        body_start = sep_index + sep_width
        if len(buffer) < body_start + length:
            return None

        while body_start < len(buffer) and buffer[body_start] in _WHITESPACE:
            body_start += 1
        if body_start == len(buffer):
            return None
        if buffer[body_start] not in _OPENERS:
            preview = bytes(buffer[body_start : body_start + 16])
            raise FramingError(f"Message body does not start with a JSON object: {preview!r}")

        body_end = _scan_json_end(buffer, body_start)
        if body_end is None:
            # Declared length was short of the real body
            return None

        body = bytes(buffer[body_start:body_end])
        consumed = body_end
        while consumed < len(buffer) and buffer[consumed] in _WHITESPACE:
            consumed += 1
        del buffer[:consumed]

        try:
            message = json.loads(body.decode(CONTENT_ENCODING))
        except UnicodeDecodeError as e:
            raise FramingError(f"Invalid UTF-8 in message body: {e}") from e
        except json.JSONDecodeError as e:
            raise FramingError(f"Invalid JSON in message body: {e}") from e

        if not isinstance(message, dict):
            raise FramingError(f"Message must be a JSON object, got {type(message).__name__}")

        return message


def encode_frame(message: dict[str, Any]) -> bytes:
    """Frame a message the way the server frames its output.

    The client never sends this; it exists for servers written in Python
    and for tests.
    """
    body = (json.dumps(message, separators=(",", ":")) + "\n").encode(CONTENT_ENCODING)
    return f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING) + body


def encode_request(message: dict[str, Any]) -> bytes:
    """Serialize an outbound request as one newline-terminated JSON line.

    Raises:
        FramingError: The message is not JSON-serializable.
    """
    try:
        line = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise FramingError(f"Message cannot be serialized to JSON: {e}") from e
    return (line + "\n").encode(CONTENT_ENCODING)
