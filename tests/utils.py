"""Shared test doubles for tsclient tests.

FakeProcess stands in for an asyncio subprocess running tsserver: writes to
its stdin are parsed as requests and passed to a responder, whose messages
are framed and fed to stdout.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from typing import Any

from tsclient.protocol.framing import encode_frame

Responder = Callable[[dict[str, Any]], Iterable[dict[str, Any]] | None]

SILENT_COMMANDS = {"slow"}


def make_response(
    request: dict[str, Any],
    body: Any = None,
    success: bool = True,
    message: str | None = None,
) -> dict[str, Any]:
    """Build a tsserver-style response to a request."""
    response: dict[str, Any] = {
        "seq": 0,
        "type": "response",
        "command": request["command"],
        "request_seq": request["seq"],
        "success": success,
    }
    if body is not None:
        response["body"] = body
    if message is not None:
        response["message"] = message
    return response


def make_event(event: str, file: str, **body: Any) -> dict[str, Any]:
    """Build a tsserver-style event scoped to a file."""
    return {"seq": 0, "type": "event", "event": event, "body": {"file": file, **body}}


def tsserver_responder(request: dict[str, Any]) -> list[dict[str, Any]]:
    """Answer like a minimal tsserver.

    geterr produces syntaxDiag and semanticDiag events for each file, reload
    and open are acknowledged, "slow" never answers, everything else echoes
    its arguments as the body.
    """
    command = request["command"]
    arguments = request.get("arguments", {})
    if command in SILENT_COMMANDS:
        return []
    if command == "geterr":
        messages = []
        for file in arguments.get("files", []):
            messages.append(make_event("syntaxDiag", file, diagnostics=[]))
            messages.append(
                make_event(
                    "semanticDiag",
                    file,
                    diagnostics=[
                        {
                            "start": {"line": 1, "offset": 7},
                            "end": {"line": 1, "offset": 8},
                            "text": "Type 'string' is not assignable to type 'number'.",
                            "code": 2322,
                            "category": "error",
                        }
                    ],
                )
            )
        return messages
    return [make_response(request, body=arguments)]


class FakeStdin:
    """Collects writes and forwards complete request lines to the process."""

    def __init__(self, process: FakeProcess) -> None:
        self.process = process
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed or self.process.returncode is not None:
            raise BrokenPipeError("stdin closed")
        self.writes.append(data)
        for line in data.splitlines():
            if line.strip():
                self.process.on_request(json.loads(line))

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    @property
    def requests(self) -> list[dict[str, Any]]:
        return [json.loads(line) for data in self.writes for line in data.splitlines() if line.strip()]

    @property
    def commands(self) -> list[str]:
        return [r["command"] for r in self.requests]


class FakeProcess:
    """In-memory replacement for asyncio.subprocess.Process."""

    pid = 4242

    def __init__(self, responder: Responder | None = tsserver_responder) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = FakeStdin(self)
        self.responder = responder
        self.returncode: int | None = None
        self.ignore_terminate = False
        self._exited = asyncio.Event()

    def on_request(self, request: dict[str, Any]) -> None:
        if self.responder is None:
            return
        for message in self.responder(request) or []:
            self.emit(message)

    def emit(self, message: dict[str, Any]) -> None:
        self.stdout.feed_data(encode_frame(message))

    def feed(self, raw: bytes) -> None:
        self.stdout.feed_data(raw)

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


class FakeSpawner:
    """ProcessSpawner that hands out FakeProcess instances."""

    def __init__(self, responder: Responder | None = tsserver_responder) -> None:
        self.responder = responder
        self.processes: list[FakeProcess] = []
        self.calls: list[tuple[list[str], str, dict[str, str]]] = []

    async def __call__(self, command: list[str], cwd: str, env: dict[str, str]) -> FakeProcess:
        process = FakeProcess(self.responder)
        self.processes.append(process)
        self.calls.append((command, cwd, env))
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


async def settle(rounds: int = 10) -> None:
    """Let pending reader tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
