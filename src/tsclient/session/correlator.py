"""Request/response correlation.

Every request that expects a reply gets a PendingRequest keyed by its seq.
An entry leaves the table exactly once: when its response is resolved, when
the session dies (synthesized failure), or when a synchronous caller gives up
and discards it.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass

from tsclient.logging import get_logger
from tsclient.protocol.messages import Response
from tsclient.session.callbacks import ResponseCallback, invoke

_log = get_logger("session.correlator")


@dataclass(frozen=True)
class PendingRequest:
    """A request waiting for its response."""

    seq: str
    command: str
    project: str
    context: str | None
    callback: ResponseCallback


class RequestCorrelator:
    """Assigns request seqs and tracks callbacks until responses arrive."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, seq: object) -> bool:
        return seq in self._pending

    def next_seq(self) -> str:
        """Return the next seq; values are never reused."""
        return str(next(self._counter))

    def get(self, seq: str) -> PendingRequest | None:
        return self._pending.get(seq)

    def pending_for(self, project: str) -> list[PendingRequest]:
        return [p for p in self._pending.values() if p.project == project]

    def register(self, entry: PendingRequest) -> None:
        """Record a pending request.

        Raises:
            ValueError: The seq already has a pending entry.
        """
        if entry.seq in self._pending:
            raise ValueError(f"Request seq {entry.seq} is already pending")
        self._pending[entry.seq] = entry

    def discard(self, seq: str) -> PendingRequest | None:
        """Forget a pending request without invoking its callback."""
        return self._pending.pop(seq, None)

    def resolve(self, response: Response) -> bool:
        """Deliver a response to the callback registered for its seq.

        Returns:
            True if a pending entry consumed the response, False if the seq
            was unknown and the response was discarded.
        """
        entry = self._pending.pop(response.request_seq, None)
        if entry is None:
            _log.debug(
                "Discarding response for unknown seq %s (%s)",
                response.request_seq,
                response.command,
            )
            return False
        invoke(entry.callback, response, f"{entry.command}#{entry.seq}")
        return True

    def fail_project(self, project: str, message: str) -> int:
        """Fail every pending request of a project with a synthesized response.

        Entries are removed before any callback runs, so a callback that
        issues new requests never sees a half-cleared table.

        Returns:
            Number of requests failed.
        """
        failed = [p for p in self._pending.values() if p.project == project]
        for entry in failed:
            del self._pending[entry.seq]
        for entry in failed:
            invoke(
                entry.callback,
                Response.failure(entry.seq, entry.command, message),
                f"{entry.command}#{entry.seq}",
            )
        return len(failed)
