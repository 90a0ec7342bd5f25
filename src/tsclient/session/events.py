"""Per-context event queues.

Some requests are answered by later unsolicited events instead of a
response (``geterr`` reports diagnostics as ``syntaxDiag`` followed by
``semanticDiag``). Consumers enqueue one callback per expected event before
the request is sent; each event for the context pops the front callback.

Queues are strict FIFO: push at the back, pop at the front.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from tsclient.logging import get_logger
from tsclient.protocol.messages import Event
from tsclient.session.callbacks import EventCallback, invoke

_log = get_logger("session.events")


@dataclass(frozen=True)
class EventSpec:
    """The follow-up events a request kind produces, in emission order."""

    command: str
    events: tuple[str, ...]

    @property
    def arity(self) -> int:
        return len(self.events)


DIAGNOSTICS = EventSpec("geterr", ("syntaxDiag", "semanticDiag"))


@dataclass(frozen=True)
class QueuedCallback:
    """A queue entry; accepts limits which event names may pop it."""

    callback: EventCallback
    accepts: frozenset[str] | None = None

    def matches(self, event: Event) -> bool:
        return self.accepts is None or event.event in self.accepts


class EventQueues:
    """FIFO callback queues keyed by context (file path)."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[QueuedCallback]] = {}
        self._owners: dict[str, str | None] = {}

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def pending(self, context: str) -> int:
        queue = self._queues.get(context)
        return len(queue) if queue else 0

    def contexts(self, project: str | None = None) -> list[str]:
        """Contexts with queued callbacks, optionally limited to a project."""
        return [
            context
            for context, queue in self._queues.items()
            if queue and (project is None or self._owners.get(context) == project)
        ]

    def enqueue(
        self,
        context: str,
        callback: EventCallback,
        project: str | None = None,
        accepts: frozenset[str] | None = None,
    ) -> None:
        """Append a callback to the back of the context's queue."""
        self._queues.setdefault(context, deque()).append(QueuedCallback(callback, accepts))
        if project is not None or context not in self._owners:
            self._owners[context] = project

    def dispatch(self, event: Event) -> bool:
        """Pop the front callback for the event's context and invoke it.

        Returns:
            True if a callback consumed the event; False if it was dropped.
        """
        context = event.file
        if context is None:
            _log.debug("Dropping %s event without a file", event.event or "unnamed")
            return False

        queue = self._queues.get(context)
        if not queue:
            _log.debug("No consumer queued for %s event on %s", event.event, context)
            return False

        if not queue[0].matches(event):
            _log.debug("Front consumer on %s does not take %s events", context, event.event)
            return False

        entry = queue.popleft()
        if not queue:
            self._forget(context)
        invoke(entry.callback, event, f"{event.event} on {context}")
        return True

    def discard(self, context: str, callbacks: list[EventCallback]) -> int:
        """Remove specific callbacks from a context's queue without invoking them.

        Returns:
            Number of entries removed.
        """
        queue = self._queues.get(context)
        if not queue:
            return 0
        targets = {id(cb) for cb in callbacks}
        kept = deque(entry for entry in queue if id(entry.callback) not in targets)
        removed = len(queue) - len(kept)
        if kept:
            self._queues[context] = kept
        else:
            self._forget(context)
        return removed

    def drain(self, context: str, message: str) -> int:
        """Invoke every queued callback of a context with a failure event.

        Returns:
            Number of callbacks failed.
        """
        queue = self._queues.get(context)
        if not queue:
            self._forget(context)
            return 0
        entries = list(queue)
        self._forget(context)
        for entry in entries:
            invoke(entry.callback, Event.failure(context, message), f"drain of {context}")
        return len(entries)

    def drain_project(self, project: str, message: str, contexts: list[str] | None = None) -> int:
        """Drain the queues of every context owned by the project.

        Args:
            project: Project whose queues are drained.
            message: Failure message delivered to each callback.
            contexts: Additional contexts known to belong to the project
                (e.g. its open buffers).
        """
        targets = set(self.contexts(project))
        if contexts:
            targets.update(contexts)
        return sum(self.drain(context, message) for context in sorted(targets))

    def _forget(self, context: str) -> None:
        self._queues.pop(context, None)
        self._owners.pop(context, None)
