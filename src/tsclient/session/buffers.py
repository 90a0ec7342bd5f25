"""Per-context buffer state.

The editor layer identifies a buffer by its file path; everything the client
needs to keep the server in sync with it lives in a BufferState record here.
Unsaved text is handed to the server through a temp file and a ``reload``
request before the next request that concerns the buffer.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from tsclient.logging import get_logger

_log = get_logger("session.buffers")


@dataclass
class BufferState:
    """Sync state of one open file."""

    file: str
    project: str
    text: str | None = None  # Latest unsynced content
    dirty: bool = False
    tmpfile: str | None = None
    opened: bool = False  # configure + open handshake done on the current session

    def mark_dirty(self, text: str) -> None:
        self.text = text
        self.dirty = True

    def write_tmpfile(self) -> str:
        """Write the pending text to this buffer's temp file.

        The buffer stays dirty until the caller has handed the file to the
        server.

        Returns:
            Path of the temp file holding the content.
        """
        if self.tmpfile is None:
            fd, path = tempfile.mkstemp(prefix="tsclient-", suffix=Path(self.file).suffix)
            os.close(fd)
            self.tmpfile = path
        with open(self.tmpfile, "w", encoding="utf-8", newline="") as f:
            f.write(self.text or "")
        return self.tmpfile

    def remove_tmpfile(self) -> None:
        if self.tmpfile is None:
            return
        try:
            os.unlink(self.tmpfile)
        except FileNotFoundError:
            pass
        except OSError as e:
            _log.warning("Could not remove temp file %s: %s", self.tmpfile, e)
        self.tmpfile = None


class BufferTable:
    """Open buffers keyed by file path."""

    def __init__(self) -> None:
        self._buffers: dict[str, BufferState] = {}

    def __contains__(self, file: object) -> bool:
        return file in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def get(self, file: str) -> BufferState | None:
        return self._buffers.get(file)

    def add(self, file: str, project: str, text: str | None = None) -> BufferState:
        """Register a buffer, replacing any previous record for the file."""
        previous = self._buffers.get(file)
        if previous is not None:
            previous.remove_tmpfile()
        state = BufferState(file=file, project=project, text=text)
        self._buffers[file] = state
        return state

    def remove(self, file: str) -> BufferState | None:
        state = self._buffers.pop(file, None)
        if state is not None:
            state.remove_tmpfile()
        return state

    def for_project(self, project: str) -> list[BufferState]:
        return [b for b in self._buffers.values() if b.project == project]

    def project_of(self, file: str) -> str | None:
        state = self._buffers.get(file)
        return state.project if state else None
