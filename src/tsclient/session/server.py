"""Server process handling: locating, spawning, reading and stopping tsserver.

A ServerSession owns one server process for one project root. Its reader
task feeds stdout chunks through a FrameDecoder and hands every batch of
decoded messages to the manager; when stdout reaches EOF (the process exited
for any reason) or a frame cannot be decoded, the session reports its exit
exactly once.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tsclient.errors import FramingError, ServerNotRunningError, ServerStartError
from tsclient.logging import TRACE, get_logger
from tsclient.protocol.framing import FrameDecoder

if TYPE_CHECKING:
    from tsclient.config.schema import ServerConfig

_log = get_logger("session.server")
_wire_log = get_logger("wire")

READ_CHUNK_SIZE = 64 * 1024

TSSERVER_RELATIVE_PATH = Path("node_modules") / "typescript" / "lib" / "tsserver.js"

ProcessSpawner = Callable[[list[str], str, dict[str, str]], Awaitable[Any]]
MessagesHandler = Callable[[list[dict[str, Any]]], None]
ExitHandler = Callable[["ServerSession", str], None]


class SessionState(Enum):
    """Lifecycle of a server session. Absent sessions are not in the registry."""

    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


def _expand_env_vars(env: dict[str, str]) -> dict[str, str]:
    """Expand ${VAR} references in env values."""
    result = {}
    for key, value in env.items():
        if value.startswith("${") and value.endswith("}"):
            result[key] = os.environ.get(value[2:-1], "")
        else:
            result[key] = value
    return result


def locate_tsserver(project_root: str, config: ServerConfig) -> list[str]:
    """Build the command line that starts the server for a project.

    Resolution order: the configured executable, the nearest
    node_modules/typescript/lib/tsserver.js walking up from the project
    root, then ``tsserver`` on PATH. JavaScript entry points are run with
    the configured node interpreter.

    Raises:
        ServerStartError: No server could be found.
    """
    executable: str | None = None
    if config.executable:
        candidate = Path(config.executable).expanduser()
        if not candidate.is_absolute():
            candidate = Path(project_root) / candidate
        if not candidate.exists():
            raise ServerStartError(f"Configured tsserver not found: {candidate}")
        executable = str(candidate)
    else:
        for directory in (Path(project_root), *Path(project_root).parents):
            candidate = directory / TSSERVER_RELATIVE_PATH
            if candidate.is_file():
                executable = str(candidate)
                break
        else:
            executable = shutil.which("tsserver")

    if executable is None:
        raise ServerStartError(
            f"Could not find tsserver for {project_root}; "
            "install typescript or set server.executable"
        )

    if executable.endswith(".js"):
        return [config.node, executable, *config.args]
    return [executable, *config.args]


def build_environment(config: ServerConfig) -> dict[str, str]:
    """Environment for the server process, with TSS_LOG when verbose logging is on."""
    env = dict(os.environ)
    env.update(_expand_env_vars(config.env))
    if config.log_level:
        log_file = config.log_file or os.path.join(tempfile.gettempdir(), "tsserver.log")
        env["TSS_LOG"] = f"-level {config.log_level} -file {log_file}"
    return env


async def spawn_process(command: list[str], cwd: str, env: dict[str, str]) -> asyncio.subprocess.Process:
    """Start the server with piped stdio in the project root."""
    try:
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        raise ServerStartError(f"Could not start {command[0]}: {e}") from e


@dataclass
class ServerSession:
    """Live connection to one project's server process."""

    project: str
    command: list[str]
    process: Any = None
    state: SessionState = SessionState.STARTING
    decoder: FrameDecoder = field(default_factory=FrameDecoder)
    exit_reason: str | None = None
    _reader_task: asyncio.Task[None] | None = None
    _stderr_task: asyncio.Task[None] | None = None
    _exit_reported: bool = False

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING

    async def spawn(self, env: dict[str, str], spawner: ProcessSpawner = spawn_process) -> None:
        """Start the process; the session stays STARTING until attach()."""
        self.process = await spawner(self.command, self.project, env)
        _log.info("Started server for %s (pid %s)", self.project, self.pid)

    def attach(self, on_messages: MessagesHandler, on_exit: ExitHandler) -> None:
        """Attach output handlers and mark the session RUNNING."""
        if self.process is None:
            raise ServerNotRunningError(self.project)
        self.state = SessionState.RUNNING
        self._reader_task = asyncio.create_task(
            self._read_loop(on_messages, on_exit), name=f"tsclient-reader:{self.project}"
        )
        if getattr(self.process, "stderr", None) is not None:
            self._stderr_task = asyncio.create_task(
                self._stderr_loop(), name=f"tsclient-stderr:{self.project}"
            )

    async def write(self, data: bytes) -> None:
        """Write an encoded request to the server's stdin.

        Raises:
            ServerNotRunningError: The session is not running or the pipe
                is closed.
        """
        if not self.is_running or self.process is None or self.process.stdin is None:
            raise ServerNotRunningError(self.project)
        _wire_log.log(TRACE, "--> %s", data.decode("utf-8", errors="replace").rstrip("\n"))
        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            _log.warning("Write to server for %s failed: %s", self.project, e)
            raise ServerNotRunningError(self.project) from e

    async def _read_loop(self, on_messages: MessagesHandler, on_exit: ExitHandler) -> None:
        reason = "server exited"
        try:
            stdout = self.process.stdout
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                _wire_log.log(TRACE, "<-- %r", chunk)
                on_messages(self.decoder.feed(chunk))
        except FramingError as e:
            _log.error("Protocol error from server for %s: %s", self.project, e)
            reason = f"protocol error: {e}"
            self._kill()
        except (ConnectionResetError, BrokenPipeError) as e:
            reason = f"connection lost: {e}"
        except asyncio.CancelledError:
            reason = "reader cancelled"
            self._kill()
            raise
        except Exception as e:
            _log.exception("Reader for %s failed", self.project)
            reason = f"reader failed: {e}"
            self._kill()
        finally:
            if reason == "server exited":
                returncode = await self._wait_exit()
                if returncode is not None:
                    reason = f"server exited with code {returncode}"
            self._report_exit(on_exit, reason)

    async def _wait_exit(self) -> int | None:
        try:
            return await asyncio.wait_for(self.process.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            return None

    async def _stderr_loop(self) -> None:
        stderr = self.process.stderr
        while True:
            line = await stderr.readline()
            if not line:
                return
            _log.debug("[%s stderr] %s", self.project, line.decode("utf-8", errors="replace").rstrip())

    def _report_exit(self, on_exit: ExitHandler, reason: str) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        self.state = SessionState.TERMINATED
        self.exit_reason = reason
        self.decoder.clear()
        on_exit(self, reason)

    def _kill(self) -> None:
        if self.process is None or self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    async def stop(self, timeout: float = 3.0) -> None:
        """Stop the process: close stdin, terminate, then kill after timeout.

        Returns once the reader task has reported the exit.
        """
        process = self.process
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                try:
                    process.stdin.close()
                except (BrokenPipeError, ConnectionResetError):
                    pass
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                _log.warning("Server for %s did not terminate; killing", self.project)
                self._kill()
                await process.wait()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for the reader and stderr tasks to finish."""
        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
