"""Session registry and request dispatch.

SessionManager owns all shared client state: the project -> session
registry, the request correlator, the per-context event queues and the open
buffer table. Everything runs on one asyncio event loop; the tables are only
mutated between awaits, so no locking is needed.

Usage:
    manager = SessionManager(config)
    await manager.start("/path/to/project")
    await manager.open_buffer("/path/to/project/src/app.ts", "/path/to/project")
    info = await manager.send_sync(
        "quickinfo",
        {"file": "/path/to/project/src/app.ts", "line": 3, "offset": 7},
        context="/path/to/project/src/app.ts",
    )
    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
import platform
from typing import Any

from tsclient.config.schema import Config
from tsclient.errors import (
    RequestTimeoutError,
    ServerNotRunningError,
    SessionAlreadyRunningError,
)
from tsclient.logging import VERBOSE, get_logger
from tsclient.protocol.framing import encode_request
from tsclient.protocol.messages import Event, Request, Response
from tsclient.protocol.router import MessageRouter
from tsclient.session.buffers import BufferState, BufferTable
from tsclient.session.callbacks import EventCallback, ResponseCallback
from tsclient.session.correlator import PendingRequest, RequestCorrelator
from tsclient.session.events import EventQueues, EventSpec
from tsclient.session.server import (
    ProcessSpawner,
    ServerSession,
    SessionState,
    build_environment,
    locate_tsserver,
    spawn_process,
)

_log = get_logger("session.manager")

HOST_INFO = f"tsclient (Python {platform.python_version()})"


class SessionManager:
    """Owns one server session per project and routes traffic for all of them."""

    def __init__(
        self,
        config: Config | None = None,
        spawner: ProcessSpawner = spawn_process,
    ) -> None:
        self.config = config or Config()
        self._spawner = spawner
        self._sessions: dict[str, ServerSession] = {}
        self.correlator = RequestCorrelator()
        self.events = EventQueues()
        self.buffers = BufferTable()
        self.router = MessageRouter(self.correlator, self.events)

    # ------------------------------------------------------------------
    # Registry and lifecycle
    # ------------------------------------------------------------------

    def current_session(self, project: str) -> ServerSession | None:
        """Return the registered session for a project, if any."""
        return self._sessions.get(project)

    def list_projects(self) -> list[str]:
        return list(self._sessions)

    def command_for(self, project: str) -> list[str]:
        """Command line used to start the server for a project."""
        return locate_tsserver(project, self.config.server)

    async def start(self, project: str) -> ServerSession:
        """Start the server for a project.

        Raises:
            SessionAlreadyRunningError: A session is already registered.
            ServerStartError: The server could not be found or spawned.
        """
        if project in self._sessions:
            raise SessionAlreadyRunningError(project)

        session = ServerSession(project=project, command=self.command_for(project))
        # Registered while STARTING so a concurrent start() fails fast
        self._sessions[project] = session
        try:
            await session.spawn(build_environment(self.config.server), self._spawner)
        except BaseException:
            if self._sessions.get(project) is session:
                del self._sessions[project]
            raise

        session.attach(self.router.route_all, self._on_session_exit)
        return session

    async def stop(self, project: str) -> None:
        """Stop a project's server and wait until its teardown has run."""
        session = self._sessions.get(project)
        if session is None:
            return
        await session.stop(timeout=self.config.server.shutdown_timeout)

    async def restart(self, project: str) -> ServerSession:
        """Replace a project's server and rebuild server-side buffer state."""
        await self.stop(project)
        session = await self.start(project)
        for buffer in self.buffers.for_project(project):
            await self._handshake(buffer)
        _log.info("Restarted server for %s", project)
        return session

    async def shutdown(self) -> None:
        """Stop every session."""
        for project in list(self._sessions):
            await self.stop(project)

    def _on_session_exit(self, session: ServerSession, reason: str) -> None:
        """Tear down a dead session and fail everything waiting on it."""
        project = session.project
        if self._sessions.get(project) is session:
            del self._sessions[project]
        if session.state != SessionState.TERMINATED:
            session.state = SessionState.TERMINATED

        _log.warning("Server for %s terminated: %s", project, reason)

        buffers = self.buffers.for_project(project)
        for buffer in buffers:
            buffer.opened = False

        message = f"Server for {project} terminated: {reason}"
        drained = self.events.drain_project(project, message, [b.file for b in buffers])
        failed = self.correlator.fail_project(project, message)
        if drained or failed:
            _log.info(
                "Failed %d pending request(s) and %d queued event consumer(s) for %s",
                failed,
                drained,
                project,
            )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _resolve_project(self, context: str | None, project: str | None) -> str | None:
        if project is not None:
            return project
        if context is not None:
            owner = self.buffers.project_of(context)
            if owner is not None:
                return owner
        if len(self._sessions) == 1:
            return next(iter(self._sessions))
        return None

    def _running_session(self, project: str | None) -> ServerSession:
        session = self._sessions.get(project) if project is not None else None
        if session is None or not session.is_running:
            raise ServerNotRunningError(project)
        return session

    async def send(
        self,
        command: str,
        arguments: dict[str, Any] | None = None,
        callback: ResponseCallback | None = None,
        *,
        context: str | None = None,
        project: str | None = None,
    ) -> str:
        """Send a request; the callback receives the response or a failure.

        Args:
            command: Server command name.
            arguments: Command arguments.
            callback: Invoked exactly once with the Response, or with a
                synthesized failure if the session dies first.
            context: File the request concerns; unsynced edits to it are
                flushed with ``reload`` before the request goes out.
            project: Project root; defaults to the context's project.

        Returns:
            The request seq.

        Raises:
            ServerNotRunningError: No running session for the project.
        """
        project = self._resolve_project(context, project)
        session = self._running_session(project)

        if context is not None:
            buffer = self.buffers.get(context)
            if buffer is not None and buffer.dirty:
                await self._flush(session, buffer)

        seq = self.correlator.next_seq()
        request = Request(command=command, seq=seq, arguments=arguments or {})
        data = encode_request(request.to_wire())
        _log.log(VERBOSE, "Sending %s (seq %s) to %s", command, seq, session.project)

        if callback is not None:
            # Registered before the write so an immediate reply finds it
            self.correlator.register(
                PendingRequest(seq, command, session.project, context, callback)
            )
        try:
            await session.write(data)
        except ServerNotRunningError:
            # The exit handler may already have failed the entry
            if self.correlator.discard(seq) is None and callback is not None:
                return seq
            raise

        if callback is not None:
            await asyncio.sleep(0)
        return seq

    async def send_sync(
        self,
        command: str,
        arguments: dict[str, Any] | None = None,
        *,
        context: str | None = None,
        project: str | None = None,
        timeout: float | None = None,
    ) -> Response:
        """Send a request and wait for its response.

        Returns:
            The response for this request. A synthesized failure response
            is returned if the session dies while waiting.

        Raises:
            ServerNotRunningError: No running session for the project.
            RequestTimeoutError: No response within the timeout.
        """
        if timeout is None:
            timeout = self.config.requests.sync_timeout

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Response] = loop.create_future()

        def _complete(response: Response) -> None:
            if not future.done():
                future.set_result(response)

        seq = await self.send(command, arguments, _complete, context=context, project=project)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self.correlator.discard(seq)
            raise RequestTimeoutError(command, timeout) from None

    def enqueue_event(
        self,
        context: str,
        callback: EventCallback,
        project: str | None = None,
        accepts: frozenset[str] | None = None,
    ) -> None:
        """Queue a consumer for the next event reported for a context.

        The consumer belongs to the context's project (resolved like
        ``send``) and is failed when that project's session dies.

        Raises:
            ServerNotRunningError: The context's project cannot be resolved.
        """
        owner = self._resolve_project(context, project)
        if owner is None:
            raise ServerNotRunningError(None)
        self.events.enqueue(context, callback, owner, accepts)

    async def collect_events(
        self,
        spec: EventSpec,
        arguments: dict[str, Any],
        *,
        context: str,
        project: str | None = None,
        timeout: float | None = None,
    ) -> list[Event]:
        """Send a request answered by events and gather them in order.

        Exactly ``spec.arity`` consumers are queued for the context before
        the request is sent. Each consumer accepts only the event names the
        spec declares, so unrelated events for the file do not consume them.

        Raises:
            ServerNotRunningError: No running session for the project.
            RequestTimeoutError: Not all events arrived within the timeout.
        """
        project = self._resolve_project(context, project)
        self._running_session(project)

        loop = asyncio.get_running_loop()
        futures: list[asyncio.Future[Event]] = [loop.create_future() for _ in spec.events]
        accepts = frozenset(spec.events)

        consumers = [_completer(future) for future in futures]
        for consumer in consumers:
            self.events.enqueue(context, consumer, project, accepts)

        if timeout is None:
            timeout = self.config.requests.sync_timeout
        try:
            await self.send(spec.command, arguments, context=context, project=project)
            return list(await asyncio.wait_for(asyncio.gather(*futures), timeout=timeout))
        except asyncio.TimeoutError:
            raise RequestTimeoutError(spec.command, timeout) from None
        finally:
            # Consumers left behind would swallow events meant for later callers
            self.events.discard(context, consumers)

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    async def open_buffer(self, file: str, project: str, text: str | None = None) -> BufferState:
        """Register a file and run the configure + open handshake."""
        buffer = self.buffers.add(file, project, text)
        await self._handshake(buffer)
        return buffer

    def update_buffer(self, file: str, text: str) -> None:
        """Record unsaved content; it reaches the server before the next request."""
        buffer = self.buffers.get(file)
        if buffer is None:
            raise KeyError(f"Buffer not open: {file}")
        buffer.mark_dirty(text)

    async def close_buffer(self, file: str) -> None:
        """Tell the server the file is closed and forget its state."""
        buffer = self.buffers.get(file)
        if buffer is None:
            return
        self.events.drain(file, f"{file} was closed")
        session = self._sessions.get(buffer.project)
        if session is not None and session.is_running and buffer.opened:
            await self.send("close", {"file": file}, project=buffer.project)
        self.buffers.remove(file)

    async def _handshake(self, buffer: BufferState) -> None:
        arguments: dict[str, Any] = {
            "hostInfo": HOST_INFO,
            "file": buffer.file,
            "formatOptions": dict(self.config.format),
        }
        await self.send("configure", arguments, project=buffer.project)

        open_args: dict[str, Any] = {"file": buffer.file, "projectRootPath": buffer.project}
        if buffer.text is not None:
            open_args["fileContent"] = buffer.text
        await self.send("open", open_args, project=buffer.project)
        buffer.dirty = False
        buffer.opened = True

    async def _flush(self, session: ServerSession, buffer: BufferState) -> None:
        tmpfile = buffer.write_tmpfile()
        seq = self.correlator.next_seq()
        request = Request(command="reload", seq=seq, arguments={"file": buffer.file, "tmpfile": tmpfile})
        await session.write(encode_request(request.to_wire()))
        buffer.dirty = False


def _completer(future: asyncio.Future[Event]) -> EventCallback:
    def _complete(event: Event) -> None:
        if not future.done():
            future.set_result(event)

    return _complete
