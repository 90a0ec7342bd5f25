"""Tests for SessionManager: registry, correlation, sync bridge and teardown."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from tsclient.errors import (
    RequestTimeoutError,
    ServerNotRunningError,
    ServerStartError,
    SessionAlreadyRunningError,
)
from tsclient.protocol.messages import Event, Response
from tsclient.session.events import DIAGNOSTICS
from tsclient.session.manager import SessionManager
from tsclient.session.server import SessionState
from tests.utils import FakeSpawner, make_response, settle


def raw_frame(body: bytes, separator: bytes = b"\n\n") -> bytes:
    """Frame a body with a trailing boundary byte outside the declared length."""
    return b"Content-Length: " + str(len(body)).encode() + separator + body + b"\n"


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for start, stop and the registry."""

    @pytest.mark.asyncio
    async def test_start_registers_running_session(self, manager, spawner, project) -> None:
        session = await manager.start(project)

        assert manager.current_session(project) is session
        assert session.state == SessionState.RUNNING
        assert manager.list_projects() == [project]

        command, cwd, _ = spawner.calls[0]
        assert command[0] == "node"
        assert command[1].endswith("tsserver.js")
        assert cwd == project

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, manager, project) -> None:
        await manager.start(project)

        with pytest.raises(SessionAlreadyRunningError):
            await manager.start(project)

    @pytest.mark.asyncio
    async def test_spawn_failure_leaves_registry_empty(self, config, project) -> None:
        async def failing_spawner(command, cwd, env):
            raise ServerStartError("no node")

        manager = SessionManager(config, spawner=failing_spawner)

        with pytest.raises(ServerStartError):
            await manager.start(project)
        assert manager.current_session(project) is None

    @pytest.mark.asyncio
    async def test_verbose_logging_environment(self, config, spawner, project, tmp_path) -> None:
        config.server.log_level = "verbose"
        config.server.log_file = str(tmp_path / "ts.log")
        manager = SessionManager(config, spawner=spawner)
        try:
            await manager.start(project)
        finally:
            await manager.shutdown()

        env = spawner.calls[0][2]
        assert env["TSS_LOG"] == f"-level verbose -file {tmp_path / 'ts.log'}"

    @pytest.mark.asyncio
    async def test_stop_removes_session(self, manager, spawner, project) -> None:
        await manager.start(project)

        await manager.stop(project)

        assert manager.current_session(project) is None
        assert spawner.last.returncode == -15
        assert spawner.last.stdin.closed

    @pytest.mark.asyncio
    async def test_stop_kills_unresponsive_server(self, manager, spawner, project) -> None:
        await manager.start(project)
        spawner.last.ignore_terminate = True

        await manager.stop(project)

        assert spawner.last.returncode == -9
        assert manager.current_session(project) is None

    @pytest.mark.asyncio
    async def test_stop_unknown_project_is_noop(self, manager) -> None:
        await manager.stop("/nowhere")

    @pytest.mark.asyncio
    async def test_sessions_per_project(self, manager, spawner, tmp_path) -> None:
        roots = []
        for name in ("one", "two"):
            root = tmp_path / name
            server = root / "node_modules" / "typescript" / "lib" / "tsserver.js"
            server.parent.mkdir(parents=True)
            server.write_text("")
            roots.append(str(root))
            await manager.start(str(root))

        assert sorted(manager.list_projects()) == sorted(roots)
        assert len(spawner.processes) == 2


# =============================================================================
# Requests
# =============================================================================


class TestSend:
    """Tests for asynchronous send and response correlation."""

    @pytest.mark.asyncio
    async def test_send_without_session_fails_fast(self, manager, project) -> None:
        with pytest.raises(ServerNotRunningError):
            await manager.send("open", {"file": "a.ts"}, project=project)

    @pytest.mark.asyncio
    async def test_open_response_scenario(self, config, project) -> None:
        """The response for seq 1 fires its callback once and leaves the table."""
        spawner = FakeSpawner(responder=None)
        manager = SessionManager(config, spawner=spawner)
        try:
            await manager.start(project)
            received: list[Response] = []

            seq = await manager.send("open", {"file": "a.ts"}, received.append, project=project)
            assert seq == "1"
            assert "1" in manager.correlator

            spawner.last.feed(
                raw_frame(b'{"type":"response","request_seq":"1","success":true,"body":{}}')
            )
            await settle()

            assert len(received) == 1
            assert received[0].success is True
            assert received[0].body == {}
            assert "1" not in manager.correlator
            assert spawner.last.stdin.requests == [
                {"command": "open", "seq": "1", "arguments": {"file": "a.ts"}}
            ]
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_immediate_response_processed_before_send_returns(self, manager, project) -> None:
        await manager.start(project)
        received: list[Response] = []

        await manager.send("echo", {"x": 1}, received.append, project=project)

        assert [r.body for r in received] == [{"x": 1}]

    @pytest.mark.asyncio
    async def test_seqs_are_unique_across_projects(self, manager, spawner, project, tmp_path) -> None:
        other = tmp_path / "other"
        server = other / "node_modules" / "typescript" / "lib" / "tsserver.js"
        server.parent.mkdir(parents=True)
        server.write_text("")
        await manager.start(project)
        await manager.start(str(other))

        seqs = [
            await manager.send("echo", project=project),
            await manager.send("echo", project=str(other)),
            await manager.send("echo", project=project),
        ]

        assert seqs == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_send_without_callback_registers_nothing(self, manager, project) -> None:
        await manager.start(project)

        await manager.send("slow", project=project)

        assert len(manager.correlator) == 0

    @pytest.mark.asyncio
    async def test_project_resolved_from_context(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        received: list[Response] = []

        await manager.send("echo", {"file": source_file}, received.append, context=source_file)
        await settle()

        assert received[0].body == {"file": source_file}
        assert manager.correlator.pending_for(project) == []

    @pytest.mark.asyncio
    async def test_dirty_buffer_flushed_before_request(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        manager.update_buffer(source_file, "const x: number = 1;\n")

        await manager.send("quickinfo", {"file": source_file, "line": 1, "offset": 7}, context=source_file)

        requests = spawner.last.stdin.requests
        assert [r["command"] for r in requests] == ["configure", "open", "reload", "quickinfo"]
        reload_args = requests[2]["arguments"]
        assert reload_args["file"] == source_file
        assert Path(reload_args["tmpfile"]).read_text(encoding="utf-8") == "const x: number = 1;\n"
        assert manager.buffers.get(source_file).dirty is False

    @pytest.mark.asyncio
    async def test_clean_buffer_not_reloaded(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)

        await manager.send("quickinfo", {"file": source_file}, context=source_file)

        assert spawner.last.stdin.commands == ["configure", "open", "quickinfo"]

    @pytest.mark.asyncio
    async def test_unopened_context_uses_sole_session(self, manager, spawner, project, tmp_path) -> None:
        await manager.start(project)
        loose = str(tmp_path / "scratch.ts")
        received: list[Response] = []

        await manager.send("echo", {"file": loose}, received.append, context=loose)

        assert spawner.last.stdin.commands == ["echo"]
        assert received[0].body == {"file": loose}

    @pytest.mark.asyncio
    async def test_unopened_context_ambiguous_between_sessions(
        self, manager, project, tmp_path
    ) -> None:
        other = tmp_path / "other"
        server = other / "node_modules" / "typescript" / "lib" / "tsserver.js"
        server.parent.mkdir(parents=True)
        server.write_text("")
        await manager.start(project)
        await manager.start(str(other))

        with pytest.raises(ServerNotRunningError):
            await manager.send("echo", context=str(tmp_path / "scratch.ts"))

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_buffer_dirty(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        manager.update_buffer(source_file, "let pending = 1;\n")
        spawner.last.stdin.closed = True

        with pytest.raises(ServerNotRunningError):
            await manager.send("quickinfo", {"file": source_file}, context=source_file)

        buffer = manager.buffers.get(source_file)
        assert buffer.dirty is True
        assert buffer.text == "let pending = 1;\n"
        assert "reload" not in spawner.last.stdin.commands


class TestSendSync:
    """Tests for the synchronous bridge."""

    @pytest.mark.asyncio
    async def test_returns_response(self, manager, project) -> None:
        await manager.start(project)

        response = await manager.send_sync("echo", {"value": "ü"}, project=project)

        assert response.success is True
        assert response.body == {"value": "ü"}

    @pytest.mark.asyncio
    async def test_timeout_names_command(self, manager, project) -> None:
        await manager.start(project)

        with pytest.raises(RequestTimeoutError, match="slow") as exc_info:
            await manager.send_sync("slow", project=project, timeout=0.05)

        assert exc_info.value.command == "slow"
        assert len(manager.correlator) == 0

    @pytest.mark.asyncio
    async def test_timeout_does_not_affect_other_requests(self, manager, project) -> None:
        await manager.start(project)
        received: list[Response] = []
        spawner_process = manager.current_session(project).process
        spawner_process.responder = None

        await manager.send("other", callback=received.append, project=project)
        with pytest.raises(RequestTimeoutError):
            await manager.send_sync("slow", project=project, timeout=0.05)

        spawner_process.emit(make_response({"command": "other", "seq": "1"}))
        await settle()
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_never_returns_another_requests_response(self, config, project) -> None:
        spawner = FakeSpawner(responder=None)
        manager = SessionManager(config, spawner=spawner)
        try:
            await manager.start(project)
            earlier: list[Response] = []
            await manager.send("first", callback=earlier.append, project=project)

            task = asyncio.create_task(manager.send_sync("second", project=project))
            await settle()
            spawner.last.emit(make_response({"command": "first", "seq": "1"}, body="one"))
            spawner.last.emit(make_response({"command": "second", "seq": "2"}, body="two"))

            response = await task

            assert response.request_seq == "2"
            assert response.body == "two"
            assert earlier[0].body == "one"
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_is_discarded(self, config, project) -> None:
        spawner = FakeSpawner(responder=None)
        manager = SessionManager(config, spawner=spawner)
        try:
            await manager.start(project)
            with pytest.raises(RequestTimeoutError):
                await manager.send_sync("slow", project=project, timeout=0.01)

            spawner.last.emit(make_response({"command": "slow", "seq": "1"}))
            await settle()

            assert len(manager.correlator) == 0
            assert manager.current_session(project).is_running
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_session_death_unblocks_waiter(self, manager, spawner, project) -> None:
        await manager.start(project)
        task = asyncio.create_task(manager.send_sync("slow", project=project, timeout=5))
        await settle()

        spawner.last.exit(1)
        response = await asyncio.wait_for(task, timeout=1)

        assert response.success is False
        assert "terminated" in response.message

    @pytest.mark.asyncio
    async def test_no_session(self, manager, project) -> None:
        with pytest.raises(ServerNotRunningError):
            await manager.send_sync("quickinfo", project=project)


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    """Tests for queued event consumers."""

    @pytest.mark.asyncio
    async def test_two_queued_callbacks_receive_events_in_order(
        self, manager, spawner, project, source_file
    ) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        first: list[Event] = []
        second: list[Event] = []
        manager.enqueue_event(source_file, first.append)
        manager.enqueue_event(source_file, second.append)

        await manager.send("geterr", {"files": [source_file], "delay": 0}, context=source_file)
        await settle()

        assert [e.event for e in first] == ["syntaxDiag"]
        assert [e.event for e in second] == ["semanticDiag"]

    @pytest.mark.asyncio
    async def test_collect_events(self, manager, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)

        events = await manager.collect_events(
            DIAGNOSTICS, {"files": [source_file], "delay": 0}, context=source_file
        )

        assert [e.event for e in events] == ["syntaxDiag", "semanticDiag"]
        assert manager.events.pending(source_file) == 0

    @pytest.mark.asyncio
    async def test_collect_events_timeout_removes_consumers(self, manager, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        manager.current_session(project).process.responder = None
        others: list[Event] = []

        with pytest.raises(RequestTimeoutError, match="geterr"):
            await manager.collect_events(
                DIAGNOSTICS, {"files": [source_file]}, context=source_file, timeout=0.05
            )
        manager.enqueue_event(source_file, others.append)

        assert manager.events.pending(source_file) == 1

    @pytest.mark.asyncio
    async def test_collect_events_requires_session(self, manager, project, source_file) -> None:
        with pytest.raises(ServerNotRunningError):
            await manager.collect_events(
                DIAGNOSTICS, {"files": [source_file]}, context=source_file, project=project
            )
        assert manager.events.pending(source_file) == 0

    @pytest.mark.asyncio
    async def test_enqueue_without_session_rejected(self, manager, source_file) -> None:
        with pytest.raises(ServerNotRunningError):
            manager.enqueue_event(source_file, lambda event: None)
        assert manager.events.pending(source_file) == 0


# =============================================================================
# Teardown and restart
# =============================================================================


class TestTermination:
    """Tests for crash recovery."""

    @pytest.mark.asyncio
    async def test_all_outstanding_work_fails_on_exit(self, manager, spawner, project, source_file) -> None:
        """3 pending requests and 2 queued events all receive failures."""
        session = await manager.start(project)
        await manager.open_buffer(source_file, project)
        requests: list[Response] = []
        events: list[Event] = []
        for _ in range(3):
            await manager.send("slow", callback=requests.append, context=source_file)
        manager.enqueue_event(source_file, events.append)
        manager.enqueue_event(source_file, events.append)

        spawner.last.exit(1)
        await session.wait_closed()

        assert len(requests) == 3
        assert len(events) == 2
        assert all(r.success is False for r in requests)
        assert all(e.success is False for e in events)
        assert manager.current_session(project) is None
        assert session.state == SessionState.TERMINATED
        assert "code 1" in session.exit_reason
        assert len(manager.correlator) == 0
        assert manager.events.pending(source_file) == 0
        assert manager.buffers.get(source_file).opened is False

    @pytest.mark.asyncio
    async def test_event_for_unopened_context_fails_on_exit(
        self, manager, spawner, project, tmp_path
    ) -> None:
        session = await manager.start(project)
        loose = str(tmp_path / "scratch.ts")
        events: list[Event] = []
        manager.enqueue_event(loose, events.append)

        spawner.last.exit(1)
        await session.wait_closed()

        assert len(events) == 1
        assert events[0].success is False
        assert manager.events.pending(loose) == 0

    @pytest.mark.asyncio
    async def test_other_projects_unaffected(self, manager, spawner, project, tmp_path) -> None:
        other = tmp_path / "other"
        server = other / "node_modules" / "typescript" / "lib" / "tsserver.js"
        server.parent.mkdir(parents=True)
        server.write_text("")
        dying = await manager.start(project)
        await manager.start(str(other))
        spawner.processes[1].responder = None
        survivors: list[Response] = []
        await manager.send("slow", callback=survivors.append, project=str(other))

        spawner.processes[0].exit(2)
        await dying.wait_closed()

        assert survivors == []
        assert manager.current_session(str(other)) is not None
        assert len(manager.correlator) == 1

    @pytest.mark.asyncio
    async def test_callback_fires_exactly_once(self, manager, spawner, project) -> None:
        session = await manager.start(project)
        calls: list[Response] = []
        await manager.send("slow", callback=calls.append, project=project)
        spawner.last.emit(make_response({"command": "slow", "seq": "1"}))
        await settle()

        spawner.last.exit(0)
        await session.wait_closed()

        assert len(calls) == 1
        assert calls[0].success is True

    @pytest.mark.asyncio
    async def test_invalid_frame_is_fatal(self, manager, spawner, project) -> None:
        session = await manager.start(project)
        pending: list[Response] = []
        await manager.send("slow", callback=pending.append, project=project)

        spawner.last.feed(b"Content-Length: 5\r\n\r\n{bad}")
        await session.wait_closed()

        assert spawner.last.returncode == -9
        assert pending[0].success is False
        assert "protocol error" in pending[0].message
        assert manager.current_session(project) is None

    @pytest.mark.asyncio
    async def test_send_after_exit_fails(self, manager, spawner, project) -> None:
        session = await manager.start(project)
        spawner.last.exit(0)
        await session.wait_closed()

        with pytest.raises(ServerNotRunningError):
            await manager.send("open", project=project)


class TestRestart:
    """Tests for restart and buffer handshake replay."""

    @pytest.mark.asyncio
    async def test_restart_replays_handshake(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        old = spawner.last

        session = await manager.restart(project)

        assert old.returncode is not None
        assert spawner.last is not old
        assert manager.current_session(project) is session
        assert spawner.last.stdin.commands == ["configure", "open"]
        configure = spawner.last.stdin.requests[0]["arguments"]
        assert configure["file"] == source_file
        assert configure["formatOptions"]["indentSize"] == 4
        assert manager.buffers.get(source_file).opened is True

    @pytest.mark.asyncio
    async def test_restart_without_session_starts(self, manager, spawner, project) -> None:
        await manager.restart(project)

        assert manager.current_session(project) is not None
        assert len(spawner.processes) == 1

    @pytest.mark.asyncio
    async def test_restart_sends_unsaved_text(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        manager.update_buffer(source_file, "let edited = true;\n")

        await manager.restart(project)

        open_args = spawner.last.stdin.requests[1]["arguments"]
        assert open_args["fileContent"] == "let edited = true;\n"
        assert manager.buffers.get(source_file).dirty is False

    @pytest.mark.asyncio
    async def test_restart_fails_pending_work_of_old_session(self, manager, spawner, project) -> None:
        await manager.start(project)
        pending: list[Response] = []
        await manager.send("slow", callback=pending.append, project=project)

        await manager.restart(project)

        assert pending[0].success is False


class TestBuffers:
    """Tests for open/close handshakes."""

    @pytest.mark.asyncio
    async def test_open_buffer_handshake(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)

        await manager.open_buffer(source_file, project, text="let a = 1;")

        requests = spawner.last.stdin.requests
        assert [r["command"] for r in requests] == ["configure", "open"]
        assert requests[0]["arguments"]["hostInfo"].startswith("tsclient")
        assert requests[1]["arguments"] == {
            "file": source_file,
            "projectRootPath": project,
            "fileContent": "let a = 1;",
        }

    @pytest.mark.asyncio
    async def test_close_buffer(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)
        waiting: list[Event] = []
        manager.enqueue_event(source_file, waiting.append)

        await manager.close_buffer(source_file)

        assert spawner.last.stdin.commands[-1] == "close"
        assert waiting[0].success is False
        assert source_file not in manager.buffers

    @pytest.mark.asyncio
    async def test_update_unknown_buffer(self, manager) -> None:
        with pytest.raises(KeyError):
            manager.update_buffer("/nope.ts", "x")

    @pytest.mark.asyncio
    async def test_requests_are_json_lines(self, manager, spawner, project, source_file) -> None:
        await manager.start(project)
        await manager.open_buffer(source_file, project)

        for data in spawner.last.stdin.writes:
            assert data.endswith(b"\n")
            json.loads(data)
