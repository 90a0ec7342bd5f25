"""Editor-facing operations on top of the session core.

ProjectClient binds a SessionManager to one project root and exposes the
requests editor features need (hover info, jump to definition, completion,
references, rename, formatting, diagnostics) with typed results.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from tsclient.errors import RequestFailedError
from tsclient.logging import get_logger
from tsclient.protocol.messages import Event, Response
from tsclient.session.events import DIAGNOSTICS, EventSpec
from tsclient.session.manager import SessionManager
from tsclient.types import (
    CompletionEntry,
    Diagnostic,
    DiagnosticsReport,
    Location,
    Position,
    QuickInfo,
    Reference,
    RenameResult,
    TextEdit,
)

_log = get_logger("operations")


def _location_args(file: str, line: int, offset: int) -> dict[str, Any]:
    return {"file": file, "line": line, "offset": offset}


def _end_position(text: str) -> Position:
    lines = text.split("\n")
    return Position(line=len(lines), offset=len(lines[-1]) + 1)


class ProjectClient:
    """Typed requests against one project's server."""

    def __init__(self, manager: SessionManager, project: str) -> None:
        self.manager = manager
        self.project = project

    async def ensure_started(self) -> None:
        """Start the project's server unless it is already registered."""
        if self.manager.current_session(self.project) is None:
            await self.manager.start(self.project)

    async def open(self, file: str, text: str | None = None) -> None:
        await self.manager.open_buffer(file, self.project, text)

    async def close(self, file: str) -> None:
        await self.manager.close_buffer(file)

    async def request(
        self,
        command: str,
        arguments: dict[str, Any] | None = None,
        file: str | None = None,
    ) -> Response:
        """Raw synchronous request; the response is returned whatever its success."""
        return await self.manager.send_sync(command, arguments, context=file, project=self.project)

    async def _body(self, command: str, arguments: dict[str, Any], file: str) -> Any:
        response = await self.request(command, arguments, file)
        if not response.success:
            raise RequestFailedError(response)
        return response.body

    async def quickinfo(self, file: str, line: int, offset: int) -> QuickInfo:
        body = await self._body("quickinfo", _location_args(file, line, offset), file) or {}
        return QuickInfo(
            display_string=body.get("displayString", ""),
            documentation=body.get("documentation", "") if isinstance(body.get("documentation"), str) else "",
            kind=body.get("kind", ""),
            kind_modifiers=body.get("kindModifiers", ""),
        )

    async def definition(self, file: str, line: int, offset: int) -> list[Location]:
        body = await self._body("definition", _location_args(file, line, offset), file) or []
        return [Location.from_body(item) for item in body]

    async def references(self, file: str, line: int, offset: int) -> list[Reference]:
        body = await self._body("references", _location_args(file, line, offset), file) or {}
        return [
            Reference(
                location=Location.from_body(ref),
                line_text=ref.get("lineText", ""),
                is_definition=bool(ref.get("isDefinition", False)),
            )
            for ref in body.get("refs", [])
        ]

    async def completions(
        self, file: str, line: int, offset: int, prefix: str = ""
    ) -> list[CompletionEntry]:
        arguments = _location_args(file, line, offset)
        arguments["prefix"] = prefix
        body = await self._body("completions", arguments, file) or []
        entries = [
            CompletionEntry(
                name=item.get("name", ""),
                kind=item.get("kind", ""),
                sort_text=item.get("sortText", ""),
                kind_modifiers=item.get("kindModifiers", ""),
            )
            for item in body
        ]
        return [e for e in entries if e.name.startswith(prefix)]

    async def completion_details(
        self, file: str, line: int, offset: int, names: list[str]
    ) -> list[dict[str, Any]]:
        arguments = _location_args(file, line, offset)
        arguments["entryNames"] = names
        return await self._body("completionEntryDetails", arguments, file) or []

    async def signature_help(self, file: str, line: int, offset: int) -> dict[str, Any]:
        return await self._body("signatureHelp", _location_args(file, line, offset), file) or {}

    async def rename(
        self,
        file: str,
        line: int,
        offset: int,
        find_in_comments: bool = False,
        find_in_strings: bool = False,
    ) -> RenameResult:
        arguments = _location_args(file, line, offset)
        arguments.update(findInComments=find_in_comments, findInStrings=find_in_strings)
        body = await self._body("rename", arguments, file) or {}
        info = body.get("info", {})
        result = RenameResult(
            can_rename=bool(info.get("canRename", False)),
            display_name=info.get("displayName", ""),
            error=info.get("localizedErrorMessage"),
        )
        for group in body.get("locs", []):
            group_file = group.get("file", "")
            result.locations[group_file] = [
                Location.from_body(span, file=group_file) for span in group.get("locs", [])
            ]
        return result

    async def format(self, file: str, text: str | None = None) -> list[TextEdit]:
        """Formatting edits for a whole file (buffer text, else the file on disk)."""
        if text is None:
            buffer = self.manager.buffers.get(file)
            text = buffer.text if buffer and buffer.text is not None else None
        if text is None:
            text = Path(file).read_text(encoding="utf-8")
        end = _end_position(text)
        arguments = {
            "file": file,
            "line": 1,
            "offset": 1,
            "endLine": end.line,
            "endOffset": end.offset,
        }
        body = await self._body("format", arguments, file) or []
        return [
            TextEdit(
                start=Position.from_body(edit.get("start")),
                end=Position.from_body(edit.get("end")),
                new_text=edit.get("newText", ""),
            )
            for edit in body
        ]

    async def navtree(self, file: str) -> dict[str, Any]:
        return await self._body("navtree", {"file": file}, file) or {}

    async def diagnostics(
        self, file: str, spec: EventSpec = DIAGNOSTICS, timeout: float | None = None
    ) -> DiagnosticsReport:
        """Syntactic and semantic diagnostics, combined into one report."""
        events = await self.manager.collect_events(
            spec,
            {"files": [file], "delay": 0},
            context=file,
            project=self.project,
            timeout=timeout,
        )
        return _combine_diagnostics(file, events)


def _combine_diagnostics(file: str, events: list[Event]) -> DiagnosticsReport:
    report = DiagnosticsReport(file=file)
    for event in events:
        if not event.success:
            report.success = False
            report.message = event.message
            continue
        diagnostics = [Diagnostic.from_body(d) for d in (event.body or {}).get("diagnostics", [])]
        if event.event == "syntaxDiag":
            report.syntactic.extend(diagnostics)
        elif event.event == "semanticDiag":
            report.semantic.extend(diagnostics)
        else:
            _log.debug("Ignoring %s diagnostics for %s", event.event, file)
    return report
