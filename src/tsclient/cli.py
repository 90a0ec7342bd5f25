"""Command-line interface for tsclient.

Each subcommand starts a server for the project, opens the files it needs,
runs one operation, prints the result and shuts the server down.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from tsclient.config import Config, load_config
from tsclient.errors import TsClientError
from tsclient.logging import setup_logging
from tsclient.operations import ProjectClient
from tsclient.session.manager import SessionManager
from tsclient.types import DiagnosticsReport, Reference

console = Console(stderr=True)
out = Console()

_POSITION_COMMANDS = {
    "quickinfo": "Type information for the symbol at a position",
    "definition": "Definition location(s) of the symbol at a position",
    "references": "References to the symbol at a position",
    "completions": "Completion candidates at a position",
    "rename": "Locations a rename at a position would change",
    "signature": "Signature help at a position",
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tsclient",
        description="Query a TypeScript analysis server from the command line",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )
    parser.add_argument(
        "--project",
        type=Path,
        help="Project root (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Extra config file layered over the discovered ones",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for each response",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print raw JSON instead of tables",
    )

    subparsers = parser.add_subparsers(dest="command", help="Operation")

    for name, help_text in _POSITION_COMMANDS.items():
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file", type=Path)
        sub.add_argument("line", type=int)
        sub.add_argument("offset", type=int)
        if name == "completions":
            sub.add_argument("--prefix", default="", help="Only names starting with this")

    diag_parser = subparsers.add_parser("diagnostics", help="Syntactic and semantic diagnostics")
    diag_parser.add_argument("files", nargs="+", type=Path)

    format_parser = subparsers.add_parser("format", help="Formatting edits for a file")
    format_parser.add_argument("file", type=Path)

    request_parser = subparsers.add_parser("request", help="Send a raw server command")
    request_parser.add_argument("server_command", metavar="COMMAND")
    request_parser.add_argument("--args", default="{}", help="JSON object of arguments")
    request_parser.add_argument("--file", type=Path, help="Open this file first")

    return parser


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    project = str((parsed.project or Path(os.getcwd())).resolve())
    config = load_config(project_root=project, config_path=parsed.config)
    if parsed.verbose:
        config.logging.verbose = min(4, 1 + parsed.verbose)
    elif parsed.quiet:
        config.logging.verbose = 0
    if parsed.timeout is not None:
        config.requests.sync_timeout = parsed.timeout
    setup_logging(config.logging)

    if parsed.command == "request":
        try:
            parsed.arguments = json.loads(parsed.args)
        except json.JSONDecodeError as e:
            console.print(f"[red]Error: --args is not valid JSON: {e}[/red]")
            return 1
        if not isinstance(parsed.arguments, dict):
            console.print("[red]Error: --args must be a JSON object[/red]")
            return 1

    try:
        return asyncio.run(_run(parsed, config, project))
    except TsClientError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130


def _abs(path: Path) -> str:
    return str(path.resolve())


async def _run(parsed: argparse.Namespace, config: Config, project: str) -> int:
    manager = SessionManager(config)
    client = ProjectClient(manager, project)
    try:
        await client.ensure_started()
        if not parsed.quiet:
            console.print(f"[dim]Server started for {project}[/dim]")
        result = await _dispatch(parsed, client)
    finally:
        await manager.shutdown()

    _emit(result, parsed.json)
    if isinstance(result, list) and result and isinstance(result[0], DiagnosticsReport):
        return 0 if all(r.success for r in result) else 1
    return 0


async def _dispatch(parsed: argparse.Namespace, client: ProjectClient) -> Any:
    command = parsed.command

    if command == "diagnostics":
        files = [_abs(f) for f in parsed.files]
        for file in files:
            await client.open(file)
        return [await client.diagnostics(file) for file in files]

    if command == "request":
        file = _abs(parsed.file) if parsed.file else None
        if file:
            await client.open(file)
        response = await client.request(parsed.server_command, parsed.arguments, file)
        return response.model_dump(exclude_none=True)

    file = _abs(parsed.file)
    await client.open(file)

    if command == "format":
        return await client.format(file)

    line, offset = parsed.line, parsed.offset
    if command == "quickinfo":
        return await client.quickinfo(file, line, offset)
    if command == "definition":
        return await client.definition(file, line, offset)
    if command == "references":
        return await client.references(file, line, offset)
    if command == "completions":
        return await client.completions(file, line, offset, prefix=parsed.prefix)
    if command == "rename":
        return await client.rename(file, line, offset)
    if command == "signature":
        return await client.signature_help(file, line, offset)
    raise ValueError(f"Unknown command: {command}")


def _to_data(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_to_data(v) for v in value]
    return value


def _emit(result: Any, as_json: bool) -> None:
    if not as_json and isinstance(result, list) and result:
        if isinstance(result[0], DiagnosticsReport):
            out.print(_diagnostics_table(result))
            return
        if isinstance(result[0], Reference):
            out.print(_references_table(result))
            return
    out.print_json(data=_to_data(result))


def _diagnostics_table(reports: list[DiagnosticsReport]) -> Table:
    table = Table(title="Diagnostics")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Col", justify="right")
    table.add_column("Category")
    table.add_column("Message")
    for report in reports:
        if not report.success:
            table.add_row(report.file, "", "", "[red]failed[/red]", report.message or "")
            continue
        for diag in report.all:
            table.add_row(
                report.file,
                str(diag.start.line),
                str(diag.start.offset),
                diag.category,
                diag.text,
            )
    return table


def _references_table(references: list[Reference]) -> Table:
    table = Table(title="References")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Text")
    for ref in references:
        marker = " (definition)" if ref.is_definition else ""
        table.add_row(
            ref.location.file + marker,
            str(ref.location.start.line),
            ref.line_text.strip(),
        )
    return table
