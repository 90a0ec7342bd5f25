"""Configuration schema dataclasses for tsclient.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServerConfig:
    """How to locate and launch the analysis server.

    Example config.yaml:
        server:
          executable: ./node_modules/typescript/lib/tsserver.js
          node: /usr/local/bin/node
          log_level: verbose
          log_file: /tmp/tsserver.log
    """

    executable: str | None = None  # Explicit tsserver path (.js or binary)
    node: str = "node"  # Interpreter used for .js executables
    args: list[str] = field(default_factory=list)  # Extra server arguments
    env: dict[str, str] = field(default_factory=dict)  # Extra environment (supports ${VAR})
    log_level: str | None = None  # tsserver verbosity: terse, normal, requestTime, verbose
    log_file: str | None = None  # tsserver log file, used with log_level
    shutdown_timeout: float = 3.0  # Seconds between terminate and kill


@dataclass
class RequestConfig:
    """Request timing configuration."""

    sync_timeout: float = 2.0  # Seconds send_sync waits for a response


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


def default_format_options() -> dict[str, Any]:
    """tsserver formatOptions sent with every configure request."""
    return {
        "indentSize": 4,
        "tabSize": 4,
        "convertTabsToSpaces": True,
        "insertSpaceAfterCommaDelimiter": True,
        "insertSpaceAfterSemicolonInForStatements": True,
        "insertSpaceBeforeAndAfterBinaryOperators": True,
        "insertSpaceAfterKeywordsInControlFlowStatements": True,
        "insertSpaceAfterFunctionKeywordForAnonymousFunctions": False,
        "insertSpaceAfterOpeningAndBeforeClosingNonemptyParenthesis": False,
        "placeOpenBraceOnNewLineForFunctions": False,
        "placeOpenBraceOnNewLineForControlBlocks": False,
    }


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    requests: RequestConfig = field(default_factory=RequestConfig)
    format: dict[str, Any] = field(default_factory=default_format_options)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level keys, kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
