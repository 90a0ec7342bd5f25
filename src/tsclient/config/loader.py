"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from tsclient.config.merge import merge_configs
from tsclient.config.paths import get_config_paths
from tsclient.config.schema import (
    Config,
    LoggingConfig,
    RequestConfig,
    ServerConfig,
    default_format_options,
)
from tsclient.logging import get_logger

_log = get_logger("config")

_cached_config: Config | None = None

_KNOWN_KEYS = {"server", "requests", "format", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config dict from TSCLIENT_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("TSCLIENT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    executable = os.environ.get("TSCLIENT_TSSERVER")
    if executable:
        overrides.setdefault("server", {})["executable"] = executable

    raw_timeout = os.environ.get("TSCLIENT_SYNC_TIMEOUT", "").strip()
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError:
            _log.warning("Ignoring invalid TSCLIENT_SYNC_TIMEOUT=%r", raw_timeout)
        else:
            if timeout > 0:
                overrides.setdefault("requests", {})["sync_timeout"] = timeout

    return overrides


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    server_data = data.get("server", {})
    server = ServerConfig(
        executable=server_data.get("executable"),
        node=server_data.get("node", "node"),
        args=[str(a) for a in server_data.get("args", [])],
        env={str(k): str(v) for k, v in server_data.get("env", {}).items()},
        log_level=server_data.get("log_level"),
        log_file=server_data.get("log_file"),
        shutdown_timeout=float(server_data.get("shutdown_timeout", 3.0)),
    )

    requests_data = data.get("requests", {})
    requests = RequestConfig(
        sync_timeout=float(requests_data.get("sync_timeout", 2.0)),
    )

    format_options = default_format_options()
    format_data = data.get("format", {})
    if isinstance(format_data, dict):
        format_options.update(format_data)

    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        server=server,
        requests=requests,
        format=format_options,
        logging=logging_config,
        extra=extra,
    )


def load_config(
    project_root: str | None = None,
    reload: bool = False,
    config_path: Path | None = None,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config_path (e.g. from --config)
    3. Project config ($project_root/.tsclient/config.yaml)
    4. User config
    5. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
        config_path: Extra config file layered over the discovered ones.

    Returns:
        Merged Config object. Only the global config (no project, no
        explicit path) is cached.
    """
    global _cached_config

    cacheable = project_root is None and config_path is None
    if _cached_config is not None and not reload and cacheable:
        return _cached_config

    paths = get_config_paths(project_root)
    if config_path is not None:
        paths.append(config_path)

    configs: list[dict[str, Any]] = []
    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    if cacheable:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (testing, or forcing a reload)."""
    global _cached_config
    _cached_config = None
