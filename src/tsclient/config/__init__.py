"""Configuration management for tsclient.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/tsclient/ or %PROGRAMDATA%)
- User-level config (~/.config/tsclient/, ~/.tsclient/ or %APPDATA%)
- Project-level config ($project_root/.tsclient/)
- Environment variable overrides (highest priority)

Example usage:
    from tsclient.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.server.executable)
    print(config.requests.sync_timeout)
"""

from tsclient.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from tsclient.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from tsclient.config.schema import (
    Config,
    LoggingConfig,
    RequestConfig,
    ServerConfig,
)

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "LoggingConfig",
    "RequestConfig",
    "ServerConfig",
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
