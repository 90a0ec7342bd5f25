"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from tsclient.config import reset_config
from tsclient.config.schema import Config
from tsclient.logging import reset_logging
from tsclient.session.manager import SessionManager
from tests.utils import FakeSpawner

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch, tmp_path):
    """Keep user/system config and TSCLIENT_* variables out of tests."""
    for name in ("TSCLIENT_LOG", "TSCLIENT_TSSERVER", "TSCLIENT_SYNC_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    reset_config()
    yield
    reset_config()
    reset_logging()


@pytest.fixture
def project(tmp_path) -> str:
    """A project root containing a local tsserver install."""
    root = tmp_path / "project"
    server = root / "node_modules" / "typescript" / "lib" / "tsserver.js"
    server.parent.mkdir(parents=True)
    server.write_text("// stub\n")
    (root / "src").mkdir()
    return str(root)


@pytest.fixture
def source_file(project) -> str:
    path = Path(project) / "src" / "app.ts"
    path.write_text("const x: number = 'a';\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def config() -> Config:
    config = Config()
    config.requests.sync_timeout = 1.0
    config.server.shutdown_timeout = 0.5
    return config


@pytest.fixture
async def manager(config, spawner):
    """SessionManager wired to fake server processes."""
    manager = SessionManager(config, spawner=spawner)
    yield manager
    await manager.shutdown()
