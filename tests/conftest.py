"""Plugin bridge test configuration."""

import os
import tempfile
from pathlib import Path

import pytest

# Keep runtime logs out of the real home directory; must happen before the
# package creates its module loggers.
os.environ.setdefault(
    "PLUGIN_BRIDGE_LOG_DIR", str(Path(tempfile.gettempdir()) / "plugin-bridge-test-logs")
)


@pytest.fixture
def codex_home(tmp_path, monkeypatch):
    """Temporary CODEX_HOME with no bridge config of its own."""
    home = tmp_path / "codex-home"
    home.mkdir()
    monkeypatch.setenv("CODEX_HOME", str(home))
    monkeypatch.delenv("CODEX_PLUGIN_BRIDGE_CONFIG", raising=False)
    monkeypatch.delenv("CODEX_PLUGIN_BRIDGE_DEBUG_LOG_PATH", raising=False)
    return home


@pytest.fixture
def plugin_root(codex_home):
    root = codex_home / "plugins" / "claude-home" / "demo-plugin"
    root.mkdir(parents=True)
    return root
