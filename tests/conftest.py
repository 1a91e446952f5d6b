"""
Pytest configuration and fixtures.
"""
import os
import stat
import sys
import tempfile
from pathlib import Path

# Keep the module-level app away from the project tree
_SESSION_DIR = tempfile.mkdtemp(prefix="preview-tests-")
os.environ["PREVIEWS_DIR"] = os.path.join(_SESSION_DIR, "previews")
os.environ["LOGS_DIR"] = os.path.join(_SESSION_DIR, "logs")
os.environ["ENABLE_COREPACK"] = "false"

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import create_app
from preview_builder.config import PreviewConfig


# Fake package manager: records each call, builds into dist/
FAKE_MANAGER = """#!/bin/sh
echo "$(basename "$0") $*" >> "{log}"
case "$1" in
  install) {install} ;;
  run) {build} ;;
  *) exit 0 ;;
esac
"""

BUILD_DIST = 'mkdir -p dist && echo "<h1>preview</h1>" > dist/index.html'


def write_tool(bin_dir: Path, name: str, log: Path, install: str = "exit 0", build: str = BUILD_DIST) -> Path:
    """Write an executable fake package manager and return its path."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    path = bin_dir / name
    path.write_text(FAKE_MANAGER.format(log=log, install=install, build=build))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def read_calls(log: Path) -> list[str]:
    if not log.exists():
        return []
    return log.read_text().splitlines()


@pytest.fixture
def calls_log(tmp_path):
    return tmp_path / "calls.log"


@pytest.fixture
def make_config(tmp_path):
    """Factory for configs rooted in the test's temp directory."""
    def _make(**overrides) -> PreviewConfig:
        values = {
            "previews_dir": tmp_path / "previews",
            "logs_dir": tmp_path / "logs",
            "enable_corepack": False,
            "build_timeout_s": 10.0,
            "max_disk_usage_percent": 100.0,
            "environment": "test",
        }
        values.update(overrides)
        return PreviewConfig(**values)
    return _make


@pytest.fixture
def fake_tools(tmp_path, calls_log, make_config):
    """Config whose primary/fallback managers are working fake scripts."""
    bin_dir = tmp_path / "bin"
    pnpm = write_tool(bin_dir, "pnpm", calls_log)
    npm = write_tool(bin_dir, "npm", calls_log)
    return make_config(primary_package_manager=str(pnpm), fallback_package_manager=str(npm))


@pytest.fixture
def sample_files():
    """A minimal Vite + React project."""
    return {
        "package.json": {
            "name": "demo",
            "scripts": {"build": "vite build"},
            "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
            "devDependencies": {"vite": "^5.0.0"},
        },
        "index.html": "<!doctype html><div id=\"root\"></div>\n",
        "src/main.jsx": "import React from 'react'\nconsole.log(React)\n",
    }


@pytest.fixture
def client(fake_tools):
    """Test client for an app wired to the fake toolchain."""
    app = create_app(fake_tools)
    yield TestClient(app, raise_server_exceptions=False)
