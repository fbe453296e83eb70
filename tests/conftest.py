"""Shared test fixtures for jailrun.

Provides settings isolation and helpers used by unit and integration tests.
"""

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from jailrun.settings import get_settings

# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Start every test from default settings, unaffected by the caller's env."""
    for key in list(os.environ):
        if key.startswith("JAILRUN_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def temp_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Private directory used for every transient profile and script."""
    directory = tmp_path / "jailrun-tmp"
    directory.mkdir()
    monkeypatch.setenv("JAILRUN_TEMP_DIR", str(directory))
    get_settings.cache_clear()
    return directory


# =============================================================================
# FAKE TOOLS
# =============================================================================


@pytest.fixture
def make_executable(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a ``#!/bin/sh`` script under ``tmp_path/bin`` and return its path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(0o755)
        return path

    return _make
