"""Integration test fixtures.

These tests spawn real processes. Backends whose mechanism is missing on
the host are skipped; tool-wrapping backends run against fake tools.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest


@pytest.fixture
def outside_tmp_dir() -> Generator[Path, None, None]:
    """A writable directory that is not beneath /tmp or /dev."""
    base = Path("/var/tmp")
    if not base.is_dir() or not os.access(base, os.W_OK):
        pytest.skip("/var/tmp is not writable")
    directory = Path(tempfile.mkdtemp(prefix="jailrun-it-", dir=base))
    yield directory
    shutil.rmtree(directory)
