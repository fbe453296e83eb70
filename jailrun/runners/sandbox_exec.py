"""macOS sandbox-exec backend.

Default deny: only the baseline system locations and the listed paths are
reachable, and the network is closed unless ``allow_networking`` is set.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from jailrun.options import SandboxExecOptions
from jailrun.policy.profiles import ProfileKind
from jailrun.runners.profile import ProfileRunner


class SandboxExecRunner(ProfileRunner):
    """Runs commands under ``sandbox-exec -f <profile>``."""

    backend_id = "macos-sandbox"
    options_model = SandboxExecOptions
    profile_kind = ProfileKind.SANDBOX_EXEC
    profile_suffix = ".sb"
    required_platform = "darwin"
    platform_name = "macOS"

    executable = "sandbox-exec"

    def wrap(self, profile_path: Path, argv: Sequence[str]) -> list[str]:
        return [self.executable, "-f", str(profile_path), *argv]
