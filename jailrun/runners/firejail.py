"""Linux firejail backend.

Default allow: firejail's own sandbox plus the generated profile, which
disables networking unless ``allow_networking`` is set and hides the home
directory unless ``allow_user_folders`` is set.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from jailrun.options import FirejailOptions
from jailrun.policy.profiles import ProfileKind
from jailrun.runners.profile import ProfileRunner


class FirejailRunner(ProfileRunner):
    """Runs commands under ``firejail --profile=<profile>``."""

    backend_id = "linux-namespace-sandbox"
    options_model = FirejailOptions
    profile_kind = ProfileKind.FIREJAIL
    profile_suffix = ".profile"
    required_platform = "linux"
    platform_name = "Linux"

    executable = "firejail"

    def wrap(self, profile_path: Path, argv: Sequence[str]) -> list[str]:
        return [self.executable, f"--profile={profile_path}", *argv]
