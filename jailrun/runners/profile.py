"""Shared machinery for backends driven by a profile file.

The profile is compiled per call, written to a temp file, handed to the
wrapping tool and removed once the command is done. Commands that need a
shell are written to a script in a private temp directory first.
"""

from __future__ import annotations

import functools
import logging
import shutil
import sys
from abc import abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, ClassVar

from jailrun.cancellation import Cancellation
from jailrun.exceptions import CapabilityError
from jailrun.launcher import (
    Environment,
    ExecutionHandle,
    is_single_executable_command,
    make_temp_dir,
    remove_path,
    run_captured,
    start_piped,
    write_temp_file,
)
from jailrun.options import ProfileOptions
from jailrun.policy.profiles import ProfileKind, compile_profile
from jailrun.runners.base import Runner

logger = logging.getLogger(__name__)


class ProfileRunner(Runner[ProfileOptions]):
    """Base for sandbox-exec and firejail."""

    profile_kind: ClassVar[ProfileKind]
    profile_suffix: ClassVar[str]
    required_platform: ClassVar[str]
    platform_name: ClassVar[str]

    # Name or path of the wrapping tool
    executable: str

    @abstractmethod
    def wrap(self, profile_path: Path, argv: Sequence[str]) -> list[str]:
        """Prefix ``argv`` with the tool invocation that enforces ``profile_path``."""

    def _compile_to_file(self, options: ProfileOptions, params: Mapping[str, Any] | None) -> Path:
        profile = compile_profile(self.profile_kind, options, params)
        return write_temp_file(profile, kind="profile", suffix=self.profile_suffix)

    async def run(
        self,
        command: str,
        *,
        shell: str | None = None,
        env: Environment = None,
        params: Mapping[str, Any] | None = None,
        tmpfile: bool = False,
        cancellation: Cancellation | None = None,
    ) -> str:
        # tmpfile is implied: anything but a single executable goes through a script
        if cancellation is not None:
            cancellation.raise_if_done()

        artifacts: list[Path] = []
        try:
            if is_single_executable_command(command):
                logger.debug("Optimization: running single executable command directly: %s", command)
                options = self.options
                target = [command.strip()]
            else:
                script_dir = make_temp_dir("script")
                artifacts.append(script_dir)
                script = write_temp_file(
                    command + "\n",
                    kind="script",
                    suffix=".sh",
                    executable=True,
                    directory=script_dir,
                )
                # The sandboxed shell must be able to read its own script
                options = self.options.model_copy(update={"read_files": [*self.options.read_files, str(script)]})
                target = [self.resolve_shell(shell), str(script)]

            profile_path = self._compile_to_file(options, params)
            artifacts.append(profile_path)

            return await run_captured(self.wrap(profile_path, target), env=env, cancellation=cancellation)
        finally:
            for path in artifacts:
                remove_path(path)

    async def run_with_pipes(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        env: Environment = None,
        params: Mapping[str, Any] | None = None,
        cancellation: Cancellation | None = None,
    ) -> ExecutionHandle:
        if cancellation is not None:
            cancellation.raise_if_done()

        logger.debug("RunWithPipes: executing command in %s: %s with args: %s", self.backend_id, executable, list(args))
        profile_path = self._compile_to_file(self.options, params)
        logger.debug("Created %s profile at: %s", self.profile_kind, profile_path)

        return await start_piped(
            self.wrap(profile_path, [executable, *args]),
            env=env,
            cancellation=cancellation,
            cleanup=[functools.partial(remove_path, profile_path)],
            description=f"{self.profile_kind} command",
        )

    async def check_requirements(self) -> None:
        if not sys.platform.startswith(self.required_platform):
            raise CapabilityError(f"{self.profile_kind} runner requires {self.platform_name}", backend=self.backend_id)
        if shutil.which(self.executable) is None:
            raise CapabilityError(f"{self.executable} executable not found in PATH", backend=self.backend_id)
