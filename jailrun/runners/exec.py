"""Unrestricted backend: runs commands directly on the host."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from jailrun.cancellation import Cancellation
from jailrun.launcher import (
    Environment,
    ExecutionHandle,
    build_shell_command,
    is_single_executable_command,
    make_temp_dir,
    remove_path,
    run_captured,
    start_piped,
    write_temp_file,
)
from jailrun.options import ExecOptions
from jailrun.runners.base import Runner

logger = logging.getLogger(__name__)


class ExecRunner(Runner[ExecOptions]):
    """Plain process execution with no isolation at all."""

    backend_id = "exec"
    options_model = ExecOptions

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
        if cancellation is not None:
            cancellation.raise_if_done()

        if is_single_executable_command(command):
            logger.debug("Optimization: running single executable command directly: %s", command)
            return await run_captured([command.strip()], env=env, cancellation=cancellation)

        resolved_shell = self.resolve_shell(shell)
        logger.debug("Using shell: %s", resolved_shell)

        if not tmpfile:
            return await run_captured(
                build_shell_command(resolved_shell, command),
                env=env,
                cancellation=cancellation,
            )

        script_dir = make_temp_dir("exec")
        try:
            script = write_temp_file(
                f"#!/bin/sh\n{command}\n",
                kind="script",
                suffix=".sh",
                executable=True,
                directory=script_dir,
            )
            return await run_captured([resolved_shell, str(script)], env=env, cancellation=cancellation)
        finally:
            remove_path(script_dir)

    async def run_with_pipes(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        env: Environment = None,
        params: Mapping[str, Any] | None = None,
        cancellation: Cancellation | None = None,
    ) -> ExecutionHandle:
        logger.debug("RunWithPipes: executing command: %s with args: %s", executable, list(args))
        return await start_piped(
            [executable, *args],
            env=env,
            cancellation=cancellation,
            description="command",
        )

    async def check_requirements(self) -> None:
        # No special requirements
        return None
