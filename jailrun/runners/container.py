"""Container backend (docker or podman).

Batch calls use a throwaway ``run --rm`` container. Interactive calls start
a named, detached container that idles on ``sleep infinity``, ``exec`` the
command inside it and remove the container when the handle completes.

Networking follows the engine default (allowed) unless
``allow_networking`` is false.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import shutil
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from jailrun.cancellation import Cancellation
from jailrun.exceptions import (
    CancellationError,
    CapabilityError,
    ExecutionError,
    LaunchError,
    RunnerError,
)
from jailrun.launcher import (
    Environment,
    ExecutionHandle,
    is_single_executable_command,
    remove_path,
    run_captured,
    start_piped,
    write_temp_file,
)
from jailrun.options import ContainerOptions
from jailrun.policy.container import (
    build_batch_argv,
    build_create_argv,
    build_exec_argv,
    build_remove_argv,
    build_script,
)
from jailrun.runners.base import Runner
from jailrun.settings import get_settings

logger = logging.getLogger(__name__)


class ContainerRunner(Runner[ContainerOptions]):
    """Runs commands inside containers through the engine CLI."""

    backend_id = "container"
    options_model = ContainerOptions

    @property
    def engine(self) -> str:
        return self.options.engine or get_settings().container_engine

    def _container_name(self) -> str:
        return f"{get_settings().container_name_prefix}-{uuid.uuid4().hex[:12]}"

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

        options = self.options.substituted(params)
        name = self._container_name()

        if is_single_executable_command(command):
            logger.debug("Optimization: running single executable command directly in container: %s", command)
            argv = build_batch_argv(self.engine, options, env=env, command=command.strip(), name=name)
            return await self._run_batch(argv, name, cancellation)

        script = write_temp_file(
            build_script(
                command,
                shell=shell or options.shell,
                env=env,
                prepare_command=options.prepare_command,
            ),
            kind="container",
            suffix=".sh",
        )
        try:
            # Readable by whatever user the container runs as
            script.chmod(0o755)
            argv = build_batch_argv(self.engine, options, env=env, script=str(script), name=name)
            logger.debug("Running command in container with script: %s", script)
            return await self._run_batch(argv, name, cancellation)
        finally:
            remove_path(script)

    async def _run_batch(self, argv: list[str], name: str, cancellation: Cancellation | None) -> str:
        try:
            return await run_captured(argv, cancellation=cancellation)
        except (CancellationError, asyncio.CancelledError):
            # Killing the engine CLI does not stop the container; --rm covers every other exit
            await self._remove_container(name)
            raise

    async def _remove_container(self, name: str) -> None:
        logger.debug("Cleaning up container: %s", name)
        try:
            await run_captured(build_remove_argv(self.engine, name))
        except RunnerError as e:
            logger.warning("Failed to remove container %s: %s", name, e)
        else:
            logger.debug("Container %s removed successfully", name)

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

        logger.debug("RunWithPipes: executing command in container: %s with args: %s", executable, list(args))
        options = self.options.substituted(params)
        name = self._container_name()

        try:
            await run_captured(build_create_argv(self.engine, options, name, env=env), cancellation=cancellation)
        except ExecutionError as e:
            await self._remove_container(name)
            raise LaunchError(f"failed to create container: {e}") from e
        except BaseException:
            await self._remove_container(name)
            raise
        logger.debug("Created container: %s", name)

        return await start_piped(
            build_exec_argv(self.engine, name, executable, args),
            cancellation=cancellation,
            cleanup=[functools.partial(self._remove_container, name)],
            description=f"{self.engine} exec",
        )

    async def check_requirements(self) -> None:
        engine = self.engine
        if shutil.which(engine) is None:
            raise CapabilityError(f"{engine} executable not found in PATH", backend=self.backend_id)

        timeout = get_settings().container_probe_timeout_seconds
        try:
            await run_captured([engine, "info"], cancellation=Cancellation.with_timeout(timeout))
        except (ExecutionError, LaunchError, CancellationError) as e:
            raise CapabilityError(f"{engine} daemon is not reachable: {e}", backend=self.backend_id) from e
        logger.debug("%s daemon is reachable", engine)
