"""Runner contract shared by every backend."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar, Generic

from jailrun.cancellation import Cancellation
from jailrun.launcher import Environment, ExecutionHandle, get_shell
from jailrun.options import OptionsT, parse_options

logger = logging.getLogger(__name__)


class Runner(ABC, Generic[OptionsT]):
    """Run commands under one isolation mechanism.

    A runner holds its validated options and nothing else mutable, so it can
    serve sequential and concurrent calls. Every call compiles its policy
    afresh from the stored options plus the call's ``params``.

    Usage:
        runner = ExecRunner({"shell": "/bin/bash"})
        await runner.check_requirements()
        output = await runner.run("echo hello")

        async with await runner.run_with_pipes("cat") as handle:
            handle.stdin.write(b"abc\\n")
            handle.stdin.close()
            data = await handle.stdout.read()
    """

    backend_id: ClassVar[str]
    options_model: ClassVar[type]

    def __init__(self, options: Mapping[str, Any] | OptionsT | None = None) -> None:
        """Validate ``options`` for this backend.

        Raises:
            ConfigurationError: If an option has the wrong type
        """
        if isinstance(options, self.options_model):
            self.options: OptionsT = options
        else:
            self.options = parse_options(self.options_model, options, backend=self.backend_id)
        logger.debug("Created %s runner with options: %s", self.backend_id, self.options)

    def resolve_shell(self, shell: str | None = None) -> str:
        """Shell for a call: argument, runner option, then global fallbacks."""
        return get_shell(shell or self.options.shell)

    @abstractmethod
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
        """Run ``command`` to completion and return its stripped stdout.

        Args:
            command: Command line, interpreted by the shell unless it is a
                single executable
            shell: Shell override for this call
            env: Extra environment, ``KEY=VALUE`` entries or a mapping
            params: Substitution context for placeholders in the options
            tmpfile: Write the command to a temporary script first (backends
                that always use a script ignore this)
            cancellation: Signal that stops the call

        Raises:
            CancellationError: If the signal fired (nothing is spawned when it
                already had before the call)
            CompilationError: If the policy could not be built
            LaunchError: If the process could not be started
            ExecutionError: If the command exited nonzero
        """

    @abstractmethod
    async def run_with_pipes(
        self,
        executable: str,
        args: Sequence[str] = (),
        *,
        env: Environment = None,
        params: Mapping[str, Any] | None = None,
        cancellation: Cancellation | None = None,
    ) -> ExecutionHandle:
        """Start ``executable`` with live stdin/stdout/stderr pipes.

        The caller must ``await handle.wait()`` (or use the handle as an async
        context manager) to reclaim the process and backend resources.

        Raises:
            CancellationError: If the signal already fired
            CompilationError: If the policy could not be built
            LaunchError: If the process could not be started
        """

    @abstractmethod
    async def check_requirements(self) -> None:
        """Probe the host for everything this backend needs.

        Raises:
            CapabilityError: If the host cannot run this backend
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(backend_id={self.backend_id!r})"
