"""Linux Landlock backend.

Restricts filesystem paths and TCP ports with the kernel's Landlock LSM,
without any helper binary. Two isolation modes:

- ``process`` (default): the ruleset is applied to the hosting process
  itself before the command starts. This is permanent and cumulative: the
  host keeps every restriction for the rest of its life, later calls can
  only narrow access further, and only one runner per process may do it.
- ``subprocess``: the ruleset is loaded in the host and enforced in each
  child between fork and exec, leaving the host unrestricted.

Networking: Landlock only restricts TCP when at least one port rule is
given (``allow_bind_tcp`` / ``allow_connect_tcp``, ABI 4+). Without port
rules TCP stays fully open even with ``allow_networking=False``, and UDP or
other socket families are never restricted.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, Sequence
from typing import Any

from jailrun.cancellation import Cancellation
from jailrun.exceptions import CapabilityError
from jailrun.launcher import (
    Environment,
    ExecutionHandle,
    build_shell_command,
    is_single_executable_command,
    run_captured,
    start_piped,
)
from jailrun.options import LandlockIsolation, LandlockOptions
from jailrun.policy.landlock import (
    LandlockRuleset,
    PreparedRuleset,
    apply_ruleset,
    claim_process_restriction,
    compile_ruleset,
    detect_abi,
    prepare_ruleset,
)
from jailrun.runners.base import Runner

logger = logging.getLogger(__name__)


class LandlockRunner(Runner[LandlockOptions]):
    """Runs commands under a Landlock ruleset."""

    backend_id = "kernel-restriction"
    options_model = LandlockOptions

    def compile(self, params: Mapping[str, Any] | None = None) -> LandlockRuleset:
        """Ruleset for one call, negotiated against the running kernel."""
        ruleset = compile_ruleset(self.options, params)
        if ruleset.is_unrestricted:
            return ruleset
        return ruleset.negotiate(detect_abi())

    def _restrict_process(self, ruleset: LandlockRuleset) -> None:
        if ruleset.is_unrestricted:
            logger.debug("No Landlock rules to enforce; running unrestricted")
            return
        claim_process_restriction(self)
        logger.debug("Applying Landlock restrictions to the hosting process (%d rules)", len(ruleset.rules))
        apply_ruleset(ruleset)

    def _prepare_child(self, ruleset: LandlockRuleset) -> PreparedRuleset | None:
        if ruleset.is_unrestricted:
            logger.debug("No Landlock rules to enforce; running unrestricted")
            return None
        return prepare_ruleset(ruleset)

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
        # tmpfile is ignored: restrictions apply to the process, not to a file
        if cancellation is not None:
            cancellation.raise_if_done()

        logger.debug("Landlock: executing command with %s isolation", self.options.isolation)
        ruleset = self.compile(params)

        if is_single_executable_command(command):
            argv = [command.strip()]
        else:
            argv = build_shell_command(self.resolve_shell(shell), command)

        if self.options.isolation is LandlockIsolation.PROCESS:
            self._restrict_process(ruleset)
            return await run_captured(argv, env=env, cancellation=cancellation)

        prepared = self._prepare_child(ruleset)
        try:
            return await run_captured(
                argv,
                env=env,
                cancellation=cancellation,
                preexec_fn=prepared.enforce if prepared is not None else None,
            )
        finally:
            if prepared is not None:
                prepared.close()

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

        logger.debug("RunWithPipes: executing command with Landlock: %s with args: %s", executable, list(args))
        ruleset = self.compile(params)
        argv = [executable, *args]

        if self.options.isolation is LandlockIsolation.PROCESS:
            self._restrict_process(ruleset)
            return await start_piped(argv, env=env, cancellation=cancellation, description="landlock command")

        prepared = self._prepare_child(ruleset)
        if prepared is None:
            return await start_piped(argv, env=env, cancellation=cancellation, description="landlock command")
        return await start_piped(
            argv,
            env=env,
            cancellation=cancellation,
            cleanup=[prepared.close],
            preexec_fn=prepared.enforce,
            description="landlock command",
        )

    async def check_requirements(self) -> None:
        if not sys.platform.startswith("linux"):
            raise CapabilityError("landlock runner requires Linux", backend=self.backend_id)
        abi = detect_abi()
        if abi <= 0:
            raise CapabilityError("landlock not available on this kernel", backend=self.backend_id)
        logger.debug("Landlock ABI %d is available on this system", abi)
