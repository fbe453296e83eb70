"""Backend registry and factory.

Maps backend identifiers to Runner classes. ``build_runner`` validates the
options and probes the host, so a runner it returns is ready to use.

Usage:
    runner = await build_runner("kernel-restriction", {"allow_read_folders": ["/usr"]})
    output = await runner.run("ls /usr")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from jailrun.exceptions import ConfigurationError
from jailrun.runners import (
    ContainerRunner,
    ExecRunner,
    FirejailRunner,
    LandlockRunner,
    Runner,
    SandboxExecRunner,
)

logger = logging.getLogger(__name__)

RUNNERS: dict[str, type[Runner]] = {
    ExecRunner.backend_id: ExecRunner,
    SandboxExecRunner.backend_id: SandboxExecRunner,
    FirejailRunner.backend_id: FirejailRunner,
    ContainerRunner.backend_id: ContainerRunner,
    LandlockRunner.backend_id: LandlockRunner,
}

# Tool-named identifiers accepted for the same backends
ALIASES: dict[str, str] = {
    "sandbox-exec": SandboxExecRunner.backend_id,
    "firejail": FirejailRunner.backend_id,
    "docker": ContainerRunner.backend_id,
    "landrun": LandlockRunner.backend_id,
}


def resolve_backend(backend_id: str) -> type[Runner]:
    """Runner class for ``backend_id`` (canonical id or alias).

    Raises:
        ConfigurationError: If the identifier is unknown
    """
    canonical = ALIASES.get(backend_id, backend_id)
    try:
        return RUNNERS[canonical]
    except KeyError:
        known = ", ".join(sorted([*RUNNERS, *ALIASES]))
        raise ConfigurationError(f"Unknown runner backend '{backend_id}' (known: {known})", field="backend") from None


def create_runner(backend_id: str, options: Mapping[str, Any] | None = None) -> Runner:
    """Construct a runner without probing the host.

    Raises:
        ConfigurationError: If the identifier is unknown or options are invalid
    """
    runner_cls = resolve_backend(backend_id)
    if backend_id == "docker":
        # The docker alias pins the engine unless the options say otherwise
        options = {"engine": "docker", **(options or {})}
    return runner_cls(options)


async def build_runner(backend_id: str, options: Mapping[str, Any] | None = None) -> Runner:
    """Construct a runner and verify the host can run it.

    Raises:
        ConfigurationError: If the identifier is unknown or options are invalid
        CapabilityError: If the host lacks what the backend needs
    """
    runner = create_runner(backend_id, options)
    await runner.check_requirements()
    logger.debug("Runner %s is ready", runner.backend_id)
    return runner
