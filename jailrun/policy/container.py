"""Container flag compiler.

Turns ``ContainerOptions`` into argument vectors for the engine CLI
(docker or podman; both accept the same ``run``/``exec``/``rm`` flags).
"""

from __future__ import annotations

import logging
import posixpath
import shlex
from collections.abc import Mapping, Sequence

from jailrun.exceptions import CompilationError
from jailrun.options import ContainerOptions

logger = logging.getLogger(__name__)

CONTAINER_SCRIPT_DIR = "/tmp"


def _env_pairs(env: Sequence[str] | Mapping[str, str] | None) -> list[tuple[str, str]]:
    if not env:
        return []
    if isinstance(env, Mapping):
        return list(env.items())
    pairs = []
    for entry in env:
        key, sep, value = entry.partition("=")
        if sep and key:
            pairs.append((key, value))
        else:
            logger.warning("Ignoring malformed environment entry %r (expected KEY=VALUE)", entry)
    return pairs


def compile_run_flags(
    options: ContainerOptions,
    env: Sequence[str] | Mapping[str, str] | None = None,
) -> list[str]:
    """Flags shared by every ``run`` invocation, in a stable order.

    Networking, identity, resource limits, capabilities, DNS, platform, raw
    ``docker_run_opts``, mounts, then environment.

    Raises:
        CompilationError: If ``docker_run_opts`` cannot be split into arguments
    """
    flags: list[str] = []

    if not options.allow_networking:
        flags += ["--network", "none"]
    elif options.network:
        flags += ["--network", options.network]

    if options.user:
        flags += ["--user", options.user]
    if options.workdir:
        flags += ["--workdir", options.workdir]

    if options.memory:
        flags += ["--memory", options.memory]
    if options.memory_reservation:
        flags += ["--memory-reservation", options.memory_reservation]
    if options.memory_swap:
        flags += ["--memory-swap", options.memory_swap]
    if options.memory_swappiness != -1:
        flags += ["--memory-swappiness", str(options.memory_swappiness)]

    for cap in options.cap_add:
        flags += ["--cap-add", cap]
    for cap in options.cap_drop:
        flags += ["--cap-drop", cap]
    for server in options.dns:
        flags += ["--dns", server]
    for domain in options.dns_search:
        flags += ["--dns-search", domain]

    if options.platform:
        flags += ["--platform", options.platform]

    if options.docker_run_opts:
        try:
            flags += shlex.split(options.docker_run_opts)
        except ValueError as e:
            raise CompilationError(f"Invalid docker_run_opts: {e}", backend="container") from e

    for mount in options.mounts:
        flags += ["-v", mount]

    for key, value in _env_pairs(env):
        flags += ["-e", f"{key}={value}"]

    return flags


def container_script_path(host_script: str) -> str:
    """Where a host script is mounted inside the container."""
    return posixpath.join(CONTAINER_SCRIPT_DIR, posixpath.basename(host_script))


def build_batch_argv(
    engine: str,
    options: ContainerOptions,
    *,
    env: Sequence[str] | Mapping[str, str] | None = None,
    command: str | None = None,
    script: str | None = None,
    name: str | None = None,
) -> list[str]:
    """``run --rm`` argv for a single executable or a mounted script.

    Exactly one of ``command`` (run directly) or ``script`` (host path,
    mounted and run with ``sh``) must be given. ``name`` lets the caller
    remove the container if the engine CLI is killed before it exits.
    """
    if (command is None) == (script is None):
        raise ValueError("exactly one of command or script is required")

    argv = [engine, "run", "--rm"]
    if name:
        argv += ["--name", name]
    argv += compile_run_flags(options, env)
    if script is not None:
        target = container_script_path(script)
        argv += ["-v", f"{script}:{target}", options.image, "sh", target]
    else:
        argv += [options.image, command]
    return argv


def build_script(
    command: str,
    *,
    shell: str = "",
    env: Sequence[str] | Mapping[str, str] | None = None,
    prepare_command: str = "",
) -> str:
    """Script run inside the container for commands that need a shell."""
    lines = ["#!/bin/sh", ""]
    for key, value in _env_pairs(env):
        lines.append(f"export {key}={shlex.quote(value)}")

    if prepare_command:
        lines += ["", "# Preparation commands", prepare_command, ""]

    lines.append("# Main command to execute")
    lines.append(f"exec {shell or 'sh'} -c {shlex.quote(command.strip())}")
    return "\n".join(lines) + "\n"


def build_create_argv(
    engine: str,
    options: ContainerOptions,
    name: str,
    *,
    env: Sequence[str] | Mapping[str, str] | None = None,
) -> list[str]:
    """Start a detached, long-lived container to ``exec`` into."""
    return [
        engine,
        "run",
        "--name",
        name,
        "-d",
        *compile_run_flags(options, env),
        options.image,
        "sleep",
        "infinity",
    ]


def build_exec_argv(engine: str, name: str, executable: str, args: Sequence[str] = ()) -> list[str]:
    return [engine, "exec", "-i", name, executable, *args]


def build_remove_argv(engine: str, name: str) -> list[str]:
    return [engine, "rm", "-f", name]
