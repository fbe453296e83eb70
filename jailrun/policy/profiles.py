"""Profile compiler for the text-profile backends.

Renders restriction options into the profile language of the wrapped tool:
an SBPL profile for macOS sandbox-exec (default deny) or a firejail profile
(default allow). Pure text generation; writing the profile to disk is the
runner's job.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import jinja2

from jailrun.exceptions import CompilationError
from jailrun.options import ProfileOptions

logger = logging.getLogger(__name__)


class ProfileKind(StrEnum):
    """Profile languages the compiler can emit."""

    SANDBOX_EXEC = "sandbox-exec"
    FIREJAIL = "firejail"


_TEMPLATES: dict[ProfileKind, str] = {
    ProfileKind.SANDBOX_EXEC: "sandbox_exec.sb.j2",
    ProfileKind.FIREJAIL: "firejail.profile.j2",
}


def _sbpl_string(value: str) -> str:
    """Quote a value as an SBPL string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


_env = jinja2.Environment(  # nosec B701 - renders sandbox profiles, never HTML
    loader=jinja2.PackageLoader("jailrun.policy", "templates"),
    undefined=jinja2.StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.filters["sbpl_string"] = _sbpl_string


def _all_paths(options: ProfileOptions) -> list[str]:
    return (
        options.read_paths
        + options.read_exec_paths
        + options.write_paths
        + options.write_exec_paths
        + options.read_files
        + options.write_files
    )


def _canonical(path: str) -> str:
    if not os.path.isabs(path) or "\0" in path:
        return path
    return os.path.realpath(path)


def _with_canonical_paths(options: ProfileOptions) -> ProfileOptions:
    """Resolve symlinks in every absolute path.

    SBPL filters match the canonical path, so ``/tmp`` or ``/var/folders``
    (really ``/private/...`` on macOS) would never match as written.
    """
    update = {name: [_canonical(p) for p in getattr(options, name)] for name in options._path_fields()}
    return options.model_copy(update=update)


def _with_parent_folders(options: ProfileOptions) -> ProfileOptions:
    """Add the parent directory of every allowed file to the folder lists.

    sandbox-exec needs access to the directory to reach a file inside it.
    """
    read_paths = list(options.read_paths)
    for file_path in options.read_files:
        parent = os.path.dirname(file_path) or "."
        if parent not in read_paths:
            read_paths.append(parent)
            logger.debug("Added parent directory to read list: %s", parent)

    write_paths = list(options.write_paths)
    for file_path in options.write_files:
        parent = os.path.dirname(file_path) or "."
        if parent not in write_paths:
            write_paths.append(parent)
            logger.debug("Added parent directory to write list: %s", parent)

    if read_paths == options.read_paths and write_paths == options.write_paths:
        return options
    return options.model_copy(update={"read_paths": read_paths, "write_paths": write_paths})


def compile_profile(
    kind: ProfileKind | str,
    options: ProfileOptions,
    params: Mapping[str, Any] | None = None,
) -> str:
    """Render the profile text for ``kind``.

    Args:
        kind: Target profile language
        options: Validated profile options
        params: Substitution context for placeholders in path lists

    Returns:
        Profile text. ``options.custom_profile`` is returned verbatim when set.

    Raises:
        CompilationError: If a path cannot be expressed or rendering fails
    """
    kind = ProfileKind(kind)
    if options.custom_profile:
        logger.debug("Using custom %s profile (%d bytes)", kind, len(options.custom_profile))
        return options.custom_profile

    resolved = options.substituted(params)
    if kind is ProfileKind.SANDBOX_EXEC:
        resolved = _with_parent_folders(_with_canonical_paths(resolved))

    for path in _all_paths(resolved):
        if "\n" in path or "\r" in path or "\0" in path:
            raise CompilationError(f"Path {path!r} cannot appear in a {kind} profile", backend=str(kind))

    if kind is ProfileKind.FIREJAIL and not resolved.unrestricted_network:
        if resolved.bind_ports or resolved.connect_ports:
            logger.warning("firejail cannot allow individual TCP ports; networking stays disabled")

    home = str(Path.home())
    if kind is ProfileKind.SANDBOX_EXEC:
        home = _canonical(home)
    home_paths = [p for p in _all_paths(resolved) if p == home or p.startswith(home + "/")]

    try:
        template = _env.get_template(_TEMPLATES[kind])
        profile = template.render(options=resolved, home=home, home_paths=home_paths)
    except jinja2.TemplateError as e:
        logger.debug("Failed to render %s profile template: %s", kind, e)
        raise CompilationError(f"Failed to render {kind} profile: {e}", backend=str(kind)) from e

    logger.debug("Generated %s profile:\n%s", kind, profile)
    return profile
