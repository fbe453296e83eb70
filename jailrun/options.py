"""Declarative restriction options for every backend.

Each backend reads a generic key/value map (the keys users write in their
tool configuration) and validates it into one of the models below. Models
are immutable; per-call template substitution returns an updated copy.

Default posture is inherited from the wrapped mechanism and deliberately not
unified: an empty map means "allow everything" for exec, firejail and
containers, and "deny everything but the baseline" for sandbox-exec and
Landlock.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Annotated, Any, Literal, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from jailrun.exceptions import ConfigurationError
from jailrun.templating import process_template, process_template_list

Port = Annotated[int, Field(ge=0, le=65535)]

_PATH_FIELDS = ("read_paths", "read_exec_paths", "write_paths", "write_exec_paths")


class LandlockIsolation(StrEnum):
    """Where Landlock restrictions are applied."""

    PROCESS = "process"  # the hosting process itself, permanently
    SUBPROCESS = "subprocess"  # each child between fork and exec


class RunnerOptions(BaseModel):
    """Options understood by every backend."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    shell: str = Field(default="", description="Shell used to interpret commands")


class ExecOptions(RunnerOptions):
    """Options for the unrestricted exec backend."""


class RestrictionOptions(RunnerOptions):
    """Typed description of what a sandboxed command may access."""

    read_paths: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_read_folders", "read_paths"),
        description="Directories readable by the command",
    )
    read_exec_paths: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_read_exec_folders", "read_exec_paths"),
        description="Directories readable and executable by the command",
    )
    write_paths: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_write_folders", "write_paths"),
        description="Directories readable and writable by the command",
    )
    write_exec_paths: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_write_exec_folders", "write_exec_paths"),
        description="Directories readable, writable and executable by the command",
    )

    bind_ports: list[Port] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_bind_tcp", "bind_ports"),
        description="TCP ports the command may bind",
    )
    connect_ports: list[Port] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_connect_tcp", "connect_ports"),
        description="TCP ports the command may connect to",
    )

    unrestricted_filesystem: bool = Field(
        default=False,
        description="Ignore the path lists and leave the filesystem unrestricted",
    )
    unrestricted_network: bool = Field(
        default=False,
        validation_alias=AliasChoices("allow_networking", "unrestricted_network"),
        description="Ignore the port lists and leave the network unrestricted",
    )
    best_effort: bool = Field(
        default=False,
        description="Degrade to what the host supports instead of failing",
    )

    def substituted(self, params: Mapping[str, Any] | None) -> RestrictionOptions:
        """Copy with every path list passed through template substitution."""
        if not params:
            return self
        update = {name: process_template_list(getattr(self, name), params) for name in self._path_fields()}
        return self.model_copy(update=update)

    def _path_fields(self) -> tuple[str, ...]:
        return _PATH_FIELDS


class ProfileOptions(RestrictionOptions):
    """Options for the text-profile backends (sandbox-exec and firejail)."""

    allow_user_folders: bool = Field(
        default=False,
        description="Expose the user's home directory",
    )
    read_files: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_read_files", "read_files"),
        description="Individual files readable by the command",
    )
    write_files: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allow_write_files", "write_files"),
        description="Individual files writable by the command",
    )
    custom_profile: str = Field(
        default="",
        description="Complete profile text that replaces the generated one",
    )

    def _path_fields(self) -> tuple[str, ...]:
        return _PATH_FIELDS + ("read_files", "write_files")


class SandboxExecOptions(ProfileOptions):
    """Options for the macOS sandbox-exec backend."""


class FirejailOptions(ProfileOptions):
    """Options for the firejail backend."""


class LandlockOptions(RestrictionOptions):
    """Options for the Landlock kernel-restriction backend.

    TCP is only restricted when port rules are given; with none, networking
    stays open regardless of ``allow_networking``.
    """

    isolation: LandlockIsolation = Field(
        default=LandlockIsolation.PROCESS,
        description="Restrict the hosting process or each child process",
    )


class ContainerOptions(RunnerOptions):
    """Options for the container backend.

    Networking is allowed unless ``allow_networking`` is false, matching the
    engine's own default.
    """

    image: str = Field(..., min_length=1, description="Container image to run")
    engine: Literal["docker", "podman"] | None = Field(
        default=None,
        description="Container engine CLI (defaults to settings.container_engine)",
    )
    docker_run_opts: str = Field(default="", description="Extra raw `run` options")
    mounts: list[str] = Field(default_factory=list, description="hostpath:containerpath[:mode]")
    allow_networking: bool = Field(default=True)
    network: str = Field(default="", description="Network to attach when networking is allowed")
    user: str = ""
    workdir: str = ""
    prepare_command: str = Field(default="", description="Shell snippet run before the command")

    # Resource limits, passed through to the engine
    memory: str = ""
    memory_reservation: str = ""
    memory_swap: str = ""
    memory_swappiness: int = Field(default=-1, ge=-1, le=100)

    cap_add: list[str] = Field(default_factory=list)
    cap_drop: list[str] = Field(default_factory=list)
    dns: list[str] = Field(default_factory=list)
    dns_search: list[str] = Field(default_factory=list)
    platform: str = ""

    def substituted(self, params: Mapping[str, Any] | None) -> ContainerOptions:
        """Copy with mounts and workdir passed through template substitution."""
        if not params:
            return self
        return self.model_copy(
            update={
                "mounts": process_template_list(self.mounts, params),
                "workdir": process_template(self.workdir, params),
            }
        )


OptionsT = TypeVar("OptionsT", bound=RunnerOptions)


def parse_options(
    model: type[OptionsT],
    options: Mapping[str, Any] | None,
    *,
    backend: str | None = None,
) -> OptionsT:
    """Validate a generic option map into ``model``.

    Unknown keys are ignored. The first validation problem is reported as a
    ConfigurationError naming the offending key.

    Raises:
        ConfigurationError: If a value has the wrong type or a required key is missing
    """
    try:
        return model.model_validate(dict(options or {}))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        prefix = f"{backend} " if backend else ""
        msg = f"Invalid {prefix}option '{field}': {first['msg']}"
        raise ConfigurationError(msg, field=field) from exc
