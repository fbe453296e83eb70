"""Landlock rule compiler with kernel capability negotiation.

Builds a typed, versioned rule set from restriction options, adapts it to
what the running kernel supports, and applies it through the raw Landlock
syscalls (``ctypes``, no helper binary).

Landlock restrictions are permanent and only ever tighten:

- they apply to the calling thread and every process it later spawns
- nothing can lift them, not even the process that applied them
- applying a second rule set intersects it with the first

asyncio spawns children from the event loop thread, so applying a rule set
from a coroutine restricts the loop thread and all later children. Only
apply in-process from code that owns the whole process; otherwise apply in
the child between fork and exec (``PreparedRuleset.enforce`` as
``preexec_fn``).

Usage:
    ruleset = compile_ruleset(options, params).negotiate(detect_abi())
    if not ruleset.is_unrestricted:
        apply_ruleset(ruleset)
"""

from __future__ import annotations

import ctypes
import dataclasses
import functools
import logging
import os
import stat
import sys
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntFlag, StrEnum
from typing import Any

from jailrun.exceptions import CapabilityError, CompilationError
from jailrun.options import RestrictionOptions

logger = logging.getLogger(__name__)

BACKEND = "kernel-restriction"

# Syscall numbers are shared by every architecture that has Landlock
_SYS_LANDLOCK_CREATE_RULESET = 444
_SYS_LANDLOCK_ADD_RULE = 445
_SYS_LANDLOCK_RESTRICT_SELF = 446

_LANDLOCK_CREATE_RULESET_VERSION = 1 << 0
_LANDLOCK_RULE_PATH_BENEATH = 1
_LANDLOCK_RULE_NET_PORT = 2
_PR_SET_NO_NEW_PRIVS = 38
_O_PATH = getattr(os, "O_PATH", 0o10000000)

# First ABI version able to restrict TCP bind/connect
NETWORK_ABI = 4
FILESYSTEM_ABI = 1


class FsAccess(IntFlag):
    """Filesystem access rights (``LANDLOCK_ACCESS_FS_*``)."""

    EXECUTE = 1 << 0
    WRITE_FILE = 1 << 1
    READ_FILE = 1 << 2
    READ_DIR = 1 << 3
    REMOVE_DIR = 1 << 4
    REMOVE_FILE = 1 << 5
    MAKE_CHAR = 1 << 6
    MAKE_DIR = 1 << 7
    MAKE_REG = 1 << 8
    MAKE_SOCK = 1 << 9
    MAKE_FIFO = 1 << 10
    MAKE_BLOCK = 1 << 11
    MAKE_SYM = 1 << 12
    REFER = 1 << 13  # ABI 2
    TRUNCATE = 1 << 14  # ABI 3
    IOCTL_DEV = 1 << 15  # ABI 5


class NetAccess(IntFlag):
    """Network access rights (``LANDLOCK_ACCESS_NET_*``), ABI 4+."""

    BIND_TCP = 1 << 0
    CONNECT_TCP = 1 << 1


# Rights that make sense on a non-directory
_FILE_ACCESS = FsAccess.EXECUTE | FsAccess.WRITE_FILE | FsAccess.READ_FILE | FsAccess.TRUNCATE | FsAccess.IOCTL_DEV

_WRITE_ACCESS = (
    FsAccess.WRITE_FILE
    | FsAccess.REMOVE_DIR
    | FsAccess.REMOVE_FILE
    | FsAccess.MAKE_CHAR
    | FsAccess.MAKE_DIR
    | FsAccess.MAKE_REG
    | FsAccess.MAKE_SOCK
    | FsAccess.MAKE_FIFO
    | FsAccess.MAKE_BLOCK
    | FsAccess.MAKE_SYM
    | FsAccess.REFER
    | FsAccess.TRUNCATE
)


def fs_access_for_abi(abi: int) -> FsAccess:
    """All filesystem rights a kernel with ``abi`` can handle."""
    if abi < 1:
        return FsAccess(0)
    if abi == 1:
        return FsAccess((1 << 13) - 1)
    if abi == 2:
        return FsAccess((1 << 14) - 1)
    if abi < 5:
        return FsAccess((1 << 15) - 1)
    return FsAccess((1 << 16) - 1)


def net_access_for_abi(abi: int) -> NetAccess:
    if abi < NETWORK_ABI:
        return NetAccess(0)
    return NetAccess.BIND_TCP | NetAccess.CONNECT_TCP


class AccessClass(StrEnum):
    """Access granted beneath a directory."""

    READ_ONLY = "read-only"
    READ_EXEC = "read-exec"
    READ_WRITE = "read-write"
    READ_WRITE_EXEC = "read-write-exec"

    def rights(self) -> FsAccess:
        read = FsAccess.READ_FILE | FsAccess.READ_DIR
        if self is AccessClass.READ_ONLY:
            return read
        if self is AccessClass.READ_EXEC:
            return read | FsAccess.EXECUTE
        if self is AccessClass.READ_WRITE:
            return read | _WRITE_ACCESS
        return read | _WRITE_ACCESS | FsAccess.EXECUTE


@dataclass(frozen=True)
class PathRule:
    """Grant ``access`` beneath each of ``paths``."""

    paths: tuple[str, ...]
    access: AccessClass


@dataclass(frozen=True)
class PortRule:
    """Allow binding or connecting to one TCP port."""

    port: int
    access: NetAccess


LandlockRule = PathRule | PortRule


def _abi_for_rights(rights: FsAccess) -> int:
    """Oldest ABI version that handles every right in ``rights``."""
    if rights & FsAccess.IOCTL_DEV:
        return 5
    if rights & FsAccess.TRUNCATE:
        return 3
    if rights & FsAccess.REFER:
        return 2
    return FILESYSTEM_ABI


def _select_abi(rules: tuple[LandlockRule, ...]) -> int:
    """Smallest ABI version that can express ``rules`` (0 when empty).

    Path rules need the version that introduced each right they grant
    (read-write rules grant ``REFER`` and ``TRUNCATE``, so ABI 3); port rules
    need ABI 4.
    """
    abi = 0
    for rule in rules:
        if isinstance(rule, PortRule):
            abi = max(abi, NETWORK_ABI)
        else:
            abi = max(abi, _abi_for_rights(rule.access.rights()))
    return abi


@dataclass(frozen=True)
class LandlockRuleset:
    """Ordered rules plus the ABI version they were compiled for."""

    rules: tuple[LandlockRule, ...] = ()
    abi: int = 0
    best_effort: bool = False

    @property
    def is_unrestricted(self) -> bool:
        """True when there is nothing to enforce; skip ``apply_ruleset``."""
        return not self.rules

    @property
    def path_rules(self) -> list[PathRule]:
        return [rule for rule in self.rules if isinstance(rule, PathRule)]

    @property
    def port_rules(self) -> list[PortRule]:
        return [rule for rule in self.rules if isinstance(rule, PortRule)]

    @property
    def handled_fs(self) -> FsAccess:
        """Filesystem rights this ruleset restricts."""
        if not self.path_rules:
            return FsAccess(0)
        return fs_access_for_abi(self.abi)

    @property
    def handled_net(self) -> NetAccess:
        """Network rights this ruleset restricts."""
        if not self.port_rules:
            return NetAccess(0)
        return net_access_for_abi(self.abi)

    def negotiate(self, kernel_abi: int) -> LandlockRuleset:
        """Adapt to a kernel that supports ABI ``kernel_abi`` (0 = no Landlock).

        Returns self when the kernel is new enough. With ``best_effort``,
        rights and rule types the kernel lacks are dropped, down to an empty
        (unrestricted) ruleset when Landlock is missing entirely.

        Raises:
            CompilationError: If the kernel is too old and best effort is off
        """
        if self.is_unrestricted or kernel_abi >= self.abi:
            return self

        if not self.best_effort:
            available = f"ABI {kernel_abi}" if kernel_abi > 0 else "no Landlock support"
            raise CompilationError(
                f"Landlock ABI {self.abi} required but the kernel provides {available}",
                backend=BACKEND,
            )

        if kernel_abi <= 0:
            logger.warning("Landlock is not available on this kernel; running without restrictions (best effort)")
            return dataclasses.replace(self, rules=(), abi=0)

        rules = self.rules
        if kernel_abi < NETWORK_ABI and self.port_rules:
            logger.warning(
                "Kernel Landlock ABI %d cannot restrict TCP ports; dropping %d network rule(s) (best effort)",
                kernel_abi,
                len(self.port_rules),
            )
            rules = tuple(rule for rule in rules if not isinstance(rule, PortRule))

        fs_abi = _select_abi(tuple(self.path_rules))
        if kernel_abi < fs_abi:
            logger.warning(
                "Kernel Landlock ABI %d lacks filesystem rights introduced in ABI %d; "
                "degrading filesystem rights (best effort)",
                kernel_abi,
                fs_abi,
            )

        negotiated = dataclasses.replace(self, rules=rules, abi=min(_select_abi(rules), kernel_abi))
        logger.debug("Negotiated Landlock ruleset from ABI %d down to ABI %d", self.abi, negotiated.abi)
        return negotiated


def compile_ruleset(
    options: RestrictionOptions,
    params: Mapping[str, Any] | None = None,
) -> LandlockRuleset:
    """Build the ruleset for ``options`` after substituting ``params``.

    Filesystem (unless unrestricted): read-write on ``/dev`` and ``/tmp``,
    then one rule per non-empty path list. Network (unless unrestricted):
    one rule per bind port, then one per connect port.
    """
    resolved = options.substituted(params)
    rules: list[LandlockRule] = []

    if not resolved.unrestricted_filesystem:
        logger.debug("Adding read-write access to /dev and /tmp for system operations")
        rules.append(PathRule(("/dev", "/tmp"), AccessClass.READ_WRITE))
        for paths, access in (
            (resolved.read_paths, AccessClass.READ_ONLY),
            (resolved.read_exec_paths, AccessClass.READ_EXEC),
            (resolved.write_paths, AccessClass.READ_WRITE),
            (resolved.write_exec_paths, AccessClass.READ_WRITE_EXEC),
        ):
            if paths:
                logger.debug("Adding %s access to: %s", access, paths)
                rules.append(PathRule(tuple(paths), access))

    if not resolved.unrestricted_network:
        for port in resolved.bind_ports:
            logger.debug("Adding TCP bind permission for port: %d", port)
            rules.append(PortRule(port, NetAccess.BIND_TCP))
        for port in resolved.connect_ports:
            logger.debug("Adding TCP connect permission for port: %d", port)
            rules.append(PortRule(port, NetAccess.CONNECT_TCP))

    frozen = tuple(rules)
    return LandlockRuleset(rules=frozen, abi=_select_abi(frozen), best_effort=resolved.best_effort)


# =============================================================================
# SYSCALLS
# =============================================================================


class _RulesetAttr(ctypes.Structure):
    _fields_ = [
        ("handled_access_fs", ctypes.c_uint64),
        ("handled_access_net", ctypes.c_uint64),
        ("scoped", ctypes.c_uint64),
    ]


class _PathBeneathAttr(ctypes.Structure):
    _pack_ = 1
    _fields_ = [
        ("allowed_access", ctypes.c_uint64),
        ("parent_fd", ctypes.c_int32),
    ]


class _NetPortAttr(ctypes.Structure):
    _fields_ = [
        ("allowed_access", ctypes.c_uint64),
        ("port", ctypes.c_uint64),
    ]


@functools.cache
def _libc() -> ctypes.CDLL:
    libc = ctypes.CDLL(None, use_errno=True)
    libc.syscall.restype = ctypes.c_long
    libc.prctl.restype = ctypes.c_int
    return libc


def _syscall(number: int, *args: Any) -> int:
    return _libc().syscall(ctypes.c_long(number), *args)


def _last_oserror(what: str) -> OSError:
    err = ctypes.get_errno()
    return OSError(err, f"{what}: {os.strerror(err)}")


def detect_abi() -> int:
    """Landlock ABI version of the running kernel, 0 when unavailable.

    Only queries the version; nothing is restricted.
    """
    if not sys.platform.startswith("linux"):
        return 0
    try:
        version = _syscall(
            _SYS_LANDLOCK_CREATE_RULESET,
            None,
            ctypes.c_size_t(0),
            ctypes.c_uint32(_LANDLOCK_CREATE_RULESET_VERSION),
        )
    except (OSError, AttributeError) as e:
        logger.debug("Landlock version query unavailable: %s", e)
        return 0
    if version < 0:
        logger.debug("Landlock version query failed: %s", os.strerror(ctypes.get_errno()))
        return 0
    return int(version)


class PreparedRuleset:
    """A ruleset loaded into the kernel, ready to enforce.

    ``enforce`` performs only two syscalls and no logging or allocation
    beyond ctypes, so it can run in a child between fork and exec.
    """

    def __init__(self, fd: int, ruleset: LandlockRuleset) -> None:
        self.fd = fd
        self.ruleset = ruleset

    def enforce(self) -> None:
        """Restrict the calling thread (and its future children).

        Raises:
            OSError: If the kernel refused either step
        """
        if _libc().prctl(_PR_SET_NO_NEW_PRIVS, 1, 0, 0, 0) != 0:
            raise _last_oserror("prctl(PR_SET_NO_NEW_PRIVS)")
        if _syscall(_SYS_LANDLOCK_RESTRICT_SELF, ctypes.c_int(self.fd), ctypes.c_uint32(0)) != 0:
            raise _last_oserror("landlock_restrict_self")

    def close(self) -> None:
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1


def _add_path_rule(ruleset_fd: int, path: str, rights: FsAccess, handled: FsAccess, best_effort: bool) -> None:
    try:
        path_fd = os.open(path, _O_PATH | os.O_CLOEXEC)
    except OSError as e:
        if best_effort:
            logger.warning("Skipping Landlock rule for %s: %s (best effort)", path, e)
            return
        raise CompilationError(f"Cannot open {path!r} for a Landlock rule: {e}", backend=BACKEND) from e

    try:
        allowed = rights & handled
        if not stat.S_ISDIR(os.fstat(path_fd).st_mode):
            allowed &= _FILE_ACCESS
        attr = _PathBeneathAttr(allowed_access=int(allowed), parent_fd=path_fd)
        rc = _syscall(
            _SYS_LANDLOCK_ADD_RULE,
            ctypes.c_int(ruleset_fd),
            ctypes.c_int(_LANDLOCK_RULE_PATH_BENEATH),
            ctypes.byref(attr),
            ctypes.c_uint32(0),
        )
        if rc != 0:
            raise CompilationError(str(_last_oserror(f"landlock_add_rule({path})")), backend=BACKEND)
    finally:
        os.close(path_fd)


def _add_port_rule(ruleset_fd: int, rule: PortRule) -> None:
    attr = _NetPortAttr(allowed_access=int(rule.access), port=rule.port)
    rc = _syscall(
        _SYS_LANDLOCK_ADD_RULE,
        ctypes.c_int(ruleset_fd),
        ctypes.c_int(_LANDLOCK_RULE_NET_PORT),
        ctypes.byref(attr),
        ctypes.c_uint32(0),
    )
    if rc != 0:
        raise CompilationError(str(_last_oserror(f"landlock_add_rule(port {rule.port})")), backend=BACKEND)


def prepare_ruleset(ruleset: LandlockRuleset) -> PreparedRuleset:
    """Create the kernel ruleset object and add every rule to it.

    The caller owns the returned object and must ``close()`` it.

    Raises:
        CapabilityError: If the kernel refuses to create a ruleset
        CompilationError: If a path is missing (without best effort) or a
            rule is rejected
    """
    attr = _RulesetAttr(
        handled_access_fs=int(ruleset.handled_fs),
        handled_access_net=int(ruleset.handled_net),
        scoped=0,
    )
    fd = _syscall(
        _SYS_LANDLOCK_CREATE_RULESET,
        ctypes.byref(attr),
        ctypes.c_size_t(ctypes.sizeof(attr)),
        ctypes.c_uint32(0),
    )
    if fd < 0:
        raise CapabilityError(str(_last_oserror("landlock_create_ruleset")), backend=BACKEND)

    prepared = PreparedRuleset(int(fd), ruleset)
    try:
        for rule in ruleset.rules:
            if isinstance(rule, PathRule):
                for path in rule.paths:
                    _add_path_rule(prepared.fd, path, rule.access.rights(), ruleset.handled_fs, ruleset.best_effort)
            else:
                _add_port_rule(prepared.fd, rule)
    except BaseException:
        prepared.close()
        raise

    logger.debug(
        "Prepared Landlock ruleset (ABI %d, %d rules, fs=%#x, net=%#x)",
        ruleset.abi,
        len(ruleset.rules),
        int(ruleset.handled_fs),
        int(ruleset.handled_net),
    )
    return prepared


def apply_ruleset(ruleset: LandlockRuleset) -> None:
    """Irreversibly restrict the calling thread and its future children.

    An unrestricted ruleset is a no-op.

    Raises:
        CapabilityError: If the kernel refuses to enforce the ruleset
        CompilationError: See ``prepare_ruleset``
    """
    if ruleset.is_unrestricted:
        logger.debug("Landlock ruleset is empty; nothing to apply")
        return

    prepared = prepare_ruleset(ruleset)
    try:
        logger.debug("Applying Landlock restrictions with %d rules", len(ruleset.rules))
        prepared.enforce()
    except OSError as e:
        raise CapabilityError(f"Failed to apply Landlock restrictions: {e}", backend=BACKEND) from e
    finally:
        prepared.close()


# =============================================================================
# PROCESS-WIDE TOKEN
# =============================================================================

_process_owner: object | None = None
_owner_lock = threading.Lock()

# asyncio's threaded child watcher names its reaper threads this way
_CHILD_WATCHER_PREFIX = "waitpid-"


def _other_threads() -> list[threading.Thread]:
    """Live threads besides the caller, ignoring asyncio child reapers."""
    current = threading.current_thread()
    return [
        thread
        for thread in threading.enumerate()
        if thread is not current and not thread.name.startswith(_CHILD_WATCHER_PREFIX)
    ]


def claim_process_restriction(owner: object) -> None:
    """Reserve in-process restriction for ``owner``.

    Only one owner may ever restrict the hosting process. The owner may
    claim again (its restrictions accumulate); anybody else is refused.
    Landlock restricts the calling thread only, so the claim is also refused
    while other threads (executor workers, for instance) are alive.

    Raises:
        CapabilityError: If another owner already restricted this process,
            or other threads would stay unrestricted
    """
    global _process_owner
    others = _other_threads()
    if others:
        raise CapabilityError(
            f"{len(others)} other thread(s) are running and would stay unrestricted "
            f"({', '.join(thread.name for thread in others)}); use isolation='subprocess'",
            backend=BACKEND,
        )
    with _owner_lock:
        if _process_owner is None:
            _process_owner = owner
            return
        if _process_owner is owner:
            return
    raise CapabilityError(
        "This process is already restricted by another Landlock runner; use isolation='subprocess'",
        backend=BACKEND,
    )
