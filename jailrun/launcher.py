"""Command launcher shared by every backend.

Wraps ``asyncio.create_subprocess_exec`` for the two execution modes:

- batch (``run_captured``): run to completion, return stripped stdout or raise
- interactive (``start_piped``): return an ``ExecutionHandle`` with live pipes
  and a completion coroutine that reclaims the process and any transient
  resources the backend registered

Backends wrap the argv in their enforcement tool before handing it over;
nothing in here knows about policies.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import shlex
import shutil
import signal
import stat
import subprocess
import tempfile
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from jailrun.cancellation import Cancellation
from jailrun.exceptions import CancellationError, ExecutionError, LaunchError
from jailrun.settings import get_settings

logger = logging.getLogger(__name__)

Environment = Sequence[str] | Mapping[str, str] | None
Cleanup = Callable[[], Awaitable[None] | None]
PreExec = Callable[[], Any] | None

# Anything here means the command needs a shell to interpret it
_SHELL_METACHARACTERS = frozenset(" \t|&;<>(){}[]$`'\"\n")

TEMP_PREFIX = "jailrun-"

# How long to keep draining output after killing a cancelled child
PIPE_DRAIN_GRACE_SECONDS = 1.0


# =============================================================================
# SHELL HELPERS
# =============================================================================


def get_shell(configured: str | None = None) -> str:
    """Pick the shell: explicit value, settings.default_shell, $SHELL, then /bin/sh."""
    if configured:
        return configured
    default_shell = get_settings().default_shell
    if default_shell:
        return default_shell
    return os.environ.get("SHELL") or "/bin/sh"


def is_powershell(shell: str) -> bool:
    shell_lower = shell.lower()
    return "powershell" in shell_lower or shell_lower.endswith("pwsh") or shell_lower.endswith("pwsh.exe")


def build_shell_command(shell: str, command: str) -> list[str]:
    """Argument vector that makes ``shell`` interpret ``command``."""
    if is_powershell(shell):
        return [shell, "-Command", command]
    return [shell, "-c", command]


def is_single_executable_command(command: str) -> bool:
    """Check whether ``command`` is one bare executable that can skip the shell.

    True only for a single token without whitespace or shell metacharacters
    that is either an executable file path or found on PATH.
    """
    cmd = command.strip()
    if not cmd or any(ch in _SHELL_METACHARACTERS for ch in cmd):
        return False
    if cmd.startswith(("/", ".")):
        try:
            info = os.stat(cmd)
        except OSError:
            return False
        return not stat.S_ISDIR(info.st_mode) and bool(info.st_mode & 0o111)
    return shutil.which(cmd) is not None


def build_environment(env: Environment) -> dict[str, str] | None:
    """Layer ``KEY=VALUE`` entries (or a mapping) over the current environment.

    Returns None when there is nothing to add so the child simply inherits.
    """
    if not env:
        return None
    merged = dict(os.environ)
    if isinstance(env, Mapping):
        merged.update(env)
        count = len(env)
    else:
        count = 0
        for entry in env:
            key, sep, value = entry.partition("=")
            if not sep or not key:
                logger.warning("Ignoring malformed environment entry %r (expected KEY=VALUE)", entry)
                continue
            merged[key] = value
            count += 1
    logger.debug("Adding %d environment variables to command", count)
    return merged


# =============================================================================
# TRANSIENT FILES
# =============================================================================


def write_temp_file(
    content: str,
    *,
    kind: str,
    suffix: str = "",
    executable: bool = False,
    directory: Path | None = None,
) -> Path:
    """Write ``content`` to a fresh temp file and return its path.

    The file goes into ``directory`` when given, else settings.temp_dir
    (system default when unset). The caller owns the file and must remove
    it with ``remove_path``.
    """
    fd, name = tempfile.mkstemp(
        prefix=f"{TEMP_PREFIX}{kind}-",
        suffix=suffix,
        dir=directory or get_settings().temp_dir,
    )
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        path.chmod(0o700 if executable else 0o600)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    logger.debug("Created temporary %s file at: %s", kind, path)
    return path


def make_temp_dir(kind: str) -> Path:
    return Path(tempfile.mkdtemp(prefix=f"{TEMP_PREFIX}{kind}-", dir=get_settings().temp_dir))


def remove_path(path: Path) -> None:
    """Remove a temp file or directory, logging (never raising) on failure."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove temporary path %s: %s", path, e)


async def run_cleanup(cleanup: Sequence[Cleanup]) -> None:
    """Run cleanup callbacks in order; failures are logged and never raised."""
    for callback in cleanup:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Cleanup step %r failed: %s", callback, e)


# =============================================================================
# PROCESS CONTROL
# =============================================================================


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass


def _close_transport(process: asyncio.subprocess.Process) -> None:
    # Process exposes no public handle on its transport
    transport = getattr(process, "_transport", None)
    if transport is not None and not transport.is_closing():
        transport.close()


async def _release_transport(process: asyncio.subprocess.Process) -> None:
    """Close the transport of an exited child once its pipes are read in.

    asyncio closes it by itself when every pipe reached EOF; undrained or
    inherited pipes would keep it, and its file descriptors, open.
    """
    transport = getattr(process, "_transport", None)
    if transport is None:
        return
    loop = asyncio.get_running_loop()
    deadline = loop.time() + PIPE_DRAIN_GRACE_SECONDS
    while not transport.is_closing() and loop.time() < deadline:
        await asyncio.sleep(0.01)
    if not transport.is_closing():
        logger.debug("Pipes of PID %s still open after exit; closing them", process.pid)
        _close_transport(process)


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"killed by signal {signal.Signals(-returncode).name}"
        except ValueError:
            return f"killed by signal {-returncode}"
    return f"exit status {returncode}"


async def _spawn(
    argv: Sequence[str],
    *,
    env: Environment,
    cwd: str | os.PathLike[str] | None,
    stdin: int,
    preexec_fn: PreExec,
) -> asyncio.subprocess.Process:
    logger.debug("Created command: %s", shlex.join(argv))
    kwargs: dict[str, Any] = {}
    if preexec_fn is not None:
        kwargs["preexec_fn"] = preexec_fn
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=build_environment(env),
            cwd=cwd,
            **kwargs,
        )
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        raise LaunchError(f"failed to start command {argv[0]!r}: {e}") from e


async def _communicate(
    process: asyncio.subprocess.Process,
    cancellation: Cancellation | None,
) -> tuple[bytes, bytes]:
    communicate = asyncio.ensure_future(process.communicate())
    waiter = asyncio.ensure_future(cancellation.wait()) if cancellation is not None else None
    pending = {communicate} if waiter is None else {communicate, waiter}
    try:
        done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        _kill(process)
        communicate.cancel()
        if waiter is not None:
            waiter.cancel()
        raise

    if waiter is None or communicate in done:
        if waiter is not None:
            waiter.cancel()
        return communicate.result()

    # Cancellation fired first
    error: CancellationError = waiter.result()
    logger.debug("Cancellation fired, killing PID %s: %s", process.pid, error)
    _kill(process)
    try:
        # A surviving grandchild can hold the pipes open indefinitely
        await asyncio.wait_for(communicate, timeout=PIPE_DRAIN_GRACE_SECONDS)
    except TimeoutError:
        logger.debug("Output pipes of PID %s still open after kill; abandoning them", process.pid)
        _close_transport(process)
    raise error


async def run_captured(
    argv: Sequence[str],
    *,
    env: Environment = None,
    cwd: str | os.PathLike[str] | None = None,
    cancellation: Cancellation | None = None,
    preexec_fn: PreExec = None,
) -> str:
    """Run ``argv`` to completion and return its stdout stripped of whitespace.

    Args:
        argv: Full argument vector (already wrapped by the backend)
        env: Extra environment, ``KEY=VALUE`` entries or a mapping
        cwd: Working directory for the child
        cancellation: Signal that kills the child when it fires
        preexec_fn: Callable run in the child between fork and exec

    Returns:
        Standard output, stripped

    Raises:
        CancellationError: If the signal fired before or during execution
        LaunchError: If the process could not be started
        ExecutionError: If the process exited nonzero (stderr as message when present)
    """
    if cancellation is not None:
        cancellation.raise_if_done()

    process = await _spawn(argv, env=env, cwd=cwd, stdin=asyncio.subprocess.DEVNULL, preexec_fn=preexec_fn)
    logger.debug("Executing command (PID %s)", process.pid)
    stdout_bytes, stderr_bytes = await _communicate(process, cancellation)

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
    returncode = process.returncode if process.returncode is not None else -1

    if returncode != 0:
        if stderr:
            logger.debug("Command failed with stderr: %s", stderr)
            raise ExecutionError(stderr, exit_code=returncode, stderr=stderr)
        logger.debug("Command failed: %s", _describe_exit(returncode))
        raise ExecutionError(f"command failed: {_describe_exit(returncode)}", exit_code=returncode)

    output = stdout.strip()
    logger.debug("Command executed successfully, output length: %d bytes", len(output))
    if stderr:
        logger.debug("Command generated stderr (but no error): %s", stderr)
    return output


# =============================================================================
# INTERACTIVE MODE
# =============================================================================


class ExecutionHandle:
    """Live pipes of an interactive child plus its completion coroutine.

    Lifecycle:
        1. Write to ``stdin`` as needed, then close it (``wait`` closes it too)
        2. Drain ``stdout``/``stderr``, concurrently if the child is chatty;
           an undrained pipe that fills up blocks the child forever
        3. ``await wait()`` exactly once to reap the process and release
           backend resources (temp profiles, containers), even after
           cancellation or when nothing was written

    ``wait`` is safe to await again: later calls return the first outcome.

    Usage:
        async with await runner.run_with_pipes("cat") as handle:
            handle.stdin.write(b"abc\\n")
            handle.stdin.close()
            data = await handle.stdout.read()
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        cancellation: Cancellation | None = None,
        cleanup: Sequence[Cleanup] = (),
        description: str = "",
    ) -> None:
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise ValueError("ExecutionHandle needs a process started with stdin, stdout and stderr pipes")
        self.process = process
        self.stdin: asyncio.StreamWriter = process.stdin
        self.stdout: asyncio.StreamReader = process.stdout
        self.stderr: asyncio.StreamReader = process.stderr
        self.description = description
        self._cleanup = list(cleanup)
        self._cancellation = cancellation
        self._cancel_error: CancellationError | None = None
        self._completion: asyncio.Future[int] | None = None
        self._watcher: asyncio.Task[None] | None = None
        if cancellation is not None:
            self._watcher = asyncio.ensure_future(self._watch(cancellation))

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    async def _watch(self, cancellation: Cancellation) -> None:
        error = await cancellation.wait()
        if self.process.returncode is None:
            logger.debug("Cancellation fired, killing %s (PID %s): %s", self.description, self.pid, error)
            self._cancel_error = error
            _kill(self.process)

    def _close_stdin(self) -> None:
        if not self.stdin.is_closing():
            try:
                self.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def _complete(self) -> int:
        logger.debug("Waiting for %s to complete", self.description or "command")
        self._close_stdin()
        try:
            returncode = await self.process.wait()
        finally:
            if self._watcher is not None:
                self._watcher.cancel()
            await run_cleanup(self._cleanup)
            await _release_transport(self.process)

        if self._cancel_error is not None:
            raise self._cancel_error
        if returncode != 0:
            logger.debug("%s completed with %s", self.description or "Command", _describe_exit(returncode))
            raise ExecutionError(f"command failed: {_describe_exit(returncode)}", exit_code=returncode)
        logger.debug("%s completed successfully", self.description or "Command")
        return returncode

    async def wait(self) -> int:
        """Wait for exit, release resources and return the exit status (0).

        Raises:
            CancellationError: If the cancellation signal killed the child
            ExecutionError: If the child exited nonzero
        """
        if self._completion is None:
            self._completion = asyncio.ensure_future(self._complete())
        return await asyncio.shield(self._completion)

    async def __aenter__(self) -> ExecutionHandle:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            _kill(self.process)
            try:
                await self.wait()
            except Exception as e:
                logger.debug("Ignoring completion error while unwinding: %s", e)
            return
        await self.wait()


async def start_piped(
    argv: Sequence[str],
    *,
    env: Environment = None,
    cwd: str | os.PathLike[str] | None = None,
    cancellation: Cancellation | None = None,
    cleanup: Sequence[Cleanup] = (),
    preexec_fn: PreExec = None,
    description: str = "",
) -> ExecutionHandle:
    """Start ``argv`` with stdin/stdout/stderr pipes.

    ``cleanup`` callbacks belong to the handle once this returns; if starting
    fails they are run here before the error propagates.

    Raises:
        CancellationError: If the signal already fired (nothing is spawned)
        LaunchError: If the process could not be started
    """
    try:
        if cancellation is not None:
            cancellation.raise_if_done()
        process = await _spawn(argv, env=env, cwd=cwd, stdin=asyncio.subprocess.PIPE, preexec_fn=preexec_fn)
    except BaseException:
        await run_cleanup(cleanup)
        raise

    logger.debug("%s started with PID %s", description or "Command", process.pid)
    return ExecutionHandle(process, cancellation=cancellation, cleanup=cleanup, description=description)
