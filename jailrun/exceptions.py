"""jailrun exception hierarchy.

Base exceptions for every layer of the runner stack with correlation ID support.

Usage:
    from jailrun.exceptions import CapabilityError, ConfigurationError

    try:
        runner = await build_runner("kernel-restriction", options)
    except ConfigurationError as e:
        logger.error("Bad options for %s: %s", e.field, e)
    except CapabilityError as e:
        logger.error("Backend %s unavailable (correlation_id=%s)", e.backend, e.correlation_id)
"""

import uuid


class RunnerError(Exception):
    """Base exception for all jailrun errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class ConfigurationError(RunnerError):
    """Invalid runner options or unknown backend identifier.

    Raised at construction time, before anything touches the OS.
    """

    def __init__(self, message: str, *, field: str | None = None, **kwargs):
        self.field = field
        super().__init__(message, **kwargs)


class CapabilityError(RunnerError):
    """The host cannot run the requested backend.

    Wrong OS, missing external tool, unreachable container daemon or an
    absent enforcement mechanism.
    """

    def __init__(self, message: str, *, backend: str | None = None, **kwargs):
        self.backend = backend
        super().__init__(message, **kwargs)


class CompilationError(RunnerError):
    """A restriction policy could not be turned into an enforcement artifact."""

    def __init__(self, message: str, *, backend: str | None = None, **kwargs):
        self.backend = backend
        super().__init__(message, **kwargs)


class LaunchError(RunnerError):
    """The child process could not be started."""

    pass


class ExecutionError(RunnerError):
    """The command ran and exited with a nonzero status."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        **kwargs,
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, **kwargs)


class CancellationError(RunnerError):
    """Execution was stopped by its cancellation signal."""

    pass


class ExecutionCancelledError(CancellationError):
    """The cancellation signal was fired explicitly."""

    pass


class DeadlineExceededError(CancellationError):
    """The cancellation signal's deadline passed."""

    pass
