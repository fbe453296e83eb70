"""jailrun: run commands under interchangeable isolation backends.

One contract (``Runner``) with batch and interactive execution, backed by
plain exec, macOS sandbox-exec, firejail, Landlock or a container engine.
"""

from jailrun.cancellation import Cancellation
from jailrun.exceptions import (
    CancellationError,
    CapabilityError,
    CompilationError,
    ConfigurationError,
    DeadlineExceededError,
    ExecutionCancelledError,
    ExecutionError,
    LaunchError,
    RunnerError,
)
from jailrun.launcher import ExecutionHandle
from jailrun.registry import build_runner, create_runner
from jailrun.runners import Runner

__version__ = "0.1.0"

__all__ = [
    "Cancellation",
    "CancellationError",
    "CapabilityError",
    "CompilationError",
    "ConfigurationError",
    "DeadlineExceededError",
    "ExecutionCancelledError",
    "ExecutionError",
    "ExecutionHandle",
    "LaunchError",
    "Runner",
    "RunnerError",
    "__version__",
    "build_runner",
    "create_runner",
]
