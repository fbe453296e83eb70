"""Runner backends.

One Runner per isolation mechanism, all sharing the contract in
``jailrun.runners.base``.
"""

from jailrun.runners.base import Runner
from jailrun.runners.container import ContainerRunner
from jailrun.runners.exec import ExecRunner
from jailrun.runners.firejail import FirejailRunner
from jailrun.runners.landlock import LandlockRunner
from jailrun.runners.profile import ProfileRunner
from jailrun.runners.sandbox_exec import SandboxExecRunner

__all__ = [
    "ContainerRunner",
    "ExecRunner",
    "FirejailRunner",
    "LandlockRunner",
    "ProfileRunner",
    "Runner",
    "SandboxExecRunner",
]
