"""Cancellation signal shared by batch and interactive execution.

A ``Cancellation`` fires either explicitly (``cancel()``) or when its deadline
passes. Runners check it before spawning anything and watch it while the child
runs; the kind of error raised tells the caller which of the two happened.

Usage:
    cancellation = Cancellation.with_timeout(5)
    output = await runner.run("make test", cancellation=cancellation)
"""

from __future__ import annotations

import asyncio
import time
from typing import Literal

from jailrun.exceptions import (
    CancellationError,
    DeadlineExceededError,
    ExecutionCancelledError,
)


class Cancellation:
    """Explicit-cancel plus optional deadline, bound to the running event loop."""

    def __init__(self, *, deadline: float | None = None) -> None:
        """Create a signal.

        Args:
            deadline: Absolute ``time.monotonic()`` value after which the
                signal counts as fired. None means no deadline.
        """
        self.deadline = deadline
        self._event = asyncio.Event()
        self._cause: Literal["cancelled", "deadline"] | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> Cancellation:
        """Signal that fires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        """Fire the signal. The first cause to happen wins."""
        if self._cause is None:
            self._cause = "deadline" if self._deadline_passed() else "cancelled"
        self._event.set()

    def _deadline_passed(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self._event.is_set() or self._deadline_passed()

    def error(self) -> CancellationError | None:
        """The error describing why the signal fired, or None if it has not."""
        if self._cause is None and self._deadline_passed():
            self._cause = "deadline"
        if self._cause == "cancelled":
            return ExecutionCancelledError("execution cancelled")
        if self._cause == "deadline":
            return DeadlineExceededError("execution deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    async def wait(self) -> CancellationError:
        """Block until the signal fires and return the matching error."""
        remaining = None if self.deadline is None else max(0.0, self.deadline - time.monotonic())
        try:
            async with asyncio.timeout(remaining):
                await self._event.wait()
        except TimeoutError:
            pass
        err = self.error()
        if err is None:
            # loop clock fired a hair before time.monotonic() caught up
            self._cause = "deadline"
            err = DeadlineExceededError("execution deadline exceeded")
        return err
