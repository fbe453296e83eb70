"""Tests for the Cancellation signal."""

import asyncio
import time

import pytest

from jailrun.cancellation import Cancellation
from jailrun.exceptions import DeadlineExceededError, ExecutionCancelledError


class TestCancellationState:
    def test_fresh_signal_not_done(self):
        cancellation = Cancellation()
        assert cancellation.done is False
        assert cancellation.error() is None
        cancellation.raise_if_done()

    def test_explicit_cancel(self):
        cancellation = Cancellation()
        cancellation.cancel()
        assert cancellation.done is True
        assert isinstance(cancellation.error(), ExecutionCancelledError)
        with pytest.raises(ExecutionCancelledError):
            cancellation.raise_if_done()

    def test_expired_deadline(self):
        cancellation = Cancellation.with_timeout(0)
        assert cancellation.done is True
        with pytest.raises(DeadlineExceededError):
            cancellation.raise_if_done()

    def test_cancel_after_deadline_reports_deadline(self):
        cancellation = Cancellation(deadline=time.monotonic() - 1)
        cancellation.cancel()
        assert isinstance(cancellation.error(), DeadlineExceededError)

    def test_first_cause_wins(self):
        cancellation = Cancellation(deadline=time.monotonic() + 0.01)
        cancellation.cancel()
        time.sleep(0.02)
        assert isinstance(cancellation.error(), ExecutionCancelledError)

    def test_cancel_is_idempotent(self):
        cancellation = Cancellation()
        cancellation.cancel()
        cancellation.cancel()
        assert isinstance(cancellation.error(), ExecutionCancelledError)


class TestCancellationWait:
    async def test_wait_returns_on_cancel(self):
        cancellation = Cancellation()
        waiter = asyncio.ensure_future(cancellation.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        cancellation.cancel()
        error = await asyncio.wait_for(waiter, timeout=1)
        assert isinstance(error, ExecutionCancelledError)

    async def test_wait_returns_on_deadline(self):
        cancellation = Cancellation.with_timeout(0.05)
        error = await asyncio.wait_for(cancellation.wait(), timeout=2)
        assert isinstance(error, DeadlineExceededError)
        assert cancellation.done is True

    async def test_wait_on_already_fired(self):
        cancellation = Cancellation()
        cancellation.cancel()
        error = await asyncio.wait_for(cancellation.wait(), timeout=1)
        assert isinstance(error, ExecutionCancelledError)
