"""Unit-test conftest: guard against irreversible host restriction.

Unit tests must never apply a Landlock ruleset to the test process itself;
that would restrict every later test. Any code path that reaches the real
``enforce`` step fails loudly instead. Tests that need real enforcement live
in ``tests/integration/`` and run it in throwaway interpreters.
"""

from __future__ import annotations

import pytest

from jailrun.policy import landlock


@pytest.fixture(autouse=True)
def _no_host_restriction(monkeypatch: pytest.MonkeyPatch) -> None:
    def _guarded_enforce(self):
        raise RuntimeError(
            "Unit test attempted to restrict the test process with Landlock. "
            "Mock apply_ruleset/prepare_ruleset or use tests/integration/."
        )

    monkeypatch.setattr(landlock.PreparedRuleset, "enforce", _guarded_enforce)
    monkeypatch.setattr(landlock, "_process_owner", None)
    # pytest plugins may keep helper threads alive; the thread check has its own tests
    monkeypatch.setattr(landlock, "_other_threads", lambda: [])
