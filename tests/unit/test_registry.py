"""Tests for the backend registry and factory."""

from unittest.mock import AsyncMock, patch

import pytest

from jailrun.exceptions import CapabilityError, ConfigurationError
from jailrun.registry import ALIASES, RUNNERS, build_runner, create_runner, resolve_backend
from jailrun.runners import (
    ContainerRunner,
    ExecRunner,
    FirejailRunner,
    LandlockRunner,
    SandboxExecRunner,
)


class TestResolveBackend:
    @pytest.mark.parametrize(
        ("backend_id", "expected"),
        [
            ("exec", ExecRunner),
            ("macos-sandbox", SandboxExecRunner),
            ("linux-namespace-sandbox", FirejailRunner),
            ("container", ContainerRunner),
            ("kernel-restriction", LandlockRunner),
            ("sandbox-exec", SandboxExecRunner),
            ("firejail", FirejailRunner),
            ("docker", ContainerRunner),
            ("landrun", LandlockRunner),
        ],
    )
    def test_known(self, backend_id, expected):
        assert resolve_backend(backend_id) is expected

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown runner backend 'chroot'") as exc_info:
            resolve_backend("chroot")
        assert exc_info.value.field == "backend"
        assert "kernel-restriction" in str(exc_info.value)

    def test_aliases_point_at_registered_backends(self):
        assert set(ALIASES.values()) <= set(RUNNERS)


class TestCreateRunner:
    def test_options_validated(self):
        runner = create_runner("kernel-restriction", {"allow_read_folders": ["/usr"], "isolation": "subprocess"})
        assert isinstance(runner, LandlockRunner)
        assert runner.options.read_paths == ["/usr"]

    def test_invalid_options(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_runner("kernel-restriction", {"allow_bind_tcp": ["http"]})
        assert exc_info.value.field.endswith(".0")

    def test_docker_alias_pins_engine(self, monkeypatch):
        monkeypatch.setenv("JAILRUN_CONTAINER_ENGINE", "podman")
        runner = create_runner("docker", {"image": "alpine"})
        assert runner.engine == "docker"

    def test_docker_alias_respects_explicit_engine(self):
        runner = create_runner("docker", {"image": "alpine", "engine": "podman"})
        assert runner.engine == "podman"

    def test_container_engine_from_settings(self, monkeypatch):
        monkeypatch.setenv("JAILRUN_CONTAINER_ENGINE", "podman")
        assert create_runner("container", {"image": "alpine"}).engine == "podman"

    def test_no_options(self):
        assert isinstance(create_runner("exec"), ExecRunner)


class TestBuildRunner:
    async def test_probes_host(self):
        with patch.object(ExecRunner, "check_requirements", new_callable=AsyncMock) as probe:
            runner = await build_runner("exec", {})
        assert isinstance(runner, ExecRunner)
        probe.assert_awaited_once()

    async def test_probe_failure_propagates(self):
        with patch.object(
            FirejailRunner,
            "check_requirements",
            new_callable=AsyncMock,
            side_effect=CapabilityError("firejail executable not found in PATH", backend="linux-namespace-sandbox"),
        ):
            with pytest.raises(CapabilityError, match="firejail"):
                await build_runner("firejail", {})

    async def test_invalid_options_before_probe(self):
        with patch.object(LandlockRunner, "check_requirements", new_callable=AsyncMock) as probe:
            with pytest.raises(ConfigurationError):
                await build_runner("kernel-restriction", {"best_effort": "sometimes"})
        probe.assert_not_called()
