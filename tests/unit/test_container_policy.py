"""Tests for the container flag compiler."""

import pytest

from jailrun.exceptions import CompilationError
from jailrun.options import ContainerOptions
from jailrun.policy.container import (
    build_batch_argv,
    build_create_argv,
    build_exec_argv,
    build_remove_argv,
    build_script,
    compile_run_flags,
    container_script_path,
)


class TestCompileRunFlags:
    def test_defaults_add_nothing(self):
        assert compile_run_flags(ContainerOptions(image="alpine")) == []

    def test_networking_disabled(self):
        flags = compile_run_flags(ContainerOptions(image="alpine", allow_networking=False, network="host"))
        assert flags == ["--network", "none"]

    def test_named_network(self):
        assert compile_run_flags(ContainerOptions(image="alpine", network="host")) == ["--network", "host"]

    def test_full_order(self):
        options = ContainerOptions(
            image="alpine",
            allow_networking=False,
            user="1000:1000",
            workdir="/src",
            memory="512m",
            memory_reservation="256m",
            memory_swap="1g",
            memory_swappiness=10,
            cap_add=["NET_ADMIN"],
            cap_drop=["ALL"],
            dns=["1.1.1.1"],
            dns_search=["example.com"],
            platform="linux/amd64",
            docker_run_opts="--read-only --tmpfs '/run:rw'",
            mounts=["/host:/container:ro"],
        )
        assert compile_run_flags(options, ["A=1"]) == [
            "--network", "none",
            "--user", "1000:1000",
            "--workdir", "/src",
            "--memory", "512m",
            "--memory-reservation", "256m",
            "--memory-swap", "1g",
            "--memory-swappiness", "10",
            "--cap-add", "NET_ADMIN",
            "--cap-drop", "ALL",
            "--dns", "1.1.1.1",
            "--dns-search", "example.com",
            "--platform", "linux/amd64",
            "--read-only", "--tmpfs", "/run:rw",
            "-v", "/host:/container:ro",
            "-e", "A=1",
        ]  # fmt: skip

    def test_default_swappiness_omitted(self):
        assert "--memory-swappiness" not in compile_run_flags(ContainerOptions(image="alpine"))

    def test_zero_swappiness_kept(self):
        flags = compile_run_flags(ContainerOptions(image="alpine", memory_swappiness=0))
        assert flags == ["--memory-swappiness", "0"]

    def test_unbalanced_run_opts(self):
        with pytest.raises(CompilationError, match="docker_run_opts"):
            compile_run_flags(ContainerOptions(image="alpine", docker_run_opts="--label 'oops"))

    def test_env_mapping_and_malformed(self):
        assert compile_run_flags(ContainerOptions(image="alpine"), {"A": "x y"}) == ["-e", "A=x y"]
        assert compile_run_flags(ContainerOptions(image="alpine"), ["BROKEN", "B=2"]) == ["-e", "B=2"]


class TestBatchArgv:
    def test_direct_command(self):
        argv = build_batch_argv("docker", ContainerOptions(image="alpine:3"), command="ls")
        assert argv == ["docker", "run", "--rm", "alpine:3", "ls"]

    def test_named(self):
        argv = build_batch_argv("docker", ContainerOptions(image="alpine:3"), command="ls", name="jailrun-abc")
        assert argv == ["docker", "run", "--rm", "--name", "jailrun-abc", "alpine:3", "ls"]

    def test_script(self):
        argv = build_batch_argv(
            "podman",
            ContainerOptions(image="alpine:3", allow_networking=False),
            script="/tmp/jailrun-container-abc.sh",
        )
        assert argv == [
            "podman", "run", "--rm", "--network", "none",
            "-v", "/tmp/jailrun-container-abc.sh:/tmp/jailrun-container-abc.sh",
            "alpine:3", "sh", "/tmp/jailrun-container-abc.sh",
        ]  # fmt: skip

    def test_script_path_inside_container(self):
        assert container_script_path("/var/folders/xy/jailrun-container-1.sh") == "/tmp/jailrun-container-1.sh"

    @pytest.mark.parametrize("kwargs", [{}, {"command": "ls", "script": "/tmp/x.sh"}])
    def test_command_xor_script(self, kwargs):
        with pytest.raises(ValueError):
            build_batch_argv("docker", ContainerOptions(image="alpine"), **kwargs)


class TestBuildScript:
    def test_plain(self):
        assert build_script("echo hi | wc -c") == "#!/bin/sh\n\n# Main command to execute\nexec sh -c 'echo hi | wc -c'\n"

    def test_env_prepare_and_shell(self):
        script = build_script(
            "  make test\n",
            shell="bash",
            env=["GREETING=hello world", "N=1"],
            prepare_command="apk add make",
        )
        assert "export GREETING='hello world'\n" in script
        assert "export N=1\n" in script
        assert "# Preparation commands\napk add make\n" in script
        assert script.endswith("exec bash -c 'make test'\n")
        assert script.index("export GREETING") < script.index("apk add make") < script.index("exec bash")


class TestInteractiveArgv:
    def test_create(self):
        argv = build_create_argv(
            "docker",
            ContainerOptions(image="alpine", memory="256m"),
            "jailrun-1234",
            env={"A": "1"},
        )
        assert argv == [
            "docker", "run", "--name", "jailrun-1234", "-d",
            "--memory", "256m", "-e", "A=1",
            "alpine", "sleep", "infinity",
        ]  # fmt: skip

    def test_exec(self):
        assert build_exec_argv("docker", "jailrun-1", "cat", ["-n"]) == ["docker", "exec", "-i", "jailrun-1", "cat", "-n"]

    def test_remove(self):
        assert build_remove_argv("podman", "jailrun-1") == ["podman", "rm", "-f", "jailrun-1"]
