# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

from __future__ import annotations

import subprocess

from lakehouse_installer import runner as runner_module
from lakehouse_installer.runner import (
    CommandResult,
    CommandRunner,
    ExecContext,
    ExecMode,
    is_long_running,
)
from lakehouse_installer.tools import already_exists, created_or_exists, gone


def _capture(monkeypatch, returncode=0, stdout="", stderr=""):
    seen = {}

    def fake_run(argv, **kwargs):
        seen["argv"] = argv
        seen.update(kwargs)
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)

    monkeypatch.setattr(runner_module.subprocess, "run", fake_run)
    return seen


def test_captures_and_strips_output(monkeypatch):
    seen = _capture(monkeypatch, stdout="  ACTIVE\n", stderr="")

    result = CommandRunner().run("aws", ["eks", "describe-cluster"], env={"AWS_PROFILE": "demo"})

    assert result == CommandResult(0, "ACTIVE", "")
    assert seen["argv"] == ["aws", "eks", "describe-cluster"]
    assert seen["env"]["AWS_PROFILE"] == "demo"


def test_non_zero_exit_is_returned_not_raised(monkeypatch):
    _capture(monkeypatch, returncode=254, stderr="An error occurred (NoSuchEntity)")

    result = CommandRunner().run("aws", ["iam", "get-role", "--role-name", "x"])

    assert not result.ok
    assert result.exit_code == 254
    assert result.output == "An error occurred (NoSuchEntity)"


def test_missing_program_maps_to_127(monkeypatch):
    def fake_run(argv, **kwargs):
        raise FileNotFoundError(argv[0])

    monkeypatch.setattr(runner_module.subprocess, "run", fake_run)

    result = CommandRunner().run("eksctl", ["version"])

    assert result.exit_code == 127
    assert result.not_found
    assert "eksctl" in result.stderr
    assert "--exec docker" in result.stderr


def test_timeout_maps_to_124(monkeypatch):
    def fake_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    monkeypatch.setattr(runner_module.subprocess, "run", fake_run)

    result = CommandRunner().run("kubectl", ["get", "nodes"], timeout=30)

    assert result.exit_code == 124


def test_docker_mode_goes_through_wrapper(monkeypatch):
    seen = _capture(monkeypatch)
    context = ExecContext(mode=ExecMode.DOCKER, env={"KUBECONFIG": "/kube/config"})

    CommandRunner(context).run("kubectl", ["get", "pods"])

    assert seen["argv"] == ["./bin/run-in-docker.sh", "kubectl", "get", "pods"]
    assert seen["env"]["KUBECONFIG"] == "/kube/config"


def test_long_running_commands():
    assert is_long_running("eksctl", ["create", "cluster", "--name", "demo"])
    assert is_long_running("eksctl", ["delete", "cluster", "--name", "demo"])
    assert is_long_running("helm", ["upgrade", "--install", "lake", "chart", "--wait", "--timeout", "15m"])
    assert not is_long_running("eksctl", ["create", "addon"])
    assert not is_long_running("helm", ["list", "-A"])


def test_idempotency_markers():
    exists = CommandResult(254, "", "An error occurred (EntityAlreadyExists) when calling CreateRole")
    missing = CommandResult(1, "", 'Error from server (NotFound): secrets "x" not found')

    assert already_exists(exists)
    assert created_or_exists(exists)
    assert not already_exists(CommandResult(0, "", ""))
    assert gone(missing)
    assert not gone(CommandResult(1, "", "AccessDenied"))


def test_streamed_command_reports_exit_code_and_output():
    runner = CommandRunner(ExecContext(verbose=True))

    result = runner.run("sh", ["-c", "echo hi; echo oops 1>&2; exit 3"])

    assert result == CommandResult(3, "hi", "oops")


def test_streamed_command_times_out():
    runner = CommandRunner(ExecContext(verbose=True))

    result = runner.run("sh", ["-c", "sleep 5"], timeout=0.5)

    assert result.exit_code == 124
    assert "timed out" in result.stderr


def test_streamed_missing_program_maps_to_127():
    runner = CommandRunner(ExecContext(verbose=True))

    result = runner.run("lakehouse-no-such-tool", ["--version"])

    assert result.not_found
