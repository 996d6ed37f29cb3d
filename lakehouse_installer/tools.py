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

"""Thin wrappers for kubectl, helm, aws, and eksctl bound to one target."""

from __future__ import annotations

from collections.abc import Mapping

from lakehouse_installer.config import EnvironmentConfig
from lakehouse_installer.runner import CommandResult, CommandRunner

ALREADY_EXISTS_MARKERS = ("AlreadyExists", "already exists", "EntityAlreadyExists", "BucketAlreadyOwnedByYou")
NOT_FOUND_MARKERS = ("not found", "NotFound", "NoSuchEntity", "does not exist")


def already_exists(result: CommandResult) -> bool:
    """Whether a failed create call failed only because the object exists."""
    return not result.ok and result.contains(*ALREADY_EXISTS_MARKERS)


def created_or_exists(result: CommandResult) -> bool:
    """Create calls are idempotent: an existing object counts as success."""
    return result.ok or already_exists(result)


def gone(result: CommandResult) -> bool:
    """Delete calls are idempotent: a missing object counts as deleted."""
    return result.ok or result.contains(*NOT_FOUND_MARKERS)


class Toolbox:
    """Command-line clients preconfigured with the target's profile and region."""

    def __init__(self, runner: CommandRunner, config: EnvironmentConfig) -> None:
        self.runner = runner
        self.config = config

    def _env(self, profile: str | None = None) -> dict[str, str]:
        env = self.config.aws_env()
        if profile:
            env["AWS_PROFILE"] = profile
        return env

    def kubectl(self, *args: str, timeout: float | None = None) -> CommandResult:
        return self.runner.run("kubectl", list(args), self._env(), timeout=timeout)

    def helm(self, *args: str) -> CommandResult:
        return self.runner.run("helm", list(args), self._env())

    def aws(self, *args: str, profile: str | None = None) -> CommandResult:
        return self.runner.run("aws", list(args), self._env(profile))

    def eksctl(self, *args: str) -> CommandResult:
        return self.runner.run("eksctl", list(args), self._env())

    def ingext(self, *args: str) -> CommandResult:
        return self.runner.run("ingext", list(args), self._env())

    def script(self, path: str, *args: str) -> CommandResult:
        return self.runner.run("bash", [path, *args], self._env())

    def helm_upgrade_install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values: Mapping[str, str] | None = None,
        *,
        version: str | None = None,
        wait_timeout: str | None = None,
        create_namespace: bool = False,
    ) -> CommandResult:
        """``helm upgrade --install`` with ``--set`` values.

        Args:
            release: Release name.
            chart: Chart reference (OCI URL or ``repo/chart``).
            namespace: Target namespace.
            values: Mapping of ``--set`` keys to values.
            version: Chart version pin, or None for latest.
            wait_timeout: When set, add ``--wait --timeout <value>``.
            create_namespace: Add ``--create-namespace``.

        Returns:
            The helm command result.
        """
        args = ["upgrade", "--install", release, chart, "--namespace", namespace]
        if version:
            args += ["--version", version]
        if create_namespace:
            args.append("--create-namespace")
        for key, value in (values or {}).items():
            args += ["--set", f"{key}={value}"]
        if wait_timeout:
            args += ["--wait", "--timeout", wait_timeout]
        return self.helm(*args)

    def ensure_namespace(self, namespace: str) -> CommandResult:
        """Create *namespace*; an existing namespace is reported as success."""
        result = self.kubectl("create", "namespace", namespace)
        if already_exists(result):
            return CommandResult(0, result.stdout, result.stderr)
        return result
