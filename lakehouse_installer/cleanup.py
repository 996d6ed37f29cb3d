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

"""Teardown of everything the installer created."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from rich.panel import Panel

from lakehouse_installer import console, logger
from lakehouse_installer.config import EnvironmentConfig
from lakehouse_installer.constants import (
    KUBE_SYSTEM_RELEASES,
    NS_KUBE_SYSTEM,
    TEARDOWN_RELEASES,
)
from lakehouse_installer.probes import Probes, parse_json
from lakehouse_installer.runner import CommandResult
from lakehouse_installer.tools import Toolbox, gone


class CleanupResult(BaseModel):
    """Outcome of a teardown: which resources went away and which did not."""

    status: str
    deleted: list[str] = Field(default_factory=list)
    failed: list[dict[str, Any]] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    plan: str | None = None

    @property
    def exit_code(self) -> int:
        return {"completed": 0, "needs_approval": 2, "partial": 3}.get(self.status, 1)


def karpenter_role_names(cluster: str) -> tuple[str, str]:
    return f"KarpenterControllerRole-{cluster}", f"KarpenterNodeRole-{cluster}"


def iam_roles(config: EnvironmentConfig) -> list[str]:
    """Roles created by phases 1, 2, 3 and 7, deleted after the cluster."""
    return [
        config.storage_role_name,
        config.ebs_csi_role_name,
        *karpenter_role_names(config.cluster_name or ""),
        config.alb_role_name,
    ]


def iam_policies(config: EnvironmentConfig) -> list[str]:
    return [
        config.s3_policy_name,
        f"KarpenterControllerPolicy-{config.cluster_name}",
        config.alb_policy_name,
    ]


def render_cleanup_plan(config: EnvironmentConfig) -> str:
    lines = [
        "Teardown plan (destructive, data in the bucket is lost)",
        f"  Helm releases: {len(TEARDOWN_RELEASES)} releases in namespaces {config.namespace} and {NS_KUBE_SYSTEM}",
        f"  EKS cluster:   {config.cluster_name} ({config.aws_region})",
        f"  S3 bucket:     {config.s3_bucket or '<none configured>'}",
        f"  IAM roles:     {', '.join(iam_roles(config))}",
        f"  IAM policies:  {', '.join(iam_policies(config))}",
        f"  EBS volumes:   tagged for namespace {config.namespace}",
    ]
    return "\n".join(lines)


class Teardown:
    """Deletes releases, the cluster, the bucket and IAM leftovers, in that order.

    Every delete is idempotent: a resource that is already gone counts as
    deleted. One failure does not stop the remaining deletions.
    """

    def __init__(self, tools: Toolbox, probes: Probes) -> None:
        self.tools = tools
        self.probes = probes
        self.config = tools.config
        self.result = CleanupResult(status="completed")

    def _record(self, name: str, result: CommandResult) -> bool:
        if gone(result):
            self.result.deleted.append(name)
            console.print(f"[green]   ✓ {name}[/green]")
            return True
        self.result.failed.append({"resource": name, "error": result.output[:300]})
        console.print(f"[red]   ✗ {name}: {result.output[:200]}[/red]")
        return False

    def _uninstall_releases(self) -> None:
        console.print(Panel.fit("Uninstalling Helm releases", style="bold blue"))
        if not self.probes.cluster_reachable():
            console.print("[yellow]ℹ️  Cluster not reachable, skipping Helm releases[/yellow]")
            self.result.skipped.append("helm-releases")
            return
        present = self.probes.releases(None)
        for name in TEARDOWN_RELEASES:
            if name not in present:
                continue
            namespace = NS_KUBE_SYSTEM if name in KUBE_SYSTEM_RELEASES else self.config.namespace
            self._record(f"release/{name}", self.tools.helm("uninstall", name, "-n", namespace))

    def _delete_volumes(self) -> None:
        payload = parse_json(self.tools.aws(
            "ec2", "describe-volumes",
            "--filters", f"Name=tag:kubernetes.io/created-for/pvc/namespace,Values={self.config.namespace}",
            "--query", "Volumes[*].VolumeId", "--output", "json",
        ))
        for volume in payload if isinstance(payload, list) else []:
            if not isinstance(volume, str):
                continue
            self._record(f"volume/{volume}", self.tools.aws("ec2", "delete-volume", "--volume-id", volume))

    def _delete_cluster(self) -> None:
        cfg = self.config
        console.print(Panel.fit(f"Deleting EKS cluster {cfg.cluster_name}", style="bold blue"))
        if not self.probes.cluster().exists:
            console.print("[yellow]ℹ️  Cluster does not exist[/yellow]")
            self.result.skipped.append(f"cluster/{cfg.cluster_name}")
            return
        self._record(
            f"cluster/{cfg.cluster_name}",
            self.tools.eksctl("delete", "cluster", "--name", cfg.cluster_name or "",
                              "--region", cfg.aws_region, "--wait"),
        )

    def _delete_bucket(self) -> None:
        bucket = self.config.s3_bucket
        if not bucket:
            return
        console.print(Panel.fit(f"Deleting S3 bucket {bucket}", style="bold blue"))
        if not self.probes.bucket_exists(bucket):
            self.result.skipped.append(f"bucket/{bucket}")
            return
        self._record(f"bucket/{bucket}", self.tools.aws("s3", "rb", f"s3://{bucket}", "--force"))

    def _delete_role(self, role: str) -> None:
        if not self.probes.role_exists(role):
            self.result.skipped.append(f"role/{role}")
            return
        attached = parse_json(self.tools.aws(
            "iam", "list-attached-role-policies", "--role-name", role,
            "--query", "AttachedPolicies[*].PolicyArn", "--output", "json",
        ))
        for arn in attached if isinstance(attached, list) else []:
            if not isinstance(arn, str):
                continue
            self.tools.aws("iam", "detach-role-policy", "--role-name", role, "--policy-arn", arn)
        inline = parse_json(self.tools.aws(
            "iam", "list-role-policies", "--role-name", role, "--query", "PolicyNames", "--output", "json",
        ))
        for name in inline if isinstance(inline, list) else []:
            if not isinstance(name, str):
                continue
            self.tools.aws("iam", "delete-role-policy", "--role-name", role, "--policy-name", name)
        self._record(f"role/{role}", self.tools.aws("iam", "delete-role", "--role-name", role))

    def _delete_iam(self) -> None:
        console.print(Panel.fit("Deleting IAM roles and policies", style="bold blue"))
        for role in iam_roles(self.config):
            self._delete_role(role)
        for name in iam_policies(self.config):
            arn = self.probes.policy_arn(name)
            if arn is None:
                self.result.skipped.append(f"policy/{name}")
                continue
            self._record(f"policy/{name}", self.tools.aws("iam", "delete-policy", "--policy-arn", arn))

    def run(self, approve: bool = False) -> CleanupResult:
        """Tear everything down.

        Args:
            approve: Without it only the plan is returned and nothing is deleted.

        Returns:
            ``needs_approval`` with the plan, else ``completed`` when every
            delete succeeded, ``partial`` when some failed, ``error`` when
            none succeeded.
        """
        if not approve:
            return CleanupResult(status="needs_approval", plan=render_cleanup_plan(self.config))

        self._uninstall_releases()
        self._delete_cluster()
        self._delete_bucket()
        self._delete_iam()
        self._delete_volumes()

        if self.result.failed:
            self.result.status = "partial" if self.result.deleted else "error"
        logger.info("teardown %s: %d deleted, %d failed",
                    self.result.status, len(self.result.deleted), len(self.result.failed))
        return self.result
