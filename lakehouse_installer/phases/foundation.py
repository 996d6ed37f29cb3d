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

"""Phase 1: EKS cluster, nodes, add-ons, and the default storage class."""

from __future__ import annotations

from lakehouse_installer import console
from lakehouse_installer.constants import (
    CLUSTER_ACTIVE_MAX_WAIT_MINUTES,
    CLUSTER_ACTIVE_POLL_INTERVAL_SECONDS,
    CRITICAL_ADDONS,
    EBS_CSI_POD_SELECTOR,
    EBS_CSI_POLICY_ARN,
    EBS_CSI_SERVICE_ACCOUNT,
    EKS_TERMINAL_STATUSES,
    HELM_RELEASE_STORAGE_CLASS,
    NODES_READY_MAX_WAIT_MINUTES,
    NODES_READY_POLL_INTERVAL_SECONDS,
    NS_KUBE_SYSTEM,
    OPTIONAL_ADDONS,
    STORAGE_CLASS_GP3,
    ingext_chart,
)
from lakehouse_installer.diagnostics import analyze_pod
from lakehouse_installer.identity import create_pod_identity
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.probes import ClusterInfo, NodeSummary
from lakehouse_installer.tools import created_or_exists


class FoundationPhase(Phase):
    name = PhaseName.FOUNDATION
    required_keys = ("CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "NODE_TYPE", "NODE_COUNT")
    dependencies = {"NO_READY_NODES": PhaseName.FOUNDATION}

    def _ebs_csi_healthy(self) -> bool:
        pods = self.probes.pods(NS_KUBE_SYSTEM, EBS_CSI_POD_SELECTOR)
        return not any(pod.crash_looping for pod in pods.pods)

    def _already_done(self, cluster: ClusterInfo) -> bool:
        if not cluster.active:
            return False
        if not set(CRITICAL_ADDONS) <= self.probes.addons():
            return False
        return self._ebs_csi_healthy() and self.probes.storage_class_exists(STORAGE_CLASS_GP3)

    def execute(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        cluster = self.probes.cluster()
        outcome.evidence["cluster"] = {"name": cfg.cluster_name, "status": cluster.status, "created": False}

        if self._already_done(cluster):
            outcome.evidence["addons"] = sorted(CRITICAL_ADDONS)
            outcome.evidence["storage_class"] = STORAGE_CLASS_GP3
            self.resume(outcome, f"Cluster {cfg.cluster_name} is ACTIVE with all add-ons")
            return

        created = False
        if not cluster.exists:
            created = self._create_cluster(outcome)
            outcome.evidence["cluster"]["created"] = created

        self._wait_active(outcome)
        self._update_kubeconfig(outcome)
        nodes = self._ensure_nodes(outcome, created)
        outcome.evidence["nodes"] = {"total": nodes.total, "ready": nodes.ready}
        self._install_addons(outcome)
        self._ensure_ebs_identity(outcome)
        self._ensure_storage_class(outcome)
        self._install_optional_addons(outcome)
        self._check_ebs_csi(outcome)

    # ------------------------------------------------------------------

    def _create_cluster(self, outcome: PhaseOutcome) -> bool:
        cfg = self.config
        console.print(
            f"[yellow]ℹ️  Creating EKS cluster {cfg.cluster_name} in {cfg.aws_region} "
            f"({cfg.node_count}x {cfg.node_type}); this takes 15-20 minutes...[/yellow]"
        )
        result = self.tools.eksctl(
            "create", "cluster",
            "--name", cfg.cluster_name or "",
            "--region", cfg.aws_region,
            "--version", cfg.kubernetes_version,
            "--nodegroup-name", cfg.nodegroup_name,
            "--node-type", cfg.node_type,
            "--nodes", str(cfg.node_count),
            "--managed",
        )
        if result.not_found:
            self.fail(outcome, "EKSCTL_NOT_FOUND", result.stderr,
                      remediation="Install eksctl or run with --exec docker.")
        if not created_or_exists(result):
            self.fail(outcome, "EKS_CLUSTER_CREATE_FAILED",
                      f"eksctl create cluster failed: {result.output[-500:]}",
                      commands=[f"eksctl get cluster --name {cfg.cluster_name} --region {cfg.aws_region}"])
        return result.ok

    def _wait_active(self, outcome: PhaseOutcome) -> None:
        wait = self.waiter.wait_until_ready(
            self.probes.cluster,
            lambda c: c.active,
            max_wait_minutes=CLUSTER_ACTIVE_MAX_WAIT_MINUTES,
            poll_interval_seconds=CLUSTER_ACTIVE_POLL_INTERVAL_SECONDS,
            is_terminal_failure=lambda c: not c.exists or c.status in EKS_TERMINAL_STATUSES,
            label="cluster",
            describe=lambda c: c.status,
        )
        outcome.evidence["cluster"]["status"] = wait.last_state.status
        outcome.evidence["cluster"]["wait_seconds"] = int(wait.elapsed_seconds)
        if wait.ok:
            return
        if not wait.last_state.exists:
            self.fail(outcome, "CLUSTER_NOT_FOUND", f"Cluster {self.config.cluster_name} not found")
        self.fail(
            outcome, "CLUSTER_NOT_READY",
            f"Cluster status {wait.last_state.status} after {int(wait.elapsed_seconds)}s",
            commands=[f"aws eks describe-cluster --name {self.config.cluster_name} --region {self.config.aws_region}"],
        )

    def _update_kubeconfig(self, outcome: PhaseOutcome) -> None:
        result = self.tools.aws(
            "eks", "update-kubeconfig", "--name", self.config.cluster_name or "", "--region", self.config.aws_region,
        )
        if not result.ok:
            self.fail(outcome, "KUBECONFIG_UPDATE_FAILED", f"update-kubeconfig failed: {result.output}")

    def _ensure_nodes(self, outcome: PhaseOutcome, created: bool) -> NodeSummary:
        cfg = self.config
        nodes = self.probes.nodes()
        if nodes.total == 0:
            if created:
                self.fail(outcome, "NO_NODES_CREATED",
                          "Cluster was created but has no nodes; the managed nodegroup did not come up",
                          commands=[f"eksctl get nodegroup --cluster {cfg.cluster_name} --region {cfg.aws_region}"])
            console.print(f"[yellow]ℹ️  No nodes found; creating nodegroup {cfg.nodegroup_name}[/yellow]")
            result = self.tools.eksctl(
                "create", "nodegroup",
                "--cluster", cfg.cluster_name or "",
                "--region", cfg.aws_region,
                "--name", cfg.nodegroup_name,
                "--node-type", cfg.node_type,
                "--nodes", str(cfg.node_count),
                "--managed",
            )
            outcome.evidence["nodegroup_created"] = result.ok
            if not created_or_exists(result):
                self.fail(outcome, "NODEGROUP_CREATE_FAILED", f"Nodegroup creation failed: {result.output[-500:]}")

        wait = self.waiter.wait_until_ready(
            self.probes.nodes,
            lambda n: n.ready > 0,
            max_wait_minutes=NODES_READY_MAX_WAIT_MINUTES,
            poll_interval_seconds=NODES_READY_POLL_INTERVAL_SECONDS,
            label="nodes",
            describe=lambda n: f"{n.ready}/{n.total} ready",
        )
        if not wait.ok:
            self.fail(
                outcome, "NO_READY_NODES",
                f"No Ready nodes after {int(wait.elapsed_seconds)}s ({wait.last_state.total} registered)",
                remediation="Inspect node status and the nodegroup health, then re-run.",
                commands=["kubectl get nodes -o wide", "kubectl describe nodes"],
            )
        return wait.last_state

    def _install_addons(self, outcome: PhaseOutcome) -> None:
        present = self.probes.addons()
        installed = []
        for addon in CRITICAL_ADDONS:
            if addon in present:
                continue
            result = self.tools.eksctl(
                "create", "addon", "--cluster", self.config.cluster_name or "",
                "--name", addon, "--region", self.config.aws_region,
            )
            if not created_or_exists(result):
                self.fail(outcome, "ADDON_INSTALL_FAILED", f"Add-on {addon} failed: {result.output[:500]}")
            installed.append(addon)
            console.print(f"[green]   ✓ add-on {addon}[/green]")
        outcome.evidence["addons"] = sorted(present | set(installed))

    def _ensure_ebs_identity(self, outcome: PhaseOutcome) -> None:
        if self.probes.pod_identity_exists(NS_KUBE_SYSTEM, EBS_CSI_SERVICE_ACCOUNT):
            return
        result = create_pod_identity(
            self.ctx.task_context(), NS_KUBE_SYSTEM, EBS_CSI_SERVICE_ACCOUNT,
            self.config.ebs_csi_role_name, EBS_CSI_POLICY_ARN,
        )
        if not created_or_exists(result):
            self.fail(outcome, "EBS_CSI_IDENTITY_FAILED", f"EBS CSI pod identity failed: {result.output[:500]}")
        # The controller only picks up new credentials on restart.
        self.tools.kubectl("rollout", "restart", "deployment", "ebs-csi-controller", "-n", NS_KUBE_SYSTEM)
        outcome.evidence["ebs_csi_identity_created"] = True

    def _ensure_storage_class(self, outcome: PhaseOutcome) -> None:
        if self.probes.storage_class_exists(STORAGE_CLASS_GP3):
            outcome.evidence["storage_class"] = STORAGE_CLASS_GP3
            return
        result = self.tools.helm_upgrade_install(
            HELM_RELEASE_STORAGE_CLASS, ingext_chart(HELM_RELEASE_STORAGE_CLASS), NS_KUBE_SYSTEM,
            {"storageClass.isDefaultClass": "true"},
        )
        if result.ok:
            outcome.evidence["storage_class"] = STORAGE_CLASS_GP3
        else:
            self.warn(outcome, "STORAGE_CLASS_INSTALL_FAILED", f"gp3 storage class not installed: {result.output[:300]}")

    def _install_optional_addons(self, outcome: PhaseOutcome) -> None:
        present = self.probes.addons()
        for addon in OPTIONAL_ADDONS:
            if addon in present:
                continue
            result = self.tools.eksctl(
                "create", "addon", "--cluster", self.config.cluster_name or "",
                "--name", addon, "--region", self.config.aws_region,
            )
            if not created_or_exists(result):
                self.warn(outcome, "OPTIONAL_ADDON_FAILED", f"{addon} not installed: {result.output[:300]}")

    def _check_ebs_csi(self, outcome: PhaseOutcome) -> None:
        pods = self.probes.pods(NS_KUBE_SYSTEM, EBS_CSI_POD_SELECTOR)
        crashing = [pod for pod in pods.pods if pod.crash_looping]
        if crashing:
            analysis = analyze_pod(self.probes, crashing[0].name, NS_KUBE_SYSTEM)
            self.fail(
                outcome, "EBS_CSI_DRIVER_UNHEALTHY",
                f"EBS CSI controller crash-looping: {', '.join(p.name for p in crashing)}",
                remediation=analysis.diagnosis.remediation if analysis.diagnosis else
                "Check the EBS CSI pod identity association and restart the controller.",
                diagnostics=analysis.as_evidence(),
            )
