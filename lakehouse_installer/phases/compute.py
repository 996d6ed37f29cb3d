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

"""Phase 3: Karpenter node autoscaling, with repair of broken releases."""

from __future__ import annotations

from typing import Any

from lakehouse_installer import console
from lakehouse_installer.constants import (
    HELM_HISTORY_MAX,
    HELM_RELEASE_KARPENTER,
    HELM_TIMEOUT_KARPENTER,
    KARPENTER_DEPLOYMENT,
    KARPENTER_READY_MAX_WAIT_MINUTES,
    KARPENTER_READY_POLL_INTERVAL_SECONDS,
    KARPENTER_REPAIR_DELETE_WAIT_SECONDS,
    KARPENTER_REPAIR_UNINSTALL_WAIT_SECONDS,
    KARPENTER_SELECTOR,
    KARPENTER_SETUP_SCRIPT,
    NS_KUBE_SYSTEM,
    REPAIR_EVENTS_LINES,
    REPAIR_LOG_EXCERPT_LINES,
    REPAIR_LOG_TAIL_LINES,
    dep_value,
)
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.probes import ReleaseInfo, tail


class ComputePhase(Phase):
    name = PhaseName.COMPUTE
    required_keys = ("CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE")
    dependencies = {
        "NO_NODES_AVAILABLE": PhaseName.FOUNDATION,
        "NO_READY_NODES": PhaseName.FOUNDATION,
        "COREDNS_NOT_READY": PhaseName.FOUNDATION,
        "INSUFFICIENT_CAPACITY": PhaseName.FOUNDATION,
        "KARPENTER_NOT_READY": PhaseName.COMPUTE,
    }

    def execute(self, outcome: PhaseOutcome) -> None:
        self.check_platform(outcome)

        release = self.probes.release(HELM_RELEASE_KARPENTER)
        deployment = self.probes.deployment(KARPENTER_DEPLOYMENT, NS_KUBE_SYSTEM)
        outcome.evidence["karpenter"] = {
            "release_status": release.status if release else "not installed",
            "deployment": deployment.describe(),
        }
        if release is not None and release.deployed and deployment.ready:
            self.resume(outcome, f"Karpenter {release.chart_version} is deployed and ready")
            return

        if release is not None and release.needs_repair:
            self._repair(outcome, release)
        elif release is None:
            self._install(outcome)

        self._wait_ready(outcome)

    def _install(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        console.print("[yellow]ℹ️  Installing Karpenter (IAM, interruption queue, controller)...[/yellow]")
        result = self.tools.script(KARPENTER_SETUP_SCRIPT, cfg.aws_profile, cfg.aws_region, cfg.cluster_name or "")
        outcome.evidence["karpenter"]["installed"] = result.ok
        if not result.ok:
            self.fail(
                outcome, "KARPENTER_SETUP_FAILED",
                f"{KARPENTER_SETUP_SCRIPT} failed: {tail(result.output, REPAIR_LOG_EXCERPT_LINES)}",
                commands=[f"bash {KARPENTER_SETUP_SCRIPT} {cfg.aws_profile} {cfg.aws_region} {cfg.cluster_name}"],
            )

    def _capture_repair_diagnostics(self, release: ReleaseInfo) -> dict[str, Any]:
        pods = self.probes.pods(NS_KUBE_SYSTEM, KARPENTER_SELECTOR)
        first = pods.pods[0].name if pods.pods else None
        return {
            "release_status": release.status,
            "release_revision": release.revision,
            "helm_history": self.probes.helm_history(HELM_RELEASE_KARPENTER, NS_KUBE_SYSTEM, HELM_HISTORY_MAX),
            "deployment": self.probes.deployment(KARPENTER_DEPLOYMENT, NS_KUBE_SYSTEM).describe(),
            "pod_logs": tail(self.probes.pod_logs(first, NS_KUBE_SYSTEM, REPAIR_LOG_TAIL_LINES),
                             REPAIR_LOG_EXCERPT_LINES) if first else "",
            "pod_events": self.probes.pod_events(first, NS_KUBE_SYSTEM, REPAIR_EVENTS_LINES) if first else "",
        }

    def _repair(self, outcome: PhaseOutcome, release: ReleaseInfo) -> None:
        """Reinstall a release stuck in a failed or pending state."""
        cfg = self.config
        console.print(f"[yellow]ℹ️  Karpenter release is '{release.status}'; repairing...[/yellow]")
        diagnostics = self._capture_repair_diagnostics(release)
        namespace = release.namespace or NS_KUBE_SYSTEM

        # Helm keeps its lock in release secrets; drop them before reinstalling.
        self.tools.kubectl("delete", "secret", "-n", namespace, "-l", f"owner=helm,name={HELM_RELEASE_KARPENTER}")
        self.tools.helm("uninstall", HELM_RELEASE_KARPENTER, "-n", namespace)
        self.ctx.sleep(KARPENTER_REPAIR_UNINSTALL_WAIT_SECONDS)
        self.tools.kubectl("delete", "deployment", KARPENTER_DEPLOYMENT, "-n", namespace, "--ignore-not-found")
        self.ctx.sleep(KARPENTER_REPAIR_DELETE_WAIT_SECONDS)

        result = self.tools.helm_upgrade_install(
            HELM_RELEASE_KARPENTER,
            dep_value("karpenter", "chart", default="oci://public.ecr.aws/karpenter/karpenter"),
            namespace,
            {
                "settings.clusterName": cfg.cluster_name or "",
                "settings.interruptionQueue": "",
                "controller.resources.requests.cpu": "1",
                "controller.resources.requests.memory": "1Gi",
                "controller.resources.limits.cpu": "1",
                "controller.resources.limits.memory": "1Gi",
            },
            version=dep_value("karpenter", "version"),
            wait_timeout=HELM_TIMEOUT_KARPENTER,
        )
        outcome.evidence["karpenter"]["repaired"] = result.ok
        if not result.ok:
            diagnostics["repair_error"] = tail(result.output, REPAIR_LOG_EXCERPT_LINES)
            self.fail(
                outcome, "KARPENTER_REPAIR_FAILED",
                f"Karpenter reinstall failed after release was '{release.status}'",
                remediation="Review the captured diagnostics, then reinstall Karpenter manually.",
                diagnostics=diagnostics,
                commands=[
                    f"helm history {HELM_RELEASE_KARPENTER} -n {namespace}",
                    f"kubectl get pods -n {namespace} -l {KARPENTER_SELECTOR}",
                    f"kubectl logs -n {namespace} -l {KARPENTER_SELECTOR} --tail={REPAIR_LOG_TAIL_LINES}",
                    f"kubectl describe deployment {KARPENTER_DEPLOYMENT} -n {namespace}",
                ],
            )
        console.print("[green]   ✓ Karpenter reinstalled[/green]")

    def _wait_ready(self, outcome: PhaseOutcome) -> None:
        wait = self.waiter.wait_until_ready(
            lambda: self.probes.deployment(KARPENTER_DEPLOYMENT, NS_KUBE_SYSTEM),
            lambda d: d.ready,
            max_wait_minutes=KARPENTER_READY_MAX_WAIT_MINUTES,
            poll_interval_seconds=KARPENTER_READY_POLL_INTERVAL_SECONDS,
            label="karpenter",
            describe=lambda d: d.describe(),
        )
        outcome.evidence["karpenter"]["deployment"] = wait.last_state.describe()
        if wait.ok:
            return

        pods = self.probes.pods(NS_KUBE_SYSTEM, KARPENTER_SELECTOR)
        for pod in pods.pods:
            if not pod.pending:
                continue
            event = self.probes.scheduling_failure(pod.name, NS_KUBE_SYSTEM)
            if event:
                self.fail(
                    outcome, "INSUFFICIENT_CAPACITY",
                    f"Karpenter controller {pod.name} cannot be scheduled",
                    remediation="Add node capacity to the managed nodegroup (Phase 1: Foundation).",
                    diagnostics={"pod": pod.name, "event": event},
                    commands=["kubectl get nodes", f"kubectl describe pod {pod.name} -n {NS_KUBE_SYSTEM}"],
                )
        self.fail(
            outcome, "KARPENTER_NOT_READY",
            f"Karpenter deployment not ready after {int(wait.elapsed_seconds)}s ({wait.last_state.describe()})",
            diagnostics={
                "pods": [f"{p.name} ({p.phase}{', ' + p.reason if p.reason else ''})" for p in pods.pods],
            },
            commands=[f"kubectl get pods -n {NS_KUBE_SYSTEM} -l {KARPENTER_SELECTOR}"],
        )
