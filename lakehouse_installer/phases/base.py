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

"""Phase base class and the shared context every phase receives."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rich.panel import Panel

from lakehouse_installer import console, logger
from lakehouse_installer.config import EnvironmentConfig, InstallOptions
from lakehouse_installer.constants import (
    DESCRIBE_POD_LIMIT,
    EVENTS_TAIL_LINES,
    NS_KUBE_SYSTEM,
    PODS_POLL_INTERVAL_SECONDS,
)
from lakehouse_installer.diagnostics import analyze_pod
from lakehouse_installer.models import Blocker, PhaseName, PhaseOutcome, PhaseState
from lakehouse_installer.probes import PodSummary, Probes, head
from lakehouse_installer.provisioning import TaskContext
from lakehouse_installer.runner import CommandResult
from lakehouse_installer.tools import Toolbox
from lakehouse_installer.waiter import Waiter, WaitResult

# Required keys whose absence has a dedicated code.
MISSING_KEY_CODES = {
    "CERT_ARN": "CERT_ARN_MISSING",
    "SITE_DOMAIN": "SITE_DOMAIN_MISSING",
}


class PhaseStop(Exception):
    """Ends a phase early; the blocker is already recorded on the outcome."""


@dataclass
class PhaseContext:
    """Collaborators shared by all phases of one run."""

    tools: Toolbox
    probes: Probes
    waiter: Waiter
    options: InstallOptions = field(default_factory=InstallOptions)
    sleep: Callable[[float], None] = time.sleep

    @property
    def config(self) -> EnvironmentConfig:
        return self.tools.config

    def task_context(self, **inputs: Any) -> TaskContext:
        return TaskContext(tools=self.tools, probes=self.probes, inputs=dict(inputs), sleep=self.sleep)


class Phase(ABC):
    """One step of the fixed installation sequence.

    Subclasses implement ``execute`` as gate, smart resume, action, then
    postcondition wait. Failures are recorded with ``fail`` (which stops the
    phase) or ``warn`` (which does not). Whether a failure blocks on an
    earlier phase or is fatal is decided by ``dependencies``: codes listed
    there map to the phase that has to be fixed.
    """

    name: PhaseName
    required_keys: tuple[str, ...] = ()
    dependencies: Mapping[str, PhaseName] = {}

    def __init__(self, ctx: PhaseContext) -> None:
        self.ctx = ctx
        self.tools = ctx.tools
        self.probes = ctx.probes
        self.waiter = ctx.waiter
        self.config = ctx.config
        self.options = ctx.options

    def run(self) -> PhaseOutcome:
        """Run the phase; never raises for operational failures."""
        console.print(Panel.fit(f"Phase {self.name.number}: {self.name.label}", style="bold blue"))
        outcome = PhaseOutcome(phase=self.name, state=PhaseState.RUNNING)
        try:
            self.execute(outcome)
        except PhaseStop:
            pass
        except Exception as err:
            logger.exception("phase %s raised", self.name.value)
            outcome.blockers.append(Blocker(code="UNEXPECTED_ERROR", message=f"{type(err).__name__}: {err}"))
            outcome.state = PhaseState.ERROR
            console.print(f"[red]❌ UNEXPECTED_ERROR: {err}[/red]")
        if outcome.state == PhaseState.RUNNING:
            outcome.state = PhaseState.COMPLETED
            console.print(f"[green]✅ Phase {self.name.number} ({self.name.label}) complete[/green]")
        else:
            logger.info("phase %s ended %s: %s", self.name.value, outcome.state.value, sorted(outcome.codes))
        return outcome

    @abstractmethod
    def execute(self, outcome: PhaseOutcome) -> None:
        """Drive the phase's target state, recording evidence on *outcome*."""

    # ------------------------------------------------------------------
    # Outcome helpers
    # ------------------------------------------------------------------

    def blocker(self, code: str, message: str, **extra: Any) -> Blocker:
        return Blocker(code=code, message=message, phase=self.dependencies.get(code), **extra)

    def fail(self, outcome: PhaseOutcome, code: str, message: str, **extra: Any) -> None:
        """Record a blocker and stop the phase.

        Raises:
            PhaseStop: Always.
        """
        blocker = self.blocker(code, message, **extra)
        outcome.blockers.append(blocker)
        outcome.state = PhaseState.BLOCKED if code in self.dependencies else PhaseState.ERROR
        console.print(f"[red]❌ {code}: {message}[/red]")
        if blocker.remediation:
            console.print(f"[yellow]   → {blocker.remediation}[/yellow]")
        raise PhaseStop(code)

    def warn(self, outcome: PhaseOutcome, code: str, message: str, **extra: Any) -> None:
        outcome.warnings.append(self.blocker(code, message, **extra))
        console.print(f"[yellow]⚠️  {code}: {message}[/yellow]")

    def gate(self, outcome: PhaseOutcome, passed: bool, code: str, message: str, **extra: Any) -> None:
        """Fail on an unmet precondition, unless ``--force`` waives a dependency gate."""
        if passed:
            return
        if self.options.force and code in self.dependencies:
            self.warn(outcome, code, f"{message} (continuing: --force)", **extra)
            return
        self.fail(outcome, code, message, **extra)

    def resume(self, outcome: PhaseOutcome, reason: str) -> None:
        """Record a smart-resume skip."""
        outcome.resumed = True
        outcome.evidence["resumed"] = True
        console.print(f"[green]✅ {reason}; skipping install (smart resume)[/green]")

    def helm_step(
        self,
        outcome: PhaseOutcome,
        release: str,
        result: CommandResult,
        code: str = "HELM_INSTALL_FAILED",
    ) -> None:
        """Track an install in evidence, failing the phase if it did not succeed."""
        outcome.evidence.setdefault("releases", []).append(
            {"name": release, "status": "deployed" if result.ok else "failed"}
        )
        if not result.ok:
            self.fail(outcome, code, f"Failed to install {release}: {result.output[:500]}")
        console.print(f"[green]   ✓ {release}[/green]")

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def check_platform(self, outcome: PhaseOutcome, unhealthy_code: str | None = None) -> None:
        """Gate on node and CoreDNS readiness.

        Args:
            outcome: Phase outcome receiving evidence and blockers.
            unhealthy_code: Single code for every failure; None reports the
                specific cause (no nodes, no ready nodes, CoreDNS).
        """
        health = self.probes.platform_health()
        outcome.evidence["platform"] = health.as_evidence()
        if health.healthy:
            return
        if unhealthy_code:
            code = unhealthy_code
        elif health.nodes.total == 0:
            code = "NO_NODES_AVAILABLE"
        elif health.nodes.ready == 0:
            code = "NO_READY_NODES"
        else:
            code = "COREDNS_NOT_READY"
        self.gate(
            outcome, False, code,
            f"Platform unhealthy: {health.nodes.ready}/{health.nodes.total} nodes ready, "
            f"CoreDNS {health.coredns.describe()}",
            remediation="Fix the cluster nodes first (Phase 1: Foundation).",
            diagnostics={
                "platform": health.as_evidence(),
                "events": self.probes.events_tail(NS_KUBE_SYSTEM, EVENTS_TAIL_LINES),
            },
        )

    def wait_for_pods(
        self, namespace: str, minutes: float, selector: str | None = None, label: str = "pods",
    ) -> WaitResult[PodSummary]:
        return self.waiter.wait_until_ready(
            lambda: self.probes.pods(namespace, selector),
            lambda pods: pods.all_ready,
            max_wait_minutes=minutes,
            poll_interval_seconds=PODS_POLL_INTERVAL_SECONDS,
            label=label,
            describe=PodSummary.describe,
        )

    def pod_failure_details(self, namespace: str, pods: PodSummary) -> dict[str, Any]:
        """Event tail plus describe excerpts for the first few not-ready pods."""
        described = {
            pod.name: head(self.probes.describe_pod(pod.name, namespace), 40)
            for pod in pods.not_ready[:DESCRIBE_POD_LIMIT]
        }
        return {
            "pods": pods.describe(),
            "not_ready": [f"{p.name} ({p.phase}{', ' + p.reason if p.reason else ''})" for p in pods.not_ready],
            "events": self.probes.events_tail(namespace, EVENTS_TAIL_LINES),
            "describe": described,
        }

    def classify_pod_failure(self, outcome: PhaseOutcome, namespace: str, pods: PodSummary) -> None:
        """Turn a pod readiness timeout into the most specific blocker available."""
        details = self.pod_failure_details(namespace, pods)
        outcome.evidence["pod_failure"] = details
        pending = [p for p in pods.not_ready if p.pending]
        if pending and "INSUFFICIENT_CAPACITY" in self.dependencies:
            self.fail(
                outcome, "INSUFFICIENT_CAPACITY",
                f"{len(pending)} pod(s) Pending: {', '.join(p.name for p in pending)}",
                remediation="Check Karpenter node provisioning (Phase 3: Compute).",
                diagnostics=details,
            )
        for pod in pods.not_ready:
            if not pod.crash_looping:
                continue
            analysis = analyze_pod(self.probes, pod.name, namespace)
            if analysis.diagnosis:
                self.fail(
                    outcome, analysis.diagnosis.code,
                    f"{pod.name}: {analysis.diagnosis.summary}",
                    remediation=analysis.diagnosis.remediation,
                    diagnostics=analysis.as_evidence(),
                )
        self.fail(
            outcome, "PODS_NOT_READY",
            f"Pods not ready in namespace {namespace}: {pods.describe()}",
            commands=[
                f"kubectl get pods -n {namespace}",
                f"kubectl get events -n {namespace} --sort-by=.lastTimestamp",
            ],
            diagnostics=details,
        )
