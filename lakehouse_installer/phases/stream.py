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

"""Phase 5: the stream application releases, with crash-loop analysis."""

from __future__ import annotations

from lakehouse_installer import console
from lakehouse_installer.constants import (
    CORE_POD_SELECTOR,
    EVENTS_TAIL_LINES,
    HELM_LOCK_MAX_WAIT_MINUTES,
    HELM_LOCK_POLL_INTERVAL_SECONDS,
    HELM_RELEASE_COMMUNITY,
    HELM_RELEASE_COMMUNITY_CONFIG,
    HELM_RELEASE_COMMUNITY_INIT,
    LABEL_PART_OF_COMMUNITY,
    PREVIOUS_PHASE_MAX_WAIT_MINUTES,
    STREAM_PODS_MAX_WAIT_MINUTES,
    STREAM_RELEASES,
    ingext_chart,
)
from lakehouse_installer.diagnostics import PodAnalysis, analyze_pod
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.probes import PodSummary


class StreamPhase(Phase):
    name = PhaseName.STREAM
    required_keys = ("AWS_REGION", "AWS_PROFILE", "NAMESPACE", "SITE_DOMAIN")
    dependencies = {
        "PLATFORM_UNHEALTHY": PhaseName.FOUNDATION,
        "PHASE4_PODS_NOT_READY": PhaseName.CORE,
    }

    def execute(self, outcome: PhaseOutcome) -> None:
        ns = self.config.namespace
        self.check_platform(outcome, unhealthy_code="PLATFORM_UNHEALTHY")

        core = self.wait_for_pods(ns, PREVIOUS_PHASE_MAX_WAIT_MINUTES, CORE_POD_SELECTOR, label="core pods")
        outcome.evidence["core_pods"] = core.last_state.describe()
        self.gate(
            outcome, core.ok, "PHASE4_PODS_NOT_READY",
            f"Core service pods not ready ({core.last_state.describe()})",
            remediation="Re-run Phase 4: Core Services.",
            diagnostics={"events": self.probes.events_tail(ns, EVENTS_TAIL_LINES)} if not core.ok else {},
        )

        if self.probes.releases_deployed(STREAM_RELEASES, ns):
            pods = self.probes.pods(ns, LABEL_PART_OF_COMMUNITY)
            outcome.evidence["pods"] = pods.describe()
            if pods.all_ready:
                outcome.evidence["releases"] = [{"name": r, "status": "deployed"} for r in STREAM_RELEASES]
                self.resume(outcome, "Stream releases are deployed and pods are ready")
                return

        self.helm_step(
            outcome, HELM_RELEASE_COMMUNITY_CONFIG,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_COMMUNITY_CONFIG, ingext_chart(HELM_RELEASE_COMMUNITY_CONFIG), ns,
                {"siteDomain": self.config.resolved_site_domain or ""},
            ),
        )
        self.helm_step(
            outcome, HELM_RELEASE_COMMUNITY_INIT,
            self.tools.helm_upgrade_install(HELM_RELEASE_COMMUNITY_INIT, ingext_chart(HELM_RELEASE_COMMUNITY_INIT), ns),
        )
        self._wait_for_helm_lock(outcome, HELM_RELEASE_COMMUNITY)
        # Readiness is watched below with crash analysis instead of helm --wait.
        self.helm_step(
            outcome, HELM_RELEASE_COMMUNITY,
            self.tools.helm_upgrade_install(HELM_RELEASE_COMMUNITY, ingext_chart(HELM_RELEASE_COMMUNITY), ns),
        )

        wait = self._wait_stream_pods()
        if not wait.ok and self._heal_rbac(wait.last_state):
            wait = self._wait_stream_pods()
        outcome.evidence["pods"] = wait.last_state.describe()
        if not wait.ok:
            self._report_failure(outcome, wait.last_state)

    def _wait_stream_pods(self):
        return self.wait_for_pods(
            self.config.namespace, STREAM_PODS_MAX_WAIT_MINUTES, LABEL_PART_OF_COMMUNITY, label="stream pods",
        )

    def _wait_for_helm_lock(self, outcome: PhaseOutcome, release: str) -> None:
        ns = self.config.namespace
        if not self.probes.helm_locked(release, ns):
            return
        console.print(f"[yellow]ℹ️  {release} has a pending operation; waiting for the helm lock...[/yellow]")
        wait = self.waiter.wait_until_ready(
            lambda: self.probes.helm_locked(release, ns),
            lambda locked: not locked,
            max_wait_minutes=HELM_LOCK_MAX_WAIT_MINUTES,
            poll_interval_seconds=HELM_LOCK_POLL_INTERVAL_SECONDS,
            label=f"{release} lock",
            describe=lambda locked: "locked" if locked else "free",
        )
        if not wait.ok:
            self.fail(
                outcome, "HELM_INSTALL_FAILED", f"{release} is still locked by a pending helm operation",
                commands=[f"helm history {release} -n {ns}", f"helm rollback {release} -n {ns}"],
            )

    def _analyses(self, pods: PodSummary) -> list[PodAnalysis]:
        return [analyze_pod(self.probes, pod.name, self.config.namespace) for pod in pods.not_ready]

    def _heal_rbac(self, pods: PodSummary) -> bool:
        """Restart pods that failed only because RBAC was not yet in place."""
        ns = self.config.namespace
        stale = [a.pod for a in self._analyses(pods) if a.diagnosis and a.diagnosis.code == "RBAC_MISSING_PERMISSIONS"]
        if not stale:
            return False
        console.print(f"[yellow]ℹ️  Restarting {len(stale)} pod(s) that started before RBAC was granted[/yellow]")
        for pod in stale:
            self.tools.kubectl("delete", "pod", pod, "-n", ns)
        return True

    def _report_failure(self, outcome: PhaseOutcome, pods: PodSummary) -> None:
        ns = self.config.namespace
        diagnosed = [a for a in self._analyses(pods) if a.diagnosis]
        outcome.evidence["pod_failure"] = self.pod_failure_details(ns, pods)
        if not diagnosed:
            self.fail(
                outcome, "POD_NOT_READY",
                f"Stream pods not ready: {pods.describe()}",
                diagnostics=outcome.evidence["pod_failure"],
                commands=[f"kubectl get pods -n {ns} -l {LABEL_PART_OF_COMMUNITY}"],
            )
        for analysis in diagnosed[:-1]:
            outcome.blockers.append(self.blocker(
                analysis.diagnosis.code, f"{analysis.pod}: {analysis.diagnosis.summary}",
                remediation=analysis.diagnosis.remediation, diagnostics=analysis.as_evidence(),
            ))
        last = diagnosed[-1]
        self.fail(
            outcome, last.diagnosis.code, f"{last.pod}: {last.diagnosis.summary}",
            remediation=last.diagnosis.remediation, diagnostics=last.as_evidence(),
        )
