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

"""Installation state inferred from live probes alone.

Nothing is persisted between runs. Every query re-reads the cluster, the
helm release list and the cloud account, so the reported state cannot drift
from what is actually deployed.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from lakehouse_installer import console, logger
from lakehouse_installer.config import EnvironmentConfig
from lakehouse_installer.constants import (
    HEALTHY_READY_RATIO,
    HELM_RELEASE_COMMUNITY,
    HELM_RELEASE_ETCD,
    HELM_RELEASE_INGRESS,
    HELM_RELEASE_KARPENTER,
    HELM_RELEASE_LAKE,
    HELM_RELEASE_STACK,
)
from lakehouse_installer.models import PhaseName
from lakehouse_installer.probes import Probes

_INSTALL = "lakehouse install --approve"


class InstallState(str, Enum):
    NO_ENV = "NO_ENV"
    NO_CLUSTER = "NO_CLUSTER"
    CLUSTER_BLOCKED = "CLUSTER_BLOCKED"
    PHASE_1_COMPLETE = "PHASE_1_COMPLETE"
    PHASE_2_COMPLETE = "PHASE_2_COMPLETE"
    PHASE_3_COMPLETE = "PHASE_3_COMPLETE"
    PHASE_4_COMPLETE = "PHASE_4_COMPLETE"
    PHASE_5_COMPLETE = "PHASE_5_COMPLETE"
    PHASE_6_COMPLETE = "PHASE_6_COMPLETE"
    PHASE_7_COMPLETE = "PHASE_7_COMPLETE"
    HEALTH_DEGRADED = "HEALTH_DEGRADED"
    DNS_PENDING = "DNS_PENDING"

    @classmethod
    def phase_complete(cls, number: int) -> InstallState:
        return cls(f"PHASE_{number}_COMPLETE")


class Recommendation(BaseModel):
    action: str
    reason: str
    command: str | None = None


class StateReport(BaseModel):
    """Where an install stands and what to run next."""

    state: InstallState
    description: str
    phase: int = 0
    evidence: dict[str, Any] = Field(default_factory=dict)
    recommendation: Recommendation


# Releases whose presence marks a phase as done (phases 1 and 2 are not helm-based).
PHASE_RELEASES: dict[PhaseName, tuple[str, ...]] = {
    PhaseName.COMPUTE: (HELM_RELEASE_KARPENTER,),
    PhaseName.CORE: (HELM_RELEASE_STACK, HELM_RELEASE_ETCD),
    PhaseName.STREAM: (HELM_RELEASE_COMMUNITY,),
    PhaseName.DATALAKE: (HELM_RELEASE_LAKE,),
    PhaseName.INGRESS: (HELM_RELEASE_INGRESS,),
}


def probe_parallel(tasks: dict[str, Callable[[], Any]]) -> dict[str, Any]:
    """Run independent read-only probes in parallel.

    Each probe's console output is printed as one block once all are done.

    Args:
        tasks: Mapping of probe name to callable.

    Returns:
        Mapping of probe name to the callable's return value.

    Raises:
        Exception: Re-raises the first exception from any failed probe.
    """
    if not tasks:
        return {}

    results: dict[str, Any] = {}
    outputs: dict[str, str] = {}
    lock = threading.Lock()

    def _run_task(name: str, fn: Callable[[], Any]) -> None:
        with console.buffered() as buf:
            value = fn()
        with lock:
            results[name] = value
            outputs[name] = buf.getvalue()

    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        futures = {executor.submit(_run_task, name, fn): name for name, fn in tasks.items()}
        for future in as_completed(futures):
            future.result()

    for name in tasks:
        if outputs.get(name):
            console.print(outputs[name], end="")
    return results


def highest_phase(bucket_exists: bool, releases: set[str]) -> int:
    """Highest phase number whose defining resources are present (1 = cluster only)."""
    highest = 2 if bucket_exists else 1
    for phase, names in PHASE_RELEASES.items():
        if any(name in releases for name in names):
            highest = max(highest, phase.number)
    return highest


def _after_phase(number: int) -> Recommendation:
    following = list(PhaseName)[number] if number < len(PhaseName) else None
    return Recommendation(
        action="resume",
        reason=f"Phase {number} is complete; continue with {following.label if following else 'verification'}",
        command=_INSTALL,
    )


def infer_state(config: EnvironmentConfig | None, probes: Probes | None) -> StateReport:
    """Classify the install from live probes.

    Classification order: configuration, cluster, highest phase, pod health,
    ingress hostname, DNS resolution.

    Args:
        config: Loaded environment, or None when no env file exists yet.
        probes: Probes bound to *config*; unused when *config* is None.

    Returns:
        The inferred state with its evidence and a recommended next command.
    """
    if config is None or probes is None or not config.cluster_name:
        return StateReport(
            state=InstallState.NO_ENV,
            description="No environment configured",
            recommendation=Recommendation(
                action="configure",
                reason="CLUSTER_NAME and the other environment keys are not set",
                command="lakehouse install --env-file lakehouse_<namespace>.env",
            ),
        )

    evidence: dict[str, Any] = {"cluster_name": config.cluster_name, "namespace": config.namespace}
    cluster = probes.cluster()
    evidence["cluster_status"] = cluster.status
    if not cluster.exists:
        return StateReport(
            state=InstallState.NO_CLUSTER,
            description=f"Cluster {config.cluster_name} does not exist",
            evidence=evidence,
            recommendation=Recommendation(action="install", reason="Start with Phase 1: Foundation",
                                          command=_INSTALL),
        )
    reachable = probes.cluster_reachable() if cluster.active else False
    evidence["cluster_reachable"] = reachable
    if not reachable:
        creating = cluster.status == "CREATING"
        return StateReport(
            state=InstallState.CLUSTER_BLOCKED,
            description=f"Cluster {config.cluster_name} is {cluster.status} and not reachable",
            evidence=evidence,
            recommendation=Recommendation(
                action="wait" if creating else "diagnose",
                reason="The control plane is still being created" if creating
                else "The cluster exists but kubectl cannot reach it",
                command=f"aws eks update-kubeconfig --name {config.cluster_name} --region {config.aws_region}",
            ),
        )

    ns = config.namespace
    found = probe_parallel({
        "releases": lambda: probes.releases(None),
        "pods": lambda: probes.pods(ns),
        "bucket": lambda: probes.bucket_exists(config.s3_bucket) if config.s3_bucket else False,
        "ingress": lambda: probes.ingress(ns),
    })
    releases = found["releases"]
    pods = found["pods"]
    ingress = found["ingress"]
    evidence["releases"] = {name: info.status for name, info in sorted(releases.items())}
    evidence["bucket_exists"] = found["bucket"]
    evidence["pods"] = {"ready": pods.ready, "total": pods.total}
    evidence["ingress_hostname"] = ingress.hostname

    number = highest_phase(found["bucket"], set(releases))
    evidence["highest_phase"] = number
    logger.debug("highest completed phase: %d", number)

    if pods.total and number >= PhaseName.CORE.number and pods.ready / pods.total < HEALTHY_READY_RATIO:
        stuck = pods.not_ready[0].name if pods.not_ready else ""
        return StateReport(
            state=InstallState.HEALTH_DEGRADED,
            description=f"Phase {number} installed but only {pods.describe()} in {ns}",
            phase=number,
            evidence=evidence,
            recommendation=Recommendation(
                action="diagnose",
                reason=f"Less than {int(HEALTHY_READY_RATIO * 100)}% of pods are ready",
                command=f"lakehouse diagnose {stuck}" if stuck else f"kubectl get pods -n {ns}",
            ),
        )

    if number < PhaseName.INGRESS.number:
        return StateReport(
            state=InstallState.phase_complete(number),
            description=f"Phase {number} ({list(PhaseName)[number - 1].label}) complete",
            phase=number,
            evidence=evidence,
            recommendation=_after_phase(number),
        )

    if not ingress.hostname:
        return StateReport(
            state=InstallState.PHASE_7_COMPLETE,
            description="All phases installed; load balancer still provisioning",
            phase=number,
            evidence=evidence,
            recommendation=Recommendation(
                action="wait",
                reason="The ingress has no load balancer hostname yet",
                command=f"kubectl get ingress -n {ns}",
            ),
        )

    site = config.resolved_site_domain
    resolves = probes.dns_resolves(site) if site else None
    evidence["dns_resolves"] = resolves
    if resolves is False:
        return StateReport(
            state=InstallState.DNS_PENDING,
            description=f"{site} does not resolve yet",
            phase=number,
            evidence=evidence,
            recommendation=Recommendation(
                action="configure_dns",
                reason=f"Point {site} at {ingress.hostname} with a CNAME record",
                command=f"dig +short {site}",
            ),
        )

    return StateReport(
        state=InstallState.PHASE_7_COMPLETE,
        description=f"Lakehouse is running at https://{site}",
        phase=number,
        evidence=evidence,
        recommendation=Recommendation(action="none", reason="Installation is complete"),
    )
