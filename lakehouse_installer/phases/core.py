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

"""Phase 4: namespace, app secret, RBAC, and the shared infrastructure releases."""

from __future__ import annotations

import secrets
import string

from lakehouse_installer.constants import (
    APP_SECRET_NAME,
    APP_SECRET_TOKEN_LENGTH,
    APP_SECRET_TOKEN_PREFIX,
    CORE_POD_SELECTOR,
    CORE_PODS_MAX_WAIT_MINUTES,
    CORE_RELEASES,
    HELM_RELEASE_MANAGER_ROLE,
    HELM_RELEASE_SERVICEACCOUNT,
    HELM_TIMEOUT_CORE,
    HELM_TIMEOUT_RBAC,
    KARPENTER_DEPLOYMENT,
    NS_KUBE_SYSTEM,
    ingext_chart,
)
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.tools import created_or_exists


def generate_token() -> str:
    alphabet = string.ascii_letters + string.digits
    return APP_SECRET_TOKEN_PREFIX + "".join(secrets.choice(alphabet) for _ in range(APP_SECRET_TOKEN_LENGTH))


class CorePhase(Phase):
    name = PhaseName.CORE
    required_keys = ("AWS_REGION", "AWS_PROFILE", "NAMESPACE")
    dependencies = {
        "NO_NODES_AVAILABLE": PhaseName.FOUNDATION,
        "NO_READY_NODES": PhaseName.FOUNDATION,
        "COREDNS_NOT_READY": PhaseName.FOUNDATION,
        "KARPENTER_NOT_READY": PhaseName.COMPUTE,
        "INSUFFICIENT_CAPACITY": PhaseName.COMPUTE,
    }

    def execute(self, outcome: PhaseOutcome) -> None:
        ns = self.config.namespace
        self.check_platform(outcome)
        karpenter = self.probes.deployment(KARPENTER_DEPLOYMENT, NS_KUBE_SYSTEM)
        outcome.evidence["karpenter"] = karpenter.describe()
        self.gate(
            outcome, karpenter.ready, "KARPENTER_NOT_READY",
            f"Karpenter is not ready ({karpenter.describe()})",
            remediation="Re-run Phase 3: Compute.",
        )

        if self.probes.releases_deployed(CORE_RELEASES, ns):
            pods = self.probes.pods(ns, CORE_POD_SELECTOR)
            outcome.evidence["pods"] = pods.describe()
            if pods.all_ready:
                outcome.evidence["releases"] = [{"name": r, "status": "deployed"} for r in CORE_RELEASES]
                self.resume(outcome, "Core releases are deployed and pods are ready")
                return

        created = self.tools.ensure_namespace(ns)
        if not created.ok:
            self.fail(outcome, "NAMESPACE_CREATE_FAILED", f"Cannot create namespace {ns}: {created.output}")
        self._ensure_app_secret(outcome)

        sa = self.tools.helm_upgrade_install(
            HELM_RELEASE_SERVICEACCOUNT, ingext_chart(HELM_RELEASE_SERVICEACCOUNT), ns,
        )
        if not sa.ok:
            self.warn(outcome, "SERVICEACCOUNT_CHART_FAILED",
                      f"{HELM_RELEASE_SERVICEACCOUNT} not installed: {sa.output[:300]}")

        self.helm_step(
            outcome, HELM_RELEASE_MANAGER_ROLE,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_MANAGER_ROLE, ingext_chart(HELM_RELEASE_MANAGER_ROLE), ns,
                wait_timeout=HELM_TIMEOUT_RBAC,
            ),
            code="RBAC_INSTALL_FAILED",
        )
        for release in CORE_RELEASES:
            self.helm_step(
                outcome, release,
                self.tools.helm_upgrade_install(release, ingext_chart(release), ns, wait_timeout=HELM_TIMEOUT_CORE),
            )

        wait = self.wait_for_pods(ns, CORE_PODS_MAX_WAIT_MINUTES, CORE_POD_SELECTOR, label="core pods")
        outcome.evidence["pods"] = wait.last_state.describe()
        if not wait.ok:
            self.classify_pod_failure(outcome, ns, wait.last_state)

    def _ensure_app_secret(self, outcome: PhaseOutcome) -> None:
        ns = self.config.namespace
        if self.tools.kubectl("get", "secret", APP_SECRET_NAME, "-n", ns).ok:
            outcome.evidence["app_secret"] = "exists"
            return
        result = self.tools.kubectl(
            "create", "secret", "generic", APP_SECRET_NAME, "-n", ns, f"--from-literal=token={generate_token()}",
        )
        if not created_or_exists(result):
            self.fail(outcome, "APP_SECRET_CREATE_FAILED", f"Failed to create {APP_SECRET_NAME}: {result.output}")
        outcome.evidence["app_secret"] = "created"
