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

"""Phase 6: lake configuration, Karpenter node pools, and the lake services."""

from __future__ import annotations

from lakehouse_installer.constants import (
    DATALAKE_PODS_MAX_WAIT_MINUTES,
    DATALAKE_RELEASES,
    HELM_RELEASE_LAKE,
    HELM_RELEASE_LAKE_CONFIG,
    HELM_RELEASE_MERGE_POOL,
    HELM_RELEASE_S3_LAKE,
    HELM_RELEASE_SEARCH_POOL,
    HELM_TIMEOUT_LAKE,
    HELM_TIMEOUT_NODE_POOL,
    KARPENTER_DEPLOYMENT,
    NS_KUBE_SYSTEM,
    STREAM_POD_PREFIXES,
    ingext_chart,
)
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase

_NODE_POOL_CHART = "ingext-eks-pool"


class DatalakePhase(Phase):
    name = PhaseName.DATALAKE
    required_keys = ("CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "NAMESPACE", "S3_BUCKET")
    dependencies = {
        "STREAM_PODS_NOT_READY": PhaseName.STREAM,
        "S3_BUCKET_NOT_FOUND": PhaseName.STORAGE,
        "POD_IDENTITY_NOT_FOUND": PhaseName.STORAGE,
        "KARPENTER_NOT_READY": PhaseName.COMPUTE,
        "INSUFFICIENT_CAPACITY": PhaseName.COMPUTE,
    }

    def _gates(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        pods = self.probes.pods(cfg.namespace)
        stream = [p for p in pods.active if p.name.startswith(STREAM_POD_PREFIXES)]
        stream_ready = bool(stream) and all(p.ready for p in stream)
        outcome.evidence["stream_pods"] = f"{sum(p.ready for p in stream)}/{len(stream)} ready"
        self.gate(
            outcome, stream_ready, "STREAM_PODS_NOT_READY",
            f"Stream api/platform pods not ready ({outcome.evidence['stream_pods']})",
            remediation="Re-run Phase 5: Stream.",
        )

        bucket = self.probes.bucket_exists(cfg.s3_bucket or "")
        outcome.evidence["bucket_exists"] = bucket
        self.gate(
            outcome, bucket, "S3_BUCKET_NOT_FOUND", f"Bucket {cfg.s3_bucket} not found",
            remediation="Re-run Phase 2: Storage.",
        )

        identity = self.probes.pod_identity_exists(cfg.namespace, cfg.service_account)
        if not identity:
            identity = self.probes.service_account(cfg.service_account, cfg.namespace).role_arn is not None
        outcome.evidence["pod_identity"] = identity
        self.gate(
            outcome, identity, "POD_IDENTITY_NOT_FOUND",
            f"No pod identity for {cfg.namespace}/{cfg.service_account}",
            remediation="Re-run Phase 2: Storage.",
        )

        karpenter = self.probes.deployment(KARPENTER_DEPLOYMENT, NS_KUBE_SYSTEM)
        outcome.evidence["karpenter"] = karpenter.describe()
        self.gate(
            outcome, karpenter.ready, "KARPENTER_NOT_READY",
            f"Karpenter not ready ({karpenter.describe()}); node pools need it",
            remediation="Re-run Phase 3: Compute.",
        )

    def execute(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        ns = cfg.namespace
        self._gates(outcome)

        if self.probes.releases_deployed(DATALAKE_RELEASES, ns):
            pods = self.probes.pods(ns)
            outcome.evidence["pods"] = pods.describe()
            if pods.all_ready:
                outcome.evidence["releases"] = [{"name": r, "status": "deployed"} for r in DATALAKE_RELEASES]
                self.resume(outcome, "Datalake releases are deployed and pods are ready")
                return

        self.helm_step(
            outcome, HELM_RELEASE_LAKE_CONFIG,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_LAKE_CONFIG, ingext_chart(HELM_RELEASE_LAKE_CONFIG), ns,
                {"storageType": "s3", "s3.bucket": cfg.s3_bucket or "", "s3.region": cfg.aws_region},
            ),
        )
        self.helm_step(
            outcome, HELM_RELEASE_MERGE_POOL,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_MERGE_POOL, ingext_chart(_NODE_POOL_CHART), ns,
                {"poolName": "pool-merge", "clusterName": cfg.cluster_name or ""},
                wait_timeout=HELM_TIMEOUT_NODE_POOL,
            ),
            code="NODE_POOL_INSTALL_FAILED",
        )
        self.helm_step(
            outcome, HELM_RELEASE_SEARCH_POOL,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_SEARCH_POOL, ingext_chart(_NODE_POOL_CHART), ns,
                {"poolName": "pool-search", "clusterName": cfg.cluster_name or "",
                 "cpuLimit": "128", "memoryLimit": "512Gi"},
                wait_timeout=HELM_TIMEOUT_NODE_POOL,
            ),
            code="NODE_POOL_INSTALL_FAILED",
        )
        pools = self.probes.nodepools()
        outcome.evidence["nodepools"] = pools
        if not pools:
            self.warn(outcome, "NODEPOOLS_NOT_FOUND", "No Karpenter nodepools or provisioners listed yet")

        checks = {
            resource: self.probes.can_i("get", resource, ns, cfg.service_account)
            for resource in ("secrets", "configmaps")
        }
        outcome.evidence["rbac"] = checks
        if not all(checks.values()):
            self.warn(
                outcome, "RBAC_NOT_VERIFIED",
                f"Service account {cfg.service_account} access: "
                + ", ".join(f"{k}={'yes' if v else 'no'}" for k, v in checks.items()),
                remediation="Phase 4 installs ingext-manager-role; re-run it if pods fail with forbidden errors.",
            )

        self.helm_step(
            outcome, HELM_RELEASE_S3_LAKE,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_S3_LAKE, ingext_chart(HELM_RELEASE_S3_LAKE), ns,
                {"bucket.name": cfg.s3_bucket or "", "bucket.region": cfg.aws_region},
            ),
        )
        self.helm_step(
            outcome, HELM_RELEASE_LAKE,
            self.tools.helm_upgrade_install(
                HELM_RELEASE_LAKE, ingext_chart(HELM_RELEASE_LAKE), ns, wait_timeout=HELM_TIMEOUT_LAKE,
            ),
        )

        wait = self.wait_for_pods(ns, DATALAKE_PODS_MAX_WAIT_MINUTES, label="datalake pods")
        outcome.evidence["pods"] = wait.last_state.describe()
        if not wait.ok:
            self.classify_pod_failure(outcome, ns, wait.last_state)
