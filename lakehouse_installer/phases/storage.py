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

"""Phase 2: datalake bucket and the workload identity that can reach it."""

from __future__ import annotations

from lakehouse_installer.constants import (
    NS_KUBE_SYSTEM,
    POD_IDENTITY_AGENT_MAX_WAIT_MINUTES,
    POD_IDENTITY_AGENT_POLL_INTERVAL_SECONDS,
    POD_IDENTITY_AGENT_SELECTOR,
)
from lakehouse_installer.identity import BucketAccessTask
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.probes import PodSummary
from lakehouse_installer.provisioning import ProvisioningError
from lakehouse_installer.tools import created_or_exists


class StoragePhase(Phase):
    name = PhaseName.STORAGE
    required_keys = ("CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "NAMESPACE", "S3_BUCKET")
    dependencies = {"FOUNDATION_NOT_READY": PhaseName.FOUNDATION}

    def execute(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        agent = self.waiter.wait_until_ready(
            lambda: self.probes.pods(NS_KUBE_SYSTEM, POD_IDENTITY_AGENT_SELECTOR),
            lambda pods: pods.all_ready,
            max_wait_minutes=POD_IDENTITY_AGENT_MAX_WAIT_MINUTES,
            poll_interval_seconds=POD_IDENTITY_AGENT_POLL_INTERVAL_SECONDS,
            label="eks-pod-identity-agent",
            describe=PodSummary.describe,
        )
        outcome.evidence["pod_identity_agent"] = agent.last_state.describe()
        self.gate(
            outcome, agent.ok, "FOUNDATION_NOT_READY",
            f"eks-pod-identity-agent not ready ({agent.last_state.describe()})",
            remediation="Re-run Phase 1: Foundation to install the pod identity agent add-on.",
        )

        bucket_exists = self.probes.bucket_exists(cfg.s3_bucket or "")
        sa_exists = self.probes.service_account(cfg.service_account, cfg.namespace).exists
        association = self.probes.pod_identity_exists(cfg.namespace, cfg.service_account)
        outcome.evidence["bucket"] = {"name": cfg.s3_bucket, "exists": bucket_exists}
        outcome.evidence["service_account"] = {"name": cfg.service_account, "exists": sa_exists}
        outcome.evidence["pod_identity"] = {"role": cfg.storage_role_name, "exists": association}
        if bucket_exists and sa_exists and association:
            self.resume(outcome, f"Bucket {cfg.s3_bucket} and its pod identity exist")
            return

        ns = self.tools.ensure_namespace(cfg.namespace)
        if not ns.ok:
            self.fail(outcome, "NAMESPACE_CREATE_FAILED", f"Cannot create namespace {cfg.namespace}: {ns.output}")
        sa = self.tools.kubectl("create", "serviceaccount", cfg.service_account, "-n", cfg.namespace)
        if not created_or_exists(sa):
            self.fail(outcome, "SERVICEACCOUNT_CREATE_FAILED",
                      f"Cannot create service account {cfg.service_account}: {sa.output}")

        task = BucketAccessTask()
        task_ctx = self.ctx.task_context()
        if not task.validate(task_ctx):
            self.fail(outcome, "CONFIG_MISSING", "Bucket access needs S3_BUCKET, CLUSTER_NAME and NAMESPACE")
        try:
            record = task.execute(task_ctx)
        except ProvisioningError as err:
            self.fail(outcome, err.code, str(err))
        outcome.evidence["bucket"]["exists"] = True
        outcome.evidence["pod_identity"]["exists"] = True
        outcome.evidence["provisioned"] = record.details
