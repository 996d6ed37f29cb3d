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

"""Phase 7: load balancer controller, public ingress, and DNS guidance."""

from __future__ import annotations

import json
from typing import Any

from lakehouse_installer import console
from lakehouse_installer.constants import (
    ALB_CONTROLLER_DEPLOYMENT,
    ALB_CONTROLLER_SERVICE_ACCOUNT,
    DNS_RECORD_TTL,
    HELM_RELEASE_ALB_CONTROLLER,
    HELM_RELEASE_INGRESS,
    HELM_TIMEOUT_ALB,
    INGRESS_HOSTNAME_MAX_WAIT_MINUTES,
    INGRESS_HOSTNAME_POLL_INTERVAL_SECONDS,
    NS_KUBE_SYSTEM,
    PREVIOUS_PHASE_MAX_WAIT_MINUTES,
    dep_value,
    ingext_chart,
)
from lakehouse_installer.identity import AlbControllerIdentityTask
from lakehouse_installer.models import PhaseName, PhaseOutcome
from lakehouse_installer.phases.base import Phase
from lakehouse_installer.probes import HostedZone, IngressInfo, root_domain
from lakehouse_installer.provisioning import ProvisioningError, report_rollback
from lakehouse_installer.tools import created_or_exists


def dns_instructions(site_domain: str, hostname: str | None, zone: HostedZone | None) -> dict[str, Any]:
    """How to point *site_domain* at the load balancer.

    With a public hosted zone for the root domain the record can be created
    through Route53; otherwise the operator adds a CNAME at their provider.
    """
    target = hostname or "<load balancer hostname, still provisioning>"
    record = {"name": site_domain, "type": "CNAME", "target": target, "ttl": DNS_RECORD_TTL}
    instructions: dict[str, Any] = {
        "root_domain": root_domain(site_domain),
        "record": record,
        "hosted_zone": zone.zone_id if zone else None,
        "automatic": zone is not None and not zone.private,
    }
    if instructions["automatic"] and hostname:
        change = {
            "Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": site_domain,
                    "Type": "CNAME",
                    "TTL": DNS_RECORD_TTL,
                    "ResourceRecords": [{"Value": hostname}],
                },
            }]
        }
        instructions["command"] = (
            f"aws route53 change-resource-record-sets --hosted-zone-id {zone.zone_id} "
            f"--change-batch '{json.dumps(change)}'"
        )
    else:
        instructions["manual"] = (
            f"Create a CNAME record at your DNS provider: Name {site_domain}, Target {target}, TTL {DNS_RECORD_TTL}"
        )
    return instructions


class IngressPhase(Phase):
    name = PhaseName.INGRESS
    required_keys = ("CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "NAMESPACE", "SITE_DOMAIN", "CERT_ARN")
    dependencies = {"PHASE6_NOT_READY": PhaseName.DATALAKE}

    def execute(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        ns = cfg.namespace
        lake = self.wait_for_pods(ns, PREVIOUS_PHASE_MAX_WAIT_MINUTES, label="datalake pods")
        outcome.evidence["datalake_pods"] = lake.last_state.describe()
        self.gate(
            outcome, lake.ok, "PHASE6_NOT_READY",
            f"Datalake pods not ready ({lake.last_state.describe()})",
            remediation="Re-run Phase 6: Datalake.",
        )
        outcome.evidence["gates"] = {"cert_arn_known": bool(cfg.cert_arn), "site_domain_known": True}

        controller = self.probes.deployment(ALB_CONTROLLER_DEPLOYMENT, NS_KUBE_SYSTEM)
        ingress_release = self.probes.release(HELM_RELEASE_INGRESS, ns)
        outcome.evidence["alb_controller"] = controller.describe()
        if controller.ready and ingress_release is not None and ingress_release.deployed:
            self.resume(outcome, "Load balancer controller and ingress are in place")
        else:
            if not controller.ready:
                self._install_controller(outcome)
            self.helm_step(
                outcome, HELM_RELEASE_INGRESS,
                self.tools.helm_upgrade_install(
                    HELM_RELEASE_INGRESS, ingext_chart(HELM_RELEASE_INGRESS), ns,
                    {
                        "siteDomain": cfg.resolved_site_domain or "",
                        "certArn": cfg.cert_arn or "",
                        "loadBalancerName": cfg.load_balancer_name,
                    },
                ),
                code="INGRESS_HELM_INSTALL_FAILED",
            )

        self._report_endpoint(outcome)

    def _install_controller(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        release = self.probes.release(HELM_RELEASE_ALB_CONTROLLER, NS_KUBE_SYSTEM)
        if release is not None and release.deployed:
            self.warn(outcome, "ALB_CONTROLLER_NOT_READY",
                      f"{HELM_RELEASE_ALB_CONTROLLER} is deployed but not ready yet")
            return

        console.print("[yellow]ℹ️  Installing AWS Load Balancer Controller...[/yellow]")
        task = AlbControllerIdentityTask()
        task_ctx = self.ctx.task_context()
        try:
            record = task.execute(task_ctx)
        except ProvisioningError as err:
            self.fail(outcome, err.code, str(err))
        outcome.evidence["alb_identity"] = record.details

        def _undo_identity(code: str, message: str) -> None:
            steps = task.rollback(record, task_ctx)
            report_rollback(steps)
            self.fail(
                outcome, code, message,
                diagnostics={"rollback": [{"step": s.name, "ok": s.ok, "detail": s.detail} for s in steps]},
            )

        repo_name = dep_value("aws_load_balancer_controller", "repo_name", default="eks")
        repo_url = dep_value("aws_load_balancer_controller", "repo_url", default="https://aws.github.io/eks-charts")
        added = self.tools.helm("repo", "add", repo_name, repo_url)
        if not created_or_exists(added):
            _undo_identity("ALB_CONTROLLER_INSTALL_FAILED", f"helm repo add {repo_name} failed: {added.output}")
        self.tools.helm("repo", "update", repo_name)

        vpc_id = self.probes.vpc_id()
        if vpc_id is None:
            _undo_identity("VPC_ID_NOT_FOUND", f"Could not determine the VPC of cluster {cfg.cluster_name}")

        result = self.tools.helm_upgrade_install(
            HELM_RELEASE_ALB_CONTROLLER,
            dep_value("aws_load_balancer_controller", "chart", default="eks/aws-load-balancer-controller"),
            NS_KUBE_SYSTEM,
            {
                "clusterName": cfg.cluster_name or "",
                "region": cfg.aws_region,
                "vpcId": vpc_id,
                "serviceAccount.create": "true",
                "serviceAccount.name": ALB_CONTROLLER_SERVICE_ACCOUNT,
            },
            version=dep_value("aws_load_balancer_controller", "version") or None,
            wait_timeout=HELM_TIMEOUT_ALB,
        )
        if not result.ok:
            _undo_identity("ALB_CONTROLLER_INSTALL_FAILED",
                           f"Controller install failed: {result.output[:500]}")
        console.print("[green]   ✓ aws-load-balancer-controller[/green]")

    def _report_endpoint(self, outcome: PhaseOutcome) -> None:
        cfg = self.config
        site = cfg.resolved_site_domain or ""
        wait = self.waiter.wait_until_ready(
            lambda: self.probes.ingress(cfg.namespace),
            lambda ing: bool(ing.hostname),
            max_wait_minutes=INGRESS_HOSTNAME_MAX_WAIT_MINUTES,
            poll_interval_seconds=INGRESS_HOSTNAME_POLL_INTERVAL_SECONDS,
            label="ingress hostname",
            describe=lambda ing: ing.hostname or "provisioning",
        )
        ingress: IngressInfo = wait.last_state
        outcome.evidence["ingress"] = {
            "name": ingress.name,
            "hostname": ingress.hostname,
            "status": "ACTIVE" if ingress.hostname else "PROVISIONING",
            "cert_arn": ingress.cert_arn,
        }
        if ingress.exists and ingress.cert_arn != cfg.cert_arn:
            self.warn(outcome, "CERT_ANNOTATION_MISMATCH",
                      f"Ingress certificate annotation is {ingress.cert_arn!r}, expected {cfg.cert_arn}")

        zone = self.probes.hosted_zone(root_domain(site))
        outcome.evidence["dns"] = dns_instructions(site, ingress.hostname, zone)
        if ingress.hostname:
            console.print(f"[green]✅ Load balancer: {ingress.hostname}[/green]")
        else:
            console.print("[yellow]ℹ️  Load balancer still provisioning; re-run status in a few minutes[/yellow]")
