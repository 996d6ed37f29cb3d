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

from __future__ import annotations

import pytest

from conftest import failed, ok, ok_json, pod, pods_payload, releases_payload, script_provisioned
from lakehouse_installer.config import ConfigurationError, EnvironmentConfig, InstallOptions
from lakehouse_installer.installer import Installer, render_plan
from lakehouse_installer.models import PhaseName, RunStatus
from lakehouse_installer.waiter import Waiter

WRITE_PREFIXES = (
    "eksctl create",
    "helm upgrade",
    "helm uninstall",
    "aws s3api create-bucket",
    "aws iam create",
    "kubectl create",
    "kubectl delete",
    "bash ",
)


def _installer(config, runner, clock, **options) -> Installer:
    return Installer(
        config,
        InstallOptions(approve=True, **options),
        runner,
        sleep=clock.sleep,
        waiter=Waiter(clock=clock, sleep=clock.sleep, quiet=True),
        check_tool=lambda _tool: None,
    )


def _script_karpenter_unschedulable(runner):
    script_provisioned(runner)
    without_karpenter = releases_payload(
        "ingext-stack", "etcd-single", "etcd-single-cronjob",
        "ingext-community-config", "ingext-community-init", "ingext-community",
        "ingext-lake-config", "ingext-merge-pool", "ingext-search-pool", "ingext-s3-lake", "ingext-lake",
        "ingext-community-ingress-aws",
    )
    runner.on("helm list", ok_json(without_karpenter))
    runner.on("kubectl get deployment karpenter -n kube-system", ok_json({"spec": {"replicas": 1}, "status": {}}))
    runner.on(
        "kubectl get pods -n kube-system -l app.kubernetes.io/name=karpenter",
        ok_json(pods_payload(pod("karpenter-6c9d", ready=False, phase="Pending"))),
    )
    runner.on(
        "kubectl describe pod karpenter-6c9d -n kube-system",
        ok("Name: karpenter-6c9d\nEvents:\n  Warning  FailedScheduling  0/2 nodes are available: 2 Insufficient cpu."),
    )


def test_unapproved_run_returns_plan_without_side_effects(config, runner, clock):
    result = Installer(config, InstallOptions(), runner, sleep=clock.sleep, check_tool=lambda _tool: None).run()

    assert result.status == RunStatus.NEEDS_INPUT
    assert result.required == ["approve"]
    assert result.next.action == "approve"
    assert "demo" in result.plan
    assert result.exit_code == 2
    assert runner.calls == []


def test_plan_stops_at_target_phase(config):
    plan = render_plan(config, InstallOptions(target_phase="compute"))

    assert "3. Compute" in plan
    assert "(stopping here)" in plan
    assert "Core Services" not in plan


def test_unknown_target_phase_is_rejected():
    with pytest.raises(ConfigurationError):
        InstallOptions(target_phase="phase9")


def test_missing_bucket_needs_input_at_storage(runner, clock):
    cfg = EnvironmentConfig(cluster_name="demo", namespace="ingext", s3_bucket="", site_domain="lakehouse.example.com")
    script_provisioned(runner)

    result = _installer(cfg, runner, clock).run()

    assert result.status == RunStatus.NEEDS_INPUT
    assert result.phase == PhaseName.STORAGE
    assert result.required == ["S3_BUCKET"]
    assert [b.code for b in result.blockers] == ["CONFIG_MISSING"]
    assert result.next.action == "configure"
    assert "foundation" in result.evidence


def test_missing_certificate_has_dedicated_code(runner, clock):
    cfg = EnvironmentConfig(
        cluster_name="demo", namespace="ingext", s3_bucket="demo-lake", site_domain="lakehouse.example.com",
    )
    script_provisioned(runner)

    result = _installer(cfg, runner, clock).run()

    assert result.status == RunStatus.NEEDS_INPUT
    assert result.phase == PhaseName.INGRESS
    assert [b.code for b in result.blockers] == ["CERT_ARN_MISSING"]


def test_rerun_on_provisioned_cluster_resumes_every_phase(config, runner, clock):
    script_provisioned(runner)

    result = _installer(config, runner, clock).run()

    assert result.status == RunStatus.COMPLETED
    assert result.phase == PhaseName.INGRESS
    assert list(result.evidence) == [phase.value for phase in PhaseName]
    assert all(result.evidence[phase.value].get("resumed") for phase in PhaseName)
    assert result.evidence["ingress"]["ingress"]["hostname"] == "k8s-demo.us-east-2.elb.amazonaws.com"
    for prefix in WRITE_PREFIXES:
        assert runner.called(prefix) == [], prefix


def test_target_phase_stops_with_continue(config, runner, clock):
    script_provisioned(runner)

    result = _installer(config, runner, clock, target_phase="compute").run()

    assert result.status == RunStatus.COMPLETED
    assert result.phase == PhaseName.COMPUTE
    assert result.next.action == "continue"
    assert result.next.phase == PhaseName.CORE
    assert "core" not in result.evidence


def test_unschedulable_karpenter_blocks_on_foundation(config, runner, clock):
    _script_karpenter_unschedulable(runner)

    result = _installer(config, runner, clock).run()

    assert result.status == RunStatus.BLOCKED_PHASE
    assert result.phase == PhaseName.COMPUTE
    assert result.blockers[-1].code == "INSUFFICIENT_CAPACITY"
    assert result.next.action == "fix"
    assert result.next.phase == PhaseName.FOUNDATION
    assert result.exit_code == 3
    assert runner.called("bash scripts/setup_karpenter.sh default us-east-2 demo")
    assert "core" not in result.evidence
    assert runner.called("kubectl get secret app-secret") == []


def test_force_continues_past_dependency_block(config, runner, clock):
    _script_karpenter_unschedulable(runner)

    result = _installer(config, runner, clock, force=True).run()

    assert result.status == RunStatus.COMPLETED
    codes = [w.code for w in result.warnings]
    assert "INSUFFICIENT_CAPACITY" in codes
    assert "KARPENTER_NOT_READY" in codes


def test_missing_eksctl_is_fatal(config, runner, clock):
    runner.on("aws eks describe-cluster", failed("ResourceNotFoundException: cluster demo not found"))
    runner.on("eksctl create cluster", failed("Command not found: eksctl.", exit_code=127))

    result = _installer(config, runner, clock).run()

    assert result.status == RunStatus.ERROR
    assert result.phase == PhaseName.FOUNDATION
    assert result.blockers[-1].code == "EKSCTL_NOT_FOUND"
    assert result.next.action == "stop"
    assert result.exit_code == 1


def test_missing_tool_stops_before_any_command(config, runner, clock):
    def check(tool: str) -> None:
        if tool == "eksctl":
            raise RuntimeError("Required command 'eksctl' not found. Please install it first.")

    result = Installer(config, InstallOptions(approve=True), runner, sleep=clock.sleep, check_tool=check).run()

    assert result.status == RunStatus.ERROR
    assert [b.code for b in result.blockers] == ["TOOL_NOT_FOUND"]
    assert "eksctl" in result.blockers[0].message
    assert runner.calls == []
