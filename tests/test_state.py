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

from conftest import failed, ok, ok_json, pod, pods_payload, releases_payload, script_provisioned
from lakehouse_installer.config import EnvironmentConfig
from lakehouse_installer.state import InstallState, highest_phase, infer_state, probe_parallel


def test_no_environment():
    report = infer_state(None, None)

    assert report.state == InstallState.NO_ENV
    assert report.recommendation.action == "configure"


def test_blank_cluster_name_counts_as_no_environment(probes):
    assert infer_state(EnvironmentConfig(cluster_name=""), probes).state == InstallState.NO_ENV


def test_no_cluster(config, probes, runner):
    runner.on("aws eks describe-cluster", failed("ResourceNotFoundException"))

    report = infer_state(config, probes)

    assert report.state == InstallState.NO_CLUSTER
    assert report.recommendation.action == "install"


def test_cluster_still_creating(config, probes, runner):
    runner.on("aws eks describe-cluster", ok("CREATING"))

    report = infer_state(config, probes)

    assert report.state == InstallState.CLUSTER_BLOCKED
    assert report.recommendation.action == "wait"
    assert runner.called("kubectl") == []


def test_active_but_unreachable(config, probes, runner):
    runner.on("aws eks describe-cluster", ok("ACTIVE"))
    runner.on("kubectl get nodes -o name", failed("Unable to connect to the server"))

    report = infer_state(config, probes)

    assert report.state == InstallState.CLUSTER_BLOCKED
    assert report.recommendation.action == "diagnose"


def test_highest_phase():
    assert highest_phase(False, set()) == 1
    assert highest_phase(True, set()) == 2
    assert highest_phase(True, {"karpenter", "ingext-stack"}) == 4
    assert highest_phase(False, {"ingext-lake"}) == 6


def test_phase_four_complete(config, probes, runner):
    runner.on("aws eks describe-cluster", ok("ACTIVE"))
    runner.on("helm list", ok_json(releases_payload("karpenter", "ingext-stack", "etcd-single")))
    runner.on("kubectl get pods -n ingext", ok_json(pods_payload(pod("etcd-single-0"), pod("ingext-stack-0"))))
    runner.on("kubectl get ingress", failed("No resources found"))

    report = infer_state(config, probes)

    assert report.state == InstallState.PHASE_4_COMPLETE
    assert report.phase == 4
    assert report.recommendation.action == "resume"
    assert "Stream" in report.recommendation.reason
    assert report.evidence["bucket_exists"] is True


def test_degraded_pods_recommend_diagnosis(config, probes, runner):
    runner.on("aws eks describe-cluster", ok("ACTIVE"))
    runner.on("helm list", ok_json(releases_payload("karpenter", "ingext-stack", "ingext-community")))
    runner.on("kubectl get pods -n ingext", ok_json(pods_payload(
        pod("api-0", ready=False, reason="CrashLoopBackOff"),
        pod("platform-0", ready=False),
        pod("etcd-single-0"),
    )))

    report = infer_state(config, probes)

    assert report.state == InstallState.HEALTH_DEGRADED
    assert report.recommendation.action == "diagnose"
    assert report.recommendation.command == "lakehouse diagnose api-0"


def test_dns_pending(config, probes, runner):
    script_provisioned(runner)
    runner.on("dig", ok(""))

    report = infer_state(config, probes)

    assert report.state == InstallState.DNS_PENDING
    assert report.recommendation.action == "configure_dns"
    assert "k8s-demo.us-east-2.elb.amazonaws.com" in report.recommendation.reason


def test_fully_installed(config, probes, runner):
    script_provisioned(runner)
    runner.on("dig", ok("3.14.15.92"))

    report = infer_state(config, probes)

    assert report.state == InstallState.PHASE_7_COMPLETE
    assert report.recommendation.action == "none"
    assert report.evidence["dns_resolves"] is True


def test_load_balancer_still_provisioning(config, probes, runner):
    script_provisioned(runner)
    runner.on("kubectl get ingress -n ingext", ok_json({"items": [{"metadata": {"name": "web"}, "status": {}}]}))

    report = infer_state(config, probes)

    assert report.state == InstallState.PHASE_7_COMPLETE
    assert report.recommendation.action == "wait"
    assert runner.called("dig") == []


def test_probe_parallel_collects_every_result():
    results = probe_parallel({"a": lambda: 1, "b": lambda: "two", "c": lambda: None})

    assert results == {"a": 1, "b": "two", "c": None}
