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

from conftest import (
    deployment_payload,
    failed,
    nodes_payload,
    ok,
    ok_json,
    pod,
    pods_payload,
    releases_payload,
)
from lakehouse_installer.probes import certificate_matches, root_domain


def test_cluster_status(probes, runner):
    runner.on("aws eks describe-cluster", ok("CREATING"))

    cluster = probes.cluster()

    assert cluster.exists
    assert not cluster.active
    assert runner.calls[-1] == "aws eks describe-cluster --name demo --query cluster.status --output text"


def test_missing_cluster(probes, runner):
    runner.on("aws eks describe-cluster", failed("ResourceNotFoundException"))

    assert not probes.cluster().exists


def test_pods_skip_finished_and_cronjob_pods(probes, runner):
    cron = pod("etcd-backup-28391", ready=False, phase="Pending")
    cron["metadata"]["ownerReferences"] = [{"kind": "Job", "name": "etcd-single-cronjob-28391"}]
    runner.on("kubectl get pods -n ingext", ok_json(pods_payload(
        pod("api-0"),
        pod("platform-0", ready=False, reason="CrashLoopBackOff"),
        pod("init-job", ready=False, phase="Succeeded"),
        cron,
    )))

    pods = probes.pods("ingext")

    assert pods.total == 2
    assert pods.ready == 1
    assert [p.name for p in pods.not_ready] == ["platform-0"]
    assert pods.not_ready[0].crash_looping
    assert pods.describe() == "1/2 pods ready"


def test_pods_selector_is_passed_through(probes, runner):
    probes.pods("kube-system", "app=ebs-csi-controller")

    assert runner.calls == ["kubectl get pods -n kube-system -l app=ebs-csi-controller -o json"]


def test_empty_or_malformed_payloads_degrade(probes, runner):
    runner.on("kubectl get pods", ok("not json"))
    runner.on("kubectl get nodes", failed("connection refused"))

    assert probes.pods("ingext").total == 0
    assert not probes.pods("ingext").all_ready
    assert probes.nodes().total == 0


def test_platform_health(probes, runner):
    runner.on("kubectl get nodes -o json", ok_json(nodes_payload(ready=1, total=2)))
    runner.on("kubectl get deployment coredns -n kube-system", ok_json(deployment_payload(2, 2)))

    health = probes.platform_health()

    assert health.healthy
    assert health.as_evidence() == {"node_count": 2, "nodes_ready": 1, "coredns": "Ready: 2/2"}


def test_deployment_not_found(probes, runner):
    runner.on("kubectl get deployment", failed('deployments.apps "karpenter" not found'))

    status = probes.deployment("karpenter", "kube-system")

    assert not status.exists
    assert not status.ready


def test_releases_by_name(probes, runner):
    payload = releases_payload("ingext-stack") + releases_payload("karpenter", status="pending-upgrade",
                                                                   namespace="kube-system")
    runner.on("helm list", ok_json(payload))

    releases = probes.releases()

    assert runner.calls[-1] == "helm list -A -a -o json"
    assert releases["ingext-stack"].deployed
    assert releases["karpenter"].needs_repair
    assert releases["karpenter"].chart_version == "1.2.3"
    assert not probes.releases_deployed(("ingext-stack", "etcd-single"), "ingext")


def test_ingress_hostname_and_certificate(probes, runner):
    runner.on("kubectl get ingress -n ingext", ok_json({"items": [{
        "metadata": {"name": "web", "annotations": {"alb.ingress.kubernetes.io/certificate-arn": "arn:aws:acm:x"}},
        "status": {"loadBalancer": {"ingress": [{"hostname": "k8s-web.elb.amazonaws.com"}]}},
    }]}))

    ingress = probes.ingress("ingext")

    assert ingress.exists
    assert ingress.hostname == "k8s-web.elb.amazonaws.com"
    assert ingress.cert_arn == "arn:aws:acm:x"


def test_ingress_without_load_balancer(probes, runner):
    runner.on("kubectl get ingress -n ingext", ok_json({"items": [{"metadata": {"name": "web"}, "status": {}}]}))

    ingress = probes.ingress("ingext")

    assert ingress.exists
    assert ingress.hostname is None


def test_scheduling_failure_reads_events_section(probes, runner):
    runner.on("kubectl describe pod karpenter-1", ok(
        "Name: karpenter-1\nStatus: Pending\nEvents:\n"
        "  Type     Reason            Age  Message\n"
        "  Warning  FailedScheduling  2m   0/2 nodes are available: 2 Insufficient memory."
    ))

    event = probes.scheduling_failure("karpenter-1", "kube-system")

    assert event.startswith("Warning  FailedScheduling")


def test_dns_resolution(probes, runner):
    runner.on("dig", ok("k8s-web.elb.amazonaws.com.\n3.14.15.92"))
    assert probes.dns_resolves("lakehouse.example.com") is True

    runner.on("dig", ok(""))
    assert probes.dns_resolves("lakehouse.example.com") is False

    runner.on("dig", failed("dig: not found", exit_code=127))
    assert probes.dns_resolves("lakehouse.example.com") is None


def test_hosted_zone_lookup(probes, runner):
    runner.on("aws route53 list-hosted-zones", ok_json({"HostedZones": [
        {"Id": "/hostedzone/Z1", "Name": "example.com.", "Config": {"PrivateZone": False}},
    ]}))

    zone = probes.hosted_zone("example.com")

    assert zone.zone_id == "/hostedzone/Z1"
    assert not zone.private
    assert probes.hosted_zone("other.org") is None


def test_domain_helpers():
    assert root_domain("lakehouse.k8.example.com") == "example.com"
    assert certificate_matches("*.example.com", "lakehouse.example.com")
    assert not certificate_matches("*.example.com", "lakehouse.k8.example.com")
    assert certificate_matches("Lakehouse.Example.com", "lakehouse.example.com")


def test_malformed_deployment_reads_as_not_ready(probes, runner):
    runner.on("kubectl get deployment", ok_json({"status": "x", "spec": ["replicas"]}))

    deployment = probes.deployment("coredns", "kube-system")

    assert deployment.exists
    assert not deployment.ready
    assert deployment.describe() == "Ready: 0/0"


def test_malformed_pod_fields_degrade_to_defaults(probes, runner):
    broken = pod("api-0")
    broken["metadata"]["ownerReferences"] = ["Job"]
    broken["status"]["conditions"] = ["Ready", {"type": "Ready", "status": "True"}]
    broken["status"]["containerStatuses"] = [{"restartCount": "abc"}, "oops"]
    runner.on("kubectl get pods -n ingext", ok_json(pods_payload(broken, "not-a-pod")))

    pods = probes.pods("ingext")

    assert pods.total == 1
    assert pods.pods[0].ready
    assert pods.pods[0].restarts == 0
    assert pods.pods[0].owner_kind == ""


def test_malformed_node_and_addon_payloads(probes, runner):
    runner.on("kubectl get nodes -o json", ok_json({"items": [{"metadata": "node-1", "status": []}]}))
    runner.on("aws eks list-addons", ok_json({"addons": "vpc-cni"}))

    nodes = probes.nodes()

    assert nodes.total == 1
    assert nodes.ready == 0
    assert probes.addons() == set()


def test_malformed_zone_and_certificate_lists(probes, runner):
    runner.on("aws route53 list-hosted-zones", ok_json({"HostedZones": [
        "example.com.",
        {"Id": "/hostedzone/Z1", "Name": "example.com.", "Config": "private"},
    ]}))
    runner.on("aws acm list-certificates", ok_json({"CertificateSummaryList": [
        "arn:aws:acm:us-east-1:123456789012:certificate/bad",
        {"CertificateArn": "arn:aws:acm:us-east-1:123456789012:certificate/ok",
         "DomainName": None, "SubjectAlternativeNameSummaries": [7, "*.example.com"]},
    ]}))

    zone = probes.hosted_zone("example.com")
    certs = probes.certificates("lakehouse.example.com")

    assert zone.zone_id == "/hostedzone/Z1"
    assert not zone.private
    assert [cert.domain for cert in certs] == ["*.example.com"]
    assert certs[0].wildcard


def test_malformed_ingress_status(probes, runner):
    runner.on("kubectl get ingress", ok_json({"items": [
        {"metadata": {"name": "ingext-ingress", "annotations": ["cert"]}, "status": {"loadBalancer": "pending"}},
    ]}))

    ingress = probes.ingress("ingext")

    assert ingress.exists
    assert ingress.name == "ingext-ingress"
    assert ingress.hostname is None
    assert ingress.cert_arn is None
