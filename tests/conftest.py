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

"""Shared fakes: a scripted command runner, a fake clock, and payload builders."""

from __future__ import annotations

import json

import pytest

from lakehouse_installer.config import EnvironmentConfig
from lakehouse_installer.constants import CRITICAL_ADDONS, OPTIONAL_ADDONS
from lakehouse_installer.probes import Probes
from lakehouse_installer.runner import CommandResult, CommandRunner
from lakehouse_installer.tools import Toolbox
from lakehouse_installer.waiter import Waiter

CERT = "arn:aws:acm:us-east-2:123456789012:certificate/abc"

OK = CommandResult(0, "", "")


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def ok_json(payload) -> CommandResult:
    return CommandResult(0, json.dumps(payload), "")


def failed(stderr: str = "boom", exit_code: int = 1) -> CommandResult:
    return CommandResult(exit_code, "", stderr)


# ============================================================================
# Payload builders
# ============================================================================

def pod(name: str, ready: bool = True, phase: str = "Running", reason: str = "") -> dict:
    status: dict = {
        "phase": phase,
        "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
    }
    if reason:
        status["containerStatuses"] = [{"restartCount": 3, "state": {"waiting": {"reason": reason}}}]
    return {"metadata": {"name": name}, "status": status}


def pods_payload(*pods: dict) -> dict:
    return {"items": list(pods)}


def nodes_payload(ready: int = 2, total: int | None = None) -> dict:
    total = ready if total is None else total
    items = []
    for i in range(total):
        items.append({
            "metadata": {"name": f"ip-10-0-0-{i}"},
            "status": {"conditions": [{"type": "Ready", "status": "True" if i < ready else "False"}]},
        })
    return {"items": items}


def deployment_payload(ready: int = 1, replicas: int = 1) -> dict:
    return {"spec": {"replicas": replicas}, "status": {"readyReplicas": ready}}


def releases_payload(*names: str, status: str = "deployed", namespace: str = "ingext") -> list[dict]:
    return [
        {"name": name, "namespace": namespace, "status": status, "revision": "1", "chart": f"{name}-1.2.3"}
        for name in names
    ]


# ============================================================================
# Fakes
# ============================================================================

class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRunner(CommandRunner):
    """Command runner answering from a script keyed by command-line prefix.

    ``on(prefix, *results)`` registers a sequence of answers; the last one
    repeats. The longest matching prefix wins. An answer may be a callable
    taking the full command line. Unscripted commands succeed with no output.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []
        self._script: dict[str, list] = {}

    def on(self, prefix: str, *results) -> FakeRunner:
        self._script[prefix] = list(results)
        return self

    def run(self, program, args, env=None, timeout=None) -> CommandResult:
        line = " ".join([program, *args])
        self.calls.append(line)
        matches = [prefix for prefix in self._script if line.startswith(prefix)]
        if not matches:
            return OK
        answers = self._script[max(matches, key=len)]
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        return answer(line) if callable(answer) else answer

    def called(self, prefix: str) -> list[str]:
        return [line for line in self.calls if line.startswith(prefix)]


# ============================================================================
# Fixtures
# ============================================================================

ENV_KEYS = (
    "CLUSTER_NAME", "AWS_REGION", "AWS_PROFILE", "NAMESPACE", "S3_BUCKET", "ROOT_DOMAIN",
    "SITE_DOMAIN", "CERT_ARN", "NODE_TYPE", "NODE_COUNT", "KUBERNETES_VERSION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
        monkeypatch.delenv(key.lower(), raising=False)


@pytest.fixture
def config() -> EnvironmentConfig:
    return EnvironmentConfig(
        cluster_name="demo",
        aws_region="us-east-2",
        aws_profile="default",
        namespace="ingext",
        s3_bucket="demo-lake",
        site_domain="lakehouse.example.com",
        cert_arn=CERT,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tools(runner, config) -> Toolbox:
    return Toolbox(runner, config)


@pytest.fixture
def probes(tools) -> Probes:
    return Probes(tools)


@pytest.fixture
def waiter(clock) -> Waiter:
    return Waiter(clock=clock, sleep=clock.sleep, quiet=True)


def script_provisioned(runner: FakeRunner) -> FakeRunner:
    """Script a cluster on which every phase is already in place."""
    all_releases = releases_payload(
        "karpenter", "ingext-stack", "etcd-single", "etcd-single-cronjob",
        "ingext-community-config", "ingext-community-init", "ingext-community",
        "ingext-lake-config", "ingext-merge-pool", "ingext-search-pool", "ingext-s3-lake", "ingext-lake",
        "ingext-community-ingress-aws",
    )
    ingress = {
        "items": [{
            "metadata": {
                "name": "ingext-community-ingress",
                "annotations": {"alb.ingress.kubernetes.io/certificate-arn": CERT},
            },
            "status": {"loadBalancer": {"ingress": [{"hostname": "k8s-demo.us-east-2.elb.amazonaws.com"}]}},
        }]
    }
    return (
        runner
        .on("aws eks describe-cluster --name demo --query cluster.status", ok("ACTIVE"))
        .on("aws eks list-addons", ok_json({"addons": list(CRITICAL_ADDONS) + list(OPTIONAL_ADDONS)}))
        .on("kubectl get pods -n kube-system -l app=ebs-csi-controller", ok_json(pods_payload(
            pod("ebs-csi-controller-0"))))
        .on("kubectl get pods -n kube-system -l app.kubernetes.io/name=eks-pod-identity-agent",
            ok_json(pods_payload(pod("eks-pod-identity-agent-abc"))))
        .on("kubectl get serviceaccount ingext-sa -n ingext", ok_json({"metadata": {"name": "ingext-sa"}}))
        .on("eksctl get podidentityassociation", ok_json([{"associationID": "a-1"}]))
        .on("kubectl get nodes -o json", ok_json(nodes_payload(2)))
        .on("kubectl get deployment", ok_json(deployment_payload(1, 1)))
        .on("helm list", ok_json(all_releases))
        .on("kubectl get pods -n ingext", ok_json(pods_payload(
            pod("api-0"), pod("platform-0"), pod("lake-mgr-0"), pod("etcd-single-0"))))
        .on("kubectl get ingress -n ingext", ok_json(ingress))
        .on("aws route53 list-hosted-zones", ok_json({"HostedZones": []}))
    )
