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

from conftest import failed, ok
from lakehouse_installer.diagnostics import analyze_pod, diagnose

RBAC_LOG = (
    'E0101 12:00:00 secrets "app-secret" is forbidden: User "system:serviceaccount:ingext:ingext-sa" '
    'cannot get resource "secrets" in API group "" in the namespace "ingext"'
)


def test_rbac_wins_over_connection_refused():
    logs = "\n".join([
        "starting api",
        "dial tcp etcd-single:2379: connect: connection refused",
        RBAC_LOG,
    ])

    result = diagnose(logs, "ingext")

    assert result.code == "RBAC_MISSING_PERMISSIONS"
    assert "secrets" in result.remediation
    assert "ingext-manager-role" in result.remediation
    assert result.evidence == [RBAC_LOG]


def test_connection_refused_names_the_service():
    result = diagnose("error: dial tcp etcd-single:2379: connect: connection refused", "ingext")

    assert result.code == "DEPENDENCY_UNREACHABLE"
    assert "etcd-single:2379" in result.remediation


def test_missing_environment_variable():
    assert diagnose("fatal: environment variable SITE_DOMAIN not set").code == "MISSING_ENV_VAR"


def test_s3_access_denied():
    result = diagnose("PutObject: AccessDenied: Access Denied status code: 403", "ingext")

    assert result.code == "S3_ACCESS_DENIED"
    assert "ingext-sa" in result.remediation


def test_no_match_and_empty_logs():
    assert diagnose("listening on :8080\nready") is None
    assert diagnose("") is None


def test_analyze_pod_prefers_previous_container_logs(probes, runner):
    runner.on("kubectl logs api-0 -n ingext --all-containers --previous", ok("panic: runtime error: nil map"))
    runner.on("kubectl logs api-0 -n ingext --all-containers --tail", ok("starting"))
    runner.on("kubectl describe pod api-0", ok("Name: api-0\nEvents:\n  Warning  BackOff  restarting"))

    analysis = analyze_pod(probes, "api-0", "ingext")

    assert analysis.diagnosis.code == "APPLICATION_PANIC"
    assert analysis.events.startswith("Events:")
    assert analysis.as_evidence()["code"] == "APPLICATION_PANIC"


def test_analyze_pod_falls_back_to_current_logs(probes, runner):
    runner.on("kubectl logs api-0 -n ingext --all-containers --previous", failed("previous terminated container not found"))
    runner.on("kubectl logs api-0 -n ingext --all-containers --tail", ok("lookup etcd-single: no such host"))

    analysis = analyze_pod(probes, "api-0", "ingext")

    assert analysis.diagnosis.code == "DEPENDENCY_UNREACHABLE"


@pytest.mark.parametrize(("logs", "code"), [
    ('MountVolume.SetUp failed for volume "pvc-123" : rpc error: code = Internal', "STORAGE_MOUNT_FAILED"),
    ("write /data/wal/0001: no space left on device", "STORAGE_MOUNT_FAILED"),
    ("panic: runtime error: invalid memory address or nil pointer dereference", "APPLICATION_PANIC"),
    ("fatal error: concurrent map writes", "APPLICATION_PANIC"),
    ('loading config: secrets "app-secret" not found', "RESOURCE_NOT_FOUND"),
    ('configmaps "ingext-config" not found', "RESOURCE_NOT_FOUND"),
])
def test_each_signature_matches_its_log(logs, code):
    result = diagnose(logs, "ingext")

    assert result.code == code
    assert result.evidence == [logs]


@pytest.mark.parametrize(("logs", "code"), [
    (RBAC_LOG + '\nconfigmaps "ingext-config" not found', "RBAC_MISSING_PERMISSIONS"),
    ("dial tcp etcd-single:2379: connect: connection refused\npanic: lost etcd", "DEPENDENCY_UNREACHABLE"),
    ('secrets "app-secret" not found\npanic: no credentials', "APPLICATION_PANIC"),
    ("no space left on device\npanic: wal write failed", "STORAGE_MOUNT_FAILED"),
])
def test_earlier_signature_wins_on_overlap(logs, code):
    assert diagnose(logs, "ingext").code == code
