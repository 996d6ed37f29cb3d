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

"""Crash-loop analysis: ordered log signatures mapped to diagnosis codes."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NamedTuple

from lakehouse_installer.constants import EVENTS_TAIL_LINES, HELM_RELEASE_MANAGER_ROLE
from lakehouse_installer.probes import Probes, tail

_RESOURCE_PATTERN = re.compile(r'cannot get resource "([^"]+)"')
_SERVICE_PATTERN = re.compile(r"(?:dial tcp|lookup|connect to)\s+([A-Za-z0-9_.\-]+(?::\d+)?)")


@dataclass(frozen=True)
class Diagnosis:
    """A matched crash signature.

    Attributes:
        code: Stable blocker code.
        summary: One-line description of what the logs show.
        remediation: What the operator should do next.
        evidence: Log lines that matched, bounded.
    """

    code: str
    summary: str
    remediation: str
    evidence: list[str] = field(default_factory=list)


class Signature(NamedTuple):
    """One row of the signature table: predicate, code, and remediation template."""

    code: str
    summary: str
    matches: Callable[[str], bool]
    remediation: Callable[[str, str], str]


def _has(text: str, *needles: str) -> bool:
    return any(needle in text for needle in needles)


def _rbac_forbidden(logs: str) -> bool:
    lower = logs.lower()
    return "forbidden" in lower and _has(lower, "secrets", "configmaps") and "cannot get resource" in lower


def _dependency_unreachable(logs: str) -> bool:
    return _has(logs.lower(), "connection refused", "no such host", "dial tcp", "i/o timeout")


def _missing_env(logs: str) -> bool:
    lower = logs.lower()
    return (
        _has(lower, "missing env", "required environment variable")
        or ("environment variable" in lower and "not set" in lower)
    )


def _storage_failure(logs: str) -> bool:
    lower = logs.lower()
    if "no space left" in lower:
        return True
    return _has(lower, "pvc", "mount") and _has(lower, "failed", "error")


def _panic(logs: str) -> bool:
    return _has(logs.lower(), "panic:", "fatal error")


def _resource_not_found(logs: str) -> bool:
    lower = logs.lower()
    return _has(lower, "secrets", "configmaps") and "not found" in lower


def _s3_access_denied(logs: str) -> bool:
    lower = logs.lower()
    if "accessdenied" in lower or "access denied" in lower:
        return True
    return _has(lower, "403", "forbidden") and "s3" in lower


def _rbac_remediation(logs: str, namespace: str) -> str:
    match = _RESOURCE_PATTERN.search(logs)
    resource = match.group(1) if match else "secrets/configmaps"
    return (
        f"Service account lacks permission to read {resource}. Install the permissions chart: "
        f"helm upgrade --install {HELM_RELEASE_MANAGER_ROLE} "
        f"oci://public.ecr.aws/ingext/{HELM_RELEASE_MANAGER_ROLE} -n {namespace}"
    )


def _dependency_remediation(logs: str, namespace: str) -> str:
    match = _SERVICE_PATTERN.search(logs)
    service = match.group(1) if match else "the upstream service"
    return (
        f"Cannot reach {service}. Check that the service exists and its pods are ready "
        f"(kubectl get svc,endpoints -n {namespace}) and that cluster DNS resolves it."
    )


SIGNATURES: tuple[Signature, ...] = (
    Signature(
        "RBAC_MISSING_PERMISSIONS",
        "Forbidden access to secrets or configmaps",
        _rbac_forbidden,
        _rbac_remediation,
    ),
    Signature(
        "DEPENDENCY_UNREACHABLE",
        "Connection refused, unresolved host, or dial timeout",
        _dependency_unreachable,
        _dependency_remediation,
    ),
    Signature(
        "MISSING_ENV_VAR",
        "Required environment variable not set",
        _missing_env,
        lambda _logs, ns: f"Check the release values and the config secrets in namespace {ns}.",
    ),
    Signature(
        "STORAGE_MOUNT_FAILED",
        "Volume mount failure or disk exhaustion",
        _storage_failure,
        lambda _logs, ns: f"Inspect PVCs and the storage class: kubectl get pvc -n {ns}; kubectl get sc",
    ),
    Signature(
        "APPLICATION_PANIC",
        "Unhandled panic or fatal error",
        _panic,
        lambda _logs, ns: f"Pull extended logs: kubectl logs <pod> -n {ns} --previous --tail=1000",
    ),
    Signature(
        "RESOURCE_NOT_FOUND",
        "Referenced secret or configmap not found",
        _resource_not_found,
        lambda _logs, ns: f"Verify the referenced objects exist: kubectl get secrets,configmaps -n {ns}",
    ),
    Signature(
        "S3_ACCESS_DENIED",
        "Object storage denied access",
        _s3_access_denied,
        lambda _logs, ns: (
            f"Check the pod identity association for the {ns}-sa service account and the bucket policy."
        ),
    ),
)


def _matching_lines(logs: str, signature: Signature, limit: int = 5) -> list[str]:
    hits = [line.strip() for line in logs.splitlines() if line.strip() and signature.matches(line)]
    return hits[:limit]


def diagnose(logs: str, namespace: str = "default") -> Diagnosis | None:
    """Match *logs* against the signature table; the first matching row wins.

    Args:
        logs: Container log text.
        namespace: Namespace used when rendering remediation commands.

    Returns:
        The diagnosis for the first matching signature, or None.
    """
    if not logs:
        return None
    for signature in SIGNATURES:
        if signature.matches(logs):
            return Diagnosis(
                code=signature.code,
                summary=signature.summary,
                remediation=signature.remediation(logs, namespace),
                evidence=_matching_lines(logs, signature),
            )
    return None


@dataclass
class PodAnalysis:
    """Diagnosis plus the excerpts collected for one failing pod."""

    pod: str
    diagnosis: Diagnosis | None
    logs_excerpt: str = ""
    events: str = ""

    def as_evidence(self) -> dict:
        return {
            "pod": self.pod,
            "code": self.diagnosis.code if self.diagnosis else None,
            "summary": self.diagnosis.summary if self.diagnosis else None,
            "logs": self.logs_excerpt,
            "events": self.events,
        }


def analyze_pod(probes: Probes, pod: str, namespace: str) -> PodAnalysis:
    """Fetch a failing pod's logs (previous container first) and diagnose them."""
    logs = probes.pod_logs(pod, namespace)
    return PodAnalysis(
        pod=pod,
        diagnosis=diagnose(logs, namespace),
        logs_excerpt=tail(logs, 30),
        events=probes.pod_events(pod, namespace) or probes.events_tail(namespace, EVENTS_TAIL_LINES),
    )
