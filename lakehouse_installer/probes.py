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

"""Resource probes: typed, read-only queries of cluster and cloud state.

Every probe parses tool output into a small record at this boundary. A
failed call or an unparseable payload degrades to the conservative answer
("not found", "not ready", empty list) instead of raising, so phase logic
never handles raw text or JSON.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from lakehouse_installer import logger
from lakehouse_installer.constants import (
    CERT_ANNOTATION,
    COREDNS_DEPLOYMENT,
    DESCRIBE_EVENTS_LINES,
    EKS_NOT_FOUND,
    EKS_STATUS_ACTIVE,
    EVENTS_TAIL_LINES,
    HELM_PENDING_PREFIX,
    HELM_REPAIR_STATUSES,
    HELM_STATUS_DEPLOYED,
    NS_KUBE_SYSTEM,
    POD_LOG_TAIL_LINES,
)
from lakehouse_installer.runner import CommandResult
from lakehouse_installer.tools import Toolbox

_ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"
_IPV4 = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def parse_json(result: CommandResult) -> Any:
    """Decode a command's JSON stdout, or None when the call failed or the payload is malformed."""
    if not result.ok or not result.stdout:
        return None
    try:
        return json.loads(result.stdout)
    except ValueError:
        logger.debug("unparseable JSON output: %.200s", result.stdout)
        return None


def _field(obj: Any, key: str) -> dict:
    """``obj[key]`` when both are dicts, else an empty dict."""
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, dict) else {}


def _entries(obj: Any, key: str) -> list[dict]:
    """The dict entries of the list at ``obj[key]``; anything else is dropped."""
    value = obj.get(key) if isinstance(obj, dict) else None
    return [entry for entry in value if isinstance(entry, dict)] if isinstance(value, list) else []


def _text(obj: Any, key: str, default: str = "") -> str:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, str) else default


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _items(payload: Any) -> list[dict]:
    return _entries(payload, "items")


def tail(text: str, lines: int) -> str:
    return "\n".join(text.splitlines()[-lines:])


def head(text: str, lines: int) -> str:
    return "\n".join(text.splitlines()[:lines])


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class ClusterInfo:
    exists: bool
    status: str

    @property
    def active(self) -> bool:
        return self.status == EKS_STATUS_ACTIVE


@dataclass(frozen=True)
class NodeSummary:
    names: tuple[str, ...] = ()
    ready_names: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.names)

    @property
    def ready(self) -> int:
        return len(self.ready_names)


@dataclass(frozen=True)
class PodInfo:
    """One pod with the fields readiness decisions need."""

    name: str
    phase: str = "Unknown"
    ready: bool = False
    reason: str = ""
    restarts: int = 0
    owner_kind: str = ""
    owner_name: str = ""

    @property
    def terminal(self) -> bool:
        return self.phase in ("Succeeded", "Failed")

    @property
    def cronjob_owned(self) -> bool:
        return self.owner_kind == "Job" and "cronjob" in self.owner_name

    @property
    def crash_looping(self) -> bool:
        return self.reason == "CrashLoopBackOff"

    @property
    def pending(self) -> bool:
        return self.phase == "Pending"


@dataclass(frozen=True)
class PodSummary:
    pods: tuple[PodInfo, ...] = ()

    @property
    def active(self) -> tuple[PodInfo, ...]:
        """Pods expected to become ready: not finished and not spawned by a cronjob."""
        return tuple(p for p in self.pods if not p.terminal and not p.cronjob_owned)

    @property
    def total(self) -> int:
        return len(self.active)

    @property
    def ready(self) -> int:
        return sum(1 for p in self.active if p.ready)

    @property
    def not_ready(self) -> tuple[PodInfo, ...]:
        return tuple(p for p in self.active if not p.ready)

    @property
    def all_ready(self) -> bool:
        return self.total > 0 and self.ready == self.total

    def describe(self) -> str:
        return f"{self.ready}/{self.total} pods ready"


@dataclass(frozen=True)
class ReleaseInfo:
    name: str
    namespace: str
    status: str
    revision: int = 0
    chart: str = ""
    app_version: str = ""

    @property
    def deployed(self) -> bool:
        return self.status == HELM_STATUS_DEPLOYED

    @property
    def pending(self) -> bool:
        return self.status.startswith(HELM_PENDING_PREFIX)

    @property
    def needs_repair(self) -> bool:
        return self.pending or self.status in HELM_REPAIR_STATUSES

    @property
    def chart_version(self) -> str:
        return self.chart.rsplit("-", 1)[-1] if "-" in self.chart else "unknown"


@dataclass(frozen=True)
class DeploymentStatus:
    exists: bool
    ready_replicas: int = 0
    replicas: int = 0

    @property
    def ready(self) -> bool:
        return self.exists and self.replicas > 0 and self.ready_replicas == self.replicas

    def describe(self) -> str:
        return f"Ready: {self.ready_replicas}/{self.replicas}" if self.exists else "not found"


@dataclass(frozen=True)
class HostedZone:
    zone_id: str
    name: str
    private: bool = False


@dataclass(frozen=True)
class Certificate:
    arn: str
    domain: str
    wildcard: bool


@dataclass(frozen=True)
class IngressInfo:
    exists: bool
    name: str = ""
    hostname: str | None = None
    cert_arn: str | None = None


@dataclass(frozen=True)
class ServiceAccountInfo:
    exists: bool
    role_arn: str | None = None


@dataclass
class PlatformHealth:
    """Node and CoreDNS readiness, the gate shared by phases 3 through 5."""

    nodes: NodeSummary = field(default_factory=NodeSummary)
    coredns: DeploymentStatus = field(default_factory=lambda: DeploymentStatus(False))

    @property
    def healthy(self) -> bool:
        return self.nodes.total > 0 and self.nodes.ready > 0 and self.coredns.ready

    def as_evidence(self) -> dict:
        return {
            "node_count": self.nodes.total,
            "nodes_ready": self.nodes.ready,
            "coredns": self.coredns.describe(),
        }


# ============================================================================
# Parsers
# ============================================================================

def _parse_pod(item: dict) -> PodInfo:
    meta = _field(item, "metadata")
    status = _field(item, "status")
    ready = _condition_true(status, "Ready")

    reason = ""
    restarts = 0
    for cs in _entries(status, "containerStatuses"):
        restarts += _int(cs.get("restartCount"))
        state = _field(cs, "state")
        if not reason:
            reason = _text(_field(state, "waiting"), "reason") or _text(_field(state, "terminated"), "reason")
    reason = reason or _text(status, "reason")

    owners = _entries(meta, "ownerReferences") or [{}]
    return PodInfo(
        name=_text(meta, "name"),
        phase=_text(status, "phase") or "Unknown",
        ready=ready,
        reason=reason,
        restarts=restarts,
        owner_kind=_text(owners[0], "kind"),
        owner_name=_text(owners[0], "name"),
    )


def _condition_true(status: dict, kind: str) -> bool:
    return any(c.get("type") == kind and c.get("status") == "True" for c in _entries(status, "conditions"))


def _parse_node_ready(item: dict) -> bool:
    return _condition_true(_field(item, "status"), "Ready")


def _parse_release(item: dict) -> ReleaseInfo | None:
    if not _text(item, "name"):
        return None
    return ReleaseInfo(
        name=item["name"],
        namespace=_text(item, "namespace"),
        status=_text(item, "status").lower(),
        revision=_int(item.get("revision")),
        chart=_text(item, "chart"),
        app_version=_text(item, "app_version"),
    )


def root_domain(domain: str) -> str:
    """Last two labels of *domain* (``lakehouse.k8.example.com`` -> ``example.com``)."""
    labels = [label for label in domain.strip(".").split(".") if label]
    return ".".join(labels[-2:])


def certificate_matches(cert_domain: str, domain: str) -> bool:
    """Exact match, or a single-label wildcard covering *domain*."""
    cert_domain = cert_domain.lower().rstrip(".")
    domain = domain.lower().rstrip(".")
    if cert_domain == domain:
        return True
    if cert_domain.startswith("*."):
        suffix = cert_domain[1:]
        return domain.endswith(suffix) and "." not in domain[: -len(suffix)]
    return False


# ============================================================================
# Probes
# ============================================================================

class Probes:
    """Read-only questions asked of the cluster and the cloud account."""

    def __init__(self, tools: Toolbox) -> None:
        self.tools = tools
        self.config = tools.config

    # -- Cluster --------------------------------------------------------

    def cluster(self) -> ClusterInfo:
        result = self.tools.aws(
            "eks", "describe-cluster", "--name", self.config.cluster_name or "",
            "--query", "cluster.status", "--output", "text",
        )
        if not result.ok:
            return ClusterInfo(False, EKS_NOT_FOUND)
        return ClusterInfo(True, result.stdout.strip() or EKS_NOT_FOUND)

    def cluster_reachable(self) -> bool:
        return self.tools.kubectl("get", "nodes", "-o", "name", timeout=30).ok

    def vpc_id(self) -> str | None:
        result = self.tools.aws(
            "eks", "describe-cluster", "--name", self.config.cluster_name or "",
            "--query", "cluster.resourcesVpcConfig.vpcId", "--output", "text",
        )
        value = result.stdout.strip() if result.ok else ""
        return value if value.startswith("vpc-") else None

    def nodes(self) -> NodeSummary:
        items = _items(parse_json(self.tools.kubectl("get", "nodes", "-o", "json")))
        names = tuple(_text(_field(i, "metadata"), "name") for i in items)
        ready = tuple(_text(_field(i, "metadata"), "name") for i in items if _parse_node_ready(i))
        return NodeSummary(names, ready)

    def addons(self) -> set[str]:
        payload = parse_json(self.tools.aws(
            "eks", "list-addons", "--cluster-name", self.config.cluster_name or "", "--output", "json",
        ))
        addons = payload.get("addons") if isinstance(payload, dict) else None
        return {name for name in addons if isinstance(name, str)} if isinstance(addons, list) else set()

    def storage_class_exists(self, name: str) -> bool:
        return self.tools.kubectl("get", "storageclass", name).ok

    def platform_health(self) -> PlatformHealth:
        return PlatformHealth(self.nodes(), self.deployment(COREDNS_DEPLOYMENT, NS_KUBE_SYSTEM))

    # -- Workloads ------------------------------------------------------

    def pods(self, namespace: str, selector: str | None = None) -> PodSummary:
        args = ["get", "pods", "-n", namespace, "-o", "json"]
        if selector:
            args[4:4] = ["-l", selector]
        items = _items(parse_json(self.tools.kubectl(*args)))
        return PodSummary(tuple(_parse_pod(item) for item in items))

    def deployment(self, name: str, namespace: str) -> DeploymentStatus:
        payload = parse_json(self.tools.kubectl("get", "deployment", name, "-n", namespace, "-o", "json"))
        if not isinstance(payload, dict):
            return DeploymentStatus(False)
        status = _field(payload, "status")
        spec = _field(payload, "spec")
        replicas = spec.get("replicas") if spec.get("replicas") is not None else status.get("replicas")
        return DeploymentStatus(True, ready_replicas=_int(status.get("readyReplicas")), replicas=_int(replicas))

    def service_account(self, name: str, namespace: str) -> ServiceAccountInfo:
        payload = parse_json(self.tools.kubectl("get", "serviceaccount", name, "-n", namespace, "-o", "json"))
        if not isinstance(payload, dict):
            return ServiceAccountInfo(False)
        annotations = _field(_field(payload, "metadata"), "annotations")
        return ServiceAccountInfo(True, _text(annotations, _ROLE_ARN_ANNOTATION) or None)

    def can_i(self, verb: str, resource: str, namespace: str, service_account: str) -> bool:
        result = self.tools.kubectl(
            "auth", "can-i", verb, resource, "-n", namespace,
            "--as", f"system:serviceaccount:{namespace}:{service_account}",
        )
        return result.ok and result.stdout.strip().lower() == "yes"

    def nodepools(self) -> list[str]:
        for kind in ("nodepools", "provisioners"):
            items = _items(parse_json(self.tools.kubectl("get", kind, "-o", "json")))
            if items:
                return [_text(_field(i, "metadata"), "name") for i in items]
        return []

    # -- Diagnostics excerpts --------------------------------------------

    def events_tail(self, namespace: str, lines: int = EVENTS_TAIL_LINES) -> str:
        result = self.tools.kubectl("get", "events", "-n", namespace, "--sort-by=.lastTimestamp")
        return tail(result.stdout, lines) if result.ok else ""

    def describe_pod(self, name: str, namespace: str) -> str:
        result = self.tools.kubectl("describe", "pod", name, "-n", namespace)
        return result.stdout if result.ok else ""

    def pod_events(self, name: str, namespace: str, lines: int = DESCRIBE_EVENTS_LINES) -> str:
        """The ``Events:`` section of ``kubectl describe pod``."""
        described = self.describe_pod(name, namespace).splitlines()
        for index, line in enumerate(described):
            if line.startswith("Events:"):
                return "\n".join(described[index:index + lines])
        return ""

    def scheduling_failure(self, name: str, namespace: str) -> str | None:
        """The FailedScheduling event line for a pending pod, if any."""
        for line in self.pod_events(name, namespace).splitlines():
            if "FailedScheduling" in line:
                return line.strip()
        return None

    def pod_logs(self, name: str, namespace: str, lines: int = POD_LOG_TAIL_LINES) -> str:
        """Previous-container logs when present (most telling while restarting), else current logs."""
        previous = self.tools.kubectl(
            "logs", name, "-n", namespace, "--all-containers", "--previous", f"--tail={lines}",
        )
        if previous.ok and previous.stdout.strip():
            return previous.stdout
        current = self.tools.kubectl("logs", name, "-n", namespace, "--all-containers", f"--tail={lines}")
        return current.stdout if current.ok else ""

    # -- Helm -----------------------------------------------------------

    def releases(self, namespace: str | None = None) -> dict[str, ReleaseInfo]:
        """Installed releases (all states) keyed by name; None means all namespaces."""
        scope = ["-n", namespace] if namespace else ["-A"]
        payload = parse_json(self.tools.helm("list", *scope, "-a", "-o", "json"))
        releases: dict[str, ReleaseInfo] = {}
        for item in payload if isinstance(payload, list) else []:
            release = _parse_release(item)
            if release is not None:
                releases[release.name] = release
        return releases

    def release(self, name: str, namespace: str | None = None) -> ReleaseInfo | None:
        return self.releases(namespace).get(name)

    def releases_deployed(self, names: tuple[str, ...], namespace: str) -> bool:
        found = self.releases(namespace)
        return all(name in found and found[name].deployed for name in names)

    def helm_locked(self, name: str, namespace: str) -> bool:
        release = self.release(name, namespace)
        return release is not None and (release.pending or "deploying" in release.status)

    def helm_history(self, name: str, namespace: str, limit: int) -> str:
        result = self.tools.helm("history", name, "-n", namespace, "--max", str(limit))
        return result.stdout if result.ok else result.output

    # -- AWS ------------------------------------------------------------

    def account_id(self, profile: str | None = None) -> str | None:
        result = self.tools.aws(
            "sts", "get-caller-identity", "--query", "Account", "--output", "text", profile=profile,
        )
        value = result.stdout.strip() if result.ok else ""
        return value or None

    def bucket_exists(self, bucket: str) -> bool:
        return self.tools.aws("s3api", "head-bucket", "--bucket", bucket).ok

    def policy_arn(self, policy_name: str) -> str | None:
        result = self.tools.aws(
            "iam", "list-policies", "--scope", "Local",
            "--query", f"Policies[?PolicyName=='{policy_name}'].Arn", "--output", "text",
        )
        value = result.stdout.strip() if result.ok else ""
        return value if value.startswith("arn:") else None

    def role_exists(self, role_name: str, profile: str | None = None) -> bool:
        return self.tools.aws("iam", "get-role", "--role-name", role_name, profile=profile).ok

    def pod_identity_exists(self, namespace: str, service_account: str) -> bool:
        payload = parse_json(self.tools.eksctl(
            "get", "podidentityassociation",
            "--cluster", self.config.cluster_name or "",
            "--namespace", namespace,
            "--service-account-name", service_account,
            "--region", self.config.aws_region,
            "-o", "json",
        ))
        return isinstance(payload, list) and len(payload) > 0

    def hosted_zone(self, domain: str) -> HostedZone | None:
        payload = parse_json(self.tools.aws("route53", "list-hosted-zones", "--output", "json"))
        wanted = domain if domain.endswith(".") else f"{domain}."
        for zone in _entries(payload, "HostedZones"):
            if zone.get("Name") == wanted:
                return HostedZone(
                    zone_id=_text(zone, "Id"),
                    name=wanted,
                    private=_field(zone, "Config").get("PrivateZone") is True,
                )
        return None

    def certificates(self, domain: str) -> list[Certificate]:
        """Issued certificates covering *domain*, exact matches first."""
        payload = parse_json(self.tools.aws(
            "acm", "list-certificates", "--certificate-statuses", "ISSUED",
            "--region", self.config.aws_region, "--output", "json",
        ))
        found: list[Certificate] = []
        for summary in _entries(payload, "CertificateSummaryList"):
            alternatives = summary.get("SubjectAlternativeNameSummaries")
            names = [_text(summary, "DomainName")] + (alternatives if isinstance(alternatives, list) else [])
            for name in names:
                if isinstance(name, str) and name and certificate_matches(name, domain):
                    found.append(Certificate(_text(summary, "CertificateArn"), name, name.startswith("*.")))
                    break
        return sorted(found, key=lambda cert: cert.wildcard)

    def ingress(self, namespace: str) -> IngressInfo:
        items = _items(parse_json(self.tools.kubectl("get", "ingress", "-n", namespace, "-o", "json")))
        if not items:
            return IngressInfo(False)
        item = items[0]
        meta = _field(item, "metadata")
        lb = _entries(_field(_field(item, "status"), "loadBalancer"), "ingress") or [{}]
        return IngressInfo(
            True,
            name=_text(meta, "name"),
            hostname=_text(lb[0], "hostname") or None,
            cert_arn=_text(_field(meta, "annotations"), CERT_ANNOTATION) or None,
        )

    def dns_resolves(self, domain: str) -> bool | None:
        """Whether *domain* has an A record; None when ``dig`` is unavailable."""
        result = self.tools.runner.run("dig", ["+short", "A", domain])
        if result.not_found:
            return None
        if not result.ok:
            return False
        return any(_IPV4.match(line.strip()) for line in result.stdout.splitlines())

    def local_profile(self) -> str:
        """AWS profile referenced by the current kubeconfig user, else ``default``."""
        context = self.tools.kubectl("config", "current-context")
        if not context.ok:
            return "default"
        user = self.tools.kubectl(
            "config", "view", "-o",
            f"jsonpath={{.contexts[?(@.name==\"{context.stdout.strip()}\")].context.user}}",
        )
        exec_cfg = self.tools.kubectl(
            "config", "view", "-o",
            f"jsonpath={{.users[?(@.name==\"{user.stdout.strip()}\")].user.exec}}",
        )
        text = exec_cfg.stdout if exec_cfg.ok else ""
        match = re.search(r"--profile[\"\s,]+([A-Za-z0-9_\-]+)", text) or re.search(
            r"\"name\":\"AWS_PROFILE\",\"value\":\"([A-Za-z0-9_\-]+)\"", text
        )
        return match.group(1) if match else "default"
