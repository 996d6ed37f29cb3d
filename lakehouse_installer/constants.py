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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent


def load_dependencies() -> dict:
    """Load chart sources and versions from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = PACKAGE_DIR / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def ingext_chart(name: str) -> str:
    """Return the OCI reference of an Ingext chart."""
    registry = dep_value("ingext", "registry", default="oci://public.ecr.aws/ingext")
    return f"{registry}/{name}"


# -- Exit codes surfaced by the command runner --
EXIT_COMMAND_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126
EXIT_TIMEOUT = 124

# -- Execution context --
DOCKER_WRAPPER = "./bin/run-in-docker.sh"
REQUIRED_TOOLS = ("aws", "eksctl", "kubectl", "helm")

# -- Namespaces --
NS_KUBE_SYSTEM = "kube-system"

# -- EKS --
EKS_STATUS_ACTIVE = "ACTIVE"
EKS_TERMINAL_STATUSES = frozenset({"FAILED", "DELETING"})
EKS_NOT_FOUND = "NOT_FOUND"
CRITICAL_ADDONS = tuple(dep_value("eks_addons", "critical", default=[]))
OPTIONAL_ADDONS = tuple(dep_value("eks_addons", "optional", default=[]))
EBS_CSI_SERVICE_ACCOUNT = "ebs-csi-controller-sa"
EBS_CSI_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy"
EBS_CSI_POD_SELECTOR = "app=ebs-csi-controller"
POD_IDENTITY_AGENT_SELECTOR = "app.kubernetes.io/name=eks-pod-identity-agent"
STORAGE_CLASS_GP3 = "gp3"

# -- Helm releases (install order) --
HELM_RELEASE_STORAGE_CLASS = "ingext-aws-gp3"
HELM_RELEASE_KARPENTER = "karpenter"
HELM_RELEASE_SERVICEACCOUNT = "ingext-serviceaccount"
HELM_RELEASE_MANAGER_ROLE = "ingext-manager-role"
HELM_RELEASE_STACK = "ingext-stack"
HELM_RELEASE_ETCD = "etcd-single"
HELM_RELEASE_ETCD_CRONJOB = "etcd-single-cronjob"
HELM_RELEASE_COMMUNITY_CONFIG = "ingext-community-config"
HELM_RELEASE_COMMUNITY_INIT = "ingext-community-init"
HELM_RELEASE_COMMUNITY = "ingext-community"
HELM_RELEASE_LAKE_CONFIG = "ingext-lake-config"
HELM_RELEASE_MERGE_POOL = "ingext-merge-pool"
HELM_RELEASE_SEARCH_POOL = "ingext-search-pool"
HELM_RELEASE_S3_LAKE = "ingext-s3-lake"
HELM_RELEASE_LAKE = "ingext-lake"
HELM_RELEASE_ALB_CONTROLLER = "aws-load-balancer-controller"
HELM_RELEASE_INGRESS = "ingext-community-ingress-aws"

CORE_RELEASES = (HELM_RELEASE_STACK, HELM_RELEASE_ETCD, HELM_RELEASE_ETCD_CRONJOB)
STREAM_RELEASES = (HELM_RELEASE_COMMUNITY_CONFIG, HELM_RELEASE_COMMUNITY_INIT, HELM_RELEASE_COMMUNITY)
DATALAKE_RELEASES = (
    HELM_RELEASE_LAKE_CONFIG,
    HELM_RELEASE_MERGE_POOL,
    HELM_RELEASE_SEARCH_POOL,
    HELM_RELEASE_S3_LAKE,
    HELM_RELEASE_LAKE,
)
KUBE_SYSTEM_RELEASES = frozenset({HELM_RELEASE_KARPENTER, HELM_RELEASE_ALB_CONTROLLER, HELM_RELEASE_STORAGE_CLASS})

# Reverse of install order, consumed by teardown.
TEARDOWN_RELEASES = (
    HELM_RELEASE_INGRESS,
    HELM_RELEASE_LAKE,
    HELM_RELEASE_S3_LAKE,
    HELM_RELEASE_MERGE_POOL,
    HELM_RELEASE_SEARCH_POOL,
    HELM_RELEASE_LAKE_CONFIG,
    HELM_RELEASE_COMMUNITY,
    HELM_RELEASE_COMMUNITY_INIT,
    HELM_RELEASE_COMMUNITY_CONFIG,
    HELM_RELEASE_ETCD_CRONJOB,
    HELM_RELEASE_ETCD,
    HELM_RELEASE_STACK,
    HELM_RELEASE_MANAGER_ROLE,
    HELM_RELEASE_SERVICEACCOUNT,
    HELM_RELEASE_ALB_CONTROLLER,
    HELM_RELEASE_KARPENTER,
    HELM_RELEASE_STORAGE_CLASS,
)

# -- Helm release statuses --
HELM_STATUS_DEPLOYED = "deployed"
HELM_REPAIR_STATUSES = frozenset({"failed", "uninstalling", "superseded"})
HELM_PENDING_PREFIX = "pending"

# -- Helm timeouts --
HELM_TIMEOUT_RBAC = "5m"
HELM_TIMEOUT_CORE = "10m"
HELM_TIMEOUT_KARPENTER = "10m"
HELM_TIMEOUT_NODE_POOL = "10m"
HELM_TIMEOUT_LAKE = "15m"
HELM_TIMEOUT_ALB = "5m"

# -- Labels and selectors --
LABEL_PART_OF_COMMUNITY = "app.kubernetes.io/part-of=ingext-community"
CORE_POD_SELECTOR = "app.kubernetes.io/part-of!=ingext-community"
KARPENTER_SELECTOR = "app.kubernetes.io/name=karpenter"
KARPENTER_DEPLOYMENT = "karpenter"
COREDNS_DEPLOYMENT = "coredns"
ALB_CONTROLLER_DEPLOYMENT = "aws-load-balancer-controller"
ALB_CONTROLLER_SERVICE_ACCOUNT = "aws-load-balancer-controller"
STREAM_POD_PREFIXES = ("api-", "platform-")
CERT_ANNOTATION = "alb.ingress.kubernetes.io/certificate-arn"

# -- Karpenter bootstrap --
KARPENTER_SETUP_SCRIPT = "scripts/setup_karpenter.sh"
KARPENTER_REPAIR_UNINSTALL_WAIT_SECONDS = 10
KARPENTER_REPAIR_DELETE_WAIT_SECONDS = 5

# -- Secrets --
APP_SECRET_NAME = "app-secret"
APP_SECRET_TOKEN_PREFIX = "tok_"
APP_SECRET_TOKEN_LENGTH = 15

# -- Readiness budgets (minutes) and poll intervals (seconds) --
CLUSTER_ACTIVE_MAX_WAIT_MINUTES = 20
CLUSTER_ACTIVE_POLL_INTERVAL_SECONDS = 30
NODES_READY_MAX_WAIT_MINUTES = 10
NODES_READY_POLL_INTERVAL_SECONDS = 15
POD_IDENTITY_AGENT_MAX_WAIT_MINUTES = 3
POD_IDENTITY_AGENT_POLL_INTERVAL_SECONDS = 5
KARPENTER_READY_MAX_WAIT_MINUTES = 5
KARPENTER_READY_POLL_INTERVAL_SECONDS = 15
CORE_PODS_MAX_WAIT_MINUTES = 10
STREAM_PODS_MAX_WAIT_MINUTES = 15
DATALAKE_PODS_MAX_WAIT_MINUTES = 15
PODS_POLL_INTERVAL_SECONDS = 30
PREVIOUS_PHASE_MAX_WAIT_MINUTES = 5
HELM_LOCK_MAX_WAIT_MINUTES = 5
HELM_LOCK_POLL_INTERVAL_SECONDS = 10
INGRESS_HOSTNAME_MAX_WAIT_MINUTES = 2
INGRESS_HOSTNAME_POLL_INTERVAL_SECONDS = 10
ROLE_PROPAGATION_SECONDS = 5

# -- Diagnostic excerpt bounds (lines) --
EVENTS_TAIL_LINES = 25
DESCRIBE_EVENTS_LINES = 15
DESCRIBE_POD_LIMIT = 3
POD_LOG_TAIL_LINES = 200
REPAIR_LOG_TAIL_LINES = 50
REPAIR_EVENTS_LINES = 20
REPAIR_LOG_EXCERPT_LINES = 30
HELM_HISTORY_MAX = 10

# -- State inference --
HEALTHY_READY_RATIO = 0.8

# -- DNS --
DNS_RECORD_TTL = 300

# -- Defaults --
DEFAULT_AWS_REGION = "us-east-2"
DEFAULT_AWS_PROFILE = "default"
DEFAULT_NAMESPACE = "ingext"
DEFAULT_NODE_TYPE = "t3.large"
DEFAULT_NODE_COUNT = 2
DEFAULT_KUBERNETES_VERSION = dep_value("kubernetes", "version", default="1.34")
