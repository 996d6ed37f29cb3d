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

"""Configuration classes and config models."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lakehouse_installer.constants import (
    DEFAULT_AWS_PROFILE,
    DEFAULT_AWS_REGION,
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_NAMESPACE,
    DEFAULT_NODE_COUNT,
    DEFAULT_NODE_TYPE,
)

PHASE_TARGETS = ("foundation", "storage", "compute", "core", "stream", "datalake", "ingress", "all")


class ConfigurationError(Exception):
    """Raised when the environment configuration cannot be loaded."""


def _lower_alnum(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


# ============================================================================
# Environment configuration
# ============================================================================

class EnvironmentConfig(BaseSettings):
    """Install target, auto-loaded from the environment or a dotenv file.

    Keys are read case-insensitively, so ``CLUSTER_NAME`` fills
    ``cluster_name``. Empty values count as absent. The object is frozen:
    one run reads one configuration.

    Attributes:
        cluster_name: EKS cluster name (lowercase alphanumerics).
        aws_region: AWS region hosting the cluster and bucket.
        aws_profile: AWS credentials profile used for every call.
        namespace: Kubernetes namespace for the platform workloads.
        s3_bucket: Object-storage bucket backing the datalake.
        root_domain: Registered domain the site lives under.
        site_domain: Public hostname of the platform.
        cert_arn: ACM certificate ARN for the ingress.
        node_type: EC2 instance type for the managed nodegroup.
        node_count: Node count for the managed nodegroup.
        kubernetes_version: EKS control-plane version.
    """

    model_config = SettingsConfigDict(extra="ignore", frozen=True)

    cluster_name: str | None = None
    aws_region: str = DEFAULT_AWS_REGION
    aws_profile: str = DEFAULT_AWS_PROFILE
    namespace: str = DEFAULT_NAMESPACE
    s3_bucket: str | None = None
    root_domain: str | None = None
    site_domain: str | None = None
    cert_arn: str | None = Field(default=None, pattern=r"^arn:aws[\w-]*:acm:")
    node_type: str = DEFAULT_NODE_TYPE
    node_count: int = Field(default=DEFAULT_NODE_COUNT, ge=1, le=100)
    kubernetes_version: str = Field(default=DEFAULT_KUBERNETES_VERSION, pattern=r"^\d+\.\d+$")

    @field_validator("cluster_name", "s3_bucket", "root_domain", "site_domain", "cert_arn", mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("cluster_name", "namespace")
    @classmethod
    def _normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _lower_alnum(value) or None

    # ------------------------------------------------------------------
    # Derived names
    # ------------------------------------------------------------------

    @property
    def resolved_site_domain(self) -> str | None:
        if self.site_domain:
            return self.site_domain
        if self.root_domain:
            return f"lakehouse.k8.{self.root_domain}"
        return None

    @property
    def service_account(self) -> str:
        return f"{self.namespace}-sa"

    @property
    def s3_policy_name(self) -> str:
        return f"ingext_{self.namespace}_S3_Policy_{self.cluster_name}"

    @property
    def storage_role_name(self) -> str:
        return f"ingext_{self.service_account}_{self.cluster_name}"

    @property
    def nodegroup_name(self) -> str:
        return f"ingext-{self.cluster_name}-workers"

    @property
    def ebs_csi_role_name(self) -> str:
        return f"AmazonEKS_EBS_CSI_DriverRole_{self.cluster_name}"

    @property
    def alb_policy_name(self) -> str:
        return f"AWSLoadBalancerControllerIAMPolicy_{self.cluster_name}"

    @property
    def alb_role_name(self) -> str:
        return f"AWSLoadBalancerControllerRole_{self.cluster_name}"

    @property
    def load_balancer_name(self) -> str:
        return _lower_alnum(f"albingext{self.cluster_name}ingress")

    def aws_env(self) -> dict[str, str]:
        """Environment passed to every cloud and cluster client call."""
        return {
            "AWS_PROFILE": self.aws_profile,
            "AWS_REGION": self.aws_region,
            "AWS_DEFAULT_REGION": self.aws_region,
        }

    def lookup(self, key: str) -> str | None:
        """Return the value of an env-style key such as ``SITE_DOMAIN``."""
        if key == "SITE_DOMAIN":
            return self.resolved_site_domain
        value = getattr(self, key.lower(), None)
        return None if value is None else str(value)

    def missing(self, keys: tuple[str, ...] | list[str]) -> list[str]:
        """List the env-style keys in *keys* that have no value."""
        return [key for key in keys if not self.lookup(key)]


def load_config(env_file: Path | None = None, **overrides) -> EnvironmentConfig:
    """Load the environment configuration.

    Args:
        env_file: Optional dotenv file (``export KEY=value`` lines allowed).
        **overrides: Explicit field values that win over the environment.

    Returns:
        The frozen configuration.

    Raises:
        ConfigurationError: If the file is missing or a value is invalid.
    """
    if env_file is not None and not env_file.exists():
        raise ConfigurationError(f"Env file not found: {env_file}")
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return EnvironmentConfig(_env_file=env_file, **values)
    except ValidationError as err:
        raise ConfigurationError(f"Invalid configuration: {err}") from err


# ============================================================================
# Run options
# ============================================================================

@dataclass(frozen=True)
class InstallOptions:
    """Options for one installer run.

    Attributes:
        approve: Whether the operator approved the plan; without it nothing runs.
        force: Proceed past dependency blockers at the operator's own risk.
        verbose: Stream every command's output, not just long-running ones.
        target_phase: Stop successfully after this phase (``all`` runs every phase).
    """

    approve: bool = False
    force: bool = False
    verbose: bool = False
    target_phase: str = "all"

    def __post_init__(self) -> None:
        if self.target_phase not in PHASE_TARGETS:
            raise ConfigurationError(
                f"Unknown phase '{self.target_phase}', expected one of: {', '.join(PHASE_TARGETS)}"
            )
