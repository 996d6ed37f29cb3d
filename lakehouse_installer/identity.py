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

"""Identity chains the installer provisions: bucket access and the ALB controller."""

from __future__ import annotations

import json

from lakehouse_installer import console
from lakehouse_installer.constants import (
    ALB_CONTROLLER_SERVICE_ACCOUNT,
    NS_KUBE_SYSTEM,
    dep_value,
)
from lakehouse_installer.provisioning import (
    Compensation,
    ProvisioningError,
    ProvisioningTask,
    ResourceRecord,
    RollbackStep,
    TaskContext,
    run_guarded,
)
from lakehouse_installer.runner import CommandResult
from lakehouse_installer.tools import already_exists, created_or_exists

_ALB_POLICY_URL = (
    "https://raw.githubusercontent.com/kubernetes-sigs/aws-load-balancer-controller/main/docs/install/iam_policy.json"
)


def bucket_policy_document(bucket: str) -> dict:
    """Least-privilege object access for the platform service account."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["s3:ListBucket"],
                "Resource": [f"arn:aws:s3:::{bucket}"],
            },
            {
                "Effect": "Allow",
                "Action": [
                    "s3:PutObject",
                    "s3:GetObject",
                    "s3:DeleteObject",
                    "s3:AbortMultipartUpload",
                ],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            },
        ],
    }


def create_policy(ctx: TaskContext, name: str, document: dict, code: str) -> tuple[str, bool]:
    """Create a customer-managed policy, resolving the existing ARN on a name clash.

    Returns:
        The policy ARN and whether this call created it.
    """
    result = ctx.tools.aws(
        "iam", "create-policy",
        "--policy-name", name,
        "--policy-document", json.dumps(document),
        "--query", "Policy.Arn", "--output", "text",
    )
    if result.ok and result.stdout.strip().startswith("arn:"):
        return result.stdout.strip(), True
    if already_exists(result):
        arn = ctx.probes.policy_arn(name)
        if arn:
            return arn, False
    raise ProvisioningError(code, "create-policy", f"Failed to create IAM policy {name}: {result.output}", result)


def create_pod_identity(ctx: TaskContext, namespace: str, service_account: str, role: str, policy_arn: str) -> CommandResult:
    config = ctx.tools.config
    return ctx.tools.eksctl(
        "create", "podidentityassociation",
        "--cluster", config.cluster_name or "",
        "--namespace", namespace,
        "--service-account-name", service_account,
        "--role-name", role,
        "--permission-policy-arns", policy_arn,
        "--region", config.aws_region,
    )


def delete_pod_identity(ctx: TaskContext, namespace: str, service_account: str) -> CommandResult:
    config = ctx.tools.config
    return ctx.tools.eksctl(
        "delete", "podidentityassociation",
        "--cluster", config.cluster_name or "",
        "--namespace", namespace,
        "--service-account-name", service_account,
        "--region", config.aws_region,
    )


def delete_policy(ctx: TaskContext, arn: str) -> CommandResult:
    return ctx.tools.aws("iam", "delete-policy", "--policy-arn", arn)


# ============================================================================
# Bucket access (storage phase)
# ============================================================================

class BucketAccessTask(ProvisioningTask):
    """Bucket, then its access policy, then the workload identity bound to it.

    Each resource is created only when missing, and only resources this run
    created are recorded for undo.
    """

    name = "bucket-access"
    description = "Object storage bucket with a pod identity bound to it"

    def validate(self, ctx: TaskContext) -> bool:
        config = ctx.tools.config
        return bool(config.s3_bucket and config.cluster_name and config.namespace)

    def _create_bucket(self, ctx: TaskContext, bucket: str, undo: Compensation) -> bool:
        region = ctx.tools.config.aws_region
        if ctx.probes.bucket_exists(bucket):
            return False
        args = ["s3api", "create-bucket", "--bucket", bucket, "--region", region]
        # us-east-1 rejects an explicit location constraint.
        if region != "us-east-1":
            args += ["--create-bucket-configuration", f"LocationConstraint={region}"]
        result = self.check(ctx.tools.aws(*args), "S3_BUCKET_CREATE_FAILED", "create-bucket", created_or_exists)
        if not result.ok:
            return False
        undo.push(f"delete bucket {bucket}", lambda: ctx.tools.aws("s3", "rb", f"s3://{bucket}", "--force"))

        encryption = {
            "Rules": [
                {
                    "ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"},
                    "BucketKeyEnabled": True,
                }
            ]
        }
        self.check(
            ctx.tools.aws(
                "s3api", "put-bucket-encryption", "--bucket", bucket,
                "--server-side-encryption-configuration", json.dumps(encryption),
            ),
            "S3_BUCKET_CREATE_FAILED", "put-bucket-encryption",
        )
        self.check(
            ctx.tools.aws(
                "s3api", "put-public-access-block", "--bucket", bucket,
                "--public-access-block-configuration",
                "BlockPublicAcls=true,IgnorePublicAcls=true,BlockPublicPolicy=true,RestrictPublicBuckets=true",
            ),
            "S3_BUCKET_CREATE_FAILED", "put-public-access-block",
        )
        console.print(f"[green]   ✓ Created bucket {bucket}[/green]")
        return True

    def _create(self, ctx: TaskContext, undo: Compensation) -> ResourceRecord:
        config = ctx.tools.config
        bucket = config.s3_bucket or ""
        bucket_created = self._create_bucket(ctx, bucket, undo)

        policy_name = config.s3_policy_name
        policy_arn = ctx.probes.policy_arn(policy_name)
        policy_created = False
        if policy_arn is None:
            policy_arn, policy_created = create_policy(
                ctx, policy_name, bucket_policy_document(bucket), "IAM_POLICY_CREATE_FAILED",
            )
            if policy_created:
                arn = policy_arn
                undo.push(f"delete policy {policy_name}", lambda: delete_policy(ctx, arn))

        association_created = False
        if not ctx.probes.pod_identity_exists(config.namespace, config.service_account):
            result = self.check(
                create_pod_identity(ctx, config.namespace, config.service_account, config.storage_role_name, policy_arn),
                "POD_IDENTITY_ASSOCIATION_FAILED", "create-podidentityassociation", created_or_exists,
            )
            association_created = result.ok
            if association_created:
                undo.push(
                    f"delete pod identity {config.namespace}/{config.service_account}",
                    lambda: delete_pod_identity(ctx, config.namespace, config.service_account),
                )

        return ResourceRecord(
            id=f"{config.cluster_name}:{bucket}",
            type="bucket-access",
            details={
                "bucket": bucket,
                "bucketCreated": bucket_created,
                "policyName": policy_name,
                "policyArn": policy_arn,
                "policyCreated": policy_created,
                "roleName": config.storage_role_name,
                "namespace": config.namespace,
                "serviceAccount": config.service_account,
                "associationCreated": association_created,
            },
        )

    def rollback(self, record: ResourceRecord, ctx: TaskContext) -> list[RollbackStep]:
        details = record.details
        steps: list[RollbackStep] = []
        if details.get("associationCreated"):
            steps += run_guarded(
                "delete pod identity association",
                lambda: delete_pod_identity(ctx, details["namespace"], details["serviceAccount"]),
            )
        if details.get("policyCreated"):
            steps += run_guarded("delete bucket policy", lambda: delete_policy(ctx, details["policyArn"]))
        if details.get("bucketCreated"):
            steps += run_guarded(
                "delete bucket", lambda: ctx.tools.aws("s3", "rb", f"s3://{details['bucket']}", "--force"),
            )
        return steps


# ============================================================================
# Load balancer controller identity (ingress phase)
# ============================================================================

class AlbControllerIdentityTask(ProvisioningTask):
    """IAM policy plus pod identity for the load balancer controller."""

    name = "alb-controller-identity"
    description = "IAM policy and pod identity for aws-load-balancer-controller"

    def validate(self, ctx: TaskContext) -> bool:
        return bool(ctx.tools.config.cluster_name)

    def _policy_document(self, ctx: TaskContext) -> dict:
        url = dep_value("aws_load_balancer_controller", "iam_policy_url", default=_ALB_POLICY_URL)
        result = ctx.tools.runner.run("curl", ["-sL", url])
        if not result.ok or not result.stdout:
            raise ProvisioningError(
                "ALB_POLICY_FETCH_FAILED", "fetch-policy", f"Could not download {url}: {result.output}", result,
            )
        try:
            document = json.loads(result.stdout)
        except ValueError as err:
            raise ProvisioningError(
                "ALB_POLICY_PARSE_FAILED", "parse-policy", f"Policy document at {url} is not JSON: {err}", result,
            ) from err
        if not isinstance(document, dict):
            raise ProvisioningError("ALB_POLICY_PARSE_FAILED", "parse-policy", f"Unexpected policy document at {url}")
        return document

    def _create(self, ctx: TaskContext, undo: Compensation) -> ResourceRecord:
        config = ctx.tools.config
        policy_name = config.alb_policy_name
        policy_arn = ctx.probes.policy_arn(policy_name)
        policy_created = False
        if policy_arn is None:
            policy_arn, policy_created = create_policy(
                ctx, policy_name, self._policy_document(ctx), "ALB_POLICY_CREATE_FAILED",
            )
            if policy_created:
                arn = policy_arn
                undo.push(f"delete policy {policy_name}", lambda: delete_policy(ctx, arn))

        association_created = False
        if not ctx.probes.pod_identity_exists(NS_KUBE_SYSTEM, ALB_CONTROLLER_SERVICE_ACCOUNT):
            result = self.check(
                create_pod_identity(
                    ctx, NS_KUBE_SYSTEM, ALB_CONTROLLER_SERVICE_ACCOUNT, config.alb_role_name, policy_arn,
                ),
                "POD_IDENTITY_ASSOCIATION_FAILED", "create-podidentityassociation", created_or_exists,
            )
            association_created = result.ok

        return ResourceRecord(
            id=f"{config.cluster_name}:alb-controller",
            type="alb-controller-identity",
            details={
                "policyName": policy_name,
                "policyArn": policy_arn,
                "policyCreated": policy_created,
                "roleName": config.alb_role_name,
                "namespace": NS_KUBE_SYSTEM,
                "serviceAccount": ALB_CONTROLLER_SERVICE_ACCOUNT,
                "associationCreated": association_created,
            },
        )

    def rollback(self, record: ResourceRecord, ctx: TaskContext) -> list[RollbackStep]:
        details = record.details
        steps: list[RollbackStep] = []
        if details.get("associationCreated"):
            steps += run_guarded(
                "delete controller pod identity",
                lambda: delete_pod_identity(ctx, details["namespace"], details["serviceAccount"]),
            )
        if details.get("policyCreated"):
            steps += run_guarded("delete controller policy", lambda: delete_policy(ctx, details["policyArn"]))
        return steps
