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

"""S3 data sources: event queue wiring and the cross-account role chain.

The platform reads a bucket by receiving its object-created events on a
queue and assuming a role that may live in another account. Both pieces are
reversible provisioning tasks; the notification task composes the role
chain as its last step.
"""

from __future__ import annotations

import json
import re

from lakehouse_installer import console, logger
from lakehouse_installer.constants import ROLE_PROPAGATION_SECONDS
from lakehouse_installer.provisioning import (
    Compensation,
    ProvisioningError,
    ProvisioningTask,
    ResourceRecord,
    RollbackStep,
    TaskContext,
    run_guarded,
)

ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_+=,.@-]{1,64}$")


def _document(*statements: dict) -> str:
    return json.dumps({"Version": "2012-10-17", "Statement": list(statements)})


# ============================================================================
# Role chain
# ============================================================================

class IamRoleChainTask(ProvisioningTask):
    """Target role assumable by the platform's pod role.

    Inputs:
        target_role_name: Role to find or create in the remote account.
        policy_json: Permissions policy document attached to the role.
        local_profile: Profile of the account running the platform.
        remote_profile: Profile of the account owning the data.
    """

    name = "iam-role-chain"
    description = "Cross-account role assumed by the platform pod role"

    def validate(self, ctx: TaskContext) -> bool:
        role = ctx.inputs.get("target_role_name", "")
        if not ROLE_NAME_PATTERN.match(role):
            console.print(f"[red]❌ Invalid role name: {role!r}[/red]")
            return False
        if not ctx.inputs.get("policy_json"):
            console.print("[red]❌ Missing permissions policy document[/red]")
            return False
        if not ctx.tools.ingext("--version").ok:
            console.print("[red]❌ ingext CLI not found[/red]")
            return False
        return True

    def _account(self, ctx: TaskContext, profile: str) -> str:
        account = ctx.probes.account_id(profile)
        if not account:
            raise ProvisioningError("ACCOUNT_LOOKUP_FAILED", "get-caller-identity", f"No account for profile {profile}")
        return account

    def _create(self, ctx: TaskContext, undo: Compensation) -> ResourceRecord:
        tools = ctx.tools
        role = ctx.inputs["target_role_name"]
        local = ctx.inputs.get("local_profile") or ctx.probes.local_profile()
        remote = ctx.inputs.get("remote_profile") or local

        local_account = self._account(ctx, local)
        remote_account = self._account(ctx, remote)
        pod_role_result = self.check(tools.ingext("eks", "get-pod-role"), "POD_ROLE_NOT_FOUND", "get-pod-role")
        pod_role = pod_role_result.stdout.strip()
        pod_role_arn = f"arn:aws:iam::{local_account}:role/{pod_role}"
        role_arn = f"arn:aws:iam::{remote_account}:role/{role}"

        role_created = False
        previous_trust = None
        if not ctx.probes.role_exists(role, profile=remote):
            # The real principal may not be resolvable yet; start from the account root.
            placeholder = _document({
                "Effect": "Allow",
                "Principal": {"AWS": f"arn:aws:iam::{remote_account}:root"},
                "Action": "sts:AssumeRole",
            })
            self.check(
                tools.aws("iam", "create-role", "--role-name", role, "--assume-role-policy-document", placeholder,
                          profile=remote),
                "IAM_ROLE_CREATE_FAILED", "create-role",
            )
            role_created = True
            undo.push(f"delete role {role}", lambda: tools.aws("iam", "delete-role", "--role-name", role, profile=remote))
            tools.aws("iam", "wait", "role-exists", "--role-name", role, profile=remote)
        else:
            current = tools.aws(
                "iam", "get-role", "--role-name", role,
                "--query", "Role.AssumeRolePolicyDocument", "--output", "json", profile=remote,
            )
            previous_trust = current.stdout if current.ok and current.stdout else None

        trust = _document({
            "Effect": "Allow",
            "Principal": {"AWS": pod_role_arn},
            "Action": ["sts:AssumeRole", "sts:TagSession"],
        })
        self.check(
            tools.aws("iam", "update-assume-role-policy", "--role-name", role, "--policy-document", trust,
                      profile=remote),
            "IAM_TRUST_UPDATE_FAILED", "update-assume-role-policy",
        )
        if previous_trust is not None:
            saved = previous_trust
            undo.push(
                f"restore trust policy of {role}",
                lambda: tools.aws("iam", "update-assume-role-policy", "--role-name", role,
                                  "--policy-document", saved, profile=remote),
            )

        permissions_policy = f"{role}-Permissions"
        self.check(
            tools.aws("iam", "put-role-policy", "--role-name", role, "--policy-name", permissions_policy,
                      "--policy-document", ctx.inputs["policy_json"], profile=remote),
            "IAM_POLICY_ATTACH_FAILED", "put-role-policy",
        )
        undo.push(
            f"delete {permissions_policy}",
            lambda: tools.aws("iam", "delete-role-policy", "--role-name", role,
                              "--policy-name", permissions_policy, profile=remote),
        )

        assume_policy = f"AllowAssume-{role}"
        grant = _document({"Effect": "Allow", "Action": "sts:AssumeRole", "Resource": role_arn})
        self.check(
            tools.aws("iam", "put-role-policy", "--role-name", pod_role, "--policy-name", assume_policy,
                      "--policy-document", grant, profile=local),
            "IAM_POLICY_ATTACH_FAILED", "put-role-policy",
        )
        undo.push(
            f"delete {assume_policy}",
            lambda: tools.aws("iam", "delete-role-policy", "--role-name", pod_role,
                              "--policy-name", assume_policy, profile=local),
        )

        ctx.sleep(ROLE_PROPAGATION_SECONDS)
        probe = tools.ingext("eks", "test-assumed-role", "--roleArn", role_arn)
        if probe.stdout.strip() != "OK":
            raise ProvisioningError(
                "ROLE_ASSUME_TEST_FAILED", "test-assumed-role",
                f"Pod role could not assume {role_arn}: {probe.output}", probe,
            )

        registration = None
        if role_created:
            name = f"{remote_account}:{role}"
            result = tools.ingext("eks", "add-assumed-role", "--name", name, "--roleArn", role_arn)
            if result.ok:
                registration = name
            else:
                logger.warning("role %s works but could not be registered: %s", role_arn, result.output)

        console.print(f"[green]   ✓ Role {role_arn} assumable by {pod_role}[/green]")
        return ResourceRecord(
            id=role_arn,
            type="iam-role-chain",
            details={
                "targetRoleName": role,
                "targetRoleArn": role_arn,
                "roleCreated": role_created,
                "podRoleName": pod_role,
                "localProfile": local,
                "remoteProfile": remote,
                "permissionsPolicyName": permissions_policy,
                "assumePolicyName": assume_policy,
                "registrationName": registration,
                "previousTrustPolicy": previous_trust,
            },
        )

    def rollback(self, record: ResourceRecord, ctx: TaskContext) -> list[RollbackStep]:
        d = record.details
        tools = ctx.tools
        steps: list[RollbackStep] = []
        if d.get("registrationName"):
            steps += run_guarded(
                "unregister role", lambda: tools.ingext("eks", "remove-assumed-role", "--name", d["registrationName"]),
            )
        steps += run_guarded(
            f"delete {d['assumePolicyName']}",
            lambda: tools.aws("iam", "delete-role-policy", "--role-name", d["podRoleName"],
                              "--policy-name", d["assumePolicyName"], profile=d["localProfile"]),
        )
        steps += run_guarded(
            f"delete {d['permissionsPolicyName']}",
            lambda: tools.aws("iam", "delete-role-policy", "--role-name", d["targetRoleName"],
                              "--policy-name", d["permissionsPolicyName"], profile=d["remoteProfile"]),
        )
        if d.get("previousTrustPolicy"):
            steps += run_guarded(
                f"restore trust policy of {d['targetRoleName']}",
                lambda: tools.aws("iam", "update-assume-role-policy", "--role-name", d["targetRoleName"],
                                  "--policy-document", d["previousTrustPolicy"], profile=d["remoteProfile"]),
            )
        if d.get("roleCreated"):
            steps += run_guarded(
                f"delete role {d['targetRoleName']}",
                lambda: tools.aws("iam", "delete-role", "--role-name", d["targetRoleName"], profile=d["remoteProfile"]),
            )
        return steps


# ============================================================================
# Bucket notification
# ============================================================================

class S3NotificationTask(ProvisioningTask):
    """Queue, queue policy, bucket notification, then the consumer role chain.

    Inputs:
        bucket: Source bucket.
        region: Region of the bucket and queue.
        prefix: Optional key prefix to filter events on.
        queue_name: Queue name (default ``<bucket>-notify``).
        local_profile, remote_profile: As for IamRoleChainTask.
    """

    name = "s3-notification"
    description = "Bucket event queue and access role for an S3 data source"

    def __init__(self, role_chain: IamRoleChainTask | None = None) -> None:
        self.role_chain = role_chain or IamRoleChainTask()

    def validate(self, ctx: TaskContext) -> bool:
        if not ctx.inputs.get("bucket") or not ctx.inputs.get("region"):
            console.print("[red]❌ Missing required inputs: bucket or region[/red]")
            return False
        return True

    def _create(self, ctx: TaskContext, undo: Compensation) -> ResourceRecord:
        tools = ctx.tools
        bucket = ctx.inputs["bucket"]
        region = ctx.inputs["region"]
        prefix = (ctx.inputs.get("prefix") or "").lstrip("/")
        queue_name = ctx.inputs.get("queue_name") or f"{bucket}-notify"
        local = ctx.inputs.get("local_profile") or ctx.probes.local_profile()
        remote = ctx.inputs.get("remote_profile") or local

        console.print(f"[yellow]ℹ️  Creating queue {queue_name}[/yellow]")
        created = self.check(
            tools.aws("sqs", "create-queue", "--queue-name", queue_name, "--region", region,
                      "--query", "QueueUrl", "--output", "text", profile=remote),
            "QUEUE_CREATE_FAILED", "create-queue",
        )
        queue_url = created.stdout.strip()
        undo.push(
            f"delete queue {queue_name}",
            lambda: tools.aws("sqs", "delete-queue", "--queue-url", queue_url, "--region", region, profile=remote),
        )
        arn_result = self.check(
            tools.aws("sqs", "get-queue-attributes", "--queue-url", queue_url, "--attribute-names", "QueueArn",
                      "--region", region, "--query", "Attributes.QueueArn", "--output", "text", profile=remote),
            "QUEUE_CREATE_FAILED", "get-queue-attributes",
        )
        queue_arn = arn_result.stdout.strip()

        send_policy = _document({
            "Effect": "Allow",
            "Principal": {"Service": "s3.amazonaws.com"},
            "Action": "sqs:SendMessage",
            "Resource": queue_arn,
            "Condition": {"ArnEquals": {"aws:SourceArn": f"arn:aws:s3:::{bucket}"}},
        })
        self.check(
            tools.aws("sqs", "set-queue-attributes", "--queue-url", queue_url,
                      "--attributes", json.dumps({"Policy": send_policy}), "--region", region, profile=remote),
            "QUEUE_POLICY_FAILED", "set-queue-attributes",
        )
        undo.push(
            "clear queue policy",
            lambda: tools.aws("sqs", "set-queue-attributes", "--queue-url", queue_url,
                              "--attributes", json.dumps({"Policy": ""}), "--region", region, profile=remote),
        )

        queue_config: dict = {"QueueArn": queue_arn, "Events": ["s3:ObjectCreated:*"]}
        if prefix:
            queue_config["Filter"] = {"Key": {"FilterRules": [{"Name": "prefix", "Value": prefix}]}}
        self.check(
            tools.aws("s3api", "put-bucket-notification-configuration", "--bucket", bucket,
                      "--notification-configuration", json.dumps({"QueueConfigurations": [queue_config]}),
                      "--region", region, profile=remote),
            "BUCKET_NOTIFICATION_FAILED", "put-bucket-notification-configuration",
        )
        undo.push(
            f"clear notification on {bucket}",
            lambda: tools.aws("s3api", "put-bucket-notification-configuration", "--bucket", bucket,
                              "--notification-configuration", "{}", "--region", region, profile=remote),
        )

        objects = f"arn:aws:s3:::{bucket}/{prefix}*" if prefix else f"arn:aws:s3:::{bucket}/*"
        consumer_policy = _document(
            {
                "Sid": "S3Access",
                "Effect": "Allow",
                "Action": ["s3:GetObject", "s3:ListBucket"],
                "Resource": [f"arn:aws:s3:::{bucket}", objects],
            },
            {
                "Sid": "SQSAccess",
                "Effect": "Allow",
                "Action": ["sqs:ReceiveMessage", "sqs:DeleteMessage", "sqs:GetQueueUrl", "sqs:GetQueueAttributes"],
                "Resource": queue_arn,
            },
        )
        chain_ctx = TaskContext(
            tools=tools,
            probes=ctx.probes,
            inputs={
                "target_role_name": ctx.inputs.get("target_role_name") or f"Ingext-{bucket}-AccessRole",
                "policy_json": consumer_policy,
                "local_profile": local,
                "remote_profile": remote,
            },
            sleep=ctx.sleep,
        )
        chain = self.role_chain.execute(chain_ctx)

        return ResourceRecord(
            id=f"{bucket}-config",
            type="s3-datasource",
            details={
                "bucket": bucket,
                "region": region,
                "queueName": queue_name,
                "queueUrl": queue_url,
                "queueArn": queue_arn,
                "localProfile": local,
                "remoteProfile": remote,
                "roleChain": chain.details,
            },
        )

    def rollback(self, record: ResourceRecord, ctx: TaskContext) -> list[RollbackStep]:
        d = record.details
        tools = ctx.tools
        steps: list[RollbackStep] = []
        if d.get("roleChain"):
            chain = ResourceRecord(id=d["roleChain"].get("targetRoleArn", ""), type="iam-role-chain",
                                   details=d["roleChain"])
            steps += run_guarded("role chain", lambda: self.role_chain.rollback(chain, ctx))
        steps += run_guarded(
            f"clear notification on {d['bucket']}",
            lambda: tools.aws("s3api", "put-bucket-notification-configuration", "--bucket", d["bucket"],
                              "--notification-configuration", "{}", "--region", d["region"],
                              profile=d["remoteProfile"]),
        )
        if d.get("queueUrl"):
            steps += run_guarded(
                f"delete queue {d['queueName']}",
                lambda: tools.aws("sqs", "delete-queue", "--queue-url", d["queueUrl"], "--region", d["region"],
                                  profile=d["remoteProfile"]),
            )
        return steps
