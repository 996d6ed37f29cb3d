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

from conftest import failed, ok, ok_json, releases_payload
from lakehouse_installer.cleanup import Teardown, iam_roles


def _script_cluster(runner):
    runner.on("aws eks describe-cluster", ok("ACTIVE"))
    runner.on("helm list", ok_json(
        releases_payload("ingext-lake") + releases_payload("karpenter", namespace="kube-system")
    ))


def test_without_approval_only_the_plan_is_returned(tools, probes, runner):
    result = Teardown(tools, probes).run(approve=False)

    assert result.status == "needs_approval"
    assert result.exit_code == 2
    assert "demo" in result.plan
    assert "demo-lake" in result.plan
    assert runner.calls == []


def test_full_teardown(tools, probes, runner, config):
    _script_cluster(runner)

    result = Teardown(tools, probes).run(approve=True)

    assert result.status == "completed"
    assert result.exit_code == 0
    assert runner.called("helm uninstall") == [
        "helm uninstall ingext-lake -n ingext",
        "helm uninstall karpenter -n kube-system",
    ]
    assert runner.called("eksctl delete cluster --name demo --region us-east-2 --wait")
    assert runner.called("aws s3 rb s3://demo-lake --force")
    assert len(runner.called("aws iam delete-role --role-name")) == len(iam_roles(config))
    assert "cluster/demo" in result.deleted


def test_attached_and_inline_policies_go_before_the_role(tools, probes, runner):
    _script_cluster(runner)
    runner.on("aws iam list-attached-role-policies --role-name ingext_ingext-sa_demo",
              ok_json(["arn:aws:iam::123456789012:policy/ingext_ingext_S3_Policy_demo"]))
    runner.on("aws iam list-role-policies --role-name ingext_ingext-sa_demo", ok_json(["inline"]))

    Teardown(tools, probes).run(approve=True)

    role_calls = [line for line in runner.calls if "ingext_ingext-sa_demo" in line and "iam" in line]
    assert [line.split(" --")[0] for line in role_calls] == [
        "aws iam get-role",
        "aws iam list-attached-role-policies",
        "aws iam detach-role-policy",
        "aws iam list-role-policies",
        "aws iam delete-role-policy",
        "aws iam delete-role",
    ]


def test_one_failure_does_not_stop_the_rest(tools, probes, runner):
    _script_cluster(runner)
    runner.on("eksctl delete cluster", failed("AccessDenied: not authorized"))

    result = Teardown(tools, probes).run(approve=True)

    assert result.status == "partial"
    assert result.exit_code == 3
    assert result.failed[0]["resource"] == "cluster/demo"
    assert "bucket/demo-lake" in result.deleted


def test_already_gone_resources_are_skipped(tools, probes, runner):
    runner.on("kubectl get nodes -o name", failed("Unable to connect to the server"))
    runner.on("aws eks describe-cluster", failed("ResourceNotFoundException"))
    runner.on("aws s3api head-bucket", failed("Not Found", exit_code=254))
    runner.on("aws iam get-role", failed("NoSuchEntity"))

    result = Teardown(tools, probes).run(approve=True)

    assert result.status == "completed"
    assert result.deleted == []
    assert "helm-releases" in result.skipped
    assert "cluster/demo" in result.skipped
    assert runner.called("helm uninstall") == []
    assert runner.called("aws iam delete-role") == []


def test_non_string_list_entries_are_ignored(tools, probes, runner):
    _script_cluster(runner)
    runner.on("aws ec2 describe-volumes", ok_json(["vol-0abc", None, {"VolumeId": "vol-1"}]))
    runner.on("aws iam list-attached-role-policies", ok_json([42]))
    runner.on("aws iam list-role-policies", ok_json([None]))

    result = Teardown(tools, probes).run(approve=True)

    assert runner.called("aws ec2 delete-volume") == ["aws ec2 delete-volume --volume-id vol-0abc"]
    assert runner.called("aws iam detach-role-policy") == []
    assert runner.called("aws iam delete-role-policy") == []
    assert result.status == "completed"
