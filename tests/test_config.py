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

from lakehouse_installer.config import ConfigurationError, EnvironmentConfig, load_config


def test_env_file_with_export_lines(tmp_path):
    env_file = tmp_path / "lakehouse_ingext.env"
    env_file.write_text(
        "export CLUSTER_NAME=Demo-Lake-1\n"
        "export AWS_REGION=eu-west-1\n"
        "export S3_BUCKET=\n"
        "export ROOT_DOMAIN=example.com\n"
    )

    config = load_config(env_file)

    assert config.cluster_name == "demolake1"
    assert config.aws_region == "eu-west-1"
    assert config.s3_bucket is None
    assert config.resolved_site_domain == "lakehouse.k8.example.com"
    assert config.missing(["CLUSTER_NAME", "S3_BUCKET", "SITE_DOMAIN", "CERT_ARN"]) == ["S3_BUCKET", "CERT_ARN"]


def test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("CLUSTER_NAME", "fromenv")
    monkeypatch.setenv("NAMESPACE", "team")

    config = load_config(cluster_name="flag", s3_bucket=None)

    assert config.cluster_name == "flag"
    assert config.namespace == "team"


def test_missing_env_file_is_reported(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "absent.env")


def test_invalid_values_are_rejected():
    with pytest.raises(ConfigurationError):
        load_config(cert_arn="not-an-arn")
    with pytest.raises(ConfigurationError):
        load_config(node_count=0)


def test_derived_names():
    config = EnvironmentConfig(cluster_name="demo", namespace="ingext")

    assert config.service_account == "ingext-sa"
    assert config.s3_policy_name == "ingext_ingext_S3_Policy_demo"
    assert config.storage_role_name == "ingext_ingext-sa_demo"
    assert config.load_balancer_name == "albingextdemoingress"
    assert config.aws_env()["AWS_DEFAULT_REGION"] == "us-east-2"
    assert config.lookup("NODE_COUNT") == "2"
