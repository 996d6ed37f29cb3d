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

import json

import pytest
from typer.testing import CliRunner

from cli import app, main
from conftest import FakeRunner, failed, ok
from lakehouse_installer.commands import common
from lakehouse_installer.config import ConfigurationError


@pytest.fixture
def cli() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake(monkeypatch) -> FakeRunner:
    runner = FakeRunner()
    monkeypatch.setattr(common, "CommandRunner", lambda context: runner)
    return runner


def test_install_without_approval_prints_plan(cli):
    result = cli.invoke(app, ["install", "--cluster-name", "demo", "--bucket", "demo-lake"])

    assert result.exit_code == 2
    assert "Install plan" in result.output
    assert "demo-lake" in result.output


def test_install_json_output(cli):
    result = cli.invoke(app, ["install", "--cluster-name", "demo", "--phase", "storage", "--json"])

    assert result.exit_code == 2
    assert '"status": "needs_input"' in result.output
    assert '"approve"' in result.output


def test_install_rejects_unknown_phase(cli):
    result = cli.invoke(app, ["install", "--phase", "everything"])

    assert result.exit_code == 1
    assert isinstance(result.exception, ConfigurationError)


def test_status_without_environment(cli):
    result = cli.invoke(app, ["status", "--json"])

    assert result.exit_code == 0
    assert '"state": "NO_ENV"' in result.output


def test_cleanup_requires_cluster_name(cli):
    result = cli.invoke(app, ["cleanup"])

    assert isinstance(result.exception, ConfigurationError)


def test_console_entry_point_reports_errors_without_traceback(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["lakehouse", "cleanup"])

    with pytest.raises(SystemExit) as info:
        main()

    assert info.value.code == 1
    err = capsys.readouterr().err
    assert "CLUSTER_NAME is required for cleanup" in err
    assert "Traceback" not in err


def test_cleanup_without_approval_shows_plan(cli, tmp_path, fake):
    env_file = tmp_path / "lakehouse_ingext.env"
    env_file.write_text("export CLUSTER_NAME=demo\nexport S3_BUCKET=demo-lake\n")

    result = cli.invoke(app, ["cleanup", "--env-file", str(env_file)])

    assert result.exit_code == 2
    assert "Teardown plan" in result.output
    assert fake.calls == []


def test_diagnose_reports_signature(cli, fake):
    fake.on("kubectl logs api-0 -n ingext --all-containers --previous",
            ok("E0101 secrets is forbidden: cannot get resource \"secrets\" in the namespace"))

    result = cli.invoke(app, ["diagnose", "api-0"])

    assert result.exit_code == 1
    assert "RBAC_MISSING_PERMISSIONS" in result.output


def test_diagnose_clean_pod(cli, fake):
    fake.on("kubectl logs", ok("listening on :8080"))

    result = cli.invoke(app, ["diagnose", "api-0", "-n", "other"])

    assert result.exit_code == 0
    assert fake.calls[0].startswith("kubectl logs api-0 -n other")


def _script_datasource(fake):
    fake.on("aws sqs create-queue", ok("https://sqs.us-east-2.amazonaws.com/123456789012/logs-notify"))
    fake.on("aws sqs get-queue-attributes", ok("arn:aws:sqs:us-east-2:123456789012:logs-notify"))
    fake.on("aws sts get-caller-identity", ok("123456789012"))
    fake.on("ingext eks get-pod-role", ok("ingext-pod-role"))
    fake.on("aws iam get-role", failed("NoSuchEntity"))
    fake.on("ingext eks test-assumed-role", ok("OK"))


def test_datasource_add_then_remove(cli, fake, tmp_path, monkeypatch):
    monkeypatch.setattr("lakehouse_installer.datasource.ROLE_PROPAGATION_SECONDS", 0)
    _script_datasource(fake)
    record = tmp_path / "logs.json"
    args = ["datasource", "add", "--bucket", "logs", "--region", "us-east-2",
            "--local-profile", "platform", "--remote-profile", "data", "--record", str(record)]

    added = cli.invoke(app, args)

    assert added.exit_code == 0, added.output
    assert json.loads(record.read_text())["details"]["queueName"] == "logs-notify"

    removed = cli.invoke(app, ["datasource", "remove", "--record", str(record)])

    assert removed.exit_code == 0, removed.output
    assert not record.exists()


def test_datasource_add_failure_writes_no_record(cli, fake, tmp_path):
    fake.on("aws sqs create-queue", failed("AccessDenied"))
    record = tmp_path / "logs.json"

    result = cli.invoke(app, ["datasource", "add", "--bucket", "logs", "--region", "us-east-2",
                              "--local-profile", "platform", "--record", str(record)])

    assert result.exit_code == 1
    assert not record.exists()
