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

"""Install subcommand: drive the cluster through the seven phases."""

from __future__ import annotations

from pathlib import Path

import typer

from lakehouse_installer.commands.common import (
    ENV_FILE_HELP,
    EXEC_HELP,
    JSON_HELP,
    is_verbose,
    open_session,
)
from lakehouse_installer.config import PHASE_TARGETS, InstallOptions
from lakehouse_installer.installer import Installer
from lakehouse_installer.report import print_run_result
from lakehouse_installer.runner import ExecMode


def install(
    ctx: typer.Context,
    approve: bool = typer.Option(False, "--approve", help="Execute the plan (without it the plan is only shown)"),
    force: bool = typer.Option(False, "--force", help="Continue past dependency blockers at your own risk"),
    phase: str = typer.Option("all", "--phase", help=f"Stop after this phase: {', '.join(PHASE_TARGETS)}"),
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
    as_json: bool = typer.Option(False, "--json", help=JSON_HELP),
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="EKS cluster name"),
    region: str | None = typer.Option(None, "--region", help="AWS region"),
    profile: str | None = typer.Option(None, "--profile", help="AWS profile"),
    namespace: str | None = typer.Option(None, "--namespace", help="Kubernetes namespace"),
    bucket: str | None = typer.Option(None, "--bucket", help="S3 bucket for the datalake"),
    site_domain: str | None = typer.Option(None, "--site-domain", help="Public hostname of the site"),
    cert_arn: str | None = typer.Option(None, "--cert-arn", help="ACM certificate ARN"),
) -> None:
    """Install or resume the lakehouse, phase by phase."""
    verbose = is_verbose(ctx)
    session = open_session(
        env_file, exec_mode, verbose,
        cluster_name=cluster_name, aws_region=region, aws_profile=profile, namespace=namespace,
        s3_bucket=bucket, site_domain=site_domain, cert_arn=cert_arn,
    )
    options = InstallOptions(approve=approve, force=force, verbose=verbose, target_phase=phase)
    result = Installer(session.config, options, session.runner).run()
    print_run_result(result, as_json)
    raise typer.Exit(result.exit_code)
