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

"""Cleanup subcommand."""

from __future__ import annotations

from pathlib import Path

import typer

from lakehouse_installer.cleanup import Teardown
from lakehouse_installer.commands.common import ENV_FILE_HELP, EXEC_HELP, JSON_HELP, is_verbose, open_session
from lakehouse_installer.config import ConfigurationError
from lakehouse_installer.report import print_cleanup
from lakehouse_installer.runner import ExecMode


def cleanup(
    ctx: typer.Context,
    approve: bool = typer.Option(False, "--approve", help="Delete for real (without it the plan is only shown)"),
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
    as_json: bool = typer.Option(False, "--json", help=JSON_HELP),
) -> None:
    """Delete releases, the cluster, the bucket and IAM resources."""
    session = open_session(env_file, exec_mode, is_verbose(ctx))
    if not session.config.cluster_name:
        raise ConfigurationError("CLUSTER_NAME is required for cleanup")
    result = Teardown(session.tools, session.probes).run(approve=approve)
    print_cleanup(result, as_json)
    raise typer.Exit(result.exit_code)
