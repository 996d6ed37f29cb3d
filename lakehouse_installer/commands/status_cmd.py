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

"""Status subcommand (read-only)."""

from __future__ import annotations

from pathlib import Path

import typer

from lakehouse_installer.commands.common import ENV_FILE_HELP, EXEC_HELP, JSON_HELP, is_verbose, open_session
from lakehouse_installer.report import print_state
from lakehouse_installer.runner import ExecMode
from lakehouse_installer.state import infer_state


def status(
    ctx: typer.Context,
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
    as_json: bool = typer.Option(False, "--json", help=JSON_HELP),
) -> None:
    """Infer where the install stands from live infrastructure and recommend the next step."""
    session = open_session(env_file, exec_mode, is_verbose(ctx))
    print_state(infer_state(session.config, session.probes), as_json)
