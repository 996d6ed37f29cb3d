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

"""Options and client wiring shared by the subcommands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from lakehouse_installer.config import EnvironmentConfig, load_config
from lakehouse_installer.probes import Probes
from lakehouse_installer.runner import CommandRunner, ExecContext, ExecMode
from lakehouse_installer.tools import Toolbox

ENV_FILE_HELP = "Env file with CLUSTER_NAME, AWS_REGION, S3_BUCKET, ... (export KEY=value lines)"
EXEC_HELP = "Run tools on the host (local) or through the container wrapper (docker)"
JSON_HELP = "Print the result as JSON on stdout"


@dataclass
class Session:
    """One configuration and the clients bound to it."""

    config: EnvironmentConfig
    runner: CommandRunner
    tools: Toolbox
    probes: Probes


def is_verbose(ctx: typer.Context) -> bool:
    return bool((ctx.obj or {}).get("verbose"))


def open_session(
    env_file: Path | None,
    exec_mode: ExecMode = ExecMode.LOCAL,
    verbose: bool = False,
    **overrides,
) -> Session:
    """Load the configuration and build the command clients for it."""
    config = load_config(env_file, **overrides)
    runner = CommandRunner(ExecContext(mode=exec_mode, verbose=verbose))
    tools = Toolbox(runner, config)
    return Session(config, runner, tools, Probes(tools))
