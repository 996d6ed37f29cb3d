#!/usr/bin/env python3
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

"""
cli.py - Phased installer for the Ingext lakehouse on EKS.

Subcommands:
    install     Install or resume the lakehouse (seven phases, --approve to execute)
    status      Infer the installation state from live infrastructure
    diagnose    Crash-loop analysis for one pod
    cleanup     Tear everything down (--approve to execute)
    datasource  Provision S3 data sources (add, remove)

Examples:
    # Show the install plan
    ./cli.py install --env-file lakehouse_ingext.env

    # Install (or resume) everything
    ./cli.py install --env-file lakehouse_ingext.env --approve

    # Stop after the compute phase, tools run in the container
    ./cli.py install --approve --phase compute --exec docker

    # Where are we, and what next?
    ./cli.py status --json

    # Why is this pod restarting?
    ./cli.py diagnose api-7d9f8b6c4-x2k1z

    # Wire an S3 bucket as a data source, then undo it
    ./cli.py datasource add --bucket my-logs --region us-east-2
    ./cli.py datasource remove --record my-logs-datasource.json

For detailed usage information, run: ./cli.py --help
"""

from __future__ import annotations

import logging
import sys

import typer

from lakehouse_installer import console
from lakehouse_installer.commands import (
    cleanup_cmd,
    datasource_cmd,
    diagnose_cmd,
    install_cmd,
    status_cmd,
)

app = typer.Typer(
    help="Phased installer for the Ingext lakehouse on EKS.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and streamed command output"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.obj = {"verbose": verbose}


app.command("install")(install_cmd.install)
app.command("status")(status_cmd.status)
app.command("diagnose")(diagnose_cmd.diagnose)
app.command("cleanup")(cleanup_cmd.cleanup)
app.add_typer(datasource_cmd.app, name="datasource")


def main() -> None:
    """Console entry point: unexpected errors become a one-line message and exit code 1."""
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
