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

"""Diagnose subcommand: crash-loop analysis for one pod."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.markup import escape
from rich.panel import Panel

from lakehouse_installer import console
from lakehouse_installer.commands.common import ENV_FILE_HELP, EXEC_HELP, JSON_HELP, is_verbose, open_session
from lakehouse_installer.diagnostics import analyze_pod
from lakehouse_installer.runner import ExecMode


def diagnose(
    ctx: typer.Context,
    pod: str = typer.Argument(..., help="Pod name"),
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Namespace (default: NAMESPACE)"),
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
    as_json: bool = typer.Option(False, "--json", help=JSON_HELP),
) -> None:
    """Match a pod's logs against known crash signatures."""
    session = open_session(env_file, exec_mode, is_verbose(ctx))
    ns = namespace or session.config.namespace
    analysis = analyze_pod(session.probes, pod, ns)

    if as_json:
        evidence = analysis.as_evidence()
        if analysis.diagnosis:
            evidence["remediation"] = analysis.diagnosis.remediation
            evidence["matched"] = analysis.diagnosis.evidence
        typer.echo(json.dumps(evidence, indent=2))
    else:
        console.print(Panel.fit(f"Diagnosis: {ns}/{pod}", style="bold blue"))
        if analysis.diagnosis is None:
            console.print("[yellow]ℹ️  No known crash signature matched[/yellow]")
        else:
            console.print(f"[red]❌ {analysis.diagnosis.code}: {escape(analysis.diagnosis.summary)}[/red]")
            for line in analysis.diagnosis.evidence:
                console.print(f"   > {escape(line)}")
            console.print(f"[bold]Fix:[/bold] {escape(analysis.diagnosis.remediation)}")
        if analysis.events:
            console.print("[bold]Events:[/bold]")
            console.print(escape(analysis.events))

    raise typer.Exit(1 if analysis.diagnosis else 0)
