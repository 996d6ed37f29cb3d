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

"""Operator-facing rendering of run results, state reports and teardowns.

Human output goes to the stderr console; ``--json`` output goes to stdout so
it can be piped into other tools.
"""

from __future__ import annotations

import typer
from pydantic import BaseModel
from rich.markup import escape
from rich.panel import Panel

from lakehouse_installer import console
from lakehouse_installer.cleanup import CleanupResult
from lakehouse_installer.models import Blocker, RunResult, RunStatus
from lakehouse_installer.state import StateReport

_STATUS_STYLE = {
    RunStatus.COMPLETED: ("green", "✅"),
    RunStatus.NEEDS_INPUT: ("yellow", "ℹ️ "),
    RunStatus.BLOCKED_PHASE: ("yellow", "⚠️ "),
    RunStatus.ERROR: ("red", "❌"),
}


def emit_json(model: BaseModel) -> None:
    typer.echo(model.model_dump_json(indent=2))


def _print_blocker(blocker: Blocker, style: str) -> None:
    console.print(f"[{style}]   {blocker.code}: {escape(blocker.message)}[/{style}]")
    if blocker.remediation:
        console.print(f"      Fix: {escape(blocker.remediation)}")
    for command in blocker.commands:
        console.print(f"      $ {escape(command)}")


def print_run_result(result: RunResult, as_json: bool = False) -> None:
    """Summarize an installer run."""
    if as_json:
        emit_json(result)
        return

    style, icon = _STATUS_STYLE[result.status]
    title = f"{icon} {result.status.value}"
    if result.phase is not None:
        title += f" (phase {result.phase.number}: {result.phase.label})"
    console.print(Panel.fit(title, style=f"bold {style}"))

    if result.plan:
        console.print(escape(result.plan))
    if result.required:
        console.print(f"[yellow]Required: {', '.join(result.required)}[/yellow]")
    for blocker in result.blockers:
        _print_blocker(blocker, "red")
    if result.warnings:
        console.print("[yellow]Warnings:[/yellow]")
        for warning in result.warnings:
            _print_blocker(warning, "yellow")

    ingress = (result.evidence.get("ingress") or {}).get("ingress") or {}
    dns = (result.evidence.get("ingress") or {}).get("dns") or {}
    if ingress:
        console.print(f"Load balancer: {ingress.get('hostname') or 'PROVISIONING'}")
    if dns.get("command"):
        console.print(f"DNS: {escape(dns['command'])}")
    elif dns.get("manual"):
        console.print(f"DNS: {escape(dns['manual'])}")

    if result.next is not None:
        target = f" -> {result.next.phase.label}" if result.next.phase else ""
        console.print(f"[bold]Next: {result.next.action}{target}[/bold] {escape(result.next.reason)}")


def print_state(report: StateReport, as_json: bool = False) -> None:
    if as_json:
        emit_json(report)
        return
    console.print(Panel.fit(f"{report.state.value}: {report.description}", style="bold blue"))
    for key, value in report.evidence.items():
        if isinstance(value, dict):
            console.print(f"  {key}:")
            for inner_key, inner_value in value.items():
                console.print(f"    {inner_key}: {inner_value}")
        else:
            console.print(f"  {key}: {value}")
    rec = report.recommendation
    console.print(f"[bold]Recommended: {rec.action}[/bold] {escape(rec.reason)}")
    if rec.command:
        console.print(f"  $ {escape(rec.command)}")


def print_cleanup(result: CleanupResult, as_json: bool = False) -> None:
    if as_json:
        emit_json(result)
        return
    if result.plan:
        console.print(escape(result.plan))
        console.print("[yellow]ℹ️  Re-run with --approve to delete these resources[/yellow]")
        return
    style = "green" if result.status == "completed" else "yellow" if result.status == "partial" else "red"
    console.print(Panel.fit(
        f"Teardown {result.status}: {len(result.deleted)} deleted, {len(result.failed)} failed, "
        f"{len(result.skipped)} already gone",
        style=f"bold {style}",
    ))
    for failure in result.failed:
        console.print(f"[red]   ✗ {failure['resource']}: {escape(failure['error'])}[/red]")
