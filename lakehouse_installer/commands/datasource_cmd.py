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

"""Datasource subcommands (add, remove)."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from lakehouse_installer import console
from lakehouse_installer.commands.common import ENV_FILE_HELP, EXEC_HELP, is_verbose, open_session
from lakehouse_installer.datasource import S3NotificationTask
from lakehouse_installer.provisioning import ProvisioningError, ResourceRecord, TaskContext, report_rollback
from lakehouse_installer.runner import ExecMode

app = typer.Typer(help="Provision S3 data sources.")


@app.command("add")
def add(
    ctx: typer.Context,
    bucket: str = typer.Option(..., "--bucket", help="Source bucket"),
    region: str = typer.Option(..., "--region", help="Region of the bucket"),
    prefix: str = typer.Option("", "--prefix", help="Only notify for keys under this prefix"),
    queue_name: str | None = typer.Option(None, "--queue-name", help="Queue name (default <bucket>-notify)"),
    role_name: str | None = typer.Option(None, "--role-name", help="Access role (default Ingext-<bucket>-AccessRole)"),
    local_profile: str | None = typer.Option(None, "--local-profile", help="Profile of the platform account"),
    remote_profile: str | None = typer.Option(None, "--remote-profile", help="Profile of the bucket's account"),
    record: Path | None = typer.Option(None, "--record", help="Where to write the resource record"),
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
) -> None:
    """Create the bucket notification queue and the cross-account access role."""
    session = open_session(env_file, exec_mode, is_verbose(ctx))
    task_ctx = TaskContext(
        session.tools,
        session.probes,
        inputs={
            "bucket": bucket,
            "region": region,
            "prefix": prefix,
            "queue_name": queue_name,
            "target_role_name": role_name,
            "local_profile": local_profile,
            "remote_profile": remote_profile,
        },
    )
    task = S3NotificationTask()
    console.print(Panel.fit(f"Adding S3 data source {bucket}", style="bold blue"))
    if not task.validate(task_ctx):
        raise typer.Exit(2)
    try:
        created = task.execute(task_ctx)
    except ProvisioningError as err:
        console.print(f"[red]❌ {err.code} at {err.step}[/red]")
        raise typer.Exit(1) from err

    path = record or Path(f"{bucket}-datasource.json")
    created.save(path)
    console.print(f"[green]✅ Data source ready; record written to {path}[/green]")
    console.print(f"   Queue: {created.details['queueArn']}")
    console.print(f"   Role:  {created.details['roleChain'].get('targetRoleArn')}")


@app.command("remove")
def remove(
    ctx: typer.Context,
    record: Path = typer.Option(..., "--record", help="Resource record written by 'datasource add'"),
    env_file: Path | None = typer.Option(None, "--env-file", help=ENV_FILE_HELP),
    exec_mode: ExecMode = typer.Option(ExecMode.LOCAL, "--exec", help=EXEC_HELP),
) -> None:
    """Reverse everything a previous 'datasource add' created."""
    session = open_session(env_file, exec_mode, is_verbose(ctx))
    loaded = ResourceRecord.load(record)
    console.print(Panel.fit(f"Removing data source {loaded.id}", style="bold blue"))
    steps = S3NotificationTask().rollback(loaded, TaskContext(session.tools, session.probes))
    report_rollback(steps)

    failed = [step for step in steps if not step.ok]
    if failed:
        console.print(f"[yellow]⚠️  {len(failed)} of {len(steps)} steps failed; record kept at {record}[/yellow]")
        raise typer.Exit(1)
    record.unlink()
    console.print(f"[green]✅ Removed {loaded.id}[/green]")
