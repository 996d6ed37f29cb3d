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

"""Installer: runs the seven phases in order and folds them into one result."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from rich.panel import Panel

from lakehouse_installer import console, logger
from lakehouse_installer.config import EnvironmentConfig, InstallOptions
from lakehouse_installer.constants import REQUIRED_TOOLS
from lakehouse_installer.models import (
    Blocker,
    NextAction,
    PhaseName,
    PhaseState,
    RunResult,
    RunStatus,
)
from lakehouse_installer.phases import PHASES, Phase, PhaseContext
from lakehouse_installer.phases.base import MISSING_KEY_CODES
from lakehouse_installer.probes import Probes
from lakehouse_installer.runner import CommandRunner, ExecContext, ExecMode, require_command
from lakehouse_installer.tools import Toolbox
from lakehouse_installer.waiter import Waiter


def render_plan(config: EnvironmentConfig, options: InstallOptions) -> str:
    """Human-readable description of what an approved run would do."""
    lines = [
        "Install plan",
        f"  Cluster:     {config.cluster_name or '<missing>'} ({config.aws_region}, profile {config.aws_profile})",
        f"  Nodes:       {config.node_count}x {config.node_type}, Kubernetes {config.kubernetes_version}",
        f"  Namespace:   {config.namespace}",
        f"  Bucket:      {config.s3_bucket or '<missing>'}",
        f"  Site domain: {config.resolved_site_domain or '<missing>'}",
        f"  Certificate: {config.cert_arn or '<missing>'}",
        "  Phases:",
    ]
    for phase in PHASES:
        lines.append(f"    {phase.name.number}. {phase.name.label}")
        if options.target_phase == phase.name.value:
            lines.append("    (stopping here)")
            break
    return "\n".join(lines)


class Installer:
    """Drives one target cluster through the phases.

    Phases run strictly in order. The run stops at the first phase that does
    not complete, except that ``force`` continues past a dependency block.
    Errors and missing configuration always stop the run.
    """

    def __init__(
        self,
        config: EnvironmentConfig,
        options: InstallOptions | None = None,
        runner: CommandRunner | None = None,
        *,
        waiter: Waiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        phases: Sequence[type[Phase]] = PHASES,
        check_tool: Callable[[str], None] = require_command,
    ) -> None:
        self.config = config
        self.options = options or InstallOptions()
        self.runner = runner or CommandRunner(ExecContext(verbose=self.options.verbose))
        tools = Toolbox(self.runner, config)
        self.ctx = PhaseContext(
            tools=tools,
            probes=Probes(tools),
            waiter=waiter or Waiter(sleep=sleep),
            options=self.options,
            sleep=sleep,
        )
        self.phases = phases
        self.check_tool = check_tool

    def _check_tools(self) -> RunResult | None:
        if self.runner.context.mode is not ExecMode.LOCAL:
            return None
        console.print(Panel.fit("Checking prerequisites", style="bold blue"))
        missing = []
        for tool in REQUIRED_TOOLS:
            try:
                self.check_tool(tool)
            except RuntimeError as err:
                missing.append(str(err))
        if not missing:
            console.print("[green]✅ All required tools are available[/green]")
            return None
        return RunResult(
            status=RunStatus.ERROR,
            blockers=[
                Blocker(
                    code="TOOL_NOT_FOUND",
                    message="; ".join(missing),
                    remediation="Install the missing tools or run with --exec docker.",
                )
            ],
            next=NextAction(action="stop", reason="Required command-line tools are missing"),
        )

    def run(self) -> RunResult:
        """Run the install.

        Returns:
            ``needs_input`` without approval or with missing configuration,
            ``blocked_phase`` or ``error`` at the first failing phase, or
            ``completed`` after the last (or target) phase.
        """
        if not self.options.approve:
            return RunResult(
                status=RunStatus.NEEDS_INPUT,
                required=["approve"],
                plan=render_plan(self.config, self.options),
                next=NextAction(action="approve", reason="Review the plan and re-run with --approve"),
            )

        failed = self._check_tools()
        if failed is not None:
            return failed

        evidence: dict = {}
        warnings: list[Blocker] = []
        last: PhaseName | None = None
        for phase_cls in self.phases:
            phase = phase_cls(self.ctx)
            name = phase.name
            missing = self.config.missing(phase.required_keys)
            if missing:
                logger.info("phase %s needs configuration: %s", name.value, missing)
                return RunResult(
                    status=RunStatus.NEEDS_INPUT,
                    phase=name,
                    evidence=evidence,
                    warnings=warnings,
                    required=missing,
                    blockers=[
                        Blocker(
                            code=MISSING_KEY_CODES.get(key, "CONFIG_MISSING"),
                            message=f"{key} is required for phase {name.number} ({name.label})",
                            remediation=f"Set {key} in the environment or the env file.",
                        )
                        for key in missing
                    ],
                    next=NextAction(action="configure", phase=name, reason=f"Missing: {', '.join(missing)}"),
                )

            outcome = phase.run()
            evidence[name.value] = outcome.evidence
            warnings.extend(outcome.warnings)
            last = name

            if outcome.state == PhaseState.BLOCKED:
                blocker = outcome.blockers[-1]
                if self.options.force:
                    console.print(f"[yellow]⚠️  Continuing past {blocker.code} (--force)[/yellow]")
                    warnings.extend(outcome.blockers)
                    continue
                return RunResult(
                    status=RunStatus.BLOCKED_PHASE,
                    phase=name,
                    evidence=evidence,
                    blockers=outcome.blockers,
                    warnings=warnings,
                    next=NextAction(action="fix", phase=blocker.phase or name, reason=blocker.message),
                )
            if outcome.state == PhaseState.ERROR:
                return RunResult(
                    status=RunStatus.ERROR,
                    phase=name,
                    evidence=evidence,
                    blockers=outcome.blockers,
                    warnings=warnings,
                    next=NextAction(action="stop", phase=name, reason=outcome.blockers[-1].message),
                )

            if self.options.target_phase == name.value:
                following = name.following()
                return RunResult(
                    status=RunStatus.COMPLETED,
                    phase=name,
                    evidence=evidence,
                    warnings=warnings,
                    next=NextAction(
                        action="continue",
                        phase=following,
                        reason=f"Stopped after {name.label} as requested",
                    ) if following else None,
                )

        return RunResult(status=RunStatus.COMPLETED, phase=last, evidence=evidence, warnings=warnings)
