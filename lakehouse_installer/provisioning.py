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

"""Reversible provisioning tasks over cloud resources.

A task validates its inputs, then ``execute`` creates resources one step at a
time. Every step that creates something registers an undo action. If a later
step fails, ``execute`` unwinds the undo actions it registered (newest first)
and re-raises; no record is returned. On success the caller owns the
returned ``ResourceRecord`` and may hand it to ``rollback`` if something
after the task fails.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from lakehouse_installer import console, logger
from lakehouse_installer.probes import Probes
from lakehouse_installer.runner import CommandResult
from lakehouse_installer.tools import Toolbox, gone


class ProvisioningError(Exception):
    """A create or configure call failed outright.

    Attributes:
        code: Blocker code the failure maps to.
        step: Name of the step that failed.
        result: The failed command result, when there was one.
    """

    def __init__(self, code: str, step: str, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.step = step
        self.result = result


class ResourceRecord(BaseModel):
    """Description of what a task created, sufficient to reverse it."""

    id: str
    type: str
    details: dict[str, Any]
    timestamp: float = Field(default_factory=time.time)

    def save(self, path: Path) -> None:
        path.write_text(self.model_dump_json(indent=2) + "\n")

    @classmethod
    def load(cls, path: Path) -> ResourceRecord:
        return cls.model_validate_json(path.read_text())


@dataclass(frozen=True)
class RollbackStep:
    name: str
    ok: bool
    detail: str = ""


UndoAction = Callable[[], "CommandResult | bool | list[RollbackStep]"]


def run_guarded(name: str, action: UndoAction) -> list[RollbackStep]:
    """Run one compensating action; record its outcome instead of raising.

    A command result counts as success when it succeeded or the object was
    already gone. A nested rollback contributes its own per-step list.
    """
    try:
        outcome = action()
    except Exception as exc:  # compensation must not stop the remaining steps
        logger.warning("rollback step %s raised: %s", name, exc)
        return [RollbackStep(name, False, str(exc))]
    if isinstance(outcome, list):
        return outcome
    if isinstance(outcome, CommandResult):
        ok = gone(outcome)
        detail = "" if ok else outcome.output
    else:
        ok, detail = bool(outcome), ""
    if not ok:
        logger.warning("rollback step %s failed: %s", name, detail)
    return [RollbackStep(name, ok, detail)]


class Compensation:
    """Undo stack for the resources one ``execute`` call created."""

    def __init__(self) -> None:
        self._actions: list[tuple[str, UndoAction]] = []

    def push(self, name: str, action: UndoAction) -> None:
        self._actions.append((name, action))

    def __len__(self) -> int:
        return len(self._actions)

    def unwind(self) -> list[RollbackStep]:
        steps: list[RollbackStep] = []
        while self._actions:
            name, action = self._actions.pop()
            steps.extend(run_guarded(name, action))
        return steps


@dataclass
class TaskContext:
    """Everything a task needs: clients, probes, inputs, and a sleep hook."""

    tools: Toolbox
    probes: Probes
    inputs: dict[str, Any] = field(default_factory=dict)
    sleep: Callable[[float], None] = time.sleep


def report_rollback(steps: list[RollbackStep]) -> None:
    for step in steps:
        if step.ok:
            console.print(f"[yellow]   ↩ {step.name}[/yellow]")
        else:
            console.print(f"[red]   ✗ {step.name}: {step.detail}[/red]")


class ProvisioningTask(ABC):
    """Base class for reversible resource chains."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def validate(self, ctx: TaskContext) -> bool:
        """Check inputs before anything is created."""

    @abstractmethod
    def _create(self, ctx: TaskContext, undo: Compensation) -> ResourceRecord:
        """Run the create steps, pushing an undo action after each creation."""

    @abstractmethod
    def rollback(self, record: ResourceRecord, ctx: TaskContext) -> list[RollbackStep]:
        """Reverse every resource in *record*; never raises."""

    def execute(self, ctx: TaskContext) -> ResourceRecord:
        """Create the resources, reverting this call's own creations on failure.

        Raises:
            ProvisioningError: If a step fails; resources created so far are removed first.
        """
        undo = Compensation()
        try:
            return self._create(ctx, undo)
        except Exception as err:
            console.print(f"[red]❌ {self.name} failed: {err}[/red]")
            if len(undo):
                console.print(f"[yellow]   Removing {len(undo)} partially created resource(s)...[/yellow]")
                report_rollback(undo.unwind())
            raise

    @staticmethod
    def check(result: CommandResult, code: str, step: str, allow: Callable[[CommandResult], bool] | None = None) -> CommandResult:
        """Raise ProvisioningError unless *result* succeeded (or *allow* accepts it)."""
        if result.ok or (allow is not None and allow(result)):
            return result
        raise ProvisioningError(code, step, f"{step} failed: {result.output}", result)
