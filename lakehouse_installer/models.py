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

"""Run results, blockers, and phase outcomes."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PhaseName(str, Enum):
    FOUNDATION = "foundation"
    STORAGE = "storage"
    COMPUTE = "compute"
    CORE = "core"
    STREAM = "stream"
    DATALAKE = "datalake"
    INGRESS = "ingress"

    @property
    def number(self) -> int:
        return list(PhaseName).index(self) + 1

    @property
    def label(self) -> str:
        return {
            PhaseName.FOUNDATION: "Foundation",
            PhaseName.STORAGE: "Storage",
            PhaseName.COMPUTE: "Compute",
            PhaseName.CORE: "Core Services",
            PhaseName.STREAM: "Stream",
            PhaseName.DATALAKE: "Datalake",
            PhaseName.INGRESS: "Ingress",
        }[self]

    def following(self) -> PhaseName | None:
        phases = list(PhaseName)
        index = phases.index(self)
        return phases[index + 1] if index + 1 < len(phases) else None


class PhaseState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    BLOCKED = "blocked_phase"
    ERROR = "error"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    NEEDS_INPUT = "needs_input"
    BLOCKED_PHASE = "blocked_phase"
    ERROR = "error"


class Blocker(BaseModel):
    """A classified failure reason.

    Whether a code is a fixable dependency or fatal is decided by the phase's
    allowlist, not stored here.
    """

    code: str
    message: str
    remediation: str | None = None
    commands: list[str] = Field(default_factory=list)
    diagnostics: dict[str, Any] = Field(default_factory=dict)
    phase: PhaseName | None = None


class NextAction(BaseModel):
    action: str
    phase: PhaseName | None = None
    reason: str = ""


class PhaseOutcome(BaseModel):
    """What one phase reports back to the installer."""

    phase: PhaseName
    state: PhaseState = PhaseState.NOT_STARTED
    evidence: dict[str, Any] = Field(default_factory=dict)
    blockers: list[Blocker] = Field(default_factory=list)
    warnings: list[Blocker] = Field(default_factory=list)
    resumed: bool = False
    missing_config: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == PhaseState.COMPLETED

    @property
    def codes(self) -> set[str]:
        return {blocker.code for blocker in self.blockers}


class RunResult(BaseModel):
    """The single output contract of an installer run."""

    status: RunStatus
    phase: PhaseName | None = None
    evidence: dict[str, Any] = Field(default_factory=dict)
    blockers: list[Blocker] = Field(default_factory=list)
    warnings: list[Blocker] = Field(default_factory=list)
    next: NextAction | None = None
    required: list[str] = Field(default_factory=list)
    plan: str | None = None

    @property
    def exit_code(self) -> int:
        return {
            RunStatus.COMPLETED: 0,
            RunStatus.ERROR: 1,
            RunStatus.NEEDS_INPUT: 2,
            RunStatus.BLOCKED_PHASE: 3,
        }[self.status]
