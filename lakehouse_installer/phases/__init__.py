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

"""The seven installation phases, in dependency order."""

from lakehouse_installer.phases.base import Phase, PhaseContext
from lakehouse_installer.phases.compute import ComputePhase
from lakehouse_installer.phases.core import CorePhase
from lakehouse_installer.phases.datalake import DatalakePhase
from lakehouse_installer.phases.foundation import FoundationPhase
from lakehouse_installer.phases.ingress import IngressPhase
from lakehouse_installer.phases.storage import StoragePhase
from lakehouse_installer.phases.stream import StreamPhase

PHASES: tuple[type[Phase], ...] = (
    FoundationPhase,
    StoragePhase,
    ComputePhase,
    CorePhase,
    StreamPhase,
    DatalakePhase,
    IngressPhase,
)

__all__ = ["PHASES", "Phase", "PhaseContext"]
