# Copyright 2025 Roger Cibrian
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

"""Public API return types for intunepublisher.

This module defines the records returned by the deployment orchestrator.
A DeploymentUnit is the outcome of one package's run; a BatchSummary
aggregates the units of one batch in the order they were processed.

DeploymentUnit and BatchSummary are frozen. StageResults is filled in stage
by stage while a unit runs and is handed back as part of the unit, so a
failed unit still shows how far it got.

Example:
    Reading a batch summary:
        ```python
        summary = orchestrator.deploy_batch(packages)
        for unit in summary.units:
            print(unit.package_id, unit.status.value, unit.error or "")
        print(f"{summary.succeeded} ok, {summary.failed} failed")
        ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DeploymentStatus(str, Enum):
    """Terminal status of a deployment unit."""

    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass
class StageResults:
    """Outputs of each orchestrator stage, in stage order.

    Attributes:
        install_group_id: Id of the "{name} Required" group.
        uninstall_group_id: Id of the "{name} Uninstall" group.
        script_paths: Generated script files keyed by kind
            ("Install", "Uninstall", "Detection").
        remediation_id: Id of the remediation, or None when the licensing
            probe reported no entitlement.
        package_path: Path to the encrypted content that was uploaded.
        app_id: Id of the published Win32 app.
        content_version_id: Id of the content version the file went into.
        content_file_id: Id of the content file entry.
        uploaded: True once the block list was committed and the backend
            confirmed the file commit.
        committed: True once the app's committed content version was set.
        assigned: True once the assignment call succeeded.
    """

    install_group_id: str | None = None
    uninstall_group_id: str | None = None
    script_paths: dict[str, Path] = field(default_factory=dict)
    remediation_id: str | None = None
    package_path: Path | None = None
    app_id: str | None = None
    content_version_id: str | None = None
    content_file_id: str | None = None
    uploaded: bool = False
    committed: bool = False
    assigned: bool = False


@dataclass(frozen=True)
class DeploymentUnit:
    """Result of one package's end-to-end run.

    Attributes:
        package_id: Package identifier (e.g. "Acme.Tool").
        display_name: Display name used for the app and derived names.
        work_dir: Working directory the unit wrote scripts and packages to.
        status: Success, Failed or Skipped.
        stages: Stage outputs recorded up to the point the unit stopped.
        error: Message of the error that failed or skipped the unit.
    """

    package_id: str
    display_name: str
    work_dir: Path
    status: DeploymentStatus
    stages: StageResults
    error: str | None = None


@dataclass(frozen=True)
class BatchSummary:
    """Outcome of a batch, one unit per requested package.

    Attributes:
        units: Deployment units in processing order.
    """

    units: tuple[DeploymentUnit, ...]

    def _count(self, status: DeploymentStatus) -> int:
        return sum(1 for unit in self.units if unit.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(DeploymentStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(DeploymentStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(DeploymentStatus.SKIPPED)

    @property
    def failed_units(self) -> list[DeploymentUnit]:
        return [u for u in self.units if u.status is DeploymentStatus.FAILED]
