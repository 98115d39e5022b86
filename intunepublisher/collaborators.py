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

"""Interfaces the orchestrator uses for script, package, icon and license work.

The deployment orchestrator only talks to these narrow protocols, so tests
can swap in doubles and organisations can plug in their own script templates
or packaging. Default implementations live in intunepublisher.build (scripts
and packaging) and in this module (icons and licensing).

Protocols:

- ScriptGenerator.generate_script(package_id, display_name, kind) -> str
- Packager.build_package(script_dir, setup_file, dest_dir) -> BuiltPackage
- IconResolver.find_icon(package_id, display_name) -> bytes | None
- LicensingProbe.has_entitlement() -> bool
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from intunepublisher.graph.payloads import FileEncryptionInfo, MsiInfo
from intunepublisher.logging import Logger, resolve_logger


class ScriptKind(str, Enum):
    INSTALL = "Install"
    UNINSTALL = "Uninstall"
    DETECTION = "Detection"


@dataclass(frozen=True)
class PackageManifest:
    """Metadata describing a built content package.

    Attributes:
        setup_file: Setup file name inside the package.
        unencrypted_size: Size of the content before encryption, in bytes.
        encrypted_size: Size of the encrypted payload that gets uploaded.
        encryption: Key material sent with the file commit.
        msi: MSI product code/version/publisher when the setup is an MSI.
        install_command: Install command line, when the packager knows it.
        uninstall_command: Uninstall command line, when the packager knows it.
    """

    setup_file: str
    unencrypted_size: int
    encrypted_size: int
    encryption: FileEncryptionInfo
    msi: MsiInfo | None = None
    install_command: str | None = None
    uninstall_command: str | None = None


@dataclass(frozen=True)
class BuiltPackage:
    """A packaged app ready for upload.

    Attributes:
        package_path: The .intunewin file produced by the packaging tool.
        content_path: The encrypted payload to upload.
        manifest: Sizes, encryption info and setup metadata.
    """

    package_path: Path
    content_path: Path
    manifest: PackageManifest


class ScriptGenerator(Protocol):
    def generate_script(
        self, package_id: str, display_name: str, kind: ScriptKind
    ) -> str: ...


class Packager(Protocol):
    def build_package(
        self, script_dir: Path, setup_file: str, dest_dir: Path
    ) -> BuiltPackage: ...


class IconResolver(Protocol):
    def find_icon(self, package_id: str, display_name: str) -> bytes | None: ...


class LicensingProbe(Protocol):
    def has_entitlement(self) -> bool: ...


class DirectoryIconResolver:
    """Looks up ``<package id>.png`` (or .jpg) in a local icon directory."""

    EXTENSIONS = (".png", ".jpg", ".jpeg")

    def __init__(self, icon_dir: Path | None) -> None:
        self.icon_dir = icon_dir

    def find_icon(self, package_id: str, display_name: str) -> bytes | None:
        if self.icon_dir is None or not self.icon_dir.is_dir():
            return None
        for stem in (package_id, display_name):
            for ext in self.EXTENSIONS:
                candidate = self.icon_dir / f"{stem}{ext}"
                if candidate.is_file():
                    return candidate.read_bytes()
        return None


class StaticLicensingProbe:
    """Entitlement decided by configuration."""

    def __init__(self, entitled: bool) -> None:
        self.entitled = entitled

    def has_entitlement(self) -> bool:
        return self.entitled


# Windows Enterprise E3/E5 and VDA plans that include Remediations
DEFAULT_REMEDIATION_SERVICE_PLANS = (
    "WIN10_PRO_ENT_SUB",
    "WIN10_VDA_E3",
    "WIN10_VDA_E5",
)


class GraphLicensingProbe:
    """Checks the tenant's subscribed SKUs for a Remediations service plan.

    The answer is cached for the lifetime of the probe, so a batch asks the
    backend once.
    """

    def __init__(
        self,
        client: Any,
        service_plans: tuple[str, ...] | list[str] = DEFAULT_REMEDIATION_SERVICE_PLANS,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.service_plans = {p.upper() for p in service_plans}
        self.logger = resolve_logger(logger)
        self._cached: bool | None = None

    def has_entitlement(self) -> bool:
        if self._cached is None:
            self._cached = self._probe()
        return self._cached

    def _probe(self) -> bool:
        for sku in self.client.list("subscribedSkus"):
            for plan in sku.get("servicePlans", []):
                name = str(plan.get("servicePlanName", "")).upper()
                if name in self.service_plans and plan.get("provisioningStatus") == "Success":
                    self.logger.verbose(
                        "LICENSE", f"Remediations licensed via {sku.get('skuPartNumber')}"
                    )
                    return True
        self.logger.verbose("LICENSE", "No Remediations entitlement found")
        return False
