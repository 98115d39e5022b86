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

"""Typed Graph request payloads.

Each resource the engine creates has its own frozen dataclass with the
required fields spelled out, and a ``to_graph()`` method that renders the
JSON body Graph expects. Nothing else in the package builds request bodies
from loose dicts.

Payloads:

- GroupPayload: Security group (install/uninstall targeting)
- RemediationPayload / RemediationAssignmentPayload: Device health script
  and its assignment to the install group
- Win32AppPayload: The win32LobApp itself, with a PowerShell detection rule
- ContentFilePayload / FileEncryptionInfo: Content file entry and the
  encryption info sent with the commit call
- AppAssignmentPayload: Required/uninstall/available assignments

Example:
    ```python
    payload = GroupPayload.for_name("Acme Tool Required", "Published by intunepublisher")
    client.post("groups", payload.to_graph())
    ```
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
import re
from typing import Any

ODATA_TYPE = "@odata.type"


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class AvailableInstall(str, Enum):
    """Extra "available" assignment targets for a published app."""

    USER = "User"
    DEVICE = "Device"
    BOTH = "Both"
    NONE = "None"

    @classmethod
    def parse(cls, value: str | AvailableInstall | None) -> AvailableInstall:
        """Parse a config/CLI value case-insensitively. None means NONE.

        Raises:
            ValueError: If value is not one of User, Device, Both, None.
        """
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(
            f"Invalid available_install {value!r}; "
            f"expected one of {', '.join(m.value for m in cls)}"
        )

    def targets(self) -> list[dict[str, Any]]:
        """Assignment targets for this option (zero, one or two)."""
        users = {ODATA_TYPE: "#microsoft.graph.allLicensedUsersAssignmentTarget"}
        devices = {ODATA_TYPE: "#microsoft.graph.allDevicesAssignmentTarget"}
        if self is AvailableInstall.USER:
            return [users]
        if self is AvailableInstall.DEVICE:
            return [devices]
        if self is AvailableInstall.BOTH:
            return [users, devices]
        return []


@dataclass(frozen=True)
class GroupPayload:
    """Body for creating a security group."""

    display_name: str
    description: str
    mail_nickname: str

    @classmethod
    def for_name(cls, display_name: str, description: str) -> GroupPayload:
        # mailNickname allows ASCII letters/digits only, max 64 chars
        nickname = re.sub(r"[^A-Za-z0-9]", "", display_name)[:64] or "group"
        return cls(display_name, description, nickname)

    def to_graph(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "description": self.description,
            "mailEnabled": False,
            "mailNickname": self.mail_nickname,
            "securityEnabled": True,
        }


@dataclass(frozen=True)
class RemediationPayload:
    """Body for creating a device health script (remediation)."""

    display_name: str
    description: str
    publisher: str
    detection_script: str
    remediation_script: str
    run_as_account: str = "system"
    run_as_32_bit: bool = False

    def to_graph(self) -> dict[str, Any]:
        return {
            ODATA_TYPE: "#microsoft.graph.deviceHealthScript",
            "displayName": self.display_name,
            "description": self.description,
            "publisher": self.publisher,
            "detectionScriptContent": _b64(self.detection_script),
            "remediationScriptContent": _b64(self.remediation_script),
            "runAsAccount": self.run_as_account,
            "runAs32Bit": self.run_as_32_bit,
            "enforceSignatureCheck": False,
        }


@dataclass(frozen=True)
class RemediationAssignmentPayload:
    """Assigns a remediation to one group with a daily schedule."""

    group_id: str
    schedule_time: str = "01:00:00"

    def to_graph(self) -> dict[str, Any]:
        return {
            "deviceHealthScriptAssignments": [
                {
                    ODATA_TYPE: "#microsoft.graph.deviceHealthScriptAssignment",
                    "target": {
                        ODATA_TYPE: "#microsoft.graph.groupAssignmentTarget",
                        "groupId": self.group_id,
                    },
                    "runRemediationScript": True,
                    "runSchedule": {
                        ODATA_TYPE: "#microsoft.graph.deviceHealthScriptDailySchedule",
                        "interval": 1,
                        "time": self.schedule_time,
                        "useUtc": False,
                    },
                }
            ]
        }


@dataclass(frozen=True)
class MsiInfo:
    """MSI metadata read from the package manifest."""

    product_code: str
    product_version: str
    publisher: str = ""
    upgrade_code: str = ""
    requires_reboot: bool = False
    package_type: str = "perMachine"

    def to_graph(self) -> dict[str, Any]:
        return {
            "productCode": self.product_code,
            "productVersion": self.product_version,
            "upgradeCode": self.upgrade_code,
            "requiresReboot": self.requires_reboot,
            "packageType": self.package_type,
            "publisher": self.publisher,
        }


@dataclass(frozen=True)
class FileEncryptionInfo:
    """Encryption material produced by the packaging tool."""

    encryption_key: str
    initialization_vector: str
    mac: str
    mac_key: str
    file_digest: str
    profile_identifier: str = "ProfileVersion1"
    file_digest_algorithm: str = "SHA256"

    def to_graph(self) -> dict[str, Any]:
        return {
            "fileEncryptionInfo": {
                "encryptionKey": self.encryption_key,
                "initializationVector": self.initialization_vector,
                "mac": self.mac,
                "macKey": self.mac_key,
                "profileIdentifier": self.profile_identifier,
                "fileDigest": self.file_digest,
                "fileDigestAlgorithm": self.file_digest_algorithm,
            }
        }


@dataclass(frozen=True)
class ContentFilePayload:
    """Body for creating a content file entry in a content version."""

    name: str
    size: int
    size_encrypted: int

    def to_graph(self) -> dict[str, Any]:
        return {
            ODATA_TYPE: "#microsoft.graph.mobileAppContentFile",
            "name": self.name,
            "size": self.size,
            "sizeEncrypted": self.size_encrypted,
            "manifest": None,
            "isDependency": False,
        }


def _icon_mime_type(data: bytes) -> str:
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    return "image/png"


@dataclass(frozen=True)
class Win32AppPayload:
    """Body for creating (or retyping on PATCH) a win32LobApp.

    The detection rule is a PowerShell script rule built from the generated
    detection script.
    """

    display_name: str
    description: str
    publisher: str
    file_name: str
    setup_file_path: str
    install_command: str
    uninstall_command: str
    detection_script: str
    icon: bytes | None = None
    msi: MsiInfo | None = None
    run_as_account: str = "system"
    architectures: str = "x86,x64"
    minimum_windows_release: str = "1607"
    return_codes: tuple[tuple[int, str], ...] = field(
        default=(
            (0, "success"),
            (1707, "success"),
            (3010, "softReboot"),
            (1641, "hardReboot"),
            (1618, "retry"),
        )
    )

    def to_graph(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            ODATA_TYPE: "#microsoft.graph.win32LobApp",
            "displayName": self.display_name,
            "description": self.description,
            "publisher": self.publisher or self.display_name,
            "fileName": self.file_name,
            "setupFilePath": self.setup_file_path,
            "installCommandLine": self.install_command,
            "uninstallCommandLine": self.uninstall_command,
            "applicableArchitectures": self.architectures,
            "minimumSupportedWindowsRelease": self.minimum_windows_release,
            "installExperience": {
                ODATA_TYPE: "#microsoft.graph.win32LobAppInstallExperience",
                "runAsAccount": self.run_as_account,
                "deviceRestartBehavior": "suppress",
            },
            "returnCodes": [
                {
                    ODATA_TYPE: "#microsoft.graph.win32LobAppReturnCode",
                    "returnCode": code,
                    "type": kind,
                }
                for code, kind in self.return_codes
            ],
            "rules": [
                {
                    ODATA_TYPE: "#microsoft.graph.win32LobAppPowerShellScriptRule",
                    "ruleType": "detection",
                    "enforceSignatureCheck": False,
                    "runAs32Bit": False,
                    "scriptContent": _b64(self.detection_script),
                    "operationType": "notConfigured",
                    "operator": "notConfigured",
                }
            ],
        }
        if self.msi is not None:
            body["msiInformation"] = self.msi.to_graph()
        if self.icon:
            body["largeIcon"] = {
                ODATA_TYPE: "#microsoft.graph.mimeContent",
                "type": _icon_mime_type(self.icon),
                "value": base64.b64encode(self.icon).decode("ascii"),
            }
        return body


@dataclass(frozen=True)
class AppAssignment:
    """One assignment of an app: an intent and a target."""

    intent: str
    target: dict[str, Any]

    @classmethod
    def to_group(cls, intent: str, group_id: str) -> AppAssignment:
        return cls(
            intent,
            {
                ODATA_TYPE: "#microsoft.graph.groupAssignmentTarget",
                "groupId": group_id,
            },
        )

    def to_graph(self) -> dict[str, Any]:
        return {
            ODATA_TYPE: "#microsoft.graph.mobileAppAssignment",
            "intent": self.intent,
            "target": self.target,
            "settings": None,
        }


@dataclass(frozen=True)
class AppAssignmentPayload:
    """Body for the mobileApps/{id}/assign action."""

    assignments: tuple[AppAssignment, ...]

    @classmethod
    def for_deployment(
        cls,
        install_group_id: str,
        uninstall_group_id: str,
        available: AvailableInstall,
    ) -> AppAssignmentPayload:
        assignments = [
            AppAssignment.to_group("required", install_group_id),
            AppAssignment.to_group("uninstall", uninstall_group_id),
        ]
        assignments.extend(AppAssignment("available", t) for t in available.targets())
        return cls(tuple(assignments))

    def to_graph(self) -> dict[str, Any]:
        return {"mobileAppAssignments": [a.to_graph() for a in self.assignments]}
