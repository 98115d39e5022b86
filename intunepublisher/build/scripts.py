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

"""PowerShell script generation for winget-backed Win32 apps.

This module generates the install, uninstall and detection scripts that get
packaged (install/uninstall) or embedded as a detection rule (detection) for
each published package. The scripts locate winget.exe in the system context
and act on the package by its exact winget id.

Detection Logic:
    - Detected (exit 0, "Installed") when ``winget list`` shows the package
      and ``winget upgrade`` does not offer a newer version
    - Not detected (exit 1) otherwise, which makes the same script usable as
      the detection half of an upgrade remediation

Example:
    Generate and persist scripts:
        ```python
        from pathlib import Path
        from intunepublisher.build.scripts import WingetScriptGenerator, write_script
        from intunepublisher.collaborators import ScriptKind

        generator = WingetScriptGenerator()
        text = generator.generate_script("Acme.Tool", "Acme Tool", ScriptKind.INSTALL)
        write_script(text, Path("work/Acme.Tool/package/Acme.Tool-Install.ps1"))
        ```

Note:
    Scripts are written with a UTF-8 BOM so Windows PowerShell 5.1 reads
    non-ASCII display names correctly.
"""

from __future__ import annotations

from pathlib import Path
import re
import string

from intunepublisher.collaborators import ScriptKind
from intunepublisher.exceptions import PackagingError
from intunepublisher.logging import Logger, resolve_logger


def sanitize_filename(name: str, fallback: str = "package") -> str:
    """Sanitize a string for use as a file name.

    Rules:
        - Replace spaces with hyphens
        - Remove every character outside ``[a-zA-Z0-9._-]``
        - Normalize multiple consecutive hyphens to single hyphen
        - Remove leading/trailing hyphens and dots
        - If result is empty, use ``fallback``

    Example:
        ```python
        sanitize_filename("Acme Tool")       # "Acme-Tool"
        sanitize_filename("Acme.Tool")       # "Acme.Tool"
        sanitize_filename("Tööl <x64>")      # "Tl-x64"
        sanitize_filename("***", "app")      # "app"
        ```
    """
    sanitized = name.replace(" ", "-")
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)
    sanitized = sanitized.strip(".-")
    return sanitized or fallback


def script_filename(package_id: str, kind: ScriptKind) -> str:
    """File name for a generated script, e.g. ``Acme.Tool-Install.ps1``."""
    return f"{sanitize_filename(package_id)}-{kind.value}.ps1"


# Resolves winget.exe when running as SYSTEM, where it is not on PATH
_RESOLVE_WINGET = r"""function Resolve-Winget {
    $$Command = Get-Command winget.exe -ErrorAction SilentlyContinue
    if ($$Command) {
        return $$Command.Source
    }
    $$Installer = Get-ChildItem -Path "$$env:ProgramFiles\WindowsApps" -Filter "Microsoft.DesktopAppInstaller_*_x64__8wekyb3d8bbwe" -ErrorAction SilentlyContinue |
        Sort-Object -Property Name -Descending |
        Select-Object -First 1
    if (-not $$Installer) {
        throw "winget.exe not found"
    }
    return Join-Path $$Installer.FullName "winget.exe"
}
"""

_HEADER = """# ${kind} script for ${display_name} (${package_id})
# Generated by intunepublisher

$$ErrorActionPreference = "Stop"
$$PackageId = "${package_id}"

"""

_INSTALL_BODY = """$$Winget = Resolve-Winget
& $$Winget install --id $$PackageId --exact --silent --scope machine --accept-package-agreements --accept-source-agreements
# -1978335189: already installed, no applicable upgrade
if ($$LASTEXITCODE -ne 0 -and $$LASTEXITCODE -ne -1978335189) {
    Write-Error "winget install failed with exit code $$LASTEXITCODE"
    exit $$LASTEXITCODE
}
exit 0
"""

_UNINSTALL_BODY = """$$Winget = Resolve-Winget
& $$Winget uninstall --id $$PackageId --exact --silent --accept-source-agreements
exit $$LASTEXITCODE
"""

_DETECTION_BODY = """try {
    $$Winget = Resolve-Winget
} catch {
    exit 1
}

$$Listed = & $$Winget list --id $$PackageId --exact --accept-source-agreements | Out-String
if ($$Listed -notmatch [regex]::Escape($$PackageId)) {
    exit 1
}

$$Upgrade = & $$Winget upgrade --id $$PackageId --exact --accept-source-agreements | Out-String
if ($$Upgrade -match [regex]::Escape($$PackageId)) {
    exit 1
}

Write-Output "Installed"
exit 0
"""

_BODIES = {
    ScriptKind.INSTALL: _INSTALL_BODY,
    ScriptKind.UNINSTALL: _UNINSTALL_BODY,
    ScriptKind.DETECTION: _DETECTION_BODY,
}


def _escape_ps_string(value: str) -> str:
    """Escape a value for a double-quoted PowerShell string."""
    return value.replace("`", "``").replace('"', '`"').replace("$", "`$")


class WingetScriptGenerator:
    """Default ScriptGenerator producing winget-based PowerShell scripts."""

    def generate_script(
        self, package_id: str, display_name: str, kind: ScriptKind
    ) -> str:
        # Use safe_substitute() so PowerShell variables ($$Variable) are
        # preserved as $Variable without raising KeyError
        template = _HEADER + _RESOLVE_WINGET + "\n" + _BODIES[ScriptKind(kind)]
        return string.Template(template).safe_substitute(
            kind=ScriptKind(kind).value,
            package_id=_escape_ps_string(package_id),
            display_name=display_name.replace("\n", " "),
        )


def write_script(content: str, output_path: Path, logger: Logger | None = None) -> Path:
    """Write a script with UTF-8 BOM encoding, creating parent directories.

    Raises:
        PackagingError: If the file cannot be written.
    """
    logger = resolve_logger(logger)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(content.encode("utf-8-sig"))
    except OSError as err:
        raise PackagingError(f"Failed to write script {output_path}: {err}") from err
    logger.verbose("SCRIPTS", f"Script written to: {output_path}")
    return output_path
