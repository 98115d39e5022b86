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

""".intunewin package generation for intunepublisher.

This module packages a script directory with Microsoft's IntuneWinAppUtil.exe
and reads back what Intune needs to accept the upload: the encrypted
payload, its sizes and the encryption key material.

A .intunewin file is a zip archive:

    IntuneWinPackage/Metadata/Detection.xml    sizes, setup file, encryption
    IntuneWinPackage/Contents/<FileName>       encrypted payload (uploaded)

Design Principles:
    - IntuneWinAppUtil.exe is cached globally (not per-package)
    - The encrypted payload is extracted next to the .intunewin file
    - Tool is downloaded from Microsoft's official GitHub repository

Example:
    Basic usage:
        ```python
        from pathlib import Path
        from intunepublisher.build.packager import IntuneWinPackager

        packager = IntuneWinPackager(Path("cache/tools"))
        built = packager.build_package(
            Path("work/Acme.Tool/package"),
            "Acme.Tool-Install.ps1",
            Path("work/Acme.Tool/out"),
        )
        print(built.manifest.encrypted_size)
        ```
"""

from __future__ import annotations

from pathlib import Path
import shutil
import subprocess
import xml.etree.ElementTree as ET
import zipfile

import requests

from intunepublisher.collaborators import BuiltPackage, PackageManifest
from intunepublisher.exceptions import NetworkError, PackagingError
from intunepublisher.graph.payloads import FileEncryptionInfo, MsiInfo
from intunepublisher.logging import Logger, resolve_logger

# TODO: Pin IntuneWinAppUtil.exe to a release tag instead of master once a
# tool_version setting exists in the batch defaults.
INTUNEWIN_TOOL_URL = (
    "https://github.com/microsoft/Microsoft-Win32-Content-Prep-Tool"
    "/raw/master/IntuneWinAppUtil.exe"
)

DETECTION_XML = "IntuneWinPackage/Metadata/Detection.xml"
CONTENTS_DIR = "IntuneWinPackage/Contents"


def _get_intunewin_tool(cache_dir: Path, logger: Logger) -> Path:
    """Download and cache IntuneWinAppUtil.exe.

    Raises:
        NetworkError: If download fails.
    """
    tool_path = cache_dir / "IntuneWinAppUtil.exe"

    if tool_path.exists():
        logger.verbose("PACKAGE", f"Using cached IntuneWinAppUtil: {tool_path}")
        return tool_path

    logger.verbose("PACKAGE", "Downloading IntuneWinAppUtil.exe...")
    try:
        response = requests.get(INTUNEWIN_TOOL_URL, timeout=60)
        response.raise_for_status()
    except requests.RequestException as err:
        raise NetworkError(f"Failed to download IntuneWinAppUtil.exe: {err}") from err

    cache_dir.mkdir(parents=True, exist_ok=True)
    tool_path.write_bytes(response.content)
    logger.verbose("PACKAGE", f"[OK] IntuneWinAppUtil.exe cached: {tool_path}")
    return tool_path


def _execute_packaging(
    tool_path: Path,
    source_dir: Path,
    setup_file: str,
    output_dir: Path,
    logger: Logger,
    timeout: int = 300,
) -> Path:
    """Execute IntuneWinAppUtil.exe and return the created .intunewin file.

    Raises:
        PackagingError: If the tool fails, times out, or produces no file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    # IntuneWinAppUtil.exe -c <source> -s <setup file> -o <output> -q
    cmd = [
        str(tool_path),
        "-c",
        str(source_dir),
        "-s",
        setup_file,
        "-o",
        str(output_dir),
        "-q",
    ]
    logger.verbose("PACKAGE", f"Running: {' '.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        for line in (result.stdout or "").strip().splitlines():
            logger.debug("PACKAGE", f"  {line}")
    except subprocess.CalledProcessError as err:
        error_msg = f"IntuneWinAppUtil.exe failed (exit code {err.returncode})"
        if err.stderr:
            error_msg += f"\n{err.stderr}"
        raise PackagingError(error_msg) from err
    except subprocess.TimeoutExpired as err:
        raise PackagingError(
            f"IntuneWinAppUtil.exe timed out after {err.timeout}s"
        ) from err
    except OSError as err:
        raise PackagingError(f"Could not run IntuneWinAppUtil.exe: {err}") from err

    intunewin_files = list(output_dir.glob("*.intunewin"))
    if not intunewin_files:
        raise PackagingError(
            f"IntuneWinAppUtil.exe completed but no .intunewin file found in {output_dir}"
        )

    intunewin_path = max(intunewin_files, key=lambda p: p.stat().st_mtime)
    logger.verbose("PACKAGE", f"[OK] Created: {intunewin_path.name}")
    return intunewin_path


def _text(root: ET.Element, path: str, default: str = "") -> str:
    value = root.findtext(path)
    return value.strip() if value else default


def _parse_detection_xml(data: bytes) -> tuple[str, PackageManifest]:
    """Parse Detection.xml into (payload file name, manifest without sizes).

    Raises:
        PackagingError: On malformed XML or missing required elements.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as err:
        raise PackagingError(f"Invalid Detection.xml: {err}") from err

    file_name = _text(root, "FileName")
    setup_file = _text(root, "SetupFile")
    size = _text(root, "UnencryptedContentSize")
    enc = root.find("EncryptionInfo")
    if not file_name or not size or enc is None:
        raise PackagingError(
            "Detection.xml is missing FileName, UnencryptedContentSize or EncryptionInfo"
        )

    encryption = FileEncryptionInfo(
        encryption_key=_text(enc, "EncryptionKey"),
        initialization_vector=_text(enc, "InitializationVector"),
        mac=_text(enc, "Mac"),
        mac_key=_text(enc, "MacKey"),
        file_digest=_text(enc, "FileDigest"),
        profile_identifier=_text(enc, "ProfileIdentifier", "ProfileVersion1"),
        file_digest_algorithm=_text(enc, "FileDigestAlgorithm", "SHA256"),
    )

    msi = None
    msi_node = root.find("MsiInfo")
    if msi_node is not None and _text(msi_node, "MsiProductCode"):
        msi = MsiInfo(
            product_code=_text(msi_node, "MsiProductCode"),
            product_version=_text(msi_node, "MsiProductVersion"),
            publisher=_text(msi_node, "MsiPublisher"),
            upgrade_code=_text(msi_node, "MsiUpgradeCode"),
            requires_reboot=_text(msi_node, "MsiRequiresReboot").lower() == "true",
            package_type=(
                "perUser"
                if _text(msi_node, "MsiExecutionContext").lower() == "user"
                else "perMachine"
            ),
        )

    manifest = PackageManifest(
        setup_file=setup_file,
        unencrypted_size=int(size),
        encrypted_size=0,
        encryption=encryption,
        msi=msi,
    )
    return file_name, manifest


def read_intunewin(package_path: Path, extract_dir: Path) -> tuple[Path, PackageManifest]:
    """Extract the encrypted payload and manifest from a .intunewin file.

    Args:
        package_path: The .intunewin archive.
        extract_dir: Directory to extract the encrypted payload into.

    Returns:
        (content_path, manifest) where content_path is the extracted
            encrypted payload and manifest.encrypted_size is its size.

    Raises:
        PackagingError: If the archive is unreadable or incomplete.
    """
    try:
        with zipfile.ZipFile(package_path) as archive:
            try:
                detection = archive.read(DETECTION_XML)
            except KeyError as err:
                raise PackagingError(
                    f"{package_path.name} has no {DETECTION_XML}"
                ) from err
            file_name, manifest = _parse_detection_xml(detection)

            member = f"{CONTENTS_DIR}/{file_name}"
            extract_dir.mkdir(parents=True, exist_ok=True)
            content_path = extract_dir / Path(file_name).name
            try:
                with archive.open(member) as src, content_path.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
            except KeyError as err:
                raise PackagingError(f"{package_path.name} has no {member}") from err
    except zipfile.BadZipFile as err:
        raise PackagingError(f"{package_path} is not a valid .intunewin: {err}") from err

    manifest = PackageManifest(
        setup_file=manifest.setup_file,
        unencrypted_size=manifest.unencrypted_size,
        encrypted_size=content_path.stat().st_size,
        encryption=manifest.encryption,
        msi=manifest.msi,
    )
    return content_path, manifest


class IntuneWinPackager:
    """Default Packager backed by IntuneWinAppUtil.exe.

    Args:
        tool_cache_dir: Where IntuneWinAppUtil.exe is cached.
        timeout: Seconds allowed for one packaging run.
        logger: Optional logger.
    """

    def __init__(
        self,
        tool_cache_dir: Path = Path("cache/tools"),
        timeout: int = 300,
        logger: Logger | None = None,
    ) -> None:
        self.tool_cache_dir = tool_cache_dir
        self.timeout = timeout
        self.logger = resolve_logger(logger)

    def build_package(
        self, script_dir: Path, setup_file: str, dest_dir: Path
    ) -> BuiltPackage:
        """Package ``script_dir`` and return the payload with its manifest.

        Raises:
            PackagingError: If the setup file is missing or packaging fails.
            NetworkError: If IntuneWinAppUtil.exe download fails.
        """
        script_dir = script_dir.resolve()
        if not (script_dir / setup_file).is_file():
            raise PackagingError(f"Setup file not found: {script_dir / setup_file}")

        tool_path = _get_intunewin_tool(self.tool_cache_dir, self.logger)
        package_path = _execute_packaging(
            tool_path,
            script_dir,
            setup_file,
            dest_dir.resolve(),
            self.logger,
            timeout=self.timeout,
        )
        content_path, manifest = read_intunewin(package_path, dest_dir / "content")
        self.logger.verbose(
            "PACKAGE",
            f"Payload {content_path.name}: {manifest.unencrypted_size} bytes, "
            f"{manifest.encrypted_size} encrypted",
        )
        return BuiltPackage(
            package_path=package_path, content_path=content_path, manifest=manifest
        )
