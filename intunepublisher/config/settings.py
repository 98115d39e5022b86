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

"""Typed settings built from a merged batch configuration.

load_batch_config() returns plain dicts; settings_from_config() validates
them once and turns them into frozen dataclasses, so the rest of the package
never digs through nested dicts or re-checks values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from intunepublisher.collaborators import DEFAULT_REMEDIATION_SERVICE_PLANS
from intunepublisher.exceptions import ConfigError
from intunepublisher.graph.client import DEFAULT_BASE_URL
from intunepublisher.graph.payloads import AvailableInstall
from intunepublisher.io.upload import (
    DEFAULT_BLOCK_RETRIES,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_RENEWAL_INTERVAL,
)
from intunepublisher.processing import DEFAULT_MAX_ATTEMPTS, DEFAULT_POLL_INTERVAL

DEFAULT_DESCRIPTION_TAG = "Published by intunepublisher"
LICENSE_CHECK_MODES = ("graph", "enabled", "disabled")


@dataclass(frozen=True)
class GraphSettings:
    base_url: str = DEFAULT_BASE_URL
    timeout: int = 60


@dataclass(frozen=True)
class UploadSettings:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    renewal_interval: float = DEFAULT_RENEWAL_INTERVAL
    block_retries: int = DEFAULT_BLOCK_RETRIES


@dataclass(frozen=True)
class ProcessingSettings:
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


@dataclass(frozen=True)
class DeployOptions:
    """Per-package deployment switches.

    Attributes:
        force: Publish even if an app with the same name already exists.
        available_install: Extra "available" assignment targets.
    """

    force: bool = False
    available_install: AvailableInstall = AvailableInstall.NONE


@dataclass(frozen=True)
class PackageSpec:
    """One package requested in a batch."""

    package_id: str
    display_name: str
    options: DeployOptions = field(default_factory=DeployOptions)


@dataclass(frozen=True)
class DeploymentSettings:
    work_dir: Path = Path("work")
    tool_cache_dir: Path = Path("cache/tools")
    description_tag: str = DEFAULT_DESCRIPTION_TAG
    publisher: str = ""
    defaults: DeployOptions = field(default_factory=DeployOptions)


@dataclass(frozen=True)
class RemediationSettings:
    license_check: str = "graph"
    service_plans: tuple[str, ...] = DEFAULT_REMEDIATION_SERVICE_PLANS
    schedule_time: str = "01:00:00"


@dataclass(frozen=True)
class PublishSettings:
    graph: GraphSettings = field(default_factory=GraphSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)
    deployment: DeploymentSettings = field(default_factory=DeploymentSettings)
    remediation: RemediationSettings = field(default_factory=RemediationSettings)
    icon_dir: Path | None = None
    packages: tuple[PackageSpec, ...] = ()


def _section(defaults: dict[str, Any], name: str) -> dict[str, Any]:
    value = defaults.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"defaults.{name} must be a mapping")
    return value


def _positive(value: Any, name: str, cast: type = int) -> Any:
    try:
        number = cast(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{name} must be a number, got {value!r}") from err
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def _non_negative_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from err
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return number


def _available(value: Any, where: str) -> AvailableInstall:
    try:
        return AvailableInstall.parse(value)
    except ValueError as err:
        raise ConfigError(f"{where}: {err}") from err


def _packages(raw: Any, defaults: DeployOptions) -> tuple[PackageSpec, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError("'packages' must be a list")

    specs = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"packages[{index}] must be a mapping")
        package_id = str(entry.get("id") or "").strip()
        if not package_id:
            raise ConfigError(f"packages[{index}] is missing 'id'")
        display_name = str(entry.get("name") or package_id).strip()
        options = DeployOptions(
            force=bool(entry.get("force", defaults.force)),
            available_install=(
                _available(entry["available_install"], f"packages[{index}]")
                if "available_install" in entry
                else defaults.available_install
            ),
        )
        specs.append(PackageSpec(package_id, display_name, options))
    return tuple(specs)


def settings_from_config(cfg: dict[str, Any]) -> PublishSettings:
    """Validate a merged config dict and build PublishSettings.

    Raises:
        ConfigError: On invalid or missing values.
    """
    defaults = cfg.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ConfigError("'defaults' must be a mapping")

    graph_cfg = _section(defaults, "graph")
    upload_cfg = _section(defaults, "upload")
    processing_cfg = _section(defaults, "processing")
    deployment_cfg = _section(defaults, "deployment")
    remediation_cfg = _section(defaults, "remediation")
    icons_cfg = _section(defaults, "icons")

    graph = GraphSettings(
        base_url=str(graph_cfg.get("base_url", DEFAULT_BASE_URL)),
        timeout=_positive(graph_cfg.get("timeout", 60), "graph.timeout"),
    )

    chunk_mb = upload_cfg.get("chunk_size_mb")
    upload = UploadSettings(
        chunk_size=(
            int(_positive(chunk_mb, "upload.chunk_size_mb", float) * 1024 * 1024)
            if chunk_mb is not None
            else DEFAULT_CHUNK_SIZE
        ),
        renewal_interval=_positive(
            upload_cfg.get("renewal_seconds", DEFAULT_RENEWAL_INTERVAL),
            "upload.renewal_seconds",
            float,
        ),
        block_retries=_non_negative_int(
            upload_cfg.get("block_retries", DEFAULT_BLOCK_RETRIES), "upload.block_retries"
        ),
    )

    poll_interval = processing_cfg.get("poll_interval", DEFAULT_POLL_INTERVAL)
    try:
        poll_interval = float(poll_interval)
    except (TypeError, ValueError) as err:
        raise ConfigError("processing.poll_interval must be a number") from err
    if poll_interval < 0:
        raise ConfigError("processing.poll_interval must not be negative")
    processing = ProcessingSettings(
        poll_interval=poll_interval,
        max_attempts=_positive(
            processing_cfg.get("max_attempts", DEFAULT_MAX_ATTEMPTS),
            "processing.max_attempts",
        ),
    )

    default_options = DeployOptions(
        force=bool(deployment_cfg.get("force", False)),
        available_install=_available(
            deployment_cfg.get("available_install"), "deployment"
        ),
    )
    deployment = DeploymentSettings(
        work_dir=Path(deployment_cfg.get("work_dir", "work")),
        tool_cache_dir=Path(deployment_cfg.get("tool_cache_dir", "cache/tools")),
        description_tag=str(
            deployment_cfg.get("description_tag") or DEFAULT_DESCRIPTION_TAG
        ),
        publisher=str(deployment_cfg.get("publisher") or ""),
        defaults=default_options,
    )

    license_check = str(remediation_cfg.get("license_check", "graph")).lower()
    if license_check not in LICENSE_CHECK_MODES:
        raise ConfigError(
            f"remediation.license_check must be one of {', '.join(LICENSE_CHECK_MODES)}"
        )
    remediation = RemediationSettings(
        license_check=license_check,
        service_plans=tuple(
            remediation_cfg.get("service_plans", DEFAULT_REMEDIATION_SERVICE_PLANS)
        ),
        schedule_time=str(remediation_cfg.get("schedule_time", "01:00:00")),
    )

    icon_dir = icons_cfg.get("dir")
    return PublishSettings(
        graph=graph,
        upload=upload,
        processing=processing,
        deployment=deployment,
        remediation=remediation,
        icon_dir=Path(icon_dir) if icon_dir else None,
        packages=_packages(cfg.get("packages"), default_options),
    )
