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

"""Core publishing workflow for intunepublisher.

This module wires the pieces together for a batch run: configuration,
credentials, the Graph client, the default collaborators and the
deployment orchestrator.

Workflow:

1. Load the batch YAML (with org defaults) and build typed settings
2. Select packages and apply command-line overrides
3. Authenticate once for the whole batch
4. Deploy each package sequentially and collect a BatchSummary

Example:
    Publish a batch from Python:
        ```python
        from pathlib import Path
        from intunepublisher.core import publish_packages

        summary = publish_packages(Path("batches/weekly.yaml"))
        print(f"{summary.succeeded} published, {summary.failed} failed")
        ```
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Callable

from intunepublisher.auth import CredentialManager
from intunepublisher.build import IntuneWinPackager, WingetScriptGenerator
from intunepublisher.collaborators import (
    DirectoryIconResolver,
    GraphLicensingProbe,
    LicensingProbe,
    StaticLicensingProbe,
)
from intunepublisher.config import load_batch_config, settings_from_config
from intunepublisher.config.settings import PackageSpec, PublishSettings
from intunepublisher.exceptions import ConfigError
from intunepublisher.graph import AvailableInstall, GraphClient
from intunepublisher.logging import Logger, resolve_logger
from intunepublisher.orchestrator import DeploymentOrchestrator
from intunepublisher.processing import CancellationToken
from intunepublisher.results import BatchSummary


def select_packages(
    packages: Sequence[PackageSpec],
    package_ids: Sequence[str] | None = None,
    force: bool | None = None,
    available_install: AvailableInstall | str | None = None,
) -> list[PackageSpec]:
    """Filter the batch to ``package_ids`` and apply option overrides.

    Raises:
        ConfigError: If a requested id is not in the batch.
    """
    selected = list(packages)
    if package_ids:
        known = {spec.package_id for spec in packages}
        unknown = [pid for pid in package_ids if pid not in known]
        if unknown:
            raise ConfigError(f"Package(s) not in batch: {', '.join(unknown)}")
        wanted = set(package_ids)
        selected = [spec for spec in packages if spec.package_id in wanted]

    overrides = {}
    if force is not None:
        overrides["force"] = force
    if available_install is not None:
        try:
            overrides["available_install"] = AvailableInstall.parse(available_install)
        except ValueError as err:
            raise ConfigError(str(err)) from err
    if overrides:
        selected = [
            replace(spec, options=replace(spec.options, **overrides))
            for spec in selected
        ]
    return selected


def make_licensing_probe(
    settings: PublishSettings, client: GraphClient, logger: Logger
) -> LicensingProbe:
    mode = settings.remediation.license_check
    if mode == "graph":
        return GraphLicensingProbe(client, settings.remediation.service_plans, logger)
    return StaticLicensingProbe(mode == "enabled")


def build_orchestrator(
    settings: PublishSettings,
    token_provider: Callable[[], str],
    cancel: CancellationToken | None = None,
    logger: Logger | None = None,
) -> DeploymentOrchestrator:
    """Create the orchestrator and its default collaborators from settings."""
    logger = resolve_logger(logger)
    client = GraphClient(
        token_provider,
        base_url=settings.graph.base_url,
        timeout=settings.graph.timeout,
        logger=logger,
    )
    deployment = settings.deployment
    return DeploymentOrchestrator(
        client,
        script_generator=WingetScriptGenerator(),
        packager=IntuneWinPackager(deployment.tool_cache_dir, logger=logger),
        icon_resolver=DirectoryIconResolver(settings.icon_dir),
        licensing_probe=make_licensing_probe(settings, client, logger),
        description_tag=deployment.description_tag,
        publisher=deployment.publisher,
        upload=settings.upload,
        processing=settings.processing,
        remediation_schedule_time=settings.remediation.schedule_time,
        cancel=cancel,
        logger=logger,
    )


def publish_packages(
    batch_path: Path,
    package_ids: Sequence[str] | None = None,
    force: bool | None = None,
    available_install: AvailableInstall | str | None = None,
    token_provider: Callable[[], str] | None = None,
    cancel: CancellationToken | None = None,
    logger: Logger | None = None,
) -> BatchSummary:
    """Publish every selected package of a batch file to Intune.

    Args:
        batch_path: Path to the batch YAML file.
        package_ids: Only publish these package ids (default: all).
        force: Override the force flag of every selected package.
        available_install: Override the available targets of every package.
        token_provider: Callable returning a Graph bearer token. Defaults to
            a CredentialManager reading INTUNE_* variables.
        cancel: Token that stops the run between polls, blocks and units.
        logger: Optional logger.

    Returns:
        BatchSummary with one DeploymentUnit per selected package.

    Raises:
        ConfigError: If the batch is invalid, a requested package is unknown,
            or credentials are missing. Per-package failures are reported in
            the summary instead of raised.
    """
    logger = resolve_logger(logger)

    logger.step(1, 3, "Loading configuration...")
    settings = settings_from_config(load_batch_config(batch_path, logger))
    packages = select_packages(
        settings.packages, package_ids, force, available_install
    )
    if not packages:
        raise ConfigError(f"No packages defined in batch: {batch_path}")

    logger.step(2, 3, "Authenticating...")
    if token_provider is None:
        credentials = CredentialManager(logger=logger)
        credentials.check()
        token_provider = credentials

    logger.step(3, 3, f"Publishing {len(packages)} package(s)...")
    orchestrator = build_orchestrator(settings, token_provider, cancel, logger)
    return orchestrator.deploy_batch(packages, settings.deployment.work_dir)
