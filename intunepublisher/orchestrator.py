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

"""Deployment orchestration for intunepublisher.

This module drives one package from "nothing published" to "assigned Win32
app" and runs batches of packages with per-unit failure isolation.

Stage Sequence (strict order):
    1. Existence check (skip when committed and not forced)
    2. Reconcile the "{name} Required" and "{name} Uninstall" groups
    3. Generate and persist install/uninstall/detection scripts
    4. Create the "{name} Upgrade" remediation when licensed
    5. Build the content package from the install script
    6. Create or update the app, then content version/file, upload, commit
       and wait
    7. Mark the content version as committed on the app
    8. Assign the app (required, uninstall, optional available)

Failure Isolation:
    Any error raised by a stage is caught at deploy() and recorded as a
    Failed unit with the error message. Groups, scripts and remediations
    created before the failure are left in place; a rerun picks them up
    through the reconciler's existence checks. An app whose upload failed
    keeps no committedContentVersion, so the rerun updates it and uploads
    again instead of skipping it.

Work Directory Layout:
    <work_dir>/<sanitized id>/
        <id>-Detection.ps1
        package/<id>-Install.ps1
        package/<id>-Uninstall.ps1
        out/<package>.intunewin
        out/content/<encrypted payload>

Example:
    ```python
    from pathlib import Path
    from intunepublisher.config import DeployOptions
    from intunepublisher.orchestrator import DeploymentOrchestrator

    orchestrator = DeploymentOrchestrator(
        client,
        script_generator=WingetScriptGenerator(),
        packager=IntuneWinPackager(Path("cache/tools")),
        icon_resolver=DirectoryIconResolver(Path("icons")),
        licensing_probe=StaticLicensingProbe(False),
    )
    unit = orchestrator.deploy("Acme.Tool", "Acme Tool", Path("work"), DeployOptions())
    print(unit.status)
    ```
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
import time
from typing import Any, Callable

from intunepublisher.build.scripts import sanitize_filename, script_filename, write_script
from intunepublisher.collaborators import (
    BuiltPackage,
    IconResolver,
    LicensingProbe,
    PackageManifest,
    Packager,
    ScriptGenerator,
    ScriptKind,
)
from intunepublisher.config.settings import (
    DEFAULT_DESCRIPTION_TAG,
    DeployOptions,
    PackageSpec,
    ProcessingSettings,
    UploadSettings,
)
from intunepublisher.exceptions import DeploymentError
from intunepublisher.graph.client import odata_equals
from intunepublisher.graph.payloads import (
    AppAssignmentPayload,
    ContentFilePayload,
    GroupPayload,
    RemediationAssignmentPayload,
    RemediationPayload,
    Win32AppPayload,
)
from intunepublisher.io.upload import ContentFileTarget, upload_file
from intunepublisher.logging import Logger, resolve_logger
from intunepublisher.processing import (
    STAGE_COMMIT_FILE,
    STAGE_STORAGE_URI_REQUEST,
    CancellationToken,
    wait_for_processing,
)
from intunepublisher.reconcile import (
    ResourceKind,
    ResourceReconciler,
    collection_for,
    resource_name,
)
from intunepublisher.results import (
    BatchSummary,
    DeploymentStatus,
    DeploymentUnit,
    StageResults,
)

APPS_PATH = "deviceAppManagement/mobileApps"
WIN32_APP_SEGMENT = "microsoft.graph.win32LobApp"
TOTAL_STAGES = 8

POWERSHELL_COMMAND = (
    "%SystemRoot%\\sysnative\\WindowsPowerShell\\v1.0\\powershell.exe "
    '-NoProfile -ExecutionPolicy Bypass -File ".\\{script}"'
)


def command_lines(
    manifest: PackageManifest, install_script: str, uninstall_script: str
) -> tuple[str, str]:
    """Pick the install and uninstall command lines for an app.

    Commands reported by the packager win. MSI packages fall back to
    msiexec; everything else runs the generated PowerShell scripts.
    """
    install = manifest.install_command
    uninstall = manifest.uninstall_command
    if manifest.msi is not None:
        install = install or f'msiexec /i "{manifest.setup_file}" /qn'
        uninstall = uninstall or f"msiexec /x {manifest.msi.product_code} /qn"
    install = install or POWERSHELL_COMMAND.format(script=install_script)
    uninstall = uninstall or POWERSHELL_COMMAND.format(script=uninstall_script)
    return install, uninstall


def _require_id(response: dict[str, Any] | None, what: str) -> str:
    resource_id = (response or {}).get("id")
    if not resource_id:
        raise DeploymentError(f"Backend returned no id for {what}")
    return resource_id


class DeploymentOrchestrator:
    """Runs the stage sequence for packages, one unit at a time.

    Args:
        client: Authenticated GraphClient shared by every unit.
        script_generator: Produces install/uninstall/detection scripts.
        packager: Builds the content package.
        icon_resolver: Finds an icon for the app, if any.
        licensing_probe: Decides whether remediations are created.
        description_tag: Marker placed in every created description.
        publisher: Publisher shown on the app and remediation.
        upload: Chunk size, renewal interval and block retries.
        processing: Poll interval and attempt budget for every wait.
        remediation_schedule_time: Daily run time of the remediation.
        clock: Monotonic clock used for upload renewal timing.
        cancel: Token checked between stages and units.
        logger: Optional logger passed to every component.
    """

    def __init__(
        self,
        client: Any,
        *,
        script_generator: ScriptGenerator,
        packager: Packager,
        icon_resolver: IconResolver,
        licensing_probe: LicensingProbe,
        description_tag: str = DEFAULT_DESCRIPTION_TAG,
        publisher: str = "",
        upload: UploadSettings | None = None,
        processing: ProcessingSettings | None = None,
        remediation_schedule_time: str = "01:00:00",
        clock: Callable[[], float] = time.monotonic,
        cancel: CancellationToken | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.script_generator = script_generator
        self.packager = packager
        self.icon_resolver = icon_resolver
        self.licensing_probe = licensing_probe
        self.description_tag = description_tag
        self.publisher = publisher
        self.upload = upload or UploadSettings()
        self.processing = processing or ProcessingSettings()
        self.remediation_schedule_time = remediation_schedule_time
        self.clock = clock
        self.cancel = cancel or CancellationToken()
        self.logger = resolve_logger(logger)
        self.reconciler = ResourceReconciler(client, description_tag, self.logger)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def deploy(
        self,
        package_id: str,
        display_name: str,
        work_dir: Path,
        options: DeployOptions | None = None,
    ) -> DeploymentUnit:
        """Publish one package and return its DeploymentUnit.

        Never raises for stage failures; they are reported as a Failed unit.
        """
        options = options or DeployOptions()
        stages = StageResults()
        unit_dir = Path(work_dir) / sanitize_filename(package_id)

        self.logger.verbose("DEPLOY", f"Deploying {display_name} ({package_id})")
        try:
            status = self._run_stages(package_id, display_name, unit_dir, options, stages)
            error = None
        except Exception as err:
            self.logger.warning("DEPLOY", f"{package_id} failed: {err}")
            status, error = DeploymentStatus.FAILED, str(err)

        return DeploymentUnit(
            package_id=package_id,
            display_name=display_name,
            work_dir=unit_dir,
            status=status,
            stages=stages,
            error=error,
        )

    def deploy_batch(
        self,
        packages: Iterable[PackageSpec],
        work_dir: Path,
    ) -> BatchSummary:
        """Deploy packages sequentially; one unit's failure never stops the rest.

        Once the cancellation token fires, packages not yet started are
        reported as Skipped.
        """
        units: list[DeploymentUnit] = []
        for spec in packages:
            if self.cancel.cancelled:
                units.append(
                    DeploymentUnit(
                        package_id=spec.package_id,
                        display_name=spec.display_name,
                        work_dir=Path(work_dir) / sanitize_filename(spec.package_id),
                        status=DeploymentStatus.SKIPPED,
                        stages=StageResults(),
                        error="Run cancelled before this package started",
                    )
                )
                continue
            units.append(
                self.deploy(spec.package_id, spec.display_name, work_dir, spec.options)
            )
        return BatchSummary(tuple(units))

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    def _run_stages(
        self,
        package_id: str,
        display_name: str,
        unit_dir: Path,
        options: DeployOptions,
        stages: StageResults,
    ) -> DeploymentStatus:
        log = self.logger

        log.step(1, TOTAL_STAGES, "Checking for a published app...")
        existing = self.find_published_app(display_name)
        if existing is not None:
            if not existing.get("committedContentVersion"):
                # left behind by a failed upload; finish it instead of skipping
                log.verbose(
                    "DEPLOY",
                    f"{display_name} has no committed content ({existing['id']}), resuming",
                )
            elif not options.force:
                log.verbose(
                    "DEPLOY", f"{display_name} already published ({existing['id']}), skipping"
                )
                return DeploymentStatus.SKIPPED
            else:
                log.verbose(
                    "DEPLOY", f"{display_name} already published, forcing new content version"
                )

        self.cancel.raise_if_cancelled("Deployment")
        log.step(2, TOTAL_STAGES, "Reconciling groups...")
        stages.install_group_id = self._ensure_group(ResourceKind.INSTALL, display_name)
        stages.uninstall_group_id = self._ensure_group(
            ResourceKind.UNINSTALL, display_name
        )

        self.cancel.raise_if_cancelled("Deployment")
        log.step(3, TOTAL_STAGES, "Generating scripts...")
        scripts = self._write_scripts(package_id, display_name, unit_dir, stages)

        log.step(4, TOTAL_STAGES, "Checking remediation entitlement...")
        if self.licensing_probe.has_entitlement():
            stages.remediation_id = self._ensure_remediation(
                display_name,
                scripts[ScriptKind.DETECTION],
                scripts[ScriptKind.INSTALL],
                stages.install_group_id,
            )
        else:
            log.verbose("DEPLOY", "Remediations not licensed, skipping remediation")

        self.cancel.raise_if_cancelled("Deployment")
        log.step(5, TOTAL_STAGES, "Building content package...")
        install_file = stages.script_paths[ScriptKind.INSTALL.value].name
        built = self.packager.build_package(
            unit_dir / "package", install_file, unit_dir / "out"
        )
        stages.package_path = built.content_path

        self.cancel.raise_if_cancelled("Deployment")
        log.step(6, TOTAL_STAGES, "Uploading content...")
        payload = self._app_payload(
            package_id, display_name, built, scripts[ScriptKind.DETECTION], stages
        )
        if existing is not None:
            stages.app_id = existing["id"]
            self.client.patch(f"{APPS_PATH}/{stages.app_id}", payload.to_graph())
            log.verbose("DEPLOY", f"Updated app {display_name} ({stages.app_id})")
        else:
            stages.app_id = _require_id(
                self.client.post(APPS_PATH, payload.to_graph()), "app"
            )
            log.verbose("DEPLOY", f"Created app {display_name} ({stages.app_id})")
        self._upload_content(built, stages)

        log.step(7, TOTAL_STAGES, "Committing content version...")
        self.client.patch(
            f"{APPS_PATH}/{stages.app_id}",
            {
                "@odata.type": f"#{WIN32_APP_SEGMENT}",
                "committedContentVersion": stages.content_version_id,
            },
        )
        stages.committed = True

        log.step(8, TOTAL_STAGES, "Assigning app...")
        assignment = AppAssignmentPayload.for_deployment(
            stages.install_group_id,
            stages.uninstall_group_id,
            options.available_install,
        )
        self.client.post(f"{APPS_PATH}/{stages.app_id}/assign", assignment.to_graph())
        stages.assigned = True

        log.verbose("DEPLOY", f"[OK] {display_name} published as {stages.app_id}")
        return DeploymentStatus.SUCCESS

    def find_published_app(self, display_name: str) -> dict[str, Any] | None:
        """Return the app named exactly ``display_name`` carrying our tag.

        The app counts as published only when ``committedContentVersion`` is
        set; callers check that field, since an app created by a run whose
        upload failed has the tag but no content.
        """
        candidates = self.client.list(
            APPS_PATH,
            filter=odata_equals("displayName", display_name),
            select=["id", "displayName", "description", "committedContentVersion"],
        )
        for app in candidates:
            if app.get("displayName") == display_name and self.description_tag in (
                app.get("description") or ""
            ):
                return app
        return None

    def _ensure_group(self, kind: ResourceKind, display_name: str) -> str:
        name = resource_name(kind, display_name)
        resource = self.reconciler.ensure_resource(
            kind, name, lambda tag: GroupPayload.for_name(name, tag)
        )
        return resource.id

    def _write_scripts(
        self,
        package_id: str,
        display_name: str,
        unit_dir: Path,
        stages: StageResults,
    ) -> dict[ScriptKind, str]:
        scripts: dict[ScriptKind, str] = {}
        for kind in ScriptKind:
            text = self.script_generator.generate_script(package_id, display_name, kind)
            # detection is uploaded as a rule, so it stays out of the package
            folder = unit_dir if kind is ScriptKind.DETECTION else unit_dir / "package"
            path = write_script(
                text, folder / script_filename(package_id, kind), self.logger
            )
            stages.script_paths[kind.value] = path
            scripts[kind] = text
        return scripts

    def _ensure_remediation(
        self,
        display_name: str,
        detection_script: str,
        remediation_script: str,
        install_group_id: str,
    ) -> str:
        name = resource_name(ResourceKind.REMEDIATION, display_name)
        resource = self.reconciler.ensure_resource(
            ResourceKind.REMEDIATION,
            name,
            lambda tag: RemediationPayload(
                display_name=name,
                description=tag,
                publisher=self.publisher or display_name,
                detection_script=detection_script,
                remediation_script=remediation_script,
            ),
        )
        if resource.created:
            self.client.post(
                f"{collection_for(ResourceKind.REMEDIATION)}/{resource.id}/assign",
                RemediationAssignmentPayload(
                    install_group_id, self.remediation_schedule_time
                ).to_graph(),
            )
            self.logger.verbose("DEPLOY", f"Remediation {name} assigned to install group")
        return resource.id

    def _app_payload(
        self,
        package_id: str,
        display_name: str,
        built: BuiltPackage,
        detection_script: str,
        stages: StageResults,
    ) -> Win32AppPayload:
        install_script = stages.script_paths[ScriptKind.INSTALL.value].name
        uninstall_script = stages.script_paths[ScriptKind.UNINSTALL.value].name
        install_cmd, uninstall_cmd = command_lines(
            built.manifest, install_script, uninstall_script
        )
        return Win32AppPayload(
            display_name=display_name,
            description=f"{display_name} ({package_id})\n{self.description_tag}",
            publisher=self.publisher,
            file_name=built.package_path.name,
            setup_file_path=built.manifest.setup_file or install_script,
            install_command=install_cmd,
            uninstall_command=uninstall_cmd,
            detection_script=detection_script,
            icon=self.icon_resolver.find_icon(package_id, display_name),
            msi=built.manifest.msi,
        )

    def _wait(self, resource: str, stage: str) -> dict[str, Any]:
        return wait_for_processing(
            self.client,
            resource,
            stage,
            poll_interval=self.processing.poll_interval,
            max_attempts=self.processing.max_attempts,
            cancel=self.cancel,
            logger=self.logger,
        )

    def _upload_content(self, built: BuiltPackage, stages: StageResults) -> None:
        versions_path = f"{APPS_PATH}/{stages.app_id}/{WIN32_APP_SEGMENT}/contentVersions"
        stages.content_version_id = _require_id(
            self.client.post(versions_path, {}), "content version"
        )

        files_path = f"{versions_path}/{stages.content_version_id}/files"
        manifest = built.manifest
        content_file = ContentFilePayload(
            name=built.content_path.name,
            size=manifest.unencrypted_size,
            size_encrypted=manifest.encrypted_size,
        )
        stages.content_file_id = _require_id(
            self.client.post(files_path, content_file.to_graph()), "content file"
        )
        file_path = f"{files_path}/{stages.content_file_id}"

        file_info = self._wait(file_path, STAGE_STORAGE_URI_REQUEST)
        storage_uri = file_info.get("azureStorageUri")
        if not storage_uri:
            raise DeploymentError("Content file is ready but has no azureStorageUri")

        target = ContentFileTarget(
            self.client,
            file_path,
            storage_uri,
            poll_interval=self.processing.poll_interval,
            max_attempts=self.processing.max_attempts,
            cancel=self.cancel,
            logger=self.logger,
        )
        upload_file(
            self.client,
            target,
            built.content_path,
            chunk_size=self.upload.chunk_size,
            renewal_interval=self.upload.renewal_interval,
            block_retries=self.upload.block_retries,
            clock=self.clock,
            cancel=self.cancel,
            logger=self.logger,
        )

        self.client.post(f"{file_path}/commit", manifest.encryption.to_graph())
        self._wait(file_path, STAGE_COMMIT_FILE)
        stages.uploaded = True
