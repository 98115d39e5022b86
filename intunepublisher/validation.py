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

"""Batch validation module.

This module checks a batch file without authenticating or calling Graph.
This is useful for quick feedback while editing batches and in CI/CD
pipelines.

Validation Checks:

- YAML syntax is valid and merges with org defaults
- apiVersion, when present, is supported
- Every setting converts to its typed form
- Packages are present and their ids are unique

Example:
    Validate a batch and handle results:
        ```python
        from pathlib import Path
        from intunepublisher.validation import validate_batch

        result = validate_batch(Path("batches/weekly.yaml"))
        if result["status"] == "valid":
            print(f"Batch is valid with {result['package_count']} package(s)")
        else:
            for error in result["errors"]:
                print(f"Error: {error}")
        ```

"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any

from intunepublisher.config import load_batch_config, settings_from_config
from intunepublisher.exceptions import ConfigError
from intunepublisher.logging import Logger, resolve_logger

__all__ = ["validate_batch"]

SUPPORTED_API_VERSIONS = ("intunepublisher/v1",)


def validate_batch(batch_path: Path, logger: Logger | None = None) -> dict[str, Any]:
    """Validate a batch file without any network calls.

    Args:
        batch_path: Path to the batch YAML file to validate.
        logger: Optional logger.

    Returns:
        A dict with keys status ("valid" or "invalid"), errors, warnings,
            package_count and batch_path.
    """
    logger = resolve_logger(logger)
    errors: list[str] = []
    warnings: list[str] = []
    package_count = 0

    try:
        cfg = load_batch_config(batch_path, logger)
        api_version = cfg.get("apiVersion")
        if api_version is None:
            warnings.append("apiVersion is not set")
        elif api_version not in SUPPORTED_API_VERSIONS:
            errors.append(f"Unsupported apiVersion: {api_version}")

        settings = settings_from_config(cfg)
        package_count = len(settings.packages)
        if not settings.packages:
            errors.append("No packages defined")

        counts = Counter(spec.package_id for spec in settings.packages)
        for package_id, count in counts.items():
            if count > 1:
                errors.append(f"Package id listed {count} times: {package_id}")

        names = Counter(spec.display_name for spec in settings.packages)
        for name, count in names.items():
            if count > 1:
                warnings.append(f"Display name shared by {count} packages: {name}")

        if settings.icon_dir is not None and not settings.icon_dir.is_dir():
            warnings.append(f"Icon directory not found: {settings.icon_dir}")
    except ConfigError as err:
        errors.append(str(err))

    for warning in warnings:
        logger.verbose("VALIDATE", f"Warning: {warning}")

    return {
        "batch_path": str(batch_path),
        "status": "invalid" if errors else "valid",
        "errors": errors,
        "warnings": warnings,
        "package_count": package_count,
    }
