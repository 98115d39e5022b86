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

"""Configuration loading and typed settings for intunepublisher.

Batch files are YAML with a layered approach:

  - Organization-wide defaults (defaults/org.yaml, found upward)
  - The batch file itself (packages list plus overrides)

The loader deep-merges dicts and replaces lists/scalars (last wins).
Relative paths are resolved against the batch file location.

Public API:

- load_batch_config: Load and merge configuration for a batch file
- settings_from_config: Validate a merged config into PublishSettings

Example:
    Basic usage:

        from pathlib import Path
        from intunepublisher.config import load_batch_config, settings_from_config

        settings = settings_from_config(load_batch_config(Path("batches/weekly.yaml")))
        for spec in settings.packages:
            print(spec.package_id, spec.display_name)

"""

from .loader import load_batch_config
from .settings import (
    DeployOptions,
    PackageSpec,
    PublishSettings,
    settings_from_config,
)

__all__ = [
    "DeployOptions",
    "PackageSpec",
    "PublishSettings",
    "load_batch_config",
    "settings_from_config",
]
