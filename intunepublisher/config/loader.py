"""
Configuration loading and merging for intunepublisher.

A batch file lists the packages to publish plus any settings that differ
from the organisation's defaults. Defaults shared by every batch live in an
org-wide file found by walking upward from the batch file.

Configuration Layers
--------------------
1. **Organization defaults** (defaults/org.yaml)
   - Graph endpoint, upload/poll tuning, description tag, remediation policy
   - Optional; only loaded if found above the batch file

2. **Batch file** (e.g. batches/weekly.yaml)
   - The ``packages`` list and per-batch overrides
   - Always required

Merge Behavior
--------------
"Last wins" deep merge:
  - **Dicts**: Recursively merged (keys from overlay override base)
  - **Lists**: Completely replaced (NOT appended/extended)
  - **Scalars**: Overwritten (strings, numbers, booleans)

Path Resolution
---------------
Relative paths are resolved against the BATCH FILE location so batches can
be run from any working directory. Currently resolved paths:
  - defaults.deployment.work_dir
  - defaults.deployment.tool_cache_dir
  - defaults.icons.dir

Examples
--------
    >>> from pathlib import Path
    >>> from intunepublisher.config import load_batch_config
    >>> cfg = load_batch_config(Path("batches/weekly.yaml"))
    >>> cfg["packages"][0]["id"]
    'Acme.Tool'
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from intunepublisher.exceptions import ConfigError
from intunepublisher.logging import Logger, resolve_logger

_PATH_KEYS = (
    ("deployment", "work_dir"),
    ("deployment", "tool_cache_dir"),
    ("icons", "dir"),
)


def _load_yaml_file(p: Path) -> Any:
    """
    Load a YAML file and return the parsed Python object.

    Raises:
      ConfigError - when the file is missing, empty, or not valid YAML
    """
    if not p.exists():
        raise ConfigError(f"file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    return data


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts with "overlay wins".

    Rules:
      - dict + dict -> deep merge
      - list + list -> overlay REPLACES base (not concatenated)
      - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def _find_org_defaults(start_dir: Path) -> Path | None:
    """
    Walk upward from 'start_dir' looking for 'defaults/org.yaml'.
    Returns the path of org.yaml or None if not found.
    """
    for parent in [start_dir] + list(start_dir.parents):
        candidate = parent / "defaults" / "org.yaml"
        if candidate.exists():
            return candidate
    return None


def _resolve_known_paths(cfg: dict[str, Any], batch_dir: Path) -> None:
    """Resolve relative path settings against the batch directory, in place."""
    defaults = cfg.get("defaults")
    if not isinstance(defaults, dict):
        return
    for section, key in _PATH_KEYS:
        block = defaults.get(section)
        if not isinstance(block, dict):
            continue
        raw_path = block.get(key)
        if isinstance(raw_path, str) and raw_path:
            p = Path(raw_path)
            if not p.is_absolute():
                block[key] = str((batch_dir / p).resolve())


def _print_yaml_content(data: dict[str, Any], logger: Logger) -> None:
    """Dump YAML content line by line for debug mode."""
    yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    for line in yaml_str.split("\n"):
        if line.strip():
            logger.debug("CONFIG", line)


def load_batch_config(
    batch_path: Path, logger: Logger | None = None
) -> dict[str, Any]:
    """Load and merge the effective configuration for a batch file.

    Performs the following operations:

    1. Read the batch YAML
    2. Find defaults/org.yaml by scanning upwards from the batch directory
    3. Merge: org -> batch (dicts deep-merge, lists replace)
    4. Resolve known relative paths against the batch directory

    Args:
        batch_path: Path to the batch YAML file.
        logger: Optional logger.

    Returns:
        The merged configuration dict.

    Raises:
        ConfigError: On YAML parse errors, empty files, a non-mapping top
            level, or if the batch file is missing.
    """
    logger = resolve_logger(logger)
    batch_path = batch_path.resolve()
    batch_dir = batch_path.parent

    logger.verbose("CONFIG", f"Loading batch: {batch_path}")
    batch_obj = _load_yaml_file(batch_path)
    if not isinstance(batch_obj, dict):
        raise ConfigError(f"top-level YAML must be a mapping (dict): {batch_path}")

    merged: dict[str, Any] = {}
    org_path = _find_org_defaults(batch_dir)
    if org_path:
        logger.verbose("CONFIG", f"Loading org defaults: {org_path}")
        org_defaults = _load_yaml_file(org_path)
        if not isinstance(org_defaults, dict):
            raise ConfigError(f"top-level YAML must be a mapping (dict): {org_path}")
        merged = _deep_merge_dicts(merged, org_defaults)

    merged = _deep_merge_dicts(merged, batch_obj)
    logger.debug("CONFIG", "--- Final Merged Configuration ---")
    _print_yaml_content(merged, logger)

    # org-level relative paths are treated as relative to the batch too
    _resolve_known_paths(merged, batch_dir)
    return merged
