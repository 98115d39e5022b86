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

"""Command-line interface for intunepublisher.

This module provides the main CLI entry point for the ipub tool.

Commands:

    validate: Validate batch syntax and configuration
    publish: Publish the packages of a batch to Intune

Example:
    Validate a batch:
        ```bash
        $ ipub validate batches/weekly.yaml
        ```

    Publish one package of a batch, offering it to all users:
        ```bash
        $ ipub publish batches/weekly.yaml --package Acme.Tool --available-install User
        ```

    Enable debug output:
        ```bash
        $ ipub publish batches/weekly.yaml --debug
        ```

Exit Codes:

- 0: Success (every package published or skipped)
- 1: Error (configuration error or at least one failed package)

Note:
    Ctrl+C during a publish run stops the current wait or upload and marks
    the packages that have not started as Skipped.

"""

from __future__ import annotations

import argparse
from importlib.metadata import version
from pathlib import Path
import signal
import sys

from intunepublisher.core import publish_packages
from intunepublisher.exceptions import PublisherError
from intunepublisher.graph import AvailableInstall
from intunepublisher.logging import get_logger
from intunepublisher.processing import CancellationToken
from intunepublisher.results import BatchSummary
from intunepublisher.validation import validate_batch


def cmd_validate(args: argparse.Namespace) -> int:
    """Handler for 'ipub validate' command.

    Returns:
        Exit code (0 for valid batch, 1 for invalid).
    """
    logger = get_logger(verbose=args.verbose, debug=False)
    batch_path = Path(args.batch).resolve()

    print(f"Validating batch: {batch_path}")
    print()

    result = validate_batch(batch_path, logger)

    print("=" * 70)
    print("VALIDATION RESULTS")
    print("=" * 70)
    print(f"Batch:         {result['batch_path']}")
    print(f"Status:        {result['status'].upper()}")
    print(f"Package Count: {result['package_count']}")
    print()

    if result["warnings"]:
        print(f"Warnings ({len(result['warnings'])}):")
        for warning in result["warnings"]:
            print(f"  [WARNING] {warning}")
        print()

    if result["errors"]:
        print(f"Errors ({len(result['errors'])}):")
        for error in result["errors"]:
            print(f"  [X] {error}")
        print()

    print("=" * 70)

    if result["status"] == "valid":
        print()
        print("[SUCCESS] Batch is valid!")
        return 0
    print()
    print(f"[FAILED] Batch has {len(result['errors'])} error(s)")
    return 1


def _print_summary(summary: BatchSummary) -> None:
    print("=" * 70)
    print("PUBLISH RESULTS")
    print("=" * 70)
    for unit in summary.units:
        print(f"{unit.status.value:<8} {unit.package_id} ({unit.display_name})")
        if unit.stages.app_id:
            print(f"         App ID: {unit.stages.app_id}")
        if unit.error:
            print(f"         {unit.error}")
    print("=" * 70)
    print(
        f"Succeeded: {summary.succeeded}  "
        f"Failed: {summary.failed}  "
        f"Skipped: {summary.skipped}"
    )
    print()


def cmd_publish(args: argparse.Namespace) -> int:
    """Handler for 'ipub publish' command.

    Loads the batch, authenticates once and publishes each selected package.
    Failed packages do not stop the batch; they set the exit code to 1.

    Returns:
        Exit code (0 when no package failed, 1 otherwise).
    """
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    batch_path = Path(args.batch).resolve()

    if not batch_path.exists():
        print(f"Error: Batch file not found: {batch_path}")
        return 1

    print(f"Publishing batch: {batch_path}")
    print()

    cancel = CancellationToken()

    def _on_interrupt(signum, frame):
        print()
        print("Interrupt received, cancelling after the current step...")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        summary = publish_packages(
            batch_path,
            package_ids=args.package,
            force=True if args.force else None,
            available_install=args.available_install,
            cancel=cancel,
            logger=logger,
        )
    except PublisherError as err:
        print(f"Error: {err}")
        if args.verbose or args.debug:
            import traceback

            traceback.print_exc()
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print()
    _print_summary(summary)

    if summary.failed:
        print(f"[FAILED] {summary.failed} package(s) failed")
        return 1
    print("[SUCCESS] Batch published!")
    return 0


def main() -> None:
    """Main entry point for the ipub CLI.

    This function is registered as the 'ipub' console script in pyproject.toml.
    """
    parser = argparse.ArgumentParser(
        prog="ipub",
        description="ipub - publish winget packages as Intune Win32 apps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"ipub {version('intunepublisher')}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=True,
    )

    # 'validate' command
    parser_validate = subparsers.add_parser(
        "validate",
        help="Validate batch syntax and configuration (no network calls)",
        description="Check batch YAML for syntax errors and configuration issues without calling Graph.",
    )
    parser_validate.add_argument(
        "batch",
        help="Path to the batch YAML file",
    )
    parser_validate.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show validation progress and details",
    )
    parser_validate.set_defaults(func=cmd_validate)

    # 'publish' command
    parser_publish = subparsers.add_parser(
        "publish",
        help="Publish the packages of a batch to Intune",
        description="Create groups, scripts, remediations and Win32 apps for each package in the batch.",
    )
    parser_publish.add_argument(
        "batch",
        help="Path to the batch YAML file",
    )
    parser_publish.add_argument(
        "--package",
        action="append",
        metavar="ID",
        help="Only publish this package id (repeatable)",
    )
    parser_publish.add_argument(
        "--force",
        action="store_true",
        help="Publish new content even if the app already exists",
    )
    parser_publish.add_argument(
        "--available-install",
        choices=[member.value for member in AvailableInstall],
        default=None,
        help="Also make the app available to User, Device, Both or None (default: from batch)",
    )
    parser_publish.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and high-level status updates",
    )
    parser_publish.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )
    parser_publish.set_defaults(func=cmd_publish)

    # Parse and dispatch
    args = parser.parse_args()

    # Call the appropriate command handler
    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
