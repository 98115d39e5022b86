"""
intunepublisher - publish winget packages to Microsoft Intune as Win32 apps.

Given a batch of winget package ids, intunepublisher creates everything an
Intune administrator would otherwise click together by hand: install and
uninstall groups, install/uninstall/detection scripts, an upgrade
remediation, the encrypted .intunewin content, and the app with its
assignments. Rerunning a batch is safe; existing groups, remediations and
apps are found by name and reused.

Key Features
------------
  - Chunked content upload with storage URI renewal and per-block retry
  - Polling of Intune's asynchronous processing with a cancellable wait
  - Get-or-create reconciliation of groups and remediations
  - Per-package failure isolation with a batch summary
  - Layered YAML configuration with organisation defaults

Quick Start
-----------
Validate a batch:

    $ ipub validate batches/weekly.yaml

Publish it:

    $ ipub publish batches/weekly.yaml

Package Structure
-----------------
cli : module
    Command-line interface with argparse.
core : module
    Batch publishing workflow.
orchestrator : module
    Per-package stage sequence and batch runner.
processing : module
    Waiting for Intune's asynchronous processing stages.
reconcile : module
    Get-or-create for named groups and remediations.
io : package
    Chunked content upload.
graph : package
    Graph REST client and typed payloads.
build : package
    Script generation and .intunewin packaging.
config : package
    YAML configuration loading and typed settings.

Public API
----------
    from intunepublisher.core import publish_packages
    from intunepublisher.orchestrator import DeploymentOrchestrator
    from intunepublisher.validation import validate_batch
    from intunepublisher.config import load_batch_config

For more details, see the individual module docstrings.

Project Information
-------------------
Author: Roger Cibrian
License: Apache-2.0
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "Publish winget packages to Microsoft Intune as Win32 apps"

# Re-export commonly used functions for convenience
from intunepublisher.config import load_batch_config
from intunepublisher.core import publish_packages
from intunepublisher.orchestrator import DeploymentOrchestrator
from intunepublisher.results import BatchSummary, DeploymentStatus, DeploymentUnit
from intunepublisher.validation import validate_batch

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "BatchSummary",
    "DeploymentOrchestrator",
    "DeploymentStatus",
    "DeploymentUnit",
    "load_batch_config",
    "publish_packages",
    "validate_batch",
]
