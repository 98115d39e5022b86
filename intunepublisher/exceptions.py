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

"""Exception hierarchy for intunepublisher.

This module defines the exceptions raised by the publishing engine so callers
can tell configuration mistakes apart from transport faults and from states
reported by the Intune backend itself:

- ConfigError: Batch file or settings problems
- NetworkError: HTTP failures talking to Graph or to blob storage
- PackagingError: Script persistence, packaging tool, or manifest problems
- ProcessingError: The backend reported a fatal processing state
- ProcessingTimeoutError: A processing wait ran out of attempts
- OperationCancelledError: An operator cancelled a running wait
- DeploymentError: The backend answered with something the orchestrator
  cannot continue from (e.g. a created resource without an id)

All exceptions inherit from PublisherError.

Example:
    Distinguishing backend failures from timeouts:
        ```python
        from intunepublisher.exceptions import (
            ProcessingError,
            ProcessingTimeoutError,
        )

        try:
            wait_for_processing(client, file_path, "CommitFile")
        except ProcessingTimeoutError as e:
            print(f"Still pending after {e.attempts} polls")
        except ProcessingError as e:
            print(f"Backend reported {e.state}")
        ```
"""

from __future__ import annotations

__all__ = [
    "PublisherError",
    "ConfigError",
    "NetworkError",
    "PackagingError",
    "ProcessingError",
    "ProcessingTimeoutError",
    "OperationCancelledError",
    "DeploymentError",
]


class PublisherError(Exception):
    """Base exception for all intunepublisher errors."""

    pass


class ConfigError(PublisherError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parse errors or a batch file that is not a mapping
    - Missing package ids or display names
    - Invalid setting values (negative chunk size, unknown
        available_install target, unknown license check mode)
    - Missing credentials in the environment
    """

    pass


class NetworkError(PublisherError):
    """Raised for HTTP/transport failures.

    Covers Graph API calls, block PUTs and the block-list commit against the
    storage URI. The HTTP status code is kept when one was received.

    Attributes:
        status_code: HTTP status of the failing response, or None when the
            request never got a response (DNS, connection reset, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PackagingError(PublisherError):
    """Raised for packaging/build-related errors.

    This exception is raised when there are problems with:

    - Writing generated scripts to the working directory
    - IntuneWinAppUtil.exe execution failures or timeouts
    - A .intunewin file without Detection.xml or encrypted content
    """

    pass


class ProcessingError(PublisherError):
    """Raised when a backend processing job reports a fatal state.

    Any state other than ``<stage>Pending`` or ``<stage>Success`` ends a
    wait immediately, including ``<stage>Failed`` and ``<stage>TimedOut``.

    Attributes:
        stage: The processing stage that was awaited.
        state: The state value the backend reported.
    """

    def __init__(self, stage: str, state: str | None) -> None:
        super().__init__(f"{stage} failed: backend reported state {state!r}")
        self.stage = stage
        self.state = state


class ProcessingTimeoutError(PublisherError):
    """Raised when a processing wait exhausts its attempt budget.

    Attributes:
        stage: The processing stage that was awaited.
        attempts: Number of polls made before giving up.
    """

    def __init__(self, stage: str, attempts: int) -> None:
        super().__init__(
            f"{stage} did not reach {stage}Success after {attempts} attempt(s)"
        )
        self.stage = stage
        self.attempts = attempts


class OperationCancelledError(PublisherError):
    """Raised when a cancellation token fires during a wait or upload."""

    pass


class DeploymentError(PublisherError):
    """Raised when a deployment cannot continue from a backend response."""

    pass
