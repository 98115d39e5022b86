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

"""Waiting on asynchronous Intune processing jobs.

Intune processes content files asynchronously. After requesting a storage
URI, renewing it, or committing an uploaded file, the caller has to poll the
content file until its state leaves ``<stage>Pending``. This module provides
one poll loop for all of those stages; the stage name is the only thing that
varies between them.

State Machine (per poll):

1. GET the resource.
2. ``<stage>Success`` -> return the fetched resource.
3. ``<stage>Pending`` -> sleep ``poll_interval`` and poll again, until the
   attempt budget runs out (ProcessingTimeoutError).
4. Anything else, including ``<stage>Failed`` and ``<stage>TimedOut`` ->
   ProcessingError immediately, no further polling.

State values are compared case-insensitively: Graph reports
``azureStorageUriRenewalSuccess`` for stage ``AzureStorageUriRenewal``.

Sleeping goes through a CancellationToken, so an operator can stop a stuck
wait from another thread (the CLI cancels on Ctrl+C) without killing the
process.

Example:
    Wait for a file commit:
        ```python
        from intunepublisher.processing import STAGE_COMMIT_FILE, wait_for_processing

        file_info = wait_for_processing(client, file_path, STAGE_COMMIT_FILE)
        print(file_info["isCommitted"])
        ```
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import threading
from typing import Any, Protocol

from intunepublisher.exceptions import (
    OperationCancelledError,
    ProcessingError,
    ProcessingTimeoutError,
)
from intunepublisher.logging import Logger, resolve_logger

STAGE_STORAGE_URI_REQUEST = "AzureStorageUriRequest"
STAGE_STORAGE_URI_RENEWAL = "AzureStorageUriRenewal"
STAGE_COMMIT_FILE = "CommitFile"

DEFAULT_STATE_FIELD = "uploadState"
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 600


class ResourceReader(Protocol):
    """The part of GraphClient the waiter needs."""

    def get(self, path: str) -> dict[str, Any]: ...


class CancellationToken:
    """Cancellable sleep shared by waits and uploads.

    Example:
        ```python
        token = CancellationToken()
        signal.signal(signal.SIGINT, lambda *_: token.cancel())
        wait_for_processing(client, path, STAGE_COMMIT_FILE, cancel=token)
        ```
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled meanwhile."""
        return self._event.wait(max(seconds, 0))

    def raise_if_cancelled(self, what: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"{what} cancelled")


class PollOutcome(Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FATAL = "fatal"


def classify_state(state: str | None, stage: str) -> PollOutcome:
    """Map an observed state value to the waiter's next move.

    Args:
        state: Value of the resource's state field (may be None).
        stage: Stage name, e.g. "CommitFile".

    Returns:
        SUCCESS for ``<stage>Success``, PENDING for ``<stage>Pending``,
        FATAL for anything else.
    """
    if not isinstance(state, str):
        return PollOutcome.FATAL
    observed = state.lower()
    if observed == f"{stage}Success".lower():
        return PollOutcome.SUCCESS
    if observed == f"{stage}Pending".lower():
        return PollOutcome.PENDING
    return PollOutcome.FATAL


@dataclass
class ProcessingHandle:
    """A backend-tracked job being waited on.

    Attributes:
        resource: Graph path (or absolute URL) of the resource to poll.
        stage: Stage name whose Pending/Success suffixes are expected.
        poll_interval: Seconds to sleep after a Pending poll.
        remaining_attempts: Polls left before giving up.
        state_field: Name of the property holding the state.
    """

    resource: str
    stage: str
    poll_interval: float = DEFAULT_POLL_INTERVAL
    remaining_attempts: int = DEFAULT_MAX_ATTEMPTS
    state_field: str = DEFAULT_STATE_FIELD


def wait_for_processing(
    client: ResourceReader,
    resource: str,
    stage: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    state_field: str = DEFAULT_STATE_FIELD,
    cancel: CancellationToken | None = None,
    logger: Logger | None = None,
) -> dict[str, Any]:
    """Block until ``resource`` reaches ``<stage>Success``.

    Args:
        client: Object with a ``get(path) -> dict`` method (GraphClient).
        resource: Path of the resource to poll.
        stage: Stage name, e.g. "AzureStorageUriRenewal".
        poll_interval: Seconds between polls while Pending. Default 5.
        max_attempts: Maximum number of polls. Default 600.
        state_field: Property holding the state. Default "uploadState".
        cancel: Optional token; cancelling it aborts the wait.
        logger: Optional logger.

    Returns:
        The resource as fetched by the poll that observed Success.

    Raises:
        ProcessingError: On any state other than Pending/Success.
        ProcessingTimeoutError: If every poll in the budget saw Pending.
        OperationCancelledError: If the token was cancelled.
        NetworkError: If a poll request fails (not retried here).
        ValueError: If max_attempts is less than 1.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    logger = resolve_logger(logger)
    token = cancel or CancellationToken()
    handle = ProcessingHandle(
        resource=resource,
        stage=stage,
        poll_interval=poll_interval,
        remaining_attempts=max_attempts,
        state_field=state_field,
    )
    attempts = 0

    logger.verbose("WAIT", f"Waiting for {stage} on {resource}")
    while handle.remaining_attempts > 0:
        token.raise_if_cancelled(f"Waiting for {stage}")

        current = client.get(handle.resource)
        attempts += 1
        handle.remaining_attempts -= 1

        state = current.get(handle.state_field)
        outcome = classify_state(state, handle.stage)
        logger.debug("WAIT", f"{stage} poll {attempts}: {state}")

        if outcome is PollOutcome.SUCCESS:
            logger.verbose("WAIT", f"{stage} succeeded after {attempts} poll(s)")
            return current
        if outcome is PollOutcome.FATAL:
            raise ProcessingError(stage, state)

        if handle.remaining_attempts > 0 and token.sleep(handle.poll_interval):
            raise OperationCancelledError(f"Waiting for {stage} cancelled")

    raise ProcessingTimeoutError(stage, attempts)
