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

"""Chunked content upload to Intune storage.

Intune hands out a time-limited storage URI (SAS) for each content file. The
encrypted package is pushed there in fixed-size blocks, then committed with
one block-list call. Long uploads outlive the URI, so the uploader renews it
on a timer between blocks.

Protocol:

1. Split the file into ``ceil(size / chunk_size)`` blocks (an empty file is
   one empty block).
2. For block ``n`` PUT ``<uri>&comp=block&blockid=<id>`` where
   ``id = base64(ascii("%04d" % n))``.
3. After every block except the last, renew the URI if at least
   ``renewal_interval`` seconds passed since the last renewal (or start).
   Renewal = POST renewUpload, then wait for AzureStorageUriRenewal.
4. PUT ``<uri>&comp=blocklist`` with an XML ``<BlockList>`` listing every id
   as ``<Latest>`` in generation order.

Block PUTs are idempotent per block id and retry with backoff. The block
list commit is never retried and a failed renewal aborts the upload; no
partial commit is ever made.

Constants:

- DEFAULT_CHUNK_SIZE (int): 6 MiB per block.
- DEFAULT_RENEWAL_INTERVAL (float): 450 seconds (7.5 minutes), under the
  backend's URI lifetime.

Example:
    ```python
    from intunepublisher.io.upload import ContentFileTarget, upload_file

    target = ContentFileTarget(client, file_path, sas_uri)
    session = upload_file(client, target, Path("IntunePackage.intunewin"))
    print(f"Committed {len(session.block_ids)} blocks")
    ```
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
import math
from pathlib import Path
import random
import time
from typing import Any, Protocol
from xml.sax.saxutils import escape

from intunepublisher.exceptions import NetworkError, OperationCancelledError
from intunepublisher.logging import Logger, resolve_logger
from intunepublisher.processing import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    STAGE_STORAGE_URI_RENEWAL,
    CancellationToken,
    wait_for_processing,
)

DEFAULT_CHUNK_SIZE = 6 * 1024 * 1024
DEFAULT_RENEWAL_INTERVAL = 450.0
DEFAULT_BLOCK_RETRIES = 3

BLOB_HEADERS = {"x-ms-blob-type": "BlockBlob"}


class BlobWriter(Protocol):
    """The part of GraphClient the uploader needs."""

    def put_blob(
        self, url: str, data: bytes | str, headers: dict[str, str] | None = None
    ) -> None: ...


class RenewableTarget(Protocol):
    """An upload destination whose URI must be refreshed periodically."""

    @property
    def uri(self) -> str: ...

    def renew(self) -> None: ...


def block_id(index: int) -> str:
    """Return the block id for sequence number ``index``.

    Example:
        ```python
        block_id(12)  # base64(b"0012") == "MDAxMg=="
        ```
    """
    return base64.b64encode(f"{index:04d}".encode("ascii")).decode("ascii")


def chunk_count(file_size: int, chunk_size: int) -> int:
    """Number of blocks for a file; an empty file still has one block."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return max(1, math.ceil(file_size / chunk_size))


def chunk_ranges(file_size: int, chunk_size: int) -> list[tuple[int, int]]:
    """(offset, length) of every block, in upload order.

    The last block is ``file_size - index * chunk_size`` long and may be
    shorter than ``chunk_size``.
    """
    count = chunk_count(file_size, chunk_size)
    ranges = []
    for index in range(count):
        offset = index * chunk_size
        ranges.append((offset, min(chunk_size, file_size - offset)))
    return ranges


def block_list_xml(block_ids: list[str]) -> str:
    """Render the block-list commit body, ids in commit order."""
    latest = "".join(f"<Latest>{escape(bid)}</Latest>" for bid in block_ids)
    return f'<?xml version="1.0" encoding="utf-8"?><BlockList>{latest}</BlockList>'


def _with_query(uri: str, query: str) -> str:
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{query}"


@dataclass
class TransferSession:
    """One in-progress chunked upload.

    Attributes:
        target: Renewable storage destination.
        file_size: Total bytes to upload.
        chunk_size: Block size in bytes.
        renewed_at: Clock reading at start or at the last renewal.
        block_ids: Ids of the blocks uploaded so far, in generation order.
        renewals: Number of renewals performed.
    """

    target: RenewableTarget
    file_size: int
    chunk_size: int
    renewed_at: float
    block_ids: list[str] = field(default_factory=list)
    renewals: int = 0

    def due_for_renewal(self, now: float, interval: float) -> bool:
        return now - self.renewed_at >= interval

    def next_block_id(self) -> str:
        bid = block_id(len(self.block_ids))
        self.block_ids.append(bid)
        return bid


class ContentFileTarget:
    """Renewable target backed by an Intune content file entry.

    Args:
        client: GraphClient used for the renew call and the polling.
        file_path: Graph path of the content file, i.e.
            ``deviceAppManagement/mobileApps/{app}/microsoft.graph.win32LobApp/
            contentVersions/{version}/files/{file}``.
        uri: The storage URI returned by AzureStorageUriRequest.
        poll_interval: Seconds between renewal polls.
        max_attempts: Poll budget for each renewal.
        cancel: Optional cancellation token passed to the waiter.
        logger: Optional logger.
    """

    def __init__(
        self,
        client: Any,
        file_path: str,
        uri: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cancel: CancellationToken | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self.file_path = file_path
        self._uri = uri
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.cancel = cancel
        self.logger = resolve_logger(logger)

    @property
    def uri(self) -> str:
        return self._uri

    def renew(self) -> None:
        self.logger.verbose("UPLOAD", "Renewing storage URI...")
        self._client.post(f"{self.file_path}/renewUpload")
        file_info = wait_for_processing(
            self._client,
            self.file_path,
            STAGE_STORAGE_URI_RENEWAL,
            poll_interval=self.poll_interval,
            max_attempts=self.max_attempts,
            cancel=self.cancel,
            logger=self.logger,
        )
        self._uri = file_info.get("azureStorageUri") or self._uri


def _read_chunks(
    file_path: Path, ranges: list[tuple[int, int]]
) -> Iterator[tuple[int, bytes]]:
    with file_path.open("rb") as f:
        for index, (offset, length) in enumerate(ranges):
            f.seek(offset)
            yield index, f.read(length)


def _put_block(
    writer: BlobWriter,
    url: str,
    data: bytes,
    retries: int,
    sleep: Callable[[float], Any],
    logger: Logger,
    cancel: CancellationToken | None = None,
) -> None:
    """PUT one block, retrying transient failures with jittered backoff.

    With a token the backoff waits on it instead of ``sleep``, so a cancel
    during a long delay ends the upload at once.
    """
    attempt = 0
    while True:
        try:
            writer.put_blob(url, data, BLOB_HEADERS)
            return
        except NetworkError as err:
            # 4xx other than 408/429 will not get better on retry
            status = err.status_code
            retryable = status is None or status in (408, 429) or status >= 500
            if not retryable or attempt >= retries:
                raise
            delay = min(0.5 * (2**attempt), 30.0) * random.uniform(0.8, 1.2)
            logger.verbose(
                "UPLOAD",
                f"Block PUT failed ({err}), retry {attempt + 1}/{retries} "
                f"in {delay:.1f}s",
            )
            if cancel is None:
                sleep(delay)
            elif cancel.sleep(delay):
                raise OperationCancelledError("Upload cancelled") from err
            attempt += 1


def upload_file(
    writer: BlobWriter,
    target: RenewableTarget,
    file_path: Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    renewal_interval: float = DEFAULT_RENEWAL_INTERVAL,
    block_retries: int = DEFAULT_BLOCK_RETRIES,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Any] = time.sleep,
    cancel: CancellationToken | None = None,
    logger: Logger | None = None,
) -> TransferSession:
    """Upload ``file_path`` to ``target`` in blocks and commit the block list.

    Args:
        writer: Object with ``put_blob`` (GraphClient).
        target: Renewable destination; ``target.uri`` is read per request.
        file_path: File to upload.
        chunk_size: Block size in bytes. Default 6 MiB.
        renewal_interval: Seconds between URI renewals. Default 450.
        block_retries: Retries per block PUT on transient failures.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep used between block retries when no token is given.
        cancel: Optional token checked before every block and waited on
            during retry backoff.
        logger: Optional logger.

    Returns:
        The finished TransferSession (ids in commit order).

    Raises:
        NetworkError: If a block PUT exhausts its retries or the commit fails.
        ProcessingError: If a renewal ends in a fatal state.
        ProcessingTimeoutError: If a renewal never completes.
        OperationCancelledError: If cancelled between blocks or during a
            retry backoff.
        OSError: If the file cannot be read.
    """
    logger = resolve_logger(logger)
    file_path = Path(file_path)
    file_size = file_path.stat().st_size
    ranges = chunk_ranges(file_size, chunk_size)
    last_index = len(ranges) - 1

    session = TransferSession(
        target=target,
        file_size=file_size,
        chunk_size=chunk_size,
        renewed_at=clock(),
    )
    logger.verbose(
        "UPLOAD",
        f"Uploading {file_path.name} ({file_size} bytes) in {len(ranges)} block(s)",
    )

    for index, data in _read_chunks(file_path, ranges):
        if cancel is not None:
            cancel.raise_if_cancelled("Upload")

        bid = session.next_block_id()
        url = _with_query(target.uri, f"comp=block&blockid={bid}")
        _put_block(writer, url, data, block_retries, sleep, logger, cancel)
        logger.debug("UPLOAD", f"Block {index + 1}/{len(ranges)} ({len(data)} bytes)")

        if index < last_index and session.due_for_renewal(clock(), renewal_interval):
            target.renew()
            session.renewed_at = clock()
            session.renewals += 1

    logger.verbose("UPLOAD", f"Committing block list ({len(session.block_ids)} ids)")
    writer.put_blob(
        _with_query(target.uri, "comp=blocklist"),
        block_list_xml(session.block_ids),
        {"Content-Type": "application/xml"},
    )
    return session
