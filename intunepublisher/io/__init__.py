"""Input/Output operations for intunepublisher.

Modules:

upload : module
    Chunked block upload to Intune storage URIs with timed URI renewal.

Public API:

upload_file : function
    Upload a file in blocks and commit the block list.
ContentFileTarget : class
    Renewable storage target backed by an Intune content file.

Example:
    from pathlib import Path
    from intunepublisher.io import ContentFileTarget, upload_file

    target = ContentFileTarget(client, file_path, sas_uri)
    upload_file(client, target, Path("IntunePackage.intunewin"))
"""

from .upload import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_RENEWAL_INTERVAL,
    ContentFileTarget,
    TransferSession,
    block_id,
    block_list_xml,
    chunk_ranges,
    upload_file,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_RENEWAL_INTERVAL",
    "ContentFileTarget",
    "TransferSession",
    "block_id",
    "block_list_xml",
    "chunk_ranges",
    "upload_file",
]
