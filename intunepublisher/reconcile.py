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

"""Get-or-create for named Intune resources.

Groups and remediations are identified by display name only. Before creating
one, the reconciler looks it up by exact name; if it exists, its id is
returned untouched. Re-running a deployment therefore never duplicates a
resource it has already seen, and resources left behind by a failed run are
picked up again by the next one.

Naming Convention:

- Install     -> "{name} Required"
- Uninstall   -> "{name} Uninstall"
- Remediation -> "{name} Upgrade"

Every created resource carries the configured description tag so that
resources made by this tool can be found again in bulk.

Check-then-create is serialised per name within the process. Another process
creating the same name between the lookup and the create is not detected;
the backend's error for that case propagates as NetworkError.

Example:
    ```python
    from intunepublisher.graph.payloads import GroupPayload
    from intunepublisher.reconcile import ResourceKind, ResourceReconciler, resource_name

    reconciler = ResourceReconciler(client, "Published by intunepublisher")
    name = resource_name(ResourceKind.INSTALL, "Acme Tool")
    group = reconciler.ensure_resource(
        ResourceKind.INSTALL, name, lambda desc: GroupPayload.for_name(name, desc)
    )
    print(group.id, "created" if group.created else "existing")
    ```
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import threading
from typing import Any, Protocol

from intunepublisher.exceptions import DeploymentError
from intunepublisher.graph.client import odata_equals
from intunepublisher.logging import Logger, resolve_logger


class ResourceKind(str, Enum):
    """Kinds of named resources the engine reconciles."""

    INSTALL = "Install"
    UNINSTALL = "Uninstall"
    REMEDIATION = "Remediation"


_NAME_SUFFIXES = {
    ResourceKind.INSTALL: "Required",
    ResourceKind.UNINSTALL: "Uninstall",
    ResourceKind.REMEDIATION: "Upgrade",
}

_COLLECTIONS = {
    ResourceKind.INSTALL: "groups",
    ResourceKind.UNINSTALL: "groups",
    ResourceKind.REMEDIATION: "deviceManagement/deviceHealthScripts",
}


def resource_name(kind: ResourceKind, display_name: str) -> str:
    """Derive a resource's display name from the package display name."""
    return f"{display_name} {_NAME_SUFFIXES[kind]}"


def collection_for(kind: ResourceKind) -> str:
    """Graph collection path holding resources of ``kind``."""
    return _COLLECTIONS[kind]


class GraphPayload(Protocol):
    def to_graph(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class ReconciledResource:
    """A named resource known to exist in the backend.

    Attributes:
        kind: Resource kind.
        name: Exact display name.
        id: Backend identifier.
        created: True if this call created it, False if it already existed.
    """

    kind: ResourceKind
    name: str
    id: str
    created: bool


class ResourceReconciler:
    """Ensures named resources exist exactly once.

    Args:
        client: GraphClient (needs ``list`` and ``post``).
        description_tag: Text put in the description of every created resource.
        logger: Optional logger.
    """

    def __init__(
        self, client: Any, description_tag: str, logger: Logger | None = None
    ) -> None:
        self.client = client
        self.description_tag = description_tag
        self.logger = resolve_logger(logger)
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, collection: str, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((collection, name), threading.Lock())

    def find(self, kind: ResourceKind, name: str) -> dict[str, Any] | None:
        """Return the first resource whose displayName equals ``name``.

        The Graph filter is case-insensitive, so candidates are narrowed to
        an exact, case-sensitive match here.
        """
        candidates = self.client.list(
            collection_for(kind),
            filter=odata_equals("displayName", name),
            select=["id", "displayName", "description"],
        )
        for item in candidates:
            if item.get("displayName") == name:
                return item
        return None

    def ensure_resource(
        self,
        kind: ResourceKind,
        name: str,
        build_payload: Callable[[str], GraphPayload],
    ) -> ReconciledResource:
        """Return the id of resource ``name``, creating it if absent.

        Args:
            kind: Resource kind (selects the Graph collection).
            name: Exact display name (see resource_name()).
            build_payload: Called with the description tag only when the
                resource has to be created; returns a typed payload.

        Returns:
            ReconciledResource with the existing or newly created id.

        Raises:
            NetworkError: If the lookup or the create call fails (including a
                duplicate-name conflict reported by the backend).
            DeploymentError: If the backend's create response has no id.
        """
        collection = collection_for(kind)
        with self._lock_for(collection, name):
            existing = self.find(kind, name)
            if existing is not None:
                self.logger.verbose(
                    "RECONCILE", f"{kind.value} resource exists: {name} ({existing['id']})"
                )
                return ReconciledResource(kind, name, existing["id"], created=False)

            self.logger.verbose("RECONCILE", f"Creating {kind.value} resource: {name}")
            payload = build_payload(self.description_tag)
            created = self.client.post(collection, payload.to_graph()) or {}
            resource_id = created.get("id")
            if not resource_id:
                raise DeploymentError(f"Backend returned no id for created {name!r}")

            self.logger.verbose("RECONCILE", f"[OK] Created {name} ({resource_id})")
            return ReconciledResource(kind, name, resource_id, created=True)
