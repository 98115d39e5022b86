"""
Pytest configuration and shared fixtures for intunepublisher tests.

This module provides reusable fixtures and test doubles used across
the test suite:

- FakeGraphClient: in-memory Graph that records every call
- FakeScriptGenerator / FakePackager: collaborator doubles
- create_yaml_file: factory for batch and org-defaults files
"""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any

import pytest
import yaml

from intunepublisher.collaborators import BuiltPackage, PackageManifest
from intunepublisher.exceptions import NetworkError
from intunepublisher.graph.payloads import FileEncryptionInfo

GRAPH_URL = "https://graph.test/beta"
STORAGE_URL = "https://storage.test"

CREATE_COLLECTIONS = (
    "groups",
    "deviceManagement/deviceHealthScripts",
    "deviceAppManagement/mobileApps",
)


def _filter_value(filter_expr: str | None) -> str | None:
    """Pull the literal out of "displayName eq '...'"."""
    if not filter_expr:
        return None
    literal = filter_expr.split(" eq ", 1)[1]
    return literal[1:-1].replace("''", "'")


class FakeGraphClient:
    """In-memory stand-in for GraphClient.

    Collections in CREATE_COLLECTIONS hold created resources. Content files
    report azureStorageUriRequestSuccess until committed, then
    ``commit_state``. Storage URIs embed the app id so tests can fail the
    upload of one specific app.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.bodies: dict[str, list[Any]] = {}
        self.resources: dict[str, list[dict[str, Any]]] = {
            c: [] for c in CREATE_COLLECTIONS
        }
        self.blobs: list[tuple[str, Any, dict[str, str] | None]] = []
        self.committed_files: set[str] = set()
        self.commit_state = "commitFileSuccess"
        self.fail_upload_for: set[str] = set()
        self._ids = itertools.count(1)

    # helpers for tests
    def add_resource(self, collection: str, **fields: Any) -> dict[str, Any]:
        item = {"id": f"existing-{next(self._ids)}", **fields}
        self.resources[collection].append(item)
        return item

    def app_id_for(self, display_name: str) -> str | None:
        for app in self.resources["deviceAppManagement/mobileApps"]:
            if app.get("displayName") == display_name:
                return app["id"]
        return None

    def count(self, method: str, path: str | None = None, suffix: str | None = None) -> int:
        return sum(
            1
            for m, p in self.calls
            if m == method
            and (path is None or p == path)
            and (suffix is None or p.endswith(suffix))
        )

    @property
    def mutating_calls(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("POST", "PATCH", "DELETE", "PUT")]

    # GraphClient surface
    def list(self, path: str, *, filter: str | None = None, select=None):
        self.calls.append(("LIST", path))
        wanted = _filter_value(filter)
        items = self.resources.get(path, [])
        # Graph's eq filter is case-insensitive
        return [
            dict(item)
            for item in items
            if wanted is None or str(item.get("displayName", "")).lower() == wanted.lower()
        ]

    def get(self, path: str, params=None) -> dict[str, Any]:
        self.calls.append(("GET", path))
        if "/files/" in path:
            app_id = path.split("/")[2]
            if path in self.committed_files:
                return {"uploadState": self.commit_state}
            return {
                "uploadState": "azureStorageUriRequestSuccess",
                "azureStorageUri": f"{STORAGE_URL}/{app_id}/content?sig=abc",
            }
        return {}

    def post(self, path: str, json: dict[str, Any] | None = None):
        self.calls.append(("POST", path))
        self.bodies.setdefault(path, []).append(json)
        if path in self.resources:
            item = dict(json or {})
            item["id"] = f"{path.rsplit('/', 1)[-1]}-{next(self._ids)}"
            self.resources[path].append(item)
            return {"id": item["id"]}
        if path.endswith("/contentVersions"):
            return {"id": str(next(self._ids))}
        if path.endswith("/files"):
            return {"id": f"file-{next(self._ids)}"}
        if path.endswith("/commit"):
            self.committed_files.add(path[: -len("/commit")])
        return None

    def patch(self, path: str, json: dict[str, Any]):
        self.calls.append(("PATCH", path))
        self.bodies.setdefault(path, []).append(json)
        collection, _, resource_id = path.rpartition("/")
        for item in self.resources.get(collection, []):
            if item["id"] == resource_id:
                item.update(json)
        return None

    def delete(self, path: str) -> None:
        self.calls.append(("DELETE", path))

    def put_blob(self, url: str, data, headers=None) -> None:
        self.calls.append(("PUT", url))
        for name in self.fail_upload_for:
            app_id = self.app_id_for(name)
            if app_id and f"/{app_id}/" in url:
                raise NetworkError("PUT to storage returned HTTP 403: denied", status_code=403)
        self.blobs.append((url, data, headers))


class FakeScriptGenerator:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    def generate_script(self, package_id: str, display_name: str, kind) -> str:
        self.calls.append((package_id, display_name, kind.value))
        return f"# {kind.value} script for {package_id}\nexit 0\n"


class FakePackager:
    """Writes a small encrypted payload and returns a manifest for it."""

    def __init__(self, payload: bytes = b"0123456789", msi=None) -> None:
        self.payload = payload
        self.msi = msi
        self.calls: list[tuple[Path, str, Path]] = []

    def build_package(self, script_dir: Path, setup_file: str, dest_dir: Path) -> BuiltPackage:
        self.calls.append((script_dir, setup_file, dest_dir))
        if not (script_dir / setup_file).is_file():
            raise AssertionError(f"setup file missing: {script_dir / setup_file}")
        content_dir = dest_dir / "content"
        content_dir.mkdir(parents=True, exist_ok=True)
        content_path = content_dir / "IntunePackage.intunewin"
        content_path.write_bytes(self.payload)
        package_path = dest_dir / "package.intunewin"
        package_path.write_bytes(b"PK")
        manifest = PackageManifest(
            setup_file=setup_file,
            unencrypted_size=len(self.payload) - 2,
            encrypted_size=len(self.payload),
            encryption=FileEncryptionInfo(
                encryption_key="key",
                initialization_vector="iv",
                mac="mac",
                mac_key="mackey",
                file_digest="digest",
            ),
            msi=self.msi,
        )
        return BuiltPackage(package_path, content_path, manifest)


class NoIcon:
    def find_icon(self, package_id: str, display_name: str) -> bytes | None:
        return None


@pytest.fixture
def tmp_test_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for test artifacts.

    Automatically cleaned up after test completion.
    """
    return tmp_path


@pytest.fixture
def fake_graph() -> FakeGraphClient:
    return FakeGraphClient()


@pytest.fixture
def sample_batch_data() -> dict[str, Any]:
    """Provide a complete batch configuration."""
    return {
        "apiVersion": "intunepublisher/v1",
        "defaults": {
            "deployment": {"work_dir": "./work", "available_install": "None"},
            "processing": {"poll_interval": 0, "max_attempts": 5},
        },
        "packages": [
            {"id": "Acme.Tool", "name": "Acme Tool"},
            {"id": "Beta.App", "name": "Beta App", "available_install": "User"},
        ],
    }


@pytest.fixture
def create_yaml_file(tmp_test_dir: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("batch.yaml", {"key": "value"})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_test_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create


@pytest.fixture
def fake_generator() -> FakeScriptGenerator:
    return FakeScriptGenerator()


@pytest.fixture
def fake_packager() -> FakePackager:
    return FakePackager()


@pytest.fixture
def no_icon() -> NoIcon:
    return NoIcon()
