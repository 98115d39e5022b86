"""
Tests for intunepublisher.reconcile module.

Tests get-or-create reconciliation including:
- Naming convention per resource kind
- Idempotence (one create for two calls)
- Exact, case-sensitive matching
- OData quote escaping in the lookup filter
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import requests_mock

from intunepublisher.exceptions import DeploymentError, NetworkError
from intunepublisher.graph import GraphClient
from intunepublisher.graph.payloads import GroupPayload
from intunepublisher.reconcile import (
    ResourceKind,
    ResourceReconciler,
    collection_for,
    resource_name,
)

pytestmark = pytest.mark.unit

BASE = "https://graph.test/beta"
GROUPS = f"{BASE}/groups"
TAG = "Published by intunepublisher"


@pytest.fixture
def reconciler() -> ResourceReconciler:
    client = GraphClient(lambda: "token", base_url=BASE)
    return ResourceReconciler(client, TAG)


def _group_payload(name: str):
    return lambda tag: GroupPayload.for_name(name, tag)


class TestNaming:
    """Tests for derived names and collections."""

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (ResourceKind.INSTALL, "Acme Tool Required"),
            (ResourceKind.UNINSTALL, "Acme Tool Uninstall"),
            (ResourceKind.REMEDIATION, "Acme Tool Upgrade"),
        ],
    )
    def test_resource_name(self, kind, expected):
        assert resource_name(kind, "Acme Tool") == expected

    def test_collections(self):
        assert collection_for(ResourceKind.INSTALL) == "groups"
        assert collection_for(ResourceKind.REMEDIATION) == "deviceManagement/deviceHealthScripts"


class TestEnsureResource:
    """Tests for ensure_resource."""

    def test_creates_once_then_reuses(self, reconciler):
        """Test that two calls for the same name create exactly once."""
        name = "Acme Tool Required"
        with requests_mock.Mocker() as m:
            m.get(
                GROUPS,
                [
                    {"json": {"value": []}},
                    {"json": {"value": [{"id": "g-1", "displayName": name}]}},
                ],
            )
            m.post(GROUPS, json={"id": "g-1"}, status_code=201)

            first = reconciler.ensure_resource(ResourceKind.INSTALL, name, _group_payload(name))
            second = reconciler.ensure_resource(ResourceKind.INSTALL, name, _group_payload(name))

            posts = [r for r in m.request_history if r.method == "POST"]
            assert len(posts) == 1
            assert posts[0].json()["description"] == TAG
            assert posts[0].json()["securityEnabled"] is True

        assert first.id == second.id == "g-1"
        assert first.created and not second.created

    def test_existing_resource_is_not_modified(self, reconciler):
        """Test that a found resource causes no create and no payload build."""
        built = []
        with requests_mock.Mocker() as m:
            m.get(GROUPS, json={"value": [{"id": "g-9", "displayName": "Acme Tool Required"}]})

            result = reconciler.ensure_resource(
                ResourceKind.INSTALL,
                "Acme Tool Required",
                lambda tag: built.append(tag),
            )

            assert all(r.method == "GET" for r in m.request_history)

        assert result.id == "g-9"
        assert built == []

    def test_match_is_case_sensitive(self, reconciler):
        """Test that a case-insensitive filter hit with other casing is ignored."""
        with requests_mock.Mocker() as m:
            m.get(GROUPS, json={"value": [{"id": "g-x", "displayName": "acme tool required"}]})
            m.post(GROUPS, json={"id": "g-new"}, status_code=201)

            result = reconciler.ensure_resource(
                ResourceKind.INSTALL,
                "Acme Tool Required",
                _group_payload("Acme Tool Required"),
            )

        assert result.id == "g-new"
        assert result.created

    def test_first_exact_match_wins(self, reconciler):
        with requests_mock.Mocker() as m:
            m.get(
                GROUPS,
                json={
                    "value": [
                        {"id": "g-1", "displayName": "Acme Tool Required"},
                        {"id": "g-2", "displayName": "Acme Tool Required"},
                    ]
                },
            )
            result = reconciler.ensure_resource(
                ResourceKind.INSTALL, "Acme Tool Required", _group_payload("x")
            )

        assert result.id == "g-1"

    def test_filter_escapes_quotes(self, reconciler):
        """Test that single quotes are doubled in the OData literal."""
        with requests_mock.Mocker() as m:
            m.get(GROUPS, json={"value": []})
            m.post(GROUPS, json={"id": "g-1"}, status_code=201)

            reconciler.ensure_resource(
                ResourceKind.INSTALL,
                "O'Reilly Reader Required",
                _group_payload("O'Reilly Reader Required"),
            )

            query = parse_qs(urlparse(m.request_history[0].url).query)

        assert query["$filter"] == ["displayName eq 'O''Reilly Reader Required'"]

    def test_missing_id_raises(self, reconciler):
        with requests_mock.Mocker() as m:
            m.get(GROUPS, json={"value": []})
            m.post(GROUPS, json={}, status_code=201)

            with pytest.raises(DeploymentError, match="no id"):
                reconciler.ensure_resource(
                    ResourceKind.INSTALL, "Acme Tool Required", _group_payload("a")
                )

    def test_create_conflict_propagates(self, reconciler):
        """Test that a backend duplicate-name rejection is raised, not swallowed."""
        with requests_mock.Mocker() as m:
            m.get(GROUPS, json={"value": []})
            m.post(
                GROUPS,
                status_code=400,
                json={"error": {"message": "Another object with the same value exists"}},
            )

            with pytest.raises(NetworkError, match="same value") as exc_info:
                reconciler.ensure_resource(
                    ResourceKind.INSTALL, "Acme Tool Required", _group_payload("a")
                )

        assert exc_info.value.status_code == 400
