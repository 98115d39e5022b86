"""
Tests for intunepublisher.collaborators module.

Tests the default icon resolver and licensing probes.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from intunepublisher.collaborators import (
    DirectoryIconResolver,
    GraphLicensingProbe,
    StaticLicensingProbe,
)

pytestmark = pytest.mark.unit


class TestDirectoryIconResolver:
    """Tests for icon lookup."""

    def test_no_directory(self):
        assert DirectoryIconResolver(None).find_icon("Acme.Tool", "Acme Tool") is None

    def test_missing_directory(self, tmp_path):
        resolver = DirectoryIconResolver(tmp_path / "nope")

        assert resolver.find_icon("Acme.Tool", "Acme Tool") is None

    def test_package_id_before_display_name(self, tmp_path):
        (tmp_path / "Acme.Tool.png").write_bytes(b"by-id")
        (tmp_path / "Acme Tool.png").write_bytes(b"by-name")

        assert DirectoryIconResolver(tmp_path).find_icon("Acme.Tool", "Acme Tool") == b"by-id"

    def test_display_name_and_jpg(self, tmp_path):
        (tmp_path / "Acme Tool.jpg").write_bytes(b"jpeg")

        assert DirectoryIconResolver(tmp_path).find_icon("Acme.Tool", "Acme Tool") == b"jpeg"


class TestLicensingProbes:
    """Tests for remediation entitlement checks."""

    def test_static(self):
        assert StaticLicensingProbe(True).has_entitlement() is True
        assert StaticLicensingProbe(False).has_entitlement() is False

    def test_graph_probe_finds_plan(self):
        client = MagicMock()
        client.list.return_value = [
            {
                "skuPartNumber": "SPE_E3",
                "servicePlans": [
                    {"servicePlanName": "EXCHANGE_S_STANDARD", "provisioningStatus": "Success"},
                    {"servicePlanName": "win10_pro_ent_sub", "provisioningStatus": "Success"},
                ],
            }
        ]

        probe = GraphLicensingProbe(client)

        assert probe.has_entitlement() is True
        client.list.assert_called_once_with("subscribedSkus")

    def test_graph_probe_ignores_disabled_plans(self):
        client = MagicMock()
        client.list.return_value = [
            {
                "skuPartNumber": "SPE_E3",
                "servicePlans": [
                    {"servicePlanName": "WIN10_PRO_ENT_SUB", "provisioningStatus": "Disabled"}
                ],
            }
        ]

        assert GraphLicensingProbe(client).has_entitlement() is False

    def test_graph_probe_is_cached(self):
        client = MagicMock()
        client.list.return_value = []
        probe = GraphLicensingProbe(client)

        probe.has_entitlement()
        probe.has_entitlement()

        assert client.list.call_count == 1

    def test_custom_plans(self):
        client = MagicMock()
        client.list.return_value = [
            {"servicePlans": [{"servicePlanName": "CUSTOM", "provisioningStatus": "Success"}]}
        ]

        assert GraphLicensingProbe(client, ["custom"]).has_entitlement() is True
