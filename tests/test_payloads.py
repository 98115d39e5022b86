"""
Tests for intunepublisher.graph.payloads module.

Tests the typed request bodies sent to Graph, focusing on the fields the
backend is strict about (OData types, assignment intents, base64 content).
"""

from __future__ import annotations

import base64

import pytest

from intunepublisher.graph.payloads import (
    AppAssignmentPayload,
    AvailableInstall,
    ContentFilePayload,
    GroupPayload,
    MsiInfo,
    RemediationAssignmentPayload,
    RemediationPayload,
    Win32AppPayload,
)

pytestmark = pytest.mark.unit


def _app(**overrides) -> Win32AppPayload:
    fields = dict(
        display_name="Acme Tool",
        description="Acme Tool (Acme.Tool)\nPublished by intunepublisher",
        publisher="",
        file_name="Acme.Tool-Install.intunewin",
        setup_file_path="Acme.Tool-Install.ps1",
        install_command="install.cmd",
        uninstall_command="uninstall.cmd",
        detection_script="exit 0",
    )
    fields.update(overrides)
    return Win32AppPayload(**fields)


class TestAvailableInstall:
    """Tests for AvailableInstall parsing and targets."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("user", AvailableInstall.USER),
            ("DEVICE", AvailableInstall.DEVICE),
            ("Both", AvailableInstall.BOTH),
            (None, AvailableInstall.NONE),
            (AvailableInstall.BOTH, AvailableInstall.BOTH),
        ],
    )
    def test_parse(self, value, expected):
        assert AvailableInstall.parse(value) is expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="Invalid available_install"):
            AvailableInstall.parse("everyone")

    @pytest.mark.parametrize(
        "option, count", [("None", 0), ("User", 1), ("Device", 1), ("Both", 2)]
    )
    def test_target_count(self, option, count):
        assert len(AvailableInstall(option).targets()) == count


class TestGroupPayload:
    def test_security_group(self):
        body = GroupPayload.for_name("Acme Tool (x64) Required", "tag").to_graph()

        assert body["securityEnabled"] is True
        assert body["mailEnabled"] is False
        assert body["mailNickname"] == "AcmeToolx64Required"
        assert body["description"] == "tag"

    def test_nickname_never_empty(self):
        assert GroupPayload.for_name("!!!", "tag").mail_nickname == "group"


class TestRemediationPayloads:
    """Tests for remediation and remediation assignment bodies."""

    def test_scripts_are_base64(self):
        body = RemediationPayload(
            display_name="Acme Tool Upgrade",
            description="tag",
            publisher="IT",
            detection_script="detect",
            remediation_script="remediate",
        ).to_graph()

        assert base64.b64decode(body["detectionScriptContent"]) == b"detect"
        assert base64.b64decode(body["remediationScriptContent"]) == b"remediate"
        assert body["@odata.type"] == "#microsoft.graph.deviceHealthScript"
        assert body["runAsAccount"] == "system"

    def test_assignment_schedule(self):
        body = RemediationAssignmentPayload("g-1", schedule_time="02:30:00").to_graph()

        (assignment,) = body["deviceHealthScriptAssignments"]
        assert assignment["target"]["groupId"] == "g-1"
        assert assignment["runRemediationScript"] is True
        assert assignment["runSchedule"]["time"] == "02:30:00"


class TestWin32AppPayload:
    """Tests for the win32LobApp body."""

    def test_minimal_body(self):
        body = _app().to_graph()

        assert body["@odata.type"] == "#microsoft.graph.win32LobApp"
        assert body["publisher"] == "Acme Tool"
        assert body["setupFilePath"] == "Acme.Tool-Install.ps1"
        assert "msiInformation" not in body
        assert "largeIcon" not in body
        (rule,) = body["rules"]
        assert rule["ruleType"] == "detection"
        assert base64.b64decode(rule["scriptContent"]) == b"exit 0"

    def test_return_codes(self):
        codes = {c["returnCode"]: c["type"] for c in _app().to_graph()["returnCodes"]}

        assert codes[0] == "success"
        assert codes[3010] == "softReboot"
        assert codes[1618] == "retry"

    def test_msi_and_icon(self):
        body = _app(
            publisher="Acme",
            msi=MsiInfo(product_code="{PC}", product_version="1.0"),
            icon=b"\xff\xd8\xff\xe0rest",
        ).to_graph()

        assert body["publisher"] == "Acme"
        assert body["msiInformation"]["productCode"] == "{PC}"
        assert body["largeIcon"]["type"] == "image/jpeg"
        assert base64.b64decode(body["largeIcon"]["value"]) == b"\xff\xd8\xff\xe0rest"

    def test_png_icon_type(self):
        body = _app(icon=b"\x89PNG\r\n").to_graph()

        assert body["largeIcon"]["type"] == "image/png"


class TestContentFilePayload:
    def test_sizes(self):
        body = ContentFilePayload("IntunePackage.intunewin", 100, 148).to_graph()

        assert body["size"] == 100
        assert body["sizeEncrypted"] == 148
        assert body["isDependency"] is False


class TestAppAssignmentPayload:
    """Tests for the assign action body."""

    def test_required_and_uninstall_only(self):
        body = AppAssignmentPayload.for_deployment(
            "g-install", "g-uninstall", AvailableInstall.NONE
        ).to_graph()

        assignments = body["mobileAppAssignments"]
        assert [a["intent"] for a in assignments] == ["required", "uninstall"]
        assert assignments[0]["target"]["groupId"] == "g-install"
        assert assignments[1]["target"]["groupId"] == "g-uninstall"

    def test_available_both(self):
        body = AppAssignmentPayload.for_deployment(
            "g-install", "g-uninstall", AvailableInstall.BOTH
        ).to_graph()

        available = [a for a in body["mobileAppAssignments"] if a["intent"] == "available"]
        assert [a["target"]["@odata.type"] for a in available] == [
            "#microsoft.graph.allLicensedUsersAssignmentTarget",
            "#microsoft.graph.allDevicesAssignmentTarget",
        ]
