"""
Tests for intunepublisher.validation module.

Tests batch validation including:
- Valid batches
- apiVersion checks
- Package list checks (empty, duplicates)
- Settings errors surfaced as validation errors
"""

from __future__ import annotations

import pytest

from intunepublisher.validation import validate_batch

pytestmark = pytest.mark.unit


class TestValidateBatch:
    """Tests for validate_batch."""

    def test_valid_batch(self, create_yaml_file, sample_batch_data):
        batch_path = create_yaml_file("batch.yaml", sample_batch_data)

        result = validate_batch(batch_path)

        assert result["status"] == "valid"
        assert result["errors"] == []
        assert result["warnings"] == []
        assert result["package_count"] == 2
        assert result["batch_path"] == str(batch_path)

    def test_missing_api_version_is_warning(self, create_yaml_file, sample_batch_data):
        del sample_batch_data["apiVersion"]
        batch_path = create_yaml_file("batch.yaml", sample_batch_data)

        result = validate_batch(batch_path)

        assert result["status"] == "valid"
        assert any("apiVersion" in w for w in result["warnings"])

    def test_unsupported_api_version(self, create_yaml_file, sample_batch_data):
        sample_batch_data["apiVersion"] = "intunepublisher/v0"
        batch_path = create_yaml_file("batch.yaml", sample_batch_data)

        result = validate_batch(batch_path)

        assert result["status"] == "invalid"
        assert "Unsupported apiVersion: intunepublisher/v0" in result["errors"]

    def test_no_packages(self, create_yaml_file):
        batch_path = create_yaml_file(
            "batch.yaml", {"apiVersion": "intunepublisher/v1", "packages": []}
        )

        result = validate_batch(batch_path)

        assert result["status"] == "invalid"
        assert "No packages defined" in result["errors"]

    def test_duplicate_ids_and_names(self, create_yaml_file):
        batch_path = create_yaml_file(
            "batch.yaml",
            {
                "apiVersion": "intunepublisher/v1",
                "packages": [
                    {"id": "Acme.Tool", "name": "Acme"},
                    {"id": "Acme.Tool", "name": "Acme"},
                    {"id": "Acme.Tool2", "name": "Acme"},
                ],
            },
        )

        result = validate_batch(batch_path)

        assert result["status"] == "invalid"
        assert "Package id listed 2 times: Acme.Tool" in result["errors"]
        assert "Display name shared by 3 packages: Acme" in result["warnings"]

    def test_missing_icon_dir_is_warning(self, create_yaml_file, sample_batch_data):
        sample_batch_data["defaults"]["icons"] = {"dir": "icons"}
        batch_path = create_yaml_file("batch.yaml", sample_batch_data)

        result = validate_batch(batch_path)

        assert result["status"] == "valid"
        assert any("Icon directory not found" in w for w in result["warnings"])

    def test_invalid_setting_is_error(self, create_yaml_file, sample_batch_data):
        sample_batch_data["defaults"]["processing"]["max_attempts"] = 0
        batch_path = create_yaml_file("batch.yaml", sample_batch_data)

        result = validate_batch(batch_path)

        assert result["status"] == "invalid"
        assert any("max_attempts" in e for e in result["errors"])

    def test_yaml_error_is_reported(self, tmp_test_dir):
        batch_path = tmp_test_dir / "bad.yaml"
        batch_path.write_text("packages: [unclosed\n")

        result = validate_batch(batch_path)

        assert result["status"] == "invalid"
        assert result["package_count"] == 0
        assert any("Error parsing YAML" in e for e in result["errors"])
