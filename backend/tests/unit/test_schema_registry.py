"""
Unit tests for the field schema registry
═════════════════════════════════════════

Coverage targets:
  ✅ Every category has a current schema
  ✅ Dotted version comparison (padding, multi-digit segments)
  ✅ needs_migration / migration path / changelog
  ✅ validate_against_schema presence checks
  ✅ Unknown categories behave like "no registry"
  ✅ Registries pointing at a missing current version are rejected
"""

from __future__ import annotations

import pytest

from careify.processing.schema_registry import (
    DEFAULT_SCHEMA_VERSION,
    FieldSchemaRegistry,
    SchemaRegistry,
    compare_versions,
    schema_registry,
)
from careify.schemas.documents import DocumentCategory


@pytest.mark.unit
class TestRegistryLookups:

    @pytest.mark.parametrize("category", list(DocumentCategory))
    def test_every_category_has_current_schema(self, category):
        current = schema_registry.get_current_schema(category)
        assert current is not None
        assert current.version == schema_registry.get_current_version(category)

    def test_identity_current_required_fields(self):
        current = schema_registry.get_current_schema(DocumentCategory.IDENTITY)
        assert current.version == "2.0.0"
        assert current.required_fields == ("fullName", "dateOfBirth", "documentNumber", "expiryDate")

    def test_string_category_accepted(self):
        assert schema_registry.get_current_version("bank_statement") == "1.1.0"

    def test_unknown_category_string_returns_defaults(self):
        assert schema_registry.get_registry("council_tax") is None
        assert schema_registry.get_current_schema("council_tax") is None
        assert schema_registry.get_current_version("council_tax") == DEFAULT_SCHEMA_VERSION
        assert schema_registry.get_all_versions("council_tax") == []

    def test_versions_listed_oldest_first(self):
        versions = [v.version for v in schema_registry.get_all_versions(DocumentCategory.INCOME)]
        assert versions == sorted(versions, key=lambda v: tuple(int(p) for p in v.split(".")))

    def test_export_metadata_covers_all_categories(self):
        metadata = schema_registry.export_schema_metadata()
        assert set(metadata) == {c.value for c in DocumentCategory}
        assert metadata["identity"] == {"current_version": "2.0.0", "versions": ["1.0.0", "2.0.0"]}


@pytest.mark.unit
class TestVersionComparison:

    @pytest.mark.parametrize("left,right,expected", [
        ("1.0.0",  "1.0.0",  0),
        ("1.1",    "1.1.0",  0),
        ("1.2.0",  "1.10.0", -1),
        ("2.0.0",  "1.9.9",  1),
        ("1.0.x",  "1.0.0",  0),
    ])
    def test_compare_versions(self, left, right, expected):
        assert compare_versions(left, right) == expected
        assert schema_registry.compare_versions(left, right) == expected

    def test_needs_migration_for_older_version(self):
        assert schema_registry.needs_migration(DocumentCategory.IDENTITY, "1.0.0") is True
        assert schema_registry.needs_migration(DocumentCategory.IDENTITY, "2.0.0") is False

    def test_migration_path_is_exclusive_of_start(self):
        path = schema_registry.get_migration_path(DocumentCategory.IDENTITY, "1.0.0", "2.0.0")
        assert [v.version for v in path] == ["2.0.0"]

    def test_migration_path_empty_when_backwards_or_unknown(self):
        assert schema_registry.get_migration_path(DocumentCategory.IDENTITY, "2.0.0", "1.0.0") == []
        assert schema_registry.get_migration_path(DocumentCategory.IDENTITY, "0.9.0", "2.0.0") == []

    def test_changelog_lists_version_header_then_entries(self):
        lines = schema_registry.get_changelog(DocumentCategory.IDENTITY, "1.0.0", "2.0.0")
        assert lines[0] == "v2.0.0: Enhanced identity schema with document subtypes"
        assert "  - Added expiryDate as required field" in lines


@pytest.mark.unit
class TestValidateAgainstSchema:

    def test_valid_payload(self):
        ok, errors = schema_registry.validate_against_schema(
            DocumentCategory.IDENTITY, "2.0.0",
            {"documentSubtype": "passport", "fullName": "A", "dateOfBirth": "1990-01-01", "documentNumber": "X1"},
        )
        assert ok is True
        assert errors == []

    def test_missing_and_null_fields_reported(self):
        ok, errors = schema_registry.validate_against_schema(
            DocumentCategory.IDENTITY, "2.0.0",
            {"documentSubtype": "passport", "fullName": None},
        )
        assert ok is False
        assert "Missing required field: fullName" in errors
        assert "Missing required field: documentNumber" in errors

    def test_unknown_version(self):
        ok, errors = schema_registry.validate_against_schema(DocumentCategory.MEDICAL, "9.9.9", {})
        assert ok is False
        assert errors == ["Schema version 9.9.9 not found for medical"]


@pytest.mark.unit
class TestRegistryConstruction:

    def test_missing_category_rejected(self):
        with pytest.raises(RuntimeError, match="no entry"):
            FieldSchemaRegistry({})

    def test_dangling_current_version_rejected(self):
        registries = {
            category: schema_registry.get_registry(category)
            for category in DocumentCategory
        }
        registries[DocumentCategory.OTHER] = SchemaRegistry(current_version="3.0.0", versions=())
        with pytest.raises(RuntimeError, match="unknown current version"):
            FieldSchemaRegistry(registries)
