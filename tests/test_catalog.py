"""
Tests for record-type catalog construction and lookup.
"""

import json

import pytest

from bulk_import.domain.imports.catalog import (
    CatalogError,
    FieldType,
    SchemaCatalog,
    UnknownRecordTypeError,
    build_record_type,
    load_catalog,
    parse_field_type,
)

from tests.conftest import CATALOG_DEFINITIONS


def test_catalog_keeps_registration_order(catalog):
    assert catalog.names == ["Contact", "Recipe", "NutritionGoal"]
    assert len(catalog) == 3
    assert "Recipe" in catalog


def test_required_fields_come_from_field_flags(catalog):
    contact = catalog.require("Contact")
    assert contact.required_fields == frozenset({"firstName", "email"})
    assert contact.unique_fields == ("email",)
    assert contact.collection == "contact"


def test_nested_paths_are_marked_nested(catalog):
    goal = catalog.require("NutritionGoal")
    assert goal.get_field("targets.calories").is_nested is True
    assert goal.get_field("clientRef").is_nested is False
    assert goal.get_field("clientRef").aliases == ("client_id",)
    assert goal.collection == "nutrition_goal"


def test_explicit_required_list_overrides_flags():
    record_type = build_record_type(
        {
            "name": "Tag",
            "fields": [{"path": "label", "required": True}, {"path": "color"}],
            "required_fields": ["color"],
        }
    )
    assert record_type.required_fields == frozenset({"color"})
    assert record_type.get_field("label").required is False


def test_lookup_by_name_is_case_insensitive(catalog):
    assert catalog.get_by_name("recipe").name == "Recipe"
    assert catalog.get("recipe") is None


def test_unknown_record_type_lists_available(catalog):
    with pytest.raises(UnknownRecordTypeError) as exc_info:
        catalog.require("Invoice")

    assert exc_info.value.name == "Invoice"
    assert "Contact" in str(exc_info.value)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("string", FieldType.STRING),
        ("Integer", FieldType.NUMBER),
        ("ObjectId", FieldType.REFERENCE),
        ("datetime", FieldType.DATE),
        ("mixed", FieldType.NESTED),
        (FieldType.ENUM, FieldType.ENUM),
    ],
)
def test_parse_field_type(raw, expected):
    assert parse_field_type(raw) is expected


@pytest.mark.parametrize(
    "definition,message",
    [
        ({"name": "Empty", "fields": []}, "declares no fields"),
        ({"name": "Bad", "fields": [{"path": "x", "type": "blob"}]}, "Unsupported field type"),
        ({"name": "Enum", "fields": [{"path": "x", "type": "enum"}]}, "declares no enum values"),
        ({"name": "Dup", "fields": [{"path": "x"}, {"path": "x"}]}, "repeats field paths"),
        ({"name": "Req", "fields": [{"path": "x"}], "required_fields": ["y"]}, "requires undeclared fields"),
        ({"name": "Uniq", "fields": [{"path": "x"}], "unique_fields": ["y"]}, "undeclared unique fields"),
        ({"name": "Arr", "fields": [{"path": "x", "type": "array", "item_type": "array"}]}, "item_type"),
        ({"name": "Path", "fields": [{"path": ".x"}]}, "Invalid record type definition"),
    ],
)
def test_invalid_definitions_are_rejected(definition, message):
    with pytest.raises(CatalogError, match=message):
        build_record_type(definition)


def test_duplicate_record_type_names_are_rejected():
    with pytest.raises(CatalogError, match="Duplicate record type names"):
        SchemaCatalog.from_definitions([CATALOG_DEFINITIONS[0], CATALOG_DEFINITIONS[0]])


def test_load_catalog_from_file(tmp_path):
    catalog_file = tmp_path / "catalog.json"
    catalog_file.write_text(json.dumps({"record_types": CATALOG_DEFINITIONS}), encoding="utf-8")

    loaded = load_catalog(catalog_file)

    assert loaded.names == ["Contact", "Recipe", "NutritionGoal"]


def test_load_catalog_reports_unreadable_file(tmp_path):
    with pytest.raises(CatalogError, match="Could not read catalog file"):
        load_catalog(tmp_path / "missing.json")
