"""
Tests for the validation engine: grouping, per-field errors and ordering.
"""

import json
from datetime import datetime, timezone

import pytest

from bulk_import.domain.imports.catalog import UnknownRecordTypeError
from bulk_import.domain.imports.validation import ValidationEngine

OBJECT_ID = "507f1f77bcf86cd799439011"

CONTACTS_CSV = (
    b"firstName,lastName,email,phone,notes\n"
    b"Ada,Lovelace,ada@example.com,+44 20 7946 0958,met at conference\n"
    b"Grace,Hopper,not-an-email,555-0100,\n"
    b"Alan,Turing,,,\n"
)


@pytest.fixture
def validate(parser, validation_engine):
    def _validate(content, file_name, forced_type=None):
        parsed = parser.parse(content, file_name)
        assert parsed.success, parsed.errors
        return validation_engine.validate_all(parsed.rows, forced_type)

    return _validate


class TestSingleTypeFile:
    def test_rows_are_grouped_with_per_field_errors(self, validate):
        result = validate(CONTACTS_CSV, "contacts.csv")

        assert [group.model_name for group in result.model_groups] == ["Contact"]
        group = result.model_groups[0]
        assert (group.valid_count, group.invalid_count, group.total_count) == (1, 2, 3)
        assert result.summary() == {
            "total_rows": 3,
            "valid_rows": 1,
            "invalid_rows": 2,
            "unmatched_rows": 0,
            "can_save": True,
        }

        ada, grace, alan = group.rows
        assert ada.is_valid is True
        assert ada.coerced_value == {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "phone": "+44 20 7946 0958",
        }
        assert ada.unmapped_fields == ["notes"]

        assert [(e.field, e.error_type) for e in grace.errors] == [("email", "format")]
        assert [e.message for e in alan.errors] == ["missing required field: email"]
        assert alan.empty_fields == ["phone"]

    def test_all_errors_are_sorted_and_tagged(self, validate):
        result = validate(CONTACTS_CSV, "contacts.csv")

        errors = result.all_errors

        assert [(e.row_index, e.field) for e in errors] == [(3, "email"), (4, "email")]
        assert {e.model_name for e in errors} == {"Contact"}

    def test_match_confidence_is_recorded_on_rows(self, validate, validation_engine):
        result = validate(CONTACTS_CSV, "contacts.csv")

        for row in result.model_groups[0].rows:
            assert row.confidence >= validation_engine.matcher.threshold


class TestUnmatchedRows:
    def test_file_matching_nothing_cannot_be_saved(self, validate):
        result = validate(b"sku,warehouse,qty\nA-1,north,4\nB-2,south,1\n", "stock.csv")

        assert result.model_groups == []
        assert result.unmatched_rows == 2
        assert result.can_save is False
        assert result.success is False
        unmatched = result.unmatched_data[0]
        assert unmatched.reason == "no record type matched ≥50% of required fields"
        assert unmatched.to_dict()["data"] == {"sku": "A-1", "warehouse": "north", "qty": "4"}

    def test_unmatched_rows_appear_in_all_errors(self, validate):
        result = validate(b"sku\nA-1\n", "stock.csv")

        assert [(e.row_index, e.field) for e in result.all_errors] == [(2, "_model")]


class TestMixedTypeFile:
    ROWS = [
        {"title": "Oats", "category": "Breakfast", "calories": "350", "tags": "['quick', 'warm']"},
        {"firstName": "Ada", "email": "ada@example.com"},
        {"client_id": OBJECT_ID, "startDate": "2024-01-01", "targets": {"calories": "2000", "protein": 120}},
        {"title": "Soup", "category": "brunch"},
        {"sku": "A-1"},
        {"firstName": "Grace", "email": "grace@example.com"},
        {"clientRef": OBJECT_ID, "startDate": "2024-02-01", "targets": {"calories": "1800", "protein": "-5"}},
    ]

    def test_groups_follow_catalog_order_and_rows_stay_sorted(self, validate):
        result = validate(json.dumps(self.ROWS).encode(), "mixed.json")

        assert [group.model_name for group in result.model_groups] == ["Contact", "Recipe", "NutritionGoal"]
        assert [row.row_index for row in result.get_group("Contact").rows] == [2, 6]
        assert [row.row_index for row in result.get_group("Recipe").rows] == [1, 4]
        assert [row.row_index for row in result.get_group("NutritionGoal").rows] == [3, 7]
        assert [row.row_index for row in result.unmatched_data] == [5]
        assert result.total_rows == len(self.ROWS)

    def test_values_are_coerced_into_documents(self, validate):
        result = validate(json.dumps(self.ROWS).encode(), "mixed.json")

        oats = result.get_group("Recipe").find_row(1)
        assert oats.coerced_value == {
            "title": "Oats",
            "category": "breakfast",
            "calories": 350,
            "tags": ["quick", "warm"],
        }

        goal = result.get_group("NutritionGoal").find_row(3)
        assert goal.is_valid is True
        assert goal.coerced_value == {
            "clientRef": OBJECT_ID,
            "startDate": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "targets": {"calories": 2000, "protein": 120},
        }

    def test_nested_field_errors_use_dotted_paths(self, validate):
        result = validate(json.dumps(self.ROWS).encode(), "mixed.json")

        bad_goal = result.get_group("NutritionGoal").find_row(7)
        assert [(e.field, e.error_type) for e in bad_goal.errors] == [("targets.protein", "range")]

        soup = result.get_group("Recipe").find_row(4)
        assert [(e.field, e.error_type) for e in soup.errors] == [("category", "enum")]

    def test_raw_values_are_not_mutated(self, validate):
        result = validate(json.dumps(self.ROWS).encode(), "mixed.json")

        goal = result.get_group("NutritionGoal").find_row(3)
        goal.coerced_value["targets"]["extra"] = True

        assert "extra" not in goal.raw_values["targets"]

    def test_result_does_not_depend_on_worker_count(self, parser, catalog, matcher):
        rows = parser.parse(json.dumps(self.ROWS * 5).encode(), "many.json").rows

        serial = ValidationEngine(catalog, matcher, max_workers=1, chunk_size=100).validate_all(rows)
        parallel = ValidationEngine(catalog, matcher, max_workers=4, chunk_size=3).validate_all(rows)

        def flatten(result):
            return [
                (group.model_name, row.row_index, row.is_valid)
                for group in result.model_groups
                for row in group.rows
            ] + [("unmatched", row.row_index, False) for row in result.unmatched_data]

        assert flatten(parallel) == flatten(serial)


class TestForcedType:
    def test_forced_type_puts_every_row_in_one_group(self, validate):
        result = validate(b"title,category\nOats,breakfast\n", "recipes.csv", forced_type="Contact")

        assert [group.model_name for group in result.model_groups] == ["Contact"]
        row = result.model_groups[0].rows[0]
        assert row.confidence == 1.0
        assert {e.message for e in row.errors} == {
            "missing required field: firstName",
            "missing required field: email",
        }

    def test_unknown_forced_type_raises(self, parser, validation_engine):
        rows = parser.parse(b"title\nOats\n", "recipes.csv").rows

        with pytest.raises(UnknownRecordTypeError):
            validation_engine.validate_all(rows, forced_type="Invoice")


def test_unparseable_literal_produces_warning_and_type_error(validate):
    content = b"title,category,ingredients\nSoup,lunch,\"['egg, 'ham']\"\n"

    row = validate(content, "recipes.csv").get_group("Recipe").rows[0]

    assert [(e.field, e.error_type) for e in row.errors] == [("ingredients", "type")]
    assert row.warnings == [
        "Column 'ingredients' looks like structured data but could not be parsed; kept as text"
    ]


def test_row_to_dict_is_json_safe(validate):
    result = validate(json.dumps(TestMixedTypeFile.ROWS).encode(), "mixed.json")

    payload = result.get_group("NutritionGoal").to_dict()

    json.dumps(payload)
    assert payload["rows"][0]["coerced"]["startDate"] == "2024-01-01T00:00:00+00:00"


def test_contact_file_with_one_missing_email(validate):
    content = (
        b"firstName,lastName,email\n"
        b"Ada,Lovelace,ada@example.com\n"
        b"Grace,Hopper,grace@example.com\n"
        b"Alan,Turing,\n"
    )

    result = validate(content, "contacts.csv")

    group = result.get_group("Contact")
    assert (group.valid_count, group.invalid_count) == (2, 1)
    invalid = [row for row in group.rows if not row.is_valid][0]
    assert "missing required field: email" in [e.message for e in invalid.errors]


def test_every_row_lands_in_exactly_one_place(validate):
    rows = TestMixedTypeFile.ROWS * 3
    result = validate(json.dumps(rows).encode(), "mixed.json")

    grouped = [row.row_index for group in result.model_groups for row in group.rows]
    unmatched = [row.row_index for row in result.unmatched_data]

    assert sorted(grouped + unmatched) == list(range(1, len(rows) + 1))
    assert not set(grouped) & set(unmatched)
    assert result.can_save == (sum(g.valid_count for g in result.model_groups) > 0)
