"""
Tests for cell coercion and row-level validation.
"""

from decimal import Decimal

import pytest

from crm_import.domain.imports.coercion import (
    CoercionError,
    coerce_row,
    coerce_value,
    split_tags,
    to_json_value,
)
from crm_import.domain.imports.schema import EntityType, FieldKind, FieldOption, FieldSchema, standard_fields

STAGE = FieldSchema(
    key="stage",
    label="Stage",
    kind=FieldKind.ENUM,
    required=True,
    options=[FieldOption(value="s-lead", label="Lead"), FieldOption(value="s-won", label="Won")],
)


class TestCoerceValue:

    @pytest.mark.parametrize("raw,expected", [
        ("1234", Decimal("1234")),
        ("$1,234.50", Decimal("1234.50")),
        ("(500)", Decimal("-500")),
        ("-$20", Decimal("-20")),
        (" 7.25 ", Decimal("7.25")),
    ])
    def test_numbers(self, raw, expected):
        field = FieldSchema(key="value", label="Value", kind=FieldKind.NUMBER)
        assert coerce_value(raw, field) == expected

    @pytest.mark.parametrize("raw", ["abc", "1.2.3", "NaN"])
    def test_invalid_numbers(self, raw):
        field = FieldSchema(key="value", label="Value", kind=FieldKind.NUMBER)
        with pytest.raises(CoercionError) as exc_info:
            coerce_value(raw, field)
        assert "Value: not a number" in str(exc_info.value)

    def test_empty_cell_is_absent(self):
        field = FieldSchema(key="value", label="Value", kind=FieldKind.NUMBER)
        assert coerce_value("   ", field) is None
        assert coerce_value(None, field) is None

    @pytest.mark.parametrize("raw,expected", [
        ("yes", True), ("Y", True), ("1", True), ("TRUE", True),
        ("no", False), ("n", False), ("0", False), ("false", False),
    ])
    def test_booleans(self, raw, expected):
        field = FieldSchema(key="vip", label="VIP", kind=FieldKind.BOOLEAN)
        assert coerce_value(raw, field) is expected

    def test_invalid_boolean(self):
        field = FieldSchema(key="vip", label="VIP", kind=FieldKind.BOOLEAN)
        with pytest.raises(CoercionError):
            coerce_value("maybe", field)

    def test_dates(self):
        field = FieldSchema(key="close", label="Close", kind=FieldKind.DATE)
        parsed = coerce_value("2025-03-05", field)

        assert (parsed.year, parsed.month, parsed.day) == (2025, 3, 5)
        assert parsed.tzinfo is not None

    def test_day_first_date_is_detected(self):
        field = FieldSchema(key="close", label="Close", kind=FieldKind.DATE)
        parsed = coerce_value("25/12/2024", field)

        assert (parsed.month, parsed.day) == (12, 25)

    @pytest.mark.parametrize("raw", ["soon", "12345"])
    def test_invalid_dates(self, raw):
        field = FieldSchema(key="close", label="Close", kind=FieldKind.DATE)
        with pytest.raises(CoercionError):
            coerce_value(raw, field)

    def test_tags_are_split_and_deduplicated(self):
        field = FieldSchema(key="tags", label="Tags", kind=FieldKind.TAGS)
        assert coerce_value("vip, lead ,vip,,", field) == ["vip", "lead"]
        assert split_tags(" , ") == []

    def test_email_is_validated_and_lowercased(self):
        field = FieldSchema(key="email", label="Email", format="email")
        assert coerce_value(" Ada@Example.COM ", field) == "ada@example.com"
        with pytest.raises(CoercionError):
            coerce_value("not-an-email", field)

    def test_phone_is_standardized_or_kept(self):
        field = FieldSchema(key="phone", label="Phone", format="phone")
        assert coerce_value("415.555.1234", field) == "(415) 555-1234"
        assert coerce_value("+1 415 555 1234 ext 9", field) == "(415) 555-1234 x9"
        assert coerce_value("call me", field) == "call me"


class TestEnumCoercion:

    def test_matches_label_or_value_case_insensitively(self):
        assert coerce_value("won", STAGE) == "s-won"
        assert coerce_value("S-LEAD", STAGE) == "s-lead"

    def test_value_mapping_is_checked_first(self):
        mapping = {"Closed Won": "s-won"}
        assert coerce_value("Closed Won", STAGE, value_mapping=mapping) == "s-won"
        assert coerce_value("closed won ", STAGE, value_mapping=mapping) == "s-won"

    def test_unknown_value_falls_back_to_default(self):
        assert coerce_value("Proposal Sent", STAGE, default="s-lead") == "s-lead"
        assert coerce_value("", STAGE, default="s-lead") == "s-lead"

    def test_unknown_value_without_default(self):
        with pytest.raises(CoercionError) as exc_info:
            coerce_value("Proposal Sent", STAGE)
        assert "Lead, Won" in str(exc_info.value)


class TestCoerceRow:

    def test_required_field_missing(self):
        fields = standard_fields(EntityType.CONTACTS)
        row = coerce_row({"F": "", "L": "Lovelace"}, {"first_name": "F", "last_name": "L"}, fields)

        assert row.rejected
        assert row.rejected_reason == "First Name is required"
        assert row.rejected_field == "first_name"

    def test_unmapped_required_field_rejects(self):
        fields = standard_fields(EntityType.CONTACTS)
        row = coerce_row({"F": "Ada"}, {"first_name": "F"}, fields)

        assert row.rejected_reason == "Last Name is required"

    def test_optional_failure_drops_only_that_field(self):
        fields = standard_fields(EntityType.CONTACTS)
        record = {"F": "Ada", "L": "Lovelace", "E": "nope", "C": "Engines"}
        column_map = {"first_name": "F", "last_name": "L", "email": "E", "company": "C"}
        row = coerce_row(record, column_map, fields)

        assert not row.rejected
        assert row.values == {"first_name": "Ada", "last_name": "Lovelace", "company": "Engines"}
        assert len(row.warnings) == 1

    def test_custom_values_are_json_ready(self):
        fields = [
            FieldSchema(key="score", label="Score", kind=FieldKind.NUMBER, custom=True),
            FieldSchema(key="met", label="Met", kind=FieldKind.DATE, custom=True),
        ]
        row = coerce_row({"S": "42", "M": "2025-01-02"}, {"score": "S", "met": "M"}, fields)

        assert row.values == {}
        assert row.custom_values["score"] == 42
        assert row.custom_values["met"].startswith("2025-01-02")

    def test_defaults_apply_to_unmapped_required_enum(self):
        row = coerce_row({}, {}, [STAGE], defaults={"stage": "s-won"})

        assert row.values == {"stage": "s-won"}


def test_to_json_value():
    assert to_json_value(Decimal("2")) == 2
    assert to_json_value(Decimal("2.5")) == 2.5
    assert to_json_value("x") == "x"
