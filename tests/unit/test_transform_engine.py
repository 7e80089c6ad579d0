"""
Unit tests for the transform engine.

Run: pytest tests/unit/test_transform_engine.py -v
"""

import pytest
from decimal import Decimal

from services.transform_engine import (
    apply_simple_transform,
    apply_configured_transform,
    apply_transforms,
    parse_datetime,
)
from models.field_mapping import TransformConfig, TransformName


# ===================
# SIMPLE TRANSFORMS
# ===================

class TestStringTransforms:
    """Tests for string transforms."""

    @pytest.mark.parametrize("name,value,expected", [
        ("uppercase", "ethiopia", "ETHIOPIA"),
        ("lowercase", "ETHIOPIA", "ethiopia"),
        ("capitalize", "hELLO world", "Hello world"),
        ("capitalize_words", "light roast blend", "Light Roast Blend"),
        ("trim", "  beans  ", "beans"),
        ("trim_start", "  beans  ", "beans  "),
        ("trim_end", "  beans  ", "  beans"),
        ("slug", "Café Brasil!", "cafe-brasil"),
        ("strip_html", "<p>Fruity <b>notes</b></p>", "Fruity notes"),
    ])
    def test_string_transforms(self, name, value, expected):
        assert apply_simple_transform(value, name) == expected

    def test_string_transform_ignores_non_strings(self):
        """Wrong input type is returned unchanged."""
        assert apply_simple_transform(42, "uppercase") == 42
        assert apply_simple_transform(["a"], "trim") == ["a"]


class TestNumberTransforms:
    """Tests for numeric transforms."""

    def test_cents_to_decimal(self):
        assert apply_simple_transform(1299, TransformName.CENTS_TO_DECIMAL) == 12.99

    def test_decimal_to_cents_avoids_float_drift(self):
        """0.29 * 100 must not become 28."""
        assert apply_simple_transform(0.29, "decimal_to_cents") == 29
        assert apply_simple_transform(12.99, "decimal_to_cents") == 1299

    def test_cents_round_trip(self):
        for cents in (0, 1, 99, 1299, 100000, 2**53 + 1, 123456789012345678):
            major = apply_simple_transform(cents, "cents_to_decimal")
            assert apply_simple_transform(major, "decimal_to_cents") == cents

    def test_cents_beyond_float_precision_stay_decimal(self):
        major = apply_simple_transform(123456789012345678, "cents_to_decimal")

        assert major == Decimal("1234567890123456.78")
        assert isinstance(apply_simple_transform(1299, "cents_to_decimal"), float)

    def test_round_half_up(self):
        assert apply_simple_transform(2.5, "round") == 3
        assert apply_simple_transform(2.4, "round") == 2

    def test_floor_ceil_abs(self):
        assert apply_simple_transform(2.7, "floor") == 2
        assert apply_simple_transform(2.1, "ceil") == 3
        assert apply_simple_transform(-4, "abs") == 4

    def test_booleans_are_not_numbers(self):
        """True is an int subclass but must pass through untouched."""
        assert apply_simple_transform(True, "round") is True
        assert apply_simple_transform(True, "cents_to_decimal") is True

    def test_numeric_transform_ignores_strings(self):
        assert apply_simple_transform("12.5", "round") == "12.5"


class TestCoercionTransforms:
    """Tests for type coercion transforms."""

    @pytest.mark.parametrize("value,expected", [
        ("false", False),
        ("0", False),
        ("no", False),
        ("", False),
        ("yes", True),
        (0, False),
        (3, True),
        ([], True),
    ])
    def test_boolean(self, value, expected):
        assert apply_simple_transform(value, "boolean") is expected

    def test_number_parses_strings(self):
        assert apply_simple_transform("42", "number") == 42
        assert apply_simple_transform(" 4.5 ", "number") == 4.5

    def test_number_leaves_unparseable_values(self):
        assert apply_simple_transform("abc", "number") == "abc"
        assert apply_simple_transform("   ", "number") == "   "

    def test_string(self):
        assert apply_simple_transform(True, "string") == "true"
        assert apply_simple_transform(10.0, "string") == "10"
        assert apply_simple_transform({"a": 1}, "string") == '{"a": 1}'

    def test_array_wraps_scalars(self):
        assert apply_simple_transform("x", "array") == ["x"]
        assert apply_simple_transform(["x"], "array") == ["x"]

    def test_json(self):
        assert apply_simple_transform('{"roast": "light"}', "json") == {"roast": "light"}
        assert apply_simple_transform("not json", "json") == "not json"


class TestDateTransforms:
    """Tests for date transforms."""

    def test_iso_date(self):
        assert apply_simple_transform("2024-01-15T10:30:00Z", "iso_date") == "2024-01-15T10:30:00.000Z"

    def test_timestamp(self):
        assert apply_simple_transform("2024-01-15T00:00:00Z", "timestamp") == 1705276800000

    def test_unparseable_date_unchanged(self):
        assert apply_simple_transform("next tuesday", "iso_date") == "next tuesday"

    def test_parse_datetime_epoch_millis(self):
        parsed = parse_datetime(1705276800000)
        assert parsed.year == 2024
        assert parsed.tzinfo is not None


class TestUnknownTransforms:
    """Unknown transforms are no-ops."""

    def test_unknown_simple_name(self):
        assert apply_simple_transform("value", "does_not_exist") == "value"

    def test_unknown_configured_type(self):
        config = TransformConfig(type="does_not_exist", options={"x": 1})
        assert apply_configured_transform("value", config) == "value"


# ===================
# CONFIGURED TRANSFORMS
# ===================

class TestConfiguredTransforms:
    """Tests for transforms with options."""

    def test_date_format(self):
        config = {"type": "date_format", "options": {"output_format": "DD/MM/YYYY"}}
        assert apply_transforms("2024-03-05T00:00:00Z", config) == "05/03/2024"

    def test_date_format_month_names_by_locale(self):
        config = {"type": "date_format", "options": {"output_format": "DD MMMM YYYY", "locale": "es"}}
        assert apply_transforms("2024-03-05T00:00:00Z", config) == "05 marzo 2024"

    def test_number_format_defaults(self):
        config = {"type": "number_format", "options": {}}
        assert apply_transforms(1234567.891, config) == "1,234,567.89"

    def test_number_format_custom_separators(self):
        config = {
            "type": "number_format",
            "options": {"thousands_separator": ".", "decimal_separator": ",", "prefix": "$"},
        }
        assert apply_transforms(1234567.891, config) == "$1.234.567,89"

    def test_replace_first_and_global(self):
        assert apply_transforms("banana", {"type": "replace", "options": {"search": "a", "replace": "o"}}) == "bonana"
        assert apply_transforms(
            "banana",
            {"type": "replace", "options": {"search": "a", "replace": "o", "global": True}}
        ) == "bonono"

    def test_replace_regex_with_group_reference(self):
        config = {"type": "replace", "options": {"search": r"(\d+)", "replace": "#$1", "regex": True}}
        assert apply_transforms("lot 123", config) == "lot #123"

    def test_replace_invalid_regex_unchanged(self):
        config = {"type": "replace", "options": {"search": "(", "replace": "x", "regex": True}}
        assert apply_transforms("value", config) == "value"

    def test_split(self):
        assert apply_transforms("a,b,c", {"type": "split", "options": {}}) == ["a", "b", "c"]
        assert apply_transforms("a,b,c", {"type": "split", "options": {"index": 1}}) == "b"
        assert apply_transforms("a,b,c", {"type": "split", "options": {"index": 5}}) == ""

    def test_join(self):
        config = {"type": "join", "options": {"delimiter": "-"}}
        assert apply_transforms(["a", 1, True], config) == "a-1-true"

    def test_substring_swaps_reversed_bounds(self):
        assert apply_transforms("Ethiopia", {"type": "substring", "options": {"start": 0, "end": 3}}) == "Eth"
        assert apply_transforms("Ethiopia", {"type": "substring", "options": {"start": 3, "end": 0}}) == "Eth"

    def test_pad(self):
        assert apply_transforms(42, {"type": "pad", "options": {"length": 5, "char": "0"}}) == "00042"
        assert apply_transforms(
            42, {"type": "pad", "options": {"length": 5, "char": "0", "position": "end"}}
        ) == "42000"

    def test_template_reads_source_record(self):
        source = {"name": "Kochere", "metadata": {"origin": "Ethiopia"}}
        config = {"type": "template", "options": {"template": "{{name}} ({{metadata.origin}})"}}
        assert apply_transforms("ignored", config, source) == "Kochere (Ethiopia)"

    def test_template_missing_path_is_empty(self):
        config = {"type": "template", "options": {"template": "{{name}}-{{missing.path}}"}}
        assert apply_transforms("x", config, {"name": "A"}) == "A-"

    def test_lookup(self):
        options = {"map": {"light": "Light Roast"}}
        assert apply_transforms("light", {"type": "lookup", "options": options}) == "Light Roast"
        assert apply_transforms("dark", {"type": "lookup", "options": options}) == "dark"
        assert apply_transforms(
            "dark", {"type": "lookup", "options": {**options, "default": "Other"}}
        ) == "Other"

    def test_math(self):
        assert apply_transforms(10, {"type": "math", "options": {"operation": "multiply", "operand": 1.5}}) == 15.0
        assert apply_transforms(10, {"type": "math", "options": {"operation": "divide", "operand": 0}}) == 10
        assert apply_transforms(-7, {"type": "math", "options": {"operation": "modulo", "operand": 3}}) == -1

    def test_configured_without_options_acts_as_simple(self):
        assert apply_transforms("abc", {"type": "uppercase"}) == "ABC"


# ===================
# CHAINS
# ===================

class TestApplyTransforms:
    """Tests for apply_transforms()"""

    def test_none_passes_through(self):
        assert apply_transforms(None, "uppercase") is None
        assert apply_transforms(None, ["trim", {"type": "pad", "options": {"length": 3}}]) is None

    def test_no_transform_returns_value(self):
        assert apply_transforms("value", None) == "value"

    def test_chain_applies_left_to_right(self):
        chain = ["trim", "uppercase", {"type": "pad", "options": {"length": 6, "char": "*", "position": "end"}}]
        assert apply_transforms("  abc ", chain) == "ABC***"

    def test_invalid_dict_spec_is_ignored(self):
        assert apply_transforms("abc", [{"options": {}}, "uppercase"]) == "ABC"
