"""
Unit tests for mapped field validation.

Run: pytest tests/unit/test_validation_engine.py -v
"""

from services.validation_engine import validate_field
from models.field_mapping import FieldValidationRule


class TestValidateField:
    """Tests for validate_field()"""

    def test_no_rules_is_valid(self):
        assert validate_field("name", None, None) == []
        assert validate_field("name", None, []) == []

    def test_required(self):
        errors = validate_field("name", "", [{"type": "required"}])

        assert len(errors) == 1
        assert errors[0].field == "name"
        assert errors[0].rule == "required"
        assert errors[0].message == "name is required"

    def test_required_accepts_zero_and_false(self):
        assert validate_field("price", 0, [{"type": "required"}]) == []
        assert validate_field("active", False, [{"type": "required"}]) == []

    def test_lengths(self):
        rules = [{"type": "min_length", "value": 3}, {"type": "max_length", "value": 5}]

        assert validate_field("sku", "AB", rules)[0].message == "sku must be at least 3 characters"
        assert validate_field("sku", "ABCDEF", rules)[0].message == "sku must be no more than 5 characters"
        assert validate_field("sku", "ABCD", rules) == []

    def test_min_max(self):
        rules = [{"type": "min", "value": 0}, {"type": "max", "value": 100}]

        assert validate_field("price", -1, rules)[0].message == "price must be at least 0"
        assert validate_field("price", 150, rules)[0].message == "price must be no more than 100"
        assert validate_field("price", "150", rules) == []

    def test_pattern(self):
        rules = [{"type": "pattern", "value": r"^[A-Z0-9-]+$"}]

        assert validate_field("sku", "eth-250", rules)[0].message == "sku does not match required pattern"
        assert validate_field("sku", "ETH-250", rules) == []

    def test_invalid_pattern_is_skipped(self):
        assert validate_field("sku", "x", [{"type": "pattern", "value": "("}]) == []

    def test_malformed_rule_is_skipped(self):
        rules = [{"value": 3}, {"type": "required", "message": ["not", "text"]}, {"type": "required"}]

        errors = validate_field("name", "", rules)

        assert [e.message for e in errors] == ["name is required"]

    def test_email(self):
        assert validate_field("contact", "not-an-email", [{"type": "email"}])[0].rule == "email"
        assert validate_field("contact", "ops@roastery.example", [{"type": "email"}]) == []

    def test_url(self):
        assert validate_field("link", "no scheme", [{"type": "url"}])[0].message == "link must be a valid URL"
        assert validate_field("link", "https://cdn.roastify.app/a.jpg", [{"type": "url"}]) == []

    def test_enum(self):
        rules = [{"type": "enum", "value": ["light", "medium", "dark"]}]

        errors = validate_field("roast", "blonde", rules)

        assert errors[0].message == "roast must be one of: light, medium, dark"
        assert validate_field("roast", "dark", rules) == []

    def test_custom_message_replaces_default(self):
        rules = [FieldValidationRule(type="required", message="Every coffee needs a name")]

        errors = validate_field("name", None, rules)

        assert errors[0].message == "Every coffee needs a name"

    def test_one_error_per_failed_rule_in_order(self):
        rules = [{"type": "required"}, {"type": "min_length", "value": 2}]

        errors = validate_field("name", "", rules)

        # "" fails required; min_length counts it too
        assert [e.rule for e in errors] == ["required", "min_length"]

    def test_value_is_not_modified(self):
        value = {"nested": [1, 2]}
        validate_field("data", value, [{"type": "required"}])
        assert value == {"nested": [1, 2]}
