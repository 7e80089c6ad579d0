"""
Validation engine for mapped fields.

Checks a transformed value against a list of rules. Each rule yields at
most one error; a rule's custom message replaces the default text.
A rule that does not parse is logged and skipped.
Values are never modified.
"""

import re
from typing import Any, Iterable, Optional, Union
from urllib.parse import urlparse

import structlog
from pydantic import ValidationError as PydanticValidationError

from models.field_mapping import FieldValidationRule, FieldValidationError, ValidationType
from services.transform_engine import is_number, to_display_string
from utils.dot_path import MISSING

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")

V = ValidationType


def _is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    if not parsed.scheme or not _SCHEME_RE.match(parsed.scheme):
        return False
    if parsed.scheme.lower() in ("http", "https", "ftp", "ws", "wss"):
        return bool(parsed.netloc)
    return bool(parsed.netloc or parsed.path)


def _check(field: str, value: Any, rule: FieldValidationRule) -> Optional[str]:
    """Default error text when the rule fails, None when it passes."""
    rule_type = rule.type
    limit = rule.value

    if rule_type == V.REQUIRED:
        if value is None or value is MISSING or value == "":
            return f"{field} is required"

    elif rule_type == V.MIN_LENGTH:
        if isinstance(value, str) and is_number(limit) and len(value) < limit:
            return f"{field} must be at least {to_display_string(limit)} characters"

    elif rule_type == V.MAX_LENGTH:
        if isinstance(value, str) and is_number(limit) and len(value) > limit:
            return f"{field} must be no more than {to_display_string(limit)} characters"

    elif rule_type == V.MIN:
        if is_number(value) and is_number(limit) and value < limit:
            return f"{field} must be at least {to_display_string(limit)}"

    elif rule_type == V.MAX:
        if is_number(value) and is_number(limit) and value > limit:
            return f"{field} must be no more than {to_display_string(limit)}"

    elif rule_type == V.PATTERN:
        if isinstance(value, str) and isinstance(limit, str):
            try:
                if re.search(limit, value) is None:
                    return f"{field} does not match required pattern"
            except re.error:
                # Invalid pattern: rule is skipped
                return None

    elif rule_type == V.EMAIL:
        if isinstance(value, str) and not EMAIL_RE.match(value):
            return f"{field} must be a valid email address"

    elif rule_type == V.URL:
        if isinstance(value, str) and not _is_valid_url(value):
            return f"{field} must be a valid URL"

    elif rule_type == V.ENUM:
        if isinstance(limit, (list, tuple)):
            allowed = any(
                isinstance(option, bool) == isinstance(value, bool) and option == value
                for option in limit
            )
            if not allowed:
                options = ", ".join(to_display_string(option) for option in limit)
                return f"{field} must be one of: {options}"

    return None


def validate_field(
    field_name: str,
    value: Any,
    rules: Optional[Iterable[Union[FieldValidationRule, dict]]]
) -> list[FieldValidationError]:
    """
    Validate one field value.

    Args:
        field_name: Target field name, used in messages
        value: Transformed value
        rules: Validation rules (models or dicts). None means always valid.

    Returns:
        One FieldValidationError per failed rule, in rule order
    """
    errors: list[FieldValidationError] = []
    if not rules:
        return errors

    for rule in rules:
        if isinstance(rule, dict):
            try:
                rule = FieldValidationRule.model_validate(rule)
            except PydanticValidationError as e:
                # Malformed rules are skipped like unusable patterns
                logger.warning("validation_rule_ignored", field=field_name, rule=rule, error=str(e))
                continue

        default_message = _check(field_name, value, rule)
        if default_message is None:
            continue

        errors.append(FieldValidationError(
            field=field_name,
            rule=str(rule.type),
            message=rule.message or default_message,
            value=None if value is MISSING else value,
        ))

    return errors
