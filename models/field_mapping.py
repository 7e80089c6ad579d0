"""
Field mapping schemas.

A FieldMapping moves one source field (dot path into the external
product record) to one target field, optionally gated by a condition,
reshaped by transforms and checked by validation rules.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, Union
from enum import Enum


class TransformName(str, Enum):
    """Transforms that take no options."""
    # String
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    CAPITALIZE = "capitalize"
    CAPITALIZE_WORDS = "capitalize_words"
    TRIM = "trim"
    TRIM_START = "trim_start"
    TRIM_END = "trim_end"
    SLUG = "slug"
    STRIP_HTML = "strip_html"
    # Number
    CENTS_TO_DECIMAL = "cents_to_decimal"
    DECIMAL_TO_CENTS = "decimal_to_cents"
    ROUND = "round"
    FLOOR = "floor"
    CEIL = "ceil"
    ABS = "abs"
    # Type coercion
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    JSON = "json"
    # Date
    ISO_DATE = "iso_date"
    TIMESTAMP = "timestamp"


class ConfiguredTransform(str, Enum):
    """Transforms driven by an options object."""
    DATE_FORMAT = "date_format"
    NUMBER_FORMAT = "number_format"
    REPLACE = "replace"
    SPLIT = "split"
    JOIN = "join"
    SUBSTRING = "substring"
    PAD = "pad"
    TEMPLATE = "template"
    LOOKUP = "lookup"
    MATH = "math"


class ConditionOperator(str, Enum):
    """Operators for a simple condition rule."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"


class ValidationType(str, Enum):
    """Validation rule types."""
    REQUIRED = "required"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    MIN = "min"
    MAX = "max"
    PATTERN = "pattern"
    EMAIL = "email"
    URL = "url"
    ENUM = "enum"


# ===================
# TRANSFORMS
# ===================

class TransformConfig(BaseModel):
    """
    Transform with options, e.g. {"type": "pad", "options": {"length": 6, "char": "0"}}.

    Unknown types are accepted and behave as no-ops.
    """
    type: str
    options: Optional[dict[str, Any]] = None


TransformSpec = Union[str, TransformConfig]
Transform = Union[TransformSpec, list[TransformSpec]]


# ===================
# CONDITIONS
# ===================

class SimpleCondition(BaseModel):
    """One {field, operator, value} test against the source record."""
    field: str
    operator: str
    value: Any = None


class CompoundCondition(BaseModel):
    """AND/OR over nested simple or compound conditions."""
    operator: str = Field(..., description="'and' or 'or'")
    conditions: list[Union[CompoundCondition, SimpleCondition]]


class FieldMappingCondition(BaseModel):
    """
    Gate for a mapping.

    type "simple" reads `rule`, type "compound" reads `rules`. Any other
    combination is malformed and evaluates as satisfied.
    """
    type: str = Field(..., description="'simple' or 'compound'")
    rule: Optional[SimpleCondition] = None
    rules: Optional[CompoundCondition] = None


# ===================
# VALIDATION
# ===================

class FieldValidationRule(BaseModel):
    """Validation rule applied to the transformed value."""
    type: str
    value: Any = None
    message: Optional[str] = None


class FieldValidationError(BaseModel):
    """One failed validation rule."""
    field: str
    rule: str
    message: str
    value: Any = None


class ValidationResult(BaseModel):
    """Aggregated validation outcome for a mapped record."""
    is_valid: bool = True
    errors: list[FieldValidationError] = Field(default_factory=list)


# ===================
# MAPPINGS
# ===================

class FieldMapping(BaseModel):
    """
    One source -> target mapping rule.

    `default_value` may legitimately be None, so whether a default was
    supplied is read from the fields explicitly set on the model.
    Serialize with model_dump(exclude_unset=True) to keep that distinction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    source_field: str = Field(..., min_length=1, description="Dot path into the source record")
    target_field: str = Field(..., min_length=1, description="Key in the mapped output")
    transform: Optional[Transform] = None
    condition: Optional[FieldMappingCondition] = None
    validation: Optional[list[FieldValidationRule]] = None
    default_value: Any = None

    @property
    def has_default(self) -> bool:
        return "default_value" in self.model_fields_set


class MappingResult(BaseModel):
    """Output of applying a mapping list to one source record."""
    data: dict[str, Any] = Field(default_factory=dict)
    validation: ValidationResult = Field(default_factory=ValidationResult)


CompoundCondition.model_rebuild()
