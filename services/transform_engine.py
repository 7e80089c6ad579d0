"""
Transform engine for field mappings.

Pure functions that reshape one value. A transform is either a bare name
("trim", "cents_to_decimal", ...) or a configured transform
({"type": "pad", "options": {...}}). A list of transforms is applied
left to right.

Rules:
- None passes through untouched
- A value of the wrong type for a transform is returned unchanged
- Booleans are never treated as numbers
- Unknown transform names are no-ops
"""

import json
import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from models.field_mapping import TransformConfig, TransformName, ConfiguredTransform
from utils.dot_path import get_path, MISSING
from utils.text_utils import slugify, strip_html
from utils.time_utils import parse_iso_timestamp

logger = structlog.get_logger(__name__)

TransformInput = Union[str, TransformConfig, dict, list, tuple, None]

_WORD_START_RE = re.compile(r"\b\w")
_TEMPLATE_RE = re.compile(r"\{\{(\w+(?:\.\w+)*)\}\}")
_DATE_TOKEN_RE = re.compile(r"YYYY|MMMM|MMM|MM|DD|HH|mm|ss")
_JS_GROUP_RE = re.compile(r"\$(\d+|&)")

_FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}

FLOAT_EXACT_DIGITS = 15

MONTH_NAMES = {
    "en": ["January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"],
    "es": ["enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
           "agosto", "septiembre", "octubre", "noviembre", "diciembre"],
    "pt": ["janeiro", "fevereiro", "março", "abril", "maio", "junho", "julho",
           "agosto", "setembro", "outubro", "novembro", "dezembro"],
    "fr": ["janvier", "février", "mars", "avril", "mai", "juin", "juillet",
           "août", "septembre", "octobre", "novembre", "décembre"],
    "de": ["Januar", "Februar", "März", "April", "Mai", "Juni", "Juli",
           "August", "September", "Oktober", "November", "Dezember"],
}


# ===================
# TYPE HELPERS
# ===================

def is_number(value: Any) -> bool:
    """Real number check. bool is an int subclass, so exclude it."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_display_string(value: Any) -> str:
    """String form used by templates, joins, lookups and the string transform."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return _to_iso(value)
    return str(value)


def _to_decimal(value: Any) -> Decimal:
    # str() first so 0.29 stays 0.29 instead of its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _half_up(value: Any, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return _to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Best-effort datetime parsing.

    Accepts datetime, date, ISO 8601 strings (with or without "Z") and
    epoch milliseconds. Naive results are treated as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif is_number(value):
        try:
            return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = parse_iso_timestamp(value)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_iso(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision, e.g. 2024-01-15T10:30:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


# ===================
# SIMPLE TRANSFORMS
# ===================

def _string_only(fn: Callable[[str], Any]) -> Callable[[Any], Any]:
    def wrapper(value: Any) -> Any:
        return fn(value) if isinstance(value, str) else value
    return wrapper


def _number_only(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def wrapper(value: Any) -> Any:
        return fn(value) if is_number(value) else value
    return wrapper


def _cents_to_decimal(value: Any) -> Any:
    result = _to_decimal(value) / 100
    # A float holds 15 significant digits exactly; past that keep the Decimal
    if isinstance(value, Decimal) or len(result.as_tuple().digits) > FLOAT_EXACT_DIGITS:
        return result
    return float(result)


def _decimal_to_cents(value: Any) -> int:
    return int(_half_up(_to_decimal(value) * 100))


def _to_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    if is_number(value):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, (list, tuple, dict)):
        return True
    return bool(value)


def _to_number(value: Any) -> Any:
    if is_number(value):
        return value
    if not isinstance(value, str) or not value.strip():
        return value
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


def _to_array(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _parse_json(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


def _iso_date(value: Any) -> Any:
    if not isinstance(value, (str, datetime, date)) and not is_number(value):
        return value
    parsed = parse_datetime(value)
    return _to_iso(parsed) if parsed else value


def _timestamp(value: Any) -> Any:
    if not isinstance(value, (str, datetime, date)):
        return value
    parsed = parse_datetime(value)
    return int(parsed.timestamp() * 1000) if parsed else value


SIMPLE_TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    # String
    TransformName.UPPERCASE.value: _string_only(str.upper),
    TransformName.LOWERCASE.value: _string_only(str.lower),
    TransformName.CAPITALIZE.value: _string_only(str.capitalize),
    TransformName.CAPITALIZE_WORDS.value: _string_only(
        lambda s: _WORD_START_RE.sub(lambda m: m.group(0).upper(), s)
    ),
    TransformName.TRIM.value: _string_only(str.strip),
    TransformName.TRIM_START.value: _string_only(str.lstrip),
    TransformName.TRIM_END.value: _string_only(str.rstrip),
    TransformName.SLUG.value: _string_only(slugify),
    TransformName.STRIP_HTML.value: _string_only(strip_html),
    # Number
    TransformName.CENTS_TO_DECIMAL.value: _number_only(_cents_to_decimal),
    TransformName.DECIMAL_TO_CENTS.value: _number_only(_decimal_to_cents),
    TransformName.ROUND.value: _number_only(lambda n: int(_half_up(n))),
    TransformName.FLOOR.value: _number_only(math.floor),
    TransformName.CEIL.value: _number_only(math.ceil),
    TransformName.ABS.value: _number_only(abs),
    # Type coercion
    TransformName.BOOLEAN.value: _to_boolean,
    TransformName.NUMBER.value: _to_number,
    TransformName.STRING.value: to_display_string,
    TransformName.ARRAY.value: _to_array,
    TransformName.JSON.value: _parse_json,
    # Date
    TransformName.ISO_DATE.value: _iso_date,
    TransformName.TIMESTAMP.value: _timestamp,
}


def apply_simple_transform(value: Any, name: str) -> Any:
    """Apply a named transform. Unknown names return the value unchanged."""
    fn = SIMPLE_TRANSFORMS.get(_name(name))
    if fn is None:
        logger.debug("unknown_transform", transform=_name(name))
        return value
    return fn(value)


# ===================
# CONFIGURED TRANSFORMS
# ===================

def _date_format(value: Any, options: dict, source: Any) -> Any:
    if not isinstance(value, (str, datetime, date)) and not is_number(value):
        return value
    parsed = parse_datetime(value)
    if parsed is None:
        return value

    output_format = options.get("output_format") or "YYYY-MM-DD"
    locale = str(options.get("locale") or "en").lower()
    months = MONTH_NAMES.get(locale.split("-")[0].split("_")[0], MONTH_NAMES["en"])
    month_name = months[parsed.month - 1]

    tokens = {
        "YYYY": f"{parsed.year:04d}",
        "MMMM": month_name,
        "MMM": month_name[:3],
        "MM": f"{parsed.month:02d}",
        "DD": f"{parsed.day:02d}",
        "HH": f"{parsed.hour:02d}",
        "mm": f"{parsed.minute:02d}",
        "ss": f"{parsed.second:02d}",
    }
    return _DATE_TOKEN_RE.sub(lambda m: tokens[m.group(0)], str(output_format))


def _number_format(value: Any, options: dict, source: Any) -> Any:
    if not is_number(value):
        return value

    decimals = options.get("decimals")
    decimals = 2 if decimals is None else int(decimals)
    thousands = options.get("thousands_separator")
    thousands = "," if thousands is None else thousands
    decimal_sep = options.get("decimal_separator")
    decimal_sep = "." if decimal_sep is None else decimal_sep

    formatted = f"{_half_up(value, decimals):,.{decimals}f}"
    int_part, _, frac_part = formatted.partition(".")
    result = int_part.replace(",", thousands)
    if frac_part:
        result = f"{result}{decimal_sep}{frac_part}"

    return f"{options.get('prefix') or ''}{result}{options.get('suffix') or ''}"


def _expand_js_groups(match: re.Match, replacement: str) -> str:
    """Support "$1" and "$&" in regex replacements."""
    def group(ref: re.Match) -> str:
        token = ref.group(1)
        if token == "&":
            return match.group(0)
        index = int(token)
        if index > (match.re.groups or 0):
            return ref.group(0)
        return match.group(index) or ""
    return _JS_GROUP_RE.sub(group, replacement)


def _replace(value: Any, options: dict, source: Any) -> Any:
    search = options.get("search")
    if not isinstance(value, str) or not isinstance(search, str) or search == "":
        return value

    replacement = to_display_string(options.get("replace", ""))
    is_global = bool(options.get("global"))

    if options.get("regex"):
        flags = re.IGNORECASE if options.get("case_insensitive") else 0
        try:
            pattern = re.compile(search, flags)
        except re.error:
            return value
        return pattern.sub(
            lambda m: _expand_js_groups(m, replacement),
            value,
            count=0 if is_global else 1,
        )

    return value.replace(search, replacement, -1 if is_global else 1)


def _split(value: Any, options: dict, source: Any) -> Any:
    if not isinstance(value, str):
        return value

    delimiter = options.get("delimiter")
    delimiter = "," if delimiter is None else str(delimiter)
    parts = list(value) if delimiter == "" else value.split(delimiter)

    limit = options.get("limit")
    if is_number(limit):
        parts = parts[:max(int(limit), 0)]

    index = options.get("index")
    if index is not None:
        index = int(index)
        return parts[index] if 0 <= index < len(parts) else ""
    return parts


def _join(value: Any, options: dict, source: Any) -> Any:
    if not isinstance(value, (list, tuple)):
        return value
    delimiter = options.get("delimiter")
    delimiter = "," if delimiter is None else str(delimiter)
    return delimiter.join(to_display_string(item) for item in value)


def _substring(value: Any, options: dict, source: Any) -> Any:
    if not isinstance(value, str):
        return value
    length = len(value)
    start = min(max(int(options.get("start") or 0), 0), length)
    end = options.get("end")
    end = length if end is None else min(max(int(end), 0), length)
    if start > end:
        start, end = end, start
    return value[start:end]


def _pad(value: Any, options: dict, source: Any) -> Any:
    text = to_display_string(value)
    length = options.get("length")
    char = options.get("char")
    char = " " if char is None else str(char)
    if not is_number(length) or not char:
        return text

    needed = int(length) - len(text)
    if needed <= 0:
        return text
    fill = (char * needed)[:needed]
    return text + fill if options.get("position") == "end" else fill + text


def _template(value: Any, options: dict, source: Any) -> Any:
    template = options.get("template")
    if not template:
        return value

    def substitute(match: re.Match) -> str:
        if source is None:
            return ""
        found = get_path(source, match.group(1))
        return "" if found is MISSING else to_display_string(found)

    return _TEMPLATE_RE.sub(substitute, str(template))


def _lookup(value: Any, options: dict, source: Any) -> Any:
    table = options.get("map")
    if not isinstance(table, dict):
        return value
    mapped = table.get(to_display_string(value))
    if mapped is not None:
        return mapped
    default = options.get("default")
    return default if default is not None else value


def _math(value: Any, options: dict, source: Any) -> Any:
    operand = options.get("operand")
    if not is_number(value) or not is_number(operand):
        return value

    operation = options.get("operation")
    if operation == "add":
        return value + operand
    if operation == "subtract":
        return value - operand
    if operation == "multiply":
        return value * operand
    if operation == "divide":
        return value / operand if operand != 0 else value
    if operation == "modulo":
        if operand == 0:
            return value
        # Remainder takes the dividend's sign
        result = math.fmod(value, operand)
        both_int = isinstance(value, int) and isinstance(operand, int)
        return int(result) if both_int else result
    return value


CONFIGURED_TRANSFORMS: dict[str, Callable[[Any, dict, Any], Any]] = {
    ConfiguredTransform.DATE_FORMAT.value: _date_format,
    ConfiguredTransform.NUMBER_FORMAT.value: _number_format,
    ConfiguredTransform.REPLACE.value: _replace,
    ConfiguredTransform.SPLIT.value: _split,
    ConfiguredTransform.JOIN.value: _join,
    ConfiguredTransform.SUBSTRING.value: _substring,
    ConfiguredTransform.PAD.value: _pad,
    ConfiguredTransform.TEMPLATE.value: _template,
    ConfiguredTransform.LOOKUP.value: _lookup,
    ConfiguredTransform.MATH.value: _math,
}


def apply_configured_transform(value: Any, config: TransformConfig, source: Any = None) -> Any:
    """
    Apply a {type, options} transform.

    A simple transform name with no options behaves as the simple
    transform. Options that cannot be used leave the value unchanged.
    """
    name = _name(config.type)

    if config.options is None:
        if name in SIMPLE_TRANSFORMS:
            return SIMPLE_TRANSFORMS[name](value)
        return value

    fn = CONFIGURED_TRANSFORMS.get(name)
    if fn is None:
        logger.debug("unknown_transform", transform=name)
        return value

    try:
        return fn(value, config.options, source)
    except (TypeError, ValueError, InvalidOperation, OverflowError) as e:
        # Bad option values (e.g. a non-numeric "length") behave as a no-op
        logger.debug("transform_options_invalid", transform=name, error=str(e))
        return value


# ===================
# PUBLIC API
# ===================

def _name(name: Any) -> str:
    return name.value if isinstance(name, Enum) else str(name)


def _apply_single(value: Any, spec: Any, source: Any) -> Any:
    if isinstance(spec, (str, Enum)):
        return apply_simple_transform(value, spec)
    if isinstance(spec, dict):
        try:
            spec = TransformConfig.model_validate(spec)
        except PydanticValidationError:
            logger.debug("transform_config_invalid", spec=spec)
            return value
    if isinstance(spec, TransformConfig):
        return apply_configured_transform(value, spec, source)
    return value


def apply_transforms(value: Any, transform: TransformInput, source: Any = None) -> Any:
    """
    Apply one transform, or a chain of transforms, to a value.

    Args:
        value: Value read from the source record
        transform: Name, TransformConfig (or dict), or an ordered list of them
        source: The full source record, used by the template transform

    Returns:
        The transformed value. None input is returned as-is.
    """
    if value is None or transform is None:
        return value

    if isinstance(transform, (list, tuple)):
        for spec in transform:
            value = _apply_single(value, spec, source)
        return value

    return _apply_single(value, transform, source)
