"""
Timestamp parsing for values read back from Postgres and provider APIs.
"""

import re
from datetime import datetime

# Fraction of seconds followed by an optional UTC offset
_FRACTION_RE = re.compile(r"([T ]\d{2}:\d{2}:\d{2})\.(\d+)(?=$|[+-]\d{2}:?\d{2}$)")


def parse_iso_timestamp(text: str) -> datetime:
    """
    datetime.fromisoformat() that also accepts a trailing "Z" and any
    number of fractional-second digits.

    - "2025-01-06T10:00:00.12345+00:00" → microsecond 123450
    - "2025-01-06T10:00:00.1234567Z" → microsecond 123456

    Raises:
        ValueError: If the text is not an ISO 8601 timestamp
    """
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", text, count=1)
    return datetime.fromisoformat(text)
