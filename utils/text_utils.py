"""
Text utilities for product data coming from external catalogs.

Used by the slug/strip_html transforms and by product slug generation.
"""

import re
import unicodedata
from typing import Optional

_TAG_RE = re.compile(r"<[^>]*>")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping the base characters.

    - "Café Orgánico" → "Cafe Organico"
    """
    # NFD decomposition separates base chars from accents
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def slugify(text: str, max_length: Optional[int] = None) -> str:
    """
    URL-friendly slug.

    - "  Ethiopia Yirgacheffe (Light) " → "ethiopia-yirgacheffe-light"
    - "Café Brasil" → "cafe-brasil"

    Args:
        text: Any string
        max_length: Truncate the slug to this many characters

    Returns:
        Lowercase ASCII words joined by hyphens, no leading/trailing hyphen
    """
    slug = _NON_SLUG_RE.sub("-", strip_accents(text).lower()).strip("-")
    if max_length is not None:
        slug = slug[:max_length]
    return slug


def strip_html(text: str) -> str:
    """Drop HTML tags. Entities are left as-is."""
    return _TAG_RE.sub("", text)


def product_slug(name: str, sku: str) -> str:
    """
    Slug for a newly created product.

    Name slug (max 50 chars) plus a SKU suffix (max 20 chars) so two
    products with the same name still get distinct slugs.
    """
    base = slugify(name, max_length=50)
    sku_part = _NON_SLUG_RE.sub("-", strip_accents(sku).lower())[:20]
    return f"{base}-{sku_part}"
