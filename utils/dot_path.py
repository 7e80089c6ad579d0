"""
Dot-path access over JSON-like trees.

Used by field mappings, conditions and templates to read values such as
"metadata.origin" or "images.0.url" from an external product record.

A path that does not resolve returns MISSING rather than None, so callers
can tell "absent" apart from "present but null".
"""

from collections.abc import Mapping, Sequence
from typing import Any


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def is_missing(value: Any) -> bool:
    return value is MISSING


def split_path(path: str) -> list[str]:
    """Split "a.b.c" into segments. Empty segments are dropped."""
    return [segment for segment in path.split(".") if segment]


def _step(node: Any, segment: str) -> Any:
    if isinstance(node, Mapping):
        return node[segment] if segment in node else MISSING

    # Lists are indexable by numeric segments ("images.0.url")
    if isinstance(node, Sequence) and not isinstance(node, (str, bytes)):
        if segment.isdigit():
            index = int(segment)
            if index < len(node):
                return node[index]
        return MISSING

    return MISSING


def get_path(tree: Any, path: str) -> Any:
    """
    Walk `tree` along `path`.

    Args:
        tree: Nested dicts/lists (e.g. ExternalProduct.to_record())
        path: Dot-separated path

    Returns:
        The value found (which may be None), or MISSING
    """
    segments = split_path(path)
    if not segments:
        return MISSING

    node = tree
    for segment in segments:
        node = _step(node, segment)
        if node is MISSING:
            return MISSING
    return node


def get_value(tree: Any, path: str, default: Any = None) -> Any:
    """Like get_path, but returns `default` when the path is missing."""
    value = get_path(tree, path)
    return default if value is MISSING else value


def has_path(tree: Any, path: str) -> bool:
    return get_path(tree, path) is not MISSING
