"""Utility functions for TrafficDiff engine."""

from __future__ import annotations

import re
import json
import hashlib
from typing import Any

from .models import ShapeKind


ITEMS_SEGMENT = "[*]"


def get_json_size_mb(obj: Any) -> float:
    """Get the approximate size of a JSON value or raw body in megabytes."""
    if isinstance(obj, bytes):
        return len(obj) / (1024 * 1024)
    if isinstance(obj, str):
        return len(obj.encode('utf-8')) / (1024 * 1024)
    json_str = json.dumps(obj)
    return len(json_str.encode('utf-8')) / (1024 * 1024)


def is_numeric(value: Any) -> bool:
    """Check if a value is numeric (int or float)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def observed_kind(value: Any) -> ShapeKind:
    """Shape kind of a parsed JSON value."""
    if value is None:
        return ShapeKind.NULL
    elif isinstance(value, bool):
        return ShapeKind.BOOLEAN
    elif is_numeric(value):
        return ShapeKind.NUMBER
    elif isinstance(value, str):
        return ShapeKind.STRING
    elif isinstance(value, list):
        return ShapeKind.LIST
    elif isinstance(value, dict):
        return ShapeKind.OBJECT
    return ShapeKind.ANY


def kind_name(kind: ShapeKind) -> str:
    """Friendly name of a shape kind for descriptions."""
    if kind == ShapeKind.LIST:
        return "array"
    if kind == ShapeKind.ONE_OF:
        return "one of"
    return kind.value


def build_path(parent_path: str, key: str | int) -> str:
    """Build a JSONPath from parent path and an object key or list index."""
    if isinstance(key, int):
        return f"{parent_path}[{key}]"
    else:
        # Handle special characters in key names
        if re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', key):
            return f"{parent_path}.{key}"
        else:
            escaped = key.replace('\\', '\\\\').replace("'", "\\'")
            return f"{parent_path}['{escaped}']"


def items_path(parent_path: str) -> str:
    """JSONPath shared by every item of a list."""
    return f"{parent_path}{ITEMS_SEGMENT}"


_SEGMENT = re.compile(
    r"\.([a-zA-Z_][a-zA-Z0-9_]*)"
    r"|\['((?:[^'\\]|\\.)*)'\]"
    r"|\[(\*)\]"
    r"|\[(\d+)\]"
)


def path_segments(json_path: str) -> list[str | int | None]:
    """
    Split a path built by build_path/items_path into its segments.

    Returns:
        Object keys as str, list indexes as int, and None for [*]

    Raises:
        ValueError: if the path was not built by build_path
    """
    if not json_path.startswith('$'):
        raise ValueError(f"Invalid body path: {json_path}")

    segments = []
    pos = 1
    while pos < len(json_path):
        match = _SEGMENT.match(json_path, pos)
        if match is None:
            raise ValueError(f"Invalid body path: {json_path}")
        name, quoted, star, index = match.groups()
        if name is not None:
            segments.append(name)
        elif quoted is not None:
            segments.append(re.sub(r"\\(.)", r"\1", quoted))
        elif star is not None:
            segments.append(None)
        else:
            segments.append(int(index))
        pos = match.end()
    return segments


class IdGenerator:
    """Deterministic identifiers: the same seed yields the same sequence."""

    def __init__(self, seed: str):
        self.seed = seed
        self._counter = 0

    def next(self, prefix: str) -> str:
        self._counter += 1
        digest = hashlib.sha256(f"{self.seed}:{prefix}:{self._counter}".encode('utf-8')).hexdigest()
        return f"{prefix}_{digest[:12]}"
