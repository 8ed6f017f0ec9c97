"""JSONPath utilities for TrafficDiff engine."""

from __future__ import annotations

from typing import Any
from jsonpath_ng.jsonpath import Child, DatumInContext, Fields, Index, Root, Slice

from .utils import path_segments


class _Key(Fields):
    """One object key, matched literally ('*' included)."""

    def reified_fields(self, datum):
        return self.fields


class _Items(Slice):
    """Every item of a list; nothing for any other value."""

    def find(self, datum):
        datum = DatumInContext.wrap(datum)
        if not isinstance(datum.value, list):
            return []
        return super().find(datum)


class JSONPathMatcher:
    """Looks up observed values at diff locations."""

    # Cache for compiled JSONPath expressions
    _cache: dict = {}

    @classmethod
    def compile(cls, path: str):
        """
        Compile and cache a body path built by build_path/items_path.

        The expression is assembled from the path's segments, so any object
        key is matched literally.
        """
        if path not in cls._cache:
            expr = Root()
            for segment in path_segments(path):
                if segment is None:
                    step = _Items()
                elif isinstance(segment, int):
                    step = Index(segment)
                else:
                    step = _Key(segment)
                expr = Child(expr, step)
            cls._cache[path] = expr
        return cls._cache[path]

    @classmethod
    def find_values(cls, data: Any, path: str) -> list[Any]:
        """
        Every value at a body path. `[*]` segments expand to all list items.

        Returns:
            Matching values in document order, or [] for an invalid path
        """
        try:
            expr = cls.compile(path)
        except ValueError:
            return []
        return [m.value for m in expr.find(data)]
