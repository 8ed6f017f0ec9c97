"""Shape inference: commands that declare the shape of observed JSON values."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from .commands import Command, AddShape, AddField
from .models import ShapeKind
from .spec import CORE_SHAPES, ANY_SHAPE
from .exceptions import MaxDepthExceededError
from .utils import IdGenerator, observed_kind, build_path, items_path

_CORE_BY_KIND = {kind: shape_id for shape_id, kind in CORE_SHAPES.items()}


class ShapeInferrer:
    """
    Infers shapes from observed values.

    Primitives map to the core shapes. Several observations of the same
    location are merged: object fields missing from some observations become
    optional, differing kinds become a one-of, and an empty list becomes a
    list of $any.
    """

    def __init__(self, ids: IdGenerator, max_depth: int = 100):
        self.ids = ids
        self.max_depth = max_depth

    def infer(self, value: Any) -> tuple[str, list[Command]]:
        """
        Infer the shape of one value.

        Returns:
            Tuple of (shape_id, commands declaring it)
        """
        return self.infer_many([value])

    def infer_many(self, values: Iterable[Any]) -> tuple[str, list[Command]]:
        """Infer one shape that every value conforms to."""
        values = list(values)
        commands: list[Command] = []
        if not values:
            return ANY_SHAPE, commands
        shape_id = self._merge(values, commands, "$", 0)
        return shape_id, commands

    def _merge(self, values: list, commands: list, path: str, depth: int) -> str:
        if depth > self.max_depth:
            raise MaxDepthExceededError(self.max_depth, path)

        kinds: list[ShapeKind] = []
        for value in values:
            kind = observed_kind(value)
            if kind not in kinds:
                kinds.append(kind)

        if len(kinds) > 1:
            choices = tuple(
                self._merge([v for v in values if observed_kind(v) == kind], commands, path, depth + 1)
                for kind in kinds
            )
            shape_id = self.ids.next("shape")
            commands.append(AddShape(shape_id, ShapeKind.ONE_OF, choices=choices))
            return shape_id

        kind = kinds[0]
        if kind == ShapeKind.OBJECT:
            return self._object(values, commands, path, depth)
        if kind == ShapeKind.LIST:
            items = [item for value in values for item in value]
            return self._list(items, commands, path, depth)
        return _CORE_BY_KIND.get(kind, ANY_SHAPE)

    def _object(self, objects: list[dict], commands: list, path: str, depth: int) -> str:
        shape_id = self.ids.next("shape")
        commands.append(AddShape(shape_id, ShapeKind.OBJECT))

        names: list[str] = []
        for obj in objects:
            for name in obj:
                if name not in names:
                    names.append(name)

        for name in names:
            present = [obj[name] for obj in objects if name in obj]
            field_shape_id = self._merge(present, commands, build_path(path, name), depth + 1)
            commands.append(AddField(
                field_id=self.ids.next("field"),
                shape_id=shape_id,
                name=name,
                field_shape_id=field_shape_id,
                optional=len(present) < len(objects),
            ))
        return shape_id

    def _list(self, items: list, commands: list, path: str, depth: int) -> str:
        if items:
            item_shape_id = self._merge(items, commands, items_path(path), depth + 1)
        else:
            item_shape_id = ANY_SHAPE
        shape_id = self.ids.next("shape")
        commands.append(AddShape(shape_id, ShapeKind.LIST, item_shape_id=item_shape_id))
        return shape_id


def infer_body_shape(
    ids: IdGenerator,
    body: Any,
    has_content_type: bool,
    max_depth: int = 100
) -> tuple[Optional[str], list[Command]]:
    """
    Shape for a new request or response body.

    No content type means no body (None). A body that was observed but not
    parsed is declared as $any.
    """
    if not has_content_type:
        return None, []
    if body is None:
        return ANY_SHAPE, []
    return ShapeInferrer(ids, max_depth).infer(body)
