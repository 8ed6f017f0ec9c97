"""Specification commands.

The specification is an ordered command log. Each command is an immutable
dataclass; ``to_dict``/``command_from_dict`` give the stored event form.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Optional

from .models import NO_CONTENT_TYPE, ShapeKind
from .exceptions import ValidationError


COMMAND_TYPES: dict[str, type] = {}


def register(cls):
    COMMAND_TYPES[cls.__name__] = cls
    return cls


class Command:
    """Base for all specification commands."""

    def to_dict(self) -> dict:
        result = {"type": type(self).__name__}
        for f in fields(self):
            result[f.name] = _encode(getattr(self, f.name))
        return result


def _encode(value: Any) -> Any:
    if value is NO_CONTENT_TYPE:
        return None
    if isinstance(value, ShapeKind):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


@register
@dataclass(frozen=True)
class AddPath(Command):
    path_id: str
    path: str


@register
@dataclass(frozen=True)
class AddEndpoint(Command):
    path_id: str
    method: str
    purpose: Optional[str] = None


@register
@dataclass(frozen=True)
class SetEndpointPurpose(Command):
    path_id: str
    method: str
    purpose: str


@register
@dataclass(frozen=True)
class AddShape(Command):
    shape_id: str
    kind: ShapeKind
    name: Optional[str] = None
    item_shape_id: Optional[str] = None
    choices: tuple = ()


@register
@dataclass(frozen=True)
class SetShapeName(Command):
    shape_id: str
    name: str


@register
@dataclass(frozen=True)
class AddField(Command):
    field_id: str
    shape_id: str
    name: str
    field_shape_id: str
    optional: bool = False


@register
@dataclass(frozen=True)
class SetFieldShape(Command):
    field_id: str
    field_shape_id: str


@register
@dataclass(frozen=True)
class SetFieldOptional(Command):
    field_id: str
    optional: bool = True


@register
@dataclass(frozen=True)
class RemoveField(Command):
    field_id: str


@register
@dataclass(frozen=True)
class SetListItemShape(Command):
    shape_id: str
    item_shape_id: str


@register
@dataclass(frozen=True)
class AddRequestBody(Command):
    path_id: str
    method: str
    content_type: Any
    shape_id: Optional[str] = None


@register
@dataclass(frozen=True)
class SetRequestBodyShape(Command):
    path_id: str
    method: str
    content_type: Any
    shape_id: Optional[str]


@register
@dataclass(frozen=True)
class AddResponse(Command):
    path_id: str
    method: str
    status_code: int
    content_type: Any
    shape_id: Optional[str] = None


@register
@dataclass(frozen=True)
class SetResponseBodyShape(Command):
    path_id: str
    method: str
    status_code: int
    content_type: Any
    shape_id: Optional[str]


@register
@dataclass(frozen=True)
class StartBatchCommit(Command):
    batch_id: str
    message: str = ""


@register
@dataclass(frozen=True)
class EndBatchCommit(Command):
    batch_id: str


def command_from_dict(data: dict) -> Command:
    """Rebuild a command from its stored form."""
    if not isinstance(data, dict):
        raise ValidationError(
            "command must be an object",
            {"type": type(data).__name__}
        )

    type_name = data.get("type")
    cls = COMMAND_TYPES.get(type_name)
    if cls is None:
        raise ValidationError(f"Unknown command type: {type_name}", {"command": data})

    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "content_type" and value is None:
            value = NO_CONTENT_TYPE
        elif f.name == "content_type":
            value = str(value).lower()
        elif f.name == "kind":
            try:
                value = ShapeKind(value)
            except ValueError:
                raise ValidationError(f"Unknown shape kind: {value}", {"command": data})
        elif f.name == "choices":
            value = tuple(value or ())
        elif f.name == "method":
            value = str(value).upper()
        elif f.name == "status_code":
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid status code: {value}", {"command": data})
        kwargs[f.name] = value

    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ValidationError(f"Invalid {type_name} command: {e}", {"command": data})


def commands_from_dicts(items: list) -> list[Command]:
    return [command_from_dict(item) for item in items or []]


def commands_to_dicts(commands) -> list[dict]:
    return [c.to_dict() for c in commands]
