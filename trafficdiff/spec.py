"""Specification state and the command-replay builder."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from .commands import (
    Command,
    AddPath,
    AddEndpoint,
    SetEndpointPurpose,
    AddShape,
    SetShapeName,
    AddField,
    SetFieldShape,
    SetFieldOptional,
    RemoveField,
    SetListItemShape,
    AddRequestBody,
    SetRequestBodyShape,
    AddResponse,
    SetResponseBodyShape,
    StartBatchCommit,
    EndBatchCommit,
    command_from_dict,
)
from .models import NO_CONTENT_TYPE, BatchCommit, ShapeKind, content_type_label
from .exceptions import CommandError, SpecificationError

logger = logging.getLogger(__name__)


STRING_SHAPE = "$string"
NUMBER_SHAPE = "$number"
BOOLEAN_SHAPE = "$boolean"
NULL_SHAPE = "$null"
ANY_SHAPE = "$any"

CORE_SHAPES = {
    STRING_SHAPE: ShapeKind.STRING,
    NUMBER_SHAPE: ShapeKind.NUMBER,
    BOOLEAN_SHAPE: ShapeKind.BOOLEAN,
    NULL_SHAPE: ShapeKind.NULL,
    ANY_SHAPE: ShapeKind.ANY,
}

_PARAM_SEGMENT = re.compile(r'^\{([^{}/]+)\}$')


def split_path(path: str) -> tuple[str, ...]:
    """Split a URL path into segments, ignoring empty ones."""
    return tuple(s for s in (path or "").split('/') if s)


def normalize_path(path: str) -> str:
    return "/" + "/".join(split_path(path))


@dataclass(frozen=True)
class PathDef:
    path_id: str
    path: str
    segments: tuple
    parameters: tuple

    def matches(self, observed: tuple) -> bool:
        if len(observed) != len(self.segments):
            return False
        for template, actual in zip(self.segments, observed):
            if _PARAM_SEGMENT.match(template):
                continue
            if template != actual:
                return False
        return True

    @property
    def specificity(self) -> tuple:
        return tuple(0 if _PARAM_SEGMENT.match(s) else 1 for s in self.segments)


@dataclass(frozen=True)
class EndpointDef:
    path_id: str
    method: str
    purpose: Optional[str] = None


@dataclass(frozen=True)
class ShapeDef:
    shape_id: str
    kind: ShapeKind
    name: Optional[str] = None
    item_shape_id: Optional[str] = None
    choices: tuple = ()


@dataclass(frozen=True)
class FieldDef:
    field_id: str
    shape_id: str
    name: str
    field_shape_id: str
    optional: bool = False


@dataclass(frozen=True)
class RequestBodyDef:
    path_id: str
    method: str
    content_type: Any
    shape_id: Optional[str] = None


@dataclass(frozen=True)
class ResponseDef:
    path_id: str
    method: str
    status_code: int
    content_type: Any
    shape_id: Optional[str] = None


@dataclass
class EndpointDescriptor:
    """Everything declared for one path + method."""
    path_id: str
    full_path: str
    method: str
    purpose: Optional[str]
    request_bodies: list[RequestBodyDef] = field(default_factory=list)
    responses: list[ResponseDef] = field(default_factory=list)
    path_parameters: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.request_bodies and not self.responses

    def to_dict(self) -> dict:
        return {
            "path_id": self.path_id,
            "full_path": self.full_path,
            "method": self.method,
            "purpose": self.purpose,
            "path_parameters": list(self.path_parameters),
            "request_bodies": [
                {"content_type": content_type_label(b.content_type), "shape_id": b.shape_id}
                for b in self.request_bodies
            ],
            "responses": [
                {
                    "status_code": r.status_code,
                    "content_type": content_type_label(r.content_type),
                    "shape_id": r.shape_id,
                }
                for r in self.responses
            ],
            "is_empty": self.is_empty,
        }


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


@dataclass(frozen=True)
class SpecificationState:
    """Immutable snapshot of a specification.

    Never mutated in place; ``apply_commands`` returns a new snapshot that
    shares every unchanged definition with the old one.
    """
    paths: Mapping[str, PathDef]
    endpoints: Mapping[tuple, EndpointDef]
    shapes: Mapping[str, ShapeDef]
    fields_by_id: Mapping[str, FieldDef]
    field_order: Mapping[str, tuple]
    request_body_defs: Mapping[tuple, RequestBodyDef]
    response_defs: Mapping[tuple, ResponseDef]
    batches: tuple = ()
    open_batch: Optional[tuple] = None
    command_count: int = 0

    @classmethod
    def empty(cls) -> 'SpecificationState':
        shapes = {
            shape_id: ShapeDef(shape_id=shape_id, kind=kind)
            for shape_id, kind in CORE_SHAPES.items()
        }
        return cls(
            paths=_frozen({}),
            endpoints=_frozen({}),
            shapes=_frozen(shapes),
            fields_by_id=_frozen({}),
            field_order=_frozen({}),
            request_body_defs=_frozen({}),
            response_defs=_frozen({}),
        )

    # Shapes

    def shape(self, shape_id: str) -> ShapeDef:
        """Resolve a shape id. A dangling id is a specification error."""
        shape = self.shapes.get(shape_id)
        if shape is None:
            raise SpecificationError(f"Unknown shape: {shape_id}", reference=shape_id)
        return shape

    def has_shape(self, shape_id: str) -> bool:
        return shape_id in self.shapes

    def field(self, field_id: str) -> FieldDef:
        field_def = self.fields_by_id.get(field_id)
        if field_def is None:
            raise SpecificationError(f"Unknown field: {field_id}", reference=field_id)
        return field_def

    def fields_of(self, shape_id: str) -> list[FieldDef]:
        return [self.fields_by_id[fid] for fid in self.field_order.get(shape_id, ())]

    def field_named(self, shape_id: str, name: str) -> Optional[FieldDef]:
        for field_def in self.fields_of(shape_id):
            if field_def.name == name:
                return field_def
        return None

    def concepts(self) -> list[ShapeDef]:
        """Named shapes, in declaration order."""
        return [s for s in self.shapes.values() if s.name]

    # Paths and endpoints

    def resolve_path(self, path: str) -> Optional[str]:
        """Find the path id whose template matches a URL path.

        The template with the most literal segments wins; ties go to the
        one whose literals come first.
        """
        observed = split_path(path)
        best = None
        for path_def in self.paths.values():
            if not path_def.matches(observed):
                continue
            if best is None or path_def.specificity > best.specificity:
                best = path_def
        return best.path_id if best else None

    def path_parameters(self, path_id: str) -> tuple:
        path_def = self.paths.get(path_id)
        return path_def.parameters if path_def else ()

    def endpoint(self, path_id: str, method: str) -> Optional[EndpointDef]:
        return self.endpoints.get((path_id, method.upper()))

    def request_bodies(self, path_id: str, method: str) -> list[RequestBodyDef]:
        method = method.upper()
        return [
            b for (pid, m, _), b in self.request_body_defs.items()
            if pid == path_id and m == method
        ]

    def request_body(self, path_id: str, method: str, content_type: Any) -> Optional[RequestBodyDef]:
        return self.request_body_defs.get((path_id, method.upper(), content_type))

    def responses(
        self,
        path_id: str,
        method: str,
        status_code: Optional[int] = None
    ) -> list[ResponseDef]:
        method = method.upper()
        return [
            r for (pid, m, code, _), r in self.response_defs.items()
            if pid == path_id and m == method
            and (status_code is None or code == status_code)
        ]

    def response(
        self,
        path_id: str,
        method: str,
        status_code: int,
        content_type: Any
    ) -> Optional[ResponseDef]:
        return self.response_defs.get((path_id, method.upper(), status_code, content_type))

    def endpoint_descriptor(self, path_id: str, method: str) -> Optional[EndpointDescriptor]:
        endpoint = self.endpoint(path_id, method)
        if endpoint is None:
            return None
        return EndpointDescriptor(
            path_id=path_id,
            full_path=self.paths[path_id].path,
            method=endpoint.method,
            purpose=endpoint.purpose,
            request_bodies=self.request_bodies(path_id, method),
            responses=sorted(
                self.responses(path_id, method),
                key=lambda r: (r.status_code, content_type_label(r.content_type))
            ),
            path_parameters=self.path_parameters(path_id),
        )

    def validate(self) -> list[SpecificationError]:
        """Report every dangling shape reference."""
        errors = []

        def check(shape_id, where):
            if shape_id is not None and shape_id not in self.shapes:
                errors.append(SpecificationError(
                    f"{where} references unknown shape {shape_id}",
                    reference=shape_id
                ))

        for shape in self.shapes.values():
            if shape.kind == ShapeKind.LIST:
                check(shape.item_shape_id, f"list shape {shape.shape_id}")
            for choice in shape.choices:
                check(choice, f"one-of shape {shape.shape_id}")
        for field_def in self.fields_by_id.values():
            check(field_def.field_shape_id, f"field {field_def.field_id}")
        for body in self.request_body_defs.values():
            check(body.shape_id, f"request body {body.method} {body.path_id}")
        for resp in self.response_defs.values():
            check(resp.shape_id, f"response {resp.status_code} {resp.method} {resp.path_id}")
        return errors


class SpecBuilder:
    """Replays commands over a scratch copy of a state.

    Each handler validates only the entity its command mutates; references
    to other shapes are resolved when read.
    """

    def __init__(self, state: SpecificationState):
        self.base = state
        self.paths = dict(state.paths)
        self.endpoints = dict(state.endpoints)
        self.shapes = dict(state.shapes)
        self.fields = dict(state.fields_by_id)
        self.field_order = dict(state.field_order)
        self.request_bodies = dict(state.request_body_defs)
        self.responses = dict(state.response_defs)
        self.batches = list(state.batches)
        self.open_batch = state.open_batch
        self.applied = 0

        self._handlers = {
            AddPath: self._add_path,
            AddEndpoint: self._add_endpoint,
            SetEndpointPurpose: self._set_endpoint_purpose,
            AddShape: self._add_shape,
            SetShapeName: self._set_shape_name,
            AddField: self._add_field,
            SetFieldShape: self._set_field_shape,
            SetFieldOptional: self._set_field_optional,
            RemoveField: self._remove_field,
            SetListItemShape: self._set_list_item_shape,
            AddRequestBody: self._add_request_body,
            SetRequestBodyShape: self._set_request_body_shape,
            AddResponse: self._add_response,
            SetResponseBodyShape: self._set_response_body_shape,
            StartBatchCommit: self._start_batch,
            EndBatchCommit: self._end_batch,
        }

    def apply(self, command: Command):
        handler = self._handlers.get(type(command))
        if handler is None:
            raise CommandError(command, "unsupported command")
        handler(command)
        self.applied += 1

    def result(self) -> SpecificationState:
        return SpecificationState(
            paths=_frozen(self.paths),
            endpoints=_frozen(self.endpoints),
            shapes=_frozen(self.shapes),
            fields_by_id=_frozen(self.fields),
            field_order=_frozen(self.field_order),
            request_body_defs=_frozen(self.request_bodies),
            response_defs=_frozen(self.responses),
            batches=tuple(self.batches),
            open_batch=self.open_batch,
            command_count=self.base.command_count + self.applied,
        )

    # Paths and endpoints

    def _add_path(self, cmd: AddPath):
        if cmd.path_id in self.paths:
            raise CommandError(cmd, f"path {cmd.path_id} already exists")
        segments = split_path(cmd.path)
        parameters = tuple(
            m.group(1) for m in (_PARAM_SEGMENT.match(s) for s in segments) if m
        )
        self.paths[cmd.path_id] = PathDef(
            path_id=cmd.path_id,
            path=normalize_path(cmd.path),
            segments=segments,
            parameters=parameters,
        )

    def _require_endpoint(self, cmd, path_id: str, method: str) -> tuple:
        key = (path_id, method.upper())
        if key not in self.endpoints:
            raise CommandError(cmd, f"unknown endpoint {method.upper()} {path_id}")
        return key

    def _add_endpoint(self, cmd: AddEndpoint):
        if cmd.path_id not in self.paths:
            raise CommandError(cmd, f"unknown path {cmd.path_id}")
        key = (cmd.path_id, cmd.method.upper())
        if key in self.endpoints:
            raise CommandError(cmd, f"endpoint {key[1]} {cmd.path_id} already exists")
        self.endpoints[key] = EndpointDef(cmd.path_id, key[1], cmd.purpose)

    def _set_endpoint_purpose(self, cmd: SetEndpointPurpose):
        key = self._require_endpoint(cmd, cmd.path_id, cmd.method)
        self.endpoints[key] = replace(self.endpoints[key], purpose=cmd.purpose)

    # Shapes and fields

    def _require_shape(self, cmd, shape_id: str, kind: Optional[ShapeKind] = None) -> ShapeDef:
        shape = self.shapes.get(shape_id)
        if shape is None:
            raise CommandError(cmd, f"unknown shape {shape_id}")
        if kind is not None and shape.kind != kind:
            raise CommandError(cmd, f"shape {shape_id} is {shape.kind.value}, not {kind.value}")
        return shape

    def _require_field(self, cmd, field_id: str) -> FieldDef:
        field_def = self.fields.get(field_id)
        if field_def is None:
            raise CommandError(cmd, f"unknown field {field_id}")
        return field_def

    def _add_shape(self, cmd: AddShape):
        if cmd.shape_id in self.shapes:
            raise CommandError(cmd, f"shape {cmd.shape_id} already exists")
        if cmd.shape_id.startswith('$'):
            raise CommandError(cmd, "shape ids starting with '$' are reserved")
        if cmd.kind == ShapeKind.LIST and not cmd.item_shape_id:
            raise CommandError(cmd, "list shapes need an item shape")
        if cmd.kind == ShapeKind.ONE_OF and not cmd.choices:
            raise CommandError(cmd, "one-of shapes need at least one choice")
        self.shapes[cmd.shape_id] = ShapeDef(
            shape_id=cmd.shape_id,
            kind=cmd.kind,
            name=cmd.name,
            item_shape_id=cmd.item_shape_id if cmd.kind == ShapeKind.LIST else None,
            choices=tuple(cmd.choices) if cmd.kind == ShapeKind.ONE_OF else (),
        )

    def _set_shape_name(self, cmd: SetShapeName):
        shape = self._require_shape(cmd, cmd.shape_id)
        if shape.shape_id in CORE_SHAPES:
            raise CommandError(cmd, "core shapes cannot be renamed")
        self.shapes[cmd.shape_id] = replace(shape, name=cmd.name)

    def _add_field(self, cmd: AddField):
        if cmd.field_id in self.fields:
            raise CommandError(cmd, f"field {cmd.field_id} already exists")
        self._require_shape(cmd, cmd.shape_id, ShapeKind.OBJECT)
        for fid in self.field_order.get(cmd.shape_id, ()):
            if self.fields[fid].name == cmd.name:
                raise CommandError(cmd, f"shape {cmd.shape_id} already has a field named {cmd.name}")
        self.fields[cmd.field_id] = FieldDef(
            field_id=cmd.field_id,
            shape_id=cmd.shape_id,
            name=cmd.name,
            field_shape_id=cmd.field_shape_id,
            optional=bool(cmd.optional),
        )
        self.field_order[cmd.shape_id] = self.field_order.get(cmd.shape_id, ()) + (cmd.field_id,)

    def _set_field_shape(self, cmd: SetFieldShape):
        field_def = self._require_field(cmd, cmd.field_id)
        self.fields[cmd.field_id] = replace(field_def, field_shape_id=cmd.field_shape_id)

    def _set_field_optional(self, cmd: SetFieldOptional):
        field_def = self._require_field(cmd, cmd.field_id)
        self.fields[cmd.field_id] = replace(field_def, optional=bool(cmd.optional))

    def _remove_field(self, cmd: RemoveField):
        field_def = self._require_field(cmd, cmd.field_id)
        del self.fields[cmd.field_id]
        self.field_order[field_def.shape_id] = tuple(
            fid for fid in self.field_order.get(field_def.shape_id, ())
            if fid != cmd.field_id
        )

    def _set_list_item_shape(self, cmd: SetListItemShape):
        shape = self._require_shape(cmd, cmd.shape_id, ShapeKind.LIST)
        self.shapes[cmd.shape_id] = replace(shape, item_shape_id=cmd.item_shape_id)

    # Bodies

    def _add_request_body(self, cmd: AddRequestBody):
        self._require_endpoint(cmd, cmd.path_id, cmd.method)
        key = (cmd.path_id, cmd.method.upper(), cmd.content_type)
        if key in self.request_bodies:
            raise CommandError(
                cmd, f"request body {content_type_label(cmd.content_type)} already declared"
            )
        self.request_bodies[key] = RequestBodyDef(
            cmd.path_id, cmd.method.upper(), cmd.content_type, cmd.shape_id
        )

    def _set_request_body_shape(self, cmd: SetRequestBodyShape):
        key = (cmd.path_id, cmd.method.upper(), cmd.content_type)
        body = self.request_bodies.get(key)
        if body is None:
            raise CommandError(
                cmd, f"no request body {content_type_label(cmd.content_type)} declared"
            )
        self.request_bodies[key] = replace(body, shape_id=cmd.shape_id)

    def _add_response(self, cmd: AddResponse):
        self._require_endpoint(cmd, cmd.path_id, cmd.method)
        if not 100 <= int(cmd.status_code) <= 599:
            raise CommandError(cmd, f"invalid status code {cmd.status_code}")
        key = (cmd.path_id, cmd.method.upper(), int(cmd.status_code), cmd.content_type)
        if key in self.responses:
            raise CommandError(
                cmd,
                f"response {cmd.status_code} {content_type_label(cmd.content_type)} already declared"
            )
        self.responses[key] = ResponseDef(
            cmd.path_id, cmd.method.upper(), int(cmd.status_code), cmd.content_type, cmd.shape_id
        )

    def _set_response_body_shape(self, cmd: SetResponseBodyShape):
        key = (cmd.path_id, cmd.method.upper(), int(cmd.status_code), cmd.content_type)
        resp = self.responses.get(key)
        if resp is None:
            raise CommandError(
                cmd,
                f"no response {cmd.status_code} {content_type_label(cmd.content_type)} declared"
            )
        self.responses[key] = replace(resp, shape_id=cmd.shape_id)

    # Batches

    def _start_batch(self, cmd: StartBatchCommit):
        if self.open_batch is not None:
            raise CommandError(cmd, f"batch {self.open_batch[0]} is still open")
        self.open_batch = (cmd.batch_id, cmd.message, self.base.command_count + self.applied)

    def _end_batch(self, cmd: EndBatchCommit):
        if self.open_batch is None or self.open_batch[0] != cmd.batch_id:
            raise CommandError(cmd, f"batch {cmd.batch_id} was never started")
        batch_id, message, started_at = self.open_batch
        inner = self.base.command_count + self.applied - started_at - 1
        self.batches.append(BatchCommit(batch_id=batch_id, message=message, command_count=inner))
        self.open_batch = None


def apply_commands(state: SpecificationState, commands: Iterable[Command]) -> SpecificationState:
    """Apply commands and return the new state. All or nothing."""
    builder = SpecBuilder(state)
    for command in commands:
        builder.apply(command)
    return builder.result()


def build(command_log: Iterable[Any]) -> SpecificationState:
    """Replay a command log (commands or their dict form) from scratch."""
    commands = [
        command_from_dict(item) if isinstance(item, dict) else item
        for item in command_log or []
    ]
    state = apply_commands(SpecificationState.empty(), commands)
    logger.debug(
        "Built specification: %d commands, %d paths, %d shapes",
        state.command_count, len(state.paths), len(state.shapes)
    )
    return state
