"""Import of OpenAPI 3 documents as specification command logs."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .commands import (
    Command,
    AddPath,
    AddEndpoint,
    AddShape,
    AddField,
    AddRequestBody,
    AddResponse,
)
from .models import NO_CONTENT_TYPE, ShapeKind
from .spec import STRING_SHAPE, NUMBER_SHAPE, BOOLEAN_SHAPE, NULL_SHAPE, ANY_SHAPE
from .exceptions import ExternalRefError, SchemaParseError, MaxDepthExceededError
from .utils import IdGenerator

logger = logging.getLogger(__name__)

HTTP_METHODS = ('get', 'put', 'post', 'delete', 'options', 'head', 'patch', 'trace')

_PRIMITIVES = {
    'string': STRING_SHAPE,
    'number': NUMBER_SHAPE,
    'integer': NUMBER_SHAPE,
    'boolean': BOOLEAN_SHAPE,
    'null': NULL_SHAPE,
}


class OpenAPIImporter:
    """
    Translates an OpenAPI document into commands.

    Every `$ref` to the same pointer yields one shared shape, named after the
    last pointer segment, so recursive schemas terminate.
    """

    def __init__(self, document: dict, max_depth: int = 100, seed: str = "openapi"):
        if not isinstance(document, dict):
            raise SchemaParseError("OpenAPI document must be an object", reason=type(document).__name__)
        self.document = document
        self.max_depth = max_depth
        self.ids = IdGenerator(seed)
        self.commands: list[Command] = []
        self._named: dict[str, str] = {}

    def import_document(self) -> list[Command]:
        """
        Convert every path, operation, request body and response.

        Returns:
            The command log, in declaration order
        """
        paths = self.document.get('paths') or {}
        if not isinstance(paths, dict):
            raise SchemaParseError("'paths' must be an object", reason=type(paths).__name__)

        for path, item in paths.items():
            path_id = self.ids.next("path")
            self.commands.append(AddPath(path_id, path))
            for method, operation in (item or {}).items():
                if method.lower() not in HTTP_METHODS:
                    continue
                self._operation(path_id, method.upper(), operation or {})

        logger.debug(
            "Imported OpenAPI document: %d paths, %d commands",
            len(paths), len(self.commands)
        )
        return self.commands

    def _operation(self, path_id: str, method: str, operation: dict):
        self.commands.append(AddEndpoint(path_id, method, operation.get('summary')))

        request_body = operation.get('requestBody')
        if request_body:
            request_body = self._deref(request_body)
            for content_type, media in (request_body.get('content') or {}).items():
                shape_id = self._media_shape(media)
                self.commands.append(AddRequestBody(path_id, method, content_type.lower(), shape_id))

        for code, response in (operation.get('responses') or {}).items():
            try:
                status_code = int(code)
            except (TypeError, ValueError):
                # 'default' and ranges like '2XX' have no single status code
                logger.debug("Skipping response '%s' of %s %s", code, method, path_id)
                continue
            response = self._deref(response or {})
            content = response.get('content')
            if not content:
                self.commands.append(AddResponse(path_id, method, status_code, NO_CONTENT_TYPE, None))
                continue
            for content_type, media in content.items():
                shape_id = self._media_shape(media)
                self.commands.append(
                    AddResponse(path_id, method, status_code, content_type.lower(), shape_id)
                )

    def _media_shape(self, media: Optional[dict]) -> str:
        if not media or 'schema' not in media:
            return ANY_SHAPE
        return self.schema_shape(media['schema'])

    def _deref(self, node: dict) -> dict:
        if isinstance(node, dict) and '$ref' in node:
            return self._lookup(node['$ref'])
        return node

    def _lookup(self, ref: str) -> Any:
        """Resolve a local JSON pointer."""
        if ref.startswith('http://') or ref.startswith('https://'):
            raise ExternalRefError(ref)
        if not ref.startswith('#/'):
            raise ExternalRefError(ref)

        resolved = self.document
        for part in ref[2:].split('/'):
            # JSON pointer escaping
            part = part.replace('~1', '/').replace('~0', '~')
            if isinstance(resolved, dict) and part in resolved:
                resolved = resolved[part]
            else:
                raise SchemaParseError(
                    f"Cannot resolve $ref: {ref}",
                    reason=f"Path component '{part}' not found"
                )
        return resolved

    # Schemas

    def schema_shape(
        self,
        node: Any,
        depth: int = 0,
        name: Optional[str] = None,
        reserved: Optional[str] = None
    ) -> str:
        """
        Shape id for a schema node, emitting whatever commands declare it.

        Args:
            node: The schema node
            depth: Current nesting depth
            name: Concept name for the shape
            reserved: Id to give the shape (set for $ref targets)
        """
        if depth > self.max_depth:
            raise MaxDepthExceededError(self.max_depth, name or "schema")
        if not isinstance(node, dict):
            raise SchemaParseError("Schema must be an object", reason=repr(node))

        if '$ref' in node:
            return self._ref_shape(node['$ref'], depth)

        types = node.get('type')
        nullable = bool(node.get('nullable'))
        if isinstance(types, list):
            nullable = nullable or 'null' in types
            types = [t for t in types if t != 'null']
            if len(types) > 1:
                choices = tuple(
                    self.schema_shape(dict(node, type=t, nullable=False), depth + 1)
                    for t in types
                )
                if nullable:
                    choices += (NULL_SHAPE,)
                return self._one_of(choices, name, reserved)
            types = types[0] if types else None

        if nullable:
            shape_id = self._bare_shape(node, types, depth, None, None)
            if shape_id == NULL_SHAPE:
                return shape_id
            return self._one_of((shape_id, NULL_SHAPE), name, reserved)
        return self._bare_shape(node, types, depth, name, reserved)

    def _ref_shape(self, ref: str, depth: int) -> str:
        if ref in self._named:
            return self._named[ref]
        target = self._lookup(ref)
        name = ref.rsplit('/', 1)[-1].replace('~1', '/').replace('~0', '~')

        # Register before descending so self references resolve to this shape
        shape_id = self.ids.next("shape")
        self._named[ref] = shape_id
        actual = self.schema_shape(target, depth + 1, name=name, reserved=shape_id)
        if actual != shape_id:
            self.commands.append(AddShape(shape_id, ShapeKind.ONE_OF, name=name, choices=(actual,)))
        return shape_id

    def _bare_shape(
        self,
        node: dict,
        type_name: Optional[str],
        depth: int,
        name: Optional[str],
        reserved: Optional[str]
    ) -> str:
        for key in ('oneOf', 'anyOf'):
            if key in node:
                choices = tuple(self.schema_shape(c, depth + 1) for c in node[key])
                return self._one_of(choices, name, reserved)

        if 'allOf' in node:
            return self._object(self._merge_all_of(node['allOf']), depth, name, reserved)

        if type_name == 'object' or (type_name is None and 'properties' in node):
            return self._object(node, depth, name, reserved)

        if type_name == 'array' or (type_name is None and 'items' in node):
            shape_id = reserved or self.ids.next("shape")
            items = node.get('items')
            item_shape_id = self.schema_shape(items, depth + 1) if items else ANY_SHAPE
            self.commands.append(AddShape(shape_id, ShapeKind.LIST, name=name, item_shape_id=item_shape_id))
            return shape_id

        if type_name in _PRIMITIVES:
            return _PRIMITIVES[type_name]
        if type_name is not None:
            raise SchemaParseError(f"Unsupported schema type: {type_name}", reason=type_name)
        return ANY_SHAPE

    def _merge_all_of(self, parts: list) -> dict:
        properties: dict = {}
        required: list = []
        for part in parts:
            part = self._deref(part)
            if 'allOf' in part:
                part = self._merge_all_of(part['allOf'])
            properties.update(part.get('properties') or {})
            required.extend(part.get('required') or [])
        return {'type': 'object', 'properties': properties, 'required': required}

    def _object(self, node: dict, depth: int, name: Optional[str], reserved: Optional[str]) -> str:
        shape_id = reserved or self.ids.next("shape")
        self.commands.append(AddShape(shape_id, ShapeKind.OBJECT, name=name))
        required = set(node.get('required') or [])
        for prop, sub in (node.get('properties') or {}).items():
            field_shape_id = self.schema_shape(sub, depth + 1)
            self.commands.append(AddField(
                field_id=self.ids.next("field"),
                shape_id=shape_id,
                name=prop,
                field_shape_id=field_shape_id,
                optional=prop not in required,
            ))
        return shape_id

    def _one_of(self, choices: tuple, name: Optional[str], reserved: Optional[str]) -> str:
        shape_id = reserved or self.ids.next("shape")
        self.commands.append(AddShape(shape_id, ShapeKind.ONE_OF, name=name, choices=choices))
        return shape_id


def commands_from_openapi(document: dict, max_depth: int = 100) -> list[Command]:
    """Convert an OpenAPI 3 document to a command log."""
    return OpenAPIImporter(document, max_depth=max_depth).import_document()


def commands_from_schema(
    schema: dict,
    document: Optional[dict] = None,
    name: Optional[str] = None,
    seed: str = "schema"
) -> tuple[str, list[Command]]:
    """
    Convert one schema fragment.

    Args:
        schema: The schema node
        document: Root used to resolve local $refs (defaults to the schema itself)
        name: Concept name for the resulting shape

    Returns:
        Tuple of (shape_id, commands)
    """
    importer = OpenAPIImporter(document if document is not None else schema, seed=seed)
    shape_id = importer.schema_shape(schema, name=name)
    return shape_id, importer.commands
