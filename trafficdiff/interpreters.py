"""Interpreters: describe a diff and suggest specification changes that resolve it."""

from __future__ import annotations

import json
from typing import Any, Optional

from .commands import (
    AddPath,
    AddEndpoint,
    AddShape,
    AddField,
    SetFieldShape,
    SetFieldOptional,
    RemoveField,
    SetListItemShape,
    AddRequestBody,
    SetRequestBodyShape,
    AddResponse,
    SetResponseBodyShape,
)
from .models import (
    EngineConfig,
    Interaction,
    DiffKind,
    DiffLocation,
    DiffDescription,
    ExampleTag,
    ShapeTag,
    ShapeKind,
    ShapeMismatch,
    ShapeSlot,
    SlotKind,
    Suggestion,
    NO_CONTENT_TYPE,
    content_type_label,
)
from .spec import SpecificationState
from .inference import ShapeInferrer, infer_body_shape
from .jsonpath_utils import JSONPathMatcher
from .utils import IdGenerator, observed_kind, kind_name

EXAMPLE_PREVIEW_CHARS = 60


def representative_of(diff) -> Optional[Interaction]:
    """First contributing interaction of a DiffEntity, or the interaction of a DiffResult."""
    interaction = getattr(diff, 'representative', None)
    if interaction is None:
        interaction = getattr(diff, 'interaction', None)
    return interaction


def observed_body(location: DiffLocation, interaction: Optional[Interaction]) -> Any:
    if interaction is None:
        return None
    if location.region == "request":
        return interaction.request_body
    return interaction.response_body


def _preview(value: Any) -> str:
    text = json.dumps(value, sort_keys=True, default=str)
    if len(text) > EXAMPLE_PREVIEW_CHARS:
        return text[:EXAMPLE_PREVIEW_CHARS - 3] + "..."
    return text


class DiffDescriptionInterpreter:
    """
    Produces a DiffDescription for a diff.

    One fixed template per diff kind and mismatch. Example tags point into the
    observed body, shape tags into the declared shape.
    """

    def __init__(self, state: SpecificationState):
        self.state = state

    def interpret(self, diff, interaction: Optional[Interaction] = None) -> DiffDescription:
        interaction = interaction or representative_of(diff)
        loc = diff.location

        if diff.kind == DiffKind.UNMATCHED_PATH:
            return DiffDescription(
                kind=diff.kind,
                title=f"Undocumented endpoint {loc.method} {loc.observed_path}",
                assertion=f"{loc.method} {loc.observed_path} is not part of the specification",
                change_type="addition",
            )

        endpoint = f"{loc.method} {self._full_path(loc.path_id)}"

        if diff.kind == DiffKind.UNMATCHED_REQUEST_CONTENT_TYPE:
            label = content_type_label(loc.content_type)
            return DiffDescription(
                kind=diff.kind,
                title=f"Undocumented request body: {label}",
                assertion=f"{endpoint} does not declare a {label} request body",
                change_type="addition",
            )

        if diff.kind == DiffKind.UNMATCHED_STATUS_CODE:
            return DiffDescription(
                kind=diff.kind,
                title=f"Undocumented {loc.status_code} response",
                assertion=f"{endpoint} does not declare a {loc.status_code} response",
                change_type="addition",
            )

        if diff.kind == DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE:
            label = content_type_label(loc.content_type)
            return DiffDescription(
                kind=diff.kind,
                title=f"Undocumented {loc.status_code} response body: {label}",
                assertion=f"{endpoint} does not declare a {label} body for its {loc.status_code} response",
                change_type="addition",
            )

        return self._describe_body(diff, interaction)

    def _full_path(self, path_id: Optional[str]) -> str:
        path_def = self.state.paths.get(path_id) if path_id else None
        return path_def.path if path_def else str(path_id)

    def _body_name(self, loc: DiffLocation) -> str:
        if loc.region == "request":
            return "request body"
        return f"{loc.status_code} response body"

    def _describe_body(self, diff, interaction: Optional[Interaction]) -> DiffDescription:
        loc = diff.location
        trail = diff.trail
        where = self._body_name(loc)
        body = observed_body(loc, interaction)
        example = JSONPathMatcher.find_values(body, loc.body_path) if body is not None else []

        if diff.mismatch == ShapeMismatch.UNEXPECTED_FIELD:
            observed = f" (observed {_preview(example[0])})" if example else ""
            return DiffDescription(
                kind=diff.kind,
                title=f"Undocumented field '{trail.field_name}' in the {where}",
                assertion=f"'{trail.field_name}' is not declared at {loc.label}{observed}",
                change_type="addition",
                example_tags=[ExampleTag(loc.body_path, "unexpected")],
                shape_tags=[ShapeTag(trail.parent_shape_id, "owner")],
            )

        if diff.mismatch == ShapeMismatch.MISSING_FIELD:
            return DiffDescription(
                kind=diff.kind,
                title=f"Required field '{trail.field_name}' missing from the {where}",
                assertion=f"'{trail.field_name}' is required at {loc.label} but was not observed",
                change_type="removal",
                example_tags=[ExampleTag(loc.body_path, "missing")],
                shape_tags=[ShapeTag(trail.parent_shape_id, "missing", trail.field_id)],
            )

        expected = self._expected_name(trail.expected_shape_id)
        actual = kind_name(trail.observed_kind) if trail.observed_kind else "a different value"
        observed = f" {_preview(example[0])}" if example else ""
        return DiffDescription(
            kind=diff.kind,
            title=f"Type mismatch at {loc.label}",
            assertion=f"Expected {expected} but observed {actual}{observed}",
            change_type="update",
            example_tags=[ExampleTag(loc.body_path, "type_mismatch")],
            shape_tags=[ShapeTag(trail.expected_shape_id, "expected", trail.field_id)],
        )

    def _expected_name(self, shape_id: Optional[str]) -> str:
        shape = self.state.shapes.get(shape_id) if shape_id else None
        if shape is None:
            return "a declared shape"
        if shape.name:
            return shape.name
        if shape.kind == ShapeKind.ONE_OF:
            names = [self._expected_name(choice) for choice in shape.choices]
            return "one of " + ", ".join(names)
        return kind_name(shape.kind)


class SuggestionInterpreter:
    """
    Proposes command sequences that resolve a diff. The first suggestion is
    the default one.

    Interpretation is pure: identifiers come from a generator seeded with the
    diff key and the size of the specification's command log.
    """

    def __init__(self, state: SpecificationState, config: Optional[EngineConfig] = None):
        self.state = state
        self.config = config or EngineConfig()

    def _ids(self, diff, variant: str = "") -> IdGenerator:
        seed = "|".join(diff.key) + f"#{self.state.command_count}"
        if variant:
            seed += f":{variant}"
        return IdGenerator(seed)

    def _inferrer(self, ids: IdGenerator) -> ShapeInferrer:
        return ShapeInferrer(ids, self.config.max_depth)

    def interpret(self, diff, interaction: Optional[Interaction] = None) -> list[Suggestion]:
        interaction = interaction or representative_of(diff)

        if diff.kind == DiffKind.UNMATCHED_PATH:
            return self._add_endpoint(diff, interaction)
        if diff.kind == DiffKind.UNMATCHED_REQUEST_CONTENT_TYPE:
            return self._add_request_body(diff, interaction)
        if diff.kind in (DiffKind.UNMATCHED_STATUS_CODE, DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE):
            return self._add_response(diff, interaction)

        if diff.mismatch == ShapeMismatch.MISSING_FIELD:
            return self._missing_field(diff)
        if diff.mismatch == ShapeMismatch.UNEXPECTED_FIELD:
            return self._unexpected_field(diff, interaction)
        if diff.mismatch == ShapeMismatch.TYPE_MISMATCH:
            return self._type_mismatch(diff, interaction)
        return []

    # Regions

    def _add_endpoint(self, diff, interaction: Optional[Interaction]) -> list[Suggestion]:
        loc = diff.location
        ids = self._ids(diff)
        commands = []

        path_id = loc.path_id
        if path_id is None:
            path_id = ids.next("path")
            commands.append(AddPath(path_id, loc.observed_path))
        commands.append(AddEndpoint(path_id, loc.method))

        if interaction is not None:
            request_ct = interaction.request_content_type
            if request_ct is not NO_CONTENT_TYPE:
                shape_id, shape_commands = infer_body_shape(
                    ids, interaction.request_body, True, self.config.max_depth
                )
                commands.extend(shape_commands)
                commands.append(AddRequestBody(path_id, loc.method, request_ct, shape_id))

            response_ct = interaction.response_content_type
            shape_id, shape_commands = infer_body_shape(
                ids, interaction.response_body, response_ct is not NO_CONTENT_TYPE,
                self.config.max_depth
            )
            commands.extend(shape_commands)
            commands.append(AddResponse(
                path_id, loc.method, interaction.status_code, response_ct, shape_id
            ))

        return [Suggestion(
            title=f"Add endpoint {loc.method} {loc.observed_path}",
            commands=tuple(commands),
            change_type="addition",
        )]

    def _add_request_body(self, diff, interaction: Optional[Interaction]) -> list[Suggestion]:
        loc = diff.location
        body = interaction.request_body if interaction else None
        shape_id, commands = infer_body_shape(
            self._ids(diff), body, loc.content_type is not NO_CONTENT_TYPE, self.config.max_depth
        )
        commands.append(AddRequestBody(loc.path_id, loc.method, loc.content_type, shape_id))
        return [Suggestion(
            title=f"Add {content_type_label(loc.content_type)} request body",
            commands=tuple(commands),
            change_type="addition",
        )]

    def _add_response(self, diff, interaction: Optional[Interaction]) -> list[Suggestion]:
        loc = diff.location
        content_type = loc.content_type
        if content_type is None:
            content_type = interaction.response_content_type if interaction else NO_CONTENT_TYPE
        body = interaction.response_body if interaction else None
        shape_id, commands = infer_body_shape(
            self._ids(diff), body, content_type is not NO_CONTENT_TYPE, self.config.max_depth
        )
        commands.append(AddResponse(
            loc.path_id, loc.method, loc.status_code, content_type, shape_id
        ))

        if diff.kind == DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE:
            title = f"Add {content_type_label(content_type)} body to the {loc.status_code} response"
        elif content_type is NO_CONTENT_TYPE:
            title = f"Add {loc.status_code} response"
        else:
            title = f"Add {loc.status_code} response with {content_type_label(content_type)} body"
        return [Suggestion(title=title, commands=tuple(commands), change_type="addition")]

    # Body shapes

    def _missing_field(self, diff) -> list[Suggestion]:
        trail = diff.trail
        return [
            Suggestion(
                title=f"Mark field '{trail.field_name}' optional",
                commands=(SetFieldOptional(trail.field_id, True),),
            ),
            Suggestion(
                title=f"Remove field '{trail.field_name}'",
                commands=(RemoveField(trail.field_id),),
                change_type="removal",
            ),
        ]

    def _values_at(self, diff, interaction: Optional[Interaction]) -> list[Any]:
        body = observed_body(diff.location, interaction)
        if body is None:
            return []
        return JSONPathMatcher.find_values(body, diff.location.body_path)

    def _unexpected_field(self, diff, interaction: Optional[Interaction]) -> list[Suggestion]:
        trail = diff.trail
        values = self._values_at(diff, interaction)
        suggestions = []

        for optional in (True, False):
            ids = self._ids(diff, "optional" if optional else "required")
            shape_id, commands = self._inferrer(ids).infer_many(values)
            commands.append(AddField(
                field_id=ids.next("field"),
                shape_id=trail.parent_shape_id,
                name=trail.field_name,
                field_shape_id=shape_id,
                optional=optional,
            ))
            kind = "an optional" if optional else "a required"
            suggestions.append(Suggestion(
                title=f"Add '{trail.field_name}' as {kind} field",
                commands=tuple(commands),
                change_type="addition",
            ))
        return suggestions

    def _type_mismatch(self, diff, interaction: Optional[Interaction]) -> list[Suggestion]:
        trail = diff.trail
        values = [
            v for v in self._values_at(diff, interaction)
            if trail.observed_kind is None or observed_kind(v) == trail.observed_kind
        ]
        target = self._slot_name(trail.slot, trail.field_name)
        observed = kind_name(trail.observed_kind) if trail.observed_kind else "observed values"

        ids = self._ids(diff, "widen")
        shape_id, commands = self._inferrer(ids).infer_many(values)
        expected = self.state.shapes.get(trail.expected_shape_id)
        if expected is not None and expected.kind == ShapeKind.ONE_OF:
            choices = expected.choices + (shape_id,)
        else:
            choices = (trail.expected_shape_id, shape_id)
        union_id = ids.next("shape")
        commands.append(AddShape(union_id, ShapeKind.ONE_OF, choices=choices))
        commands.append(self._set_slot(trail.slot, union_id))
        widen = Suggestion(
            title=f"Allow {observed} for {target}",
            commands=tuple(commands),
        )

        ids = self._ids(diff, "replace")
        shape_id, commands = self._inferrer(ids).infer_many(values)
        commands.append(self._set_slot(trail.slot, shape_id))
        replace = Suggestion(
            title=f"Change {target} to {observed}",
            commands=tuple(commands),
        )
        return [widen, replace]

    def _slot_name(self, slot: ShapeSlot, field_name: Optional[str]) -> str:
        if slot.kind == SlotKind.FIELD:
            return f"field '{field_name}'"
        if slot.kind == SlotKind.LIST_ITEM:
            return "list items"
        if slot.kind == SlotKind.REQUEST_BODY:
            return "the request body"
        return f"the {slot.owner[2]} response body"

    def _set_slot(self, slot: ShapeSlot, shape_id: str):
        """Command that points a shape slot at a new shape."""
        if slot.kind == SlotKind.FIELD:
            return SetFieldShape(slot.owner[0], shape_id)
        if slot.kind == SlotKind.LIST_ITEM:
            return SetListItemShape(slot.owner[0], shape_id)
        if slot.kind == SlotKind.REQUEST_BODY:
            path_id, method, content_type = slot.owner
            return SetRequestBodyShape(path_id, method, content_type, shape_id)
        path_id, method, status_code, content_type = slot.owner
        return SetResponseBodyShape(path_id, method, status_code, content_type, shape_id)
