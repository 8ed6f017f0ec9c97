"""Diff computation: observed interactions against the declared specification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .models import (
    EngineConfig,
    Interaction,
    DiffKind,
    DiffLocation,
    DiffResult,
    ShapeKind,
    ShapeMismatch,
    ShapeSlot,
    ShapeTrail,
    SlotKind,
    NO_CONTENT_TYPE,
)
from .spec import SpecificationState, FieldDef, ShapeDef, normalize_path
from .exceptions import SpecificationError, MaxDepthExceededError
from .utils import observed_kind, build_path, items_path

logger = logging.getLogger(__name__)


@dataclass
class DiffComputation:
    """Every diff result of a sample set, plus endpoints that could not be diffed."""
    results: list[DiffResult] = field(default_factory=list)
    endpoint_errors: dict = field(default_factory=dict)
    interaction_count: int = 0
    skipped_interactions: int = 0


class DiffComputer:
    """
    Walks the declared shapes of an endpoint against each interaction.

    Handles:
    - Endpoint resolution (UnmatchedPath)
    - Request content types (UnmatchedRequestContentType)
    - Status codes and response content types (UnmatchedStatusCode,
      UnmatchedResponseContentType)
    - Body shapes (BodyShapeMismatch: unexpected field, missing field, type mismatch)
    """

    def __init__(self, state: SpecificationState, config: Optional[EngineConfig] = None):
        self.state = state
        self.config = config or EngineConfig()

    def compute(self, interactions: Iterable[Interaction]) -> DiffComputation:
        """
        Diff every interaction.

        A dangling reference aborts the affected endpoint only: its diffs are
        dropped and the error is recorded under (path_id, method).
        """
        computation = DiffComputation()
        collected: list[tuple[tuple, DiffResult]] = []

        for interaction in interactions:
            computation.interaction_count += 1
            endpoint_key = self._endpoint_key(interaction)
            if endpoint_key in computation.endpoint_errors:
                continue
            try:
                for result in self.diff_interaction(interaction):
                    collected.append((endpoint_key, result))
            except SpecificationError as e:
                logger.error(
                    "Specification error for %s %s: %s",
                    interaction.method, interaction.path, e
                )
                computation.endpoint_errors[endpoint_key] = e
            except MaxDepthExceededError as e:
                logger.warning(
                    "Skipping interaction %s %s: %s",
                    interaction.method, interaction.path, e
                )
                computation.skipped_interactions += 1

        computation.results = [
            result for endpoint_key, result in collected
            if endpoint_key not in computation.endpoint_errors
        ]
        return computation

    def _endpoint_key(self, interaction: Interaction) -> tuple:
        return (self.state.resolve_path(interaction.path), interaction.method.upper())

    def diff_interaction(self, interaction: Interaction) -> list[DiffResult]:
        """
        Diff one interaction against the endpoint its path and method resolve to.

        Returns:
            De-duplicated diff results in the order they were found
        """
        method = interaction.method.upper()
        path_id = self.state.resolve_path(interaction.path)

        if path_id is None or self.state.endpoint(path_id, method) is None:
            return [DiffResult(
                kind=DiffKind.UNMATCHED_PATH,
                location=DiffLocation(
                    region="url",
                    path_id=path_id,
                    method=method,
                    observed_path=normalize_path(interaction.path),
                ),
                interaction=interaction,
            )]

        results: dict[tuple, DiffResult] = {}

        def add(result: DiffResult):
            results.setdefault(result.key, result)

        for result in self._diff_request(interaction, path_id, method):
            add(result)
        for result in self._diff_response(interaction, path_id, method):
            add(result)

        return list(results.values())

    def _diff_request(self, interaction: Interaction, path_id: str, method: str) -> list[DiffResult]:
        declared = self.state.request_bodies(path_id, method)
        declared_types = {b.content_type for b in declared} or {NO_CONTENT_TYPE}
        content_type = interaction.request_content_type

        if content_type not in declared_types:
            return [DiffResult(
                kind=DiffKind.UNMATCHED_REQUEST_CONTENT_TYPE,
                location=DiffLocation(
                    region="request",
                    path_id=path_id,
                    method=method,
                    content_type=content_type,
                ),
                interaction=interaction,
            )]

        body = self.state.request_body(path_id, method, content_type)
        if body is None or body.shape_id is None or interaction.request_body is None:
            return []

        slot = ShapeSlot(SlotKind.REQUEST_BODY, (path_id, method, content_type))
        base = DiffLocation(region="request", path_id=path_id, method=method, content_type=content_type)
        return self._body_results(body.shape_id, interaction.request_body, slot, base, interaction)

    def _diff_response(self, interaction: Interaction, path_id: str, method: str) -> list[DiffResult]:
        status_code = interaction.status_code
        declared = self.state.responses(path_id, method, status_code)

        if not declared:
            return [DiffResult(
                kind=DiffKind.UNMATCHED_STATUS_CODE,
                location=DiffLocation(
                    region="response",
                    path_id=path_id,
                    method=method,
                    status_code=status_code,
                ),
                interaction=interaction,
            )]

        content_type = interaction.response_content_type
        if content_type not in {r.content_type for r in declared}:
            return [DiffResult(
                kind=DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE,
                location=DiffLocation(
                    region="response",
                    path_id=path_id,
                    method=method,
                    status_code=status_code,
                    content_type=content_type,
                ),
                interaction=interaction,
            )]

        response = self.state.response(path_id, method, status_code, content_type)
        if response.shape_id is None or interaction.response_body is None:
            return []

        slot = ShapeSlot(SlotKind.RESPONSE_BODY, (path_id, method, status_code, content_type))
        base = DiffLocation(
            region="response",
            path_id=path_id,
            method=method,
            status_code=status_code,
            content_type=content_type,
        )
        return self._body_results(response.shape_id, interaction.response_body, slot, base, interaction)

    def _body_results(
        self,
        shape_id: str,
        body: Any,
        slot: ShapeSlot,
        base: DiffLocation,
        interaction: Interaction
    ) -> list[DiffResult]:
        results = []
        for mismatch, body_path, trail in self._diff_value(shape_id, body, "$", slot, 0):
            results.append(DiffResult(
                kind=DiffKind.BODY_SHAPE_MISMATCH,
                location=DiffLocation(
                    region=base.region,
                    path_id=base.path_id,
                    method=base.method,
                    status_code=base.status_code,
                    content_type=base.content_type,
                    body_path=body_path,
                ),
                mismatch=mismatch,
                trail=trail,
                interaction=interaction,
            ))
        return results

    def _diff_value(
        self,
        shape_id: str,
        value: Any,
        path: str,
        slot: ShapeSlot,
        depth: int,
        field_def: Optional[FieldDef] = None
    ) -> list[tuple]:
        """
        Compare one observed value with one declared shape.

        Returns:
            List of (mismatch, body_path, trail) tuples
        """
        if depth > self.config.max_depth:
            raise MaxDepthExceededError(self.config.max_depth, path)

        shape = self.state.shape(shape_id)

        if shape.kind == ShapeKind.ANY:
            return []

        if shape.kind == ShapeKind.ONE_OF:
            return self._diff_one_of(shape, value, path, slot, depth, field_def)

        actual = observed_kind(value)
        if actual != shape.kind:
            return [(ShapeMismatch.TYPE_MISMATCH, path, self._type_trail(shape, actual, slot, field_def))]

        if shape.kind == ShapeKind.OBJECT:
            return self._diff_object(shape, value, path, depth)
        if shape.kind == ShapeKind.LIST:
            return self._diff_list(shape, value, path, depth)
        return []

    def _type_trail(
        self,
        shape: ShapeDef,
        actual: ShapeKind,
        slot: ShapeSlot,
        field_def: Optional[FieldDef]
    ) -> ShapeTrail:
        return ShapeTrail(
            slot=slot,
            expected_shape_id=shape.shape_id,
            parent_shape_id=field_def.shape_id if field_def else None,
            field_id=field_def.field_id if field_def else None,
            field_name=field_def.name if field_def else None,
            observed_kind=actual,
        )

    def _diff_object(self, shape: ShapeDef, value: dict, path: str, depth: int) -> list[tuple]:
        """Compare an observed object with a declared object shape."""
        diffs = []
        declared_names = set()

        for field_def in self.state.fields_of(shape.shape_id):
            declared_names.add(field_def.name)
            child_path = build_path(path, field_def.name)

            if field_def.name not in value:
                if not field_def.optional:
                    diffs.append((
                        ShapeMismatch.MISSING_FIELD,
                        child_path,
                        ShapeTrail(
                            slot=ShapeSlot(SlotKind.FIELD, (field_def.field_id,)),
                            expected_shape_id=field_def.field_shape_id,
                            parent_shape_id=shape.shape_id,
                            field_id=field_def.field_id,
                            field_name=field_def.name,
                        ),
                    ))
                continue

            diffs.extend(self._diff_value(
                field_def.field_shape_id,
                value[field_def.name],
                child_path,
                ShapeSlot(SlotKind.FIELD, (field_def.field_id,)),
                depth + 1,
                field_def=field_def,
            ))

        for key, child in value.items():
            if key in declared_names:
                continue
            diffs.append((
                ShapeMismatch.UNEXPECTED_FIELD,
                build_path(path, key),
                ShapeTrail(
                    parent_shape_id=shape.shape_id,
                    field_name=key,
                    observed_kind=observed_kind(child),
                ),
            ))

        return diffs

    def _diff_list(self, shape: ShapeDef, value: list, path: str, depth: int) -> list[tuple]:
        """Compare every item; all items share one location."""
        item_path = items_path(path)
        slot = ShapeSlot(SlotKind.LIST_ITEM, (shape.shape_id,))
        seen = {}
        for item in value:
            for diff in self._diff_value(shape.item_shape_id, item, item_path, slot, depth + 1):
                seen.setdefault((diff[0], diff[1]), diff)
        return list(seen.values())

    def _diff_one_of(
        self,
        shape: ShapeDef,
        value: Any,
        path: str,
        slot: ShapeSlot,
        depth: int,
        field_def: Optional[FieldDef]
    ) -> list[tuple]:
        """
        A one-of matches when any choice yields no diffs. Otherwise report the
        diffs of the first choice of the observed kind, else a type mismatch.
        """
        actual = observed_kind(value)
        candidates = []

        for choice_id in shape.choices:
            choice = self.state.shape(choice_id)
            if choice.kind == ShapeKind.ANY:
                return []
            if choice.kind != ShapeKind.ONE_OF and choice.kind != actual:
                continue
            diffs = self._diff_value(choice_id, value, path, slot, depth + 1, field_def)
            if not diffs:
                return []
            if choice.kind == actual:
                candidates.append(diffs)

        if candidates:
            return candidates[0]
        return [(ShapeMismatch.TYPE_MISMATCH, path, self._type_trail(shape, actual, slot, field_def))]
