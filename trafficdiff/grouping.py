"""Grouping of diff results into diff entities."""

from __future__ import annotations

from typing import Iterable, Optional

from .models import DiffEntity, DiffResult, Interaction
from .regions import RegionSet


def diff_key(diff) -> tuple:
    """Structural key of a DiffResult, a DiffEntity or an already computed key."""
    if isinstance(diff, tuple):
        return diff
    return diff.key


class DiffIndex:
    """
    Diff entities keyed by (kind, mismatch, location).

    Entities keep first-seen order. Ignoring is a filter over this index and
    never changes it, so removing an ignore restores the entity as it was.
    """

    def __init__(self, max_examples: int = 0):
        self.max_examples = max_examples
        self._entities: dict[tuple, DiffEntity] = {}

    def add(self, result: DiffResult):
        entity = self._entities.get(result.key)
        if entity is None:
            entity = DiffEntity(result)
            self._entities[result.key] = entity
        entity.count += 1
        if result.interaction is not None:
            if not self.max_examples or len(entity.interactions) < self.max_examples:
                entity.interactions.append(result.interaction)

    @property
    def entities(self) -> list[DiffEntity]:
        return list(self._entities.values())

    def sorted_entities(self) -> list[DiffEntity]:
        return sorted(self._entities.values(), key=lambda e: e.key)

    def __len__(self):
        return len(self._entities)

    def __contains__(self, diff) -> bool:
        return diff_key(diff) in self._entities

    def entity(self, diff) -> Optional[DiffEntity]:
        return self._entities.get(diff_key(diff))

    def get(self, diff) -> list[Interaction]:
        """Contributing interactions of a diff, in observation order."""
        entity = self._entities.get(diff_key(diff))
        return list(entity.interactions) if entity else []

    def filter_out(self, ignored: Iterable = ()) -> list[DiffEntity]:
        ignored_keys = {diff_key(d) for d in ignored}
        return [e for k, e in self._entities.items() if k not in ignored_keys]

    def list_regions(
        self,
        ignored: Iterable = (),
        path_id: Optional[str] = None,
        method: Optional[str] = None
    ) -> RegionSet:
        """
        Partition the visible entities into regions.

        Args:
            ignored: Diffs (or keys) to leave out
            path_id: Restrict to one path; None for every endpoint
            method: Restrict to one method

        Returns:
            RegionSet over the remaining entities
        """
        entities = self.filter_out(ignored)
        if path_id is not None:
            entities = [e for e in entities if e.location.path_id == path_id]
        if method is not None:
            entities = [e for e in entities if e.location.method == method.upper()]
        return RegionSet(entities)


def group_diffs(results: Iterable[DiffResult], max_examples: int = 0) -> DiffIndex:
    """Collapse structurally identical diff results into one entity each."""
    index = DiffIndex(max_examples=max_examples)
    for result in results:
        index.add(result)
    return index
