"""Region index: diff entities partitioned by the area of the API they concern."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from .models import DiffEntity, DiffKind, RegionArea, RegionKey

_RESPONSE_AREAS = (
    RegionArea.RESPONSE_BODY,
    RegionArea.UNMATCHED_STATUS_CODE,
    RegionArea.UNMATCHED_RESPONSE_CONTENT_TYPE,
)

_REQUEST_AREAS = (
    RegionArea.REQUEST_BODY,
    RegionArea.UNMATCHED_REQUEST_CONTENT_TYPE,
)


def region_of(entity) -> RegionKey:
    """The single region an entity (or diff result) belongs to."""
    loc = entity.location
    kind = entity.kind

    if kind == DiffKind.UNMATCHED_PATH:
        return RegionKey(RegionArea.UNMATCHED_PATH)
    if kind == DiffKind.UNMATCHED_REQUEST_CONTENT_TYPE:
        return RegionKey(
            RegionArea.UNMATCHED_REQUEST_CONTENT_TYPE, loc.path_id, loc.method,
            content_type=loc.content_type,
        )
    if kind == DiffKind.UNMATCHED_STATUS_CODE:
        return RegionKey(
            RegionArea.UNMATCHED_STATUS_CODE, loc.path_id, loc.method,
            status_code=loc.status_code,
        )
    if kind == DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE:
        return RegionKey(
            RegionArea.UNMATCHED_RESPONSE_CONTENT_TYPE, loc.path_id, loc.method,
            status_code=loc.status_code, content_type=loc.content_type,
        )
    if loc.region == "request":
        return RegionKey(
            RegionArea.REQUEST_BODY, loc.path_id, loc.method,
            content_type=loc.content_type,
        )
    return RegionKey(
        RegionArea.RESPONSE_BODY, loc.path_id, loc.method,
        status_code=loc.status_code, content_type=loc.content_type,
    )


def _covers(query: RegionKey, region: RegionKey) -> bool:
    """Whether a query key selects a region. None fields of the query match anything."""
    if query.area == RegionArea.RESPONSE_STATUS:
        if region.area not in _RESPONSE_AREAS:
            return False
    elif query.area != region.area:
        return False

    for name in ('path_id', 'method', 'status_code', 'content_type'):
        wanted = getattr(query, name)
        if wanted is not None and wanted != getattr(region, name):
            return False
    return True


class RegionSet:
    """Read-only view over diff entities, partitioned by region."""

    def __init__(self, entities: Iterable[DiffEntity]):
        self._entities = list(entities)
        self._regions: dict[RegionKey, list[DiffEntity]] = {}
        for entity in self._entities:
            self._regions.setdefault(region_of(entity), []).append(entity)

    @property
    def is_empty(self) -> bool:
        """True only when no diff remains in any region."""
        return not self._entities

    def __len__(self):
        return len(self._entities)

    def __bool__(self):
        return not self.is_empty

    def all(self) -> list[DiffEntity]:
        return list(self._entities)

    def keys(self) -> list[RegionKey]:
        return list(self._regions)

    def diffs_in(self, key: RegionKey) -> list[DiffEntity]:
        if key in self._regions:
            return list(self._regions[key])
        selected = []
        for region, entities in self._regions.items():
            if _covers(key, region):
                selected.extend(entities)
        return selected

    def _in_areas(self, areas: tuple) -> list[DiffEntity]:
        return [
            e for region, entities in self._regions.items() if region.area in areas
            for e in entities
        ]

    # Request

    @property
    def in_request(self) -> list[DiffEntity]:
        return self._in_areas(_REQUEST_AREAS)

    @property
    def request_content_types(self) -> list[Any]:
        seen = []
        for region in self._regions:
            if region.area == RegionArea.REQUEST_BODY and region.content_type not in seen:
                seen.append(region.content_type)
        return seen

    def in_request_content_type(self, content_type: Any) -> list[DiffEntity]:
        return self.diffs_in(RegionKey(RegionArea.REQUEST_BODY, content_type=content_type))

    # Response

    @property
    def status_codes(self) -> list[int]:
        return sorted({
            region.status_code for region in self._regions
            if region.area in _RESPONSE_AREAS
        })

    def in_response_with_status_code(self, status_code: int) -> list[DiffEntity]:
        """Body diffs, unmatched content types and the unmatched status itself."""
        return self.diffs_in(RegionKey(RegionArea.RESPONSE_STATUS, status_code=status_code))

    def in_response_body_shape(self, status_code: int, content_type: Any) -> list[DiffEntity]:
        return self.diffs_in(RegionKey(
            RegionArea.RESPONSE_BODY, status_code=status_code, content_type=content_type
        ))

    # Unmatched

    @property
    def unmatched_path(self) -> list[DiffEntity]:
        return self._in_areas((RegionArea.UNMATCHED_PATH,))

    @property
    def unmatched_request_content_type(self) -> list[DiffEntity]:
        return self._in_areas((RegionArea.UNMATCHED_REQUEST_CONTENT_TYPE,))

    @property
    def unmatched_response_content_type(self) -> list[DiffEntity]:
        return self._in_areas((RegionArea.UNMATCHED_RESPONSE_CONTENT_TYPE,))

    @property
    def unmatched_status_code(self) -> list[DiffEntity]:
        return self._in_areas((RegionArea.UNMATCHED_STATUS_CODE,))

    def is_active(self, key: RegionKey, selected: Optional[Any]) -> bool:
        """Whether the selected diff lies in the given region."""
        if selected is None:
            return False
        selected_key = selected if isinstance(selected, tuple) else selected.key
        return any(e.key == selected_key for e in self.diffs_in(key))

    def to_dict(self) -> dict:
        return {
            "is_empty": self.is_empty,
            "regions": [
                {
                    "area": region.area.value,
                    "path_id": region.path_id,
                    "method": region.method,
                    "status_code": region.status_code,
                    "diffs": [e.to_dict() for e in entities],
                }
                for region, entities in self._regions.items()
            ],
        }
