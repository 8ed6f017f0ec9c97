"""Data models for TrafficDiff engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional

from .exceptions import ValidationError


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    def to_logging(self) -> int:
        if self is LogLevel.WARN:
            return logging.WARNING
        return getattr(logging, self.value)


class _NoContentType(Enum):
    NO_CONTENT_TYPE = "no-content-type"

    def __repr__(self):
        return "NO_CONTENT_TYPE"


# Observed or declared "no body". Never equal to a content type string.
NO_CONTENT_TYPE = _NoContentType.NO_CONTENT_TYPE


def content_type_label(content_type: Any) -> str:
    """Display form of a content type, including the no-body sentinel."""
    if content_type is NO_CONTENT_TYPE:
        return "No Body"
    if content_type is None:
        return ""
    return str(content_type)


def content_type_key(content_type: Any) -> str:
    """Sortable key form of a content type. '<none>' cannot be a media type."""
    if content_type is NO_CONTENT_TYPE:
        return "<none>"
    if content_type is None:
        return ""
    return str(content_type)


class ShapeKind(Enum):
    OBJECT = "object"
    LIST = "list"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    ANY = "any"
    ONE_OF = "one_of"


class DiffKind(Enum):
    UNMATCHED_PATH = "UnmatchedPath"
    UNMATCHED_REQUEST_CONTENT_TYPE = "UnmatchedRequestContentType"
    UNMATCHED_STATUS_CODE = "UnmatchedStatusCode"
    UNMATCHED_RESPONSE_CONTENT_TYPE = "UnmatchedResponseContentType"
    BODY_SHAPE_MISMATCH = "BodyShapeMismatch"


class ShapeMismatch(Enum):
    UNEXPECTED_FIELD = "UnexpectedField"
    MISSING_FIELD = "MissingField"
    TYPE_MISMATCH = "TypeMismatch"


class SlotKind(Enum):
    FIELD = "field"
    LIST_ITEM = "list_item"
    REQUEST_BODY = "request_body"
    RESPONSE_BODY = "response_body"


class RegionArea(Enum):
    REQUEST_BODY = "request_body"
    RESPONSE_STATUS = "response_status"
    RESPONSE_BODY = "response_body"
    UNMATCHED_PATH = "unmatched_path"
    UNMATCHED_REQUEST_CONTENT_TYPE = "unmatched_request_content_type"
    UNMATCHED_RESPONSE_CONTENT_TYPE = "unmatched_response_content_type"
    UNMATCHED_STATUS_CODE = "unmatched_status_code"


class SessionState(Enum):
    IDLE = "idle"
    REVIEWING = "reviewing"
    FINISHING = "finishing"
    COMMITTED = "committed"


@dataclass
class EngineConfig:
    """Global configuration for the diff engine."""
    max_depth: int = 100
    max_body_size_mb: float = 10
    json_content_types: tuple[str, ...] = ("application/json",)
    max_examples_per_diff: int = 0
    log_level: LogLevel = LogLevel.INFO

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'EngineConfig':
        """Build a config from a plain mapping (e.g. a parsed YAML file)."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError(
                "engine config must be an object",
                {"type": type(data).__name__}
            )

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError("Unknown engine config keys", {"keys": unknown})

        config = cls()
        try:
            if 'max_depth' in data:
                config.max_depth = int(data['max_depth'])
            if 'max_body_size_mb' in data:
                config.max_body_size_mb = float(data['max_body_size_mb'])
            if 'json_content_types' in data:
                config.json_content_types = tuple(
                    str(ct).lower() for ct in data['json_content_types']
                )
            if 'max_examples_per_diff' in data:
                config.max_examples_per_diff = int(data['max_examples_per_diff'])
            if 'log_level' in data:
                config.log_level = LogLevel(str(data['log_level']).upper())
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid engine config: {e}")

        if config.max_depth < 1:
            raise ValidationError("max_depth must be positive", {"max_depth": config.max_depth})
        if config.max_examples_per_diff < 0:
            raise ValidationError(
                "max_examples_per_diff must not be negative",
                {"max_examples_per_diff": config.max_examples_per_diff}
            )
        return config


@dataclass(frozen=True)
class Interaction:
    """One recorded request/response exchange, normalized."""
    method: str
    path: str
    status_code: int
    host: str = ""
    query: str = ""
    request_headers: tuple = ()
    request_content_type: Any = NO_CONTENT_TYPE
    request_body: Any = None
    request_raw_body: Optional[str] = None
    response_headers: tuple = ()
    response_content_type: Any = NO_CONTENT_TYPE
    response_body: Any = None
    response_raw_body: Optional[str] = None
    uuid: Optional[str] = None

    @property
    def url(self) -> str:
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path

    def to_dict(self) -> dict:
        return {
            "uuid": self.uuid,
            "method": self.method,
            "path": self.path,
            "host": self.host,
            "query": self.query,
            "request": {
                "content_type": content_type_label(self.request_content_type),
                "body": self.request_body,
            },
            "response": {
                "status_code": self.status_code,
                "content_type": content_type_label(self.response_content_type),
                "body": self.response_body,
            },
        }


@dataclass(frozen=True)
class DiffLocation:
    """Where a diff was observed: region, endpoint, status, content type, body path."""
    region: str
    path_id: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Any = None
    body_path: Optional[str] = None
    observed_path: Optional[str] = None

    def key(self) -> tuple:
        return (
            self.region,
            self.path_id or "",
            self.method or "",
            f"{self.status_code:03d}" if self.status_code is not None else "",
            content_type_key(self.content_type),
            self.body_path or "",
            self.observed_path or "",
        )

    @property
    def label(self) -> str:
        """Short human form such as 'response[200].extra' or 'request.items[*]'."""
        suffix = ""
        if self.body_path and self.body_path != "$":
            suffix = self.body_path[1:]
        if self.region == "request":
            return f"request{suffix}"
        if self.region == "response":
            return f"response[{self.status_code}]{suffix}"
        return f"url[{self.method} {self.observed_path}]"

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "path_id": self.path_id,
            "method": self.method,
            "status_code": self.status_code,
            "content_type": content_type_label(self.content_type) or None,
            "body_path": self.body_path,
            "observed_path": self.observed_path,
            "label": self.label,
        }


@dataclass(frozen=True)
class ShapeSlot:
    """A place in the specification that references a shape.

    owner is (field_id,) for FIELD, (list_shape_id,) for LIST_ITEM,
    (path_id, method, content_type) for REQUEST_BODY and
    (path_id, method, status_code, content_type) for RESPONSE_BODY.
    """
    kind: SlotKind
    owner: tuple


@dataclass(frozen=True)
class ShapeTrail:
    """Resolution details of a body diff. Derived from spec + location."""
    slot: Optional[ShapeSlot] = None
    expected_shape_id: Optional[str] = None
    parent_shape_id: Optional[str] = None
    field_id: Optional[str] = None
    field_name: Optional[str] = None
    observed_kind: Optional[ShapeKind] = None


@dataclass(frozen=True)
class DiffResult:
    """A single observed discrepancy. Identity is (kind, mismatch, location)."""
    kind: DiffKind
    location: DiffLocation
    mismatch: Optional[ShapeMismatch] = None
    trail: Optional[ShapeTrail] = field(default=None, compare=False, hash=False)
    interaction: Optional[Interaction] = field(
        default=None, compare=False, hash=False, repr=False
    )

    @property
    def key(self) -> tuple:
        return (
            self.kind.value,
            self.mismatch.value if self.mismatch else "",
        ) + self.location.key()

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "mismatch": self.mismatch.value if self.mismatch else None,
            "location": self.location.to_dict(),
        }


class DiffEntity:
    """Grouped diff: one structural key, every contributing interaction."""

    def __init__(self, diff: DiffResult):
        self.diff = diff
        self.interactions: list[Interaction] = []
        self.count = 0

    @property
    def key(self) -> tuple:
        return self.diff.key

    @property
    def kind(self) -> DiffKind:
        return self.diff.kind

    @property
    def mismatch(self) -> Optional[ShapeMismatch]:
        return self.diff.mismatch

    @property
    def location(self) -> DiffLocation:
        return self.diff.location

    @property
    def trail(self) -> Optional[ShapeTrail]:
        return self.diff.trail

    @property
    def representative(self) -> Optional[Interaction]:
        return self.interactions[0] if self.interactions else None

    def __eq__(self, other):
        if isinstance(other, (DiffEntity, DiffResult)):
            return self.key == other.key
        return NotImplemented

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        mismatch = f"/{self.mismatch.value}" if self.mismatch else ""
        return f"DiffEntity({self.kind.value}{mismatch} @ {self.location.label}, count={self.count})"

    def to_dict(self) -> dict:
        result = self.diff.to_dict()
        result["count"] = self.count
        return result


@dataclass(frozen=True)
class RegionKey:
    """Identifies one logical area of the diff review."""
    area: RegionArea
    path_id: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    content_type: Any = None


@dataclass(frozen=True)
class ExampleTag:
    """Highlight on the observed body: a JSONPath and what happened there."""
    json_path: str
    tag: str


@dataclass(frozen=True)
class ShapeTag:
    """Highlight on the declared shape."""
    shape_id: str
    tag: str
    field_id: Optional[str] = None


@dataclass
class DiffDescription:
    """Natural-language-ready description of a diff."""
    kind: DiffKind
    title: str
    assertion: str
    change_type: str
    example_tags: list[ExampleTag] = field(default_factory=list)
    shape_tags: list[ShapeTag] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "assertion": self.assertion,
            "change_type": self.change_type,
            "example_tags": [
                {"json_path": t.json_path, "tag": t.tag} for t in self.example_tags
            ],
            "shape_tags": [
                {"shape_id": t.shape_id, "tag": t.tag, "field_id": t.field_id}
                for t in self.shape_tags
            ],
        }


@dataclass(frozen=True)
class Suggestion:
    """A named, ordered sequence of specification commands."""
    title: str
    commands: tuple
    change_type: str = "update"

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "change_type": self.change_type,
            "commands": [c.to_dict() for c in self.commands],
        }


@dataclass(frozen=True)
class AcceptedSuggestion:
    """A suggestion the user chose, with the diff it resolves."""
    suggestion: Suggestion
    diff_key: tuple
    sequence: int


@dataclass(frozen=True)
class BatchCommit:
    """A committed batch recorded in the specification changelog."""
    batch_id: str
    message: str
    command_count: int = 0

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "message": self.message,
            "command_count": self.command_count,
        }


@dataclass
class SuggestionFailure:
    """A suggestion whose commands failed during simulation."""
    index: int
    title: str
    message: str


@dataclass
class RecomputeSnapshot:
    """Passed to the observability hook after every recomputation."""
    sample_count: int
    entity_count: int
    visible_count: int
    accepted_count: int
    ignored_count: int
    endpoint_errors: dict = field(default_factory=dict)
    simulation_failures: list[SuggestionFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sample_count": self.sample_count,
            "entity_count": self.entity_count,
            "visible_count": self.visible_count,
            "accepted_count": self.accepted_count,
            "ignored_count": self.ignored_count,
            "endpoint_errors": {
                f"{method} {path_id}": str(error)
                for (path_id, method), error in self.endpoint_errors.items()
            },
            "simulation_failures": [
                {"index": f.index, "title": f.title, "message": f.message}
                for f in self.simulation_failures
            ],
        }
