"""Collaborator contracts and their file-backed implementations."""

from __future__ import annotations

import json
import os
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml

from .commands import Command, commands_to_dicts
from .models import EngineConfig
from .schema_import import commands_from_openapi

logger = logging.getLogger(__name__)

SESSION_SUFFIXES = (".json", ".yaml", ".yml")


class SpecificationService(Protocol):
    """Source and sink of the specification's command log."""

    async def list_events(self) -> list:
        ...

    async def save_events(self, events: list, spec_id: str) -> None:
        ...


class SessionProvider(Protocol):
    """Source of recorded interaction samples."""

    async def load_samples(self, session_id: str) -> Optional[list]:
        """Raw interaction records, or None when there is no such session."""
        ...


class DocumentLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings, as a JSON parser would."""


DocumentLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def read_document(path: Path) -> Any:
    """Load a YAML or JSON file."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with open(path, 'r') as f:
        content = f.read()

    # JSON is valid YAML
    try:
        return yaml.load(content, Loader=DocumentLoader)
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse {path}: {e}")


def is_openapi_document(document: Any) -> bool:
    return isinstance(document, dict) and ('openapi' in document or 'paths' in document)


class FileSpecificationService:
    """
    Specification stored on disk.

    The source file holds a command log (a list of command objects, or
    {"events": [...]}) or an OpenAPI document, which is converted on load.
    Saved logs go to events_path, which defaults to the source file; an
    OpenAPI source is never overwritten.

    Usage:
        service = FileSpecificationService("openapi.yaml")
        events = await service.list_events()
    """

    def __init__(self, path: str, events_path: Optional[str] = None):
        self.path = Path(path)
        if events_path is not None:
            self.events_path = Path(events_path)
        else:
            self.events_path = self.path
        self.saved_specs: list[str] = []

    async def list_events(self) -> list[dict]:
        if self.events_path != self.path and self.events_path.exists():
            return self._events_from(read_document(self.events_path), self.events_path)
        return self._events_from(read_document(self.path), self.path)

    def _events_from(self, document: Any, path: Path) -> list[dict]:
        if document is None:
            return []
        if is_openapi_document(document):
            logger.info("Converting OpenAPI document %s to a command log", path)
            return commands_to_dicts(commands_from_openapi(document))
        if isinstance(document, dict) and 'events' in document:
            document = document['events'] or []
        if not isinstance(document, list):
            raise ValueError(f"{path} holds neither a command log nor an OpenAPI document")
        return document

    async def save_events(self, events: list, spec_id: str) -> None:
        """Replace the stored log with the given full log."""
        target = self.events_path
        if target == self.path and target.exists() and is_openapi_document(read_document(target)):
            target = self.path.with_name(f"{self.path.stem}.events.yaml")
            self.events_path = target

        payload = [e.to_dict() if isinstance(e, Command) else e for e in events]
        tmp = target.with_name(target.name + ".tmp")
        try:
            with open(tmp, 'w') as f:
                if target.suffix == ".json":
                    json.dump(payload, f, indent=2)
                else:
                    yaml.safe_dump(payload, f, sort_keys=False)
            os.replace(tmp, target)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

        self.saved_specs.append(spec_id)
        logger.info("Saved %d events for specification %s to %s", len(payload), spec_id, target)


class FileSessionProvider:
    """
    Capture sessions stored as <folder>/<session_id>.json|.yaml.

    Each file holds a list of raw interaction records or {"samples": [...]}.
    """

    def __init__(self, folder: str):
        self.folder = Path(folder)

    def session_path(self, session_id: str) -> Optional[Path]:
        for suffix in SESSION_SUFFIXES:
            candidate = self.folder / f"{session_id}{suffix}"
            if candidate.exists():
                return candidate
        return None

    async def load_samples(self, session_id: str) -> Optional[list]:
        path = self.session_path(session_id)
        if path is None:
            logger.info("No capture session %s in %s", session_id, self.folder)
            return None

        document = read_document(path)
        if isinstance(document, dict):
            document = document.get('samples')
        if document is None:
            return []
        if not isinstance(document, list):
            raise ValueError(f"{path} must hold a list of samples")
        return document


def load_engine_config(path: str) -> EngineConfig:
    """Read an EngineConfig from a YAML or JSON file."""
    return EngineConfig.from_dict(read_document(Path(path)))
