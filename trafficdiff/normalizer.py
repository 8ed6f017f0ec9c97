"""Interaction normalization: raw capture records to canonical Interactions."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

from .models import EngineConfig, Interaction, NO_CONTENT_TYPE
from .exceptions import ValidationError
from .utils import get_json_size_mb

logger = logging.getLogger(__name__)


class InteractionNormalizer:
    """
    Converts raw recorded HTTP exchanges into Interactions.

    Stages:
    1. Headers: accept a mapping or a list of {name, value}; lookup is case-insensitive
    2. Content type: Content-Type header without parameters, or NO_CONTENT_TYPE
    3. Body: parse JSON bodies into a structural tree; failure yields no body
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def normalize(self, record: dict) -> Interaction:
        """
        Normalize one raw record.

        Args:
            record: {"request": {...}, "response": {...}, "uuid"?: str}

        Returns:
            The canonical Interaction
        """
        if not isinstance(record, dict):
            raise ValidationError(
                "interaction record must be an object",
                {"type": type(record).__name__}
            )

        request = record.get('request') or {}
        response = record.get('response') or {}

        method = request.get('method')
        path = request.get('path')
        if not method:
            raise ValidationError("request.method is required", {"uuid": record.get('uuid')})
        if not path:
            raise ValidationError("request.path is required", {"uuid": record.get('uuid')})

        status = response.get('statusCode', response.get('status_code'))
        try:
            status_code = int(status)
        except (TypeError, ValueError):
            raise ValidationError(
                "response.statusCode must be an integer",
                {"uuid": record.get('uuid'), "statusCode": status}
            )

        path, query = self._split_query(str(path), request.get('query') or request.get('queryString'))

        request_headers = self._normalize_headers(request.get('headers'))
        response_headers = self._normalize_headers(response.get('headers'))
        request_ct = self._content_type(request_headers, request.get('contentType'))
        response_ct = self._content_type(response_headers, response.get('contentType'))

        request_raw, request_body = self._parse_body(
            request.get('body'), request_ct, f"{method} {path} request"
        )
        response_raw, response_body = self._parse_body(
            response.get('body'), response_ct, f"{method} {path} {status_code} response"
        )

        return Interaction(
            method=str(method).upper(),
            path=path,
            status_code=status_code,
            host=str(request.get('host') or ""),
            query=query,
            request_headers=request_headers,
            request_content_type=request_ct,
            request_body=request_body,
            request_raw_body=request_raw,
            response_headers=response_headers,
            response_content_type=response_ct,
            response_body=response_body,
            response_raw_body=response_raw,
            uuid=record.get('uuid'),
        )

    def normalize_all(self, records: Iterable[dict]) -> list[Interaction]:
        """Normalize many records, keeping their order."""
        return [self.normalize(record) for record in records or []]

    def _split_query(self, path: str, query: Any) -> tuple[str, str]:
        if '?' in path:
            path, inline_query = path.split('?', 1)
            if not query:
                query = inline_query
        if isinstance(query, dict):
            query = "&".join(f"{k}={v}" for k, v in query.items())
        return path or "/", str(query or "")

    def _normalize_headers(self, headers: Any) -> tuple:
        """Headers as a tuple of (lowercased name, value) pairs."""
        if not headers:
            return ()
        if isinstance(headers, dict):
            items = headers.items()
        elif isinstance(headers, list):
            items = []
            for entry in headers:
                if isinstance(entry, dict) and 'name' in entry:
                    items.append((entry['name'], entry.get('value', "")))
                elif isinstance(entry, (list, tuple)) and len(entry) == 2:
                    items.append((entry[0], entry[1]))
                else:
                    raise ValidationError("Invalid header entry", {"entry": entry})
        else:
            raise ValidationError(
                "headers must be an object or a list",
                {"type": type(headers).__name__}
            )
        return tuple((str(name).lower(), str(value)) for name, value in items)

    def _content_type(self, headers: tuple, explicit: Any = None) -> Any:
        value = explicit
        if value is None:
            for name, header_value in headers:
                if name == 'content-type':
                    value = header_value
                    break
        if not value:
            return NO_CONTENT_TYPE
        media_type = str(value).split(';', 1)[0].strip().lower()
        return media_type or NO_CONTENT_TYPE

    def is_json(self, content_type: Any) -> bool:
        if content_type is NO_CONTENT_TYPE or content_type is None:
            return False
        return content_type in self.config.json_content_types or content_type.endswith('+json')

    def _parse_body(self, body: Any, content_type: Any, where: str) -> tuple[Optional[str], Any]:
        """
        Parse a body into (raw text, structural tree).

        A body that cannot be parsed is treated as no body observed.
        """
        if body is None:
            return None, None

        if not isinstance(body, (str, bytes)):
            # Already structured; round-trip so the tree holds JSON values only
            raw = json.dumps(body, default=str)
            return raw, json.loads(raw)

        if isinstance(body, bytes):
            try:
                raw = body.decode('utf-8')
            except UnicodeDecodeError:
                logger.warning("Undecodable body in %s; treating as no body", where)
                return None, None
        else:
            raw = body

        if raw == "":
            return raw, None

        if not self.is_json(content_type):
            return raw, None

        size_mb = get_json_size_mb(raw)
        if size_mb > self.config.max_body_size_mb:
            logger.warning(
                "Body of %s is %.2fMB (limit %sMB); treating as no body",
                where, size_mb, self.config.max_body_size_mb
            )
            return raw, None

        try:
            return raw, json.loads(raw)
        except ValueError as e:
            logger.warning("Unparseable JSON body in %s (%s); treating as no body", where, e)
            return raw, None
