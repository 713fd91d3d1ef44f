"""
Observability source decoding.

Stored ``observability_urls`` values come in three historical shapes:

- a list of ``{"type", "url", "token"?}`` objects
- a ``{type: url}`` mapping
- a JSON string holding either of the above

``decode_sources`` classifies the raw value once into a tagged variant and
returns the canonical list form. Nothing downstream branches on shape.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, constr
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

MAX_TYPE_LENGTH = 64
MAX_URL_LENGTH = 2000

SOURCE_TYPES = ("grafana", "datadog", "prometheus", "newrelic", "sentry", "custom")

URL_PATTERNS = {
    "grafana": re.compile(r"^https?://.*/(d/|dashboard/|api/)", re.IGNORECASE),
    "datadog": re.compile(r"^https?://(app\.)?datadoghq\.(com|eu)", re.IGNORECASE),
    "prometheus": re.compile(r"^https?://.*/(api/v1|prometheus)", re.IGNORECASE),
    "newrelic": re.compile(r"^https?://(one\.)?newrelic\.com", re.IGNORECASE),
    "sentry": re.compile(r"^https?://(.*\.)?sentry\.io", re.IGNORECASE),
    "custom": re.compile(r"^https?://.+", re.IGNORECASE),
}


class ObservabilitySource(BaseModel):
    """One observability source attached to a watcher."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: constr(min_length=1, max_length=MAX_TYPE_LENGTH)
    url: constr(min_length=1, max_length=MAX_URL_LENGTH)
    token: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "url": self.url, "token": self.token, "user_id": self.user_id}

    def to_public_dict(self) -> Dict[str, Any]:
        """Dictionary form with the token redacted."""
        return {"type": self.type, "url": self.url, "has_token": bool(self.token)}


class SourcesShape(str, Enum):
    EMPTY = "empty"
    LIST = "list"
    MAPPING = "mapping"
    SERIALIZED = "serialized"


@dataclass(frozen=True)
class TaggedSources:
    """Raw sources payload tagged with its detected shape."""

    shape: SourcesShape
    payload: Any


def classify_sources(raw: Any) -> TaggedSources:
    """Tag a raw payload with its shape. Unknown shapes decode as empty."""
    if raw is None or raw == "" or raw == [] or raw == {}:
        return TaggedSources(SourcesShape.EMPTY, None)
    if isinstance(raw, str):
        return TaggedSources(SourcesShape.SERIALIZED, raw)
    if isinstance(raw, list):
        return TaggedSources(SourcesShape.LIST, raw)
    if isinstance(raw, dict):
        return TaggedSources(SourcesShape.MAPPING, raw)
    return TaggedSources(SourcesShape.EMPTY, None)


def _decode_list(items: List[Any]) -> List[ObservabilitySource]:
    sources = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str):
            continue
        if not item.get("type"):
            continue
        try:
            sources.append(ObservabilitySource.model_validate(item))
        except PydanticValidationError:
            continue
    return sources


def _decode_mapping(mapping: Dict[str, Any]) -> List[ObservabilitySource]:
    sources = []
    for source_type, url in mapping.items():
        if not url:
            continue
        try:
            sources.append(ObservabilitySource(type=str(source_type), url=str(url)))
        except PydanticValidationError:
            continue
    return sources


def decode_sources(raw: Any) -> List[ObservabilitySource]:
    """Decode any stored sources payload into the canonical list form."""
    tagged = classify_sources(raw)

    if tagged.shape is SourcesShape.SERIALIZED:
        try:
            inner = json.loads(tagged.payload)
        except json.JSONDecodeError:
            return []
        # A serialized payload never nests another serialized string
        if isinstance(inner, str):
            return []
        tagged = classify_sources(inner)

    if tagged.shape is SourcesShape.LIST:
        return _decode_list(tagged.payload)
    if tagged.shape is SourcesShape.MAPPING:
        return _decode_mapping(tagged.payload)
    return []


def encode_sources(sources: List[ObservabilitySource]) -> List[Dict[str, Any]]:
    """Canonical storage form."""
    return [s.to_dict() for s in sources]


def _validate_url(url: str) -> None:
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(
            f"URL must be at most {MAX_URL_LENGTH} characters", details={"field": "url"}
        )
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid URL format", details={"field": "url", "value": url})


def validate_source(source_type: str, url: str) -> None:
    """
    Check a source type and URL before it is attached to a watcher.

    The type must be one of ``SOURCE_TYPES`` and the URL must be a
    well-formed http(s) URL matching that platform's pattern.

    Raises:
        ValidationError: with ``details["field"]`` naming the bad input
    """
    if not source_type or not url:
        raise ValidationError("Missing source data (type and url required)")
    if source_type not in SOURCE_TYPES:
        raise ValidationError(
            f"Invalid sourceType. Must be one of: {', '.join(SOURCE_TYPES)}",
            details={"field": "type", "value": source_type[:MAX_TYPE_LENGTH]},
        )
    _validate_url(url)
    if not URL_PATTERNS[source_type].match(url):
        raise ValidationError(
            f"URL doesn't match expected pattern for {source_type}. Please check the URL format.",
            details={"field": "url", "value": url},
        )


def add_source(
    current: List[ObservabilitySource],
    source_type: str,
    url: str,
    token: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[ObservabilitySource]:
    """Return a new list with the source appended."""
    validate_source(source_type, url)
    try:
        new_source = ObservabilitySource(
            type=source_type, url=url, token=token or None, userId=user_id
        )
    except PydanticValidationError as exc:
        raise ValidationError("Invalid source data") from exc
    return [*current, new_source]


def remove_source(current: List[ObservabilitySource], index: int) -> List[ObservabilitySource]:
    """Return a new list without the source at ``index``."""
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(current):
        raise ValidationError(f"Invalid index: {index}", details={"field": "index"})
    return [s for i, s in enumerate(current) if i != index]
