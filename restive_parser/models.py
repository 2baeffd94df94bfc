"""Data models for restive-parser.

Settings use Pydantic v2 so they can be validated when loaded from YAML.
Per-request entities are plain dataclasses: they are created fresh for each
parse call, mutated only by the body pipeline, and discarded afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from restive_parser.streams import stream_to_text


# =============================================================================
# Enums
# =============================================================================


class TemplateOrder(str, Enum):
    """When variable templating runs relative to body patching."""

    NONE = "none"  # No templating of the body
    BEFORE_PATCH = "beforePatch"  # "@", "@<enc>", "@j", "@x<enc>"
    AFTER_PATCH = "afterPatch"  # "j@", "x@<enc>"


class FormParamEncodingStrategy(str, Enum):
    """How x-www-form-urlencoded bodies are percent-encoded."""

    AUTOMATIC = "automatic"  # Encode the whole body, keep reserved chars and %XX escapes
    ALWAYS = "always"  # Encode every name and value like encodeURIComponent
    NEVER = "never"  # Send the body as written


# =============================================================================
# Settings
# =============================================================================


DEFAULT_JSON_PATCH_HEADER = "X-RestiveClient-JsonPatch"
DEFAULT_XML_PATCH_HEADER = "X-RestiveClient-XmlPatch"
DEFAULT_DEBUG_HEADER = "X-RestiveClient-Patch-Debug"
DEFAULT_MAX_STREAM_BUFFER_SIZE = 10 * 1024 * 1024


class ParserSettings(BaseModel):
    """Immutable options passed explicitly into the parser and the body pipeline."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enable_json_body_patching: bool = Field(default=True, description="Run the JSON patch stage")
    enable_xml_body_patching: bool = Field(default=True, description="Run the XML patch stage")
    json_patch_header_name: str = Field(
        default=DEFAULT_JSON_PATCH_HEADER, description="Header carrying JSONPath patch rules"
    )
    xml_patch_header_name: str = Field(
        default=DEFAULT_XML_PATCH_HEADER, description="Header carrying XPath patch rules"
    )
    debug_header_name: str = Field(
        default=DEFAULT_DEBUG_HEADER, description="Header receiving the pipeline trace"
    )
    body_patch_debug: bool = Field(default=False, description="Emit the pipeline trace header")
    max_stream_buffer_size: int = Field(
        default=DEFAULT_MAX_STREAM_BUFFER_SIZE,
        description="Maximum bytes buffered when a stream body is materialized",
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added when the request does not set them"
    )
    form_param_encoding_strategy: FormParamEncodingStrategy = Field(
        default=FormParamEncodingStrategy.AUTOMATIC,
        description="Encoding applied to x-www-form-urlencoded bodies",
    )
    graphql_type_header_name: str = Field(
        default="X-Request-Type", description="Header whose value 'GraphQL' marks a GraphQL request"
    )

    @field_validator("json_patch_header_name", "xml_patch_header_name", "debug_header_name")
    @classmethod
    def validate_header_name(cls, v: str) -> str:
        v = v.strip()
        if not v or ":" in v:
            raise ValueError("header name must be non-empty and must not contain ':'")
        return v

    @field_validator("max_stream_buffer_size")
    @classmethod
    def validate_buffer_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_stream_buffer_size must be positive")
        return v


# =============================================================================
# Request Models
# =============================================================================


@dataclass(frozen=True)
class RequestLine:
    method: str
    url: str


@dataclass(frozen=True)
class PatchRule:
    """One ``path=value`` directive; *raw_value* may still contain ``{{vars}}``."""

    path: str
    raw_value: str


class HeaderMap(MutableMapping[str, str]):
    """Ordered header mapping with case-insensitive lookup.

    The first spelling of a header name is preserved for output. Repeated
    headers added with add() read back merged: ``; ``-joined for Cookie,
    ``, ``-joined otherwise. get_all() returns the individual values.
    Item assignment replaces all values.
    """

    def __init__(self, headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        self._store: dict[str, tuple[str, list[str]]] = {}
        if headers is not None:
            items = headers.items() if isinstance(headers, Mapping) else headers
            for name, value in items:
                self.add(name, value)

    def __getitem__(self, name: str) -> str:
        values = self._store[name.lower()][1]
        separator = "; " if name.lower() == "cookie" else ", "
        return separator.join(values)

    def __setitem__(self, name: str, value: str) -> None:
        key = name.lower()
        existing = self._store.get(key)
        self._store[key] = (existing[0] if existing else name, [value])

    def __delitem__(self, name: str) -> None:
        del self._store[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def add(self, name: str, value: str) -> None:
        """Append a value for *name*, keeping earlier values."""
        key = name.lower()
        if key in self._store:
            self._store[key][1].append(value)
        else:
            self._store[key] = (name, [value])

    def get_all(self, name: str) -> list[str]:
        """Every value added for *name*, in order (empty list when absent)."""
        entry = self._store.get(name.lower())
        return list(entry[1]) if entry else []

    def copy(self) -> HeaderMap:
        clone = HeaderMap()
        for key, (name, values) in self._store.items():
            clone._store[key] = (name, list(values))
        return clone

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self.items())!r})"


@dataclass(frozen=True)
class TextBody:
    """Body held in memory as a string."""

    text: str


@dataclass(frozen=True)
class StreamBody:
    """Body read lazily; only the pipeline turns it into a TextBody."""

    stream: AsyncIterable[bytes]


Body = Union[TextBody, StreamBody, None]


@dataclass
class BodyParseResult:
    """Materializer output.

    raw_body_text holds the body as a string for display and code generation.
    It is None for stream bodies so large files are never read eagerly.
    """

    body: Body
    template_order: TemplateOrder = TemplateOrder.NONE
    raw_body_text: str | None = None


@dataclass
class OutgoingRequest:
    """Request-scoped mutable request the body pipeline operates on."""

    url: str
    method: str
    headers: HeaderMap
    body: Body = None

    async def body_text(self, max_size: int | None = None) -> str | None:
        """Return the body as text, promoting a stream body to a TextBody.

        A promoted body stays a TextBody for the rest of the pipeline.
        """
        if self.body is None:
            return None
        if isinstance(self.body, TextBody):
            return self.body.text
        text = await stream_to_text(self.body.stream, max_size)
        self.body = TextBody(text)
        return text


@dataclass(frozen=True)
class HttpRequest:
    """Fully materialized request produced by HttpRequestParser."""

    method: str
    url: str
    headers: HeaderMap
    body: Body
    raw_body_text: str | None = None
    name: str | None = None

    @property
    def body_text(self) -> str | None:
        """Body as text when it is a string body, else None."""
        return self.body.text if isinstance(self.body, TextBody) else None

    def to_httpx(self) -> httpx.Request:
        """Build an unsent httpx.Request; stream bodies are sent chunked."""
        content: bytes | AsyncIterable[bytes] | None = None
        if isinstance(self.body, TextBody):
            content = self.body.text.encode("utf-8")
        elif isinstance(self.body, StreamBody):
            content = self.body.stream
        headers = [(name, value.encode("utf-8")) for name, value in self.headers.items()]
        return httpx.Request(self.method, self.url, headers=headers, content=content)
