"""Media-type parsing and family predicates used for body handling decisions.

Content-Type values are parsed into type, subtype and structured-syntax
suffix so that families ("is this JSON?", "is this XML?") can be decided on
the essence rather than on substrings, so
application/vnd.openxmlformats-officedocument.spreadsheetml.sheet is not XML.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MediaType:
    """A parsed media type, e.g. ``application/vnd.api+json; charset=utf-8``."""

    type: str
    subtype: str
    suffix: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)

    @property
    def essence(self) -> str:
        """``type/subtype`` without parameters, lowercase."""
        return f"{self.type}/{self.subtype}"


def parse_media_type(value: str) -> MediaType:
    """Parse a Content-Type header value.

    Malformed values (no ``/``) parse with an empty subtype rather than
    raising; every predicate then reports False for them.
    """
    essence, _, params_text = value.partition(";")
    type_, _, subtype = essence.strip().lower().partition("/")

    suffix = None
    if "+" in subtype:
        suffix = "+" + subtype.rsplit("+", 1)[1]

    parameters: dict[str, str] = {}
    for param in params_text.split(";"):
        name, sep, param_value = param.partition("=")
        if sep:
            parameters[name.strip().lower()] = param_value.strip().strip('"')

    return MediaType(type=type_, subtype=subtype, suffix=suffix, parameters=parameters)


def is_json(content_type: str | None) -> bool:
    """True for application/json, text/json and any ``+json``/``-json`` subtype."""
    if not content_type:
        return False
    media = parse_media_type(content_type)
    return (
        media.subtype == "json"
        or media.suffix == "+json"
        or media.subtype.endswith("-json")
    )


def is_xml(content_type: str | None) -> bool:
    """True for application/xml, text/xml and any ``+xml`` subtype."""
    if not content_type:
        return False
    media = parse_media_type(content_type)
    return media.subtype == "xml" or media.suffix == "+xml"


def is_multipart_form_data(content_type: str | None) -> bool:
    return bool(content_type) and parse_media_type(content_type).essence == "multipart/form-data"


def is_form_urlencoded(content_type: str | None) -> bool:
    return (
        bool(content_type)
        and parse_media_type(content_type).essence == "application/x-www-form-urlencoded"
    )


def is_newline_delimited_json(content_type: str | None) -> bool:
    return bool(content_type) and parse_media_type(content_type).essence == "application/x-ndjson"
