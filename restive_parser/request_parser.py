"""Request parser - turns raw request text into a materialized HttpRequest.

Request text layout (http://www.w3.org/Protocols/rfc2616/rfc2616-sec5.html):

    POST https://example.com/users
        ?page=2
        &sort=name
    Content-Type: application/json
    X-RestiveClient-JsonPatch: $.name=Updated

    < ./body.json

The splitter is a line state machine (URL -> HEADER -> BODY). Header lines
are trimmed; body lines are kept verbatim because indentation and line
endings can be significant (multipart boundaries, YAML, ...).
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping
from urllib.parse import quote

from restive_parser import mime
from restive_parser.body_materializer import BodyMaterializer
from restive_parser.errors import NoRequestLineError
from restive_parser.graphql_body import GraphQLBodyComposer
from restive_parser.models import (
    BodyParseResult,
    FormParamEncodingStrategy,
    HeaderMap,
    HttpRequest,
    OutgoingRequest,
    ParserSettings,
    RequestLine,
    TextBody,
)
from restive_parser.pipeline import BodyPatchPipeline
from restive_parser.resolver import VariableResolver, identity_resolver

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "GET"

_QUERY_CONTINUATION = re.compile(r"^\s*[&?]")
_COMMENT_LINE = re.compile(r"^\s*(#|//)")
_METHOD_PREFIX = re.compile(
    r"^(GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS|CONNECT|TRACE|LOCK|UNLOCK|PROPFIND|PROPPATCH"
    r"|COPY|MOVE|MKCOL|MKCALENDAR|ACL|SEARCH)\s+",
    re.IGNORECASE,
)
_HTTP_VERSION_SUFFIX = re.compile(r"\s+HTTP/.*$", re.IGNORECASE)
_LONE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")

# encodeURIComponent leaves these unescaped.
_URI_COMPONENT_SAFE = "-_.!~*'()"
# Reserved URL characters other than "#" and "$", plus existing %XX escapes,
# survive automatic encoding.
_URL_SAFE = "!&'()*+,/:;=?@[]~%"


# =============================================================================
# Request Splitter
# =============================================================================


class ParseState(Enum):
    URL = "url"
    HEADER = "header"
    BODY = "body"


@dataclass
class SplitRequest:
    """Raw request text split into its three sections."""

    request_line: str
    header_lines: list[str] = field(default_factory=list)
    body_lines: list[str] = field(default_factory=list)


def split_request_text(text: str, line_separator: str = os.linesep) -> SplitRequest:
    """Split request text into request line, header lines and body lines.

    Leading blank and comment (``#``, ``//``) lines are skipped. Lines that
    start with ``?`` or ``&`` right after the request line continue its query
    string. The first blank line after the request line or the headers starts
    the body and is not part of it.

    Raises:
        NoRequestLineError: If there is no non-blank, non-comment line.
    """
    lines = text.split(line_separator)

    start = 0
    while start < len(lines) and (not lines[start].strip() or _COMMENT_LINE.match(lines[start])):
        start += 1
    if start == len(lines):
        raise NoRequestLineError()

    request_lines: list[str] = []
    header_lines: list[str] = []
    body_lines: list[str] = []

    state = ParseState.URL
    index = start
    while index < len(lines):
        line = lines[index]
        next_line = lines[index + 1] if index + 1 < len(lines) else None
        index += 1

        if state is ParseState.URL:
            request_lines.append(line.strip())
            if next_line is None or _QUERY_CONTINUATION.match(next_line):
                continue
            if next_line.strip():
                state = ParseState.HEADER
            else:
                index += 1  # blank separator before a header-less body
                state = ParseState.BODY
        elif state is ParseState.HEADER:
            header_lines.append(line.strip())
            if next_line is not None and not next_line.strip():
                index += 1
                state = ParseState.BODY
        else:
            body_lines.append(line)

    return SplitRequest("".join(request_lines), header_lines, body_lines)


# =============================================================================
# Request Line and Headers
# =============================================================================


def parse_request_line(line: str) -> RequestLine:
    """Split ``[METHOD] URL [HTTP/x.y]``; the method defaults to GET."""
    match = _METHOD_PREFIX.match(line)
    if match:
        method = match.group(1).upper()
        url = line[match.end() :]
    else:
        method = DEFAULT_METHOD
        url = line

    url = _HTTP_VERSION_SUFFIX.sub("", url.strip())
    return RequestLine(method=method, url=url)


def parse_headers(header_lines: list[str], default_headers: Mapping[str, str] | None = None) -> HeaderMap:
    """Build a HeaderMap from ``Name: value`` lines, then fill in missing defaults.

    Repeated names are merged (see HeaderMap). A line without ``:`` becomes a
    header with an empty value.
    """
    headers = HeaderMap()
    for line in header_lines:
        name, _, value = line.partition(":")
        name = name.strip()
        if not name:
            continue
        headers.add(name, value.strip())

    for name, value in (default_headers or {}).items():
        if name not in headers:
            headers[name] = value
    return headers


def resolve_absolute_url(url: str, headers: HeaderMap) -> str:
    """Prefix a path-only URL with the Host header (https on ports 443/8443)."""
    host = headers.get("Host")
    if not host or not url.startswith("/"):
        return url
    _, _, port = host.partition(":")
    scheme = "https" if port in ("443", "8443") else "http"
    return f"{scheme}://{host}{url}"


def encode_form_body(body: str, strategy: FormParamEncodingStrategy) -> str:
    """Percent-encode an x-www-form-urlencoded body according to *strategy*."""
    if strategy is FormParamEncodingStrategy.NEVER:
        return body
    if strategy is FormParamEncodingStrategy.ALWAYS:
        pairs = []
        for pair in body.split("&"):
            name, _, value = pair.partition("=")
            pairs.append(f"{quote(name, safe=_URI_COMPONENT_SAFE)}={quote(value, safe=_URI_COMPONENT_SAFE)}")
        return "&".join(pairs)
    return quote(_LONE_PERCENT.sub("%25", body), safe=_URL_SAFE)


# =============================================================================
# Parser
# =============================================================================


class HttpRequestParser:
    """Parses one request's text into a fully materialized HttpRequest.

    Usage:
        parser = HttpRequestParser(text, ParserSettings(), resolver, base_path=Path("."))
        request = await parser.parse(name="createUser")
        request.to_httpx()
    """

    def __init__(
        self,
        request_text: str,
        settings: ParserSettings | None = None,
        resolve_variables: VariableResolver = identity_resolver,
        base_path: Path | None = None,
    ) -> None:
        """Initialize the parser.

        Args:
            request_text: Raw request text, lines separated by os.linesep.
            settings: Parser options; defaults apply when None.
            resolve_variables: Caller-owned ``{{var}}`` resolver (sync or async).
            base_path: Directory that relative ``< path`` indicators resolve against.
        """
        self._request_text = request_text
        self._settings = settings or ParserSettings()
        self._resolve_variables = resolve_variables
        self._base_path = base_path

    async def parse(self, name: str | None = None) -> HttpRequest:
        """Parse, materialize, patch and template the request.

        Raises:
            RestiveParserError: Any parse, body or patch error (see errors.py).
        """
        split = split_request_text(self._request_text)
        request_line = parse_request_line(split.request_line)
        headers = parse_headers(split.header_lines, self._settings.default_headers)

        # The transport recalculates it once the body is final.
        headers.pop("Content-Length", None)

        content_type = headers.get("Content-Type")
        materializer = BodyMaterializer(self._base_path)

        type_header = self._settings.graphql_type_header_name
        if headers.get(type_header, "").lower() == "graphql":
            headers.pop(type_header)
            composer = GraphQLBodyComposer(materializer, self._settings.max_stream_buffer_size)
            result = await composer.compose(split.body_lines, content_type)
        else:
            result = await materializer.parse(split.body_lines, content_type)
            result = self._encode_form(result, content_type)

        outgoing = OutgoingRequest(
            url=resolve_absolute_url(request_line.url, headers),
            method=request_line.method,
            headers=headers,
            body=result.body,
        )
        pipeline = BodyPatchPipeline(self._settings, self._resolve_variables)
        await pipeline.process(outgoing, result.template_order)

        raw_body_text = result.raw_body_text
        if isinstance(outgoing.body, TextBody):
            raw_body_text = outgoing.body.text

        logger.debug("Parsed %s %s (template order: %s)", outgoing.method, outgoing.url, result.template_order.value)
        return HttpRequest(
            method=outgoing.method,
            url=outgoing.url,
            headers=outgoing.headers,
            body=outgoing.body,
            raw_body_text=raw_body_text,
            name=name,
        )

    def _encode_form(self, result: BodyParseResult, content_type: str | None) -> BodyParseResult:
        strategy = self._settings.form_param_encoding_strategy
        if (
            strategy is FormParamEncodingStrategy.NEVER
            or not isinstance(result.body, TextBody)
            or not mime.is_form_urlencoded(content_type)
        ):
            return result
        encoded = encode_form_body(result.body.text, strategy)
        return BodyParseResult(TextBody(encoded), result.template_order, encoded)


async def parse_http_request(
    request_text: str,
    settings: ParserSettings | None = None,
    resolve_variables: VariableResolver = identity_resolver,
    base_path: Path | None = None,
    name: str | None = None,
) -> HttpRequest:
    """Convenience wrapper around HttpRequestParser(...).parse()."""
    parser = HttpRequestParser(request_text, settings, resolve_variables, base_path)
    return await parser.parse(name)
