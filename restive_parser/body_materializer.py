"""Body Materializer - turns raw body lines into a text or stream body.

A body line of the form ``< [indicator] path`` pulls in a file:

    indicator := "." | marker
    marker    := prefix? "@" suffix?
    prefix    := "j" | "x"               -> patch first, then template (AFTER_PATCH)
    suffix    := ("j"|"x")? encoding?     -> template first, then patch (BEFORE_PATCH)

``<.`` forbids templating. Plain ``< path`` and ``<. path`` keep the file
lazy (the body becomes a stream); any ``@`` marker reads the file into a
string with the requested encoding (default utf8). A path that does not
resolve to a file leaves the indicator line in the body as literal text.

The j@/@j asymmetry is deliberate: the prefix form always means AFTER_PATCH
and the suffix form always means BEFORE_PATCH.
"""

from __future__ import annotations

import base64
import codecs
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

from restive_parser import mime
from restive_parser.errors import (
    ConflictingTemplateInstructionError,
    ConflictingTemplateOrderError,
    RestiveParserError,
)
from restive_parser.models import BodyParseResult, StreamBody, TemplateOrder, TextBody
from restive_parser.streams import CombinedStream

logger = logging.getLogger(__name__)

FILE_INDICATOR_PATTERN = re.compile(
    r"^<(?=[\s@jx.])(?:(?P<indicator>\S+)\s+)?(?P<path>.+?)\s*$"
)
DEFAULT_FILE_ENCODING = "utf8"

# Node-style encoding names accepted in markers, mapped onto Python codecs.
# "base64" and "hex" are handled separately: they render bytes as text.
_ENCODING_ALIASES = {
    "utf8": "utf-8",
    "utf16le": "utf-16-le",
    "utf-16le": "utf-16-le",
    "ucs2": "utf-16-le",
    "ucs-2": "utf-16-le",
    "latin1": "latin-1",
    "binary": "latin-1",
}


@dataclass(frozen=True)
class FileIndicator:
    """Parsed ``<`` marker. encoding is None when the file may stay a stream."""

    template_order: TemplateOrder = TemplateOrder.NONE
    encoding: str | None = None
    forbid_template: bool = False


@dataclass(frozen=True)
class FilePart:
    path: Path
    encoding: str


BodyPart = Union[str, FilePart]


def parse_indicator(indicator: str | None) -> FileIndicator:
    """Interpret the marker between ``<`` and the path.

    Examples:
        None   -> stream, no templating
        "."    -> stream, templating forbidden
        "@"    -> BEFORE_PATCH, utf8
        "@latin1" / "@j" / "@xutf16le" -> BEFORE_PATCH
        "j@" / "x@latin1"              -> AFTER_PATCH
    """
    if not indicator:
        return FileIndicator()
    if indicator == ".":
        return FileIndicator(forbid_template=True)

    before, at, after = indicator.partition("@")
    if not at:
        return FileIndicator()

    if before in ("j", "x"):
        return FileIndicator(
            template_order=TemplateOrder.AFTER_PATCH,
            encoding=after or DEFAULT_FILE_ENCODING,
        )

    encoding = after or DEFAULT_FILE_ENCODING
    if after.startswith(("j", "x")):
        encoding = after[1:] or DEFAULT_FILE_ENCODING
    return FileIndicator(template_order=TemplateOrder.BEFORE_PATCH, encoding=encoding)


def decode_file_bytes(data: bytes, encoding: str) -> str:
    """Decode file content the way the marker's encoding name asks for.

    Raises:
        RestiveParserError: If the encoding name is unknown.
    """
    name = encoding.lower()
    if name == "base64":
        return base64.b64encode(data).decode("ascii")
    if name == "hex":
        return data.hex()
    codec = _ENCODING_ALIASES.get(name, name)
    try:
        codecs.lookup(codec)
    except LookupError as e:
        raise RestiveParserError(f"body parsing: unknown file encoding '{encoding}'") from e
    return data.decode(codec, errors="replace")


def line_ending_for(content_type: str | None) -> str:
    """CRLF for multipart/form-data (boundaries require it), platform EOL otherwise."""
    return "\r\n" if mime.is_multipart_form_data(content_type) else os.linesep


class BodyMaterializer:
    """Builds request bodies from body lines, resolving file indicators.

    Usage:
        materializer = BodyMaterializer(base_path=Path("requests/"))
        result = await materializer.parse(body_lines, "application/json")
        result.body            # TextBody | StreamBody | None
        result.template_order  # TemplateOrder requested by the markers
    """

    def __init__(self, base_path: Path | None = None) -> None:
        """Initialize the materializer.

        Args:
            base_path: Directory relative file paths are resolved against.
                Defaults to the current working directory.
        """
        self._base_path = base_path

    async def parse(self, lines: list[str], content_type: str | None) -> BodyParseResult:
        """Materialize *lines* into a body.

        Raises:
            ConflictingTemplateInstructionError: "<." combined with an "@" marker.
            ConflictingTemplateOrderError: Markers request different orders.
        """
        if not lines:
            return BodyParseResult(body=None)

        if not any(FILE_INDICATOR_PATTERN.match(line) for line in lines):
            text = self._join_inline(lines, content_type)
            return BodyParseResult(body=TextBody(text), raw_body_text=text)

        line_ending = line_ending_for(content_type)
        multipart = mime.is_multipart_form_data(content_type)
        parts: list[BodyPart] = []
        template_order = TemplateOrder.NONE
        template_requested = False
        forbid_template = False
        materialize = False

        for index, line in enumerate(lines):
            match = FILE_INDICATOR_PATTERN.match(line)
            if match is None:
                parts.append(line)
            else:
                indicator = parse_indicator(match.group("indicator"))

                if indicator.forbid_template:
                    if template_requested:
                        raise ConflictingTemplateInstructionError(
                            'body parsing: conflicting template instructions for "<." and "@" markers.'
                        )
                    forbid_template = True

                if indicator.template_order is not TemplateOrder.NONE:
                    if template_requested and template_order is not indicator.template_order:
                        raise ConflictingTemplateOrderError(
                            "body parsing: conflicting template substitution order markers."
                        )
                    if forbid_template:
                        raise ConflictingTemplateInstructionError(
                            'body parsing: template processing disabled for this body but "@" marker found.'
                        )
                    template_requested = True
                    template_order = indicator.template_order

                if indicator.encoding:
                    materialize = True

                path = await self.resolve_path(match.group("path").strip())
                if path is None:
                    logger.debug("Body file %r not found, keeping line as text", match.group("path"))
                    parts.append(line)
                else:
                    parts.append(FilePart(path, indicator.encoding or DEFAULT_FILE_ENCODING))

            if index != len(lines) - 1 or multipart:
                parts.append(line_ending)

        has_file_part = any(isinstance(part, FilePart) for part in parts)
        if materialize or template_requested or not has_file_part:
            text = "".join([await self._read_part(part) for part in parts])
            return BodyParseResult(body=TextBody(text), template_order=template_order, raw_body_text=text)

        stream = CombinedStream()
        for part in parts:
            stream.append(part.path if isinstance(part, FilePart) else part)
        return BodyParseResult(body=StreamBody(stream), template_order=template_order)

    async def resolve_path(self, file_path: str) -> Path | None:
        """Resolve an indicator path to an existing file, or None."""
        try:
            path = Path(file_path).expanduser()
        except RuntimeError:
            # "~user" with no such user.
            logger.debug("Could not expand home directory in %s", file_path)
            return None
        if not path.is_absolute():
            path = (self._base_path or Path.cwd()) / path
        if await aiofiles.os.path.isfile(path):
            return path
        return None

    @staticmethod
    def _join_inline(lines: list[str], content_type: str | None) -> str:
        line_ending = line_ending_for(content_type)
        if mime.is_form_urlencoded(content_type):
            # "&name=value" continuation lines glue onto the previous line.
            text = ""
            for i, line in enumerate(lines):
                text += ("" if i == 0 or line.startswith("&") else line_ending) + line
            return text

        text = line_ending.join(lines)
        if mime.is_newline_delimited_json(content_type):
            text += line_ending
        return text

    @staticmethod
    async def _read_part(part: BodyPart) -> str:
        if isinstance(part, str):
            return part
        async with aiofiles.open(part.path, "rb") as f:
            data = await f.read()
        return decode_file_bytes(data, part.encoding)
