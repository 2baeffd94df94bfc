"""Tests for the body materializer and the file-indicator grammar.

Tests cover:
- parse_indicator: every marker form, including the j@ / @j asymmetry
- Inline bodies: plain, form-urlencoded continuation, NDJSON, multipart
- File bodies: lazy stream vs materialized text, encodings, missing files
- Conflict detection between markers
"""

import os
from pathlib import Path

import pytest

from restive_parser.body_materializer import (
    BodyMaterializer,
    FileIndicator,
    decode_file_bytes,
    line_ending_for,
    parse_indicator,
)
from restive_parser.errors import (
    ConflictingTemplateInstructionError,
    ConflictingTemplateOrderError,
    RestiveParserError,
)
from restive_parser.models import StreamBody, TemplateOrder, TextBody
from restive_parser.streams import CombinedStream, stream_to_text

EOL = os.linesep
JSON = "application/json"


# =============================================================================
# parse_indicator tests
# =============================================================================


class TestParseIndicator:
    def test_no_indicator_streams(self) -> None:
        assert parse_indicator(None) == FileIndicator()

    def test_dot_forbids_templating(self) -> None:
        assert parse_indicator(".") == FileIndicator(forbid_template=True)

    def test_bare_at_templates_before_patch(self) -> None:
        assert parse_indicator("@") == FileIndicator(TemplateOrder.BEFORE_PATCH, "utf8")

    def test_at_with_encoding(self) -> None:
        assert parse_indicator("@latin1") == FileIndicator(TemplateOrder.BEFORE_PATCH, "latin1")

    @pytest.mark.parametrize("indicator", ["@j", "@x"])
    def test_suffix_patch_marker_templates_before_patch(self, indicator: str) -> None:
        assert parse_indicator(indicator) == FileIndicator(TemplateOrder.BEFORE_PATCH, "utf8")

    def test_suffix_patch_marker_with_encoding(self) -> None:
        assert parse_indicator("@xutf16le") == FileIndicator(TemplateOrder.BEFORE_PATCH, "utf16le")

    @pytest.mark.parametrize("indicator", ["j@", "x@"])
    def test_prefix_patch_marker_templates_after_patch(self, indicator: str) -> None:
        assert parse_indicator(indicator) == FileIndicator(TemplateOrder.AFTER_PATCH, "utf8")

    def test_prefix_patch_marker_with_encoding(self) -> None:
        assert parse_indicator("x@latin1") == FileIndicator(TemplateOrder.AFTER_PATCH, "latin1")

    def test_unknown_indicator_without_at_streams(self) -> None:
        assert parse_indicator("job") == FileIndicator()


class TestHelpers:
    def test_line_ending_multipart_is_crlf(self) -> None:
        assert line_ending_for("multipart/form-data; boundary=abc") == "\r\n"

    def test_line_ending_default_is_platform(self) -> None:
        assert line_ending_for(JSON) == os.linesep
        assert line_ending_for(None) == os.linesep

    def test_decode_latin1(self) -> None:
        assert decode_file_bytes(b"caf\xe9", "latin1") == "café"

    def test_decode_base64_and_hex(self) -> None:
        assert decode_file_bytes(b"hi", "base64") == "aGk="
        assert decode_file_bytes(b"hi", "hex") == "6869"

    def test_decode_unknown_encoding(self) -> None:
        with pytest.raises(RestiveParserError, match="unknown file encoding 'klingon'"):
            decode_file_bytes(b"x", "klingon")


# =============================================================================
# Inline body tests
# =============================================================================


class TestInlineBodies:
    async def test_no_lines_means_no_body(self) -> None:
        result = await BodyMaterializer().parse([], JSON)
        assert result.body is None
        assert result.template_order is TemplateOrder.NONE

    async def test_lines_joined_with_platform_eol(self) -> None:
        result = await BodyMaterializer().parse(["{", '  "a": 1', "}"], JSON)
        assert result.body == TextBody(EOL.join(["{", '  "a": 1', "}"]))
        assert result.raw_body_text == result.body.text

    async def test_form_continuation_lines_are_glued(self) -> None:
        result = await BodyMaterializer().parse(
            ["name=foo", "&password=bar", "&remember=1"], "application/x-www-form-urlencoded"
        )
        assert result.body == TextBody("name=foo&password=bar&remember=1")

    async def test_form_non_continuation_lines_keep_eol(self) -> None:
        result = await BodyMaterializer().parse(["a=1", "b=2"], "application/x-www-form-urlencoded")
        assert result.body == TextBody(f"a=1{EOL}b=2")

    async def test_ndjson_gets_trailing_eol(self) -> None:
        result = await BodyMaterializer().parse(['{"a":1}', '{"a":2}'], "application/x-ndjson")
        assert result.body == TextBody(f'{{"a":1}}{EOL}{{"a":2}}{EOL}')

    async def test_multipart_uses_crlf(self) -> None:
        result = await BodyMaterializer().parse(["--b", "", "value", "--b--"], "multipart/form-data; boundary=b")
        assert result.body == TextBody("--b\r\n\r\nvalue\r\n--b--")

    async def test_xml_line_is_not_a_file_indicator(self) -> None:
        result = await BodyMaterializer().parse(["<user>", "<job>dev</job>", "</user>"], "application/xml")
        assert result.body == TextBody(EOL.join(["<user>", "<job>dev</job>", "</user>"]))


# =============================================================================
# File body tests
# =============================================================================


class TestFileBodies:
    async def test_plain_indicator_streams_file(self, tmp_path: Path, write_file) -> None:
        write_file("body.json", '{"a": 1}')
        result = await BodyMaterializer(tmp_path).parse(["< ./body.json"], JSON)
        assert isinstance(result.body, StreamBody)
        assert result.template_order is TemplateOrder.NONE
        assert result.raw_body_text is None
        assert await stream_to_text(result.body.stream) == '{"a": 1}'

    async def test_stream_keeps_file_lazy(self, tmp_path: Path, write_file) -> None:
        path = write_file("big.bin", b"x" * 10)
        result = await BodyMaterializer(tmp_path).parse(["< big.bin"], "application/octet-stream")
        assert isinstance(result.body.stream, CombinedStream)
        assert result.body.stream.parts == (path,)

    async def test_dot_indicator_streams_file(self, tmp_path: Path, write_file) -> None:
        write_file("body.txt", "{{not templated}}")
        result = await BodyMaterializer(tmp_path).parse(["<. body.txt"], "text/plain")
        assert isinstance(result.body, StreamBody)
        assert result.template_order is TemplateOrder.NONE

    async def test_at_indicator_materializes_before_patch(self, tmp_path: Path, write_file) -> None:
        write_file("body.json", '{"name": "{{name}}"}')
        result = await BodyMaterializer(tmp_path).parse(["<@ body.json"], JSON)
        assert result.body == TextBody('{"name": "{{name}}"}')
        assert result.template_order is TemplateOrder.BEFORE_PATCH
        assert result.raw_body_text == '{"name": "{{name}}"}'

    async def test_prefix_marker_materializes_after_patch(self, tmp_path: Path, write_file) -> None:
        write_file("body.json", "{}")
        result = await BodyMaterializer(tmp_path).parse(["<j@ body.json"], JSON)
        assert result.body == TextBody("{}")
        assert result.template_order is TemplateOrder.AFTER_PATCH

    async def test_suffix_marker_materializes_before_patch(self, tmp_path: Path, write_file) -> None:
        write_file("body.json", "{}")
        result = await BodyMaterializer(tmp_path).parse(["<@j body.json"], JSON)
        assert result.template_order is TemplateOrder.BEFORE_PATCH

    async def test_encoding_is_applied(self, tmp_path: Path, write_file) -> None:
        write_file("latin.txt", b"caf\xe9")
        result = await BodyMaterializer(tmp_path).parse(["<@latin1 latin.txt"], "text/plain")
        assert result.body == TextBody("café")

    async def test_absolute_path_ignores_base_path(self, tmp_path: Path, write_file) -> None:
        path = write_file("nested/body.txt", "hello")
        result = await BodyMaterializer(Path("/nonexistent")).parse([f"<@ {path}"], "text/plain")
        assert result.body == TextBody("hello")

    async def test_path_with_spaces(self, tmp_path: Path, write_file) -> None:
        write_file("my body.txt", "spaced")
        result = await BodyMaterializer(tmp_path).parse(["<@ my body.txt"], "text/plain")
        assert result.body == TextBody("spaced")

    async def test_missing_file_keeps_line_as_text(self, tmp_path: Path) -> None:
        result = await BodyMaterializer(tmp_path).parse(["< missing.json"], JSON)
        assert result.body == TextBody("< missing.json")

    async def test_unknown_home_directory_keeps_line_as_text(self, tmp_path: Path) -> None:
        result = await BodyMaterializer(tmp_path).parse(["< ~nosuchuser_zz/body.json"], JSON)
        assert result.body == TextBody("< ~nosuchuser_zz/body.json")

    async def test_missing_file_with_marker_keeps_template_order(self, tmp_path: Path) -> None:
        result = await BodyMaterializer(tmp_path).parse(["<@ missing.json"], JSON)
        assert result.body == TextBody("<@ missing.json")
        assert result.template_order is TemplateOrder.BEFORE_PATCH

    async def test_text_and_file_parts_stream_in_order(self, tmp_path: Path, write_file) -> None:
        write_file("part.txt", "FILE")
        result = await BodyMaterializer(tmp_path).parse(["before", "< part.txt", "after"], "text/plain")
        assert isinstance(result.body, StreamBody)
        assert await stream_to_text(result.body.stream) == f"before{EOL}FILE{EOL}after"

    async def test_multipart_file_upload(self, tmp_path: Path, write_file) -> None:
        write_file("photo.txt", "DATA")
        lines = [
            "--b",
            'Content-Disposition: form-data; name="file"; filename="photo.txt"',
            "",
            "< photo.txt",
            "--b--",
        ]
        result = await BodyMaterializer(tmp_path).parse(lines, "multipart/form-data; boundary=b")
        text = await stream_to_text(result.body.stream)
        assert text == (
            '--b\r\nContent-Disposition: form-data; name="file"; filename="photo.txt"\r\n'
            "\r\nDATA\r\n--b--\r\n"
        )

    async def test_marker_materializes_whole_body(self, tmp_path: Path, write_file) -> None:
        write_file("a.txt", "A")
        write_file("b.txt", "B")
        result = await BodyMaterializer(tmp_path).parse(["< a.txt", "<@ b.txt"], "text/plain")
        assert result.body == TextBody(f"A{EOL}B")
        assert result.template_order is TemplateOrder.BEFORE_PATCH


class TestMarkerConflicts:
    async def test_forbid_then_template(self, tmp_path: Path, write_file) -> None:
        write_file("a.txt", "A")
        with pytest.raises(ConflictingTemplateInstructionError, match="^body parsing:"):
            await BodyMaterializer(tmp_path).parse(["<. a.txt", "<@ a.txt"], "text/plain")

    async def test_template_then_forbid(self, tmp_path: Path, write_file) -> None:
        write_file("a.txt", "A")
        with pytest.raises(ConflictingTemplateInstructionError):
            await BodyMaterializer(tmp_path).parse(["<@ a.txt", "<. a.txt"], "text/plain")

    async def test_conflicting_orders(self, tmp_path: Path, write_file) -> None:
        write_file("a.txt", "A")
        with pytest.raises(ConflictingTemplateOrderError, match="conflicting template substitution order"):
            await BodyMaterializer(tmp_path).parse(["<j@ a.txt", "<@ a.txt"], JSON)

    async def test_matching_orders_are_fine(self, tmp_path: Path, write_file) -> None:
        write_file("a.txt", "A")
        result = await BodyMaterializer(tmp_path).parse(["<j@ a.txt", "<x@ a.txt"], JSON)
        assert result.template_order is TemplateOrder.AFTER_PATCH
