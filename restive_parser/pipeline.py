"""Pipeline Orchestrator - runs templating and patching over a request body.

Stage order for one request:

    1. template (only when the order is BEFORE_PATCH)
    2. JSON patch   (X-RestiveClient-JsonPatch, JSON content types)
    3. XML patch    (X-RestiveClient-XmlPatch, XML content types)
    4. template (only when the order is AFTER_PATCH)

The patch directive headers are removed in every branch, so they never reach
the wire even when their stage is skipped. A stream body is promoted to text
the first time a stage needs it and stays text afterwards.

With ``body_patch_debug`` on, every stage event is recorded and written to
the debug header as ``label | label | ...``; with it off the header is
removed even if the caller set it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from restive_parser import mime
from restive_parser.json_patch import apply_json_patches
from restive_parser.models import OutgoingRequest, ParserSettings, PatchRule, TemplateOrder, TextBody
from restive_parser.patch_rules import parse_patch_header
from restive_parser.resolver import VariableResolver, resolve_text
from restive_parser.xml_patch import apply_xml_patches

logger = logging.getLogger(__name__)

JSON_PATCH_CONTENT_TYPE_EXCEPTIONS = frozenset(
    {"application/json-patch+json", "application/json-patch-json"}
)
XML_PATCH_CONTENT_TYPE_EXCEPTIONS = frozenset({"application/xml-patch+xml"})

PatchApplier = Callable[[str, list[PatchRule], VariableResolver], Awaitable[str]]


def is_json_patch_allowed(content_type: str | None) -> bool:
    """JSON family, except JSON Patch documents (RFC 6902) which must not be rewritten."""
    if not content_type:
        return False
    if mime.parse_media_type(content_type).essence in JSON_PATCH_CONTENT_TYPE_EXCEPTIONS:
        return False
    return mime.is_json(content_type)


def is_xml_patch_allowed(content_type: str | None) -> bool:
    """XML family, except XML Patch documents (RFC 5261)."""
    if not content_type:
        return False
    if mime.parse_media_type(content_type).essence in XML_PATCH_CONTENT_TYPE_EXCEPTIONS:
        return False
    return mime.is_xml(content_type)


class PatchDebugTrace:
    """Ordered stage labels for one pipeline run.

    Labels are always logged at DEBUG level; they are kept for the debug
    header only when the trace is enabled.
    """

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self._steps: list[str] = []

    def record(self, label: str) -> None:
        logger.debug("body pipeline: %s", label)
        if self.enabled:
            self._steps.append(label)

    @property
    def steps(self) -> tuple[str, ...]:
        return tuple(self._steps)

    def render(self) -> str:
        return " | ".join(self._steps) or "no-patch"


@dataclass(frozen=True)
class PatchStage:
    """One patch stage: which header drives it and which bodies it accepts."""

    label: str
    enabled: bool
    header_name: str
    is_allowed: Callable[[str | None], bool]
    apply: PatchApplier


class BodyPatchPipeline:
    """Sequences template resolution and patch stages over an OutgoingRequest.

    Usage:
        pipeline = BodyPatchPipeline(ParserSettings(), resolver)
        await pipeline.process(request, TemplateOrder.AFTER_PATCH)
        request.body  # patched, templated TextBody

    The pipeline holds no per-request state; one instance can process any
    number of requests.
    """

    def __init__(self, settings: ParserSettings, resolve_variables: VariableResolver) -> None:
        self._settings = settings
        self._resolve_variables = resolve_variables
        self._stages = (
            PatchStage(
                label="json-patch",
                enabled=settings.enable_json_body_patching,
                header_name=settings.json_patch_header_name,
                is_allowed=is_json_patch_allowed,
                apply=apply_json_patches,
            ),
            PatchStage(
                label="xml-patch",
                enabled=settings.enable_xml_body_patching,
                header_name=settings.xml_patch_header_name,
                is_allowed=is_xml_patch_allowed,
                apply=apply_xml_patches,
            ),
        )

    async def process(self, request: OutgoingRequest, template_order: TemplateOrder) -> PatchDebugTrace:
        """Run all stages on *request* in place and return the trace.

        Raises:
            InvalidJsonBodyError, InvalidXmlBodyError, CannotSetRootToPrimitiveError,
            InvalidPatchPathError: From the patch appliers.
            BodyTooLargeError: If a stream body exceeds the buffer limit.
        """
        trace = PatchDebugTrace(self._settings.body_patch_debug)

        if template_order is TemplateOrder.BEFORE_PATCH:
            await self._apply_template(request, trace, "template-before-patch")

        for stage in self._stages:
            await self._apply_patch_stage(request, stage, trace)

        if template_order is TemplateOrder.AFTER_PATCH:
            await self._apply_template(request, trace, "template-after-patch")

        if trace.enabled:
            request.headers[self._settings.debug_header_name] = trace.render()
        else:
            request.headers.pop(self._settings.debug_header_name, None)

        return trace

    async def _apply_template(self, request: OutgoingRequest, trace: PatchDebugTrace, label: str) -> None:
        body_text = await request.body_text(self._settings.max_stream_buffer_size)
        if body_text is None:
            trace.record(f"{label}:skipped-no-body")
            return

        trace.record(f"{label}:start")
        processed = await resolve_text(self._resolve_variables, body_text)
        request.body = TextBody(processed)
        trace.record(f"{label}:complete")

    async def _apply_patch_stage(
        self, request: OutgoingRequest, stage: PatchStage, trace: PatchDebugTrace
    ) -> None:
        values = request.headers.get_all(stage.header_name)
        # Stripped up front: every branch below must leave the header off the wire.
        request.headers.pop(stage.header_name, None)

        if not stage.enabled or not values:
            trace.record(f"{stage.label}:skipped-disabled-or-missing")
            return

        content_type = request.headers.get("Content-Type")
        if not stage.is_allowed(content_type):
            trace.record(f"{stage.label}:skipped-content-type:{content_type or 'none'}")
            return

        body_text = await request.body_text(self._settings.max_stream_buffer_size)
        if body_text is None:
            trace.record(f"{stage.label}:skipped-no-body")
            return

        rules = parse_patch_header(values)
        if not rules:
            trace.record(f"{stage.label}:skipped-no-rules")
            return

        trace.record(f"{stage.label}:applying:{len(rules)}")
        request.body = TextBody(await stage.apply(body_text, rules, self._resolve_variables))
        trace.record(f"{stage.label}:complete")
