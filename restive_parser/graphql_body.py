"""GraphQL Body Composer - builds the JSON payload for GraphQL requests.

The request body is split at its first blank line: the query comes before it,
the variables JSON after it. Both halves go through the BodyMaterializer, so
file indicators work in either; their template orders must agree.
"""

from __future__ import annotations

import json
import re

from restive_parser.body_materializer import BodyMaterializer
from restive_parser.errors import ConflictingTemplateOrderError, InvalidJsonBodyError
from restive_parser.models import Body, BodyParseResult, StreamBody, TemplateOrder, TextBody
from restive_parser.streams import stream_to_text

OPERATION_NAME_PATTERN = re.compile(r"^\s*query\s+([^@{(\s]+)", re.IGNORECASE)


def split_graphql_lines(body_lines: list[str]) -> tuple[list[str], list[str]]:
    """Split body lines into (query lines, variable lines) at the first blank line."""
    for index, line in enumerate(body_lines):
        if not line.strip():
            return body_lines[:index], body_lines[index + 1 :]
    return list(body_lines), []


def combine_template_orders(first: TemplateOrder, second: TemplateOrder) -> TemplateOrder:
    """NONE yields to the other order; two different non-NONE orders conflict.

    Raises:
        ConflictingTemplateOrderError: If the orders differ and neither is NONE.
    """
    if first is TemplateOrder.NONE:
        return second
    if second is TemplateOrder.NONE:
        return first
    if first is not second:
        raise ConflictingTemplateOrderError(
            "body parsing: conflicting template substitution order markers in GraphQL body and variables."
        )
    return first


def extract_operation_name(query: str | None) -> str | None:
    """Name from a leading ``query Name`` (anonymous queries and mutations yield None)."""
    if not query:
        return None
    match = OPERATION_NAME_PATTERN.match(query)
    return match.group(1) if match else None


class GraphQLBodyComposer:
    """Composes ``{query, operationName, variables}`` from GraphQL body lines."""

    def __init__(self, materializer: BodyMaterializer, max_buffer_size: int | None = None) -> None:
        self._materializer = materializer
        self._max_buffer_size = max_buffer_size

    async def compose(self, body_lines: list[str], content_type: str | None) -> BodyParseResult:
        """Build the GraphQL JSON payload.

        Raises:
            ConflictingTemplateOrderError: Query and variables request different orders.
            InvalidJsonBodyError: The variables section is not valid JSON.
        """
        query_lines, variable_lines = split_graphql_lines(body_lines)
        query_result = await self._materializer.parse(query_lines, content_type)
        variables_result = await self._materializer.parse(variable_lines, content_type)
        template_order = combine_template_orders(
            query_result.template_order, variables_result.template_order
        )

        query = await self._materialize(query_result.body)
        variables_text = await self._materialize(variables_result.body)
        try:
            variables = json.loads(variables_text) if variables_text else {}
        except json.JSONDecodeError as e:
            raise InvalidJsonBodyError(f"GraphQL: variables are not valid JSON: {e}") from e

        payload: dict = {}
        if query is not None:
            payload["query"] = query
        operation_name = extract_operation_name(query)
        if operation_name is not None:
            payload["operationName"] = operation_name
        payload["variables"] = variables

        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return BodyParseResult(body=TextBody(text), template_order=template_order, raw_body_text=text)

    async def _materialize(self, body: Body) -> str | None:
        if body is None:
            return None
        if isinstance(body, StreamBody):
            return await stream_to_text(body.stream, self._max_buffer_size)
        return body.text
