"""Exception hierarchy for restive-parser.

Every fatal condition raised while turning request text into an outgoing
request derives from RestiveParserError, so callers can surface any of them
through one error-reporting path. Messages carry a subsystem prefix
("JSON patch:", "XML patch:", "body parsing:", "request parsing:").

Malformed patch-rule chunks are NOT errors: the tokenizer drops them.
Gating decisions (feature disabled, wrong content type, no body) are not
errors either: the pipeline skips the stage.
"""

from __future__ import annotations


class RestiveParserError(Exception):
    """Base class for all restive-parser errors."""


# =============================================================================
# Request Text Errors
# =============================================================================


class NoRequestLineError(RestiveParserError):
    """Raised when the request text contains no request line."""

    def __init__(self) -> None:
        super().__init__("request parsing: no request line found")


# =============================================================================
# Body Parsing Errors
# =============================================================================


class ConflictingTemplateOrderError(RestiveParserError):
    """Two markers in one body (or a GraphQL query and its variables)
    request different template orders."""


class ConflictingTemplateInstructionError(RestiveParserError):
    """A "<." forbid marker and an "@" template marker appear in the same body."""


class BodyTooLargeError(RestiveParserError):
    """Materializing a stream body exceeded the configured buffer size."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"body parsing: stream body exceeds the maximum buffer size of {limit} bytes"
        )


# =============================================================================
# Patch Errors
# =============================================================================


class InvalidJsonBodyError(RestiveParserError):
    """The body is not valid JSON but JSON patching was requested."""


class InvalidXmlBodyError(RestiveParserError):
    """The body is not well-formed XML but XML patching was requested."""


class CannotSetRootToPrimitiveError(RestiveParserError):
    """A patch rule targets the document root with a non-object value."""

    def __init__(self) -> None:
        super().__init__("JSON patch: cannot set root to a primitive value")


class InvalidPatchPathError(RestiveParserError):
    """A patch rule path is not a valid JSONPath / XPath expression."""
