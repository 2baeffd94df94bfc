"""Patch-rule tokenizer for the JSON/XML patch directive headers.

Header grammar (one or more header values, joined with ``;``):

    rules := rule (";" rule)*
    rule  := path "=" value

``\\;`` and ``\\\\`` escape the separator and the backslash. The path/value
delimiter is the first ``=`` outside quotes and outside ``[...]``/``(...)``
nesting, so JSONPath filters such as ``$.users[?(@.status=='active')]=x``
keep their ``==`` inside the path.

Chunks without a delimiter, or with an empty path, are dropped silently: a
hand-edited header that is partly malformed still applies its valid rules.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from restive_parser.models import PatchRule


class QuoteState(Enum):
    """Quote context of the delimiter scanner. Single and double are exclusive."""

    NONE = "none"
    SINGLE = "single"
    DOUBLE = "double"


_QUOTE_STATES = {"'": QuoteState.SINGLE, '"': QuoteState.DOUBLE}


def parse_patch_header(header_values: Iterable[str]) -> list[PatchRule]:
    """Tokenize patch directive header values into ordered PatchRules.

    Args:
        header_values: Raw header values, in header order.

    Returns:
        Rules in the order they appear. Paths and values are trimmed.
    """
    values = list(header_values)
    if not values:
        return []

    rules: list[PatchRule] = []
    for chunk in split_rule_chunks(";".join(values)):
        index = find_delimiter(chunk)
        if index < 0:
            continue
        path = chunk[:index].strip()
        if not path:
            continue
        rules.append(PatchRule(path=path, raw_value=chunk[index + 1 :].strip()))
    return rules


def split_rule_chunks(text: str) -> list[str]:
    """Split on unescaped ``;``, resolving backslash escapes. Blank chunks are dropped."""
    chunks: list[str] = []
    current: list[str] = []
    escaping = False

    for ch in text:
        if escaping:
            current.append(ch)
            escaping = False
        elif ch == "\\":
            escaping = True
        elif ch == ";":
            _flush_chunk(current, chunks)
            current = []
        else:
            current.append(ch)

    _flush_chunk(current, chunks)
    return chunks


def _flush_chunk(current: list[str], chunks: list[str]) -> None:
    chunk = "".join(current).strip()
    if chunk:
        chunks.append(chunk)


def find_delimiter(chunk: str) -> int:
    """Index of the path/value ``=`` in *chunk*, or -1 if there is none.

    Single left-to-right scan. A backslash skips the next character; quotes
    toggle only when the other quote kind is not open; brackets and parens
    are tracked separately and never go below zero.
    """
    escaping = False
    quote = QuoteState.NONE
    bracket_depth = 0
    paren_depth = 0

    for i, ch in enumerate(chunk):
        if escaping:
            escaping = False
            continue
        if ch == "\\":
            escaping = True
            continue

        if ch in _QUOTE_STATES:
            state = _QUOTE_STATES[ch]
            if quote is QuoteState.NONE:
                quote = state
                continue
            if quote is state:
                quote = QuoteState.NONE
                continue
        if quote is not QuoteState.NONE:
            continue

        if ch == "[":
            bracket_depth += 1
        elif ch == "]":
            bracket_depth = max(bracket_depth - 1, 0)
        elif ch == "(":
            paren_depth += 1
        elif ch == ")":
            paren_depth = max(paren_depth - 1, 0)
        elif ch == "=" and bracket_depth == 0 and paren_depth == 0:
            return i

    return -1
