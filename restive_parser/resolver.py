"""Variable resolver contract.

The resolver is owned by the caller: it expands ``{{name}}`` placeholders
from environments, earlier responses or prompts. The parser only calls it,
and accepts both plain functions and coroutine functions.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Union

VariableResolver = Callable[[str], Union[str, Awaitable[str]]]


async def resolve_text(resolver: VariableResolver, text: str) -> str:
    """Run *resolver* on *text*, awaiting the result if it is awaitable."""
    result = resolver(text)
    if inspect.isawaitable(result):
        result = await result
    return result


def identity_resolver(text: str) -> str:
    """Resolver that leaves every placeholder untouched."""
    return text
