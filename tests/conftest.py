"""Pytest configuration and fixtures for restive-parser tests.

This file provides:
- join_lines / make_resolver: helpers for building request text and resolvers
- async_chunks: an async byte iterator for stream-body tests
- Fixtures: default settings, debug settings, a request-file writer
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import AsyncIterator, Callable

import pytest

from restive_parser.models import ParserSettings

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


def join_lines(*lines: str) -> str:
    """Join request lines with the platform line separator the splitter expects."""
    return os.linesep.join(lines)


def make_resolver(variables: dict[str, str], is_async: bool = False) -> Callable:
    """Create a ``{{name}}`` resolver over *variables*.

    Unknown placeholders are left as written. With is_async=True the resolver
    is a coroutine function, which the pipeline must await.
    """

    def substitute(text: str) -> str:
        return _PLACEHOLDER.sub(lambda m: variables.get(m.group(1), m.group(0)), text)

    if not is_async:
        return substitute

    async def resolve(text: str) -> str:
        await asyncio.sleep(0)
        return substitute(text)

    return resolve


async def async_chunks(*chunks: bytes) -> AsyncIterator[bytes]:
    """Async iterator over *chunks*, standing in for a lazy file stream."""
    for chunk in chunks:
        await asyncio.sleep(0)
        yield chunk


@pytest.fixture
def settings() -> ParserSettings:
    """Default parser settings (patching on, debug trace off)."""
    return ParserSettings()


@pytest.fixture
def debug_settings() -> ParserSettings:
    """Parser settings with the patch debug trace header enabled."""
    return ParserSettings(body_patch_debug=True)


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a file under tmp_path and return its path.

    Usage:
        def test_body(write_file):
            path = write_file("body.json", '{"a": 1}')
    """

    def _write(name: str, content: str | bytes) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path

    return _write
