"""Lazy request bodies.

A CombinedStream concatenates literal text parts and file parts into one
async byte stream without reading the files up front, so large uploads never
sit on the heap. stream_to_text() is the single place where a stream is
buffered into a string, and it enforces the configured size limit.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Union

import aiofiles

from restive_parser.errors import BodyTooLargeError

DEFAULT_CHUNK_SIZE = 64 * 1024

StreamPart = Union[str, Path]


class CombinedStream:
    """Ordered sequence of text and file parts exposed as ``AsyncIterable[bytes]``.

    Usage:
        stream = CombinedStream()
        stream.append("--boundary\\r\\n")
        stream.append(Path("upload.bin"))
        async for chunk in stream:
            ...

    Text parts are encoded as UTF-8. File parts are opened only while they
    are being read. Iterating twice re-reads the files.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._parts: list[StreamPart] = []
        self._chunk_size = chunk_size

    def append(self, part: StreamPart) -> None:
        self._parts.append(part)

    @property
    def parts(self) -> tuple[StreamPart, ...]:
        return tuple(self._parts)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for part in self._parts:
            if isinstance(part, Path):
                async with aiofiles.open(part, "rb") as f:
                    while True:
                        chunk = await f.read(self._chunk_size)
                        if not chunk:
                            break
                        yield chunk
            elif part:
                yield part.encode("utf-8")

    def __repr__(self) -> str:
        files = sum(1 for p in self._parts if isinstance(p, Path))
        return f"CombinedStream(parts={len(self._parts)}, files={files})"


async def stream_to_text(
    stream: AsyncIterable[bytes | str],
    max_size: int | None = None,
    encoding: str = "utf-8",
) -> str:
    """Buffer an async byte stream into a string.

    Args:
        stream: Any async iterable of bytes (str chunks are accepted too).
        max_size: Maximum number of buffered bytes; None disables the check.
        encoding: Codec used to decode the buffered bytes.

    Raises:
        BodyTooLargeError: If the stream yields more than *max_size* bytes.
    """
    buffer = bytearray()
    async for chunk in stream:
        if isinstance(chunk, str):
            chunk = chunk.encode(encoding)
        buffer.extend(chunk)
        if max_size is not None and len(buffer) > max_size:
            raise BodyTooLargeError(max_size)
    return buffer.decode(encoding)
