"""Asynchronous stream operations: exact reads, full writes, cancellable connects, chunked reads."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import AsyncIterator, Union

from netdrills.streamio import MESSAGE_SIZE, ConnectionClosedError

BytesLike = Union[bytes, bytearray, memoryview]

DEFAULT_MESSAGE = b"Hello"
DEFAULT_CHUNK_SIZE = 1024
HTTP_PORT = 80


def _to_bytes(data: str | BytesLike) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


async def read_message(reader: asyncio.StreamReader, size: int = MESSAGE_SIZE) -> bytes:
    """Read exactly ``size`` bytes, one partial read after another.

    Raises ConnectionClosedError if the stream ends first.
    """
    if size < 0:
        raise ValueError(f"size must not be negative: {size}")
    buf = bytearray()
    while len(buf) < size:
        chunk = await reader.read(size - len(buf))
        if not chunk:
            raise ConnectionClosedError(
                f"connection closed after {len(buf)} of {size} bytes"
            )
        buf += chunk
    return bytes(buf)


async def write_message(
    writer: asyncio.StreamWriter, data: str | BytesLike = DEFAULT_MESSAGE
) -> int:
    """Write every byte of ``data`` and wait until it is flushed; return the count."""
    payload = _to_bytes(data)
    writer.write(payload)
    await writer.drain()
    return len(payload)


async def connect_with_cancel(
    address: str, port: int, cancel_after: float | None = None
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter] | None:
    """Connect to ``address:port``, abandoning the attempt after ``cancel_after`` seconds.

    Returns the stream pair, or None when the attempt was cancelled before it
    completed. Connection errors propagate as OSError.
    """
    attempt = asyncio.ensure_future(asyncio.open_connection(address, port))
    if cancel_after is None:
        return await attempt
    if cancel_after > 0:
        await asyncio.wait({attempt}, timeout=cancel_after)
    if not attempt.done():
        attempt.cancel()
        await asyncio.wait({attempt})
    if attempt.cancelled():
        return None
    return attempt.result()


async def stream_chunks(
    reader: asyncio.StreamReader, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """Yield whatever data arrives, at most ``chunk_size`` bytes at a time, until EOF."""
    if chunk_size <= 0:
        raise ValueError(f"chunk size must be positive: {chunk_size}")
    while chunk := await reader.read(chunk_size):
        yield chunk


async def http_get(
    address: str,
    port: int = HTTP_PORT,
    host: str | None = None,
    path: str = "/index.html",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> bytes:
    """Send a minimal HTTP/1.1 GET with ``Connection: close`` and return the raw reply."""
    reader, writer = await asyncio.open_connection(address, port)
    try:
        request = (
            f"GET {path} HTTP/1.1\r\n"
            f"Host: {host if host is not None else address}\r\n"
            "Connection: close\r\n\r\n"
        )
        await write_message(writer, request)
        return b"".join([chunk async for chunk in stream_chunks(reader, chunk_size)])
    finally:
        writer.close()
        with suppress(OSError):
            await writer.wait_closed()