"""Buffers and blocking stream I/O helpers for connected sockets."""

from __future__ import annotations

import socket
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

INPUT_BUFFER_SIZE = 20
MESSAGE_SIZE = 7
_CHUNK_SIZE = 4096

DEFAULT_REQUEST = bytes([0x48, 0x65, 0x00, 0x6C, 0x6C, 0x6F])
DEFAULT_RESPONSE = bytes([0x48, 0x69, 0x21])


class ConnectionClosedError(ConnectionError):
    """The peer closed the connection before the expected data arrived."""


def _to_bytes(data: str | BytesLike) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class StreamBuffer:
    """A growable byte buffer that is written at the end and read line by line."""

    def __init__(self) -> None:
        self._data = bytearray()

    def write(self, data: str | BytesLike) -> int:
        """Append ``data`` (text is UTF-8 encoded) and return the bytes added."""
        chunk = _to_bytes(data)
        self._data += chunk
        return len(chunk)

    def read_line(self) -> bytes:
        """Remove and return the next line without its newline.

        The last line need not end in a newline. Raises EOFError when empty.
        """
        if not self._data:
            raise EOFError("stream buffer is empty")
        idx = self._data.find(b"\n")
        if idx == -1:
            line = bytes(self._data)
            self._data.clear()
            return line
        line = bytes(self._data[:idx])
        del self._data[: idx + 1]
        return line

    def __len__(self) -> int:
        return len(self._data)


def make_input_buffer(size: int = INPUT_BUFFER_SIZE) -> bytearray:
    """Allocate a zeroed, writable buffer of ``size`` bytes for receiving into."""
    if size < 0:
        raise ValueError(f"buffer size must not be negative: {size}")
    return bytearray(size)


def make_output_buffer(text: str | BytesLike) -> memoryview:
    """Wrap ``text`` in a read-only buffer suitable for sending."""
    return memoryview(_to_bytes(text))


def write_all(sock: socket.socket, data: str | BytesLike) -> int:
    """Send every byte of ``data``, one partial write after another; return the count."""
    view = memoryview(_to_bytes(data))
    total = 0
    while total < len(view):
        total += sock.send(view[total:])
    return total


def read_exact(sock: socket.socket, size: int = MESSAGE_SIZE) -> bytes:
    """Receive exactly ``size`` bytes, raising ConnectionClosedError on early EOF."""
    if size < 0:
        raise ValueError(f"size must not be negative: {size}")
    buf = bytearray(size)
    view = memoryview(buf)
    received = 0
    while received < size:
        n = sock.recv_into(view[received:])
        if n == 0:
            raise ConnectionClosedError(
                f"connection closed after {received} of {size} bytes"
            )
        received += n
    return bytes(buf)


def read_until(sock: socket.socket, delimiter: str | BytesLike = b"\n") -> bytes:
    """Receive up to and including ``delimiter``; nothing beyond it is consumed."""
    delim = _to_bytes(delimiter)
    if not delim:
        raise ValueError("delimiter must not be empty")
    collected = bytearray()
    while True:
        peeked = sock.recv(_CHUNK_SIZE, socket.MSG_PEEK)
        if not peeked:
            raise ConnectionClosedError(
                f"connection closed before delimiter {delim!r} was received"
            )
        combined = collected + peeked
        start = max(0, len(collected) - len(delim) + 1)
        pos = combined.find(delim, start)
        if pos != -1:
            need = pos + len(delim) - len(collected)
            collected += read_exact(sock, need)
            return bytes(collected)
        collected += read_exact(sock, len(peeked))


def read_line(sock: socket.socket) -> str:
    """Receive one newline-terminated line and return it as text without the newline."""
    return read_until(sock, b"\n")[:-1].decode("utf-8")


def read_to_eof(sock: socket.socket) -> bytes:
    """Receive everything until the peer shuts down its sending side."""
    chunks = []
    while chunk := sock.recv(_CHUNK_SIZE):
        chunks.append(chunk)
    return b"".join(chunks)


def communicate(sock: socket.socket, request: str | BytesLike = DEFAULT_REQUEST) -> bytes:
    """Send ``request``, shut down sending to mark its end, and return the whole reply."""
    write_all(sock, request)
    sock.shutdown(socket.SHUT_WR)
    return read_to_eof(sock)


def process_request(
    sock: socket.socket, response: str | BytesLike = DEFAULT_RESPONSE
) -> bytes:
    """Read a request up to EOF, send ``response``, shut down sending; return the request."""
    request = read_to_eof(sock)
    write_all(sock, response)
    sock.shutdown(socket.SHUT_WR)
    return request