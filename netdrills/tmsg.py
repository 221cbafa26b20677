"""A line-based message service: a server that answers ``T_MSG_NOW_<name>s`` requests and its client."""

from __future__ import annotations

import argparse
import errno
import itertools
import logging
import re
import socket
import socketserver
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from netdrills.endpoints import DEFAULT_PORT, Endpoint, parse_address
from netdrills.streamio import read_until, write_all

log = logging.getLogger(__name__)

Callback = Callable[[int, str, Optional[BaseException]], None]

DEFAULT_HOST = "0.0.0.0"
UNKNOWN_RESPONSE = "Unknown request\n"

# An identifier (letter or underscore, then letters, digits, underscores)
# followed by a literal "s" and a single line ending, and nothing after it.
_REQUEST_RE = re.compile(r"T_MSG_NOW_([A-Za-z_][A-Za-z0-9_]*)s(?:\r\n|\n|\r)")


def parse_request(line: Union[str, bytes]) -> str:
    """Return the identifier carried by a ``T_MSG_NOW_<identifier>s`` request line.

    The line must end in exactly one line ending. Raises ValueError otherwise.
    """
    text = line.decode("ascii") if isinstance(line, (bytes, bytearray)) else line
    match = _REQUEST_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"malformed request: {text!r}")
    return match.group(1)


def process_request(request: Union[str, bytes]) -> str:
    """Build the reply line the server sends for ``request``."""
    log.info("request: %r", request)
    try:
        identifier = parse_request(request)
    except ValueError:
        return UNKNOWN_RESPONSE
    return f"Your message is :{identifier}s\n"


class _MessageHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        conn: socket.socket = self.request
        try:
            request = read_until(conn, b"\n")
        except OSError as exc:
            log.info("onRequestReceived: %s", exc)
            return
        log.info("onRequestReceived: Success!")
        try:
            write_all(conn, process_request(request))
        except OSError as exc:
            log.info("onResponseSent: %s", exc)
            return
        log.info("onResponseSent: Success!")


class _TCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class _TCPServer6(_TCPServer):
    address_family = socket.AF_INET6


class MessageServer:
    """Serves each connection on its own thread: one request line in, one reply line out."""

    def __init__(self, port: int = DEFAULT_PORT, host: str = DEFAULT_HOST) -> None:
        self._endpoint = Endpoint(parse_address(host), port)
        self._server: Optional[_TCPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        """The port actually bound; known once the server has started."""
        if self._server is None:
            raise RuntimeError("server has not been started")
        return self._server.server_address[1]

    def start(self) -> None:
        """Bind, listen and start accepting connections on a background thread."""
        if self._server is not None:
            raise RuntimeError("server is already running")
        server_class = _TCPServer if self._endpoint.family() == socket.AF_INET else _TCPServer6
        self._server = server_class(self._endpoint.as_tuple(), _MessageHandler)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="message-server",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop accepting connections and release the listening socket."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None


@dataclass
class _Request:
    request_id: int
    payload: Optional[bytes]
    callback: Callback
    sock: socket.socket
    cancelled: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)
    closed: bool = False


class MessageClient:
    """Sends message lines to, or fetches lines from, a server, each on its own thread.

    Every request's callback is called once, from its worker thread, with the
    request id, the reply line without its newline, and None or the error.
    A cancelled request reports a ConnectionAbortedError.
    """

    def __init__(self, address: str = "127.0.0.1", port: int = DEFAULT_PORT) -> None:
        self.endpoint = Endpoint(parse_address(address), port)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._pending: dict[int, _Request] = {}
        self._threads: list[threading.Thread] = []

    def send(self, message: str, callback: Callback) -> int:
        """Send ``message`` as one line, read the reply line; return the request id."""
        if "\n" in message.rstrip("\n") or "\r" in message:
            raise ValueError("message must be a single line")
        line = message if message.endswith("\n") else message + "\n"
        return self._launch(line.encode("utf-8"), callback)

    def fetch(self, callback: Callback) -> int:
        """Connect and read one line the server sends unprompted; return the request id."""
        return self._launch(None, callback)

    def cancel_request(self, request_id: int) -> None:
        """Cancel a pending request; unknown or finished ids are ignored."""
        with self._lock:
            request = self._pending.get(request_id)
        if request is None:
            return
        request.cancelled.set()
        with request.lock:
            if not request.closed:
                try:
                    request.sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass

    def _launch(self, payload: Optional[bytes], callback: Callback) -> int:
        sock = socket.socket(self.endpoint.family(), socket.SOCK_STREAM)
        with self._lock:
            request_id = next(self._ids)
            request = _Request(request_id, payload, callback, sock)
            self._pending[request_id] = request
            thread = threading.Thread(
                target=self._run, args=(request,), name=f"message-request-{request_id}", daemon=True
            )
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        return request_id

    def _join(self) -> None:
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _run(self, request: _Request) -> None:
        response = ""
        error: Optional[BaseException] = None
        sock = request.sock
        try:
            sock.connect(self.endpoint.as_tuple())
            if not request.cancelled.is_set():
                if request.payload is not None:
                    write_all(sock, request.payload)
                if not request.cancelled.is_set():
                    line = read_until(sock, b"\n")
                    response = line[:-1].decode("utf-8", errors="replace")
        except OSError as exc:
            error = exc
        finally:
            with request.lock:
                try:
                    sock.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
                sock.close()
                request.closed = True
            with self._lock:
                self._pending.pop(request.request_id, None)
        if request.cancelled.is_set():
            error = ConnectionAbortedError(errno.ECONNABORTED, "Operation canceled")
        request.callback(request.request_id, response, error)


def _quoted(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def describe_response(request_id: int, response: str, error: Optional[BaseException]) -> str:
    """Render the outcome of a request as a one-line report."""
    prefix = f"Request #{request_id} "
    if error is None:
        return prefix + _quoted(response)
    if isinstance(error, ConnectionAbortedError):
        return prefix + "Cancelled"
    message = getattr(error, "strerror", None) or str(error)
    return prefix + message


def _serve(args: argparse.Namespace) -> int:
    server = MessageServer(args.port, args.host)
    server.start()
    try:
        if args.duration is None:
            while True:
                time.sleep(1.0)
        else:
            time.sleep(args.duration)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()
    return 0


def _send_from_stdin(args: argparse.Namespace) -> int:
    client = MessageClient(args.host, args.port)

    def handler(request_id: int, response: str, error: Optional[BaseException]) -> None:
        print(describe_response(request_id, response, error), flush=True)

    while True:
        if args.interval:
            time.sleep(args.interval)
        print("write your message: ", end="", flush=True)
        line = sys.stdin.readline()
        if not line:
            break
        for word in line.split():
            client.send(word, handler)
    client._join()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Run the message server, or send words read from standard input to it."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--serve", action="store_true", help="run the server")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--duration", type=float, default=None, help="seconds to serve")
    parser.add_argument("--interval", type=float, default=2.0, help="pause before each prompt")
    args = parser.parse_args(argv)
    if args.host is None:
        args.host = DEFAULT_HOST if args.serve else "127.0.0.1"

    try:
        return _serve(args) if args.serve else _send_from_stdin(args)
    except OSError as exc:
        print(f"Exception: {exc}")
        return exc.errno or 1
    except ValueError as exc:
        print(f"Exception: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())