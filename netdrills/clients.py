"""Blocking TCP and UDP clients for the long-computation request protocol."""

from __future__ import annotations

import argparse
import socket
import sys

from netdrills.endpoints import DEFAULT_PORT, Endpoint, parse_address
from netdrills.streamio import read_line, write_all

UDP_RESPONSE_SIZE = 6


def make_request(duration_sec: int) -> str:
    """Build the request line asking the server to emulate a long computation."""
    if isinstance(duration_sec, bool) or not isinstance(duration_sec, int):
        raise TypeError(f"duration must be an integer: {duration_sec!r}")
    if duration_sec < 0:
        raise ValueError(f"duration must not be negative: {duration_sec}")
    return f"EMULATE_LONG_COMP_OP {duration_sec}\n"


class SyncTCPClient:
    """A blocking TCP client that sends one request line and reads one reply line."""

    def __init__(self, address: str, port: int) -> None:
        self.endpoint = Endpoint(parse_address(address), port)
        self._sock = socket.socket(self.endpoint.family(), socket.SOCK_STREAM)

    def connect(self) -> None:
        """Connect to the server endpoint."""
        self._sock.connect(self.endpoint.as_tuple())

    def close(self) -> None:
        """Shut down both directions and release the socket."""
        if self._sock.fileno() == -1:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        finally:
            self._sock.close()

    def emulate_long_computation_op(self, duration_sec: int) -> str:
        """Send the request and return the reply line without its newline."""
        write_all(self._sock, make_request(duration_sec))
        return read_line(self._sock)

    def __enter__(self) -> SyncTCPClient:
        try:
            self.connect()
        except BaseException:
            self._sock.close()
            raise
        return self

    def __exit__(self, *args) -> None:
        self.close()


class SyncUDPClient:
    """A blocking UDP client that can query several servers from one socket."""

    def __init__(self) -> None:
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def emulate_long_computation_op(self, duration_sec: int, address: str, port: int) -> str:
        """Send the request to ``address:port`` and return at most six bytes of reply."""
        endpoint = Endpoint(parse_address(address), port)
        self._sock.sendto(make_request(duration_sec).encode("ascii"), endpoint.as_tuple())
        data, _sender = self._sock.recvfrom(UDP_RESPONSE_SIZE)
        return data.decode("utf-8", errors="replace")

    def close(self) -> None:
        """Release the socket."""
        self._sock.close()


def _run_tcp(host: str, port: int, duration: int) -> None:
    client = SyncTCPClient(host, port)
    try:
        client.connect()
        print("Sending request to the server...")
        response = client.emulate_long_computation_op(duration)
        print(f"Response received: {response}")
        client.close()
    finally:
        client._sock.close()


def _run_udp(host: str, port: int, duration: int) -> None:
    client = SyncUDPClient()
    try:
        print("Sending request to the server ...")
        response = client.emulate_long_computation_op(duration, host, port)
        print(f"Response from the server received: {response}")
    finally:
        client.close()


def main(argv: list[str] | None = None) -> int:
    """Send one long-computation request and print the reply."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--duration", type=int, default=10)
    parser.add_argument("--udp", action="store_true", help="use UDP instead of TCP")
    args = parser.parse_args(argv)

    try:
        if args.udp:
            _run_udp(args.host, args.port, args.duration)
        else:
            _run_tcp(args.host, args.port, args.duration)
    except OSError as exc:
        print(f"Error occured! Error code = {exc.errno}. Message: {exc}")
        return exc.errno or 1
    except ValueError as exc:
        print(f"Error occured! Message: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())