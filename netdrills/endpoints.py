"""Endpoints, addresses and the basic socket operations built on them."""

from __future__ import annotations

import enum
import ipaddress
import socket
from dataclasses import dataclass
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

DEFAULT_PORT = 3333
BACKLOG_SIZE = 30


class Transport(enum.Enum):
    """Transport protocol of a socket or endpoint."""

    TCP = socket.SOCK_STREAM
    UDP = socket.SOCK_DGRAM

    @property
    def socket_type(self) -> int:
        return self.value


def parse_address(raw: str) -> IPAddress:
    """Parse a textual IPv4 or IPv6 address; raise ValueError if it is invalid."""
    return ipaddress.ip_address(raw.strip())


def any_address(version: int) -> IPAddress:
    """Return the unspecified ("any") address of the given IP version."""
    if version == 4:
        return ipaddress.IPv4Address(0)
    if version == 6:
        return ipaddress.IPv6Address(0)
    raise ValueError(f"unknown IP version: {version!r}")


@dataclass(frozen=True)
class Endpoint:
    """An IP address paired with a port number."""

    address: IPAddress
    port: int

    def __post_init__(self) -> None:
        if isinstance(self.address, str):
            object.__setattr__(self, "address", parse_address(self.address))
        elif not isinstance(self.address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            raise TypeError(f"not an IP address: {self.address!r}")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")

    def family(self) -> int:
        """The socket address family matching this endpoint's address."""
        return socket.AF_INET if self.address.version == 4 else socket.AF_INET6

    def as_tuple(self) -> tuple[str, int]:
        """The (host, port) pair the socket module expects."""
        return (str(self.address), self.port)

    @classmethod
    def _from_sockaddr(cls, sockaddr: tuple) -> Endpoint:
        return cls(parse_address(sockaddr[0]), sockaddr[1])


def _family_for(version: int) -> int:
    if version == 4:
        return socket.AF_INET
    if version == 6:
        return socket.AF_INET6
    raise ValueError(f"unknown IP version: {version!r}")


def open_socket(transport: Transport = Transport.TCP, version: int = 4) -> socket.socket:
    """Open an unconnected socket; raise OSError if the system refuses."""
    return socket.socket(_family_for(version), transport.socket_type)


def bind_socket(sock: socket.socket, endpoint: Endpoint) -> Endpoint:
    """Bind ``sock`` to ``endpoint`` and return the endpoint actually bound."""
    sock.bind(endpoint.as_tuple())
    return Endpoint._from_sockaddr(sock.getsockname())


def open_acceptor(endpoint: Endpoint, backlog: int = BACKLOG_SIZE) -> socket.socket:
    """Open a TCP socket bound to ``endpoint`` and listening with ``backlog``."""
    sock = socket.socket(endpoint.family(), socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        bind_socket(sock, endpoint)
        sock.listen(backlog)
    except BaseException:
        sock.close()
        raise
    return sock


def accept_one(
    port: int = DEFAULT_PORT, backlog: int = BACKLOG_SIZE
) -> tuple[socket.socket, Endpoint]:
    """Listen on every IPv4 interface, accept one connection and return it with its peer."""
    with open_acceptor(Endpoint(any_address(4), port), backlog) as acceptor:
        conn, peer = acceptor.accept()
    return conn, Endpoint._from_sockaddr(peer)


def connect(endpoint: Endpoint, timeout: float | None = None) -> socket.socket:
    """Open a TCP socket and connect it to ``endpoint``."""
    sock = socket.socket(endpoint.family(), socket.SOCK_STREAM)
    try:
        sock.settimeout(timeout)
        sock.connect(endpoint.as_tuple())
    except BaseException:
        sock.close()
        raise
    return sock


def resolve(
    host: str, port: int | str, transport: Transport = Transport.TCP
) -> list[Endpoint]:
    """Resolve a host name and numeric service into endpoints, in resolver order.

    Raises socket.gaierror when the name cannot be resolved or the port is not numeric.
    """
    infos = socket.getaddrinfo(
        host,
        str(port),
        type=transport.socket_type,
        flags=socket.AI_NUMERICSERV,
    )
    return [
        Endpoint._from_sockaddr(sockaddr)
        for family, _type, _proto, _canon, sockaddr in infos
        if family in (socket.AF_INET, socket.AF_INET6)
    ]


def connect_by_name(
    host: str, port: int | str, timeout: float | None = None
) -> socket.socket:
    """Resolve ``host`` and connect to the first endpoint that accepts."""
    endpoints = resolve(host, port, Transport.TCP)
    if not endpoints:
        raise OSError(f"no endpoints found for {host}:{port}")
    last_error: OSError | None = None
    for endpoint in endpoints:
        try:
            return connect(endpoint, timeout)
        except OSError as exc:
            last_error = exc
    assert last_error is not None
    raise last_error