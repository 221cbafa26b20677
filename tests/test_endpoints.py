import ipaddress
import socket
import threading
import time

import pytest

from netdrills.endpoints import (
    Endpoint,
    Transport,
    accept_one,
    any_address,
    bind_socket,
    connect,
    connect_by_name,
    open_acceptor,
    open_socket,
    parse_address,
    resolve,
)

LOOPBACK = "127.0.0.1"


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOOPBACK, 0))
        return s.getsockname()[1]


def test_parse_address_round_trip():
    assert str(parse_address(LOOPBACK)) == LOOPBACK
    assert parse_address(LOOPBACK).version == 4


def test_parse_address_ipv6():
    addr = parse_address("::1")
    assert addr.version == 6
    assert addr.is_loopback


def test_parse_address_invalid():
    with pytest.raises(ValueError):
        parse_address("not-an-address")


def test_any_address_versions():
    v4 = any_address(4)
    v6 = any_address(6)
    assert v4.version == 4 and v4.is_unspecified
    assert v6.version == 6 and v6.is_unspecified


def test_any_address_bad_version():
    with pytest.raises(ValueError):
        any_address(5)


def test_endpoint_family_and_tuple():
    ep = Endpoint(parse_address(LOOPBACK), 3333)
    assert ep.family() == socket.AF_INET
    assert ep.as_tuple() == (LOOPBACK, 3333)
    ep6 = Endpoint(any_address(6), 3333)
    assert ep6.family() == socket.AF_INET6


def test_endpoint_accepts_string_address():
    assert Endpoint(LOOPBACK, 3333) == Endpoint(parse_address(LOOPBACK), 3333)


def test_endpoint_rejects_bad_port():
    with pytest.raises(ValueError):
        Endpoint(parse_address(LOOPBACK), 70000)


def test_open_socket_kinds():
    with open_socket(Transport.TCP, 4) as tcp:
        assert tcp.family == socket.AF_INET
        assert tcp.type == socket.SOCK_STREAM
    with open_socket(Transport.UDP, 4) as udp:
        assert udp.type == socket.SOCK_DGRAM


def test_open_socket_bad_version():
    with pytest.raises(ValueError):
        open_socket(Transport.TCP, 7)


def test_bind_udp_socket():
    with open_socket(Transport.UDP, 4) as sock:
        bound = bind_socket(sock, Endpoint(LOOPBACK, 0))
        assert bound.address == parse_address(LOOPBACK)
        assert bound.port > 0
        assert sock.getsockname() == bound.as_tuple()


def test_acceptor_and_connect_exchange_data():
    with open_acceptor(Endpoint(LOOPBACK, 0), backlog=5) as acceptor:
        port = acceptor.getsockname()[1]
        with connect(Endpoint(LOOPBACK, port), timeout=5) as client:
            conn, _ = acceptor.accept()
            with conn:
                client.sendall(b"ping")
                assert conn.recv(4) == b"ping"


def test_connect_refused():
    port = _free_port()
    with pytest.raises(OSError):
        connect(Endpoint(LOOPBACK, port), timeout=5)


def test_accept_one_returns_peer():
    port = _free_port()
    result = {}

    def serve():
        conn, peer = accept_one(port, 5)
        with conn:
            result["peer"] = peer
            result["data"] = conn.recv(5)

    thread = threading.Thread(target=serve)
    thread.start()
    deadline = time.monotonic() + 5
    client = None
    while client is None:
        try:
            client = connect(Endpoint(LOOPBACK, port), timeout=5)
        except ConnectionRefusedError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.02)
    with client:
        client.sendall(b"hello")
        local = client.getsockname()
        thread.join(5)
    assert result["data"] == b"hello"
    assert result["peer"].as_tuple() == local


def test_resolve_numeric_host():
    endpoints = resolve(LOOPBACK, "3333", Transport.TCP)
    assert endpoints
    assert all(ep.port == 3333 for ep in endpoints)
    assert all(ep.address == ipaddress.ip_address(LOOPBACK) for ep in endpoints)


def test_resolve_udp():
    endpoints = resolve(LOOPBACK, 3333, Transport.UDP)
    assert [ep.as_tuple() for ep in endpoints][0] == (LOOPBACK, 3333)


def test_resolve_requires_numeric_service():
    with pytest.raises(socket.gaierror):
        resolve(LOOPBACK, "http", Transport.TCP)


def test_connect_by_name():
    with open_acceptor(Endpoint(LOOPBACK, 0)) as acceptor:
        port = acceptor.getsockname()[1]
        with connect_by_name(LOOPBACK, str(port), timeout=5) as client:
            conn, _ = acceptor.accept()
            with conn:
                assert client.getpeername() == (LOOPBACK, port)
                conn.sendall(b"ok")
                assert client.recv(2) == b"ok"


def test_connect_by_name_refused():
    port = _free_port()
    with pytest.raises(OSError):
        connect_by_name(LOOPBACK, port, timeout=5)