import socket
import threading

import pytest

from netdrills.clients import SyncTCPClient, SyncUDPClient, main, make_request
from netdrills.endpoints import Endpoint, open_acceptor, parse_address
from netdrills.streamio import read_line, write_all


@pytest.fixture
def tcp_server():
    acceptor = open_acceptor(Endpoint(parse_address("127.0.0.1"), 0), 5)
    acceptor.settimeout(5)
    port = acceptor.getsockname()[1]
    received = []

    def serve():
        try:
            conn, _ = acceptor.accept()
        except OSError:
            return
        with conn:
            conn.settimeout(5)
            received.append(read_line(conn))
            write_all(conn, b"Response\n")

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    yield port, received
    t.join(5)
    acceptor.close()


def _udp_server(reply):
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    received = []

    def serve():
        data, peer = sock.recvfrom(1024)
        received.append(data)
        sock.sendto(reply, peer)

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    return sock, t, received


def test_make_request_format():
    assert make_request(10) == "EMULATE_LONG_COMP_OP 10\n"


def test_make_request_rejects_negative():
    with pytest.raises(ValueError):
        make_request(-1)


def test_make_request_rejects_non_integer():
    with pytest.raises(TypeError):
        make_request("10")


def test_tcp_client_rejects_bad_address():
    with pytest.raises(ValueError):
        SyncTCPClient("not-an-ip", 3333)


def test_tcp_client_round_trip(tcp_server):
    port, received = tcp_server
    client = SyncTCPClient("127.0.0.1", port)
    client.connect()
    response = client.emulate_long_computation_op(10)
    client.close()
    assert response == "Response"
    assert received == [make_request(10)[:-1]]


def test_tcp_client_context_manager(tcp_server):
    port, received = tcp_server
    with SyncTCPClient("127.0.0.1", port) as client:
        assert client.emulate_long_computation_op(3) == "Response"
    assert received == ["EMULATE_LONG_COMP_OP 3"]


def test_tcp_client_connect_refused():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    client = SyncTCPClient("127.0.0.1", port)
    with pytest.raises(ConnectionRefusedError):
        client.connect()
    client._sock.close()


def test_udp_client_round_trip():
    server, t, received = _udp_server(b"Hi!")
    client = SyncUDPClient()
    try:
        response = client.emulate_long_computation_op(10, "127.0.0.1", server.getsockname()[1])
    finally:
        client.close()
        t.join(5)
        server.close()
    assert response == "Hi!"
    assert received == [make_request(10).encode("ascii")]


def test_udp_client_truncates_reply_to_six_bytes():
    reply = b"Response\n"
    server, t, _ = _udp_server(reply)
    client = SyncUDPClient()
    try:
        response = client.emulate_long_computation_op(1, "127.0.0.1", server.getsockname()[1])
    finally:
        client.close()
        t.join(5)
        server.close()
    assert len(response) == 6
    assert reply.decode().startswith(response)


def test_main_tcp_success(tcp_server, capsys):
    port, received = tcp_server
    code = main(["--port", str(port), "--duration", "10"])
    out = capsys.readouterr().out
    assert code == 0
    assert "Sending request to the server..." in out
    assert "Response received: Response" in out
    assert received == ["EMULATE_LONG_COMP_OP 10"]


def test_main_reports_connection_error(capsys):
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    code = main(["--port", str(port)])
    out = capsys.readouterr().out
    assert code != 0
    assert "Error occured!" in out


def test_main_udp_success(capsys):
    server, t, received = _udp_server(b"Hi!")
    try:
        code = main(["--udp", "--port", str(server.getsockname()[1]), "--duration", "5"])
    finally:
        t.join(5)
        server.close()
    out = capsys.readouterr().out
    assert code == 0
    assert "Response from the server received: Hi!" in out
    assert received == [b"EMULATE_LONG_COMP_OP 5\n"]