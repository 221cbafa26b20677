import io
import socket
import threading

import pytest

from netdrills.tmsg import (
    MessageClient,
    MessageServer,
    describe_response,
    main,
    parse_request,
    process_request,
)


@pytest.fixture
def server():
    srv = MessageServer(0, "127.0.0.1")
    srv.start()
    yield srv
    srv.stop()


class _Collector:
    def __init__(self):
        self.done = threading.Event()
        self.result = None

    def __call__(self, request_id, response, error):
        self.result = (request_id, response, error)
        self.done.set()

    def wait(self):
        assert self.done.wait(5.0)
        return self.result


@pytest.mark.parametrize(
    "line, identifier",
    [
        ("T_MSG_NOW_hellos\n", "hello"),
        (b"T_MSG_NOW_hellos\n", "hello"),
        ("T_MSG_NOW__x1s\r\n", "_x1"),
        ("T_MSG_NOW_ss\n", "s"),
    ],
)
def test_parse_request_extracts_identifier(line, identifier):
    assert parse_request(line) == identifier


@pytest.mark.parametrize(
    "line",
    [
        "T_MSG_NOW_hellos",
        "T_MSG_NOW_hello\n",
        "T_MSG_NOW_s\n",
        "T_MSG_NOW_1abcs\n",
        "T_MSG_NOW_hellos\nextra",
        "hello\n",
        "",
    ],
)
def test_parse_request_rejects_malformed(line):
    with pytest.raises(ValueError):
        parse_request(line)


def test_process_request_replies():
    assert process_request("T_MSG_NOW_hellos\n") == "Your message is :hellos\n"
    assert process_request("nonsense\n") == "Unknown request\n"


def test_describe_response_success_quotes():
    assert describe_response(1, "abc", None) == 'Request #1 "abc"'
    assert describe_response(2, 'say "hi"', None) == 'Request #2 "say \\"hi\\""'


def test_describe_response_cancelled_and_error():
    assert describe_response(3, "", ConnectionAbortedError()) == "Request #3 Cancelled"
    error = ConnectionRefusedError(111, "Connection refused")
    assert describe_response(4, "", error) == "Request #4 Connection refused"


def test_server_port_before_start():
    with pytest.raises(RuntimeError):
        MessageServer(0, "127.0.0.1").port


def test_server_answers_raw_socket(server):
    with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
        sock.sendall(b"T_MSG_NOW_abcs\n")
        reply = sock.makefile("rb").readline()
    assert reply == b"Your message is :abcs\n"


def test_server_closes_without_reply_when_line_incomplete(server):
    with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
        sock.sendall(b"abc")
        sock.shutdown(socket.SHUT_WR)
        assert sock.recv(100) == b""


def test_client_send_known_and_unknown(server):
    client = MessageClient("127.0.0.1", server.port)
    known, unknown = _Collector(), _Collector()
    first = client.send("T_MSG_NOW_hellos", known)
    second = client.send("hi", unknown)
    assert (first, second) == (1, 2)
    assert known.wait() == (1, "Your message is :hellos", None)
    assert unknown.wait() == (2, "Unknown request", None)


def test_client_send_rejects_multiline(server):
    client = MessageClient("127.0.0.1", server.port)
    with pytest.raises(ValueError):
        client.send("a\nb", _Collector())


def test_client_fetch_reads_greeting():
    with socket.create_server(("127.0.0.1", 0)) as listener:
        port = listener.getsockname()[1]

        def greet():
            conn, _ = listener.accept()
            with conn:
                conn.sendall(b"greeting\n")

        thread = threading.Thread(target=greet)
        thread.start()
        collector = _Collector()
        request_id = MessageClient("127.0.0.1", port).fetch(collector)
        result = collector.wait()
        thread.join()
    assert result == (request_id, "greeting", None)


def test_client_cancel_reports_aborted():
    with socket.create_server(("127.0.0.1", 0)) as listener:
        port = listener.getsockname()[1]
        client = MessageClient("127.0.0.1", port)
        collector = _Collector()
        request_id = client.fetch(collector)
        client.cancel_request(request_id)
        rid, response, error = collector.wait()
    assert rid == request_id
    assert response == ""
    assert isinstance(error, ConnectionAbortedError)


def test_client_cancel_unknown_id_is_ignored(server):
    client = MessageClient("127.0.0.1", server.port)
    client.cancel_request(42)
    collector = _Collector()
    client.send("T_MSG_NOW_oks", collector)
    assert collector.wait()[1] == "Your message is :oks"


def test_client_reports_connection_refused():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    collector = _Collector()
    MessageClient("127.0.0.1", port).send("x", collector)
    _, response, error = collector.wait()
    assert response == ""
    assert isinstance(error, ConnectionRefusedError)


def test_main_sends_words_from_stdin(server, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("T_MSG_NOW_abcs\n"))
    code = main(["--port", str(server.port), "--interval", "0"])
    out = capsys.readouterr().out
    assert code == 0
    assert 'Request #1 "Your message is :abcs"' in out


def test_main_serves_for_duration():
    assert main(["--serve", "--host", "127.0.0.1", "--port", "0", "--duration", "0"]) == 0