# netdrills

TCP and UDP building blocks for Python: parsing addresses into endpoints,
opening, binding and connecting sockets, blocking and asyncio stream I/O,
synchronous and background request clients, a few small servers that show
different concurrency models, and a line-based message service. Only the
standard library is used.

## Installation

```
pip install netdrills
```

For the test suite:

```
pip install "netdrills[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `netdrills.endpoints` | `Transport`, `Endpoint`, `parse_address`, `any_address`, `open_socket`, `bind_socket`, `open_acceptor`, `accept_one`, `connect`, `resolve`, `connect_by_name` |
| `netdrills.streamio` | `StreamBuffer`, `ConnectionClosedError`, `make_input_buffer`, `make_output_buffer`, `write_all`, `read_exact`, `read_until`, `read_line`, `read_to_eof`, `communicate`, `process_request` |
| `netdrills.clients` | `SyncTCPClient`, `SyncUDPClient`, `make_request`, `main` |
| `netdrills.async_ops` | `read_message`, `write_message`, `connect_with_cancel`, `stream_chunks`, `http_get` |
| `netdrills.async_client` | `AsyncTCPClient`, `describe_result`, `main` |
| `netdrills.servers` | `make_daytime_string`, `DaytimeServer`, `IterativeServer`, `ParallelServer`, `AsyncServer`, `main` |
| `netdrills.tmsg` | `parse_request`, `process_request`, `MessageServer`, `MessageClient`, `describe_response`, `main` |

Errors are raised, not returned: an invalid address passed to
`parse_address` raises `ValueError`, a failed name lookup in `resolve`
raises `socket.gaierror`, and a peer that closes too early makes the
stream readers raise `ConnectionClosedError`.

## Endpoints and sockets

```python
from netdrills.endpoints import Endpoint, Transport, any_address, open_socket, parse_address

endpoint = Endpoint(parse_address("127.0.0.1"), 3333)
endpoint.as_tuple()                # ("127.0.0.1", 3333)
wildcard = any_address(6)          # IPv6Address("::")
sock = open_socket(Transport.UDP, 4)
sock.close()
```

`resolve(host, port, transport)` returns the endpoints for a host name and a
numeric port; `connect_by_name` tries them in order until one accepts.

## Stream I/O

```python
from netdrills.streamio import StreamBuffer

buf = StreamBuffer()
buf.write("Message1\nMessage2")
buf.read_line()   # b"Message1"
len(buf)          # 8 bytes still held
```

`write_all`, `read_exact`, `read_until`, `read_line` and `read_to_eof` work on
connected sockets. `communicate` sends a request, shuts down its sending side
and returns everything the peer replies; `process_request` is the matching
server side. `netdrills.async_ops` offers the same kind of helpers for
`asyncio` streams, a connect that can be abandoned after a delay
(`connect_with_cancel` returns `None` when it was cancelled), and a minimal
`http_get`.

## Request clients

The request protocol is one line out and one line back.
`make_request(duration_sec)` builds `EMULATE_LONG_COMP_OP <n>\n`.

```python
from netdrills.clients import SyncTCPClient

with SyncTCPClient("127.0.0.1", 3333) as client:   # connects on entry
    response = client.emulate_long_computation_op(10)
```

`SyncUDPClient` sends the same request as a datagram and returns at most six
bytes of the reply.

`AsyncTCPClient` runs requests on a background event-loop thread and reports
each one through a callback `(request_id, response, error)`; a cancelled
request reports an `asyncio.CancelledError`:

```python
from netdrills.async_client import AsyncTCPClient, describe_result

def on_done(request_id, response, error):
    print(describe_result(request_id, response, error))

with AsyncTCPClient() as client:
    client.emulate_long_computation_op(10, "127.0.0.1", 3333, on_done, 1)
    client.cancel_request(1)
```

Leaving the `with` block waits for outstanding requests to finish.

## Servers

Every server has `start()` and `stop()` and, once started, a `port` property
with the port actually bound (pass port `0` to let the system choose).

- `DaytimeServer` sends the current `time.ctime()` line and closes.
- `IterativeServer` serves one client at a time; `ParallelServer` gives each
  client a thread; `AsyncServer` uses an event loop with a worker pool. All
  three read one request line, wait through their configured work delay, and
  reply `Response\n` whatever the request said.
- `netdrills.tmsg.MessageServer` answers `T_MSG_NOW_<name>s` with
  `Your message is :<name>s` and anything else with `Unknown request`;
  `MessageClient` sends lines to it on worker threads, and a cancelled request
  reports a `ConnectionAbortedError`.

## Commands

```
netdrills-server --kind async|daytime|iterative|parallel [--port 3333] [--duration 60]
netdrills-client [--host 127.0.0.1] [--port 3333] [--duration 10] [--udp]
netdrills-async-client [--host 127.0.0.1] [--port 3333]
netdrills-tmsg --serve [--port 3333] [--duration SECONDS]
netdrills-tmsg [--host 127.0.0.1] [--port 3333] [--interval 2]
```

`netdrills-server` runs the chosen server for `--duration` seconds and stops.
`netdrills-client` sends one request over TCP, or over UDP with `--udp`.
`netdrills-async-client` sends three overlapping requests, cancels the first
and prints each outcome. `netdrills-tmsg --serve` runs the message server;
without `--serve` it prompts on standard input and sends every word typed as
a message.

## Limits

There is no UDP server: `SyncUDPClient` and `netdrills-client --udp` need a
datagram service running elsewhere. The demo servers do not interpret the
request line, so the duration in a request does not change how long they work.