"""A TCP client that runs its requests on a background event loop and reports through callbacks."""

from __future__ import annotations

import argparse
import asyncio
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from netdrills.endpoints import DEFAULT_PORT, Endpoint, parse_address
from netdrills.streamio import ConnectionClosedError

Callback = Callable[[int, str, Optional[BaseException]], None]


def _make_request(duration_sec: int) -> bytes:
    if isinstance(duration_sec, bool) or not isinstance(duration_sec, int):
        raise TypeError(f"duration must be an integer: {duration_sec!r}")
    if duration_sec < 0:
        raise ValueError(f"duration must not be negative: {duration_sec}")
    return f"EMULATE_LONG_CALC_OP {duration_sec}\n".encode("ascii")


@dataclass
class _Session:
    request_id: int
    request: bytes
    endpoint: Endpoint
    callback: Callback
    task: Optional[asyncio.Task] = None
    cancelled: bool = False


class AsyncTCPClient:
    """Runs request/response exchanges concurrently on a private event-loop thread.

    Each request's callback is called once, from the loop thread, with the
    request id, the reply line without its newline, and None or the error.
    A cancelled request reports an ``asyncio.CancelledError``.
    """

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()
        self._active: dict[int, _Session] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self._thread = threading.Thread(
            target=self._run_loop, name="async-tcp-client", daemon=True
        )
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def emulate_long_computation_op(
        self,
        duration_sec: int,
        address: str,
        port: int,
        callback: Callback,
        request_id: int,
    ) -> None:
        """Start a request asking the server to emulate a ``duration_sec`` computation."""
        session = _Session(
            request_id,
            _make_request(duration_sec),
            Endpoint(parse_address(address), port),
            callback,
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("client is closed")
            if request_id in self._active:
                raise ValueError(f"request #{request_id} is already active")
            self._active[request_id] = session
            self._loop.call_soon_threadsafe(self._start, session)

    def cancel_request(self, request_id: int) -> None:
        """Cancel an active request; unknown or finished ids are ignored."""
        with self._lock:
            session = self._active.get(request_id)
            if session is None:
                return
            session.cancelled = True
            self._loop.call_soon_threadsafe(self._cancel_task, session)

    def close(self) -> None:
        """Wait for every outstanding request to finish, then stop the loop thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        asyncio.run_coroutine_threadsafe(self._drain(), self._loop).result()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def __enter__(self) -> AsyncTCPClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _start(self, session: _Session) -> None:
        if session.cancelled:
            self._complete(session, "", None)
            return
        task = self._loop.create_task(self._exchange(session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        session.task = task

    @staticmethod
    def _cancel_task(session: _Session) -> None:
        if session.task is not None and not session.task.done():
            session.task.cancel()

    async def _drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _exchange(self, session: _Session) -> None:
        response = ""
        error: BaseException | None = None
        writer: asyncio.StreamWriter | None = None
        try:
            reader, writer = await asyncio.open_connection(*session.endpoint.as_tuple())
            if not session.cancelled:
                writer.write(session.request)
                await writer.drain()
                if not session.cancelled:
                    line = await reader.readuntil(b"\n")
                    response = line[:-1].decode("utf-8", errors="replace")
        except asyncio.CancelledError:
            pass
        except asyncio.IncompleteReadError:
            error = ConnectionClosedError(
                "connection closed before a full response line was received"
            )
        except (OSError, asyncio.LimitOverrunError) as exc:
            error = exc
        finally:
            if writer is not None:
                writer.close()
            self._complete(session, response, error)

    def _complete(
        self, session: _Session, response: str, error: BaseException | None
    ) -> None:
        with self._lock:
            if self._active.get(session.request_id) is session:
                del self._active[session.request_id]
        if error is None and session.cancelled:
            error = asyncio.CancelledError()
        session.callback(session.request_id, response, error)


def describe_result(request_id: int, response: str, error: BaseException | None) -> str:
    """Render the outcome of a request as a one-line report."""
    if error is None:
        return f"Request #{request_id} has completed. Response: {response}"
    if isinstance(error, asyncio.CancelledError):
        return f"Request #{request_id} has been cancelled by the user."
    code = getattr(error, "errno", None)
    message = getattr(error, "strerror", None) or str(error)
    return (
        f"Request #{request_id} failed! Error code = {code}. "
        f"Error Message = {message}"
    )


def main(argv: list[str] | None = None) -> int:
    """Issue three overlapping requests, cancelling the first, and print their outcomes."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)

    def handler(request_id: int, response: str, error: BaseException | None) -> None:
        print(describe_result(request_id, response, error), flush=True)

    try:
        with AsyncTCPClient() as client:
            client.emulate_long_computation_op(10, args.host, args.port, handler, 1)
            time.sleep(5)
            client.emulate_long_computation_op(11, args.host, args.port, handler, 2)
            client.cancel_request(1)
            time.sleep(6)
            client.emulate_long_computation_op(12, args.host, args.port, handler, 3)
            time.sleep(15)
    except (OSError, ValueError) as exc:
        print(f"Error occured! Message: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())