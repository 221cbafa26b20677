"""Daytime, iterative, parallel and asynchronous TCP servers for the request/response protocol."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import socket
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from netdrills.endpoints import DEFAULT_PORT, Endpoint, open_acceptor, parse_address
from netdrills.streamio import read_line, write_all

log = logging.getLogger(__name__)

RESPONSE = b"Response\n"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_THREAD_POOL_SIZE = 2
_POLL_INTERVAL = 0.1


def make_daytime_string(now: float | None = None) -> str:
    """Format ``now`` (default: the current time) as local ctime text ending in a newline."""
    return time.ctime(now) + "\n"


def _endpoint_from_sockname(sockname: tuple) -> Endpoint:
    return Endpoint(parse_address(sockname[0]), sockname[1])


def _check_work(work_steps: int, step_delay: float) -> None:
    if work_steps < 0:
        raise ValueError(f"work steps must not be negative: {work_steps}")
    if step_delay < 0:
        raise ValueError(f"step delay must not be negative: {step_delay}")


class _AcceptLoopServer:
    """A listening socket served by one background thread that accepts connections."""

    def __init__(self, port: int, host: str) -> None:
        self._endpoint = Endpoint(parse_address(host), port)
        self._stop_requested = threading.Event()
        self._listener: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._bound: Optional[Endpoint] = None

    @property
    def port(self) -> int:
        """The port actually bound; known once the server has started."""
        if self._bound is None:
            raise RuntimeError("server has not been started")
        return self._bound.port

    def start(self) -> None:
        """Bind, listen and begin accepting connections on a background thread."""
        if self._thread is not None:
            raise RuntimeError("server is already running")
        self._stop_requested.clear()
        listener = open_acceptor(self._endpoint)
        listener.settimeout(_POLL_INTERVAL)
        self._listener = listener
        self._bound = _endpoint_from_sockname(listener.getsockname())
        self._thread = threading.Thread(
            target=self._run, name=type(self).__name__, daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop accepting connections and wait for the accepting thread to finish."""
        if self._thread is None:
            return
        self._stop_requested.set()
        self._thread.join()
        self._thread = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def _run(self) -> None:
        assert self._listener is not None
        while not self._stop_requested.is_set():
            try:
                conn, _peer = self._listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                log.error("Error occured! Error code = %s. Message: %s", exc.errno, exc)
                break
            conn.settimeout(None)
            self._serve(conn)

    def _serve(self, conn: socket.socket) -> None:
        raise NotImplementedError


def _handle_work_request(conn: socket.socket, work_steps: int, step_delay: float) -> None:
    with conn:
        try:
            request = read_line(conn)
            log.info("request: %s", request)
            for step in range(1, work_steps + 1):
                log.debug("Processing i = %d", step)
                time.sleep(step_delay)
            write_all(conn, RESPONSE)
        except (OSError, ValueError) as exc:
            log.warning(
                "Error occured! Error code = %s. Message: %s",
                getattr(exc, "errno", None),
                exc,
            )


class DaytimeServer(_AcceptLoopServer):
    """Sends the current date and time to every client, then ends the connection."""

    def __init__(self, port: int = DEFAULT_PORT, host: str = DEFAULT_HOST) -> None:
        super().__init__(port, host)

    def start(self) -> None:
        """Begin serving the time of day."""
        super().start()

    def stop(self) -> None:
        """Stop serving."""
        super().stop()

    def _serve(self, conn: socket.socket) -> None:
        with conn:
            try:
                write_all(conn, make_daytime_string())
                conn.shutdown(socket.SHUT_WR)
            except OSError as exc:
                log.warning("Error sending daytime: %s", exc)


class IterativeServer(_AcceptLoopServer):
    """Serves one client at a time: reads a line, works, replies ``Response``."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        work_steps: int = 300,
        step_delay: float = 0.1,
        host: str = DEFAULT_HOST,
    ) -> None:
        _check_work(work_steps, step_delay)
        super().__init__(port, host)
        self.work_steps = work_steps
        self.step_delay = step_delay

    def start(self) -> None:
        """Begin accepting clients."""
        super().start()

    def stop(self) -> None:
        """Stop after the client being served, if any, is finished."""
        super().stop()

    def _serve(self, conn: socket.socket) -> None:
        _handle_work_request(conn, self.work_steps, self.step_delay)


class ParallelServer(_AcceptLoopServer):
    """Serves every client on its own thread: reads a line, works, replies ``Response``."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        work_steps: int = 100,
        step_delay: float = 0.5,
        host: str = DEFAULT_HOST,
    ) -> None:
        _check_work(work_steps, step_delay)
        super().__init__(port, host)
        self.work_steps = work_steps
        self.step_delay = step_delay

    def start(self) -> None:
        """Begin accepting clients."""
        super().start()

    def stop(self) -> None:
        """Stop accepting clients; clients already being served are left to finish."""
        super().stop()

    def _serve(self, conn: socket.socket) -> None:
        threading.Thread(
            target=_handle_work_request,
            args=(conn, self.work_steps, self.step_delay),
            name="parallel-client",
            daemon=True,
        ).start()


class AsyncServer:
    """An event-loop server whose request processing runs on a pool of worker threads."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        thread_pool_size: int | None = None,
        processing_delay: float = 100.0,
        host: str = DEFAULT_HOST,
    ) -> None:
        if thread_pool_size is None:
            thread_pool_size = (os.cpu_count() or 0) * 2 or DEFAULT_THREAD_POOL_SIZE
        if thread_pool_size <= 0:
            raise ValueError(f"thread pool size must be positive: {thread_pool_size}")
        if processing_delay < 0:
            raise ValueError(f"processing delay must not be negative: {processing_delay}")
        self._endpoint = Endpoint(parse_address(host), port)
        self.thread_pool_size = thread_pool_size
        self.processing_delay = processing_delay
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._handlers: set[asyncio.Task] = set()
        self._bound: Optional[Endpoint] = None

    @property
    def port(self) -> int:
        """The port actually bound; known once the server has started."""
        if self._bound is None:
            raise RuntimeError("server has not been started")
        return self._bound.port

    def start(self) -> None:
        """Bind, listen and start the event loop and the worker pool."""
        if self._thread is not None:
            raise RuntimeError("server is already running")
        self._loop = asyncio.new_event_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=self.thread_pool_size, thread_name_prefix="async-server-worker"
        )
        self._loop.set_default_executor(self._executor)
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="async-server", daemon=True
        )
        self._thread.start()
        host, port = self._endpoint.as_tuple()
        future = asyncio.run_coroutine_threadsafe(
            asyncio.start_server(self._handle, host, port, reuse_address=True),
            self._loop,
        )
        try:
            self._server = future.result()
        except BaseException:
            self._halt_loop()
            raise
        self._bound = _endpoint_from_sockname(self._server.sockets[0].getsockname())

    def stop(self) -> None:
        """Stop listening, abandon requests in progress and stop the loop."""
        if self._thread is None:
            return
        assert self._loop is not None
        asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop).result()
        self._halt_loop()

    def _halt_loop(self) -> None:
        assert self._loop is not None and self._thread is not None
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._thread = None
        self._loop = None
        self._executor = None
        self._server = None

    async def _shutdown(self) -> None:
        if self._server is not None:
            self._server.close()
        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        await asyncio.gather(*handlers, return_exceptions=True)

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        try:
            try:
                request = await reader.readuntil(b"\n")
            except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, OSError) as exc:
                log.warning("Error occurred! Message: %s", exc)
                return
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(None, self._process_request, request)
            writer.write(response)
            await writer.drain()
        except OSError as exc:
            log.warning(
                "Error occurred! Error code = %s. Message: %s", exc.errno, exc
            )
        finally:
            writer.close()
            if task is not None:
                self._handlers.discard(task)

    def _process_request(self, request: bytes) -> bytes:
        log.info("request: %r", request)
        time.sleep(self.processing_delay)
        return RESPONSE


_KINDS = {
    "daytime": lambda args: DaytimeServer(args.port, args.host),
    "iterative": lambda args: IterativeServer(args.port, host=args.host),
    "parallel": lambda args: ParallelServer(args.port, host=args.host),
    "async": lambda args: AsyncServer(args.port, args.threads, host=args.host),
}


def main(argv: list[str] | None = None) -> int:
    """Run one of the servers for a while, then stop it."""
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--kind", choices=sorted(_KINDS), default="async")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--threads", type=int, default=None)
    parser.add_argument("--duration", type=float, default=60.0)
    args = parser.parse_args(argv)

    try:
        server = _KINDS[args.kind](args)
        server.start()
        try:
            time.sleep(args.duration)
        finally:
            server.stop()
    except OSError as exc:
        print(f"Error occurred! Error code = {exc.errno}. Message: {exc}")
        return exc.errno or 1
    except ValueError as exc:
        print(f"Error occurred! Message: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())