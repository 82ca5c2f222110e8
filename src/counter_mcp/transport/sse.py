from __future__ import annotations

import asyncio
import contextlib
import itertools
import socket
from typing import Any, Awaitable, Callable, Dict, Optional

import anyio
import uvicorn
from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from counter_mcp.cli.formatter import OutputFormatter
from counter_mcp.core.errors import BindError
from counter_mcp.core.models import BindAddress
from counter_mcp.service.base import ServiceFactory

AsgiHandler = Callable[[Any, Any, Any], Awaitable[None]]

_UVICORN_LOG_LEVELS = {
    "trace": "trace",
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "error": "error",
}


class _AsgiEndpoint:
    """Expose an ASGI coroutine as a starlette route endpoint without request wrapping."""

    def __init__(self, handler: AsgiHandler) -> None:
        self.handler = handler

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        await self.handler(scope, receive, send)


class _ListenerServer(uvicorn.Server):
    """uvicorn server whose shutdown is driven by the host instead of process signals."""

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.ready = asyncio.Event()

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if not self.should_exit:
            self.ready.set()

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        return None


def bind_socket(endpoint: BindAddress) -> socket.socket:
    """Bind a listening TCP socket for ``endpoint``; raises BindError on failure."""
    family = socket.AF_INET6 if endpoint.is_ipv6 else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((endpoint.host, endpoint.port))
        sock.listen()
    except OSError as exc:
        sock.close()
        raise BindError(f"Unable to bind {endpoint}: {exc}") from exc
    sock.set_inheritable(True)
    return sock


class SseServer:
    """
    HTTP listener that upgrades ``GET <sse_path>`` into an MCP session over SSE.

    Each connection gets a fresh service from the registered factory. The server object
    is the top-level handle: ``cancel()`` stops accepting connections, closes active
    sessions and stops the listener; ``wait()`` returns once it has stopped.
    """

    def __init__(
        self,
        endpoint: BindAddress,
        sock: socket.socket,
        sse_path: str = "/sse",
        post_path: str = "/message",
        log_level: str = "info",
    ) -> None:
        self.endpoint = endpoint
        self.sse_path = sse_path
        self.post_path = post_path
        self._socket = sock
        host, port = sock.getsockname()[:2]
        self.bound_address = BindAddress(host=host, port=port)

        self._factory: Optional[ServiceFactory] = None
        self._cancelled = False
        self._sessions: Dict[int, anyio.CancelScope] = {}
        self._connection_ids = itertools.count(1)
        self._task: Optional[asyncio.Task] = None

        self.transport = SseServerTransport(post_path)
        self.app = Starlette(
            routes=[
                Route(sse_path, endpoint=_AsgiEndpoint(self._handle_sse), methods=["GET"]),
                Route(post_path, endpoint=_AsgiEndpoint(self.transport.handle_post_message), methods=["POST"]),
            ]
        )
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level=_UVICORN_LOG_LEVELS.get(log_level, "info"),
            access_log=log_level in ("trace", "debug"),
            lifespan="off",
        )
        self._server = _ListenerServer(config)

    @classmethod
    async def serve(
        cls,
        endpoint: BindAddress,
        *,
        sse_path: str = "/sse",
        post_path: str = "/message",
        log_level: str = "info",
    ) -> "SseServer":
        """
        Bind ``endpoint`` and start listening. Raises BindError if the listener cannot start.
        """
        sock = bind_socket(endpoint)
        server = cls(endpoint, sock, sse_path=sse_path, post_path=post_path, log_level=log_level)
        await server._start()
        return server

    async def _start(self) -> None:
        self._task = asyncio.create_task(self._server.serve(sockets=[self._socket]), name="sse-listener")
        ready = asyncio.create_task(self._server.ready.wait())
        try:
            await asyncio.wait({ready, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()

        if not self._server.ready.is_set():
            error = None
            if self._task.done() and not self._task.cancelled():
                error = self._task.exception()
            self._socket.close()
            raise BindError(f"Listener on {self.bound_address} failed to start: {error}") from error

    @property
    def url(self) -> str:
        return f"http://{self.bound_address}{self.sse_path}"

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def with_service(self, factory: ServiceFactory) -> "SseServer":
        """Register the per-connection service factory; returns this handle."""
        self._factory = factory
        return self

    def cancel(self) -> None:
        """Stop accepting connections, close active sessions and stop the listener. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True

        for connection_id, scope in list(self._sessions.items()):
            OutputFormatter.log(f"Closing SSE connection {connection_id}", severity="debug")
            scope.cancel()
        self._server.should_exit = True

    def force_exit(self) -> None:
        """Abandon graceful shutdown of the listener."""
        self.cancel()
        self._server.force_exit = True

    async def wait(self) -> None:
        """Block until the listener has stopped."""
        if self._task is None:
            return
        await asyncio.shield(self._task)

    async def _handle_sse(self, scope: Any, receive: Any, send: Any) -> None:
        if self._cancelled or self._factory is None:
            response = PlainTextResponse("Service unavailable", status_code=503)
            await response(scope, receive, send)
            return

        connection_id = next(self._connection_ids)
        try:
            service = self._factory()
        except Exception as exc:
            OutputFormatter.log(f"Unable to create service for SSE connection {connection_id}: {exc}", severity="error")
            response = PlainTextResponse("Unable to create service", status_code=500)
            await response(scope, receive, send)
            return

        client = scope.get("client")
        OutputFormatter.log(f"SSE connection {connection_id} opened from {client}", severity="debug")

        with anyio.CancelScope() as cancel_scope:
            self._sessions[connection_id] = cancel_scope
            if self._cancelled:
                cancel_scope.cancel()
            try:
                async with self.transport.connect_sse(scope, receive, send) as (read_stream, write_stream):
                    await service.run(read_stream, write_stream)
            except Exception as exc:
                OutputFormatter.log(f"SSE connection {connection_id} failed: {exc!r}", severity="error")
            finally:
                self._sessions.pop(connection_id, None)

        OutputFormatter.log(f"SSE connection {connection_id} closed", severity="debug")
