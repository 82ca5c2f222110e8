from __future__ import annotations

import asyncio
import sys
from typing import Any, Optional

from mcp.server.stdio import stdio_server

from counter_mcp.cli.formatter import OutputFormatter
from counter_mcp.core.errors import AttachmentError, SessionError
from counter_mcp.service.base import Service


def _stream_usable(stream: Any) -> bool:
    if stream is None or getattr(stream, "closed", False):
        return False
    return getattr(stream, "buffer", None) is not None


class StdioTransport:
    """
    Duplex channel over the process's standard input and output.

    Explicit ``stdin``/``stdout`` (anyio async text files) replace the process streams,
    which is how tests feed a closed input.
    """

    def __init__(self, stdin: Any = None, stdout: Any = None) -> None:
        self.stdin = stdin
        self.stdout = stdout

    def ensure_available(self) -> None:
        """Raise AttachmentError when the process has no usable stdio descriptors."""
        if self.stdin is None and not _stream_usable(sys.stdin):
            raise AttachmentError("Standard input is not available for the stdio transport.")
        if self.stdout is None and not _stream_usable(sys.stdout):
            raise AttachmentError("Standard output is not available for the stdio transport.")

    def open(self):
        """Async context manager yielding (read_stream, write_stream)."""
        return stdio_server(stdin=self.stdin, stdout=self.stdout)


class ServiceSession:
    """
    A running attachment of one service to the stdio transport.
    """

    def __init__(self, service: Service, transport: StdioTransport) -> None:
        self.service = service
        self.transport = transport
        self.attached = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Session already started.")
        self._task = asyncio.create_task(self._serve(), name=f"{self.service.name}-stdio-session")

    async def _serve(self) -> None:
        async with self.transport.open() as (read_stream, write_stream):
            self.attached.set()
            try:
                await self.service.run(read_stream, write_stream)
            finally:
                # stdio_server only exits once its writer sees the send side closed
                await write_stream.aclose()

    async def wait(self) -> None:
        """
        Block until the peer closes the stream. A cancelled session completes cleanly;
        any other failure is raised as SessionError.
        """
        if self._task is None:
            raise RuntimeError("Session was never started.")

        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._cancel_requested and self._task.cancelled():
                return
            raise
        except Exception as exc:
            OutputFormatter.log(f"stdio session for {self.service.name} ended with {exc!r}", severity="debug")
            raise SessionError(f"Session for '{self.service.name}' failed: {exc}") from exc

    def cancel(self) -> None:
        """Request cooperative shutdown; repeated calls have no further effect."""
        if self._cancel_requested:
            return
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


async def serve_stdio(service: Service, transport: Optional[StdioTransport] = None) -> ServiceSession:
    """
    Attach ``service`` to stdio and return its running session.

    Raises AttachmentError when descriptors are missing, the server cannot be built,
    or the transport fails before the session is attached.
    """
    transport = transport or StdioTransport()
    transport.ensure_available()

    try:
        service.server
    except Exception as exc:
        raise AttachmentError(f"Unable to build server for '{service.name}': {exc}") from exc

    session = ServiceSession(service, transport)
    session.start()

    attached = asyncio.create_task(session.attached.wait())
    try:
        await asyncio.wait({attached, session.task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        attached.cancel()

    if not session.attached.is_set():
        error = session.task.exception() if not session.task.cancelled() else None
        raise AttachmentError(f"Unable to attach '{service.name}' to stdio: {error}") from error

    return session
