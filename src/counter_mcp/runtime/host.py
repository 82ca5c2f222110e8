from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from counter_mcp.cli.formatter import OutputFormatter
from counter_mcp.core.errors import AttachmentError, CounterHostError, SessionError
from counter_mcp.core.models import (
    BindAddress,
    HostPhase,
    LifecycleEvent,
    ServerSettings,
    TransportMode,
)
from counter_mcp.runtime.signals import InterruptWatcher
from counter_mcp.service.base import ServiceFactory
from counter_mcp.service.counter import Counter
from counter_mcp.transport.sse import SseServer
from counter_mcp.transport.stdio import StdioTransport, serve_stdio


_STDIO_TRANSITIONS: Dict[HostPhase, FrozenSet[HostPhase]] = {
    HostPhase.IDLE: frozenset({HostPhase.ATTACHING}),
    HostPhase.ATTACHING: frozenset({HostPhase.RUNNING, HostPhase.TERMINATED}),
    HostPhase.RUNNING: frozenset({HostPhase.TERMINATED}),
    HostPhase.TERMINATED: frozenset(),
}

_SSE_TRANSITIONS: Dict[HostPhase, FrozenSet[HostPhase]] = {
    HostPhase.IDLE: frozenset({HostPhase.PARSING}),
    HostPhase.PARSING: frozenset({HostPhase.LISTENING, HostPhase.TERMINATED}),
    HostPhase.LISTENING: frozenset({HostPhase.RUNNING, HostPhase.TERMINATED}),
    HostPhase.RUNNING: frozenset({HostPhase.SHUTTING_DOWN, HostPhase.TERMINATED}),
    HostPhase.SHUTTING_DOWN: frozenset({HostPhase.TERMINATED}),
    HostPhase.TERMINATED: frozenset(),
}

_TRANSITIONS = {
    TransportMode.STDIO: _STDIO_TRANSITIONS,
    TransportMode.SSE: _SSE_TRANSITIONS,
}


class ProcessHost:
    """
    Runs one service over the configured transport until it finishes or is interrupted.

    stdio runs until the peer closes the stream. sse listens until the first interrupt,
    then cancels the listener once and waits for it to stop. Every failure is logged
    with its phase and re-raised; nothing is retried.
    """

    def __init__(
        self,
        settings: ServerSettings,
        service_factory: ServiceFactory = Counter,
        stdio_transport: Optional[StdioTransport] = None,
        interrupt: Optional[InterruptWatcher] = None,
        on_event: Optional[Callable[[LifecycleEvent], None]] = None,
    ) -> None:
        self.settings = settings
        self.service_factory = service_factory
        self.stdio_transport = stdio_transport
        self.interrupt = interrupt or InterruptWatcher()
        self.on_event = on_event

        self.phase = HostPhase.IDLE
        self.phase_history: List[HostPhase] = [HostPhase.IDLE]
        self.events: List[LifecycleEvent] = []
        self.listener: Optional[SseServer] = None
        self._started = False

    async def run(self) -> None:
        if self._started:
            raise RuntimeError("ProcessHost.run() may only be called once.")
        self._started = True

        mode = self.settings.transport
        runners: Dict[TransportMode, Callable[[], Awaitable[None]]] = {
            TransportMode.STDIO: self._run_stdio,
            TransportMode.SSE: self._run_sse,
        }

        self._emit("startup", "Starting counter MCP server", transport=mode, bind_address=self.settings.bind_address)
        self._emit("transport_selected", f"Using {mode.value} transport", transport=mode)
        try:
            await runners[mode]()
        except CounterHostError as exc:
            self._fail(exc)
            raise

    async def _run_stdio(self) -> None:
        self._advance(HostPhase.ATTACHING)
        self._emit("attaching", "Initializing service with stdio transport")
        try:
            service = self.service_factory()
        except Exception as exc:
            raise AttachmentError(f"Unable to create service for stdio: {exc}") from exc
        session = await serve_stdio(service, self.stdio_transport)

        self._advance(HostPhase.RUNNING)
        self._emit("running", "Service initialized, waiting for completion", service=service.name)
        await session.wait()

        self._advance(HostPhase.TERMINATED)
        self._emit("session_complete", "Service completed")

    async def _run_sse(self) -> None:
        self._advance(HostPhase.PARSING)
        self._emit("parsing", "Parsing bind address", bind_address=self.settings.bind_address, severity="debug")
        endpoint = BindAddress.parse(self.settings.bind_address)

        self._emit("binding", f"Starting SSE server on {endpoint}")
        self.listener = await SseServer.serve(
            endpoint,
            sse_path=self.settings.sse_path,
            post_path=self.settings.post_path,
            log_level=self.settings.log_level,
        )
        self._advance(HostPhase.LISTENING)
        self._emit("bound", "SSE server started successfully", address=self.listener.bound_address, severity="debug")
        handle = self.listener.with_service(self.service_factory)
        self._emit("listening", f"Listening on {handle.url}", address=handle.bound_address)

        self.interrupt.install()
        try:
            self._advance(HostPhase.RUNNING)
            self._emit("running", "Server running, press Ctrl+C to stop")
            await self._wait_for_interrupt_or_exit(handle)

            self._advance(HostPhase.SHUTTING_DOWN)
            handle.cancel()
            self._emit("shutdown_requested", "Shutting down SSE server", signals=self.interrupt.received)
            await self._wait_for_listener(handle)
        finally:
            handle.cancel()
            self.interrupt.uninstall()

        self._advance(HostPhase.TERMINATED)
        self._emit("shutdown_complete", "Server shutdown complete")

    async def _wait_for_interrupt_or_exit(self, handle: SseServer) -> None:
        interrupted = asyncio.create_task(self.interrupt.wait())
        stopped = asyncio.create_task(handle.wait())
        try:
            await asyncio.wait({interrupted, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            interrupted.cancel()
            stopped.cancel()

        if stopped.done() and not stopped.cancelled():
            error = stopped.exception()
            handle.cancel()
            raise SessionError(f"SSE listener stopped unexpectedly: {error}") from error

    async def _wait_for_listener(self, handle: SseServer) -> None:
        timeout = self.settings.shutdown_timeout
        try:
            if timeout is None:
                await handle.wait()
            else:
                await asyncio.wait_for(handle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            OutputFormatter.log(f"Graceful shutdown exceeded {timeout}s; forcing listener exit.", severity="warning")
            handle.force_exit()
            await handle.wait()
        except Exception as exc:
            raise SessionError(f"SSE listener failed during shutdown: {exc}") from exc

    def _advance(self, phase: HostPhase) -> None:
        allowed = _TRANSITIONS[self.settings.transport].get(self.phase, frozenset())
        if phase not in allowed:
            raise RuntimeError(f"Invalid host transition {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.phase_history.append(phase)

    def _emit(self, name: str, message: str, severity: str = "info", **fields) -> None:
        event = LifecycleEvent(name=name, phase=self.phase, message=message, fields=fields)
        self.events.append(event)
        OutputFormatter.event(event, severity=severity)
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as exc:
            OutputFormatter.log(f"Lifecycle observer failed on {name}: {exc!r}", severity="warning")

    def _fail(self, exc: CounterHostError) -> None:
        if self.listener is not None:
            self.listener.cancel()
        if self.phase != HostPhase.TERMINATED:
            self._advance(HostPhase.TERMINATED)
        self._emit("failed", f"Failed while {exc.phase}: {exc.message}", severity="error", error=type(exc).__name__)
