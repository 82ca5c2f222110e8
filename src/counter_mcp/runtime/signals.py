from __future__ import annotations

import asyncio
import signal
from typing import Any, Dict, Iterable, Optional, Tuple

from counter_mcp.cli.formatter import OutputFormatter

DEFAULT_SIGNALS: Tuple[int, ...] = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig is not None
)


class InterruptWatcher:
    """
    Turns the first interrupt signal into a one-shot event.

    Later signals are counted but have no further effect.
    """

    def __init__(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        self.signals = tuple(signals)
        self.received = 0
        self.last_signal: Optional[int] = None
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed_loop_handlers: list[int] = []
        self._previous_handlers: Dict[int, Any] = {}

    @property
    def triggered(self) -> bool:
        return self._event is not None and self._event.is_set()

    def install(self) -> None:
        """Install handlers on the running loop, falling back to signal.signal where unsupported."""
        if self._loop is not None:
            return

        loop = asyncio.get_running_loop()
        self._loop = loop
        if self._event is None:
            self._event = asyncio.Event()

        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                self._installed_loop_handlers.append(sig)
            except (NotImplementedError, RuntimeError):
                # Signals may not be available on some platforms (e.g. Windows).
                self._previous_handlers[sig] = signal.signal(
                    sig, lambda signum, _frame: loop.call_soon_threadsafe(self._on_signal, signum)
                )

    def uninstall(self) -> None:
        """Restore the default signal disposition."""
        if self._loop is None:
            return

        for sig in self._installed_loop_handlers:
            self._loop.remove_signal_handler(sig)
        for sig, previous in self._previous_handlers.items():
            signal.signal(sig, previous)

        self._installed_loop_handlers = []
        self._previous_handlers = {}
        self._loop = None

    def trigger(self, sig: Optional[int] = None) -> None:
        """Deliver an interrupt programmatically."""
        self._on_signal(sig if sig is not None else signal.SIGINT)

    async def wait(self) -> int:
        """Block until the first interrupt arrives; returns the signal number."""
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()
        return self.last_signal if self.last_signal is not None else signal.SIGINT

    def _on_signal(self, sig: int) -> None:
        self.received += 1
        if self._event is None:
            self._event = asyncio.Event()
        if self._event.is_set():
            OutputFormatter.log(f"Ignoring repeated signal {_signal_name(sig)}; shutdown already requested.", severity="debug")
            return

        self.last_signal = sig
        OutputFormatter.log(f"Received {_signal_name(sig)}", severity="debug")
        self._event.set()


def _signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)
