from __future__ import annotations

from abc import ABC, abstractmethod
from functools import cached_property
from typing import Any, Callable

from mcp.server.lowlevel import Server


class Service(ABC):
    """
    A capability provider the host can attach to any transport.

    Subclasses must be constructible without arguments so the class itself can act
    as a per-connection factory. The host never inspects instance state.
    """

    name: str = "service"

    @abstractmethod
    def build_server(self) -> Server:
        """Build the MCP server that answers requests for this instance."""

    @cached_property
    def server(self) -> Server:
        return self.build_server()

    async def run(self, read_stream: Any, write_stream: Any) -> None:
        """Serve requests from ``read_stream`` until it closes."""
        server = self.server
        await server.run(read_stream, write_stream, server.create_initialization_options())


ServiceFactory = Callable[[], Service]
