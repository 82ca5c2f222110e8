from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, List, Type

import anyio
import mcp.types as types
from mcp.server.lowlevel import Server
from pydantic import BaseModel, ConfigDict

from counter_mcp import __version__
from counter_mcp.service.base import Service


COUNTER_INSTRUCTIONS = (
    "This server provides a counter tool that can increment and decrement values. "
    "The counter starts at 0 and can be modified using the 'increment' and 'decrement' tools. "
    "Use 'get_value' to check the current count."
)


class NoArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EchoRequest(BaseModel):
    """Any JSON object."""
    model_config = ConfigDict(extra="allow")


class SumRequest(BaseModel):
    a: int
    b: int


class Counter(Service):
    """
    Counter service; every instance holds its own value.
    """

    name = "counter"

    def __init__(self) -> None:
        self.value = 0
        self._lock = anyio.Lock()
        self._tools: Dict[str, tuple[str, Type[BaseModel], Callable[[BaseModel], Awaitable[Any]]]] = {
            "increment": ("Increment the counter by 1", NoArguments, self._increment_tool),
            "decrement": ("Decrement the counter by 1", NoArguments, self._decrement_tool),
            "get_value": ("Get the current counter value", NoArguments, self._get_value_tool),
            "say_hello": ("Say hello to the client", NoArguments, self._say_hello_tool),
            "echo": ("Repeat what you say", EchoRequest, self._echo_tool),
            "sum": ("Calculate the sum of two numbers", SumRequest, self._sum_tool),
        }

    async def increment(self) -> int:
        async with self._lock:
            self.value += 1
            return self.value

    async def decrement(self) -> int:
        async with self._lock:
            self.value -= 1
            return self.value

    async def get_value(self) -> int:
        async with self._lock:
            return self.value

    def tool_definitions(self) -> List[types.Tool]:
        """Return MCP tool definitions with schemas generated from the request models."""
        return [
            types.Tool(name=name, description=description, inputSchema=model.model_json_schema())
            for name, (description, model, _) in self._tools.items()
        ]

    async def call(self, name: str, arguments: Dict[str, Any] | None) -> str:
        """Validate arguments and run a tool, returning its text result."""
        if name not in self._tools:
            raise ValueError(f"Unknown tool: {name}")

        _, model, handler = self._tools[name]
        request = model.model_validate(arguments or {})
        result = await handler(request)
        return result if isinstance(result, str) else json.dumps(result)

    def build_server(self) -> Server:
        server: Server = Server(self.name, version=__version__, instructions=COUNTER_INSTRUCTIONS)

        @server.list_tools()
        async def list_tools() -> List[types.Tool]:
            return self.tool_definitions()

        @server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
            text = await self.call(name, arguments)
            return [types.TextContent(type="text", text=text)]

        return server

    async def _increment_tool(self, request: NoArguments) -> str:
        return str(await self.increment())

    async def _decrement_tool(self, request: NoArguments) -> str:
        return str(await self.decrement())

    async def _get_value_tool(self, request: NoArguments) -> str:
        return str(await self.get_value())

    async def _say_hello_tool(self, request: NoArguments) -> str:
        return "hello"

    async def _echo_tool(self, request: EchoRequest) -> Dict[str, Any]:
        return request.model_dump()

    async def _sum_tool(self, request: SumRequest) -> str:
        return str(request.a + request.b)
