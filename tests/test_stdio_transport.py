import asyncio
import io
import json
import sys

import anyio
import pytest
from mcp.server.lowlevel import Server

from counter_mcp.core.errors import AttachmentError, SessionError
from counter_mcp.service.base import Service
from counter_mcp.service.counter import Counter
from counter_mcp.transport.stdio import StdioTransport, serve_stdio


class _RecordingService(Service):
    name = "recording"

    def __init__(self, behaviour: str = "return") -> None:
        self.behaviour = behaviour
        self.runs = 0
        self.cancelled = False

    def build_server(self) -> Server:
        return Server(self.name)

    async def run(self, read_stream, write_stream) -> None:
        self.runs += 1
        if self.behaviour == "block":
            try:
                await anyio.sleep_forever()
            except anyio.get_cancelled_exc_class():
                self.cancelled = True
                raise
        if self.behaviour == "raise":
            raise RuntimeError("boom")


class _BrokenService(Service):
    name = "broken"

    def build_server(self) -> Server:
        raise RuntimeError("cannot build")


def _transport(stdin_text: str = "") -> tuple[StdioTransport, io.StringIO]:
    stdout = io.StringIO()
    transport = StdioTransport(stdin=anyio.wrap_file(io.StringIO(stdin_text)), stdout=anyio.wrap_file(stdout))
    return transport, stdout


def test_wait_returns_when_service_finishes():
    service = _RecordingService()

    async def scenario():
        transport, _ = _transport()
        session = await serve_stdio(service, transport)
        await asyncio.wait_for(session.wait(), timeout=10)
        return session

    session = asyncio.run(scenario())

    assert service.runs == 1
    assert session.done is True
    assert session.cancelled is False


def test_closing_input_completes_counter_session():
    async def scenario():
        transport, _ = _transport("")
        session = await serve_stdio(Counter(), transport)
        await asyncio.wait_for(session.wait(), timeout=10)
        return session

    session = asyncio.run(scenario())

    assert session.done is True


def test_counter_answers_initialize_before_input_closes():
    request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2024-11-05",
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "0.0.1"},
        },
    }

    async def scenario():
        transport, stdout = _transport(json.dumps(request) + "\n")
        session = await serve_stdio(Counter(), transport)
        await asyncio.wait_for(session.wait(), timeout=10)
        return stdout.getvalue()

    output = asyncio.run(scenario())
    response = json.loads(output.strip().splitlines()[0])

    assert response["id"] == 1
    assert response["result"]["serverInfo"]["name"] == "counter"
    assert "counter" in response["result"]["instructions"]


def test_cancel_is_idempotent():
    service = _RecordingService(behaviour="block")

    async def scenario():
        transport, _ = _transport()
        session = await serve_stdio(service, transport)
        await asyncio.sleep(0.05)
        session.cancel()
        session.cancel()
        await asyncio.wait_for(session.wait(), timeout=10)
        session.cancel()
        return session

    session = asyncio.run(scenario())

    assert session.cancelled is True
    assert session.done is True
    assert service.cancelled is True


def test_service_failure_surfaces_as_session_error():
    async def scenario():
        transport, _ = _transport()
        session = await serve_stdio(_RecordingService(behaviour="raise"), transport)
        await session.wait()

    with pytest.raises(SessionError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.phase == "serving"


def test_unbuildable_service_is_an_attachment_error():
    async def scenario():
        transport, _ = _transport()
        await serve_stdio(_BrokenService(), transport)

    with pytest.raises(AttachmentError, match="cannot build"):
        asyncio.run(scenario())


def test_missing_descriptors_are_an_attachment_error(monkeypatch):
    monkeypatch.setattr(sys, "stdin", None)

    with pytest.raises(AttachmentError, match="Standard input"):
        StdioTransport().ensure_available()


def test_explicit_streams_skip_descriptor_check(monkeypatch):
    monkeypatch.setattr(sys, "stdin", None)
    monkeypatch.setattr(sys, "stdout", None)
    transport, _ = _transport()

    transport.ensure_available()
