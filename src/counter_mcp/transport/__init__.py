from counter_mcp.transport.sse import SseServer, bind_socket
from counter_mcp.transport.stdio import ServiceSession, StdioTransport, serve_stdio

__all__ = [
	"ServiceSession",
	"SseServer",
	"StdioTransport",
	"bind_socket",
	"serve_stdio",
]
