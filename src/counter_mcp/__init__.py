"""Counter MCP server hosted over stdio or SSE."""

__version__ = "0.1.0"

__all__ = ["__version__"]
