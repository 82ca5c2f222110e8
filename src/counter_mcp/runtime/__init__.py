"""Host lifecycle: transport selection, signal handling and shutdown."""

from counter_mcp.runtime.host import ProcessHost
from counter_mcp.runtime.signals import InterruptWatcher

__all__ = [
	"InterruptWatcher",
	"ProcessHost",
]
