from counter_mcp.service.base import Service, ServiceFactory
from counter_mcp.service.counter import Counter

__all__ = [
	"Counter",
	"Service",
	"ServiceFactory",
]
