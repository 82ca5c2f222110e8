import logging
from typing import Any, Dict

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from counter_mcp.core.models import LifecycleEvent, normalize_log_level

# Create a stderr console for logging; stdout belongs to the stdio transport
error_console = Console(stderr=True)

# Numeric thresholds; 'trace' sits below stdlib DEBUG like uvicorn's TRACE level
SEVERITY_LEVELS: Dict[str, int] = {
    "trace": 5,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_LOG_LEVEL_TO_SEVERITY = {
    "trace": "trace",
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "error": "error",
}


class OutputFormatter:
    """
    System log channel for the host.
    Everything goes to stderr so the stdio transport keeps stdout to itself.
    """

    threshold: int = logging.INFO

    @classmethod
    def configure(cls, log_level: str) -> str:
        """
        Set the process-wide threshold once at startup and route library logging
        (mcp, uvicorn) through the same console. Returns the effective level name.
        """
        level_name = normalize_log_level(log_level)
        cls.threshold = SEVERITY_LEVELS[_LOG_LEVEL_TO_SEVERITY[level_name]]

        logging.basicConfig(
            level=max(cls.threshold, logging.DEBUG),
            format="%(message)s",
            handlers=[RichHandler(console=error_console, show_path=False, rich_tracebacks=False)],
            force=True,
        )
        return level_name

    @classmethod
    def enabled(cls, severity: str) -> bool:
        return SEVERITY_LEVELS.get(severity, logging.INFO) >= cls.threshold

    @classmethod
    def log(cls, message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        if not cls.enabled(severity):
            return

        style = "white"
        prefix = "[SYSTEM]"

        if severity in ("trace", "debug"):
            style = "dim"
        elif severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{escape(prefix)} {escape(message)}[/{style}]")

    @classmethod
    def event(cls, event: LifecycleEvent, severity: str = "info") -> None:
        """
        Render a lifecycle event as 'message key=value ...'.
        """
        details = " ".join(f"{key}={_format_value(value)}" for key, value in event.fields.items())
        message = f"{event.message} {details}" if details else event.message
        cls.log(f"({event.name}) {message}", severity=severity)


def _format_value(value: Any) -> str:
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return str(value)
