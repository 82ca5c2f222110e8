from typing import Optional


class CounterHostError(Exception):
    """
    Fatal host failure, tagged with the lifecycle phase that detected it.
    """
    phase = "host"

    def __init__(self, message: str, phase: Optional[str] = None):
        self.message = message
        if phase is not None:
            self.phase = phase
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.phase}] {self.message}"


class ConfigurationError(CounterHostError):
    """Malformed startup configuration, such as an unparseable bind address."""
    phase = "parsing"


class BindError(CounterHostError):
    """The SSE listener could not be started."""
    phase = "binding"


class AttachmentError(CounterHostError):
    """The service could not be attached to the stdio transport."""
    phase = "attaching"


class SessionError(CounterHostError):
    """A running session failed while serving."""
    phase = "serving"
