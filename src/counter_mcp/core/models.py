import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from counter_mcp.core.errors import ConfigurationError


_BIND_ADDRESS_PATTERN = re.compile(r"^(?:\[(?P<v6>[^\]]+)\]|(?P<v4>[^:\[\]]+)):(?P<port>[0-9]+)$")

LOG_LEVELS = ("trace", "debug", "info", "warn", "error")
DEFAULT_LOG_LEVEL = "info"


def normalize_log_level(value: Optional[str]) -> str:
    """Return a supported log level name; unrecognized values fall back to info."""
    if value is None:
        return DEFAULT_LOG_LEVEL

    lowered = str(value).strip().lower()
    if lowered in LOG_LEVELS:
        return lowered
    return DEFAULT_LOG_LEVEL


class TransportMode(str, Enum):
    """Transport a host binds its service to."""

    STDIO = "stdio"
    SSE = "sse"


class HostPhase(str, Enum):
    """Lifecycle phases of a single host run."""

    IDLE = "idle"
    PARSING = "parsing"
    ATTACHING = "attaching"
    LISTENING = "listening"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class LifecycleEvent:
    """Observational record of a host phase transition."""

    name: str
    phase: HostPhase
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)


class BindAddress(BaseModel):
    """
    A socket address literal (``ip:port`` or ``[ipv6]:port``) for the SSE listener.
    """
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=0, le=65535)

    @classmethod
    def parse(cls, text: str) -> "BindAddress":
        """
        Parse a socket address literal. Hostnames are rejected; only IP literals are accepted.

        Raises ConfigurationError when the value is not a valid address.
        """
        match = _BIND_ADDRESS_PATTERN.fullmatch(text or "")
        if match is None:
            raise ConfigurationError(f"Invalid bind address '{text}': expected 'ip:port' or '[ipv6]:port'.")

        host_text = match.group("v6") if match.group("v6") is not None else match.group("v4")
        try:
            address = ipaddress.ip_address(host_text)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid bind address '{text}': {exc}") from exc

        if match.group("v6") is not None and address.version != 6:
            raise ConfigurationError(f"Invalid bind address '{text}': bracketed host must be IPv6.")
        if match.group("v4") is not None and address.version != 4:
            raise ConfigurationError(f"Invalid bind address '{text}': IPv6 hosts must be bracketed.")

        port = int(match.group("port"))
        if port > 65535:
            raise ConfigurationError(f"Invalid bind address '{text}': port {port} is out of range.")

        return cls(host=str(address), port=port)

    @property
    def is_ipv6(self) -> bool:
        return ":" in self.host

    def __str__(self) -> str:
        if self.is_ipv6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class ServerSettings(BaseSettings):
    """
    Host settings (the 'server' section in counter_mcp.yaml).
    """
    model_config = SettingsConfigDict(env_prefix="COUNTER_MCP_", extra="ignore")

    transport: TransportMode = TransportMode.SSE
    bind_address: str = "127.0.0.1:8000"
    log_level: str = DEFAULT_LOG_LEVEL
    sse_path: str = "/sse"
    post_path: str = "/message"
    shutdown_timeout: Optional[float] = Field(default=None, ge=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        return normalize_log_level(value)

    @field_validator("sse_path", "post_path")
    @classmethod
    def _require_leading_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"Route path '{value}' must start with '/'.")
        return value
