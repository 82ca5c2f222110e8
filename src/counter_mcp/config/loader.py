import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from counter_mcp.core.errors import ConfigurationError
from counter_mcp.core.models import ServerSettings

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

ALLOWED_SECTIONS = {"server"}


def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)


def load_config(path: Path) -> Dict[str, Any]:
    """
    Load counter_mcp.yaml with environment variable interpolation.

    A missing file yields an empty config. Unknown top-level sections are dropped.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text(encoding="utf-8")
        full_config = yaml.safe_load(interpolate_env_vars(content)) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to read config file '{path}': {exc}") from exc

    if not isinstance(full_config, dict):
        raise ConfigurationError(f"Config file '{path}' must contain a mapping at the top level.")

    return {k: v for k, v in full_config.items() if k in ALLOWED_SECTIONS}


def build_settings(config: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> ServerSettings:
    """
    Build ServerSettings from the 'server' section, applying non-None overrides on top.

    Environment variables (COUNTER_MCP_*) fill anything neither source provides.
    """
    section = config.get("server") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("Config section 'server' must be a mapping.")

    data = dict(section)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return ServerSettings(**data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid server settings: {exc}") from exc
