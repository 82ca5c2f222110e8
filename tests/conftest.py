import io
import logging
import pytest
import sys
from pathlib import Path

from rich.console import Console

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from counter_mcp.cli import formatter as formatter_module  # noqa: E402


@pytest.fixture(autouse=True)
def reset_formatter_threshold():
    """
    OutputFormatter keeps a process-wide threshold; restore it between tests.
    """
    previous = formatter_module.OutputFormatter.threshold
    yield
    formatter_module.OutputFormatter.threshold = previous


@pytest.fixture
def log_output(monkeypatch):
    """
    Capture system log lines written by OutputFormatter.
    """
    buffer = io.StringIO()
    console = Console(file=buffer, width=400, force_terminal=False, color_system=None)
    monkeypatch.setattr(formatter_module, "error_console", console)
    formatter_module.OutputFormatter.threshold = logging.DEBUG
    return buffer
