from typer.testing import CliRunner

from counter_mcp import __version__
from counter_mcp.cli.main import app
from counter_mcp.core.errors import BindError
from counter_mcp.core.models import TransportMode

runner = CliRunner()


def _combined_output(result) -> str:
    try:
        stderr = result.stderr
    except ValueError:
        stderr = ""
    return f"{result.stdout}{stderr}"


class _FakeHost:
    instances: list["_FakeHost"] = []
    error: Exception | None = None

    def __init__(self, settings):
        self.settings = settings
        self.ran = False
        _FakeHost.instances.append(self)

    async def run(self) -> None:
        self.ran = True
        if _FakeHost.error is not None:
            raise _FakeHost.error


def _install_fake_host(monkeypatch, error: Exception | None = None):
    _FakeHost.instances = []
    _FakeHost.error = error
    monkeypatch.setattr("counter_mcp.cli.main.ProcessHost", _FakeHost)
    for key in ("TRANSPORT", "BIND_ADDRESS", "LOG_LEVEL"):
        monkeypatch.delenv(f"COUNTER_MCP_{key}", raising=False)


def test_help_lists_transport_options():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "--transport" in result.stdout
    assert "--bind-address" in result.stdout
    assert "--log-level" in result.stdout


def test_version_flag():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_defaults_select_sse(monkeypatch, tmp_path):
    _install_fake_host(monkeypatch)

    result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 0
    settings = _FakeHost.instances[0].settings
    assert settings.transport == TransportMode.SSE
    assert settings.bind_address == "127.0.0.1:8000"
    assert settings.log_level == "info"
    assert _FakeHost.instances[0].ran is True


def test_flags_override_config_file(monkeypatch, tmp_path):
    _install_fake_host(monkeypatch)
    config_file = tmp_path / "counter_mcp.yaml"
    config_file.write_text("""
server:
  transport: sse
  bind_address: "0.0.0.0:9000"
  log_level: error
""")

    result = runner.invoke(
        app,
        ["--config", str(config_file), "-t", "stdio", "-l", "chatty"],
    )

    assert result.exit_code == 0
    settings = _FakeHost.instances[0].settings
    assert settings.transport == TransportMode.STDIO
    assert settings.bind_address == "0.0.0.0:9000"
    assert settings.log_level == "info"


def test_unknown_transport_is_a_usage_error(monkeypatch):
    _install_fake_host(monkeypatch)

    result = runner.invoke(app, ["--transport", "carrier-pigeon"])

    assert result.exit_code == 2
    assert _FakeHost.instances == []


def test_invalid_config_file_exits_non_zero(monkeypatch, tmp_path):
    _install_fake_host(monkeypatch)
    config_file = tmp_path / "counter_mcp.yaml"
    config_file.write_text("server: [unclosed")

    result = runner.invoke(app, ["--config", str(config_file)])

    assert result.exit_code == 1
    assert "parsing" in _combined_output(result)
    assert _FakeHost.instances == []


def test_host_errors_exit_non_zero(monkeypatch, tmp_path):
    _install_fake_host(monkeypatch, error=BindError("Unable to bind 127.0.0.1:8000: address in use"))

    result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert _FakeHost.instances[0].ran is True


def test_invalid_bind_address_exits_non_zero(monkeypatch, tmp_path):
    for key in ("TRANSPORT", "BIND_ADDRESS", "LOG_LEVEL"):
        monkeypatch.delenv(f"COUNTER_MCP_{key}", raising=False)

    result = runner.invoke(
        app,
        ["--config", str(tmp_path / "missing.yaml"), "--bind-address", "not-an-address"],
    )

    assert result.exit_code == 1
    assert "ConfigurationError" in _combined_output(result)
