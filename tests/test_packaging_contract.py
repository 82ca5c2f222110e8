import tomllib
from pathlib import Path


def _pyproject() -> dict:
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    return tomllib.loads(pyproject_path.read_text(encoding="utf-8"))


def test_pyproject_declares_runtime_stack():
    dependencies = _pyproject()["tool"]["poetry"]["dependencies"]

    for name in ("typer", "rich", "pydantic", "pydantic-settings", "pyyaml", "mcp", "anyio", "starlette", "uvicorn"):
        assert name in dependencies


def test_pyproject_declares_test_extra_and_script():
    poetry = _pyproject()["tool"]["poetry"]

    assert poetry["dependencies"]["pytest"]["optional"] is True
    assert "pytest" in poetry["extras"]["test"]
    assert poetry["scripts"]["counter-mcp"] == "counter_mcp.cli.main:app"
