import pytest
from click.testing import CliRunner

from perseus import __version__
from perseus.cli import cli


@pytest.fixture
def logging_calls(monkeypatch):
    calls = []
    monkeypatch.setattr("perseus.cli.setup_logging", lambda level, fmt: calls.append((level, fmt)))
    return calls


def test_build_command(tmp_path, monkeypatch, logging_calls):
    (tmp_path / "pages").mkdir()
    (tmp_path / "pages" / "index.md").write_text("# Home\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["build"])

    assert result.exit_code == 0, result.output
    assert "Built 1 routes into" in result.output
    assert (tmp_path / "dist" / "index.html").exists()
    assert logging_calls == [("INFO", "text")]


def test_build_command_reports_missing_pages(tmp_path, monkeypatch, logging_calls):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["build"])

    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "File: pages" in result.output


def test_build_command_reports_template_errors(tmp_path, monkeypatch, logging_calls):
    (tmp_path / "pages").mkdir()
    (tmp_path / "pages" / "index.md").write_text("# Home\n", encoding="utf-8")
    (tmp_path / "layouts").mkdir()
    (tmp_path / "layouts" / "default.html").write_text("{% for %}", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["build"])

    assert result.exit_code == 1
    assert "Template syntax error" in result.output


def test_serve_command_passes_port_overrides(tmp_path, monkeypatch, logging_calls):
    created = []

    class FakeDevServer:
        def __init__(self, project_root, http_port=None, hmr_port=None):
            created.append((project_root, http_port, hmr_port))
            self.started = False

        def start(self):
            created.append("started")

    monkeypatch.setattr("perseus.server.DevServer", FakeDevServer)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["serve", "--port", "5000"])

    assert result.exit_code == 0, result.output
    assert created[0][1:] == (5000, None)
    assert created[1] == "started"


def test_log_options(tmp_path, monkeypatch, logging_calls):
    monkeypatch.chdir(tmp_path)
    CliRunner().invoke(cli, ["--log-level", "debug", "--log-format", "json", "build"])
    level, fmt = logging_calls[0]
    assert level.upper() == "DEBUG"
    assert fmt == "json"


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert f"perseus, version {__version__}" in result.output
