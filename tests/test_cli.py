import logging
import sys

import pytest
from click.testing import CliRunner

from conftest import write
from gemcheck import __version__
from gemcheck.cli import cli, main
from gemcheck.logging_setup import _ConsoleNoiseFilter, setup_logging


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    calls = []
    monkeypatch.setattr("gemcheck.cli.setup_logging", lambda verbose=False: calls.append(verbose))
    return calls


@pytest.fixture
def in_project(project, monkeypatch):
    monkeypatch.chdir(project)
    return project


class DummyServer:
    instances = []

    def __init__(self, build_dir, project_root=None, host="localhost", http_port=4242, ws_port=None):
        self.build_dir = build_dir
        self.project_root = project_root
        self.http_port = http_port
        self.ws_port = ws_port
        self.url = f"http://{host}:{http_port}"
        self.calls = []
        DummyServer.instances.append(self)

    def start(self):
        self.calls.append("start")

    def start_background(self):
        self.calls.append("start_background")

    def notify(self, scope):
        self.calls.append(("notify", scope))


class DummyCoordinator:
    instances = []

    def __init__(self, graph, executor, rules, project_root, reload_sink=None, debounce=0.05, ignore=()):
        self.rules = rules
        self.reload_sink = reload_sink
        self.ignore = ignore
        self.started = False
        DummyCoordinator.instances.append(self)

    def start(self):
        self.started = True


@pytest.fixture
def dummies(monkeypatch):
    DummyServer.instances = []
    DummyCoordinator.instances = []
    waited = []
    monkeypatch.setattr("gemcheck.server.DevServer", DummyServer)
    monkeypatch.setattr("gemcheck.watch.WatchCoordinator", DummyCoordinator)
    monkeypatch.setattr("gemcheck.cli._wait", lambda *items: waited.append(items))
    return waited


def test_build_command(in_project, quiet_logging):
    result = CliRunner().invoke(cli, ["-v", "build"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "✓ clean" in result.output
    assert "Finished build" in result.output
    assert (in_project / "build" / "index.html").exists()
    assert quiet_logging == [True]


def test_build_failure_exits_non_zero(in_project):
    write(in_project / "src" / "styles" / "main.css", '@import "gone.css";\n')
    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "✗ styles" in result.output
    assert "Build failed:" in result.output
    assert "Task: styles" in result.output
    assert "gone.css" in result.output


def test_build_prod_command(in_project):
    result = CliRunner().invoke(cli, ["build:prod"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    index = (in_project / "build" / "index.html").read_text(encoding="utf-8")
    assert '<footer class="env">production</footer>' in index


def test_clean_command(in_project):
    write(in_project / "build" / "old.html", "x")
    result = CliRunner().invoke(cli, ["clean"], catch_exceptions=False)
    assert result.exit_code == 0
    assert list((in_project / "build").iterdir()) == []


def test_run_without_dependencies(in_project):
    write(in_project / "build" / "keep.txt", "x")
    result = CliRunner().invoke(cli, ["run", "--no-deps", "copy:fonts", "styles"])
    assert result.exit_code == 0, result.output
    assert "clean" not in result.output
    assert (in_project / "build" / "keep.txt").exists()
    assert (in_project / "build" / "fonts" / "font.woff2").exists()
    assert (in_project / "build" / "main.css").exists()


def test_run_with_dependencies_cleans_first(in_project):
    write(in_project / "build" / "keep.txt", "x")
    result = CliRunner().invoke(cli, ["run", "copy:fonts"])
    assert result.exit_code == 0, result.output
    assert not (in_project / "build" / "keep.txt").exists()


def test_run_unknown_task(in_project):
    result = CliRunner().invoke(cli, ["run", "deploy"])
    assert result.exit_code != 0
    assert "deploy" in result.output


def test_invalid_environment_in_config(in_project):
    write(in_project / "gemcheck.yaml", "environment: staging\n")
    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code != 0
    assert "staging" in result.output


def test_tasks_command(in_project):
    result = CliRunner().invoke(cli, ["tasks"], catch_exceptions=False)
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert "clean [clean]: -" in lines
    assert "build: styles, html, copy" in lines
    assert "copy [copy]: copy:images, copy:root, copy:vendor, copy:fonts" in lines


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_serve_command(in_project, dummies):
    result = CliRunner().invoke(cli, ["serve", "--port", "5050", "--ws-port", "5051"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    server = DummyServer.instances[0]
    assert server.http_port == 5050
    assert server.ws_port == 5051
    assert server.build_dir == in_project / "build"
    assert server.project_root == in_project
    assert server.calls == ["start"]
    assert "http://localhost:5050" in result.output


def test_serve_uses_config_port(in_project, dummies):
    result = CliRunner().invoke(cli, ["serve"], catch_exceptions=False)
    assert result.exit_code == 0
    assert DummyServer.instances[0].http_port == 4242
    assert DummyServer.instances[0].ws_port is None


def test_watch_command(in_project, dummies):
    result = CliRunner().invoke(cli, ["watch"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    coordinator = DummyCoordinator.instances[0]
    assert coordinator.started
    assert coordinator.reload_sink is None
    assert coordinator.ignore == [in_project / "build"]
    assert [rule.name for rule in coordinator.rules] == ["pages", "styles", "images"]
    assert dummies == [(coordinator,)]


def test_default_builds_serves_and_watches(in_project, dummies):
    result = CliRunner().invoke(cli, [], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert (in_project / "build" / "index.html").exists()
    server = DummyServer.instances[0]
    coordinator = DummyCoordinator.instances[0]
    assert server.calls == ["start_background"]
    assert coordinator.reload_sink is server
    assert coordinator.started
    assert dummies == [(coordinator, server)]


def test_default_stops_when_build_fails(in_project, dummies):
    write(in_project / "src" / "index.jinja", "{% if %}")
    result = CliRunner().invoke(cli, ["default"])
    assert result.exit_code == 1
    assert DummyServer.instances == []


def test_watch_rule_with_unknown_task_is_reported(in_project, monkeypatch):
    monkeypatch.setattr("gemcheck.cli._wait", lambda *items: None)
    write(
        in_project / "gemcheck.yaml",
        "use_postcss: false\nwatch:\n  - name: docs\n    globs: ['src/**/*.md']\n    tasks: [deploy]\n",
    )
    result = CliRunner().invoke(cli, ["watch"])
    assert result.exit_code != 0
    assert "deploy" in result.output


def test_malformed_watch_config_is_reported(in_project, monkeypatch):
    monkeypatch.setattr("gemcheck.cli._wait", lambda *items: None)
    write(in_project / "gemcheck.yaml", "use_postcss: false\nwatch:\n  - html\n")
    result = CliRunner().invoke(cli, ["watch"])
    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert "Watch rule #0 must be a mapping" in result.output


def test_main_entry_point(in_project, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["gemcheck", "tasks"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 0

    import gemcheck.__main__ as entry

    assert entry.main is main


def test_setup_logging_filters_third_party_noise():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(verbose=True)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        noise = _ConsoleNoiseFilter()
        make = logging.LogRecord
        assert noise.filter(make("gemcheck.watch", logging.DEBUG, __file__, 1, "m", None, None))
        assert not noise.filter(make("watchdog.observers", logging.INFO, __file__, 1, "m", None, None))
        assert noise.filter(make("websockets.server", logging.WARNING, __file__, 1, "m", None, None))
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
