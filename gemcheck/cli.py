"""Command-line interface for Gem Check.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the build directory.
- build:prod: Build with the production environment.
- clean: Empty the build directory.
- run: Run arbitrary tasks from the task table.
- tasks: List the task table.
- serve: Serve the build directory with live reload.
- watch: Rebuild parts of the site when sources change.
- default: Build, then serve and watch (also used when no command is given).
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import click

from . import __version__
from .build import (
    BuildContext,
    create_task_graph,
    load_config,
    load_watch_rules,
    run_build,
)
from .executor import BuildExecutor, BuildRun
from .graph import GraphError, TaskGraph
from .logging_setup import setup_logging


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="gemcheck")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Gem Check site builder."""
    setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        ctx.invoke(default)


def _load(environment: str | None = None) -> tuple[dict[str, Any], BuildContext, TaskGraph]:
    """Load configuration and construct the task graph for the current directory."""
    project_root = Path.cwd()
    config = load_config(project_root)
    try:
        build_ctx = BuildContext.from_config(project_root, config, environment)
        graph = create_task_graph(build_ctx)
    except (GraphError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    return config, build_ctx, graph


def _report(build_run: BuildRun) -> None:
    """Print the task log of a run and exit non-zero on failure."""
    for record in build_run.records:
        mark = click.style("✓", fg="green") if record.ok else click.style("✗", fg="red")
        click.echo(f"{mark} {record.task_id} ({record.duration * 1000:.0f} ms)")
    if build_run.failure is not None:
        failure = build_run.failure
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Task: {failure.task_id}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {failure.cause}", fg="white"), err=True)
        raise SystemExit(1)
    click.echo(f"Finished {', '.join(build_run.targets)} in {build_run.duration * 1000:.0f} ms")


def _run(
    targets: tuple[str, ...] | str,
    environment: str | None = None,
    with_dependencies: bool = True,
) -> tuple[dict[str, Any], BuildContext, TaskGraph]:
    config, build_ctx, graph = _load(environment)
    try:
        build_run = run_build(
            graph,
            targets,
            with_dependencies=with_dependencies,
            max_workers=config.get("max_workers"),
        )
    except GraphError as exc:
        raise click.ClickException(str(exc)) from exc
    _report(build_run)
    return config, build_ctx, graph


@cli.command()
def build():
    """Build the site into the build directory."""
    _run("build")


@cli.command("build:prod")
def build_prod():
    """Build the site for production."""
    _run("build", environment="production")


@cli.command()
def clean():
    """Empty the build directory."""
    _run("clean")


@cli.command()
@click.argument("task_ids", nargs=-1, required=True)
@click.option("--no-deps", is_flag=True, help="Run only the named tasks, in order")
@click.option("--prod", is_flag=True, help="Use the production environment")
def run(task_ids: tuple[str, ...], no_deps: bool, prod: bool):
    """Run tasks from the task table."""
    _run(task_ids, environment="production" if prod else None, with_dependencies=not no_deps)


@cli.command()
def tasks():
    """List tasks with their dependencies."""
    _, _, graph = _load()
    for task_id in graph:
        task = graph[task_id]
        deps = ", ".join(task.dependencies) or "-"
        group = f" [{task.group}]" if task.group else ""
        click.echo(f"{task_id}{group}: {deps}")


def _make_server(config: dict[str, Any], build_ctx: BuildContext, port: int | None, ws_port: int | None):
    from .server import DevServer

    return DevServer(
        build_ctx.build_dir,
        project_root=build_ctx.project_root,
        host=config.get("host", "localhost"),
        http_port=port or config.get("port", 4242),
        ws_port=ws_port if ws_port is not None else config.get("ws_port"),
    )


def _make_coordinator(config: dict[str, Any], build_ctx: BuildContext, graph: TaskGraph, sink=None):
    from .watch import WatchCoordinator

    try:
        return WatchCoordinator(
            graph,
            BuildExecutor(graph, max_workers=config.get("max_workers")),
            load_watch_rules(config),
            build_ctx.project_root,
            reload_sink=sink,
            debounce=float(config.get("debounce") or 0),
            ignore=[build_ctx.build_dir],
        )
    except (GraphError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _wait(*stoppables) -> None:  # pragma: no cover - integration path
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        for item in stoppables:
            item.stop()


@cli.command()
@click.option("--port", type=int, required=False, help="HTTP port (overrides gemcheck.yaml)")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (default: port + 1)",
)
def serve(port: int | None, ws_port: int | None):
    """Serve the build directory with live reload."""
    config, build_ctx, _ = _load()
    server = _make_server(config, build_ctx, port, ws_port)
    click.echo(f"Serving {build_ctx.build_dir} at {server.url}")
    server.start()


@cli.command()
def watch():
    """Rebuild parts of the site when sources change."""
    config, build_ctx, graph = _load()
    coordinator = _make_coordinator(config, build_ctx, graph)
    coordinator.start()
    _wait(coordinator)


@cli.command()
@click.option("--port", type=int, required=False, help="HTTP port (overrides gemcheck.yaml)")
@click.option("--ws-port", type=int, required=False, help="Live reload websocket port")
def default(port: int | None = None, ws_port: int | None = None):
    """Build, then serve and watch with live reload."""
    config, build_ctx, graph = _run("build")
    server = _make_server(config, build_ctx, port, ws_port)
    coordinator = _make_coordinator(config, build_ctx, graph, sink=server)
    server.start_background()
    coordinator.start()
    click.echo(f"Serving {build_ctx.build_dir} at {server.url}")
    _wait(coordinator, server)


def main():
    """Entry point for the CLI application."""
    cli()
