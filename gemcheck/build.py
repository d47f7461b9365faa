"""Site build definition for Gem Check.

This module holds the declarative description of the build: the task table
(ids, dependencies, groups and the action each task performs), the default
watch rules, and configuration loading. The task graph is built once from
the table and a BuildContext and is not modified afterwards.

Key functions:
- load_config: Loads configuration from gemcheck.yaml.
- create_task_graph: Binds the task table to a BuildContext.
- load_watch_rules: Returns the configured or default watch rules.
- run_build: Resolves and executes tasks, returning a BuildRun.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .assets import clean_output, copy_files
from .executor import BuildExecutor, BuildRun
from .graph import Task, TaskGraph, resolve
from .styles import StyleRenderer
from .templates import ENVIRONMENTS, TemplateEngine
from .watch import WatchRule

CONFIG_FILE = "gemcheck.yaml"

DEFAULT_CONFIG = {
    "src_dir": "src",
    "build_dir": "build",
    "host": "localhost",
    "port": 4242,
    "ws_port": None,
    "environment": "development",
    "use_postcss": True,
    "debounce": 0.05,
    "max_workers": None,
    "watch": None,
}


@dataclass(frozen=True)
class BuildContext:
    """Paths and options shared by every task action.

    Attributes:
        project_root: Root directory of the project.
        src_dir: Source directory (templates, Markdown, styles, assets).
        build_dir: Output directory.
        environment: "development" or "production".
        use_postcss: Whether the styles task may use a PostCSS CLI.
    """

    project_root: Path
    src_dir: Path
    build_dir: Path
    environment: str = "development"
    use_postcss: bool = True

    @classmethod
    def from_config(
        cls,
        project_root: Path,
        config: dict[str, Any],
        environment: str | None = None,
    ) -> BuildContext:
        env = environment or config.get("environment") or "development"
        if env not in ENVIRONMENTS:
            raise ValueError(
                f"Unknown environment '{env}' (expected one of: {', '.join(ENVIRONMENTS)})"
            )
        return cls(
            project_root=project_root,
            src_dir=project_root / config.get("src_dir", "src"),
            build_dir=project_root / config.get("build_dir", "build"),
            environment=env,
            use_postcss=bool(config.get("use_postcss", True)),
        )


def load_config(project_root: Path) -> dict[str, Any]:
    """Load configuration from gemcheck.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / CONFIG_FILE
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
    return config


def clean(ctx: BuildContext) -> None:
    clean_output(ctx.build_dir)


def styles(ctx: BuildContext) -> None:
    renderer = StyleRenderer(ctx.project_root, use_postcss=ctx.use_postcss)
    renderer.render(ctx.src_dir / "styles" / "main.css", ctx.build_dir / "main.css")


def html(ctx: BuildContext) -> None:
    engine = TemplateEngine(
        ctx.project_root, ctx.src_dir, ctx.build_dir, environment=ctx.environment
    )
    engine.render_all()


def copy(ctx: BuildContext, patterns: Sequence[str], dest: str = "") -> None:
    """Copy files matching patterns below the source dir into the build dir."""
    copy_files(patterns, ctx.build_dir / dest, ctx.src_dir)


def aggregate(ctx: BuildContext) -> None:
    """Aggregate task: completes once its dependencies have."""


@dataclass(frozen=True)
class TaskSpec:
    """Declarative task table entry.

    Attributes:
        id: Task id.
        action: Callable taking a BuildContext.
        dependencies: Ids of prerequisite tasks.
        group: Parallel-group tag.
    """

    id: str
    action: Callable[[BuildContext], object]
    dependencies: tuple[str, ...] = ()
    group: str | None = None


TASK_TABLE: tuple[TaskSpec, ...] = (
    TaskSpec("clean", clean, (), "clean"),
    TaskSpec("styles", styles, ("clean",), "compile"),
    TaskSpec("html", html, ("clean",), "compile"),
    TaskSpec(
        "copy:images",
        functools.partial(copy, patterns=["images/**/*"], dest="images"),
        ("clean",),
        "copy",
    ),
    TaskSpec(
        "copy:root",
        functools.partial(copy, patterns=["*.{xml,png,ico,json,svg}", "CNAME"]),
        ("clean",),
        "copy",
    ),
    TaskSpec(
        "copy:vendor",
        functools.partial(copy, patterns=["vendor/*.{js,css}"], dest="vendor"),
        ("clean",),
        "copy",
    ),
    TaskSpec(
        "copy:fonts",
        functools.partial(copy, patterns=["fonts/*"], dest="fonts"),
        ("clean",),
        "copy",
    ),
    TaskSpec(
        "copy",
        aggregate,
        ("copy:images", "copy:root", "copy:vendor", "copy:fonts"),
        "copy",
    ),
    TaskSpec("build", aggregate, ("styles", "html", "copy")),
)

DEFAULT_WATCH_RULES: tuple[WatchRule, ...] = (
    WatchRule(
        name="pages",
        globs=("{src}/**/*.jinja", "{src}/**/*.md", "{src}/**/*.js"),
        tasks=("html",),
        reload="full",
    ),
    WatchRule(
        name="styles",
        globs=("{src}/**/*.css",),
        tasks=("styles",),
        reload="stream",
    ),
    WatchRule(
        name="images",
        globs=("{src}/images/**/*",),
        tasks=("copy:images", "html"),
        reload="full",
    ),
)


def create_task_graph(
    ctx: BuildContext, table: Sequence[TaskSpec] = TASK_TABLE
) -> TaskGraph:
    """Bind the task table to a context and build the task graph.

    Args:
        ctx: Build context passed to every action.
        table: Task table to use.

    Returns:
        Validated TaskGraph.

    Raises:
        UnknownTaskError: If a dependency is not declared.
        GraphCycleError: If dependencies form a cycle.
    """
    return TaskGraph(
        Task(
            id=spec.id,
            action=functools.partial(spec.action, ctx),
            dependencies=spec.dependencies,
            group=spec.group,
        )
        for spec in table
    )


def load_watch_rules(config: dict[str, Any]) -> list[WatchRule]:
    """Return watch rules from config, or the defaults.

    Glob patterns may use `{src}` for the configured source directory.

    Args:
        config: Loaded configuration.

    Returns:
        List of WatchRule with `{src}` substituted.
    """
    src = str(config.get("src_dir", "src")).strip("/")
    configured = config.get("watch")
    if configured:
        for index, entry in enumerate(configured):
            if not isinstance(entry, dict):
                raise ValueError(f"Watch rule #{index} must be a mapping")
        rules = [
            WatchRule(
                name=str(entry.get("name") or f"rule{index}"),
                globs=tuple(entry.get("globs") or ()),
                tasks=tuple(entry.get("tasks") or ()),
                reload=entry.get("reload", "full"),
            )
            for index, entry in enumerate(configured)
        ]
    else:
        rules = list(DEFAULT_WATCH_RULES)
    return [rule.with_globs(g.replace("{src}", src) for g in rule.globs) for rule in rules]


def run_build(
    graph: TaskGraph,
    targets: str | Sequence[str] = "build",
    with_dependencies: bool = True,
    max_workers: int | None = None,
) -> BuildRun:
    """Resolve targets against the graph and execute them.

    Args:
        graph: Task graph.
        targets: Task id or ids to run.
        with_dependencies: Whether to run the dependency closure.
        max_workers: Thread pool size (defaults to the widest ready set).

    Returns:
        BuildRun with per-task records and the first failure, if any.
    """
    plan = resolve(graph, targets, with_dependencies=with_dependencies)
    return BuildExecutor(graph, max_workers=max_workers).run(plan)
