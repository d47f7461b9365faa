"""File watching and incremental rebuilds for Gem Check.

A watch rule pairs source globs with tasks to rerun when a matching file
changes. Every rule is scheduled with its own watchdog handler and runs
single-flight: while a run for a rule is in progress, further changes for
that rule collapse into one queued rerun. Rules run independently of each
other, so they are expected to write disjoint parts of the build directory.

Key classes:
- WatchRule: Globs, tasks and reload scope.
- WatchCoordinator: Schedules rules and turns change events into builds.
- WatchIOError: A rule could not be watched.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .graph import UnknownTaskError, resolve
from .utils import glob_base, match_glob

if TYPE_CHECKING:
    from .executor import BuildExecutor, BuildRun
    from .graph import TaskGraph

logger = logging.getLogger(__name__)

RELOAD_SCOPES = ("full", "stream")


class ReloadSink(Protocol):
    """Receives a notification after each successful watch-triggered build."""

    def notify(self, scope: str) -> None: ...


class WatchIOError(Exception):
    """A watch rule could not monitor its files.

    Attributes:
        rule: Name of the affected rule.
        path: Directory that could not be watched.
        cause: Underlying error.
    """

    def __init__(self, rule: str, path: Path, cause: BaseException):
        self.rule = rule
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot watch {path} for rule '{rule}': {cause}")


@dataclass(frozen=True)
class WatchRule:
    """Maps source globs to tasks.

    Attributes:
        name: Rule name, used as the single-flight key.
        globs: Glob patterns relative to the project root.
        tasks: Task ids run in order when a matching file changes.
        reload: Reload scope sent after a successful run ("full" or "stream").
    """

    name: str
    globs: tuple[str, ...]
    tasks: tuple[str, ...]
    reload: str = "full"

    def __post_init__(self) -> None:
        object.__setattr__(self, "globs", tuple(self.globs))
        object.__setattr__(self, "tasks", tuple(self.tasks))
        if self.reload not in RELOAD_SCOPES:
            raise ValueError(f"Unknown reload scope '{self.reload}' for rule '{self.name}'")
        if not self.tasks:
            raise ValueError(f"Watch rule '{self.name}' has no tasks")

    def with_globs(self, globs: Iterable[str]) -> WatchRule:
        return replace(self, globs=tuple(globs))

    def matches(self, rel_path: str) -> bool:
        return any(match_glob(rel_path, pattern) for pattern in self.globs)

    def watch_dirs(self) -> list[str]:
        """Return the distinct literal base directories of the rule's globs."""
        return sorted({glob_base(pattern) for pattern in self.globs})


@dataclass
class _RuleState:
    rule: WatchRule
    lock: threading.Lock = field(default_factory=threading.Lock)
    running: bool = False
    pending: bool = False
    enabled: bool = True
    runs: int = 0
    thread: threading.Thread | None = None


class WatchCoordinator:
    """Turns file changes into single-flight build runs per watch rule.

    Attributes:
        graph: Task graph the rules refer to.
        executor: Executor used to run rule tasks.
        project_root: Directory watch globs are relative to.
        reload_sink: Optional receiver of reload notifications.
        debounce: Seconds to wait after the first change before building.
        ignore: Directories whose changes are never considered.
    """

    def __init__(
        self,
        graph: TaskGraph,
        executor: BuildExecutor,
        rules: Sequence[WatchRule],
        project_root: Path,
        reload_sink: ReloadSink | None = None,
        debounce: float = 0.05,
        ignore: Sequence[Path] = (),
    ):
        self.graph = graph
        self.executor = executor
        self.project_root = project_root
        self.reload_sink = reload_sink
        self.debounce = debounce
        self.ignore = [Path(p) for p in ignore]
        self._states: dict[str, _RuleState] = {}
        for rule in rules:
            if rule.name in self._states:
                raise ValueError(f"Duplicate watch rule '{rule.name}'")
            for task_id in rule.tasks:
                if task_id not in graph:
                    raise UnknownTaskError(task_id, referenced_by=f"watch:{rule.name}")
            self._states[rule.name] = _RuleState(rule)
        self._observer: Observer | None = None

    @property
    def rules(self) -> list[WatchRule]:
        return [state.rule for state in self._states.values()]

    def active_rules(self) -> list[WatchRule]:
        return [state.rule for state in self._states.values() if state.enabled]

    def run_count(self, rule_name: str) -> int:
        """Number of build runs started for a rule."""
        return self._states[rule_name].runs

    def start(self) -> None:
        """Schedule every rule with a watchdog observer and start it.

        Rules whose directories cannot be watched are disabled and logged;
        the remaining rules keep working.
        """
        observer = Observer()
        # Emitters scheduled on a running observer start immediately, so a
        # failure surfaces on the schedule call of the rule that caused it.
        observer.start()
        self._observer = observer
        for state in self._states.values():
            try:
                self._schedule(observer, state.rule)
            except WatchIOError as exc:
                state.enabled = False
                logger.error("%s; rule disabled", exc)
        names = ", ".join(rule.name for rule in self.active_rules()) or "none"
        logger.info("Watching for changes (rules: %s)", names)

    def _schedule(self, observer, rule: WatchRule) -> None:
        handler = _ChangeHandler(self, rule)
        for rel_dir in rule.watch_dirs():
            watch_path = self.project_root / rel_dir
            try:
                if not watch_path.is_dir():
                    raise FileNotFoundError(f"No such directory: {watch_path}")
                observer.schedule(handler, str(watch_path), recursive=True)
            except OSError as exc:
                raise WatchIOError(rule.name, watch_path, exc) from exc

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def join(self, timeout: float | None = None) -> None:
        """Wait for in-flight rule runs (and their queued reruns) to finish."""
        for state in self._states.values():
            if state.thread is not None:
                state.thread.join(timeout)

    def relative_path(self, path: Path) -> str | None:
        """Return the project-relative posix path of a change, or None if ignored."""
        if not path.is_absolute():
            path = self.project_root / path
        for ignored in self.ignore:
            try:
                path.relative_to(ignored)
                return None
            except ValueError:
                pass
        if "node_modules" in path.parts:
            return None
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return None

    def handle_change(self, path: Path) -> list[str]:
        """Trigger every enabled rule whose globs match a changed path.

        Args:
            path: Absolute or project-relative path of the changed file.

        Returns:
            Names of the rules that were triggered.
        """
        rel = self.relative_path(path)
        if rel is None:
            return []
        triggered = []
        for state in self._states.values():
            if state.enabled and state.rule.matches(rel):
                self.trigger(state.rule.name)
                triggered.append(state.rule.name)
        return triggered

    def trigger(self, rule_name: str) -> bool:
        """Request a run for a rule.

        If the rule is idle a run starts in a background thread. If a run is
        in progress, one rerun is queued; further requests before it starts
        are absorbed.

        Args:
            rule_name: Name of the rule.

        Returns:
            True if a new run was started, False if the request was queued.
        """
        state = self._states[rule_name]
        with state.lock:
            if state.running:
                state.pending = True
                return False
            state.running = True
            state.pending = False
            thread = threading.Thread(
                target=self._drain,
                args=(state,),
                name=f"gemcheck-watch-{rule_name}",
                daemon=True,
            )
            state.thread = thread
        thread.start()
        return True

    def _drain(self, state: _RuleState) -> None:
        while True:
            if self.debounce:
                time.sleep(self.debounce)
            with state.lock:
                state.pending = False
                state.runs += 1
            try:
                self._run_rule(state.rule)
            except Exception:
                logger.exception("Watch rule '%s' crashed", state.rule.name)
            with state.lock:
                if not state.pending:
                    state.running = False
                    return

    def _run_rule(self, rule: WatchRule) -> BuildRun:
        logger.info("Change detected; running %s", ", ".join(rule.tasks))
        plan = resolve(self.graph, rule.tasks, with_dependencies=False)
        build_run = self.executor.run(plan)
        if build_run.ok:
            logger.info(
                "Rebuilt %s in %.0f ms", ", ".join(rule.tasks), build_run.duration * 1000
            )
            self._notify(rule.reload)
        else:
            failure = build_run.failure
            logger.error("Task '%s' failed: %s", failure.task_id, failure.cause)
        return build_run

    def _notify(self, scope: str) -> None:
        if self.reload_sink is None:
            return
        try:
            self.reload_sink.notify(scope)
        except Exception as exc:
            logger.warning("Reload notification failed: %s", exc)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards file events for one rule to the coordinator."""

    def __init__(self, coordinator: WatchCoordinator, rule: WatchRule):
        super().__init__()
        self.coordinator = coordinator
        self.rule = rule

    def on_any_event(self, event):
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        for raw in paths:
            if not raw:
                continue
            path = Path(raw.decode() if isinstance(raw, bytes) else raw)
            rel = self.coordinator.relative_path(path)
            if rel is not None and self.rule.matches(rel):
                self.coordinator.trigger(self.rule.name)
                return

