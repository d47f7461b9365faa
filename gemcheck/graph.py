"""Task graph and resolver for Gem Check builds.

A task graph is an immutable mapping of task ids to tasks. Each task names
the tasks it depends on and an optional parallel-group tag. Resolving a
request against the graph produces an execution plan: a sequence of ready
sets, where every task in a set may run concurrently once all earlier sets
have finished.

Key components:
- Task: A named unit of build work.
- TaskGraph: Validated, immutable collection of tasks.
- ExecutionPlan: Ordered ready sets for a request.
- resolve: Compute an execution plan for one or more target tasks.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType


class GraphError(Exception):
    """Base class for task graph construction and resolution errors."""


class UnknownTaskError(GraphError):
    """Raised when a task id is not present in the graph.

    Attributes:
        task_id: The missing task id.
        referenced_by: Id of the task that referenced it, if any.
    """

    def __init__(self, task_id: str, referenced_by: str | None = None):
        self.task_id = task_id
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Task '{referenced_by}' depends on unknown task '{task_id}'"
        else:
            message = f"Unknown task '{task_id}'"
        super().__init__(message)


class GraphCycleError(GraphError):
    """Raised when the dependency relation contains a cycle.

    Attributes:
        cycle: Task ids on the cycle, in dependency order.
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = tuple(cycle)
        path = " -> ".join([*self.cycle, self.cycle[0]]) if self.cycle else ""
        super().__init__(f"Dependency cycle detected: {path}")


def _noop() -> None:
    return None


@dataclass(frozen=True)
class Task:
    """A named unit of build work.

    Attributes:
        id: Unique task identifier.
        action: Zero-argument callable. Returning means success, raising means failure.
        dependencies: Ids of tasks that must complete before this one starts.
        group: Parallel-group tag, used to order ids within a ready set.
    """

    id: str
    action: Callable[[], object] = _noop
    dependencies: tuple[str, ...] = ()
    group: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Task id must be a non-empty string")
        # Accept any iterable of ids but store an immutable tuple.
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered ready sets for a build request.

    Attributes:
        targets: Task ids that were requested.
        steps: Ready sets in execution order.
    """

    targets: tuple[str, ...]
    steps: tuple[tuple[str, ...], ...]

    def order(self) -> list[str]:
        """Return the plan flattened into a single topological order."""
        return [task_id for step in self.steps for task_id in step]

    def __len__(self) -> int:
        return sum(len(step) for step in self.steps)


class TaskGraph(Mapping[str, Task]):
    """Immutable, validated mapping of task ids to tasks.

    Construction fails with UnknownTaskError if a dependency is missing and
    with GraphCycleError if the dependency relation is cyclic.
    """

    def __init__(self, tasks: Iterable[Task]):
        registry: dict[str, Task] = {}
        for task in tasks:
            if task.id in registry:
                raise ValueError(f"Duplicate task id '{task.id}'")
            registry[task.id] = task
        self._tasks = MappingProxyType(registry)
        self._validate()

    def __getitem__(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(task_id) from None

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str, default: Task | None = None) -> Task | None:
        return self._tasks.get(task_id, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        return f"TaskGraph({list(self._tasks)!r})"

    def ids(self) -> list[str]:
        """Return all task ids in declaration order."""
        return list(self._tasks)

    def closure(self, targets: Iterable[str]) -> set[str]:
        """Return the targets plus every task they transitively depend on.

        Args:
            targets: Task ids to start from.

        Returns:
            Set of task ids in the dependency closure.

        Raises:
            UnknownTaskError: If a target or dependency is missing.
        """
        seen: set[str] = set()
        stack: list[tuple[str, str | None]] = [(t, None) for t in targets]
        while stack:
            task_id, parent = stack.pop()
            if task_id in seen:
                continue
            if task_id not in self._tasks:
                raise UnknownTaskError(task_id, referenced_by=parent)
            seen.add(task_id)
            for dep in self._tasks[task_id].dependencies:
                stack.append((dep, task_id))
        return seen

    def _validate(self) -> None:
        for task in self._tasks.values():
            for dep in task.dependencies:
                if dep not in self._tasks:
                    raise UnknownTaskError(dep, referenced_by=task.id)
        resolve(self, self.ids())


def _sort_key(graph: Mapping[str, Task], task_id: str) -> tuple[str, str]:
    return (graph[task_id].group or "", task_id)


def _find_cycle(pending: Mapping[str, set[str]]) -> list[str]:
    """Return one cycle among tasks that could not be scheduled.

    Args:
        pending: Remaining task ids mapped to their unsatisfied dependencies.

    Returns:
        Task ids on a cycle, in dependency order.
    """
    # Every pending task has at least one pending dependency, so following
    # dependencies from any start must eventually revisit a task.
    start = min(pending)
    path: list[str] = []
    position: dict[str, int] = {}
    current = start
    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = min(pending[current])
    return path[position[current]:]


def resolve(
    graph: TaskGraph,
    targets: str | Sequence[str],
    with_dependencies: bool = True,
) -> ExecutionPlan:
    """Compute an execution plan for the requested tasks.

    With dependencies, the transitive closure of the targets is layered into
    ready sets: each set holds every task whose dependencies all appear in
    earlier sets. Without dependencies, each target runs alone, in the given
    order.

    Args:
        graph: Task graph to resolve against.
        targets: Task id or ids to run.
        with_dependencies: Whether to include the dependency closure.

    Returns:
        ExecutionPlan with ready sets in execution order.

    Raises:
        UnknownTaskError: If a target or dependency does not exist.
        GraphCycleError: If the closure contains a cycle.
    """
    if isinstance(targets, str):
        targets = [targets]
    requested = tuple(dict.fromkeys(targets))
    for task_id in requested:
        if task_id not in graph:
            raise UnknownTaskError(task_id)

    if not with_dependencies:
        return ExecutionPlan(
            targets=requested, steps=tuple((task_id,) for task_id in requested)
        )

    closure = graph.closure(requested)
    pending = {
        task_id: set(graph[task_id].dependencies) & closure for task_id in closure
    }
    steps: list[tuple[str, ...]] = []
    while pending:
        ready = [task_id for task_id, deps in pending.items() if not deps]
        if not ready:
            raise GraphCycleError(_find_cycle(pending))
        ready.sort(key=lambda task_id: _sort_key(graph, task_id))
        steps.append(tuple(ready))
        for task_id in ready:
            del pending[task_id]
        for deps in pending.values():
            deps.difference_update(ready)
    return ExecutionPlan(targets=requested, steps=tuple(steps))
