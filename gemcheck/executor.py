"""Build executor for Gem Check.

Runs an execution plan produced by the resolver. Every task in a ready set
is submitted to a thread pool at once; the executor waits for the whole set
before moving on. When a task fails, siblings that already started are
allowed to finish, no further ready sets are launched, and the first failure
is reported on the BuildRun.

Key components:
- BuildExecutor: Runs plans against a TaskGraph.
- BuildRun: Outcome and per-task log of one execution.
- TaskRecord: Timing and result of a single task.
- TaskFailure: Exception carrying the failing task id and its cause.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from .graph import ExecutionPlan, TaskGraph

logger = logging.getLogger(__name__)


class TaskFailure(Exception):
    """A task raised an error during a build run.

    Attributes:
        task_id: Id of the task that failed.
        cause: The exception raised by the task.
    """

    def __init__(self, task_id: str, cause: BaseException):
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Task '{task_id}' failed: {cause}")


@dataclass
class TaskRecord:
    """Result of running one task.

    Attributes:
        task_id: Id of the task.
        step: Index of the ready set the task belonged to.
        started: Seconds between the start of the run and the task start.
        duration: Seconds the task took.
        error: Exception raised by the task, if any.
    """

    task_id: str
    step: int
    started: float
    duration: float
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BuildRun:
    """One execution of a plan.

    Attributes:
        targets: Task ids that were requested.
        records: Task records in completion order.
        failure: First failure, or None if every task succeeded.
        duration: Wall time of the whole run in seconds.
    """

    targets: tuple[str, ...]
    records: list[TaskRecord] = field(default_factory=list)
    failure: TaskFailure | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def ran(self) -> list[str]:
        """Ids of tasks that were started, in completion order."""
        return [record.task_id for record in self.records]

    def raise_for_failure(self) -> None:
        """Raise the run's TaskFailure, if any."""
        if self.failure is not None:
            raise self.failure


class BuildExecutor:
    """Executes plans against a task graph with a thread pool.

    Attributes:
        graph: Task graph whose actions are run.
        max_workers: Upper bound on concurrently running tasks.
    """

    def __init__(self, graph: TaskGraph, max_workers: int | None = None):
        self.graph = graph
        self.max_workers = max_workers

    def run(self, plan: ExecutionPlan) -> BuildRun:
        """Run every ready set of the plan in order.

        Args:
            plan: Execution plan from the resolver.

        Returns:
            BuildRun describing what ran and the first failure, if any.
        """
        build_run = BuildRun(targets=plan.targets)
        origin = time.perf_counter()
        workers = self.max_workers or max((len(step) for step in plan.steps), default=1)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="gemcheck-task"
        ) as pool:
            for index, step in enumerate(plan.steps):
                futures = [
                    pool.submit(self._run_task, task_id, index, origin)
                    for task_id in step
                ]
                for future in as_completed(futures):
                    record = future.result()
                    build_run.records.append(record)
                    if record.error is not None and build_run.failure is None:
                        build_run.failure = TaskFailure(record.task_id, record.error)
                if build_run.failure is not None:
                    skipped = [t for later in plan.steps[index + 1 :] for t in later]
                    if skipped:
                        logger.info("Skipping %s", ", ".join(skipped))
                    break
        build_run.duration = time.perf_counter() - origin
        return build_run

    def _run_task(self, task_id: str, step: int, origin: float) -> TaskRecord:
        task = self.graph[task_id]
        start = time.perf_counter()
        logger.debug("Starting '%s'", task_id)
        error: BaseException | None = None
        try:
            task.action()
        except Exception as exc:
            error = exc
        duration = time.perf_counter() - start
        if error is None:
            logger.info("Finished '%s' after %.0f ms", task_id, duration * 1000)
        else:
            logger.error("'%s' errored after %.0f ms: %s", task_id, duration * 1000, error)
        return TaskRecord(
            task_id=task_id,
            step=step,
            started=start - origin,
            duration=duration,
            error=error,
        )
