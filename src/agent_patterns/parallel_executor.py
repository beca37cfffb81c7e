"""
Parallel Executor - sectioning and voting.

Runs branches concurrently, bounded by a semaphore, over forked contexts.
Aggregation only begins once every branch has settled (success or failure):
gather() is the barrier. Branch exceptions are converted into failed
outcomes, never thrown.

Modes:
- Sectioning: distinct branches, one per label. The aggregate is always a
  success-tagged SectionedResult; failed sections are collected, not fatal.
- Voting: one workflow run n times, reduced by a voting reducer.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .context import Context, StepResult
from .control import CancellationToken, run_cancellable
from .errors import CancelledByCaller, FailureKind
from .logging_config import get_logger
from .validation import raise_for_validation, validate_parallel_config
from .workflow import Workflow, WorkflowBase, as_workflow

logger = get_logger("parallel_executor")


class ParallelMode(Enum):
    SECTIONING = "sectioning"
    VOTING = "voting"


class TaskStatus(Enum):
    """Branch execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class BranchTask:
    """
    One concurrent branch run.

    `index` is the dispatch position; `completion_order` is assigned when
    the branch settles, so reducers can apply first-completed policies.
    """
    label: str
    index: int
    workflow: Workflow
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[StepResult] = None
    completion_order: Optional[int] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def duration(self) -> float:
        """Get branch duration in seconds."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return 0.0


@dataclass
class SectionedResult:
    """Per-section outcomes of a sectioning run, keyed by branch label."""
    outcomes: Dict[str, StepResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> Dict[str, Any]:
        return {label: r.payload for label, r in self.outcomes.items() if r.ok}

    @property
    def failed(self) -> Dict[str, StepResult]:
        return {label: r for label, r in self.outcomes.items() if not r.ok}

    @property
    def all_succeeded(self) -> bool:
        return all(r.ok for r in self.outcomes.values())

    def __getitem__(self, label: str) -> StepResult:
        return self.outcomes[label]


@dataclass
class ParallelConfig:
    """
    Configuration for ParallelExecutor.

    Attributes:
        mode: SECTIONING or VOTING
        branches: Sectioning: label -> workflow, dispatched in this order
        workflow: Voting: the workflow run n times
        n: Voting: number of runs
        reducer: Voting: reducer combining the runs (see voting.py)
        max_concurrency: Branches in flight at once (None: unbounded)
        branch_timeout: Per-branch timeout in seconds (None: unbounded)
        cancel_siblings_on_failure: First failure cancels running siblings
        output_key: Context key for the aggregate (default: "sections" or "votes")
    """
    mode: ParallelMode = ParallelMode.SECTIONING
    branches: Mapping[str, Any] = field(default_factory=dict)
    workflow: Any = None
    n: int = 3
    reducer: Any = None
    max_concurrency: Optional[int] = 4
    branch_timeout: Optional[float] = None
    cancel_siblings_on_failure: bool = False
    output_key: Optional[str] = None


class ParallelExecutor(WorkflowBase):
    """
    Bounded concurrent fan-out with a settle-then-aggregate barrier.

    Features:
    - Semaphore-bounded concurrency
    - Per-branch timeout (reported as CAPABILITY_TIMEOUT)
    - Optional sibling cancellation on first failure
    - Execution statistics in result metadata
    """

    component = "parallel_executor"

    def __init__(self, config: ParallelConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_parallel_config(config), self.name)
        self.config = config
        if config.mode is ParallelMode.SECTIONING:
            self.branches: Dict[str, Workflow] = {
                label: as_workflow(branch, name=label)
                for label, branch in config.branches.items()
            }
            self.workflow: Optional[Workflow] = None
        else:
            self.branches = {}
            self.workflow = as_workflow(config.workflow)
        self.output_key = config.output_key or (
            "sections" if config.mode is ParallelMode.SECTIONING else "votes"
        )

    def _create_tasks(self) -> List[BranchTask]:
        if self.config.mode is ParallelMode.SECTIONING:
            return [
                BranchTask(label=label, index=i, workflow=workflow)
                for i, (label, workflow) in enumerate(self.branches.items())
            ]
        return [
            BranchTask(label=f"run-{i}", index=i, workflow=self.workflow)
            for i in range(self.config.n)
        ]

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        tasks = self._create_tasks()
        logger.info(
            f"[{self.name}] Dispatching {len(tasks)} branches "
            f"({self.config.mode.value}, max_concurrency={self.config.max_concurrency})"
        )

        start_time = time.time()
        await self._execute(tasks, context, cancel)
        duration = time.time() - start_time

        if cancel is not None and cancel.cancelled:
            raise CancelledByCaller(cancel.reason or "cancelled by caller")

        statistics = self._get_statistics(tasks, duration)
        logger.info(
            f"[{self.name}] All branches settled: {statistics['successful']}/{len(tasks)} "
            f"succeeded in {duration:.3f}s"
        )

        if self.config.mode is ParallelMode.SECTIONING:
            return self._aggregate_sections(tasks, context, statistics)
        return self._aggregate_votes(tasks, context, statistics)

    async def _execute(
        self,
        tasks: List[BranchTask],
        context: Context,
        cancel: Optional[CancellationToken]
    ):
        """Run every branch; returns only once all of them have settled."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency or max(len(tasks), 1))
        branch_cancel = CancellationToken()
        completion = itertools.count()

        watcher = None
        if cancel is not None:
            async def forward_cancel():
                await cancel.wait()
                branch_cancel.cancel(cancel.reason or "cancelled by caller")
            watcher = asyncio.ensure_future(forward_cancel())

        async def run_task(task: BranchTask):
            async with semaphore:
                if branch_cancel.cancelled:
                    task.status = TaskStatus.CANCELLED
                    task.result = StepResult.failed(
                        FailureKind.CANCELLED_BY_CALLER,
                        branch_cancel.reason,
                        context=context
                    )
                    task.completion_order = next(completion)
                    return

                task.status = TaskStatus.RUNNING
                task.start_time = time.time()
                logger.debug(f"[{self.name}] Branch {task.label} started")

                task.result = await self._run_branch(task, context.fork(), branch_cancel)

                task.end_time = time.time()
                task.completion_order = next(completion)
                if task.result.ok:
                    task.status = TaskStatus.COMPLETED
                elif task.result.failure is FailureKind.CANCELLED_BY_CALLER:
                    task.status = TaskStatus.CANCELLED
                else:
                    task.status = TaskStatus.FAILED
                    logger.warning(
                        f"[{self.name}] Branch {task.label} failed: "
                        f"{task.result.failure.value} - {task.result.reason}"
                    )
                    if self.config.cancel_siblings_on_failure:
                        branch_cancel.cancel(f"sibling branch {task.label} failed")

        try:
            await asyncio.gather(*(run_task(task) for task in tasks))
        finally:
            if watcher is not None:
                watcher.cancel()

    async def _run_branch(
        self,
        task: BranchTask,
        context: Context,
        branch_cancel: CancellationToken
    ) -> StepResult:
        timeout = self.config.branch_timeout
        try:
            return await run_cancellable(
                task.workflow.run(context, branch_cancel),
                branch_cancel,
                timeout
            )
        except CancelledByCaller as e:
            return StepResult.failed(FailureKind.CANCELLED_BY_CALLER, e.reason, context=context)
        except asyncio.TimeoutError:
            return StepResult.failed(
                FailureKind.CAPABILITY_TIMEOUT,
                f"branch {task.label} timed out after {timeout}s",
                context=context
            )
        except Exception as e:
            logger.error(
                f"[{self.name}] Branch {task.label} raised {type(e).__name__}: {e}",
                exc_info=True
            )
            return StepResult.failed(
                FailureKind.UNEXPECTED_ERROR,
                f"{type(e).__name__}: {e}",
                context=context
            )

    def _aggregate_sections(
        self,
        tasks: List[BranchTask],
        context: Context,
        statistics: Dict[str, Any]
    ) -> StepResult:
        sectioned = SectionedResult(outcomes={task.label: task.result for task in tasks})
        failed = [label for label, r in sectioned.outcomes.items() if not r.ok]
        return StepResult.success(
            sectioned,
            context=context.append(self.output_key, sectioned.succeeded),
            failed=failed,
            succeeded=[label for label in sectioned.outcomes if label not in failed],
            statistics=statistics
        )

    def _aggregate_votes(
        self,
        tasks: List[BranchTask],
        context: Context,
        statistics: Dict[str, Any]
    ) -> StepResult:
        result = self.config.reducer.reduce(tasks, context)
        if not result.ok:
            return result.with_context(context).with_metadata(statistics=statistics)
        logger.info(f"[{self.name}] Vote reduced: {result.metadata}")
        return StepResult.success(
            result.payload,
            context=context.append(self.output_key, result.payload),
            statistics=statistics,
            **result.metadata
        )

    def _get_statistics(self, tasks: List[BranchTask], duration: float) -> Dict[str, Any]:
        """Get execution statistics."""
        durations = [t.duration() for t in tasks if t.end_time is not None]
        successful = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
        return {
            "total_tasks": len(tasks),
            "successful": successful,
            "failed": sum(1 for t in tasks if t.status is TaskStatus.FAILED),
            "cancelled": sum(1 for t in tasks if t.status is TaskStatus.CANCELLED),
            "avg_task_duration": sum(durations) / len(durations) if durations else 0,
            "max_task_duration": max(durations) if durations else 0,
            "min_task_duration": min(durations) if durations else 0,
            "parallel_efficiency": self._calculate_efficiency(durations, duration),
        }

    def _calculate_efficiency(self, durations: List[float], wall_time: float) -> float:
        """Sum of branch durations over wall-clock time (1.0 = sequential)."""
        if wall_time <= 0 or not durations:
            return 0.0
        return sum(durations) / wall_time
