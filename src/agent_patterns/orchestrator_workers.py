"""
Orchestrator-Workers - dynamic decomposition and synthesis.

An orchestrator workflow produces a WorkPlan at run time. Each WorkItem is
dispatched to the named worker over its own forked context (items are
independent, so no item sees another's output). The item's own context
values, `work_item` and `input` take precedence over the base context. A
worker that fails or raises is collected as a failed item. Once every item
has settled the synthesizer runs over the collected (WorkItem, StepResult)
pairs.

A plan that cannot be parsed, or that names an unknown worker, is reported
as PLAN_GENERATION_FAILED. There is no fallback plan.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .context import Context, StepResult
from .control import CancellationToken
from .errors import CancelledByCaller, FailureKind, PlanGenerationFailed
from .logging_config import get_logger
from .validation import raise_for_validation, validate_orchestrator_config
from .workflow import Workflow, WorkflowBase, as_workflow

logger = get_logger("orchestrator_workers")


@dataclass
class WorkItem:
    """A unit of work assigned to a named worker."""
    worker: str
    input: Any = None
    id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class WorkPlan:
    """Ordered work items; `sequential` forces one-at-a-time dispatch."""
    items: List[WorkItem] = field(default_factory=list)
    sequential: bool = False

    def __len__(self) -> int:
        return len(self.items)


def _item_from_dict(data: Mapping[str, Any]) -> WorkItem:
    if "worker" not in data:
        raise ValueError(f"work item has no 'worker': {data!r}")
    return WorkItem(
        worker=str(data["worker"]),
        input=data.get("input"),
        id=data.get("id"),
        context=dict(data.get("context") or {})
    )


def parse_plan(raw: Any) -> WorkPlan:
    """
    Build a WorkPlan from orchestrator output.

    Accepts a WorkPlan, a list of WorkItems or dicts, a dict with an
    "items" list (and optional "sequential" flag), or the JSON text of
    either of the latter two.

    Raises:
        ValueError: If the output is not a recognisable plan
    """
    if isinstance(raw, WorkPlan):
        return raw

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"plan is not valid JSON: {e}") from e

    sequential = False
    if isinstance(raw, Mapping):
        if "items" not in raw:
            raise ValueError("plan object has no 'items'")
        sequential = bool(raw.get("sequential", False))
        raw = raw["items"]

    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"plan must be a list of work items, got {type(raw).__name__}")

    items = []
    for entry in raw:
        if isinstance(entry, WorkItem):
            items.append(entry)
        elif isinstance(entry, Mapping):
            items.append(_item_from_dict(entry))
        else:
            raise ValueError(f"unrecognised work item: {entry!r}")

    return WorkPlan(items=items, sequential=sequential)


@dataclass
class OrchestratorWorkersConfig:
    """
    Configuration for OrchestratorWorkers.

    Attributes:
        orchestrator: Workflow whose payload is the plan
        workers: Worker name -> workflow
        synthesizer: Workflow combining the work results
        plan_parser: Turns the orchestrator payload into a WorkPlan
        max_concurrency: Items in flight at once (None: unbounded)
        sequential: Force sequential dispatch regardless of the plan
        results_key: Context key the synthesizer reads results from
    """
    orchestrator: Any = None
    workers: Mapping[str, Any] = field(default_factory=dict)
    synthesizer: Any = None
    plan_parser: Callable[[Any], WorkPlan] = parse_plan
    max_concurrency: Optional[int] = 4
    sequential: bool = False
    results_key: str = "work_results"


class OrchestratorWorkers(WorkflowBase):
    """Plan, dispatch to workers, then synthesize."""

    component = "orchestrator_workers"

    def __init__(self, config: OrchestratorWorkersConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_orchestrator_config(config), self.name)
        self.config = config
        self.orchestrator: Workflow = as_workflow(config.orchestrator, name="orchestrator")
        self.synthesizer: Workflow = as_workflow(config.synthesizer, name="synthesizer")
        self.workers: Dict[str, Workflow] = {
            name: as_workflow(worker, name=name) for name, worker in config.workers.items()
        }

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        plan = await self._plan(context, cancel)
        sequential = self.config.sequential or plan.sequential

        logger.info(
            f"[{self.name}] Dispatching {len(plan)} work items "
            f"({'sequential' if sequential else 'concurrent'})"
        )
        start_time = time.time()

        if sequential:
            results = await self._dispatch_sequential(plan.items, context, cancel)
        else:
            results = await self._dispatch_concurrent(plan.items, context, cancel)

        if cancel is not None:
            cancel.raise_if_cancelled()

        failed = [item.id for item, result in results if not result.ok]
        logger.info(
            f"[{self.name}] All {len(results)} items settled in {time.time() - start_time:.3f}s "
            f"({len(failed)} failed); synthesizing"
        )

        synthesis_context = context.extend(self.config.results_key, results)
        synthesized = await self.synthesizer.run(synthesis_context, cancel)
        if not synthesized.ok:
            logger.warning(f"[{self.name}] Synthesizer failed: {synthesized.reason}")
            synthesized = synthesized.with_metadata(stage="synthesize")
        return synthesized.with_metadata(plan_size=len(plan), failed_items=failed)

    async def _plan(self, context: Context, cancel: Optional[CancellationToken]) -> WorkPlan:
        planned = await self.orchestrator.run(context, cancel)
        if planned.failure is FailureKind.CANCELLED_BY_CALLER:
            raise CancelledByCaller(planned.reason or "cancelled by caller")
        if not planned.ok:
            raise PlanGenerationFailed(
                f"orchestrator failed: {planned.failure.value} - {planned.reason}",
                context=context,
                cause=planned.failure.value
            )

        try:
            plan = self.config.plan_parser(planned.payload)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"[{self.name}] Unparseable plan: {e}")
            raise PlanGenerationFailed(f"unparseable plan: {e}", payload=planned.payload, context=context)

        unknown = sorted({item.worker for item in plan.items if item.worker not in self.workers})
        if unknown:
            raise PlanGenerationFailed(
                f"plan names unknown workers: {', '.join(unknown)}",
                payload=planned.payload,
                context=context,
                unknown_workers=unknown
            )

        for index, item in enumerate(plan.items):
            if item.id is None:
                item.id = f"item-{index}"

        return plan

    def _item_context(self, item: WorkItem, context: Context) -> Context:
        """Fork of the base context; the item's own values win on shared keys."""
        data = context.fork().to_dict()
        data.update(item.context)
        for key, value in (("work_item", item), ("input", item.input)):
            current = data.get(key, ())
            data[key] = (current if isinstance(current, tuple) else ()) + (value,)
        return Context(data)

    async def _run_item(
        self,
        item: WorkItem,
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> StepResult:
        logger.debug(f"[{self.name}] Item {item.id} -> {item.worker}")
        try:
            result = await self.workers[item.worker].run(self._item_context(item, context), cancel)
        except CancelledByCaller:
            raise
        except Exception as e:
            logger.error(
                f"[{self.name}] Item {item.id} ({item.worker}) raised {type(e).__name__}: {e}",
                exc_info=True
            )
            return StepResult.failed(FailureKind.UNEXPECTED_ERROR, f"{type(e).__name__}: {e}", context=context)
        if not result.ok:
            logger.warning(
                f"[{self.name}] Item {item.id} ({item.worker}) failed: "
                f"{result.failure.value} - {result.reason}"
            )
        return result

    async def _dispatch_sequential(
        self,
        items: Sequence[WorkItem],
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> List[Tuple[WorkItem, StepResult]]:
        results = []
        for item in items:
            if cancel is not None:
                cancel.raise_if_cancelled()
            results.append((item, await self._run_item(item, context, cancel)))
        return results

    async def _dispatch_concurrent(
        self,
        items: Sequence[WorkItem],
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> List[Tuple[WorkItem, StepResult]]:
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrency or len(items))

        async def run_bounded(item: WorkItem) -> Tuple[WorkItem, StepResult]:
            async with semaphore:
                if cancel is not None and cancel.cancelled:
                    raise CancelledByCaller(cancel.reason or "cancelled by caller")
                return item, await self._run_item(item, context, cancel)

        # Only cancellation escapes _run_item; every item settles before re-raising.
        settled = await asyncio.gather(*(run_bounded(item) for item in items), return_exceptions=True)

        results = []
        for item, outcome in zip(items, settled):
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results
