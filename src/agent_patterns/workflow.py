"""
Workflow - the common interface every pattern implements.

Anything with `async run(context, cancel) -> StepResult` is a workflow, so a
chain step, a router branch, a parallel branch or an orchestrator's worker
can each be any other component.

WorkflowBase provides the shared run() boundary: cancellation check on
entry, metrics, and conversion of raised errors into tagged results.
Subclasses implement `_run()`.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from .context import Context, StepResult
from .control import CancellationToken
from .error_context import create_failure_context
from .errors import FailureKind, PatternError
from .logging_config import get_logger
from .metrics import get_metrics_collector

logger = get_logger("workflow")


@runtime_checkable
class Workflow(Protocol):
    """A composable unit of work."""

    async def run(
        self,
        context: Context,
        cancel: Optional[CancellationToken] = None
    ) -> StepResult:
        ...


class WorkflowBase:
    """
    Mixin providing the standard run() boundary.

    Subclasses override `_run()` and may raise PatternError subclasses to
    report a tagged failure. Any other exception is logged and reported as
    UNEXPECTED_ERROR; asyncio.CancelledError always propagates.
    """

    component = "workflow"

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.component

    async def run(
        self,
        context: Optional[Context] = None,
        cancel: Optional[CancellationToken] = None
    ) -> StepResult:
        context = context if context is not None else Context()
        collector = get_metrics_collector()
        run_metrics = collector.start_run(self.component)

        try:
            result = await self._guarded_run(context, cancel)
            collector.finish_run(
                run_metrics.run_id,
                result.ok,
                result.failure.value if result.failure else None
            )
        finally:
            # no-op once finished; drops the record when the task is cancelled
            collector.discard_run(run_metrics.run_id)

        if not result.ok and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Failure context:\n{create_failure_context(result, self.name).format()}")

        return result

    async def _guarded_run(
        self,
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> StepResult:
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            return await self._run(context, cancel)
        except PatternError as e:
            return StepResult.failed(
                e.kind,
                e.reason,
                payload=e.payload,
                context=e.context if e.context is not None else context,
                **e.metadata
            )
        except Exception as e:
            logger.error(
                f"[{self.name}] Unexpected error: {type(e).__name__}: {e}",
                exc_info=True
            )
            return StepResult.failed(
                FailureKind.UNEXPECTED_ERROR,
                f"{type(e).__name__}: {e}",
                context=context
            )

    async def _run(
        self,
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> StepResult:
        raise NotImplementedError(
            f"{self.__class__.__name__} must implement _run"
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class FunctionWorkflow(WorkflowBase):
    """
    Adapt a plain function into a workflow.

    The function receives the Context and may be sync or async. Returning a
    StepResult passes it through (its context defaults to the input one);
    any other value becomes a success payload, appended under `output_key`
    when one is given.
    """

    component = "function"

    def __init__(
        self,
        func: Callable[[Context], Union[Any, Awaitable[Any]]],
        name: Optional[str] = None,
        output_key: Optional[str] = None
    ):
        super().__init__(name or getattr(func, "__name__", "function"))
        self.func = func
        self.output_key = output_key

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        value = self.func(context)
        if inspect.isawaitable(value):
            value = await value

        if isinstance(value, StepResult):
            if not value.context:
                value = value.with_context(context)
            return value

        new_context = context.append(self.output_key, value) if self.output_key else context
        return StepResult.success(value, context=new_context)


def as_workflow(obj: Any, name: Optional[str] = None) -> Workflow:
    """Return `obj` if it is a workflow, else wrap a callable."""
    if isinstance(obj, Workflow):
        return obj
    if callable(obj):
        return FunctionWorkflow(obj, name=name)
    raise TypeError(f"Not a workflow or callable: {obj!r}")


def workflow_name(obj: Any) -> str:
    return getattr(obj, "name", None) or obj.__class__.__name__
