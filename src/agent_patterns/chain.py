"""
Chain Executor - prompt chaining with gates.

Runs an ordered sequence of steps on a single path. Each step receives the
context produced by the previous one. After a step, its gate (if any) is
evaluated; a rejection halts the chain immediately with GATE_REJECTED and
the index of the failing step. Later steps are never invoked.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from .context import Context, StepResult
from .control import CancellationToken
from .errors import GateRejected
from .gates import as_gate
from .logging_config import get_logger
from .validation import raise_for_validation, validate_chain_config
from .workflow import WorkflowBase, as_workflow, workflow_name

logger = get_logger("chain")


@dataclass
class ChainStep:
    """One step of a chain: a workflow and an optional gate."""
    workflow: Any
    gate: Optional[Any] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.workflow = as_workflow(self.workflow)
        self.gate = as_gate(self.gate)
        if self.name is None:
            self.name = workflow_name(self.workflow)


@dataclass
class ChainConfig:
    """Configuration for ChainExecutor."""
    steps: Sequence[Any] = field(default_factory=list)


def _as_step(step: Any) -> ChainStep:
    if isinstance(step, ChainStep):
        return step
    if isinstance(step, tuple):
        return ChainStep(*step)
    return ChainStep(step)


class ChainExecutor(WorkflowBase):
    """
    Sequential, gated execution of workflow steps.

    Deterministic: for a fixed provider and inputs the sequence of steps
    invoked is identical across runs.
    """

    component = "chain"

    def __init__(self, config: ChainConfig, name: Optional[str] = None):
        super().__init__(name)
        self.config = config
        self.steps: List[ChainStep] = [_as_step(s) for s in config.steps]
        raise_for_validation(validate_chain_config(self.steps), self.name)

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        total = len(self.steps)
        logger.info(f"[{self.name}] Starting chain: {total} steps")

        result: Optional[StepResult] = None
        for index, step in enumerate(self.steps):
            if cancel is not None:
                cancel.raise_if_cancelled()

            logger.info(f"[{self.name}] Step {index + 1}/{total}: {step.name}")
            result = await step.workflow.run(context, cancel)

            if not result.ok:
                logger.warning(
                    f"[{self.name}] Step {index} ({step.name}) failed: "
                    f"{result.failure.value} - {result.reason}"
                )
                return result.with_metadata(step_index=index, step=step.name)

            context = result.context

            if step.gate is not None:
                decision = step.gate(result, context)
                if not decision.accepted:
                    logger.warning(
                        f"[{self.name}] Gate {step.gate.name} rejected step {index}: {decision.reason}"
                    )
                    raise GateRejected(
                        decision.reason or f"gate rejected step {index}",
                        payload=result.payload,
                        context=context,
                        step_index=index,
                        step=step.name,
                        gate=step.gate.name
                    )

        logger.info(f"[{self.name}] Chain completed: {total} steps")
        payload = result.payload if result is not None else None
        return StepResult.success(payload, context=context, steps=total)


def chain(*steps: Any, name: Optional[str] = None) -> ChainExecutor:
    """Shorthand: chain(step, (step, gate), ChainStep(...))."""
    return ChainExecutor(ChainConfig(steps=list(steps)), name=name)


__all__ = ["ChainStep", "ChainConfig", "ChainExecutor", "chain"]
