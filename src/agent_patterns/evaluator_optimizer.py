"""
Evaluator-Optimizer Loop - generate, evaluate, refine.

Strict alternation between a generator and an evaluator. Each rejected
evaluation folds its feedback into the context and the generator tries
again, up to max_iterations. Exhaustion returns MAX_ITERATIONS_EXCEEDED with
the best artifact seen so far.
"""

from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any, Callable, List, Optional, Tuple

from .context import Context, StepResult
from .control import CancellationToken
from .errors import FailureKind
from .gates import Gate, GateDecision, as_gate
from .logging_config import get_logger
from .validation import raise_for_validation, validate_optimizer_config
from .workflow import Workflow, WorkflowBase, as_workflow

logger = get_logger("evaluator_optimizer")


class OptimizerState(Enum):
    """Loop states."""
    GENERATE = "generate"
    EVALUATE = "evaluate"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


def default_score(evaluation: StepResult) -> Optional[float]:
    score = evaluation.metadata.get("score")
    if score is None and isinstance(evaluation.payload, dict):
        score = evaluation.payload.get("score")
    return score


def default_feedback(evaluation: StepResult, decision: GateDecision) -> Any:
    feedback = evaluation.metadata.get("feedback")
    if feedback is None and isinstance(evaluation.payload, dict):
        feedback = evaluation.payload.get("feedback")
    return feedback if feedback is not None else decision.reason


@dataclass
class OptimizerConfig:
    """
    Configuration for EvaluatorOptimizerLoop.

    Attributes:
        generator: Workflow producing a candidate artifact
        evaluator: Workflow judging the latest artifact
        gate: Acceptance gate over the evaluator's result (default:
            metadata["accepted"] is truthy)
        max_iterations: Maximum generate/evaluate alternations
        score: Extracts a comparable score from an evaluation
        feedback: Extracts feedback from a rejected evaluation
        artifact_key: Context key each candidate is appended to
        feedback_key: Context key each piece of feedback is appended to
    """
    generator: Any = None
    evaluator: Any = None
    gate: Optional[Any] = None
    max_iterations: int = 3
    score: Callable[[StepResult], Optional[float]] = default_score
    feedback: Callable[[StepResult, GateDecision], Any] = default_feedback
    artifact_key: str = "artifacts"
    feedback_key: str = "feedback"


def _best_artifact(evaluated: List[Tuple[Any, Optional[float]]]) -> Any:
    """Highest-scored artifact when every score is comparable, else the last."""
    if not evaluated:
        return None
    scores = [score for _, score in evaluated]
    if all(isinstance(s, Real) for s in scores):
        best_index = max(range(len(scores)), key=lambda i: (scores[i], -i))
        return evaluated[best_index][0]
    return evaluated[-1][0]


class EvaluatorOptimizerLoop(WorkflowBase):
    """Bounded generate/evaluate refinement loop."""

    component = "evaluator_optimizer"

    def __init__(self, config: OptimizerConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_optimizer_config(config), self.name)
        self.config = config
        self.generator: Workflow = as_workflow(config.generator, name="generator")
        self.evaluator: Workflow = as_workflow(config.evaluator, name="evaluator")
        self.gate: Gate = as_gate(config.gate) or Gate.metadata_flag(
            "accepted", reason="evaluator did not accept the artifact"
        )

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        max_iterations = self.config.max_iterations
        history: List[Tuple[int, Optional[float], bool]] = []
        evaluated: List[Tuple[Any, Optional[float]]] = []
        iteration = 0

        while True:
            iteration += 1
            if cancel is not None:
                cancel.raise_if_cancelled()

            state = OptimizerState.GENERATE
            logger.info(f"[{self.name}] Iteration {iteration}/{max_iterations}: {state.value}")
            generated = await self.generator.run(context, cancel)
            if not generated.ok:
                return self._abort(generated, state, iteration, history, evaluated)

            artifact = generated.payload
            context = generated.context.append(self.config.artifact_key, artifact)

            if cancel is not None:
                cancel.raise_if_cancelled()

            state = OptimizerState.EVALUATE
            logger.debug(f"[{self.name}] Iteration {iteration}: {state.value}")
            evaluation = await self.evaluator.run(context, cancel)
            if not evaluation.ok:
                return self._abort(evaluation, state, iteration, history, evaluated)

            context = evaluation.context
            score = self.config.score(evaluation)
            decision = self.gate(evaluation, context)
            history.append((iteration, score, decision.accepted))
            evaluated.append((artifact, score))

            if decision.accepted:
                logger.info(f"[{self.name}] Accepted at iteration {iteration} (score={score})")
                return StepResult.success(
                    artifact,
                    context=context,
                    state=OptimizerState.ACCEPTED.value,
                    iterations=iteration,
                    score=score,
                    history=history
                )

            feedback = self.config.feedback(evaluation, decision)
            logger.info(f"[{self.name}] Rejected at iteration {iteration}: {decision.reason}")
            context = context.append(self.config.feedback_key, feedback)

            if iteration >= max_iterations:
                logger.warning(f"[{self.name}] Exhausted after {iteration} iterations")
                return StepResult.failed(
                    FailureKind.MAX_ITERATIONS_EXCEEDED,
                    f"no artifact accepted within {max_iterations} iterations",
                    payload=_best_artifact(evaluated),
                    context=context,
                    state=OptimizerState.EXHAUSTED.value,
                    iterations=iteration,
                    history=history
                )

    def _abort(
        self,
        result: StepResult,
        state: OptimizerState,
        iteration: int,
        history: List[Tuple[int, Optional[float], bool]],
        evaluated: List[Tuple[Any, Optional[float]]]
    ) -> StepResult:
        logger.warning(
            f"[{self.name}] {state.value} failed at iteration {iteration}: "
            f"{result.failure.value} - {result.reason}"
        )
        return StepResult.failed(
            result.failure,
            result.reason,
            payload=_best_artifact(evaluated),
            context=result.context,
            stage=state.value,
            iterations=iteration,
            history=history
        )
