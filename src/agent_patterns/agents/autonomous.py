"""
Autonomous Agent Loop - decide, act, observe, until a bound or the goal.

Each cycle the decision workflow proposes an Action: invoke something in the
environment, ask the human collaborator, or declare the task done. The
environment's Observation (ground truth, including failures) is folded back
into the context for the next decision.

The StopCondition is checked before every entry into DECIDING, so the loop
terminates even if the decision step never declares done: with
max_steps=m the loop runs exactly m cycles at most.
"""

import asyncio
import copy
import inspect
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from ..context import Context, StepResult
from ..control import CancellationToken, StopCondition, StopReason, run_cancellable
from ..errors import CancelledByCaller, EscalationTimedOut, FailureKind
from ..gates import GateDecision
from ..logging_config import get_logger
from ..validation import raise_for_validation, validate_agent_loop_config
from ..workflow import Workflow, WorkflowBase, as_workflow

logger = get_logger("autonomous")


class ActionKind(Enum):
    INVOKE_ENVIRONMENT = "invoke_environment"
    REQUEST_HUMAN_INPUT = "request_human_input"
    DECLARE_DONE = "declare_done"


@dataclass
class Action:
    """A decision: one environment call, one question, or completion."""
    kind: ActionKind
    name: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    question: Optional[str] = None

    @classmethod
    def invoke(cls, name: str, arguments: Optional[Mapping[str, Any]] = None) -> "Action":
        return cls(ActionKind.INVOKE_ENVIRONMENT, name=name, arguments=dict(arguments or {}))

    @classmethod
    def ask(cls, question: str) -> "Action":
        return cls(ActionKind.REQUEST_HUMAN_INPUT, question=question)

    @classmethod
    def done(cls, result: Any = None) -> "Action":
        return cls(ActionKind.DECLARE_DONE, result=result)


def parse_action(raw: Any) -> Action:
    """
    Turn decision output into an Action.

    Accepts an Action, a mapping with a "kind" key, or its JSON text.

    Raises:
        ValueError: If the output does not describe an action
    """
    if isinstance(raw, Action):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"action is not valid JSON: {e}") from e
    if not isinstance(raw, Mapping) or "kind" not in raw:
        raise ValueError(f"not an action: {raw!r}")
    return Action(
        kind=ActionKind(raw["kind"]),
        name=raw.get("name"),
        arguments=dict(raw.get("arguments") or {}),
        result=raw.get("result"),
        question=raw.get("question")
    )


@dataclass
class Observation:
    """What the environment reported after an action."""
    success: bool
    detail: str = ""
    data: Any = None
    action: Optional[Action] = None

    @classmethod
    def failure(cls, detail: str, action: Optional[Action] = None) -> "Observation":
        return cls(False, detail=detail, action=action)


class Environment(Protocol):
    def list_available_actions(self, context: Context) -> Sequence[str]:
        ...

    async def apply(self, action: Action) -> Observation:
        ...


@dataclass
class HumanResponse:
    guidance: Any = None
    give_up: bool = False


@dataclass
class EscalationEvent:
    """One consultation of the human collaborator."""
    reason: str
    question: Optional[str] = None
    step: int = 0
    response: Optional[HumanResponse] = None
    folded_key: Optional[str] = None


class HumanInterface(Protocol):
    async def request_guidance(self, event: EscalationEvent) -> HumanResponse:
        ...


class LoopState(Enum):
    DECIDING = "deciding"
    ACTING = "acting"
    OBSERVING = "observing"
    ESCALATING = "escalating"
    DONE = "done"
    STOPPED_BY_BOUND = "stopped_by_bound"


class RepeatedFailureDetector:
    """Reports the loop as stuck after `threshold` consecutive failed observations."""

    def __init__(self, threshold: int = 3):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1 (got {threshold})")
        self.threshold = threshold
        self._consecutive = 0

    def observe(self, observation: Observation) -> Optional[str]:
        if observation.success:
            self._consecutive = 0
            return None
        self._consecutive += 1
        if self._consecutive >= self.threshold:
            return f"{self._consecutive} consecutive failed observations"
        return None

    def reset(self):
        self._consecutive = 0


def latest_observation(context: Context) -> Any:
    observation = context.latest("observations")
    return observation.data if observation is not None else None


DoneCheck = Callable[[Action, Context], Union[bool, GateDecision]]
ObservationFolder = Callable[[Action, Observation, Context], Context]


@dataclass
class AgentLoopConfig:
    """
    Configuration for AutonomousAgentLoop.

    Attributes:
        decide: Workflow whose payload is the next Action
        environment: Where actions are applied
        human: Human collaborator consulted on escalation (optional)
        stop: Bounds checked before every decision
        stuck_detector: Triggers an escalation when the loop stops progressing;
            each run works on its own copy
        escalation_timeout: Seconds to wait for human guidance (None: no limit)
        accept_done: May veto a declare-done; a veto is fed back as a failed
            observation
        partial_result: Best partial artifact, returned when a bound stops the loop
        action_parser: Turns decision payloads into Actions
        observation_folder: Folds extra state from an observation into the context
    """
    decide: Any = None
    environment: Optional[Environment] = None
    human: Optional[HumanInterface] = None
    stop: StopCondition = field(default_factory=StopCondition)
    stuck_detector: Optional[RepeatedFailureDetector] = None
    escalation_timeout: Optional[float] = None
    accept_done: Optional[DoneCheck] = None
    partial_result: Callable[[Context], Any] = latest_observation
    action_parser: Callable[[Any], Action] = parse_action
    observation_folder: Optional[ObservationFolder] = None


class _LoopRun:
    """Mutable bookkeeping for one run of the loop."""

    def __init__(self, context: Context, detector: Optional[RepeatedFailureDetector] = None):
        self.context = context
        self.state = LoopState.DECIDING
        self.steps = 0
        self.escalations: List[EscalationEvent] = []
        self.exhausted = False
        self.detector = copy.copy(detector)
        if self.detector is not None:
            self.detector.reset()

    def metadata(self, **extra: Any) -> Dict[str, Any]:
        data = {
            "steps": self.steps,
            "escalations": list(self.escalations),
            "state": self.state.value,
        }
        data.update(extra)
        return data


class AutonomousAgentLoop(WorkflowBase):
    """Bounded decide/act/observe loop with human escalation."""

    component = "autonomous_agent"

    def __init__(self, config: AgentLoopConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_agent_loop_config(config), self.name)
        self.config = config
        self.decide: Workflow = as_workflow(config.decide, name="decide")
        self.environment = config.environment

    def _transition(self, run: _LoopRun, state: LoopState):
        logger.debug(f"[{self.name}] step {run.steps}: {run.state.value} -> {state.value}")
        run.state = state

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        stop = self.config.stop
        token = cancel or stop.cancel
        run = _LoopRun(context, self.config.stuck_detector)

        logger.info(
            f"[{self.name}] Starting loop (max_steps={stop.max_steps}, "
            f"max_escalations={stop.max_escalations})"
        )

        try:
            while True:
                reason = stop.check(run.steps, run.context, run.exhausted)
                if reason is None and cancel is not None and cancel.cancelled:
                    reason = StopReason.CANCELLED
                if reason is not None:
                    return self._finish(run, reason, token)

                self._transition(run, LoopState.DECIDING)
                decision = await self.decide.run(run.context, token)
                if decision.failure is FailureKind.CANCELLED_BY_CALLER:
                    return self._finish(run, StopReason.CANCELLED, token)
                if not decision.ok:
                    logger.warning(f"[{self.name}] Decision failed: {decision.reason}")
                    return StepResult.failed(
                        decision.failure,
                        decision.reason,
                        payload=self.config.partial_result(run.context),
                        context=run.context,
                        **run.metadata(stage="decide")
                    )

                run.context = decision.context
                run.steps += 1

                try:
                    action = self.config.action_parser(decision.payload)
                except (ValueError, TypeError, KeyError) as e:
                    await self._observe(run, None, Observation.failure(f"unparseable action: {e}"), token)
                    continue

                if action.kind is ActionKind.DECLARE_DONE:
                    verdict = self._check_done(action, run.context)
                    if verdict.accepted:
                        self._transition(run, LoopState.DONE)
                        logger.info(f"[{self.name}] Done after {run.steps} steps")
                        return StepResult.success(
                            action.result,
                            context=run.context,
                            **run.metadata(stop_reason=StopReason.GOAL_REACHED.value)
                        )
                    logger.info(f"[{self.name}] Declare-done vetoed: {verdict.reason}")
                    await self._observe(
                        run, action,
                        Observation.failure(verdict.reason or "completion rejected", action),
                        token
                    )
                elif action.kind is ActionKind.REQUEST_HUMAN_INPUT:
                    await self._escalate(run, "guidance requested", action.question, token)
                else:
                    self._transition(run, LoopState.ACTING)
                    observation = await self._act(action, run.context, token)
                    await self._observe(run, action, observation, token)

        except CancelledByCaller:
            return self._finish(run, StopReason.CANCELLED, token)

    def _check_done(self, action: Action, context: Context) -> GateDecision:
        if self.config.accept_done is None:
            return GateDecision.accept()
        verdict = self.config.accept_done(action, context)
        if isinstance(verdict, GateDecision):
            return verdict
        return GateDecision.accept() if verdict else GateDecision.reject("completion vetoed")

    async def _act(
        self,
        action: Action,
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> Observation:
        available = self.environment.list_available_actions(context)
        if inspect.isawaitable(available):
            available = await available
        if action.name not in available:
            return Observation.failure(
                f"action {action.name!r} is not available ({', '.join(available)})",
                action
            )

        try:
            observation = await run_cancellable(self.environment.apply(action), cancel)
        except CancelledByCaller:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] Environment raised on {action.name}: {type(e).__name__}: {e}")
            return Observation.failure(f"{type(e).__name__}: {e}", action)

        if observation.action is None:
            observation.action = action
        return observation

    async def _observe(
        self,
        run: _LoopRun,
        action: Optional[Action],
        observation: Observation,
        cancel: Optional[CancellationToken]
    ):
        self._transition(run, LoopState.OBSERVING)
        run.context = run.context.append("observations", observation)
        if action is not None:
            run.context = run.context.append("actions", action)
            if self.config.observation_folder is not None:
                run.context = self.config.observation_folder(action, observation, run.context)

        if not observation.success:
            logger.info(f"[{self.name}] Step {run.steps} observation failed: {observation.detail}")

        if run.detector is not None:
            stuck = run.detector.observe(observation)
            if stuck:
                await self._escalate(run, stuck, observation.detail or None, cancel)

    async def _escalate(
        self,
        run: _LoopRun,
        reason: str,
        question: Optional[str],
        cancel: Optional[CancellationToken]
    ):
        human = self.config.human
        if human is None or len(run.escalations) >= self.config.stop.max_escalations:
            logger.warning(f"[{self.name}] Cannot escalate ({reason}); escalation budget exhausted")
            run.exhausted = True
            return

        self._transition(run, LoopState.ESCALATING)
        event = EscalationEvent(reason=reason, question=question, step=run.steps)
        logger.info(f"[{self.name}] Escalating at step {run.steps}: {reason}")

        timeout = self.config.escalation_timeout
        try:
            response = await run_cancellable(human.request_guidance(event), cancel, timeout)
        except asyncio.TimeoutError:
            run.escalations.append(event)
            raise EscalationTimedOut(
                f"no human response within {timeout}s",
                payload=self.config.partial_result(run.context),
                context=run.context,
                **run.metadata()
            )

        event.response = response
        run.escalations.append(event)

        if response.give_up:
            logger.info(f"[{self.name}] Human gave up at step {run.steps}")
            run.exhausted = True
            return

        event.folded_key = "guidance"
        run.context = run.context.append("guidance", response.guidance)
        if run.detector is not None:
            run.detector.reset()

    def _finish(
        self,
        run: _LoopRun,
        reason: StopReason,
        cancel: Optional[CancellationToken]
    ) -> StepResult:
        partial = self.config.partial_result(run.context)

        if reason is StopReason.GOAL_REACHED:
            self._transition(run, LoopState.DONE)
            logger.info(f"[{self.name}] Goal reached after {run.steps} steps")
            return StepResult.success(
                partial,
                context=run.context,
                **run.metadata(stop_reason=reason.value)
            )

        self._transition(run, LoopState.STOPPED_BY_BOUND)

        if reason is StopReason.CANCELLED:
            logger.info(f"[{self.name}] Cancelled after {run.steps} steps")
            return StepResult.failed(
                FailureKind.CANCELLED_BY_CALLER,
                (cancel.reason if cancel is not None else None) or "cancelled by caller",
                context=run.context,
                **run.metadata(stop_reason=reason.value)
            )

        logger.warning(f"[{self.name}] Stopped by bound ({reason.value}) after {run.steps} steps")
        return StepResult.failed(
            FailureKind.STOPPED_BY_BOUND,
            f"stopped by bound: {reason.value}",
            payload=partial,
            context=run.context,
            **run.metadata(stop_reason=reason.value)
        )
