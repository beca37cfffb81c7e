"""
Coding Agent Controller - clarify, execute, complete.

Phases:
1. CLARIFY: the clarifier restates the requirements until the
   requirements_clear gate accepts them, consulting the human on each
   rejection. Exhausting max_clarify_rounds reports REQUIREMENTS_UNRESOLVED.
2. EXECUTE: an AutonomousAgentLoop over the codebase. Relevant files are
   searched once up front; the loop edits and runs tests, and cannot declare
   done until the latest test run passed.
3. COMPLETE: always reached after EXECUTE. Produces a CodingReport whose
   summary is rendered with rich.
"""

import asyncio
import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence

from rich.console import Console
from rich.table import Table

from ..context import Context, StepResult
from ..control import CancellationToken, StopCondition, run_cancellable
from ..errors import CancelledByCaller, EscalationTimedOut, FailureKind, RequirementsUnresolved
from ..gates import Gate, as_gate
from ..logging_config import get_logger
from ..validation import raise_for_validation, validate_coding_config
from ..workflow import Workflow, WorkflowBase, as_workflow
from .autonomous import (
    Action,
    AgentLoopConfig,
    AutonomousAgentLoop,
    EscalationEvent,
    HumanInterface,
    Observation,
    RepeatedFailureDetector,
)

logger = get_logger("coding_agent")


class CodingPhase(Enum):
    CLARIFY = "clarify"
    EXECUTE = "execute"
    COMPLETE = "complete"


@dataclass
class TestReport:
    """Outcome of one test run."""
    __test__ = False

    passed: bool
    total: int = 0
    failures: int = 0
    output: str = ""


class CodingToolkit(Protocol):
    async def search_files(self, query: str) -> Sequence[str]:
        ...

    async def apply_edit(self, edit: Any) -> Any:
        ...

    async def run_tests(self) -> TestReport:
        ...


class CodingEnvironment:
    """Environment exposing a CodingToolkit as loop actions."""

    ACTIONS = ("apply_edit", "run_tests")

    def __init__(self, toolkit: CodingToolkit):
        self.toolkit = toolkit

    def list_available_actions(self, context: Context) -> Sequence[str]:
        return self.ACTIONS

    async def apply(self, action: Action) -> Observation:
        if action.name == "apply_edit":
            edit = action.arguments.get("edit", action.arguments)
            result = await self.toolkit.apply_edit(edit)
            return Observation(True, detail=str(result) if result else "edit applied", data=edit)

        if action.name == "run_tests":
            report = await self.toolkit.run_tests()
            detail = "tests passed" if report.passed else (report.output or f"{report.failures} failures")
            return Observation(report.passed, detail=detail, data=report)

        return Observation.failure(f"unknown coding action {action.name!r}", action)


def latest_test_report(context: Context) -> Optional[TestReport]:
    return context.latest("test_reports")


def tests_passed(context: Context) -> bool:
    report = latest_test_report(context)
    return report is not None and report.passed


def fold_coding_observation(action: Action, observation: Observation, context: Context) -> Context:
    """Fold edits and test reports under their own keys."""
    if not observation.success and action.name != "run_tests":
        return context
    if action.name == "apply_edit":
        return context.append("edits", observation.data)
    if action.name == "run_tests":
        return context.append("test_reports", observation.data)
    return context


def accept_when_tests_pass(action: Action, context: Context) -> bool:
    return tests_passed(context)


@dataclass
class CodingReport:
    """Final report of a coding task."""
    status: str
    edits: List[Any] = field(default_factory=list)
    test_report: Optional[TestReport] = None
    attempts: int = 0
    summary: str = ""


def render_summary(report: CodingReport, requirements: Any = None) -> str:
    """Render the report as a plain-text table."""
    console = Console(record=True, width=100, file=io.StringIO())

    table = Table(title="Coding Task", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    if requirements is not None:
        table.add_row("Requirements", str(requirements))
    table.add_row("Status", report.status)
    table.add_row("Attempts", str(report.attempts))
    table.add_row("Edits", str(len(report.edits)))
    if report.test_report is not None:
        tests = report.test_report
        table.add_row(
            "Tests",
            f"{'passed' if tests.passed else 'failed'} ({tests.total} run, {tests.failures} failures)"
        )
    else:
        table.add_row("Tests", "not run")

    console.print(table)
    return console.export_text()


@dataclass
class CodingAgentConfig:
    """
    Configuration for CodingAgentController.

    Attributes:
        clarifier: Workflow restating the task's requirements
        requirements_clear: Gate over the clarifier result (default:
            metadata["clear"] is truthy)
        human: Answers clarifying questions and escalations
        decide: Decision workflow for the execution loop
        toolkit: File search, edit and test execution
        max_clarify_rounds: Clarifier attempts before REQUIREMENTS_UNRESOLVED
        max_attempts: Execution-loop cycles
        max_escalations: Escalations allowed during execution
        escalation_timeout: Seconds to wait for the human (None: no limit)
        stuck_threshold: Consecutive failed observations before escalating
    """
    clarifier: Any = None
    requirements_clear: Optional[Any] = None
    human: Optional[HumanInterface] = None
    decide: Any = None
    toolkit: Optional[CodingToolkit] = None
    max_clarify_rounds: int = 3
    max_attempts: int = 20
    max_escalations: int = 3
    escalation_timeout: Optional[float] = None
    stuck_threshold: int = 3


class CodingAgentController(WorkflowBase):
    """Clarify -> Execute -> Complete state machine for coding tasks."""

    component = "coding_agent"

    def __init__(self, config: CodingAgentConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_coding_config(config), self.name)
        self.config = config
        self.clarifier: Workflow = as_workflow(config.clarifier, name="clarifier")
        self.requirements_clear: Gate = as_gate(config.requirements_clear) or Gate.metadata_flag(
            "clear", reason="requirements are not clear"
        )
        self.environment = CodingEnvironment(config.toolkit)

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        logger.info(f"[{self.name}] Phase: {CodingPhase.CLARIFY.value}")
        clarified = await self._clarify(context, cancel)
        if not clarified.ok:
            return clarified.with_metadata(phase=CodingPhase.CLARIFY.value)

        requirements = clarified.payload
        context = clarified.context.append("requirements", requirements)

        logger.info(f"[{self.name}] Phase: {CodingPhase.EXECUTE.value}")
        context = await self._search_relevant_files(requirements, context, cancel)
        executed = await self._execution_loop(cancel).run(context, cancel)

        logger.info(f"[{self.name}] Phase: {CodingPhase.COMPLETE.value}")
        return self._complete(executed, requirements)

    async def _clarify(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        rounds = self.config.max_clarify_rounds
        last_payload = None

        for round_number in range(1, rounds + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()

            result = await self.clarifier.run(context, cancel)
            if not result.ok:
                return result

            context = result.context
            last_payload = result.payload
            decision = self.requirements_clear(result, context)
            if decision.accepted:
                logger.info(f"[{self.name}] Requirements clear after {round_number} round(s)")
                return result.with_metadata(clarify_rounds=round_number)

            question = result.metadata.get("question") or decision.reason or "Please clarify the requirements."
            logger.info(f"[{self.name}] Clarify round {round_number}/{rounds}: {question}")

            if self.config.human is None:
                continue

            event = EscalationEvent(reason="requirements unclear", question=question, step=round_number)
            try:
                response = await run_cancellable(
                    self.config.human.request_guidance(event),
                    cancel,
                    self.config.escalation_timeout
                )
            except asyncio.TimeoutError:
                raise EscalationTimedOut(
                    f"no clarification within {self.config.escalation_timeout}s",
                    payload=last_payload,
                    context=context,
                    phase=CodingPhase.CLARIFY.value
                )
            if response.give_up:
                break
            context = context.append("clarifications", response.guidance)

        raise RequirementsUnresolved(
            f"requirements still unclear after {rounds} clarification rounds",
            payload=last_payload,
            context=context,
            rounds=rounds
        )

    async def _search_relevant_files(
        self,
        requirements: Any,
        context: Context,
        cancel: Optional[CancellationToken]
    ) -> Context:
        try:
            files = await run_cancellable(self.config.toolkit.search_files(str(requirements)), cancel)
        except CancelledByCaller:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] File search failed: {type(e).__name__}: {e}")
            return context
        logger.debug(f"[{self.name}] {len(files)} relevant files")
        return context.extend("relevant_files", files)

    def _execution_loop(self, cancel: Optional[CancellationToken]) -> AutonomousAgentLoop:
        config = self.config
        return AutonomousAgentLoop(
            AgentLoopConfig(
                decide=config.decide,
                environment=self.environment,
                human=config.human,
                stop=StopCondition(
                    max_steps=config.max_attempts,
                    goal=tests_passed,
                    cancel=cancel,
                    max_escalations=config.max_escalations
                ),
                stuck_detector=RepeatedFailureDetector(config.stuck_threshold),
                escalation_timeout=config.escalation_timeout,
                accept_done=accept_when_tests_pass,
                partial_result=lambda ctx: list(ctx.get("edits", ())),
                observation_folder=fold_coding_observation
            ),
            name=f"{self.name}.execute"
        )

    def _complete(self, executed: StepResult, requirements: Any) -> StepResult:
        context = executed.context
        if executed.ok:
            status = "complete"
        elif executed.failure is FailureKind.CANCELLED_BY_CALLER:
            status = "cancelled"
        elif executed.failure is FailureKind.STOPPED_BY_BOUND:
            status = "partial"
        else:
            status = "failed"

        report = CodingReport(
            status=status,
            edits=list(context.get("edits", ())),
            test_report=latest_test_report(context),
            attempts=executed.metadata.get("steps", 0)
        )
        report.summary = render_summary(report, requirements)
        logger.info(f"[{self.name}] Task {status} after {report.attempts} attempts")

        metadata = dict(executed.metadata)
        metadata["phase"] = CodingPhase.COMPLETE.value
        if executed.ok:
            return StepResult.success(report, context=context, **metadata)
        if status == "cancelled":
            return StepResult.failed(executed.failure, executed.reason, context=context, **metadata)
        return StepResult.failed(
            executed.failure,
            executed.reason,
            payload=report,
            context=context,
            **metadata
        )
