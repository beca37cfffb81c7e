"""
Failure diagnostics with actionable context.

Turns a failed StepResult into a structured ErrorContext with
troubleshooting hints and recovery suggestions per failure kind, for debug
logging and for callers that surface failures to an operator.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .context import StepResult
from .errors import FailureKind

_HINTS: Dict[FailureKind, List[str]] = {
    FailureKind.CAPABILITY_TIMEOUT: [
        "Provider call exceeded its timeout",
        "The call was not retried; side effects may or may not have happened",
    ],
    FailureKind.CAPABILITY_FAILED: [
        "Provider returned an error or unparseable output",
    ],
    FailureKind.TOOL_INVOCATION_FAILED: [
        "A tool sub-call failed under abort-on-subcall-failure policy",
    ],
    FailureKind.SUBCALL_FAILED: [
        "A retrieval or memory sub-call failed under abort-on-subcall-failure policy",
    ],
    FailureKind.GATE_REJECTED: [
        "A gate rejected a step; later steps were not invoked",
    ],
    FailureKind.ROUTING_AMBIGUOUS: [
        "Classifier produced a label with no registered branch",
    ],
    FailureKind.QUORUM_NOT_REACHED: [
        "Too few voting runs agreed or succeeded",
    ],
    FailureKind.MAX_ITERATIONS_EXCEEDED: [
        "Evaluator never accepted within the iteration bound",
    ],
    FailureKind.PLAN_GENERATION_FAILED: [
        "Orchestrator did not produce a usable work plan",
    ],
    FailureKind.STOPPED_BY_BOUND: [
        "Loop hit its step or escalation bound before reaching its goal",
    ],
    FailureKind.REQUIREMENTS_UNRESOLVED: [
        "Clarification rounds ran out with requirements still unclear",
    ],
    FailureKind.CANCELLED_BY_CALLER: [
        "Cancellation token fired; in-flight calls were abandoned",
    ],
    FailureKind.ESCALATION_TIMED_OUT: [
        "Human guidance did not arrive within the caller's bound",
    ],
    FailureKind.UNEXPECTED_ERROR: [
        "A user-supplied workflow raised an exception",
    ],
}

_RECOVERY: Dict[FailureKind, List[str]] = {
    FailureKind.CAPABILITY_TIMEOUT: ["Raise the call timeout or retry at the caller if the call is idempotent"],
    FailureKind.GATE_REJECTED: ["Inspect the rejection reason and the rejected payload"],
    FailureKind.ROUTING_AMBIGUOUS: ["Register the label as a branch or configure a default branch"],
    FailureKind.QUORUM_NOT_REACHED: ["Increase the number of runs or lower the quorum"],
    FailureKind.MAX_ITERATIONS_EXCEEDED: ["Use the returned best artifact or raise max_iterations"],
    FailureKind.STOPPED_BY_BOUND: ["Use the returned partial artifact or raise max_steps"],
    FailureKind.REQUIREMENTS_UNRESOLVED: ["Answer the outstanding clarifying questions and rerun"],
}


@dataclass
class ErrorContext:
    """Structured failure context for debugging."""
    error_type: str
    error_message: str
    component: Optional[str] = None
    step_index: Optional[int] = None
    has_partial_payload: bool = False
    troubleshooting_hints: Optional[List[str]] = None
    recovery_suggestions: Optional[List[str]] = None
    details: Optional[Dict[str, Any]] = None

    def format(self) -> str:
        """Format error context as human-readable string."""
        parts = []

        parts.append("╔══════════════════════════════════════════════════════════════")
        parts.append(f"║ {self.error_type}: {self.error_message}")
        parts.append("╠══════════════════════════════════════════════════════════════")

        if self.component:
            parts.append(f"║ Component: {self.component}")
        if self.step_index is not None:
            parts.append(f"║ Step index: {self.step_index}")
        parts.append(f"║ Partial payload: {'yes' if self.has_partial_payload else 'no'}")

        if self.details:
            parts.append("║ Details:")
            for key, value in self.details.items():
                parts.append(f"║   {key}: {value}")

        if self.troubleshooting_hints:
            parts.append("╠══════════════════════════════════════════════════════════════")
            parts.append("║ Troubleshooting:")
            for hint in self.troubleshooting_hints:
                parts.append(f"║   • {hint}")

        if self.recovery_suggestions:
            parts.append("╠══════════════════════════════════════════════════════════════")
            parts.append("║ Recovery:")
            for suggestion in self.recovery_suggestions:
                parts.append(f"║   → {suggestion}")

        parts.append("╚══════════════════════════════════════════════════════════════")

        return "\n".join(parts)


def create_failure_context(result: StepResult, component: Optional[str] = None) -> ErrorContext:
    """Build an ErrorContext from a failed StepResult."""
    kind = result.failure or FailureKind.UNEXPECTED_ERROR
    details = {
        key: value for key, value in result.metadata.items()
        if key in ("route", "tie", "failed", "iterations", "steps", "stop_reason", "gaps", "label")
    }
    return ErrorContext(
        error_type=kind.name,
        error_message=result.reason or kind.value,
        component=component,
        step_index=result.metadata.get("step_index"),
        has_partial_payload=result.payload is not None,
        troubleshooting_hints=list(_HINTS.get(kind, [])),
        recovery_suggestions=list(_RECOVERY.get(kind, [])),
        details=details or None
    )


def format_failure(result: StepResult, component: Optional[str] = None) -> str:
    """
    Concise one-block summary of a failure.

    Suitable for returning to an operator; the full box format is meant for
    debug logs.
    """
    ctx = create_failure_context(result, component)
    parts = [f"{ctx.error_type}: {ctx.error_message}"]

    if ctx.component:
        parts.append(f"Component: {ctx.component}")
    if ctx.step_index is not None:
        parts.append(f"Step: {ctx.step_index}")

    if ctx.troubleshooting_hints:
        parts.append("Troubleshooting:")
        for hint in ctx.troubleshooting_hints[:3]:
            parts.append(f"  • {hint}")

    if ctx.recovery_suggestions:
        parts.append("Recovery:")
        for suggestion in ctx.recovery_suggestions[:2]:
            parts.append(f"  → {suggestion}")

    return "\n".join(parts)
