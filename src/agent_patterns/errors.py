"""
Failure taxonomy for the pattern engine.

Every component reports failures as a tagged StepResult carrying one of the
FailureKind values below. Internally, components raise PatternError
subclasses; WorkflowBase.run() converts them into tagged results so nothing
escapes a public entry point as an unhandled fault.
"""

from enum import Enum
from typing import Any, Optional


class FailureKind(Enum):
    """Failure tags returned by every component."""
    CAPABILITY_TIMEOUT = "capability_timeout"
    CAPABILITY_FAILED = "capability_failed"
    TOOL_INVOCATION_FAILED = "tool_invocation_failed"
    SUBCALL_FAILED = "subcall_failed"
    GATE_REJECTED = "gate_rejected"
    ROUTING_AMBIGUOUS = "routing_ambiguous"
    QUORUM_NOT_REACHED = "quorum_not_reached"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    PLAN_GENERATION_FAILED = "plan_generation_failed"
    STOPPED_BY_BOUND = "stopped_by_bound"
    REQUIREMENTS_UNRESOLVED = "requirements_unresolved"
    CANCELLED_BY_CALLER = "cancelled_by_caller"
    ESCALATION_TIMED_OUT = "escalation_timed_out"
    UNEXPECTED_ERROR = "unexpected_error"


class PatternError(Exception):
    """
    Base error raised inside components.

    Carries the failure kind, a human-readable reason and an optional
    partial payload so the boundary can build a tagged result.
    """

    kind: FailureKind = FailureKind.UNEXPECTED_ERROR

    def __init__(
        self,
        reason: str,
        payload: Any = None,
        kind: Optional[FailureKind] = None,
        context: Any = None,
        **metadata: Any
    ):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload
        self.context = context
        self.metadata = metadata
        if kind is not None:
            self.kind = kind


class CancelledByCaller(PatternError):
    kind = FailureKind.CANCELLED_BY_CALLER


class GateRejected(PatternError):
    kind = FailureKind.GATE_REJECTED


class RoutingAmbiguous(PatternError):
    kind = FailureKind.ROUTING_AMBIGUOUS


class QuorumNotReached(PatternError):
    kind = FailureKind.QUORUM_NOT_REACHED


class PlanGenerationFailed(PatternError):
    kind = FailureKind.PLAN_GENERATION_FAILED


class RequirementsUnresolved(PatternError):
    kind = FailureKind.REQUIREMENTS_UNRESOLVED


class EscalationTimedOut(PatternError):
    kind = FailureKind.ESCALATION_TIMED_OUT


class ContextConflictError(KeyError):
    """Raised when an append-only Context would overwrite an existing key."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Context key already set: {self.key!r}"
