"""
Gates - pass/fail predicates interposed between steps.

A gate inspects a StepResult and the Context it produced and returns a
GateDecision. Gates must be pure: the chain and the evaluator loop may call
them in any order relative to logging, and they never see sibling state.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .context import Context, StepResult


@dataclass(frozen=True)
class GateDecision:
    """Accept/reject verdict with an optional rejection reason."""
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "GateDecision":
        return cls(True)

    @classmethod
    def reject(cls, reason: str) -> "GateDecision":
        return cls(False, reason)


GatePredicate = Callable[[StepResult, Context], Union[bool, GateDecision]]


class Gate:
    """
    Named wrapper around a gate predicate.

    Predicates may return a plain bool; a False result is turned into a
    rejection carrying `reason` (or a generic message naming the gate).
    """

    def __init__(
        self,
        predicate: GatePredicate,
        name: Optional[str] = None,
        reason: Optional[str] = None
    ):
        self.predicate = predicate
        self.name = name or getattr(predicate, "__name__", "gate")
        self.reason = reason

    def __call__(self, result: StepResult, context: Context) -> GateDecision:
        outcome = self.predicate(result, context)
        if isinstance(outcome, GateDecision):
            return outcome
        if outcome:
            return GateDecision.accept()
        return GateDecision.reject(self.reason or f"gate '{self.name}' rejected the result")

    def __repr__(self) -> str:
        return f"Gate({self.name!r})"

    @classmethod
    def payload_contains(
        cls,
        text: str,
        case_sensitive: bool = False,
        reason: Optional[str] = None
    ) -> "Gate":
        """Accept when the payload's string form contains `text`."""
        def predicate(result: StepResult, context: Context) -> bool:
            haystack = str(result.payload or "")
            if case_sensitive:
                return text in haystack
            return text.lower() in haystack.lower()

        return cls(
            predicate,
            name=f"contains:{text}",
            reason=reason or f"output is missing required text: {text!r}"
        )

    @classmethod
    def score_at_least(cls, threshold: float, key: str = "score") -> "Gate":
        """Accept when metadata[key] is a number >= threshold."""
        def predicate(result: StepResult, context: Context) -> GateDecision:
            score = result.metadata.get(key)
            if score is None:
                return GateDecision.reject(f"no '{key}' reported")
            if score >= threshold:
                return GateDecision.accept()
            return GateDecision.reject(f"{key} {score} below threshold {threshold}")

        return cls(predicate, name=f"{key}>={threshold}")

    @classmethod
    def metadata_flag(cls, key: str, reason: Optional[str] = None) -> "Gate":
        """Accept when metadata[key] is truthy."""
        def predicate(result: StepResult, context: Context) -> bool:
            return bool(result.metadata.get(key))

        return cls(predicate, name=f"flag:{key}", reason=reason)

    @classmethod
    def all_of(cls, *gates: Any) -> "Gate":
        """Accept only if every gate accepts; reports the first rejection."""
        normalized = [as_gate(g) for g in gates]

        def predicate(result: StepResult, context: Context) -> GateDecision:
            for gate in normalized:
                decision = gate(result, context)
                if not decision.accepted:
                    return decision
            return GateDecision.accept()

        return cls(predicate, name="all_of(" + ", ".join(g.name for g in normalized) + ")")


def as_gate(gate: Union[Gate, GatePredicate, None]) -> Optional[Gate]:
    """Normalise a Gate, plain predicate or None."""
    if gate is None or isinstance(gate, Gate):
        return gate
    if callable(gate):
        return Gate(gate)
    raise TypeError(f"Not a gate: {gate!r}")
