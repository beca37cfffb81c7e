"""
Configuration validation for pattern components.

Validates component configurations at construction time so that invalid
bounds (a loop with no iteration limit, a vote over zero runs) fail early
with a clear message instead of misbehaving at run time.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .logging_config import get_logger

logger = get_logger("validation")


@dataclass
class ValidationResult:
    """Result of validation check."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _result(errors: List[str], warnings: List[str]) -> ValidationResult:
    return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)


def raise_for_validation(result: ValidationResult, component: Optional[str] = None):
    """Log warnings; raise ValueError listing every error."""
    prefix = f"[{component}] " if component else ""
    for warning in result.warnings:
        logger.warning(f"{prefix}{warning}")
    if not result.valid:
        raise ValueError(f"{prefix}invalid configuration: " + "; ".join(result.errors))


def _check_concurrency(value: Optional[int], errors: List[str], warnings: List[str]):
    if value is None:
        return
    if value < 1:
        errors.append(f"max_concurrency must be >= 1 (got {value})")
    elif value > 64:
        warnings.append(f"max_concurrency very high ({value}); providers are usually rate-limited")


def validate_chain_config(steps: List[Any]) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if not steps:
        warnings.append("chain has no steps")

    names = [step.name for step in steps]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        warnings.append(f"duplicate step names make step logs ambiguous: {', '.join(duplicates)}")

    return _result(errors, warnings)


def validate_router_config(config: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if config.classifier is None:
        errors.append("router requires a classifier")
    if not config.branches and config.default is None:
        errors.append("router requires at least one branch or a default")

    return _result(errors, warnings)


def validate_parallel_config(config: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    _check_concurrency(config.max_concurrency, errors, warnings)

    if config.mode.value == "sectioning":
        if not config.branches:
            errors.append("sectioning mode requires at least one branch")
        if config.workflow is not None:
            warnings.append("workflow is ignored in sectioning mode")
    else:
        if config.workflow is None:
            errors.append("voting mode requires a workflow")
        if config.n < 1:
            errors.append(f"voting mode requires n >= 1 (got {config.n})")
        if config.reducer is None:
            errors.append("voting mode requires a reducer")
        if config.branches:
            warnings.append("branches are ignored in voting mode")

    return _result(errors, warnings)


def validate_optimizer_config(config: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if config.generator is None:
        errors.append("evaluator-optimizer loop requires a generator")
    if config.evaluator is None:
        errors.append("evaluator-optimizer loop requires an evaluator")
    if config.max_iterations is None or config.max_iterations < 1:
        errors.append(f"max_iterations must be >= 1 (got {config.max_iterations})")
    elif config.max_iterations > 50:
        warnings.append(f"max_iterations very high ({config.max_iterations})")

    return _result(errors, warnings)


def validate_orchestrator_config(config: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if config.orchestrator is None:
        errors.append("orchestrator-workers requires an orchestrator")
    if not config.workers:
        errors.append("orchestrator-workers requires at least one worker")
    if config.synthesizer is None:
        errors.append("orchestrator-workers requires a synthesizer")
    _check_concurrency(config.max_concurrency, errors, warnings)

    return _result(errors, warnings)


def validate_stop_condition(stop: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if stop is None:
        errors.append("a StopCondition is required")
        return _result(errors, warnings)

    if stop.max_steps is None or stop.max_steps < 0:
        errors.append(f"max_steps must be >= 0 (got {stop.max_steps})")
    elif stop.max_steps == 0:
        warnings.append("max_steps is 0; the loop will stop before its first decision")

    if stop.max_escalations is None or stop.max_escalations < 0:
        errors.append(f"max_escalations must be >= 0 (got {stop.max_escalations})")

    return _result(errors, warnings)


def validate_agent_loop_config(config: Any) -> ValidationResult:
    result = validate_stop_condition(config.stop)
    errors = list(result.errors)
    warnings = list(result.warnings)

    if config.decide is None:
        errors.append("agent loop requires a decision step")
    if config.environment is None:
        errors.append("agent loop requires an environment")
    if config.human is None:
        warnings.append("no human collaborator; escalations will stop the loop")
    if config.escalation_timeout is not None and config.escalation_timeout <= 0:
        errors.append(f"escalation_timeout must be > 0 (got {config.escalation_timeout})")

    return _result(errors, warnings)


def validate_coding_config(config: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if config.clarifier is None:
        errors.append("coding agent requires a clarifier")
    if config.decide is None:
        errors.append("coding agent requires a decision step")
    if config.toolkit is None:
        errors.append("coding agent requires a toolkit")
    if config.max_clarify_rounds < 1:
        errors.append(f"max_clarify_rounds must be >= 1 (got {config.max_clarify_rounds})")
    if config.max_attempts < 1:
        errors.append(f"max_attempts must be >= 1 (got {config.max_attempts})")

    return _result(errors, warnings)
