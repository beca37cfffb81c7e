"""
Agent patterns - open-ended loops driven by a decision step.

1. AutonomousAgentLoop - decide/act/observe with human escalation
2. CodingAgentController - clarify, execute against a codebase, report
"""

from .autonomous import (
    Action,
    ActionKind,
    AgentLoopConfig,
    AutonomousAgentLoop,
    Environment,
    EscalationEvent,
    HumanInterface,
    HumanResponse,
    LoopState,
    Observation,
    RepeatedFailureDetector,
    parse_action,
)
from .coding_agent import (
    CodingAgentConfig,
    CodingAgentController,
    CodingEnvironment,
    CodingPhase,
    CodingReport,
    CodingToolkit,
    TestReport,
)

__all__ = [
    "Action",
    "ActionKind",
    "AgentLoopConfig",
    "AutonomousAgentLoop",
    "Environment",
    "EscalationEvent",
    "HumanInterface",
    "HumanResponse",
    "LoopState",
    "Observation",
    "RepeatedFailureDetector",
    "parse_action",
    "CodingAgentConfig",
    "CodingAgentController",
    "CodingEnvironment",
    "CodingPhase",
    "CodingReport",
    "CodingToolkit",
    "TestReport",
]
