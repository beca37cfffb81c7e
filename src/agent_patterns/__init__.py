"""
Agent Patterns - composable LLM workflow patterns.

Implements seven execution patterns over one capability boundary:
- Augmented call: generation with retrieval, tool and memory sub-calls
- Chain: sequential steps with gates
- Router: classify, then dispatch to one branch
- Parallel: sectioning and voting
- Evaluator-optimizer: bounded generate/evaluate refinement
- Orchestrator-workers: dynamic plan, independent workers, synthesis
- Autonomous agent loop (and the coding-agent controller built on it)

Every component is a Workflow (`await component.run(context)`) returning a
tagged StepResult, so components nest freely and never raise out of run().

Usage:
    from agent_patterns import Context, Gate, ToolCall, create_engine

    engine = create_engine()
    notice = engine.chain(
        engine.call(lambda ctx: f"Draft a legal notice about: {ctx.latest('input')}"),
        (engine.call("Add the required disclaimer"), Gate.payload_contains("disclaimer")),
        engine.call("Send the notice", tool_calls=[ToolCall("send")]),
    )
    result = await notice.run(Context(input=("late payment",)))
    if not result.ok:
        print(result.failure, result.reason, result.metadata)
"""

from .context import Context, StepResult
from .errors import (
    CancelledByCaller,
    ContextConflictError,
    EscalationTimedOut,
    FailureKind,
    GateRejected,
    PatternError,
    PlanGenerationFailed,
    QuorumNotReached,
    RequirementsUnresolved,
    RoutingAmbiguous,
)
from .control import CancellationToken, StopCondition, StopReason, run_cancellable
from .gates import Gate, GateDecision
from .workflow import FunctionWorkflow, Workflow, WorkflowBase, as_workflow
from .capability import (
    CapabilityError,
    CapabilityProvider,
    CapabilityTimeoutError,
    MemoryStore,
    ToolError,
)
from .augmented_call import (
    AugmentedCall,
    AugmentedCallExecutor,
    CallRequest,
    SubcallPolicy,
    ToolCall,
)
from .chain import ChainConfig, ChainExecutor, ChainStep, chain
from .router import Router, RouterConfig
from .parallel_executor import (
    ParallelConfig,
    ParallelExecutor,
    ParallelMode,
    SectionedResult,
    TaskStatus,
)
from .voting import BestOfScore, MajorityVote, PassThrough, TiePolicy
from .evaluator_optimizer import EvaluatorOptimizerLoop, OptimizerConfig, OptimizerState
from .orchestrator_workers import (
    OrchestratorWorkers,
    OrchestratorWorkersConfig,
    WorkItem,
    WorkPlan,
    parse_plan,
)
from .agents import (
    Action,
    ActionKind,
    AgentLoopConfig,
    AutonomousAgentLoop,
    CodingAgentConfig,
    CodingAgentController,
    CodingReport,
    EscalationEvent,
    HumanResponse,
    LoopState,
    Observation,
    RepeatedFailureDetector,
    TestReport,
)
from .engine import EngineConfig, PatternEngine, create_engine
from .metrics import get_metrics_collector, reset_metrics_collector

__version__ = "0.1.0"

__all__ = [
    # Data
    "Context",
    "StepResult",
    "FailureKind",
    # Errors
    "PatternError",
    "CancelledByCaller",
    "ContextConflictError",
    "EscalationTimedOut",
    "GateRejected",
    "PlanGenerationFailed",
    "QuorumNotReached",
    "RequirementsUnresolved",
    "RoutingAmbiguous",
    "CapabilityError",
    "CapabilityTimeoutError",
    "ToolError",
    # Control
    "CancellationToken",
    "StopCondition",
    "StopReason",
    "run_cancellable",
    "Gate",
    "GateDecision",
    # Workflows
    "Workflow",
    "WorkflowBase",
    "FunctionWorkflow",
    "as_workflow",
    "CapabilityProvider",
    "MemoryStore",
    # Patterns
    "AugmentedCall",
    "AugmentedCallExecutor",
    "CallRequest",
    "SubcallPolicy",
    "ToolCall",
    "ChainConfig",
    "ChainExecutor",
    "ChainStep",
    "chain",
    "Router",
    "RouterConfig",
    "ParallelConfig",
    "ParallelExecutor",
    "ParallelMode",
    "SectionedResult",
    "TaskStatus",
    "BestOfScore",
    "MajorityVote",
    "PassThrough",
    "TiePolicy",
    "EvaluatorOptimizerLoop",
    "OptimizerConfig",
    "OptimizerState",
    "OrchestratorWorkers",
    "OrchestratorWorkersConfig",
    "WorkItem",
    "WorkPlan",
    "parse_plan",
    # Agents
    "Action",
    "ActionKind",
    "AgentLoopConfig",
    "AutonomousAgentLoop",
    "CodingAgentConfig",
    "CodingAgentController",
    "CodingReport",
    "EscalationEvent",
    "HumanResponse",
    "LoopState",
    "Observation",
    "RepeatedFailureDetector",
    "TestReport",
    # Engine
    "EngineConfig",
    "PatternEngine",
    "create_engine",
    "get_metrics_collector",
    "reset_metrics_collector",
]
