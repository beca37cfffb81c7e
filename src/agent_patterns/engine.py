"""
Pattern Engine - shared defaults and factories for every component.

Integrates:
- One CapabilityProvider shared by every augmented call
- Engine-wide defaults (timeouts, sub-call policy, concurrency, bounds)
- Factories for each pattern, so callers only supply what varies
- Run metrics across all components
"""

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .augmented_call import AugmentedCall, AugmentedCallExecutor, CallRequest, SubcallPolicy
from .capability import CapabilityProvider, MemoryStore
from .chain import ChainConfig, ChainExecutor
from .control import StopCondition
from .evaluator_optimizer import EvaluatorOptimizerLoop, OptimizerConfig
from .logging_config import get_logger
from .metrics import get_metrics_collector
from .orchestrator_workers import OrchestratorWorkers, OrchestratorWorkersConfig
from .parallel_executor import ParallelConfig, ParallelExecutor, ParallelMode
from .router import Router, RouterConfig
from .voting import MajorityVote
from .agents.autonomous import AgentLoopConfig, AutonomousAgentLoop
from .agents.coding_agent import CodingAgentConfig, CodingAgentController

logger = get_logger("engine")

ENV_PREFIX = "AGENT_PATTERNS_"


def _env(name: str, cast: Callable[[str], Any], default: Any) -> Any:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}")
        return default


def _optional_float(raw: str) -> Optional[float]:
    if raw.lower() in ("none", "off"):
        return None
    return float(raw)


@dataclass
class EngineConfig:
    """Configuration for the pattern engine."""
    # Capability calls
    call_timeout: Optional[float] = 30.0
    subcall_timeout: Optional[float] = None
    subcall_policy: SubcallPolicy = SubcallPolicy.PROCEED_WITH_PARTIAL_CONTEXT

    # Parallel execution
    max_concurrency: int = 4
    votes: int = 3

    # Loop bounds
    max_iterations: int = 5
    max_steps: int = 10
    max_escalations: int = 3
    escalation_timeout: Optional[float] = None

    # Anthropic provider
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096

    # Memory service
    memory_url: Optional[str] = None
    memory_namespace: str = "default"

    @classmethod
    def from_environment(cls) -> "EngineConfig":
        """Build a config from AGENT_PATTERNS_* variables, falling back to defaults."""
        defaults = cls()
        return cls(
            call_timeout=_env("CALL_TIMEOUT", _optional_float, defaults.call_timeout),
            subcall_timeout=_env("SUBCALL_TIMEOUT", _optional_float, defaults.subcall_timeout),
            subcall_policy=_env("SUBCALL_POLICY", SubcallPolicy, defaults.subcall_policy),
            max_concurrency=_env("MAX_CONCURRENCY", int, defaults.max_concurrency),
            votes=_env("VOTES", int, defaults.votes),
            max_iterations=_env("MAX_ITERATIONS", int, defaults.max_iterations),
            max_steps=_env("MAX_STEPS", int, defaults.max_steps),
            max_escalations=_env("MAX_ESCALATIONS", int, defaults.max_escalations),
            escalation_timeout=_env("ESCALATION_TIMEOUT", _optional_float, defaults.escalation_timeout),
            model=_env("MODEL", str, defaults.model),
            max_tokens=_env("MAX_TOKENS", int, defaults.max_tokens),
            memory_url=_env("MEMORY_URL", str, defaults.memory_url),
            memory_namespace=_env("MEMORY_NAMESPACE", str, defaults.memory_namespace),
        )


class PatternEngine:
    """
    Builds pattern components around one provider and one set of defaults.

    Every factory returns a Workflow, so results can be nested freely:

        ```python
        engine = PatternEngine(provider)
        pipeline = engine.chain(
            engine.call(lambda ctx: f"Draft a notice for: {ctx.latest('input')}"),
            (engine.call(review_prompt), Gate.payload_contains("disclaimer")),
        )
        result = await pipeline.run(Context(input=("late payment",)))
        ```
    """

    def __init__(self, provider: CapabilityProvider, config: Optional[EngineConfig] = None):
        self.provider = provider
        self.config = config or EngineConfig()
        self.executor = AugmentedCallExecutor(
            provider,
            timeout=self.config.call_timeout,
            subcall_timeout=self.config.subcall_timeout,
            subcall_policy=self.config.subcall_policy
        )

    def call(self, prompt: Any, name: Optional[str] = None, **request: Any) -> AugmentedCall:
        """One augmented call; keyword arguments are CallRequest fields."""
        return AugmentedCall(self.executor, CallRequest(prompt=prompt, name=name, **request))

    def chain(self, *steps: Any, name: Optional[str] = None) -> ChainExecutor:
        return ChainExecutor(ChainConfig(steps=list(steps)), name=name)

    def router(
        self,
        classifier: Any,
        branches: Mapping[str, Any],
        default: Optional[Any] = None,
        name: Optional[str] = None,
        **options: Any
    ) -> Router:
        return Router(
            RouterConfig(classifier=classifier, branches=branches, default=default, **options),
            name=name
        )

    def sectioning(self, branches: Mapping[str, Any], name: Optional[str] = None, **options: Any) -> ParallelExecutor:
        options.setdefault("max_concurrency", self.config.max_concurrency)
        return ParallelExecutor(
            ParallelConfig(mode=ParallelMode.SECTIONING, branches=branches, **options),
            name=name
        )

    def voting(
        self,
        workflow: Any,
        n: Optional[int] = None,
        reducer: Optional[Any] = None,
        name: Optional[str] = None,
        **options: Any
    ) -> ParallelExecutor:
        options.setdefault("max_concurrency", self.config.max_concurrency)
        return ParallelExecutor(
            ParallelConfig(
                mode=ParallelMode.VOTING,
                workflow=workflow,
                n=n if n is not None else self.config.votes,
                reducer=reducer or MajorityVote(),
                **options
            ),
            name=name
        )

    def evaluator_optimizer(
        self,
        generator: Any,
        evaluator: Any,
        gate: Optional[Any] = None,
        max_iterations: Optional[int] = None,
        name: Optional[str] = None,
        **options: Any
    ) -> EvaluatorOptimizerLoop:
        return EvaluatorOptimizerLoop(
            OptimizerConfig(
                generator=generator,
                evaluator=evaluator,
                gate=gate,
                max_iterations=max_iterations if max_iterations is not None else self.config.max_iterations,
                **options
            ),
            name=name
        )

    def orchestrator_workers(
        self,
        orchestrator: Any,
        workers: Mapping[str, Any],
        synthesizer: Any,
        name: Optional[str] = None,
        **options: Any
    ) -> OrchestratorWorkers:
        options.setdefault("max_concurrency", self.config.max_concurrency)
        return OrchestratorWorkers(
            OrchestratorWorkersConfig(
                orchestrator=orchestrator,
                workers=workers,
                synthesizer=synthesizer,
                **options
            ),
            name=name
        )

    def stop_condition(self, **overrides: Any) -> StopCondition:
        overrides.setdefault("max_steps", self.config.max_steps)
        overrides.setdefault("max_escalations", self.config.max_escalations)
        return StopCondition(**overrides)

    def agent_loop(
        self,
        decide: Any,
        environment: Any,
        human: Optional[Any] = None,
        stop: Optional[StopCondition] = None,
        name: Optional[str] = None,
        **options: Any
    ) -> AutonomousAgentLoop:
        options.setdefault("escalation_timeout", self.config.escalation_timeout)
        return AutonomousAgentLoop(
            AgentLoopConfig(
                decide=decide,
                environment=environment,
                human=human,
                stop=stop or self.stop_condition(),
                **options
            ),
            name=name
        )

    def coding_agent(
        self,
        clarifier: Any,
        decide: Any,
        toolkit: Any,
        human: Optional[Any] = None,
        name: Optional[str] = None,
        **options: Any
    ) -> CodingAgentController:
        options.setdefault("max_attempts", self.config.max_steps)
        options.setdefault("max_escalations", self.config.max_escalations)
        options.setdefault("escalation_timeout", self.config.escalation_timeout)
        return CodingAgentController(
            CodingAgentConfig(
                clarifier=clarifier,
                decide=decide,
                toolkit=toolkit,
                human=human,
                **options
            ),
            name=name
        )

    def get_status(self) -> Dict[str, Any]:
        """Per-component run metrics."""
        return {
            "provider": repr(self.provider),
            "components": {
                component: metrics.to_dict()
                for component, metrics in get_metrics_collector().get_all_component_metrics().items()
            }
        }


def create_engine(
    config: Optional[EngineConfig] = None,
    retriever: Optional[Any] = None,
    tools: Optional[Mapping[str, Callable[..., Any]]] = None,
    memory: Optional[MemoryStore] = None
) -> PatternEngine:
    """
    Create an engine backed by the Anthropic provider.

    Configuration defaults to the environment; ANTHROPIC_API_KEY must be set.
    When AGENT_PATTERNS_MEMORY_URL is set and no store is given, an
    HttpMemoryStore is created for it.
    """
    from .anthropic_provider import AnthropicCapabilityProvider, AnthropicOptions
    from .memory_client import HttpMemoryStore

    config = config or EngineConfig.from_environment()
    if memory is None and config.memory_url:
        memory = HttpMemoryStore(config.memory_url, namespace=config.memory_namespace)

    provider = AnthropicCapabilityProvider(
        AnthropicOptions(model=config.model, max_tokens=config.max_tokens),
        retriever=retriever,
        tools=tools,
        memory=memory
    )
    logger.info(f"Engine created: {provider!r}, max_concurrency={config.max_concurrency}")
    return PatternEngine(provider, config)
