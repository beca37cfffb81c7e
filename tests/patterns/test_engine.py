"""
Tests for PatternEngine, EngineConfig and create_engine.
"""

import os

import pytest

from agent_patterns import (
    Action,
    Context,
    EngineConfig,
    FailureKind,
    Gate,
    MajorityVote,
    PatternEngine,
    SubcallPolicy,
    create_engine,
)
from agent_patterns.anthropic_provider import AnthropicCapabilityProvider
from agent_patterns.memory_client import HttpMemoryStore
from fakes import FakeToolkit, ScriptedEnvironment, ScriptedProvider, scripted_decisions


class TestEngineConfig:
    """Environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in list(os.environ):
            if name.startswith("AGENT_PATTERNS_"):
                monkeypatch.delenv(name)

        config = EngineConfig.from_environment()

        assert config == EngineConfig()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("AGENT_PATTERNS_MAX_STEPS", "7")
        monkeypatch.setenv("AGENT_PATTERNS_CALL_TIMEOUT", "off")
        monkeypatch.setenv("AGENT_PATTERNS_SUBCALL_POLICY", "abort_on_subcall_failure")
        monkeypatch.setenv("AGENT_PATTERNS_ESCALATION_TIMEOUT", "2.5")
        monkeypatch.setenv("AGENT_PATTERNS_MODEL", "claude-3-5-haiku-latest")

        config = EngineConfig.from_environment()

        assert config.max_steps == 7
        assert config.call_timeout is None
        assert config.subcall_policy is SubcallPolicy.ABORT_ON_SUBCALL_FAILURE
        assert config.escalation_timeout == 2.5
        assert config.model == "claude-3-5-haiku-latest"

    def test_invalid_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("AGENT_PATTERNS_VOTES", "many")
        monkeypatch.setenv("AGENT_PATTERNS_SUBCALL_POLICY", "retry_forever")

        config = EngineConfig.from_environment()

        assert config.votes == 3
        assert config.subcall_policy is SubcallPolicy.PROCEED_WITH_PARTIAL_CONTEXT


class TestFactories:
    """Factories apply engine defaults."""

    def _engine(self, **config) -> PatternEngine:
        provider = ScriptedProvider(respond=lambda prompt, ctx: prompt.lower())
        return PatternEngine(provider, EngineConfig(**config))

    @pytest.mark.asyncio
    async def test_chain_of_calls(self):
        engine = self._engine()
        pipeline = engine.chain(
            engine.call("DRAFT", name="draft"),
            (engine.call("ADD DISCLAIMER", name="review"), Gate.payload_contains("disclaimer")),
        )

        result = await pipeline.run(Context())

        assert result.ok
        assert result.context["outputs"] == ("draft", "add disclaimer")

    def test_voting_defaults(self):
        engine = self._engine(votes=5, max_concurrency=2)

        executor = engine.voting(engine.call("Is this spam?"))

        assert executor.config.n == 5
        assert executor.config.max_concurrency == 2
        assert isinstance(executor.config.reducer, MajorityVote)

    def test_loop_defaults(self):
        engine = self._engine(max_iterations=4, max_steps=6, max_escalations=1, escalation_timeout=3.0)

        optimizer = engine.evaluator_optimizer(engine.call("write"), engine.call("judge"))
        agent = engine.agent_loop(scripted_decisions([Action.done()]), ScriptedEnvironment())
        coder = engine.coding_agent(engine.call("clarify"), scripted_decisions([Action.done()]), FakeToolkit())

        assert optimizer.config.max_iterations == 4
        assert agent.config.stop.max_steps == 6
        assert agent.config.stop.max_escalations == 1
        assert agent.config.escalation_timeout == 3.0
        assert coder.config.max_attempts == 6

    @pytest.mark.asyncio
    async def test_router_and_status(self):
        engine = self._engine()
        router = engine.router(
            engine.call("BILLING"),
            {"billing": engine.call("refund", name="billing"), "other": engine.call("other")},
        )

        result = await router.run(Context())
        await engine.router(engine.call("UNKNOWN"), {"billing": engine.call("x")}).run(Context())

        assert result.ok
        status = engine.get_status()
        assert status["components"]["router"]["total_runs"] == 2
        assert status["components"]["router"]["failures_by_kind"] == {
            FailureKind.ROUTING_AMBIGUOUS.value: 1
        }


class TestCreateEngine:

    @pytest.mark.asyncio
    async def test_builds_anthropic_engine_with_memory(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        config = EngineConfig(memory_url="http://memory.local:3000", memory_namespace="support")

        engine = create_engine(config)

        assert isinstance(engine.provider, AnthropicCapabilityProvider)
        assert isinstance(engine.provider.memory, HttpMemoryStore)
        assert engine.provider.memory.namespace == "support"
        await engine.provider.memory.aclose()

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY"):
            create_engine(EngineConfig())
