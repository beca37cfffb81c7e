"""
Live checks against the Anthropic API.

Skipped unless ANTHROPIC_API_KEY is set. Run with: pytest -m integration
"""

import os

import pytest

from agent_patterns import Context, FailureKind, Gate, create_engine
from agent_patterns.engine import EngineConfig

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.getenv("ANTHROPIC_API_KEY"), reason="ANTHROPIC_API_KEY not set"),
]


@pytest.mark.asyncio
async def test_routing_with_live_classifier():
    engine = create_engine(EngineConfig(max_tokens=16))
    router = engine.router(
        engine.call(lambda ctx: (
            "Classify this support request as exactly one word, billing or technical, "
            f"with no punctuation: {ctx.latest('input')}"
        )),
        {"billing": lambda ctx: "billing queue", "technical": lambda ctx: "technical queue"},
    )

    result = await router.dispatch("I was charged twice for my subscription this month")

    assert result.ok, result.reason
    assert result.metadata["route"] == "billing"


@pytest.mark.asyncio
async def test_gate_rejects_live_output():
    engine = create_engine(EngineConfig(max_tokens=32))
    pipeline = engine.chain(
        (engine.call("Reply with the single word: hello"), Gate.payload_contains("zebra")),
        lambda ctx: "unreachable",
    )

    result = await pipeline.run(Context())

    assert result.failure is FailureKind.GATE_REJECTED
    assert result.metadata["step_index"] == 0
