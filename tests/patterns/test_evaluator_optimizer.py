"""
Tests for EvaluatorOptimizerLoop.
"""

import pytest

from agent_patterns import (
    AugmentedCall,
    AugmentedCallExecutor,
    CallRequest,
    CancellationToken,
    Context,
    EvaluatorOptimizerLoop,
    FailureKind,
    Gate,
    OptimizerConfig,
    StepResult,
)
from fakes import ScriptedProvider


class Drafts:
    """Generator producing draft-1, draft-2, ... and recording the feedback it saw."""

    def __init__(self):
        self.calls = 0
        self.feedback_seen = []
        self.log = []

    def __call__(self, context):
        self.calls += 1
        self.log.append("generate")
        self.feedback_seen.append(context.get("feedback", ()))
        return StepResult.success(f"draft-{self.calls}", context=context)


class RisingScores:
    """Evaluator whose score rises by one per round, starting from zero."""

    def __init__(self, log=None, scores=None):
        self.previous = 0
        self.log = log if log is not None else []
        self.scores = list(scores) if scores is not None else None
        self.calls = 0

    def __call__(self, context):
        self.calls += 1
        self.log.append("evaluate")
        if self.scores is not None:
            score = self.scores.pop(0)
        else:
            score = self.previous + 1
            self.previous = score
        return StepResult.success(
            {"artifact": context.latest("artifacts")},
            context=context,
            score=score,
            feedback=f"round {self.calls}: needs more detail"
        )


class TestRefinement:
    """Accept/reject alternation."""

    @pytest.mark.asyncio
    async def test_accepted_at_third_iteration(self):
        generator = Drafts()
        evaluator = RisingScores(log=generator.log)
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=generator,
            evaluator=evaluator,
            gate=Gate.score_at_least(3),
            max_iterations=5,
        ))

        result = await loop.run(Context())

        assert result.ok
        assert result.payload == "draft-3"
        assert result.metadata["iterations"] == 3
        assert result.metadata["score"] == 3
        assert result.metadata["history"] == [(1, 1, False), (2, 2, False), (3, 3, True)]
        assert generator.calls == evaluator.calls == 3

    @pytest.mark.asyncio
    async def test_strict_alternation(self):
        generator = Drafts()
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=generator,
            evaluator=RisingScores(log=generator.log),
            gate=Gate.score_at_least(4),
            max_iterations=5,
        ))

        await loop.run(Context())

        assert generator.log == ["generate", "evaluate"] * 4

    @pytest.mark.asyncio
    async def test_feedback_reaches_generator(self):
        generator = Drafts()
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=generator,
            evaluator=RisingScores(),
            gate=Gate.score_at_least(3),
            max_iterations=5,
        ))

        result = await loop.run(Context())

        assert generator.feedback_seen == [
            (),
            ("round 1: needs more detail",),
            ("round 1: needs more detail", "round 2: needs more detail"),
        ]
        assert result.context["artifacts"] == ("draft-1", "draft-2", "draft-3")

    @pytest.mark.asyncio
    async def test_gate_reason_used_when_no_feedback(self):
        generator = Drafts()
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=generator,
            evaluator=lambda ctx: StepResult.success("meh", context=ctx),
            max_iterations=2,
        ))

        result = await loop.run(Context())

        assert result.context["feedback"] == ("evaluator did not accept the artifact",) * 2

    @pytest.mark.asyncio
    async def test_with_augmented_calls(self):
        provider = ScriptedProvider(
            respond=lambda prompt, ctx: (
                "APPROVED" if prompt.startswith("Evaluate") and "v2" in prompt
                else "REVISE" if prompt.startswith("Evaluate")
                else f"translation v{len(ctx.get('artifacts', ())) + 1}"
            )
        )
        executor = AugmentedCallExecutor(provider)
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=AugmentedCall(executor, CallRequest(prompt=lambda ctx: "Translate")),
            evaluator=AugmentedCall(
                executor,
                CallRequest(prompt=lambda ctx: f"Evaluate {ctx.latest('artifacts')}")
            ),
            gate=Gate.payload_contains("APPROVED"),
            max_iterations=4,
        ))

        result = await loop.run(Context())

        assert result.ok
        assert result.payload == "translation v2"


class TestBounds:
    """The loop never exceeds max_iterations."""

    @pytest.mark.parametrize("max_iterations", [1, 2, 5])
    @pytest.mark.asyncio
    async def test_exhaustion_returns_best_artifact(self, max_iterations):
        generator = Drafts()
        evaluator = RisingScores(scores=[5, 9, 1, 2, 3][:max_iterations])
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=generator,
            evaluator=evaluator,
            gate=Gate.score_at_least(10),
            max_iterations=max_iterations,
        ))

        result = await loop.run(Context())

        assert result.failure is FailureKind.MAX_ITERATIONS_EXCEEDED
        assert generator.calls == evaluator.calls == max_iterations
        assert result.metadata["iterations"] == max_iterations
        expected = "draft-1" if max_iterations == 1 else "draft-2"
        assert result.payload == expected

    @pytest.mark.asyncio
    async def test_unscored_evaluations_keep_last_artifact(self):
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=Drafts(),
            evaluator=lambda ctx: StepResult.success("no", context=ctx),
            max_iterations=3,
        ))

        result = await loop.run(Context())

        assert result.failure is FailureKind.MAX_ITERATIONS_EXCEEDED
        assert result.payload == "draft-3"

    def test_max_iterations_must_be_positive(self):
        with pytest.raises(ValueError, match="max_iterations"):
            EvaluatorOptimizerLoop(OptimizerConfig(
                generator=Drafts(),
                evaluator=RisingScores(),
                max_iterations=0,
            ))


class TestFailures:
    """Generator and evaluator failures end the loop."""

    @pytest.mark.asyncio
    async def test_evaluator_failure_keeps_best_artifact(self):
        evaluations = iter([
            lambda ctx: StepResult.success("ok", context=ctx, score=2),
            lambda ctx: StepResult.failed(FailureKind.CAPABILITY_TIMEOUT, "judge timed out"),
        ])
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=Drafts(),
            evaluator=lambda ctx: next(evaluations)(ctx),
            gate=Gate.score_at_least(3),
            max_iterations=5,
        ))

        result = await loop.run(Context())

        assert result.failure is FailureKind.CAPABILITY_TIMEOUT
        assert result.metadata["stage"] == "evaluate"
        assert result.metadata["iterations"] == 2
        assert result.payload == "draft-1"

    @pytest.mark.asyncio
    async def test_generator_failure(self):
        loop = EvaluatorOptimizerLoop(OptimizerConfig(
            generator=lambda ctx: StepResult.failed(FailureKind.CAPABILITY_FAILED, "down"),
            evaluator=RisingScores(),
        ))

        result = await loop.run(Context())

        assert result.failure is FailureKind.CAPABILITY_FAILED
        assert result.metadata["stage"] == "generate"
        assert result.payload is None

    @pytest.mark.asyncio
    async def test_cancelled_before_first_iteration(self):
        generator = Drafts()
        token = CancellationToken()
        token.cancel()
        loop = EvaluatorOptimizerLoop(OptimizerConfig(generator=generator, evaluator=RisingScores()))

        result = await loop.run(Context(), token)

        assert result.failure is FailureKind.CANCELLED_BY_CALLER
        assert generator.calls == 0
