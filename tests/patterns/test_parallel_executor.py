"""
Tests for ParallelExecutor and the voting reducers.

Covers:
- Sectioning: collected failures, fork isolation, bounded concurrency
- Voting: majority, quorum failures, explicit tie policies
- Timeouts and cancellation of in-flight branches
"""

import asyncio

import pytest

from agent_patterns import (
    BestOfScore,
    CancellationToken,
    Context,
    FailureKind,
    MajorityVote,
    ParallelConfig,
    ParallelExecutor,
    ParallelMode,
    PassThrough,
    SectionedResult,
    StepResult,
    TiePolicy,
)


def scripted_runs(*values):
    """Workflow returning `values` in dispatch order; StepResults pass through."""
    queue = list(values)

    def run(context):
        value = queue.pop(0)
        if isinstance(value, StepResult):
            return value
        return StepResult.success(value, context=context)

    return run


def voting(workflow, n=3, reducer=None, **kwargs) -> ParallelExecutor:
    return ParallelExecutor(ParallelConfig(
        mode=ParallelMode.VOTING,
        workflow=workflow,
        n=n,
        reducer=reducer or MajorityVote(),
        **kwargs
    ))


# ============================================================================
# Sectioning
# ============================================================================

class TestSectioning:
    """Distinct branches, aggregated after all settle."""

    @pytest.mark.asyncio
    async def test_all_sections_succeed(self):
        executor = ParallelExecutor(ParallelConfig(branches={
            "summary": lambda ctx: "short summary",
            "risks": lambda ctx: ["late delivery"],
        }))

        result = await executor.run(Context())

        assert result.ok
        assert isinstance(result.payload, SectionedResult)
        assert result.payload.all_succeeded
        assert result.payload.succeeded == {"summary": "short summary", "risks": ["late delivery"]}
        assert result.context["sections"] == (result.payload.succeeded,)
        assert result.metadata["statistics"]["total_tasks"] == 2

    @pytest.mark.asyncio
    async def test_failed_section_is_collected(self):
        def broken(ctx):
            raise RuntimeError("section crashed")

        executor = ParallelExecutor(ParallelConfig(branches={
            "ok": lambda ctx: "fine",
            "broken": broken,
            "refused": lambda ctx: StepResult.failed(FailureKind.GATE_REJECTED, "unsafe"),
        }))

        result = await executor.run(Context())

        assert result.ok
        assert result.metadata["failed"] == ["broken", "refused"]
        assert result.metadata["succeeded"] == ["ok"]
        assert result.payload["broken"].failure is FailureKind.UNEXPECTED_ERROR
        assert result.payload["refused"].failure is FailureKind.GATE_REJECTED
        assert result.payload.succeeded == {"ok": "fine"}

    @pytest.mark.asyncio
    async def test_branches_receive_isolated_forks(self):
        seen = []

        def mutate(ctx):
            ctx["notes"].append("mutated")
            return "a"

        def observe(ctx):
            seen.append(list(ctx["notes"]))
            return "b"

        original = Context(notes=["draft"])
        executor = ParallelExecutor(ParallelConfig(branches={"a": mutate, "b": observe}))

        await executor.run(original)

        assert original["notes"] == ["draft"]
        assert seen == [["draft"]]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        async def branch(ctx):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "done"

        executor = ParallelExecutor(ParallelConfig(
            branches={f"b{i}": branch for i in range(6)},
            max_concurrency=2
        ))

        result = await executor.run(Context())

        assert result.payload.all_succeeded
        assert peak == 2

    @pytest.mark.asyncio
    async def test_aggregation_waits_for_slowest_branch(self):
        finished = []

        async def slow(ctx):
            await asyncio.sleep(0.05)
            finished.append("slow")
            return "slow"

        def fast(ctx):
            finished.append("fast")
            return "fast"

        result = await ParallelExecutor(ParallelConfig(branches={"slow": slow, "fast": fast})).run(Context())

        assert finished == ["fast", "slow"]
        assert set(result.payload.succeeded) == {"slow", "fast"}

    @pytest.mark.asyncio
    async def test_branch_timeout(self):
        async def hangs(ctx):
            await asyncio.sleep(5)

        executor = ParallelExecutor(ParallelConfig(
            branches={"hangs": hangs, "quick": lambda ctx: "ok"},
            branch_timeout=0.05
        ))

        result = await executor.run(Context())

        assert result.payload["hangs"].failure is FailureKind.CAPABILITY_TIMEOUT
        assert result.payload["quick"].ok

    @pytest.mark.asyncio
    async def test_cancel_siblings_on_failure(self):
        async def slow(ctx):
            await asyncio.sleep(5)
            return "never"

        async def fails(ctx):
            await asyncio.sleep(0.01)
            return StepResult.failed(FailureKind.CAPABILITY_FAILED, "provider down")

        executor = ParallelExecutor(ParallelConfig(
            branches={"slow": slow, "fails": fails},
            cancel_siblings_on_failure=True
        ))

        result = await asyncio.wait_for(executor.run(Context()), 1.0)

        assert result.payload["slow"].failure is FailureKind.CANCELLED_BY_CALLER
        assert result.payload["fails"].failure is FailureKind.CAPABILITY_FAILED
        assert result.metadata["statistics"]["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_external_cancellation(self):
        token = CancellationToken()

        async def slow(ctx):
            await asyncio.sleep(5)

        async def cancels(ctx):
            token.cancel("shutdown")
            return "done"

        executor = ParallelExecutor(ParallelConfig(branches={"slow": slow, "cancels": cancels}))

        result = await asyncio.wait_for(executor.run(Context(), token), 1.0)

        assert result.failure is FailureKind.CANCELLED_BY_CALLER
        assert result.reason == "shutdown"

    def test_sectioning_requires_branches(self):
        with pytest.raises(ValueError, match="at least one branch"):
            ParallelExecutor(ParallelConfig())


# ============================================================================
# Voting
# ============================================================================

class TestMajorityVote:
    """N runs of one workflow, reduced by label agreement."""

    @pytest.mark.asyncio
    async def test_all_disagree_is_quorum_failure(self):
        result = await voting(scripted_runs("A", "B", "C")).run(Context())

        assert result.failure is FailureKind.QUORUM_NOT_REACHED
        assert result.metadata["votes"] == [("A", 1), ("B", 1), ("C", 1)]

    @pytest.mark.asyncio
    async def test_two_of_three_agree(self):
        result = await voting(scripted_runs("A", "B", "A ")).run(Context())

        assert result.ok
        assert result.payload == "A"
        assert result.metadata["agreed"] == 2
        assert result.context["votes"] == ("A",)

    @pytest.mark.asyncio
    async def test_failed_runs_do_not_vote(self):
        failed = StepResult.failed(FailureKind.CAPABILITY_TIMEOUT, "slow")

        agreed = await voting(scripted_runs("yes", failed, "yes")).run(Context())
        split = await voting(scripted_runs("yes", failed, "no")).run(Context())

        assert agreed.ok and agreed.payload == "yes"
        assert agreed.metadata["succeeded"] == 2
        assert split.failure is FailureKind.QUORUM_NOT_REACHED

    @pytest.mark.asyncio
    async def test_all_runs_failed(self):
        failed = StepResult.failed(FailureKind.CAPABILITY_FAILED, "down")

        result = await voting(scripted_runs(failed, failed, failed)).run(Context())

        assert result.failure is FailureKind.QUORUM_NOT_REACHED
        assert "all 3 runs failed" in result.reason

    @pytest.mark.asyncio
    async def test_tie_is_signalled_by_default(self):
        reducer = MajorityVote(quorum=1)

        result = await voting(scripted_runs("A", "B"), n=2, reducer=reducer).run(Context())

        assert result.failure is FailureKind.QUORUM_NOT_REACHED
        assert result.metadata["tie"] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_tie_first_dispatched(self):
        reducer = MajorityVote(quorum=1, tie_policy=TiePolicy.FIRST_DISPATCHED)

        result = await voting(scripted_runs("A", "B"), n=2, reducer=reducer).run(Context())

        assert result.ok
        assert result.payload == "A"

    @pytest.mark.asyncio
    async def test_tie_first_completed(self):
        delays = iter([0.05, 0.0])

        async def run(ctx):
            delay = next(delays)
            await asyncio.sleep(delay)
            return "slow" if delay else "fast"

        reducer = MajorityVote(quorum=1, tie_policy=TiePolicy.FIRST_COMPLETED)

        result = await voting(run, n=2, reducer=reducer).run(Context())

        assert result.payload == "fast"

    @pytest.mark.asyncio
    async def test_custom_vote_key(self):
        reducer = MajorityVote(key=lambda r: r.payload["verdict"])

        result = await voting(
            scripted_runs({"verdict": "safe", "why": "x"}, {"verdict": "safe", "why": "y"}, {"verdict": "unsafe"}),
            reducer=reducer
        ).run(Context())

        assert result.ok
        assert result.payload == {"verdict": "safe", "why": "x"}

    def test_voting_requires_positive_n(self):
        with pytest.raises(ValueError, match="n >= 1"):
            voting(lambda ctx: "x", n=0)


class TestOtherReducers:
    """Score-based and pass-through reduction."""

    @pytest.mark.asyncio
    async def test_best_of_score(self):
        runs = scripted_runs(
            StepResult.success("draft a", score=0.4),
            StepResult.success("draft b", score=0.9),
            StepResult.success("draft c"),
        )

        result = await voting(runs, reducer=BestOfScore()).run(Context())

        assert result.payload == "draft b"
        assert result.metadata["winner"] == 1
        assert result.metadata["scores"] == [(0, 0.4), (1, 0.9)]

    @pytest.mark.asyncio
    async def test_best_of_score_tie_first_dispatched(self):
        runs = scripted_runs(StepResult.success("x", score=1), StepResult.success("y", score=1))

        result = await voting(runs, n=2, reducer=BestOfScore()).run(Context())

        assert result.payload == "x"

    @pytest.mark.asyncio
    async def test_pass_through_keeps_dispatch_order(self):
        failed = StepResult.failed(FailureKind.CAPABILITY_FAILED, "down")

        result = await voting(scripted_runs("a", failed, "c"), reducer=PassThrough()).run(Context())

        assert [r.payload for r in result.payload] == ["a", None, "c"]
        assert result.metadata["succeeded"] == 2
