"""
Voting reducers for ParallelExecutor.

A reducer receives every settled run (successes and failures, in dispatch
order) and produces one StepResult, or raises QuorumNotReached. Tie-breaking
is always an explicit, documented TiePolicy; the engine never resolves a tie
by whatever order the runs happened to be collected in.
"""

from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Protocol, Sequence

from .context import Context, StepResult
from .errors import QuorumNotReached


class TiePolicy(Enum):
    """How a reducer resolves equally-ranked candidates."""
    FIRST_COMPLETED = "first_completed"      # earliest-finishing run wins
    FIRST_DISPATCHED = "first_dispatched"    # lowest run index wins
    SIGNAL = "signal"                        # report the tie as QUORUM_NOT_REACHED


class Reducer(Protocol):
    def reduce(self, runs: Sequence[Any], context: Context) -> StepResult:
        ...


def _completion_rank(run: Any) -> int:
    order = run.completion_order
    return order if order is not None else 1 << 30


def _break_tie(candidates: List[List[Any]], policy: TiePolicy) -> Optional[List[Any]]:
    """Pick one candidate group; None means the tie must be signalled."""
    if policy is TiePolicy.SIGNAL:
        return None
    if policy is TiePolicy.FIRST_COMPLETED:
        return min(candidates, key=lambda group: min(_completion_rank(r) for r in group))
    return min(candidates, key=lambda group: min(r.index for r in group))


def _hashable(value: Any) -> Hashable:
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def default_vote_key(result: StepResult) -> Any:
    payload = result.payload
    if isinstance(payload, str):
        return payload.strip()
    return payload


class MajorityVote:
    """
    Majority-label agreement.

    Args:
        key: Maps a run's result to its vote label (default: the payload,
            stripped when it is a string)
        quorum: Minimum agreeing votes. Default: strict majority of the
            runs that completed without failure.
        tie_policy: Applies only when an explicit quorum lets two labels
            qualify with the same count.
    """

    def __init__(
        self,
        key: Callable[[StepResult], Any] = default_vote_key,
        quorum: Optional[int] = None,
        tie_policy: TiePolicy = TiePolicy.SIGNAL
    ):
        if quorum is not None and quorum < 1:
            raise ValueError(f"quorum must be >= 1 (got {quorum})")
        self.key = key
        self.quorum = quorum
        self.tie_policy = tie_policy

    def reduce(self, runs: Sequence[Any], context: Context) -> StepResult:
        succeeded = [r for r in runs if r.result.ok]
        if not succeeded:
            raise QuorumNotReached(f"all {len(runs)} runs failed", votes=[])

        groups: Dict[Hashable, List[Any]] = {}
        labels: Dict[Hashable, Any] = {}
        for run in sorted(succeeded, key=lambda r: r.index):
            label = self.key(run.result)
            slot = _hashable(label)
            groups.setdefault(slot, []).append(run)
            labels.setdefault(slot, label)

        votes = [(labels[slot], len(group)) for slot, group in groups.items()]
        required = self.quorum if self.quorum is not None else len(succeeded) // 2 + 1
        top = max(len(group) for group in groups.values())

        if top < required:
            raise QuorumNotReached(
                f"no label reached {required} of {len(succeeded)} votes",
                votes=votes
            )

        leaders = [group for group in groups.values() if len(group) == top]
        winner = leaders[0] if len(leaders) == 1 else _break_tie(leaders, self.tie_policy)
        if winner is None:
            raise QuorumNotReached(
                f"tie between {len(leaders)} labels at {top} votes",
                votes=votes,
                tie=[self.key(group[0].result) for group in leaders]
            )

        representative = min(winner, key=_completion_rank) \
            if self.tie_policy is TiePolicy.FIRST_COMPLETED else winner[0]
        return StepResult.success(
            representative.result.payload,
            votes=votes,
            agreed=top,
            succeeded=len(succeeded),
            runs=len(runs)
        )


def default_score(result: StepResult) -> Optional[float]:
    return result.metadata.get("score")


class BestOfScore:
    """
    Highest score wins.

    Runs whose score is None are treated as unscored and never win.
    """

    def __init__(
        self,
        score: Callable[[StepResult], Optional[float]] = default_score,
        tie_policy: TiePolicy = TiePolicy.FIRST_DISPATCHED,
        min_successes: int = 1
    ):
        if min_successes < 1:
            raise ValueError(f"min_successes must be >= 1 (got {min_successes})")
        self.score = score
        self.tie_policy = tie_policy
        self.min_successes = min_successes

    def reduce(self, runs: Sequence[Any], context: Context) -> StepResult:
        scored = []
        for run in runs:
            if run.result.ok:
                value = self.score(run.result)
                if value is not None:
                    scored.append((value, run))

        if len(scored) < self.min_successes:
            raise QuorumNotReached(
                f"{len(scored)} scored runs, {self.min_successes} required",
                scores=[]
            )

        best = max(value for value, _ in scored)
        leaders = [[run] for value, run in scored if value == best]
        winner = leaders[0] if len(leaders) == 1 else _break_tie(leaders, self.tie_policy)
        if winner is None:
            raise QuorumNotReached(
                f"tie between {len(leaders)} runs at score {best}",
                tie=[group[0].index for group in leaders]
            )

        run = winner[0]
        return StepResult.success(
            run.result.payload,
            score=best,
            winner=run.index,
            scores=[(r.index, v) for v, r in scored]
        )


class PassThrough:
    """Return every run's result, in dispatch order, for external adjudication."""

    def __init__(self, min_successes: int = 1):
        self.min_successes = min_successes

    def reduce(self, runs: Sequence[Any], context: Context) -> StepResult:
        ordered = sorted(runs, key=lambda r: r.index)
        succeeded = sum(1 for r in ordered if r.result.ok)
        if succeeded < self.min_successes:
            raise QuorumNotReached(f"{succeeded} successful runs, {self.min_successes} required")
        return StepResult.success(
            [r.result for r in ordered],
            succeeded=succeeded,
            runs=len(ordered)
        )
