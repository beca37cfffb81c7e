"""
Control primitives: cancellation and stop conditions.

Every suspension point in the engine goes through run_cancellable(), which
races the awaited call against the caller's CancellationToken (and an
optional timeout). Loops carry a StopCondition that is checked before every
decision, so bounds are enforced even when the decision step never chooses
to stop.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .context import Context
from .errors import CancelledByCaller


class CancellationToken:
    """External cancellation signal shared by a component tree."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancelledByCaller(self.reason or "cancelled by caller")


def _discard_result(task: "asyncio.Future[Any]"):
    # Abandoned calls may still finish; their outcome is dropped.
    if not task.cancelled():
        task.exception()


async def run_cancellable(
    awaitable: Awaitable[Any],
    cancel: Optional[CancellationToken] = None,
    timeout: Optional[float] = None
) -> Any:
    """
    Await `awaitable`, aborting on cancellation or timeout.

    Raises:
        CancelledByCaller: token fired before the call completed
        asyncio.TimeoutError: timeout elapsed first
    """
    if cancel is None:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)

    if cancel.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        cancel.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())

    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    # Best-effort abort: providers that ignore cancellation finish unobserved.
    task.cancel()
    task.add_done_callback(_discard_result)

    if cancel.cancelled:
        raise CancelledByCaller(cancel.reason or "cancelled by caller")
    raise asyncio.TimeoutError()


class StopReason(Enum):
    """Why a bounded loop terminated."""
    GOAL_REACHED = "goal_reached"
    MAX_STEPS = "max_steps"
    CANCELLED = "cancelled"
    ESCALATION_EXHAUSTED = "escalation_exhausted"


@dataclass
class StopCondition:
    """
    Bounds that terminate a loop.

    Attributes:
        max_steps: Maximum act/observe cycles (0 stops before the first)
        goal: Predicate over the current Context; True ends the loop as done
        cancel: External cancellation token
        max_escalations: Human consultations allowed before giving up
    """
    max_steps: int = 10
    goal: Optional[Callable[[Context], bool]] = None
    cancel: Optional[CancellationToken] = None
    max_escalations: int = 3

    def check(
        self,
        steps: int,
        context: Context,
        escalation_exhausted: bool = False
    ) -> Optional[StopReason]:
        """Return the reason to stop, or None to keep going."""
        if self.cancel is not None and self.cancel.cancelled:
            return StopReason.CANCELLED
        if self.goal is not None and self.goal(context):
            return StopReason.GOAL_REACHED
        if escalation_exhausted:
            return StopReason.ESCALATION_EXHAUSTED
        if steps >= self.max_steps:
            return StopReason.MAX_STEPS
        return None
