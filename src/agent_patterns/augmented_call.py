"""
Augmented Call Executor - the unit of work for every pattern.

Wraps one CapabilityProvider.generate() invocation with context assembly
(retrieval, tool and memory sub-calls issued first) and result
normalization. Every higher-level component ultimately bottoms out here.

Policy:
- Sub-call failures are recorded as gaps in metadata and the call proceeds
  with partial context, unless the request/executor is configured with
  ABORT_ON_SUBCALL_FAILURE.
- The generate call carries a timeout; expiry is reported as
  CAPABILITY_TIMEOUT. Nothing is retried here: retries belong to the caller,
  who knows which tool calls are safe to repeat.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .capability import CapabilityError, CapabilityProvider, CapabilityTimeoutError, ToolError
from .context import Context, StepResult
from .control import CancellationToken, run_cancellable
from .errors import CancelledByCaller, FailureKind
from .logging_config import get_logger
from .workflow import WorkflowBase

logger = get_logger("augmented_call")


class SubcallPolicy(Enum):
    """What to do when a retrieval/tool/memory sub-call fails."""
    PROCEED_WITH_PARTIAL_CONTEXT = "proceed_with_partial_context"
    ABORT_ON_SUBCALL_FAILURE = "abort_on_subcall_failure"


@dataclass
class ToolCall:
    """A tool invocation issued before generation."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


PromptSource = Union[str, Callable[[Context], str]]


@dataclass
class CallRequest:
    """
    One augmented capability call.

    Attributes:
        prompt: Prompt text, or a function building it from the Context
        retrieval_queries: Queries issued to retrieve() before generation
        tool_calls: Tools invoked before generation
        memory_keys: Memory keys read before generation
        memory_write_key: If set, the payload is written back under this key
        output_key: Context key the payload is appended to
        parser: Normalizes raw generated text into the payload
        timeout: Overrides the executor's default call timeout
        subcall_policy: Overrides the executor's default sub-call policy
        name: Label used in logs
    """
    prompt: PromptSource
    retrieval_queries: List[str] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    memory_keys: List[str] = field(default_factory=list)
    memory_write_key: Optional[str] = None
    output_key: str = "outputs"
    parser: Optional[Callable[[str], Any]] = None
    timeout: Optional[float] = None
    subcall_policy: Optional[SubcallPolicy] = None
    name: Optional[str] = None

    def render_prompt(self, context: Context) -> str:
        if callable(self.prompt):
            return self.prompt(context)
        return self.prompt


class _SubcallAborted(Exception):
    def __init__(self, result: StepResult):
        super().__init__(result.reason)
        self.result = result


class AugmentedCallExecutor:
    """
    Executes CallRequests against a CapabilityProvider.

    Sub-calls run sequentially, one outstanding at a time, so that the
    side-effect order of tool invocations is exactly the request order.
    """

    def __init__(
        self,
        provider: CapabilityProvider,
        timeout: Optional[float] = 30.0,
        subcall_timeout: Optional[float] = None,
        subcall_policy: SubcallPolicy = SubcallPolicy.PROCEED_WITH_PARTIAL_CONTEXT
    ):
        """
        Args:
            provider: The capability boundary
            timeout: Default timeout for generate() in seconds
            subcall_timeout: Timeout for each sub-call (defaults to `timeout`)
            subcall_policy: Default sub-call failure policy
        """
        self.provider = provider
        self.timeout = timeout
        self.subcall_timeout = subcall_timeout if subcall_timeout is not None else timeout
        self.subcall_policy = subcall_policy

    async def execute(
        self,
        request: CallRequest,
        context: Context,
        cancel: Optional[CancellationToken] = None
    ) -> StepResult:
        """
        Run one augmented call.

        Returns:
            StepResult whose payload is the parsed output and whose context
            carries the sub-call outputs and the payload under
            `request.output_key`.
        """
        label = request.name or request.output_key
        policy = request.subcall_policy or self.subcall_policy
        timeout = request.timeout if request.timeout is not None else self.timeout
        gaps: List[Dict[str, Any]] = []

        try:
            try:
                context = await self._assemble_context(request, context, policy, gaps, cancel)
            except _SubcallAborted as aborted:
                return aborted.result

            prompt = request.render_prompt(context)
            logger.debug(f"[{label}] Generating ({len(prompt)} chars prompt, {len(gaps)} gaps)")

            try:
                text = await run_cancellable(
                    self.provider.generate(prompt, context, timeout=timeout),
                    cancel,
                    timeout
                )
            except (asyncio.TimeoutError, CapabilityTimeoutError):
                logger.warning(f"[{label}] Generation timed out after {timeout}s")
                return StepResult.failed(
                    FailureKind.CAPABILITY_TIMEOUT,
                    f"generate timed out after {timeout}s",
                    context=context,
                    gaps=gaps
                )
            except CapabilityError as e:
                logger.warning(f"[{label}] Generation failed: {e}")
                return StepResult.failed(
                    FailureKind.CAPABILITY_FAILED,
                    str(e),
                    context=context,
                    gaps=gaps
                )

            if request.parser is not None:
                try:
                    payload = request.parser(text)
                except (ValueError, TypeError, KeyError) as e:
                    return StepResult.failed(
                        FailureKind.CAPABILITY_FAILED,
                        f"could not parse output: {e}",
                        context=context,
                        raw=text,
                        gaps=gaps
                    )
            else:
                payload = text

            context = context.append(request.output_key, payload)

            if request.memory_write_key:
                try:
                    await self._memory_write(request.memory_write_key, payload, policy, gaps, cancel)
                except _SubcallAborted as aborted:
                    return StepResult.failed(
                        aborted.result.failure,
                        aborted.result.reason,
                        payload=payload,
                        context=context,
                        gaps=gaps
                    )

        except CancelledByCaller as e:
            return StepResult.failed(FailureKind.CANCELLED_BY_CALLER, e.reason, context=context)

        return StepResult.success(payload, context=context, gaps=gaps)

    async def _assemble_context(
        self,
        request: CallRequest,
        context: Context,
        policy: SubcallPolicy,
        gaps: List[Dict[str, Any]],
        cancel: Optional[CancellationToken]
    ) -> Context:
        for query in request.retrieval_queries:
            ok, documents = await self._subcall(
                "retrieval", query,
                lambda q=query: self.provider.retrieve(q, timeout=self.subcall_timeout),
                policy, gaps, cancel, context
            )
            if ok:
                context = context.append("retrieved", {"query": query, "documents": list(documents)})

        for call in request.tool_calls:
            ok, output = await self._subcall(
                "tool", call.name,
                lambda c=call: self.provider.invoke_tool(c.name, c.arguments, timeout=self.subcall_timeout),
                policy, gaps, cancel, context
            )
            if ok:
                context = context.append("tool_results", {"tool": call.name, "result": output})

        for key in request.memory_keys:
            ok, value = await self._subcall(
                "memory", key,
                lambda k=key: self.provider.memory_read(k, timeout=self.subcall_timeout),
                policy, gaps, cancel, context
            )
            if ok and value is not None:
                context = context.append("memory", {"key": key, "value": value})

        return context

    async def _memory_write(
        self,
        key: str,
        value: Any,
        policy: SubcallPolicy,
        gaps: List[Dict[str, Any]],
        cancel: Optional[CancellationToken]
    ):
        await self._subcall(
            "memory_write", key,
            lambda: self.provider.memory_write(key, value, timeout=self.subcall_timeout),
            policy, gaps, cancel, None
        )

    async def _subcall(
        self,
        kind: str,
        target: str,
        call: Callable[[], Awaitable[Any]],
        policy: SubcallPolicy,
        gaps: List[Dict[str, Any]],
        cancel: Optional[CancellationToken],
        context: Optional[Context]
    ) -> Tuple[bool, Any]:
        """Run one sub-call; record or escalate its failure per policy."""
        try:
            return True, await run_cancellable(call(), cancel, self.subcall_timeout)
        except (asyncio.TimeoutError, CapabilityError) as e:
            timed_out = isinstance(e, (asyncio.TimeoutError, CapabilityTimeoutError))
            gap = {
                "kind": kind,
                "target": target,
                "error": "timeout" if timed_out else str(e),
            }
            logger.warning(f"Sub-call {kind}:{target} failed: {gap['error']}")

            if policy is SubcallPolicy.ABORT_ON_SUBCALL_FAILURE:
                if timed_out:
                    failure = FailureKind.CAPABILITY_TIMEOUT
                elif kind == "tool" or isinstance(e, ToolError):
                    failure = FailureKind.TOOL_INVOCATION_FAILED
                else:
                    failure = FailureKind.SUBCALL_FAILED
                raise _SubcallAborted(StepResult.failed(
                    failure,
                    f"{kind} sub-call '{target}' failed: {gap['error']}",
                    context=context,
                    gaps=gaps + [gap]
                ))

            gaps.append(gap)
            return False, None


class AugmentedCall(WorkflowBase):
    """A CallRequest bound to an executor, usable as a workflow step."""

    component = "augmented_call"

    def __init__(
        self,
        executor: AugmentedCallExecutor,
        request: CallRequest,
        name: Optional[str] = None
    ):
        super().__init__(name or request.name or request.output_key)
        self.executor = executor
        self.request = request

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        return await self.executor.execute(self.request, context, cancel)
