"""
Scripted collaborators for pattern tests.

Every fake records what it was asked to do so tests can assert on the
exact sequence of side effects.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from agent_patterns import Context, StepResult
from agent_patterns.agents import Action, HumanResponse, Observation, TestReport
from agent_patterns.capability import ToolError


class ScriptedProvider:
    """CapabilityProvider returning scripted generations."""

    def __init__(
        self,
        responses: Optional[Sequence[Any]] = None,
        respond: Optional[Callable[[str, Context], Any]] = None,
        documents: Optional[Dict[str, Any]] = None,
        tools: Optional[Dict[str, Any]] = None,
        memory: Optional[Dict[str, Any]] = None,
        delay: float = 0.0
    ):
        self.responses = list(responses or [])
        self.respond = respond
        self.documents = dict(documents or {})
        self.tools = dict(tools or {})
        self.memory = dict(memory or {})
        self.delay = delay
        self.prompts: List[str] = []
        self.tool_calls: List[tuple] = []
        self.writes: List[tuple] = []

    async def generate(self, prompt: str, context: Context, *, timeout: Optional[float] = None) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        value = self.respond(prompt, context) if self.respond else self.responses.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def retrieve(self, query: str, *, timeout: Optional[float] = None) -> List[Any]:
        documents = self.documents.get(query, [])
        if isinstance(documents, Exception):
            raise documents
        return documents

    async def invoke_tool(self, name: str, arguments: Dict[str, Any], *, timeout: Optional[float] = None) -> Any:
        self.tool_calls.append((name, dict(arguments)))
        if name not in self.tools:
            raise ToolError(name, "unknown tool")
        value = self.tools[name]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(**arguments)
        return value

    async def memory_read(self, key: str, *, timeout: Optional[float] = None) -> Optional[Any]:
        return self.memory.get(key)

    async def memory_write(self, key: str, value: Any, *, timeout: Optional[float] = None) -> None:
        self.memory[key] = value
        self.writes.append((key, value))


class Recorder:
    """Function workflow that records its invocations and returns a fixed payload."""

    def __init__(self, name: str, payload: Any = None, calls: Optional[List[str]] = None):
        self.name = name
        self.payload = payload if payload is not None else name
        self.calls = calls if calls is not None else []
        self.contexts: List[Context] = []

    def __call__(self, context: Context) -> StepResult:
        self.calls.append(self.name)
        self.contexts.append(context)
        return StepResult.success(self.payload, context=context.append("outputs", self.payload))


def scripted_decisions(actions: Sequence[Action], seen: Optional[List[Context]] = None):
    """Decision step yielding `actions` in order, repeating the last one."""
    queue = list(actions)

    def decide(context: Context) -> Action:
        if seen is not None:
            seen.append(context)
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    return decide


class ScriptedEnvironment:
    """Environment with a fixed action set and scripted observations."""

    def __init__(
        self,
        actions: Sequence[str] = ("step",),
        outcome: Optional[Callable[[Action], Observation]] = None
    ):
        self.actions = tuple(actions)
        self.outcome = outcome
        self.applied: List[Action] = []

    def list_available_actions(self, context: Context) -> Sequence[str]:
        return self.actions

    async def apply(self, action: Action) -> Observation:
        self.applied.append(action)
        if self.outcome is not None:
            return self.outcome(action)
        return Observation(True, detail=f"{action.name} ok")


class ScriptedHuman:
    """Human collaborator replying from a script (default: generic guidance)."""

    def __init__(self, responses: Optional[Sequence[HumanResponse]] = None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.delay = delay
        self.events = []

    async def request_guidance(self, event) -> HumanResponse:
        self.events.append(event)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            return self.responses.pop(0)
        return HumanResponse(guidance="try a different approach")


class FakeToolkit:
    """CodingToolkit over an in-memory file list and scripted test runs."""

    def __init__(self, files: Sequence[str] = (), reports: Optional[Sequence[TestReport]] = None):
        self.files = list(files)
        self.reports = list(reports or [])
        self.edits: List[Any] = []
        self.searches: List[str] = []
        self.test_runs = 0

    async def search_files(self, query: str) -> Sequence[str]:
        self.searches.append(query)
        return list(self.files)

    async def apply_edit(self, edit: Any) -> Any:
        self.edits.append(edit)
        return None

    async def run_tests(self) -> TestReport:
        self.test_runs += 1
        if len(self.reports) > 1:
            return self.reports.pop(0)
        if self.reports:
            return self.reports[0]
        return TestReport(passed=False, total=1, failures=1, output="1 failed")
