"""
Capability contracts consumed by the engine.

The engine never implements generation, retrieval, tools or memory; it
calls them through the protocols below. All calls are async and carry a
caller-supplied timeout. Failures are reported by raising CapabilityError
(or one of its subclasses); a memory read of an absent key returns None.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from .context import Context


class CapabilityError(Exception):
    """A capability call failed."""


class CapabilityTimeoutError(CapabilityError):
    """A capability call exceeded its timeout."""


class ToolError(CapabilityError):
    """A tool invocation failed."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool


@runtime_checkable
class CapabilityProvider(Protocol):
    """The atomic operations every pattern bottoms out in."""

    async def generate(
        self,
        prompt: str,
        context: Context,
        *,
        timeout: Optional[float] = None
    ) -> str:
        ...

    async def retrieve(
        self,
        query: str,
        *,
        timeout: Optional[float] = None
    ) -> List[Any]:
        ...

    async def invoke_tool(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        timeout: Optional[float] = None
    ) -> Any:
        ...

    async def memory_read(
        self,
        key: str,
        *,
        timeout: Optional[float] = None
    ) -> Optional[Any]:
        ...

    async def memory_write(
        self,
        key: str,
        value: Any,
        *,
        timeout: Optional[float] = None
    ) -> None:
        ...


@runtime_checkable
class MemoryStore(Protocol):
    """
    External memory collaborator.

    Treated as externally synchronised: single writer per key, any number of
    readers, no in-process exclusivity assumed.
    """

    async def read(self, key: str, *, timeout: Optional[float] = None) -> Optional[Any]:
        ...

    async def write(self, key: str, value: Any, *, timeout: Optional[float] = None) -> None:
        ...


def render_context(context: Context, keys: Optional[List[str]] = None) -> str:
    """
    Render selected context entries as plain text for a prompt.

    Sequence values are listed item by item; other values are stringified.
    """
    sections: Dict[str, Any] = {}
    for key in keys if keys is not None else list(context):
        if key in context:
            sections[key] = context[key]

    parts = []
    for key, value in sections.items():
        parts.append(f"## {key}")
        if isinstance(value, tuple):
            for item in value:
                parts.append(f"- {item}")
        else:
            parts.append(str(value))
    return "\n".join(parts)
