"""
CapabilityProvider backed by the Anthropic Python SDK.

generate() goes through the messages API; retrieval, tools and memory are
delegated to collaborators injected at construction, since the engine does
not own any of them.
"""

import asyncio
import inspect
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

try:
    import anthropic
except ImportError:
    raise ImportError(
        "anthropic package not installed. "
        "Install with: uv pip install anthropic"
    )

from .capability import (
    CapabilityError,
    CapabilityTimeoutError,
    MemoryStore,
    ToolError,
    render_context,
)
from .context import Context
from .logging_config import get_logger

logger = get_logger("anthropic_provider")


@dataclass
class AnthropicOptions:
    """Configuration options for the Anthropic provider."""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: Optional[float] = None  # None: model default
    system_prompt: Optional[str] = None
    context_keys: Optional[List[str]] = None  # None: render the whole context


Retriever = Callable[[str], Awaitable[List[Any]]]


async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class AnthropicCapabilityProvider:
    """
    Anthropic-backed capability provider.

    Example:
        ```python
        provider = AnthropicCapabilityProvider(
            AnthropicOptions(model="claude-sonnet-4-20250514"),
            tools={"search": search_docs},
            memory=HttpMemoryStore("http://127.0.0.1:3000"),
        )
        executor = AugmentedCallExecutor(provider)
        ```
    """

    def __init__(
        self,
        options: Optional[AnthropicOptions] = None,
        client: Optional[Any] = None,
        retriever: Optional[Retriever] = None,
        tools: Optional[Mapping[str, Callable[..., Any]]] = None,
        memory: Optional[MemoryStore] = None,
        api_key: Optional[str] = None
    ):
        """
        Args:
            options: Model options
            client: Pre-built AsyncAnthropic client (mainly for tests)
            retriever: Async function query -> documents
            tools: Tool name -> callable taking keyword arguments
            memory: External memory store
            api_key: Overrides ANTHROPIC_API_KEY

        Raises:
            RuntimeError: If no client is given and no API key is available
        """
        self.options = options or AnthropicOptions()

        if client is None:
            api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise RuntimeError(
                    "ANTHROPIC_API_KEY environment variable not set. "
                    "Get your API key from: https://console.anthropic.com/settings/keys"
                )
            client = anthropic.AsyncAnthropic(api_key=api_key)

        self.client = client
        self.retriever = retriever
        self.tools: Dict[str, Callable[..., Any]] = dict(tools or {})
        self.memory = memory

    def _system_text(self, context: Context) -> str:
        rendered = render_context(context, self.options.context_keys)
        if self.options.system_prompt and rendered:
            return f"{self.options.system_prompt}\n\n{rendered}"
        return self.options.system_prompt or rendered

    async def generate(
        self,
        prompt: str,
        context: Context,
        *,
        timeout: Optional[float] = None
    ) -> str:
        request: Dict[str, Any] = {
            "model": self.options.model,
            "max_tokens": self.options.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.options.temperature is not None:
            request["temperature"] = self.options.temperature
        system = self._system_text(context)
        if system:
            request["system"] = system
        if timeout is not None:
            request["timeout"] = timeout

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APITimeoutError as e:
            raise CapabilityTimeoutError(f"generate timed out: {e}") from e
        except anthropic.APIError as e:
            raise CapabilityError(f"generate failed: {e}") from e

        text = "".join(
            getattr(block, "text", "") for block in response.content or []
        )
        logger.debug(
            f"Generated {len(text)} chars (stop_reason={getattr(response, 'stop_reason', None)})"
        )
        return text

    async def retrieve(self, query: str, *, timeout: Optional[float] = None) -> List[Any]:
        if self.retriever is None:
            raise CapabilityError("no retriever configured")
        try:
            documents = await asyncio.wait_for(_call(self.retriever, query), timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityTimeoutError(f"retrieval timed out: {query!r}") from e
        return list(documents or [])

    async def invoke_tool(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        timeout: Optional[float] = None
    ) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolError(name, "unknown tool")
        try:
            return await asyncio.wait_for(_call(tool, **dict(arguments)), timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityTimeoutError(f"tool {name} timed out") from e
        except CapabilityError:
            raise
        except Exception as e:
            logger.warning(f"Tool {name} raised {type(e).__name__}: {e}")
            raise ToolError(name, f"{type(e).__name__}: {e}") from e

    async def memory_read(self, key: str, *, timeout: Optional[float] = None) -> Optional[Any]:
        if self.memory is None:
            raise CapabilityError("no memory store configured")
        return await self.memory.read(key, timeout=timeout)

    async def memory_write(self, key: str, value: Any, *, timeout: Optional[float] = None) -> None:
        if self.memory is None:
            raise CapabilityError("no memory store configured")
        await self.memory.write(key, value, timeout=timeout)

    def __repr__(self) -> str:
        return f"AnthropicCapabilityProvider(model={self.options.model}, tools={len(self.tools)})"
