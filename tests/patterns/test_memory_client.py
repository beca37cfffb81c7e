"""
Tests for HttpMemoryStore against an in-process httpx transport.
"""

import json

import httpx
import pytest

from agent_patterns import CapabilityError, CapabilityTimeoutError
from agent_patterns.memory_client import HttpMemoryStore


def memory_service():
    """Minimal memory service: GET/PUT /memories/{namespace}/{key}."""
    store = {}
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        key = request.url.path
        if request.method == "PUT":
            store[key] = json.loads(request.content)["value"]
            return httpx.Response(204)
        if key not in store:
            return httpx.Response(404)
        return httpx.Response(200, json={"value": store[key]})

    return handler, store, requests


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpMemoryStore:

    @pytest.mark.asyncio
    async def test_absent_key_reads_none(self):
        handler, _, requests = memory_service()
        memory = HttpMemoryStore("http://memory.local/", client=client_for(handler))

        assert await memory.read("missing") is None
        assert requests == [("GET", "/memories/default/missing")]

    @pytest.mark.asyncio
    async def test_write_then_read(self):
        handler, store, _ = memory_service()
        memory = HttpMemoryStore("http://memory.local", namespace="project:docs", client=client_for(handler))

        await memory.write("summary", {"text": "short", "tokens": 12})

        assert await memory.read("summary") == {"text": "short", "tokens": 12}
        assert list(store) == ["/memories/project:docs/summary"]

    @pytest.mark.asyncio
    async def test_server_error(self):
        memory = HttpMemoryStore(
            "http://memory.local",
            client=client_for(lambda request: httpx.Response(500, text="boom"))
        )

        with pytest.raises(CapabilityError, match="memory read failed"):
            await memory.read("k")
        with pytest.raises(CapabilityError, match="memory write failed"):
            await memory.write("k", "v")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        memory = HttpMemoryStore("http://memory.local", client=client_for(handler))

        with pytest.raises(CapabilityTimeoutError):
            await memory.read("k")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        memory = HttpMemoryStore(
            "http://memory.local",
            client=client_for(lambda request: httpx.Response(200, text="not json"))
        )

        with pytest.raises(CapabilityError):
            await memory.read("k")

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self):
        async with HttpMemoryStore("http://memory.local") as memory:
            client = memory.client

        assert client.is_closed
