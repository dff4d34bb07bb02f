"""Unit tests — subroutines/collaborators.py (HTTP adapters and placeholders)."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from sillyagents.exceptions import GenerationError, ToolInvocationError
from sillyagents.subroutines.collaborators import (
    HttpGenerator,
    HttpToolInvoker,
    UnconfiguredGenerator,
    UnconfiguredToolInvoker,
)
from sillyagents.subroutines.models import GenerationOptions

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestPlaceholders:
    async def test_unconfigured_generator_raises(self) -> None:
        with pytest.raises(GenerationError):
            await UnconfiguredGenerator().generate("s1", GenerationOptions())

    async def test_unconfigured_tool_invoker_returns_error(self) -> None:
        result = await UnconfiguredToolInvoker().invoke("inbox", {})
        assert result.is_error
        assert "inbox" in result.as_text()


@pytest.mark.unit
class TestHttpGenerator:
    async def test_posts_session_and_options(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "text": "ok",
                    "tool_calls": [{"name": "search", "arguments": '{"q": "x"}', "id": "c1"}],
                },
            )

        gen = HttpGenerator("http://gen.test/", client=_client(handler))
        result = await gen.generate("s1", GenerationOptions(use_summary=True))

        assert str(seen[0].url) == "http://gen.test/generate"
        body = json.loads(seen[0].content)
        assert body["session_id"] == "s1"
        assert body["options"]["useSummary"] is True
        assert [c.name for c in result.tool_calls] == ["search"]
        assert result.tool_calls[0].arguments == {"q": "x"}

    async def test_http_error_raises_generation_error(self) -> None:
        gen = HttpGenerator(
            "http://gen.test", client=_client(lambda r: httpx.Response(503, text="busy"))
        )
        with pytest.raises(GenerationError, match="503"):
            await gen.generate("s1", GenerationOptions())

    async def test_transport_error_raises_generation_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        gen = HttpGenerator("http://gen.test", client=_client(handler))
        with pytest.raises(GenerationError):
            await gen.generate("s1", GenerationOptions())

    async def test_non_object_body_raises(self) -> None:
        gen = HttpGenerator("http://gen.test", client=_client(lambda r: httpx.Response(200, json=[1])))
        with pytest.raises(GenerationError):
            await gen.generate("s1", GenerationOptions())

    async def test_borrowed_client_not_closed(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={}))
        gen = HttpGenerator("http://gen.test", client=client)
        await gen.aclose()
        assert client.is_closed is False
        await client.aclose()


@pytest.mark.unit
class TestHttpToolInvoker:
    async def test_result_body(self) -> None:
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/tools/inbox/invoke"
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"result": {"unread": 2}})

        tools = HttpToolInvoker("http://tools.test", client=_client(handler))
        result = await tools.invoke("inbox", {"folder": "main"})

        assert seen == [{"arguments": {"folder": "main"}}]
        assert result.is_error is False
        assert result.output == {"unread": 2}

    async def test_error_body(self) -> None:
        tools = HttpToolInvoker(
            "http://tools.test",
            client=_client(lambda r: httpx.Response(200, json={"error": "denied"})),
        )
        result = await tools.invoke("inbox", {})
        assert result.is_error
        assert result.as_text() == "denied"

    async def test_non_2xx_is_error_result(self) -> None:
        tools = HttpToolInvoker(
            "http://tools.test",
            client=_client(lambda r: httpx.Response(404, json={"error": "no such tool"})),
        )
        result = await tools.invoke("ghost", {})
        assert result.is_error
        assert "404" in result.as_text()
        assert "no such tool" in result.as_text()

    async def test_plain_text_body(self) -> None:
        tools = HttpToolInvoker(
            "http://tools.test", client=_client(lambda r: httpx.Response(200, text="hello"))
        )
        result = await tools.invoke("echo", {})
        assert result.as_text() == "hello"

    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        tools = HttpToolInvoker("http://tools.test", client=_client(handler))
        with pytest.raises(ToolInvocationError):
            await tools.invoke("inbox", {})
