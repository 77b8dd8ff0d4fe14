import json

import httpx
import pytest

from harmony_agent.config import Config, UpstreamConfig
from harmony_agent.exceptions import UpstreamAPIError
from harmony_agent.llm import create_adapter
from harmony_agent.llm.chat_completions import ChatCompletionsAdapter
from harmony_agent.llm.client import UpstreamClient
from harmony_agent.llm.responses import StreamingResponsesAdapter, StructuredResponsesAdapter


def _sse(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n\n" for p in payloads).encode("utf-8")


@pytest.mark.asyncio
async def test_create_response_posts_to_responses_endpoint():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"output": []})

    config = UpstreamConfig(responses_url="http://upstream/v1/", api_key="sk-test")
    client = UpstreamClient(config, transport=httpx.MockTransport(handler))
    try:
        data = await client.create_response({"model": "m"})
    finally:
        await client.close()

    assert data == {"output": []}
    assert str(seen[0].url) == "http://upstream/v1/responses"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    assert json.loads(seen[0].content) == {"model": "m"}


@pytest.mark.asyncio
async def test_error_status_raises_upstream_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    client = UpstreamClient(UpstreamConfig(base_url="http://upstream/v1"), transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.create_response({})
    finally:
        await client.close()

    assert exc_info.value.status_code == 503
    assert "overloaded" in str(exc_info.value)


@pytest.mark.asyncio
async def test_stream_chat_completion_yields_chunks_until_done():
    body = _sse('{"choices": [{"delta": {"content": "a"}}]}', "not json", '{"choices": []}', "[DONE]", '{"late": 1}')

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    client = UpstreamClient(UpstreamConfig(base_url="http://upstream/v1"), transport=httpx.MockTransport(handler))
    try:
        chunks = [chunk async for chunk in client.stream_chat_completion({"stream": True})]
    finally:
        await client.close()

    assert chunks == [{"choices": [{"delta": {"content": "a"}}]}, {"choices": []}]


@pytest.mark.asyncio
async def test_create_adapter_follows_configuration():
    cfg = Config()
    client = UpstreamClient(cfg.upstream)
    try:
        cfg.upstream.responses_url = ""
        assert isinstance(create_adapter(cfg, client), ChatCompletionsAdapter)

        cfg.upstream.responses_url = "http://responses/v1"
        cfg.upstream.streaming_mode = "buffered"
        assert isinstance(create_adapter(cfg, client), StructuredResponsesAdapter)

        cfg.upstream.streaming_mode = "native"
        assert isinstance(create_adapter(cfg, client), StreamingResponsesAdapter)
    finally:
        await client.close()
