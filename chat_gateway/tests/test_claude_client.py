import asyncio
import json

import httpx
import pytest

from chat_gateway.config.settings import ProviderConfig
from chat_gateway.domain.exceptions import MalformedResponseError, NetworkError, UpstreamError
from chat_gateway.domain.models import ChatMessage
from chat_gateway.providers.claude_client import ClaudeClient

CFG = ProviderConfig(
    base_url="https://api.anthropic.test",
    api_key="ak-test",
    model="claude-test",
    api_version="2023-06-01",
    max_tokens=256,
)

HISTORY = [
    ChatMessage.create("system", "be brief"),
    ChatMessage.create("user", "hi"),
    ChatMessage.create("assistant", "hello"),
    ChatMessage.create("narrator", "again"),
]


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, chunks):
        self._chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


class StalledStream(httpx.AsyncByteStream):
    """先发一帧，然后一直不再发数据。"""

    def __init__(self, first):
        self._first = first
        self.closed = False

    async def __aiter__(self):
        yield self._first
        await asyncio.sleep(3600)
        yield b""

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_claude_complete_request_and_parse():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        text = await client.complete(HISTORY)

    assert text == "ok"
    assert captured["url"] == "https://api.anthropic.test/v1/messages"
    assert captured["headers"]["x-api-key"] == "ak-test"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    assert "authorization" not in captured["headers"]
    assert captured["payload"] == {
        "model": "claude-test",
        "max_tokens": 256,
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "again"},
        ],
    }


@pytest.mark.asyncio
async def test_claude_omits_version_header_when_blank():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        return httpx.Response(200, json={"content": [{"text": "ok"}]})

    cfg = CFG.model_copy(update={"api_version": ""})
    async with ClaudeClient(cfg, transport=httpx.MockTransport(handler)) as client:
        await client.complete(HISTORY)
    assert "anthropic-version" not in captured["headers"]


@pytest.mark.asyncio
async def test_claude_upstream_error_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(529, text="overloaded")

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError) as ei:
            await client.complete(HISTORY)
    assert ei.value.extra["upstream_status"] == 529
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_claude_malformed_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": []})

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(MalformedResponseError):
            await client.complete(HISTORY)


@pytest.mark.asyncio
async def test_claude_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkError) as ei:
            await client.complete(HISTORY)
        assert isinstance(ei.value.__cause__, httpx.ConnectError)

        with pytest.raises(NetworkError) as ei:
            async for _ in client.stream(HISTORY):
                pass
        assert isinstance(ei.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_claude_complete_cancelled_before_call():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"content": [{"text": "ok"}]})

    cancel = asyncio.Event()
    cancel.set()
    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(asyncio.CancelledError):
            await client.complete(HISTORY, cancel)
    assert calls == []


@pytest.mark.asyncio
async def test_claude_stream_tokens():
    captured = {}
    body = (
        b"event: message_start\n"
        b'data: {"type":"message_start","message":{"id":"m1"}}\n\n'
        b"event: content_block_delta\n"
        b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hel"}}\n\n'
        b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"lo"}}\n\n'
        b'data: {"type":"message_stop"}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        tokens = [t async for t in client.stream(HISTORY)]

    assert tokens == ["Hel", "lo"]
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["model"] == "claude-test"


@pytest.mark.asyncio
async def test_claude_stream_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"type": "authentication_error"}})

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError):
            async for _ in client.stream(HISTORY):
                pass


@pytest.mark.asyncio
async def test_claude_stream_cancel_releases_response():
    stream = TrackingStream([
        b'data: {"delta":{"text":"a"}}\n',
        b'data: {"delta":{"text":"b"}}\n',
        b'data: {"delta":{"text":"c"}}\n',
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=stream)

    cancel = asyncio.Event()
    out = []
    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        async for token in client.stream(HISTORY, cancel):
            out.append(token)
            cancel.set()

    assert out == ["a"]
    assert stream.closed


@pytest.mark.asyncio
async def test_claude_stream_early_close_releases_response():
    stream = TrackingStream([
        b'data: {"delta":{"text":"a"}}\n',
        b'data: {"delta":{"text":"b"}}\n',
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=stream)

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        gen = client.stream(HISTORY)
        assert await gen.__anext__() == "a"
        await gen.aclose()

    assert stream.closed


@pytest.mark.asyncio
async def test_claude_redirect_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, text="moved", headers={"location": "https://elsewhere.test/"})

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError) as ei:
            await client.complete(HISTORY)
        assert ei.value.extra["upstream_status"] == 302

        with pytest.raises(UpstreamError):
            async for _ in client.stream(HISTORY):
                pass


@pytest.mark.asyncio
async def test_claude_complete_cancel_while_waiting():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(3600)
        return httpx.Response(200, json={"content": [{"text": "late"}]})

    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)
    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(client.complete(HISTORY, cancel), timeout=2)


@pytest.mark.asyncio
async def test_claude_stream_cancel_while_upstream_stalls():
    stream = StalledStream(b'data: {"delta":{"text":"a"}}\n')

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=stream)

    cancel = asyncio.Event()
    out = []

    async def consume(client):
        async for token in client.stream(HISTORY, cancel):
            out.append(token)
            asyncio.get_running_loop().call_later(0.05, cancel.set)

    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        await asyncio.wait_for(consume(client), timeout=2)

    assert out == ["a"]
    assert stream.closed


@pytest.mark.asyncio
async def test_claude_stream_cancel_before_headers():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(3600)
        return httpx.Response(200, content=b"")

    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)
    async with ClaudeClient(CFG, transport=httpx.MockTransport(handler)) as client:
        tokens = await asyncio.wait_for(_collect(client.stream(HISTORY, cancel)), timeout=2)
    assert tokens == []


async def _collect(gen):
    return [t async for t in gen]
