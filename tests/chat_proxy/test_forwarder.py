import asyncio
import json

import httpx
import pytest

from conftest import ChunkedStream, delta, sse_body
from webiscriptura.chat_proxy.config import ProxyConfig
from webiscriptura.chat_proxy.errors import (
    InvalidRequestError,
    StreamPayloadError,
    UpstreamError,
)
from webiscriptura.chat_proxy.forwarder import ChatForwarder, extract_delta
from webiscriptura.chat_proxy.metrics import MetricsAggregator

CHAT = {"messages": [{"role": "user", "content": "Parle-moi de Job."}]}


def _forwarder(handler, **cfg_overrides) -> ChatForwarder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatForwarder(ProxyConfig(**cfg_overrides), MetricsAggregator(), client=client)


async def _drain(forwarder: ChatForwarder, payload=CHAT) -> bytes:
    forwarded = await forwarder.handle_chat(payload)
    return b"".join([chunk async for chunk in forwarded.chunks])


def test_extract_delta_variants():
    assert extract_delta(delta("Amen")) == "Amen"
    assert extract_delta('{"choices": []}') == ""
    assert extract_delta('{"choices": [{"delta": {"role": "assistant"}}]}') == ""
    assert extract_delta('{"choices": [{"delta": {"content": null}}]}') == ""
    with pytest.raises(StreamPayloadError):
        extract_delta("{not json")
    with pytest.raises(StreamPayloadError):
        extract_delta('{"error": "boom"}')
    with pytest.raises(StreamPayloadError):
        extract_delta('{"choices": [{"index": 0}]}')


def test_upstream_request_shape(clean_provider_env):
    clean_provider_env.setenv("OPENAI_API_KEY", "sk-test")
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, content=sse_body(delta("ok"), "[DONE]"))

    forwarder = _forwarder(handler, system_prompt="Tu es un sage.")
    assert asyncio.run(_drain(forwarder)) == b"ok"

    request = captured["request"]
    assert request.method == "POST"
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    assert request.headers["api-key"] == "sk-test"
    assert request.headers["content-type"] == "application/json"
    body = json.loads(request.content)
    assert body["messages"] == [
        {"role": "system", "content": "Tu es un sage."},
        {"role": "user", "content": "Parle-moi de Job."},
    ]
    assert body["model"] == "claude-3-haiku"
    assert body["stream"] is True
    assert body["temperature"] == 0.7
    assert body["top_p"] == 0.95
    assert body["frequency_penalty"] == 0
    assert body["presence_penalty"] == 0
    assert body["max_tokens"] == 4000


def test_azure_request_has_empty_model(clean_provider_env):
    clean_provider_env.setenv("AZURE_OPENAI_API_BASE_URL", "https://az.example/")
    clean_provider_env.setenv("AZURE_OPENAI_DEPLOYMENT", "scriptura")
    clean_provider_env.setenv("AZURE_OPENAI_API_KEY", "az-key")
    captured = {}

    def handler(request):
        captured["request"] = request
        return httpx.Response(200, content=sse_body("[DONE]"))

    assert asyncio.run(_drain(_forwarder(handler))) == b""
    request = captured["request"]
    assert str(request.url) == (
        "https://az.example/openai/deployments/scriptura/chat/completions"
        "?api-version=2024-02-01"
    )
    assert request.headers["api-key"] == "az-key"
    assert json.loads(request.content)["model"] == ""


def test_budget_applies_to_forwarded_history(clean_provider_env):
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=sse_body("[DONE]"))

    payload = {
        "messages": [
            {"role": "user", "content": "a" * 6},
            {"role": "assistant", "content": "b" * 6},
            {"role": "user", "content": "c"},
        ]
    }
    forwarder = _forwarder(handler, char_budget=10)
    asyncio.run(_drain(forwarder, payload))
    sent = captured["body"]["messages"]
    assert [m["content"] for m in sent[1:]] == ["a" * 6]


def test_stream_concatenates_deltas_and_stops_at_done(clean_provider_env):
    stream = ChunkedStream(
        b'data: {"choices": [{"delta": {"con',
        b'tent": "Hi"}}]}\n\ndata: ' + delta(" there").encode() + b"\n\n",
        b"data: [DONE]\n",
        # Anything after the terminator is never read into the output
        b"data: " + delta("ignored").encode() + b"\n\n",
    )

    def handler(request):
        return httpx.Response(200, stream=stream)

    assert asyncio.run(_drain(_forwarder(handler))) == b"Hi there"
    assert stream.closed


def test_multibyte_text_split_across_chunks(clean_provider_env):
    encoded = sse_body(delta("Éternel"), "[DONE]")
    cut = encoded.index("É".encode()) + 1

    def handler(request):
        return httpx.Response(200, stream=ChunkedStream(encoded[:cut], encoded[cut:]))

    assert asyncio.run(_drain(_forwarder(handler))).decode("utf-8") == "Éternel"


def test_non_200_raises_upstream_error_and_closes(clean_provider_env):
    stream = ChunkedStream(b"rate limited")

    def handler(request):
        return httpx.Response(429, stream=stream)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(_drain(_forwarder(handler)))
    assert excinfo.value.status_code == 429
    assert excinfo.value.status_text == "Too Many Requests"
    assert "status code of 429" in str(excinfo.value)
    assert stream.closed


def test_malformed_event_aborts_after_earlier_chunks(clean_provider_env):
    stream = ChunkedStream(sse_body(delta("Hi"), "{broken"))

    def handler(request):
        return httpx.Response(200, stream=stream)

    async def run():
        forwarded = await _forwarder(handler).handle_chat(CHAT)
        received = []
        with pytest.raises(StreamPayloadError):
            async for chunk in forwarded.chunks:
                received.append(chunk)
        return received

    assert asyncio.run(run()) == [b"Hi"]
    assert stream.closed


def test_closing_relay_early_closes_upstream(clean_provider_env):
    stream = ChunkedStream(sse_body(delta("un"), delta("deux"), "[DONE]"))

    def handler(request):
        return httpx.Response(200, stream=stream)

    async def run():
        forwarded = await _forwarder(handler).handle_chat(CHAT)
        first = await forwarded.chunks.__anext__()
        await forwarded.chunks.aclose()
        return first

    assert asyncio.run(run()) == b"un"
    assert stream.closed


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"messages": "hello"},
        {"messages": [{"role": "wizard", "content": "x"}]},
        {"messages": [{"role": "user"}]},
    ],
)
def test_invalid_payloads_rejected_before_upstream(payload):
    def handler(request):  # pragma: no cover - must not be reached
        raise AssertionError("upstream called")

    with pytest.raises(InvalidRequestError):
        asyncio.run(_forwarder(handler).handle_chat(payload))


def test_record_metrics_after_stream(clean_provider_env):
    def handler(request):
        return httpx.Response(200, content=sse_body(delta("abc"), "[DONE]"))

    forwarder = _forwarder(handler)

    async def run():
        forwarded = await forwarder.handle_chat(CHAT)
        async for _ in forwarded.chunks:
            pass
        forwarder.record_metrics(forwarded)
        return forwarded

    forwarded = asyncio.run(run())
    assert forwarded.chars_out == 3
    assert forwarded.messages_sent == 1
    summary = forwarder.metrics.summary()
    assert summary["rolling"]["count"] == 1
    assert summary["requests_by_provider"]["openai"]["total_requests"] == 1
