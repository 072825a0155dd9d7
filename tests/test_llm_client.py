"""Tests for the Ollama client and the embedding provider built on it."""
import json

import httpx
import pytest

from docrag.errors import EmbeddingProviderFailure
from docrag.llm_client import OllamaClient
from docrag.rag.embeddings import EmbeddingProvider, OllamaEmbeddingProvider


def _client(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_chat_stream_sends_tools_and_options():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b'{"message": {"content": "hi"}, "done": true}\n')

    tools = [{"type": "function", "function": {"name": "search_documents"}}]
    chunks = [
        chunk
        async for chunk in _client(handler).chat_stream(
            [{"role": "user", "content": "hello"}], model="m", tools=tools, temperature=0.2
        )
    ]

    assert chunks[0]["message"]["content"] == "hi"
    assert seen["path"] == "/api/chat"
    assert seen["body"]["model"] == "m"
    assert seen["body"]["stream"] is True
    assert seen["body"]["tools"] == tools
    assert seen["body"]["options"] == {"temperature": 0.2}


@pytest.mark.asyncio
async def test_chat_stream_yields_chunks():
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": "lo"}, "done": False},
        {"message": {"content": ""}, "done": True, "prompt_eval_count": 7, "eval_count": 2},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body.encode("utf-8"))

    chunks = [chunk async for chunk in _client(handler).chat_stream([{"role": "user", "content": "x"}])]

    assert "".join(c["message"]["content"] for c in chunks) == "Hello"
    assert chunks[-1]["done"] is True


@pytest.mark.asyncio
async def test_chat_stream_error_line_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'{"error": "model not found"}\n')

    with pytest.raises(httpx.HTTPError):
        async for _ in _client(handler).chat_stream([{"role": "user", "content": "x"}]):
            pass


@pytest.mark.asyncio
async def test_http_errors_propagate():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(httpx.HTTPStatusError):
        async for _ in _client(handler).chat_stream([{"role": "user", "content": "x"}]):
            pass


@pytest.mark.asyncio
async def test_list_models():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}, {"name": "nomic"}]})

    assert await _client(handler).list_models() == ["llama3.1:8b", "nomic"]


@pytest.mark.asyncio
async def test_embedding_provider_batches_texts():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        return httpx.Response(
            200, json={"embeddings": [[float(i), 1.0] for i, _ in enumerate(body["input"])]}
        )

    provider = OllamaEmbeddingProvider(_client(handler), model="embed-model")
    vectors = await provider.embed(["a", "b", "c"])

    assert isinstance(provider, EmbeddingProvider)
    assert vectors == [[0.0, 1.0], [1.0, 1.0], [2.0, 1.0]]
    assert requests == [{"model": "embed-model", "input": ["a", "b", "c"]}]


@pytest.mark.asyncio
async def test_embedding_provider_skips_empty_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await OllamaEmbeddingProvider(_client(handler)).embed([]) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"error": "unavailable"}),
        httpx.Response(200, json={"embeddings": [[1.0, 2.0]]}),
        httpx.Response(200, json={"embeddings": [[1.0, 2.0], [1.0]]}),
        httpx.Response(200, json={"embeddings": [[], []]}),
        httpx.Response(200, content=b"<html>gateway</html>"),
        httpx.Response(200, json=[[1.0], [2.0]]),
    ],
    ids=["http-error", "count-mismatch", "ragged", "empty-vectors", "not-json", "not-an-object"],
)
async def test_embedding_provider_failures(response):
    provider = OllamaEmbeddingProvider(_client(lambda request: response))

    with pytest.raises(EmbeddingProviderFailure) as exc_info:
        await provider.embed(["a", "b"])

    assert exc_info.value.phase == "embed"
