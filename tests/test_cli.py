"""Tests for the helpers shared by the command-line scripts."""
import argparse

import httpx
import pytest

from docrag.cli import add_source_arguments, check_models, initial_ingestion
from docrag.llm_client import OllamaClient
from docrag.rag.embeddings import OllamaEmbeddingProvider
from docrag.rag.ingest import IngestionOrchestrator

from conftest import InMemorySource


class BrokenSource(InMemorySource):
    """Source whose listing fails with an error outside the docrag hierarchy."""

    def list_current(self):
        raise RuntimeError("disk went away")


def _client(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


def test_source_arguments_default_to_config():
    parser = argparse.ArgumentParser()
    add_source_arguments(parser)

    args = parser.parse_args([])

    assert args.source_dir is None
    assert args.pdf is False
    assert args.hash_content is None
    assert args.continue_on_error is None
    assert args.timeout is None

    args = parser.parse_args(["--pdf", "--continue-on-error", "--timeout", "12.5"])

    assert args.pdf is True
    assert args.continue_on_error is True
    assert args.timeout == 12.5


@pytest.mark.asyncio
async def test_check_models_reports_missing(capsys):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(
            200, json={"models": [{"name": "llama3.1:8b"}, {"name": "nomic-embed-text:latest"}]}
        )

    missing = await check_models(
        ["llama3.1:8b", "nomic-embed-text", "mistral:7b"], client=_client(handler)
    )

    assert missing == ["mistral:7b"]
    assert "ollama pull mistral:7b" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_check_models_with_unreachable_server(capsys):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    missing = await check_models(["llama3.1:8b"], client=_client(handler))

    assert missing == ["llama3.1:8b"]
    assert "not reachable" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_initial_ingestion_returns_report(orchestrator, source):
    source.put("A.txt", "v1", "apple")

    report = await initial_ingestion(orchestrator, source, timeout_seconds=5)

    assert report.processed == 1


@pytest.mark.asyncio
async def test_initial_ingestion_survives_unexpected_errors(orchestrator, capsys):
    report = await initial_ingestion(orchestrator, BrokenSource(), timeout_seconds=5)

    assert report is None
    assert "disk went away" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_initial_ingestion_survives_bad_embedding_response(documents, chunks, source, db_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    embedder = OllamaEmbeddingProvider(_client(handler))
    orchestrator = IngestionOrchestrator(documents, chunks, embedder, db_path=db_path)
    source.put("A.txt", "v1", "apple")

    assert await initial_ingestion(orchestrator, source, timeout_seconds=5) is None
    assert await documents.count() == 0
