"""Helpers shared by the command-line scripts."""
import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx
import structlog

from docrag import config
from docrag.errors import DocragError, IngestionTimeout
from docrag.llm_client import OllamaClient, ollama_client
from docrag.rag.embeddings import OllamaEmbeddingProvider
from docrag.rag.ingest import IngestionOrchestrator, IngestionReport, ingest_with_timeout
from docrag.rag.retriever import SemanticSearch
from docrag.rag.store_faiss import get_chunk_collection, get_document_collection

logger = structlog.get_logger()


def add_source_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by the ingest and chat scripts."""
    parser.add_argument(
        "--source-dir",
        type=Path,
        default=None,
        help=f"Documents directory (default: {config.DOCUMENTS_DIR})",
    )
    parser.add_argument("--pdf", action="store_true", help="Ingest PDF files")
    parser.add_argument(
        "--hash-content",
        action="store_true",
        default=None,
        help="Detect changes by content hash instead of modification time",
    )
    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        default=None,
        help="Skip documents that fail instead of aborting the run",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help=f"Ingestion timeout in seconds (default: {config.INGEST_TIMEOUT_SECONDS:g})",
    )


@dataclass
class Pipeline:
    """Orchestrator and search engine sharing one set of collections."""

    orchestrator: IngestionOrchestrator
    search: SemanticSearch


async def build_pipeline(continue_on_error: Optional[bool] = None) -> Pipeline:
    """Wire the default collections, Ollama embeddings, orchestrator and search."""
    documents = await get_document_collection()
    chunks = await get_chunk_collection()
    embedder = OllamaEmbeddingProvider()

    return Pipeline(
        orchestrator=IngestionOrchestrator(
            documents=documents,
            chunks=chunks,
            embedder=embedder,
            continue_on_error=continue_on_error,
        ),
        search=SemanticSearch(chunks, embedder),
    )


async def check_models(models: List[str], client: Optional[OllamaClient] = None) -> List[str]:
    """Return the models missing from the Ollama server, warning about each.

    An unreachable server is reported and treated as having none of them.
    """
    client = client or ollama_client
    try:
        available = await client.list_models()
    except httpx.HTTPError as e:
        print(f"Warning: Ollama is not reachable at {client.base_url} ({e})")
        return list(models)

    # Ollama names untagged models ":latest"
    names = set(available) | {name.split(":", 1)[0] for name in available if name.endswith(":latest")}
    missing = [model for model in models if model not in names]
    for model in missing:
        print(f"Warning: model '{model}' is not available. Run: ollama pull {model}")
    logger.info("models_checked", available=len(available), missing=missing)
    return missing


async def initial_ingestion(
    orchestrator: IngestionOrchestrator,
    source,
    timeout_seconds: Optional[float] = None,
) -> Optional[IngestionReport]:
    """Bring the collections up to date, reporting but surviving failures.

    Returns the report, or None when the run did not complete.
    """
    print(f"\nIngesting documents from {source.source_id} ...")
    try:
        report = await ingest_with_timeout(orchestrator, source, timeout_seconds)
    except IngestionTimeout as e:
        print(f"Ingestion timed out: {e}")
        print("Chatting over the documents ingested so far.")
        return None
    except DocragError as e:
        print(f"Ingestion failed: {e}")
        print("Chatting over the previously ingested documents.")
        return None
    except Exception as e:
        print(f"Ingestion failed unexpectedly: {e}")
        print("Chatting over the previously ingested documents.")
        logger.error("initial_ingestion_failed", error=str(e), error_type=type(e).__name__)
        return None

    print(
        f"Ingestion {report.status}: {report.processed} processed, "
        f"{report.unchanged} unchanged, {report.deleted} deleted, {report.failed} failed"
    )
    return report
