"""Semantic search over ingested chunks.

Handles:
- Query embedding generation (timed: it dominates end-to-end latency)
- Cosine-similarity lookup in the chunk collection, optionally per document
- Formatting results for the conversational agent
"""
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence
import structlog

from docrag import config
from docrag.rag.embeddings import EmbeddingProvider
from docrag.rag.models import ChunkRecord
from docrag.rag.store_faiss import VectorCollection

logger = structlog.get_logger()

NO_RESULTS_MESSAGE = "No relevant documents found for this query."


@dataclass
class SearchResult:
    """A retrieved chunk with its similarity score."""

    chunk: ChunkRecord
    score: float

    @property
    def source(self) -> str:
        """Get a formatted citation string for display."""
        return f"{self.chunk.document_id} (Page {self.chunk.locator})"


class SemanticSearch:
    """Read-only semantic search over the chunk collection."""

    def __init__(
        self,
        chunks: VectorCollection[ChunkRecord],
        embedder: EmbeddingProvider,
    ):
        """Initialize the search engine.

        Args:
            chunks: Chunk collection to query
            embedder: Embedding provider (must match the one used at ingestion)
        """
        self.chunks = chunks
        self.embedder = embedder

        logger.info(
            "semantic_search_initialized",
            embedding_model=getattr(embedder, "model_name", None),
        )

    async def search_with_scores(
        self,
        query: str,
        document_filter: Optional[str] = None,
        max_results: int = None,
    ) -> List[SearchResult]:
        """Retrieve the chunks most similar to a query, with scores.

        Args:
            query: User query text
            document_filter: Only consider chunks of this document id
            max_results: Maximum number of results (default from config)

        Returns:
            List of SearchResult, best first (ties broken by chunk key)

        Raises:
            ValueError: If max_results is not positive
            EmbeddingProviderFailure: If the query cannot be embedded
            StoreFailure: If the chunk collection cannot be queried
        """
        if max_results is None:
            max_results = config.SEARCH_MAX_RESULTS
        if max_results <= 0:
            raise ValueError(f"max_results must be positive, got {max_results}")

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        logger.info(
            "search_started",
            query_length=len(query),
            document_filter=document_filter,
            max_results=max_results,
        )

        embed_started = time.perf_counter()
        query_embedding = (await self.embedder.embed([query]))[0]
        embed_ms = (time.perf_counter() - embed_started) * 1000

        logger.info(
            "query_embedded",
            dimension=len(query_embedding),
            duration_ms=round(embed_ms, 2),
        )

        where = {"document_id": document_filter} if document_filter else None
        hits = await self.chunks.search(query_embedding, max_results, where=where)

        results = [SearchResult(chunk=hit.record, score=hit.score) for hit in hits]

        logger.info(
            "search_completed",
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results

    async def search(
        self,
        query: str,
        document_filter: Optional[str] = None,
        max_results: int = None,
    ) -> List[ChunkRecord]:
        """Retrieve the chunks most similar to a query.

        Same as search_with_scores() without the scores.
        """
        results = await self.search_with_scores(query, document_filter, max_results)
        return [result.chunk for result in results]


def format_results(chunks: Sequence[ChunkRecord]) -> str:
    """Render chunks as the text block handed to the chat model.

    Args:
        chunks: Retrieved chunks, best first

    Returns:
        One block per result citing document and page, or a no-results message
    """
    if not chunks:
        return NO_RESULTS_MESSAGE

    return "\n".join(
        f"[Result {i}] Document: {chunk.document_id} (Page {chunk.locator})\n"
        f"Content: {chunk.text}\n---"
        for i, chunk in enumerate(chunks, 1)
    )
