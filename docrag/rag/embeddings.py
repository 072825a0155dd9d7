"""Embedding providers: map batches of text to fixed-length vectors."""
from typing import List, Optional, Protocol, Sequence, runtime_checkable
import httpx
import structlog

from docrag import config
from docrag.errors import EmbeddingProviderFailure
from docrag.llm_client import OllamaClient, ollama_client

logger = structlog.get_logger()


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Order-preserving text-to-vector mapping, one vector per input text."""

    model_name: str

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class OllamaEmbeddingProvider:
    """Embedding provider backed by Ollama's batch /api/embed endpoint."""

    def __init__(self, client: Optional[OllamaClient] = None, model: str = None):
        """Initialize the provider.

        Args:
            client: Ollama client (defaults to the global client)
            model: Embedding model name (default from config)
        """
        self.client = client or ollama_client
        self.model_name = model or config.EMBEDDING_MODEL

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed a batch of texts with a single request.

        Args:
            texts: Texts to embed

        Returns:
            One embedding vector per text, in input order

        Raises:
            EmbeddingProviderFailure: If the request fails or the response is malformed
        """
        texts = list(texts)
        if not texts:
            return []

        try:
            response = await self.client.embed(texts, model=self.model_name)
        except httpx.HTTPError as e:
            raise EmbeddingProviderFailure(
                f"Embedding request failed: {e}", phase="embed"
            ) from e
        except ValueError as e:
            raise EmbeddingProviderFailure(
                f"Embedding response is not valid JSON: {e}", phase="embed"
            ) from e

        if not isinstance(response, dict):
            raise EmbeddingProviderFailure(
                f"Unexpected embedding response: {type(response).__name__}", phase="embed"
            )

        embeddings = response.get("embeddings") or []

        if len(embeddings) != len(texts):
            raise EmbeddingProviderFailure(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}",
                phase="embed",
            )

        dimensions = {len(vector) for vector in embeddings}
        if 0 in dimensions or len(dimensions) != 1:
            raise EmbeddingProviderFailure(
                f"Malformed embeddings returned (dimensions: {sorted(dimensions)})",
                phase="embed",
            )

        logger.debug(
            "embeddings_generated",
            model=self.model_name,
            count=len(embeddings),
            dimension=dimensions.pop(),
        )

        return embeddings
