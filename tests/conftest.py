"""Shared fixtures and fakes for the docrag test suite."""
import asyncio
import hashlib
import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from docrag.errors import EmbeddingProviderFailure, ExtractionFailure, SourceUnavailable
from docrag.rag.ingest import IngestionOrchestrator
from docrag.rag.models import ChunkRecord, DocumentRecord
from docrag.rag.store_faiss import FAISSCollection

_WORD = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Deterministic bag-of-words embedder: each word hashes to one dimension."""

    model_name = "fake-hashing"

    def __init__(self, dimension: int = 64, delay: float = 0.0, slow_on: Optional[str] = None):
        self.dimension = dimension
        self.delay = delay
        # When set, only batches containing this word are delayed
        self.slow_on = slow_on
        self.calls: List[List[str]] = []
        self.fail_on: Optional[str] = None

    def vector(self, text: str) -> List[float]:
        values = [0.0] * self.dimension
        for word in _WORD.findall(text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            values[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        # Constant component keeps every vector non-zero
        values[0] += 0.1
        norm = math.sqrt(sum(v * v for v in values))
        return [v / norm for v in values]

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        self.calls.append(texts)
        if self.delay and (self.slow_on is None or any(self.slow_on in text for text in texts)):
            await asyncio.sleep(self.delay)
        if self.fail_on and any(self.fail_on in text for text in texts):
            raise EmbeddingProviderFailure("embedding service unavailable", phase="embed")
        return [self.vector(text) for text in texts]


class InMemorySource:
    """Content source over a dict of document_id -> (version, text).

    A text of None makes read_text fail with ExtractionFailure.
    """

    def __init__(self, source_id: str = "memory://test"):
        self._source_id = source_id
        self.documents: Dict[str, Tuple[str, Optional[str]]] = {}
        self.available = True

    @property
    def source_id(self) -> str:
        return self._source_id

    def put(self, document_id: str, version: str, text: Optional[str]) -> None:
        self.documents[document_id] = (version, text)

    def remove(self, document_id: str) -> None:
        del self.documents[document_id]

    def list_current(self) -> List[Tuple[str, str]]:
        if not self.available:
            raise SourceUnavailable("source offline", phase="list")
        return [(doc_id, version) for doc_id, (version, _) in sorted(self.documents.items())]

    def read_text(self, document_id: str) -> str:
        text = self.documents[document_id][1]
        if text is None:
            raise ExtractionFailure("corrupt document", document_id=document_id, phase="read")
        return text


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "docrag-test.sqlite"


@pytest.fixture
def documents(db_path):
    return FAISSCollection("test-documents", DocumentRecord, db_path=db_path)


@pytest.fixture
def chunks(db_path):
    return FAISSCollection("test-chunks", ChunkRecord, vector_field="embedding", db_path=db_path)


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def source():
    return InMemorySource()


@pytest.fixture
def orchestrator(documents, chunks, embedder, db_path):
    return IngestionOrchestrator(
        documents=documents,
        chunks=chunks,
        embedder=embedder,
        continue_on_error=False,
        db_path=db_path,
    )
