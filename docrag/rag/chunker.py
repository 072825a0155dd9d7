"""Text chunking for the ingestion pipeline.

Splits document text into segments sized for embedding. Token counts are
estimated from character length to avoid tokenizer dependencies.
"""
import math
import re
from typing import List, Tuple
from dataclasses import dataclass
import structlog

from docrag import config
from docrag.rag.sources import PAGE_SEPARATOR

logger = structlog.get_logger()

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text (about 4 characters per token)."""
    return math.ceil(len(text) / config.CHARS_PER_TOKEN)


@dataclass
class TextChunk:
    """A segment of document text with its page locator."""

    content: str
    locator: int
    chunk_index: int


class TextChunker:
    """Paragraph-aware chunker with a token budget per segment."""

    def __init__(self, max_tokens: int = None):
        """Initialize the text chunker.

        Args:
            max_tokens: Target maximum tokens per segment (default from config)
        """
        self.max_tokens = config.CHUNK_MAX_TOKENS if max_tokens is None else max_tokens

        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")

        logger.info("chunker_initialized", max_tokens=self.max_tokens)

    def extract(self, text: str) -> List[TextChunk]:
        """Split text into ordered segments tagged with page numbers.

        Pages are separated by form feeds and numbered from 1. Segments never
        span pages, so locators are non-decreasing.

        Args:
            text: Document text

        Returns:
            List of TextChunk objects (empty if the text has no content)
        """
        if not text or not text.strip():
            return []

        chunks: List[TextChunk] = []

        for page_number, page_text in enumerate(text.split(PAGE_SEPARATOR), 1):
            for segment in self._split_page(page_text):
                chunks.append(
                    TextChunk(
                        content=segment,
                        locator=page_number,
                        chunk_index=len(chunks),
                    )
                )

        if chunks:
            logger.info(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _split_page(self, page_text: str) -> List[str]:
        """Split one page into segments within the token budget."""
        pieces: List[Tuple[str, bool]] = []

        for raw_paragraph in _PARAGRAPH_BREAK.split(page_text):
            paragraph = " ".join(raw_paragraph.split())
            if not paragraph:
                continue

            if estimate_tokens(paragraph) <= self.max_tokens:
                pieces.append((paragraph, True))
                continue

            for index, piece in enumerate(self._split_oversized(paragraph)):
                pieces.append((piece, index == 0))

        return self._pack(pieces)

    def _split_oversized(self, paragraph: str) -> List[str]:
        """Break a paragraph larger than the budget into sentences, words or slices."""
        max_chars = self.max_tokens * config.CHARS_PER_TOKEN
        pieces = []

        for sentence in _SENTENCE_END.split(paragraph):
            if estimate_tokens(sentence) <= self.max_tokens:
                pieces.append(sentence)
                continue

            for word in sentence.split(" "):
                if estimate_tokens(word) <= self.max_tokens:
                    pieces.append(word)
                else:
                    pieces.extend(
                        word[i : i + max_chars] for i in range(0, len(word), max_chars)
                    )

        return [p for p in pieces if p]

    def _pack(self, pieces: List[Tuple[str, bool]]) -> List[str]:
        """Greedily merge pieces into segments no larger than the budget.

        Pieces that start a paragraph are joined with a blank line, pieces
        continuing a split paragraph with a single space.
        """
        segments = []
        current = ""

        for piece, starts_paragraph in pieces:
            if not current:
                current = piece
                continue

            joiner = "\n\n" if starts_paragraph else " "
            candidate = current + joiner + piece

            if estimate_tokens(candidate) <= self.max_tokens:
                current = candidate
            else:
                segments.append(current)
                current = piece

        if current:
            segments.append(current)

        return segments

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "max_tokens": self.max_tokens,
        }
