"""Tests for the paragraph-aware text chunker."""
import pytest

from docrag.rag.chunker import TextChunker, estimate_tokens


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_empty_text_yields_no_chunks():
    chunker = TextChunker()

    assert chunker.extract("") == []
    assert chunker.extract("   \n\n  \f  ") == []


def test_text_without_form_feed_is_page_one():
    chunks = TextChunker().extract("A short paragraph.\n\nAnother one.")

    assert len(chunks) == 1
    assert chunks[0].locator == 1
    assert chunks[0].content == "A short paragraph.\n\nAnother one."


def test_form_feeds_become_page_locators():
    chunks = TextChunker().extract("First page.\fSecond page.\f\fFourth page.")

    assert [c.locator for c in chunks] == [1, 2, 4]
    assert [c.chunk_index for c in chunks] == [0, 1, 2]


def test_paragraphs_are_packed_within_budget():
    chunker = TextChunker(max_tokens=10)
    paragraphs = ["word " * 6 for _ in range(5)]

    chunks = chunker.extract("\n\n".join(paragraphs))

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.content.strip()
        assert estimate_tokens(chunk.content) <= 10


def test_oversized_paragraph_is_split_by_sentences():
    chunker = TextChunker(max_tokens=8)
    text = "This is the first sentence. This is the second sentence. And a third one here."

    chunks = chunker.extract(text)

    assert len(chunks) >= 3
    assert chunks[0].content.startswith("This is the first sentence.")
    for chunk in chunks:
        assert estimate_tokens(chunk.content) <= 8


def test_unbroken_text_is_hard_split():
    chunker = TextChunker(max_tokens=5)

    chunks = chunker.extract("x" * 50)

    assert "".join(c.content for c in chunks) == "x" * 50
    assert all(len(c.content) <= 20 for c in chunks)


def test_locators_are_non_decreasing():
    text = "\f".join("Paragraph on page %d. " % i * 30 for i in range(1, 5))

    chunks = TextChunker(max_tokens=20).extract(text)
    locators = [c.locator for c in chunks]

    assert locators == sorted(locators)
    assert set(locators) == {1, 2, 3, 4}


def test_invalid_budget():
    with pytest.raises(ValueError):
        TextChunker(max_tokens=0)


def test_chunk_stats():
    chunker = TextChunker()
    chunks = chunker.extract("one\ftwo words")

    stats = chunker.get_chunk_stats(chunks)

    assert stats["chunk_count"] == 2
    assert stats["min_chunk_size"] == 3
    assert stats["max_chunk_size"] == 9
    assert chunker.get_chunk_stats([])["chunk_count"] == 0
