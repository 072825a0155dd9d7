"""Tests for the directory-backed content sources."""
import os

import fitz
import pytest

from docrag.errors import ExtractionFailure, SourceUnavailable
from docrag.rag.sources import (
    ContentSource,
    PdfDirectorySource,
    TextDirectorySource,
    open_source,
)


def _write_pdf(path, pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()


@pytest.fixture
def docs_dir(tmp_path):
    directory = tmp_path / "docs"
    directory.mkdir()
    (directory / "notes.txt").write_text("Plain notes", encoding="utf-8")
    (directory / "readme.md").write_text("# Readme", encoding="utf-8")
    (directory / "image.png").write_bytes(b"\x89PNG")
    nested = directory / "nested"
    nested.mkdir()
    (nested / "deep.txt").write_text("ignored", encoding="utf-8")
    return directory


def test_text_source_lists_top_level_text_files(docs_dir):
    source = TextDirectorySource(docs_dir)

    listing = source.list_current()

    assert isinstance(source, ContentSource)
    assert [doc_id for doc_id, _ in listing] == ["notes.txt", "readme.md"]
    assert source.source_id == str(docs_dir)


def test_modification_time_is_the_default_version(docs_dir):
    source = TextDirectorySource(docs_dir, hash_content=False)
    path = docs_dir / "notes.txt"

    os.utime(path, (1_700_000_000, 1_700_000_000))
    before = dict(source.list_current())["notes.txt"]
    os.utime(path, (1_700_000_100, 1_700_000_100))
    after = dict(source.list_current())["notes.txt"]

    assert before == "2023-11-14T22:13:20+00:00"
    assert before != after


def test_content_hash_ignores_touches(docs_dir):
    source = TextDirectorySource(docs_dir, hash_content=True)
    path = docs_dir / "notes.txt"

    before = dict(source.list_current())["notes.txt"]
    os.utime(path, (1_700_000_100, 1_700_000_100))
    touched = dict(source.list_current())["notes.txt"]
    path.write_text("Edited notes", encoding="utf-8")
    edited = dict(source.list_current())["notes.txt"]

    assert before.startswith("sha256:")
    assert before == touched
    assert edited != before


def test_missing_directory_is_unavailable(tmp_path):
    source = TextDirectorySource(tmp_path / "missing")

    with pytest.raises(SourceUnavailable):
        source.list_current()


def test_read_text(docs_dir):
    source = TextDirectorySource(docs_dir)

    assert source.read_text("notes.txt") == "Plain notes"

    with pytest.raises(ExtractionFailure) as exc_info:
        source.read_text("gone.txt")
    assert exc_info.value.document_id == "gone.txt"


def test_undecodable_text_is_an_extraction_failure(docs_dir):
    (docs_dir / "latin1.txt").write_bytes("caf\xe9".encode("latin-1"))
    source = TextDirectorySource(docs_dir)

    with pytest.raises(ExtractionFailure):
        source.read_text("latin1.txt")


def test_matches(docs_dir):
    source = TextDirectorySource(docs_dir)

    assert source.matches(docs_dir / "new.md")
    assert not source.matches(docs_dir / "image.png")
    assert not source.matches(docs_dir / "nested" / "deep.txt")


def test_pdf_pages_are_separated_by_form_feed(tmp_path):
    _write_pdf(tmp_path / "guide.pdf", ["First page text", "Second page text"])
    source = PdfDirectorySource(tmp_path)

    text = source.read_text("guide.pdf")
    pages = text.split("\f")

    assert [doc_id for doc_id, _ in source.list_current()] == ["guide.pdf"]
    assert len(pages) == 2
    assert "First page text" in pages[0]
    assert "Second page text" in pages[1]


def test_corrupt_pdf_is_an_extraction_failure(tmp_path):
    (tmp_path / "broken.pdf").write_bytes(b"this is not a pdf")
    source = PdfDirectorySource(tmp_path)

    with pytest.raises(ExtractionFailure):
        source.read_text("broken.pdf")


def test_open_source(tmp_path):
    assert isinstance(open_source(tmp_path), TextDirectorySource)
    assert isinstance(open_source(tmp_path, pdf=True), PdfDirectorySource)
    assert open_source(tmp_path, hash_content=True).hash_content is True
