"""Content sources: where documents, their versions and their text come from.

Any backing store can feed the ingestion pipeline by implementing the
ContentSource protocol. Two directory-backed sources ship here:

- TextDirectorySource: plain text and markdown files
- PdfDirectorySource: PDF files, text extracted page by page with PyMuPDF

Text returned by read_text() separates pages with a form feed ("\\f"),
which the chunker turns into page locators.
"""
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import fitz  # PyMuPDF
import structlog

from docrag import config
from docrag.errors import ExtractionFailure, SourceUnavailable

logger = structlog.get_logger()

PAGE_SEPARATOR = "\f"


@runtime_checkable
class ContentSource(Protocol):
    """Capability interface for anything that can supply documents."""

    @property
    def source_id(self) -> str:
        """Identifier of this source instance."""
        ...

    def list_current(self) -> List[Tuple[str, str]]:
        """Return (document_id, version) for every document currently present."""
        ...

    def read_text(self, document_id: str) -> str:
        """Return the document's text, pages separated by a form feed."""
        ...


class DirectorySource:
    """Base class for sources backed by the files of one directory.

    Only the top level of the directory is listed. Document ids are file
    names; versions are the file's UTC modification time, or a SHA-256 of its
    bytes when hash_content is enabled.
    """

    patterns: Sequence[str] = ()

    def __init__(
        self,
        directory: Path = None,
        patterns: Optional[Sequence[str]] = None,
        hash_content: Optional[bool] = None,
    ):
        """Initialize the directory source.

        Args:
            directory: Directory holding the documents (default from config)
            patterns: Glob patterns selecting document files
            hash_content: Use content hashes instead of modification times as versions
        """
        self.directory = Path(directory or config.DOCUMENTS_DIR)
        if patterns is not None:
            self.patterns = tuple(patterns)
        self.hash_content = config.HASH_CONTENT if hash_content is None else hash_content

    @property
    def source_id(self) -> str:
        return str(self.directory)

    def matches(self, path: Path) -> bool:
        """Check whether a path would be listed by this source."""
        return path.resolve().parent == self.directory.resolve() and any(
            path.match(pattern) for pattern in self.patterns
        )

    def _files(self) -> List[Path]:
        if not self.directory.is_dir():
            raise SourceUnavailable(
                f"Source directory not found: {self.directory}", phase="list"
            )

        files = set()
        for pattern in self.patterns:
            files.update(p for p in self.directory.glob(pattern) if p.is_file())
        return sorted(files)

    def version_of(self, path: Path) -> str:
        """Compute the version token for a file."""
        if self.hash_content:
            digest = hashlib.sha256(path.read_bytes()).hexdigest()
            return f"sha256:{digest}"
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return modified.isoformat()

    def list_current(self) -> List[Tuple[str, str]]:
        try:
            listing = [(path.name, self.version_of(path)) for path in self._files()]
        except SourceUnavailable:
            raise
        except OSError as e:
            raise SourceUnavailable(
                f"Failed to list {self.directory}: {e}", phase="list"
            ) from e

        logger.info(
            "source_listed",
            source_id=self.source_id,
            document_count=len(listing),
        )
        return listing

    def path_for(self, document_id: str) -> Path:
        path = self.directory / document_id
        if not path.is_file():
            raise ExtractionFailure(
                f"Document not found: {path}", document_id=document_id, phase="read"
            )
        return path

    def read_text(self, document_id: str) -> str:
        raise NotImplementedError


class TextDirectorySource(DirectorySource):
    """Plain text and markdown files in a directory."""

    patterns = ("*.txt", "*.md")

    def read_text(self, document_id: str) -> str:
        path = self.path_for(document_id)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionFailure(
                f"Failed to read {path}: {e}", document_id=document_id, phase="read"
            ) from e


class PdfDirectorySource(DirectorySource):
    """PDF files in a directory, text extracted per page."""

    patterns = ("*.pdf",)

    def read_text(self, document_id: str) -> str:
        path = self.path_for(document_id)

        try:
            doc = fitz.open(str(path))
        except Exception as e:
            raise ExtractionFailure(
                f"Failed to open PDF {path}: {e}", document_id=document_id, phase="read"
            ) from e

        pages = []
        try:
            for page in doc:
                pages.append(page.get_text("text"))
        except Exception as e:
            raise ExtractionFailure(
                f"Failed to extract text from {path}: {e}",
                document_id=document_id,
                phase="read",
            ) from e
        finally:
            doc.close()

        logger.debug("pdf_text_extracted", document_id=document_id, pages=len(pages))
        return PAGE_SEPARATOR.join(pages)


def open_source(
    directory: Path = None, pdf: bool = False, hash_content: Optional[bool] = None
) -> DirectorySource:
    """Create the directory source the CLIs work with.

    Args:
        directory: Documents directory (default from config)
        pdf: Read PDF files instead of text and markdown files
        hash_content: Use content hashes as versions (default from config)
    """
    source_type = PdfDirectorySource if pdf else TextDirectorySource
    return source_type(directory, hash_content=hash_content)
