"""Incremental ingestion pipeline.

Orchestrates, per run:
- Loading stored document records for the source
- Change detection against the source's current listing
- Chunk and document deletion for removed documents
- Chunk replacement, text chunking, embedding and storage for new or modified documents

The orchestrator is the only writer of document and chunk records. Chunks are
always deleted before the document they belong to is deleted or replaced.
"""
import asyncio
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import structlog

from docrag import config, db
from docrag.errors import DocragError, ExtractionFailure, IngestionTimeout
from docrag.rag.changes import classify
from docrag.rag.chunker import TextChunker
from docrag.rag.embeddings import EmbeddingProvider
from docrag.rag.models import ChunkRecord, DocumentRecord
from docrag.rag.sources import ContentSource
from docrag.rag.store_faiss import VectorCollection

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class IngestionReport:
    """Outcome of one ingestion run."""

    source_id: str
    processed: int = 0
    deleted: int = 0
    failed: int = 0
    unchanged: int = 0
    chunks_written: int = 0
    chunks_deleted: int = 0
    duration_seconds: float = 0.0
    status: str = "running"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IngestionOrchestrator:
    """Keeps document and chunk collections in sync with a content source."""

    def __init__(
        self,
        documents: VectorCollection[DocumentRecord],
        chunks: VectorCollection[ChunkRecord],
        embedder: EmbeddingProvider,
        chunker: Optional[TextChunker] = None,
        continue_on_error: Optional[bool] = None,
        db_path: Path = None,
    ):
        """Initialize the orchestrator.

        Args:
            documents: Collection of DocumentRecords
            chunks: Collection of ChunkRecords
            embedder: Embedding provider used for chunk text
            chunker: Chunk extractor (default TextChunker with config budget)
            continue_on_error: Skip failing documents instead of aborting the run
                (default from config)
            db_path: Database holding the ingestion run ledger (default from config)
        """
        self.documents = documents
        self.chunks = chunks
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.continue_on_error = (
            config.INGEST_CONTINUE_ON_ERROR if continue_on_error is None else continue_on_error
        )
        self.db_path = db_path

        logger.info(
            "ingestion_orchestrator_initialized",
            embedding_model=getattr(embedder, "model_name", None),
            max_tokens=self.chunker.max_tokens,
            continue_on_error=self.continue_on_error,
        )

    async def ingest(
        self,
        source: ContentSource,
        progress_callback: Optional[ProgressCallback] = None,
        report: Optional[IngestionReport] = None,
    ) -> IngestionReport:
        """Bring the collections up to date with the source.

        Args:
            source: Content source to ingest
            progress_callback: Optional callback(current, total, document_id)
            report: Report object to fill in (lets a caller that cancels the
                run still see how far it got)

        Returns:
            IngestionReport with counts for this run

        Raises:
            SourceUnavailable: If the source cannot be listed
            ExtractionFailure, EmbeddingProviderFailure, StoreFailure: On the
                first document failure, unless continue_on_error is set
        """
        source_id = source.source_id
        report = report or IngestionReport(source_id=source_id)
        started = time.perf_counter()

        logger.info("ingestion_started", source_id=source_id)

        try:
            await self.documents.ensure_exists()
            await self.chunks.ensure_exists()

            existing = await self.documents.get({"source_id": source_id})
            logger.info("existing_documents_loaded", source_id=source_id, count=len(existing))

            listing = source.list_current()
            changes = classify(existing, listing)
            report.unchanged = len(changes.unchanged)

            for document_id in sorted(changes.to_delete):
                deleted = await self._run_phase(
                    report, document_id, self._delete_document(source_id, document_id, report)
                )
                if deleted:
                    report.deleted += 1

            to_process = sorted(changes.to_process)
            versions = dict(listing)

            for position, document_id in enumerate(to_process, 1):
                if progress_callback:
                    progress_callback(position, len(to_process), document_id)

                succeeded = await self._run_phase(
                    report,
                    document_id,
                    self._process_document(source, document_id, versions[document_id], report),
                )
                if succeeded:
                    report.processed += 1

        except Exception as e:
            report.status = "failed"
            report.duration_seconds = time.perf_counter() - started
            logger.error(
                "ingestion_failed",
                source_id=source_id,
                error=str(e),
                error_type=type(e).__name__,
                document_id=getattr(e, "document_id", None),
                phase=getattr(e, "phase", None),
            )
            self._record_run(report, error=str(e))
            raise

        report.status = "completed"
        report.duration_seconds = time.perf_counter() - started
        self._record_run(report)

        logger.info("ingestion_completed", **report.to_dict())
        return report

    async def _run_phase(self, report: IngestionReport, document_id: str, work) -> bool:
        """Await one document's work, applying the failure policy.

        Returns:
            True if the work succeeded, False if it failed and was skipped
        """
        try:
            await work
            return True
        except DocragError as e:
            if e.document_id is None:
                e.document_id = document_id
            error = e
        except Exception as e:
            error = e

        logger.error(
            "document_ingestion_failed",
            document_id=document_id,
            phase=getattr(error, "phase", None),
            error=str(error),
            error_type=type(error).__name__,
        )

        if not self.continue_on_error:
            raise error

        report.failed += 1
        return False

    async def _delete_chunks(self, source_id: str, document_id: str) -> int:
        stale = await self.chunks.get({"source_id": source_id, "document_id": document_id})
        if not stale:
            return 0

        deleted = await self.chunks.delete([chunk.key for chunk in stale])
        logger.info("chunks_deleted", document_id=document_id, count=deleted)
        return deleted

    async def _delete_document(self, source_id: str, document_id: str, report: IngestionReport) -> None:
        logger.info("deleting_document", document_id=document_id)

        report.chunks_deleted += await self._delete_chunks(source_id, document_id)

        records = await self.documents.get({"source_id": source_id, "document_id": document_id})
        await self.documents.delete([record.key for record in records])

    async def _process_document(
        self,
        source: ContentSource,
        document_id: str,
        version: str,
        report: IngestionReport,
    ) -> None:
        logger.info("processing_document", document_id=document_id, version=version)

        report.chunks_deleted += await self._delete_chunks(source.source_id, document_id)

        previous = await self.documents.get(
            {"source_id": source.source_id, "document_id": document_id}
        )
        await self.documents.delete([record.key for record in previous])

        record = DocumentRecord(source_id=source.source_id, document_id=document_id, version=version)
        await self.documents.upsert(record)

        try:
            report.chunks_written += await self._write_chunks(source, document_id)
        except (Exception, asyncio.CancelledError):
            # Without a stored version the document is picked up as new next run
            await self.documents.delete([record.key])
            raise

    async def _write_chunks(self, source: ContentSource, document_id: str) -> int:
        try:
            segments = self.chunker.extract(source.read_text(document_id))
        except DocragError:
            raise
        except Exception as e:
            raise ExtractionFailure(
                f"Failed to extract segments: {e}", document_id=document_id, phase="extract"
            ) from e

        if not segments:
            logger.warning("no_chunks_created", document_id=document_id)
            return 0

        embed_started = time.perf_counter()
        embeddings = await self.embedder.embed([segment.content for segment in segments])

        logger.info(
            "document_embedded",
            document_id=document_id,
            chunk_count=len(segments),
            duration_ms=round((time.perf_counter() - embed_started) * 1000, 2),
        )

        records: List[ChunkRecord] = [
            ChunkRecord(
                source_id=source.source_id,
                document_id=document_id,
                locator=segment.locator,
                text=segment.content,
                embedding=embedding,
            )
            for segment, embedding in zip(segments, embeddings)
        ]
        await self.chunks.upsert(records)

        logger.info(
            "document_ingested",
            document_id=document_id,
            **self.chunker.get_chunk_stats(segments),
        )
        return len(records)

    def _record_run(self, report: IngestionReport, error: Optional[str] = None) -> None:
        try:
            db.insert_ingestion_run(
                report.to_dict(),
                embedding_model=getattr(self.embedder, "model_name", None),
                error=error,
                db_path=self.db_path,
            )
        except Exception as e:
            logger.warning("ingestion_run_not_recorded", error=str(e))


async def ingest_with_timeout(
    orchestrator: IngestionOrchestrator,
    source: ContentSource,
    timeout_seconds: Optional[float] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> IngestionReport:
    """Run one ingestion under a wall-clock timeout.

    Work finished before the timeout is kept; nothing is rolled back.

    Args:
        orchestrator: Orchestrator to run
        source: Content source to ingest
        timeout_seconds: Budget for the whole run (default from config)
        progress_callback: Optional callback(current, total, document_id)

    Returns:
        IngestionReport of the completed run

    Raises:
        IngestionTimeout: If the run exceeds the budget
    """
    timeout_seconds = timeout_seconds or config.INGEST_TIMEOUT_SECONDS
    report = IngestionReport(source_id=source.source_id)
    started = time.perf_counter()

    try:
        async with asyncio.timeout(timeout_seconds):
            return await orchestrator.ingest(
                source, progress_callback=progress_callback, report=report
            )
    except TimeoutError as e:
        report.status = "timeout"
        report.duration_seconds = time.perf_counter() - started
        message = f"Ingestion timed out after {timeout_seconds:g}s"

        logger.error("ingestion_timeout", timeout_seconds=timeout_seconds, **report.to_dict())
        orchestrator._record_run(report, error=message)

        raise IngestionTimeout(message, phase="ingest") from e
