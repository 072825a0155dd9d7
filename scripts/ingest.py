#!/usr/bin/env python
"""Ingest a documents directory into the RAG collections.

Usage:
    python scripts/ingest.py                        # Incremental ingestion of text/markdown files
    python scripts/ingest.py --pdf                  # Ingest PDF files instead
    python scripts/ingest.py --rebuild              # Clear collections and ingest from scratch
    python scripts/ingest.py --continue-on-error    # Skip failing documents
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docrag import config
from docrag.cli import add_source_arguments, build_pipeline, check_models
from docrag.errors import DocragError, IngestionTimeout
from docrag.logging_config import configure_logging
from docrag.rag.ingest import ingest_with_timeout
from docrag.rag.sources import open_source
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, document_id: str):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {document_id[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, report: dict):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print(f"  Ingestion {report['status']}")
        print(f"{'=' * 60}\n")
        print(f"  Documents processed:  {report['processed']}")
        print(f"  Documents unchanged:  {report['unchanged']}")
        print(f"  Documents deleted:    {report['deleted']}")
        print(f"  Documents failed:     {report['failed']}")
        print(f"  Chunks written:       {report['chunks_written']}")
        print(f"  Chunks deleted:       {report['chunks_deleted']}")
        print(f"  Time elapsed:         {elapsed_seconds:.1f}s")

        if report['chunks_written'] > 0 and elapsed_seconds > 0:
            rate = report['chunks_written'] / elapsed_seconds
            print(f"  Ingestion rate:       {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if report['failed'] > 0:
            print(f"Warning: {report['failed']} document(s) failed to ingest.")
            print(f"   Check logs for details.\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the RAG collections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_source_arguments(parser)
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear both collections before ingesting",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")

    progress = ProgressReporter(verbose=args.verbose)
    source = open_source(args.source_dir, pdf=args.pdf, hash_content=args.hash_content)

    print("\nConfiguration:")
    print(f"   Documents directory: {source.directory}")
    print(f"   Document types:      {', '.join(source.patterns)}")
    print(f"   Embedding model:     {config.EMBEDDING_MODEL}")
    print(f"   Chunk budget:        {config.CHUNK_MAX_TOKENS} tokens")

    await check_models([config.EMBEDDING_MODEL])

    try:
        pipeline = await build_pipeline(continue_on_error=args.continue_on_error)
        orchestrator = pipeline.orchestrator

        if args.rebuild:
            print("\nRebuild mode: clearing existing collections!")
            await orchestrator.chunks.clear()
            await orchestrator.documents.clear()

        progress.start("Ingesting Documents")

        report = await ingest_with_timeout(
            orchestrator,
            source,
            timeout_seconds=args.timeout,
            progress_callback=progress.update,
        )

        progress.finish(report.to_dict())

        if report.failed > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except IngestionTimeout as e:
        print(f"\nTimeout: {e}\n   Documents finished before the timeout were kept.\n")
        sys.exit(1)

    except DocragError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
