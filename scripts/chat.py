#!/usr/bin/env python
"""Chat with your documents.

Runs an incremental ingestion of the documents directory, then starts an
interactive session whose assistant can search the ingested chunks.

Usage:
    python scripts/chat.py                  # Ingest text/markdown files, then chat
    python scripts/chat.py --pdf            # Ingest PDF files, then chat
    python scripts/chat.py --watch          # Re-ingest automatically while chatting

Type 'exit' or press Ctrl+D to end the session.
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docrag import config
from docrag.chat import ChatSession
from docrag.cli import add_source_arguments, build_pipeline, check_models, initial_ingestion
from docrag.logging_config import configure_logging
from docrag.rag.sources import open_source
from docrag.rag.watcher import SourceWatcher
import httpx
import structlog

logger = structlog.get_logger()

EXIT_COMMANDS = {"exit", "quit"}


def print_token(token: str) -> None:
    print(token, end="", flush=True)


def print_usage_summary(session: ChatSession) -> None:
    usage = session.usage
    print(f"\n{'=' * 60}")
    print("  Session usage")
    print(f"{'=' * 60}\n")
    print(f"  Chat requests:        {usage.chat_requests}")
    print(f"  Prompt tokens:        {usage.prompt_tokens}")
    print(f"  Completion tokens:    {usage.completion_tokens}")
    print(f"  Embedding tokens:     {usage.embedding_tokens}")
    print(f"  Total tokens:         {usage.total_tokens}")
    print(f"  Estimated cost:       ${usage.estimated_cost():.4f}")
    print(f"\n{'=' * 60}\n")


async def chat_loop(session: ChatSession) -> None:
    while True:
        try:
            text = await asyncio.to_thread(input, "\nYou: ")
        except EOFError:
            print()
            break

        text = text.strip()
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            break

        print("Assistant: ", end="", flush=True)
        try:
            await session.send(text, on_token=print_token)
            print()
        except httpx.HTTPError as e:
            print(f"\nChat request failed: {e}")
            logger.error("chat_turn_failed", error=str(e), error_type=type(e).__name__)


async def main():
    """Main entry point for the chat script."""
    parser = argparse.ArgumentParser(
        description="Chat with your documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_source_arguments(parser)
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Watch the documents directory and re-ingest on changes",
    )
    parser.add_argument(
        "--model",
        default=None,
        help=f"Chat model (default: {config.CHAT_MODEL})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show log output",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")

    source = open_source(args.source_dir, pdf=args.pdf, hash_content=args.hash_content)
    await check_models([config.EMBEDDING_MODEL, args.model or config.CHAT_MODEL])
    pipeline = await build_pipeline(continue_on_error=args.continue_on_error)

    await initial_ingestion(pipeline.orchestrator, source, args.timeout)

    watcher = None
    if args.watch:
        watcher = SourceWatcher(source, pipeline.orchestrator, timeout_seconds=args.timeout)
        await watcher.start()
        print(f"Watching {source.directory} for changes.")

    session = ChatSession(pipeline.search, model=args.model)
    print("\nAsk a question about your documents. Type 'exit' to quit.")

    try:
        await chat_loop(session)
    except KeyboardInterrupt:
        print("\n\nSession cancelled by user.")
    finally:
        if watcher:
            watcher.stop()
        print_usage_summary(session)


if __name__ == "__main__":
    asyncio.run(main())
