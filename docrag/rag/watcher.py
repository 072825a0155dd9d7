"""Directory watcher for automatic re-ingestion.

Monitors a directory source for document changes and runs an incremental
ingestion once changes settle. Ingestion failures are logged and never reach
the caller, so a running chat session keeps working.
"""
import asyncio
from pathlib import Path
from typing import Optional
import time
import structlog
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent

from docrag import config
from docrag.errors import IngestionTimeout
from docrag.rag.ingest import IngestionOrchestrator, IngestionReport, ingest_with_timeout
from docrag.rag.sources import DirectorySource

logger = structlog.get_logger()


class SourceChangeHandler(FileSystemEventHandler):
    """Debounces file system events into ingestion runs."""

    def __init__(
        self,
        source: DirectorySource,
        orchestrator: IngestionOrchestrator,
        loop: asyncio.AbstractEventLoop,
        debounce_seconds: float = None,
        timeout_seconds: float = None,
    ):
        """Initialize the handler.

        Args:
            source: Directory source being watched
            orchestrator: Orchestrator that performs the ingestion
            loop: Event loop the ingestion runs on
            debounce_seconds: Quiet period before a run starts (default from config)
            timeout_seconds: Wall-clock budget per run (default from config)
        """
        super().__init__()
        self.source = source
        self.orchestrator = orchestrator
        self.loop = loop
        self.debounce_seconds = (
            config.WATCH_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self.timeout_seconds = timeout_seconds

        self._last_change: float = 0.0
        self._pending = False
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[IngestionReport] = None

    def on_any_event(self, event: FileSystemEvent):
        """Schedule ingestion for events touching documents of the source."""
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return

        paths = [event.src_path, getattr(event, "dest_path", "")]
        if not any(p and self.source.matches(Path(p)) for p in paths):
            return

        logger.info("source_change_detected", event_type=event.event_type, path=event.src_path)
        self.loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        self._last_change = time.monotonic()
        if not self._pending:
            self._pending = True
            self._task = self.loop.create_task(self._debounced_ingest())

    async def _debounced_ingest(self) -> None:
        """Wait until no change arrived for the debounce period, then ingest."""
        while True:
            await asyncio.sleep(self.debounce_seconds)
            if time.monotonic() - self._last_change >= self.debounce_seconds:
                break

        self._pending = False
        await self.run_ingestion()

    def cancel_pending(self) -> None:
        """Cancel a scheduled or running debounced ingestion."""
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("watch_ingestion_cancelled", source_id=self.source.source_id)
        self._task = None
        self._pending = False

    async def run_ingestion(self) -> Optional[IngestionReport]:
        """Run one ingestion, logging instead of raising on failure.

        Runs are serialized: concurrent runs against one source are unsupported.
        """
        async with self._lock:
            try:
                self.last_report = await ingest_with_timeout(
                    self.orchestrator, self.source, self.timeout_seconds
                )
                return self.last_report
            except IngestionTimeout as e:
                logger.error("watch_ingestion_timeout", source_id=self.source.source_id, error=str(e))
            except Exception as e:
                logger.error(
                    "watch_ingestion_failed",
                    source_id=self.source.source_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return None


class SourceWatcher:
    """Watches a directory source and keeps its index current."""

    def __init__(
        self,
        source: DirectorySource,
        orchestrator: IngestionOrchestrator,
        debounce_seconds: float = None,
        timeout_seconds: float = None,
    ):
        """Initialize the watcher.

        Args:
            source: Directory source to watch
            orchestrator: Orchestrator used for each run
            debounce_seconds: Debounce period for file changes (default from config)
            timeout_seconds: Wall-clock budget per run (default from config)
        """
        self.source = source
        self.orchestrator = orchestrator
        self.debounce_seconds = debounce_seconds
        self.timeout_seconds = timeout_seconds

        self.event_handler: Optional[SourceChangeHandler] = None
        self.observer = None
        self._started = False

    async def start(self):
        """Start watching for file changes."""
        if self._started:
            logger.warning("watcher_already_started")
            return

        self.event_handler = SourceChangeHandler(
            source=self.source,
            orchestrator=self.orchestrator,
            loop=asyncio.get_running_loop(),
            debounce_seconds=self.debounce_seconds,
            timeout_seconds=self.timeout_seconds,
        )

        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.source.directory), recursive=False)
        self.observer.start()
        self._started = True

        logger.info("source_watcher_started", directory=str(self.source.directory))

    def stop(self):
        """Stop watching for file changes."""
        if not self._started:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join(timeout=5.0)

        if self.event_handler:
            self.event_handler.cancel_pending()

        self._started = False

        logger.info("source_watcher_stopped")

    def is_alive(self) -> bool:
        """Check if watcher is running.

        Returns:
            True if watcher is active
        """
        return self._started and self.observer is not None and self.observer.is_alive()
