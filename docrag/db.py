"""SQLite helpers for docrag.

SQLite holds:
- One table per record collection (documents, chunks): key, JSON payload, vector blob
- A ledger of ingestion runs and their outcome
"""
import re
import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import structlog

from docrag import config

logger = structlog.get_logger()

_COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Args:
        db_path: Database file (default from config)

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    db_path = Path(db_path or config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def collection_table(name: str) -> str:
    """Return the quoted table identifier for a collection name.

    Raises:
        ValueError: If the name contains characters outside [A-Za-z0-9_-]
    """
    if not _COLLECTION_NAME_PATTERN.match(name):
        raise ValueError(f"Invalid collection name: {name!r}")
    return f'"{name}"'


def init_collection_table(name: str, db_path: Optional[Path] = None) -> None:
    """Create the table backing a record collection if it doesn't exist.

    Columns:
    - id: integer row id, also used as the FAISS vector id
    - key: the record's storage key
    - data_json: record fields except the vector
    - vector: float32 vector bytes (NULL for collections without vectors)
    """
    table = collection_table(name)
    conn = get_connection(db_path)

    try:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL UNIQUE,
                data_json TEXT NOT NULL,
                vector BLOB
            )
        """)
        conn.commit()
        logger.debug("collection_table_initialized", collection=name)

    except Exception as e:
        conn.rollback()
        logger.error("collection_table_init_failed", collection=name, error=str(e))
        raise
    finally:
        conn.close()


def init_database(db_path: Optional[Path] = None) -> None:
    """Initialize the ingestion run ledger.

    Creates the ingestion_runs table if it doesn't exist.
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingestion_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                finished_at TEXT NOT NULL,
                source_id TEXT NOT NULL,
                status TEXT NOT NULL,
                embedding_model TEXT,
                processed INTEGER NOT NULL,
                deleted INTEGER NOT NULL,
                failed INTEGER NOT NULL,
                unchanged INTEGER NOT NULL,
                chunks_written INTEGER NOT NULL,
                chunks_deleted INTEGER NOT NULL,
                duration_seconds REAL NOT NULL,
                error TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_ingestion_runs_source
            ON ingestion_runs(source_id)
        """)

        conn.commit()
        logger.debug("database_initialized", db_path=str(db_path or config.DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_ingestion_run(
    report: Dict[str, Any],
    embedding_model: Optional[str] = None,
    error: Optional[str] = None,
    db_path: Optional[Path] = None,
) -> int:
    """Record a finished ingestion run.

    Args:
        report: IngestionReport.to_dict() output
        embedding_model: Name of the embedding model used
        error: Error text for failed or timed-out runs
        db_path: Database file (default from config)

    Returns:
        ID of the inserted row
    """
    init_database(db_path)
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO ingestion_runs (
                finished_at, source_id, status, embedding_model,
                processed, deleted, failed, unchanged,
                chunks_written, chunks_deleted, duration_seconds, error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            datetime.now(timezone.utc).isoformat(),
            report["source_id"],
            report["status"],
            embedding_model,
            report["processed"],
            report["deleted"],
            report["failed"],
            report["unchanged"],
            report["chunks_written"],
            report["chunks_deleted"],
            report["duration_seconds"],
            error,
        ))

        conn.commit()
        row_id = cursor.lastrowid
        logger.info("ingestion_run_recorded", id=row_id, status=report["status"])
        return row_id

    except Exception as e:
        conn.rollback()
        logger.error("ingestion_run_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_latest_ingestion_run(
    source_id: Optional[str] = None, db_path: Optional[Path] = None
) -> Optional[Dict[str, Any]]:
    """Get the most recent ingestion run, optionally for one source.

    Returns:
        Dictionary with run fields, or None if nothing was recorded yet
    """
    init_database(db_path)
    conn = get_connection(db_path)

    try:
        if source_id is None:
            row = conn.execute(
                "SELECT * FROM ingestion_runs ORDER BY id DESC LIMIT 1"
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT * FROM ingestion_runs WHERE source_id = ? ORDER BY id DESC LIMIT 1",
                (source_id,),
            ).fetchone()
        return dict(row) if row else None

    except Exception as e:
        logger.error("ingestion_run_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def dumps(data: Dict[str, Any]) -> str:
    """Serialize a record payload deterministically."""
    return json.dumps(data, sort_keys=True, ensure_ascii=False)
