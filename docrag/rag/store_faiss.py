"""Record collections with FAISS-backed similarity search.

Handles:
- SQLite persistence of records (JSON payload plus float32 vector blob)
- An in-memory FAISS index mirroring the stored vectors, rebuilt on load
- Keyed upsert and delete
- Cosine-similarity search with optional field-equality filters
"""
import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generic, List, Mapping, Optional, Protocol, Sequence, Tuple, Type, TypeVar, Union
import numpy as np
import faiss
import structlog
from pydantic import BaseModel

from docrag import config, db
from docrag.errors import StoreFailure
from docrag.rag.models import ChunkRecord, DocumentRecord

logger = structlog.get_logger()

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class ScoredRecord(Generic[RecordT]):
    """A record returned by a similarity search with its cosine score."""

    record: RecordT
    score: float


class VectorCollection(Protocol[RecordT]):
    """Capability interface for a keyed record collection with vector search."""

    name: str

    async def ensure_exists(self) -> None: ...

    async def get(
        self, where: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None
    ) -> List[RecordT]: ...

    async def upsert(self, records: Union[RecordT, Sequence[RecordT]]) -> None: ...

    async def delete(self, keys: Union[str, Sequence[str]]) -> int: ...

    async def search(
        self,
        vector: Sequence[float],
        top_k: int,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[ScoredRecord[RecordT]]: ...

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int: ...


def _normalize(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize rows so inner product equals cosine similarity."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return np.ascontiguousarray(matrix / norms, dtype=np.float32)


def _search_with_ties(index, query: np.ndarray, top_k: int) -> Tuple[np.ndarray, np.ndarray]:
    """Search an index, widening k until every score tied with rank top_k is fetched.

    Returns the score and id rows for the single query.
    """
    total = index.ntotal
    k = min(top_k + 1, total)
    while True:
        scores, ids = index.search(query, k)
        scores, ids = scores[0], ids[0]
        if k >= total or scores[k - 1] < scores[top_k - 1]:
            return scores, ids
        k = min(k * 2, total)


class FAISSCollection(Generic[RecordT]):
    """SQLite-persisted record collection with a FAISS similarity index.

    SQLite is the source of truth. The FAISS index (IndexIDMap2 over
    IndexFlatIP, ids are SQLite row ids) is only touched after a write has
    been committed, so readers never see vectors for uncommitted records.
    """

    def __init__(
        self,
        name: str,
        record_type: Type[RecordT],
        vector_field: Optional[str] = None,
        db_path: Path = None,
    ):
        """Initialize the collection.

        Args:
            name: Collection (table) name
            record_type: Pydantic model of the stored records (must have a 'key' field)
            vector_field: Name of the record field holding the embedding, if any
            db_path: SQLite database file (default from config)
        """
        if "key" not in record_type.model_fields:
            raise ValueError(f"{record_type.__name__} has no 'key' field")
        if vector_field is not None and vector_field not in record_type.model_fields:
            raise ValueError(f"{record_type.__name__} has no field {vector_field!r}")

        self.name = name
        self.record_type = record_type
        self.vector_field = vector_field
        self.db_path = Path(db_path or config.DB_PATH)
        self.table = db.collection_table(name)

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self._ready = False

    async def ensure_exists(self) -> None:
        """Create the backing table if needed and load the vector index.

        Raises:
            StoreFailure: If the database cannot be initialized or read
        """
        if self._ready:
            return

        try:
            db.init_collection_table(self.name, self.db_path)
            if self.vector_field:
                self._load_index()
        except sqlite3.Error as e:
            raise StoreFailure(
                f"Failed to open collection {self.name}: {e}", phase="ensure_exists"
            ) from e

        self._ready = True

        logger.info(
            "collection_ready",
            collection=self.name,
            vector_count=self.index.ntotal if self.index is not None else 0,
            dimension=self.dimension,
        )

    def _load_index(self) -> None:
        conn = db.get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT id, vector FROM {self.table} WHERE vector IS NOT NULL ORDER BY id"
            ).fetchall()
        finally:
            conn.close()

        self.index = None
        self.dimension = None

        if not rows:
            return

        ids = np.array([row["id"] for row in rows], dtype=np.int64)
        matrix = np.vstack([np.frombuffer(row["vector"], dtype=np.float32) for row in rows])

        self._init_index(matrix.shape[1])
        self.index.add_with_ids(_normalize(matrix), ids)

    def _init_index(self, dimension: int) -> None:
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        logger.debug(
            "faiss_index_initialized",
            collection=self.name,
            dimension=dimension,
            index_type="IndexIDMap2(IndexFlatIP)",
        )

    def _where_clause(self, where: Optional[Mapping[str, Any]]) -> Tuple[str, List[Any]]:
        if not where:
            return "", []

        conditions = []
        params: List[Any] = []

        for field_name, value in where.items():
            if field_name not in self.record_type.model_fields or field_name == self.vector_field:
                raise ValueError(f"Cannot filter {self.name} on field {field_name!r}")

            if field_name == "key":
                conditions.append("key = ?")
            else:
                conditions.append(f"json_extract(data_json, '$.{field_name}') = ?")
            params.append(value)

        return " WHERE " + " AND ".join(conditions), params

    def _to_record(self, row: sqlite3.Row) -> RecordT:
        data = json.loads(row["data_json"])
        if self.vector_field:
            blob = row["vector"]
            data[self.vector_field] = (
                np.frombuffer(blob, dtype=np.float32).tolist() if blob else []
            )
        return self.record_type.model_validate(data)

    def _prepare_vector(self, record: RecordT, batch_dimension: Optional[int]) -> Optional[np.ndarray]:
        values = getattr(record, self.vector_field)
        if not values:
            return None

        vector = np.asarray(values, dtype=np.float32)
        expected = self.dimension or batch_dimension

        if vector.ndim != 1 or (expected is not None and vector.shape[0] != expected):
            raise StoreFailure(
                f"Embedding dimension mismatch in {self.name}: expected {expected}, "
                f"got {vector.shape}",
                phase="upsert",
            )

        return vector

    async def get(
        self, where: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None
    ) -> List[RecordT]:
        """Fetch records matching field equalities, in insertion order.

        Args:
            where: Mapping of field name to required value (None = all records)
            limit: Maximum number of records to return (None = no limit)

        Returns:
            List of records

        Raises:
            StoreFailure: If the read fails
        """
        await self.ensure_exists()

        clause, params = self._where_clause(where)
        sql = f"SELECT id, data_json, vector FROM {self.table}{clause} ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        conn = db.get_connection(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("collection_get_failed", collection=self.name, error=str(e))
            raise StoreFailure(f"Failed to read {self.name}: {e}", phase="get") from e
        finally:
            conn.close()

        return [self._to_record(row) for row in rows]

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        """Count records matching field equalities."""
        await self.ensure_exists()

        clause, params = self._where_clause(where)
        conn = db.get_connection(self.db_path)
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {self.table}{clause}", params).fetchone()[0]
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to count {self.name}: {e}", phase="count") from e
        finally:
            conn.close()

    async def upsert(self, records: Union[RecordT, Sequence[RecordT]]) -> None:
        """Insert records, replacing any existing records with the same key.

        Args:
            records: A record or a sequence of records

        Raises:
            StoreFailure: If the write fails or an embedding has the wrong dimension
        """
        if isinstance(records, BaseModel):
            records = [records]
        records = list(records)
        if not records:
            return

        await self.ensure_exists()

        prepared = []
        batch_dimension = None
        for record in records:
            if not isinstance(record, self.record_type):
                raise TypeError(
                    f"{self.name} stores {self.record_type.__name__}, got {type(record).__name__}"
                )

            exclude = {self.vector_field} if self.vector_field else None
            payload = db.dumps(record.model_dump(exclude=exclude))
            vector = self._prepare_vector(record, batch_dimension) if self.vector_field else None
            if vector is not None:
                batch_dimension = vector.shape[0]
            prepared.append((record.key, payload, vector))

        removed_ids: List[int] = []
        added: List[Tuple[int, np.ndarray]] = []

        conn = db.get_connection(self.db_path)
        try:
            for key, payload, vector in prepared:
                row = conn.execute(
                    f"SELECT id FROM {self.table} WHERE key = ?", (key,)
                ).fetchone()
                if row:
                    removed_ids.append(row["id"])
                    conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (row["id"],))

                cursor = conn.execute(
                    f"INSERT INTO {self.table} (key, data_json, vector) VALUES (?, ?, ?)",
                    (key, payload, vector.tobytes() if vector is not None else None),
                )
                if vector is not None:
                    added.append((cursor.lastrowid, vector))

            conn.commit()

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("collection_upsert_failed", collection=self.name, error=str(e))
            raise StoreFailure(f"Failed to write {self.name}: {e}", phase="upsert") from e
        finally:
            conn.close()

        self._apply_index_changes(removed_ids, added)

        logger.debug(
            "records_upserted",
            collection=self.name,
            count=len(prepared),
            replaced=len(removed_ids),
        )

    async def delete(self, keys: Union[str, Sequence[str]]) -> int:
        """Delete records by key. Unknown keys are ignored.

        Args:
            keys: A key or a sequence of keys

        Returns:
            Number of records deleted

        Raises:
            StoreFailure: If the write fails
        """
        if isinstance(keys, str):
            keys = [keys]
        keys = list(keys)
        if not keys:
            return 0

        await self.ensure_exists()

        placeholders = ",".join("?" * len(keys))
        conn = db.get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT id FROM {self.table} WHERE key IN ({placeholders})", keys
            ).fetchall()
            removed_ids = [row["id"] for row in rows]

            conn.execute(f"DELETE FROM {self.table} WHERE key IN ({placeholders})", keys)
            conn.commit()

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("collection_delete_failed", collection=self.name, error=str(e))
            raise StoreFailure(f"Failed to delete from {self.name}: {e}", phase="delete") from e
        finally:
            conn.close()

        self._apply_index_changes(removed_ids, [])

        logger.debug("records_deleted", collection=self.name, count=len(removed_ids))
        return len(removed_ids)

    async def clear(self) -> int:
        """Delete every record in the collection (used for full rebuilds)."""
        await self.ensure_exists()

        conn = db.get_connection(self.db_path)
        try:
            count = conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0]
            conn.execute(f"DELETE FROM {self.table}")
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreFailure(f"Failed to clear {self.name}: {e}", phase="clear") from e
        finally:
            conn.close()

        self.index = None
        self.dimension = None

        logger.warning("collection_cleared", collection=self.name, count=count)
        return count

    def _apply_index_changes(
        self, removed_ids: List[int], added: List[Tuple[int, np.ndarray]]
    ) -> None:
        if removed_ids and self.index is not None:
            self.index.remove_ids(np.array(removed_ids, dtype=np.int64))

        if added:
            if self.index is None:
                self._init_index(added[0][1].shape[0])
            ids = np.array([row_id for row_id, _ in added], dtype=np.int64)
            matrix = np.vstack([vector for _, vector in added])
            self.index.add_with_ids(_normalize(matrix), ids)

    async def search(
        self,
        vector: Sequence[float],
        top_k: int,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[ScoredRecord[RecordT]]:
        """Find the records most similar to a vector.

        Args:
            vector: Query vector
            top_k: Maximum number of results
            where: Optional field equalities restricting the candidates

        Returns:
            ScoredRecords ordered by descending cosine similarity, ties by key

        Raises:
            ValueError: If top_k is not positive
            StoreFailure: If the collection has no vectors configured or the
                query dimension does not match the index
        """
        if not self.vector_field:
            raise StoreFailure(f"Collection {self.name} has no vector field", phase="search")
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")

        await self.ensure_exists()

        if self.index is None or self.index.ntotal == 0:
            return []

        query = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != self.dimension:
            raise StoreFailure(
                f"Query dimension mismatch: expected {self.dimension}, got {query.shape[1]}",
                phase="search",
            )
        query = _normalize(query)

        if where:
            hits = self._search_subset(query, top_k, where)
        else:
            scores, ids = _search_with_ties(self.index, query, top_k)
            hits = [(int(i), float(s)) for s, i in zip(scores, ids) if i != -1]

        if not hits:
            return []

        rows_by_id = self._rows_by_id([row_id for row_id, _ in hits])
        results = [
            ScoredRecord(record=self._to_record(rows_by_id[row_id]), score=score)
            for row_id, score in hits
            if row_id in rows_by_id
        ]
        results.sort(key=lambda r: (-r.score, r.record.key))

        logger.debug(
            "vector_search_completed",
            collection=self.name,
            top_k=top_k,
            filtered=bool(where),
            results_found=min(len(results), top_k),
        )

        return results[:top_k]

    def _search_subset(
        self, query: np.ndarray, top_k: int, where: Mapping[str, Any]
    ) -> List[Tuple[int, float]]:
        """Exact search restricted to records matching the filter."""
        clause, params = self._where_clause(where)
        conn = db.get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT id, vector FROM {self.table}{clause} AND vector IS NOT NULL ORDER BY id",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to read {self.name}: {e}", phase="search") from e
        finally:
            conn.close()

        if not rows:
            return []

        ids = [row["id"] for row in rows]
        matrix = np.vstack([np.frombuffer(row["vector"], dtype=np.float32) for row in rows])

        subset = faiss.IndexFlatIP(self.dimension)
        subset.add(_normalize(matrix))

        scores, positions = _search_with_ties(subset, query, top_k)
        return [(ids[p], float(s)) for s, p in zip(scores, positions) if p != -1]

    def _rows_by_id(self, row_ids: List[int]) -> Dict[int, sqlite3.Row]:
        placeholders = ",".join("?" * len(row_ids))
        conn = db.get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT id, data_json, vector FROM {self.table} WHERE id IN ({placeholders})",
                row_ids,
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to read {self.name}: {e}", phase="search") from e
        finally:
            conn.close()
        return {row["id"]: row for row in rows}

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the collection's vector index."""
        return {
            "collection": self.name,
            "initialized": self._ready,
            "vector_count": self.index.ntotal if self.index is not None else 0,
            "dimension": self.dimension,
            "db_path": str(self.db_path),
        }


# Singleton instances for convenience
_document_collection: Optional[FAISSCollection[DocumentRecord]] = None
_chunk_collection: Optional[FAISSCollection[ChunkRecord]] = None


async def get_document_collection() -> FAISSCollection[DocumentRecord]:
    """Get or create the document record collection."""
    global _document_collection
    if _document_collection is None:
        _document_collection = FAISSCollection(config.DOCUMENTS_COLLECTION, DocumentRecord)
        await _document_collection.ensure_exists()
    return _document_collection


async def get_chunk_collection() -> FAISSCollection[ChunkRecord]:
    """Get or create the chunk record collection (vectors in 'embedding')."""
    global _chunk_collection
    if _chunk_collection is None:
        _chunk_collection = FAISSCollection(
            config.CHUNKS_COLLECTION, ChunkRecord, vector_field="embedding"
        )
        await _chunk_collection.ensure_exists()
    return _chunk_collection
