"""
Vector store wrapper around ChromaDB for persistent memory records.

Every memory is one collection row: the document holds the text, the
embedding holds the vector and the remaining record fields are stored as
row metadata.  Keeping record and vector in the same row means a single
write persists both or neither.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Sequence

import chromadb
from chromadb.errors import ChromaError

from .errors import (
    DimensionMismatchError,
    DuplicateRecordError,
    RecordNotFoundError,
    StoreError,
    TransactionError,
)
from .models import MemoryRecord, SearchResult, StoreStats

logger = logging.getLogger(__name__)

#: Candidates fetched per requested result so the ranking engine has room to
#: re-order before truncation.
OVERFETCH_FACTOR = 3

#: Candidate cap for :meth:`VaultStore.find_similar`.
SIMILAR_CANDIDATES = 5

# Float noise from the index can put an exact match at 0.9999999.  Only
# applied to a threshold of 1.0; lower thresholds compare exactly.
_SIMILARITY_EPSILON = 1e-5

_DIMENSION_KEY = "dimension"


def _where(*clauses: dict[str, Any] | None) -> dict[str, Any] | None:
    """Combine ChromaDB ``where`` clauses, dropping empty ones."""
    items = [c for c in clauses if c]
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return {"$and": items}


_ACTIVE = {"consolidated_into": ""}


def _as_vector(embedding: Any) -> list[float]:
    return [float(x) for x in embedding]


class Transaction:
    """
    Writes staged inside :meth:`VaultStore.transaction`.

    Nothing reaches the collection until the ``with`` block exits cleanly,
    at which point every staged row is flushed in one ``upsert`` call.
    """

    def __init__(self, store: "VaultStore") -> None:
        self._store = store
        self._pending: dict[str, tuple[MemoryRecord, list[float]]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def insert(self, record: MemoryRecord, vector: Sequence[float]) -> None:
        """Stage a new record together with its vector."""
        self._store.initialize(len(vector))
        if record.id in self._pending or self._store.exists(record.id):
            raise DuplicateRecordError(record.id)
        self._pending[record.id] = (record, _as_vector(vector))

    def mark_consolidated(self, ids: Sequence[str], successor_id: str) -> None:
        """
        Stage tombstones pointing every id in *ids* at *successor_id*.

        The successor must already be staged or stored, and must have been
        created after each record pointing at it.  Raises
        :class:`RecordNotFoundError` when a member is missing or no longer
        active.
        """
        successor = self._lookup(successor_id)
        if successor is None:
            raise RecordNotFoundError(successor_id)
        now = time.time()
        for record_id in ids:
            found = self._lookup(record_id)
            if found is None or not found[0].active:
                raise RecordNotFoundError(record_id)
            record, vector = found
            if record.created_at >= successor[0].created_at:
                raise ValueError(
                    f"successor {successor_id} must be newer than {record_id}"
                )
            self._pending[record_id] = (
                replace(record, consolidated_into=successor_id, updated_at=now),
                vector,
            )

    def _lookup(self, record_id: str) -> tuple[MemoryRecord, list[float]] | None:
        if record_id in self._pending:
            return self._pending[record_id]
        return self._store._fetch_with_vector(record_id)

    def _commit(self) -> None:
        if not self._pending:
            return
        collection = self._store._require_collection()
        ids = list(self._pending)
        rows = [self._pending[i] for i in ids]
        try:
            collection.upsert(
                ids=ids,
                embeddings=[vector for _, vector in rows],
                documents=[record.text for record, _ in rows],
                metadatas=[record.to_chroma_metadata() for record, _ in rows],
            )
        except (ChromaError, ValueError, RuntimeError) as exc:
            raise TransactionError(f"failed to commit {len(ids)} row(s): {exc}") from exc
        logger.debug("committed %d row(s)", len(ids))


class VaultStore:
    """
    Persistent record + vector store backed by ChromaDB.

    Uses cosine distance, so query distances map to similarity as
    ``similarity = 1 - distance``.

    The collection is created lazily once the embedding dimension is known
    (from the first vector ever stored) and the dimension is recorded in the
    collection metadata so a later mismatch is detected across restarts.
    """

    def __init__(
        self,
        path: str = "./vault_db",
        collection_name: str = "memories",
        _client: Any | None = None,
    ) -> None:
        self.client = _client or chromadb.PersistentClient(path=path)
        self.collection_name = collection_name
        self._lock = threading.RLock()
        self._collection: Any | None = None
        self._dimension: int | None = None
        self._open_existing()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def _open_existing(self) -> Any | None:
        if self._collection is not None:
            return self._collection
        try:
            collection = self.client.get_collection(
                name=self.collection_name, embedding_function=None
            )
        except (ValueError, ChromaError):
            return None
        self._collection = collection
        self._dimension = self._committed_dimension(collection)
        return collection

    @staticmethod
    def _committed_dimension(collection: Any) -> int | None:
        value = (collection.metadata or {}).get(_DIMENSION_KEY)
        if value is not None:
            return int(value)
        peek = collection.peek(limit=1)
        embeddings = peek.get("embeddings")
        if embeddings is not None and len(embeddings) > 0:
            return len(embeddings[0])
        return None

    def initialize(self, dimension: int) -> None:
        """
        Ensure the collection exists for vectors of *dimension*.

        Idempotent.  Raises :class:`DimensionMismatchError` without touching
        any data when a different dimension was committed earlier.
        """
        with self._lock:
            collection = self._open_existing()
            if collection is not None:
                if self._dimension is None:
                    self._dimension = dimension
                elif self._dimension != dimension:
                    raise DimensionMismatchError(self._dimension, dimension)
                return
            self._collection = self.client.create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine", _DIMENSION_KEY: dimension},
                embedding_function=None,
            )
            self._dimension = dimension
            logger.info(
                "created collection %r (dimension %d)", self.collection_name, dimension
            )

    def close(self) -> None:
        """Drop the collection handle; later calls re-open it lazily."""
        with self._lock:
            self._collection = None

    def _require_collection(self) -> Any:
        collection = self._open_existing()
        if collection is None:
            raise StoreError(f"collection {self.collection_name!r} has not been initialized")
        return collection

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Scope a group of writes that must land together.

        Holds the store's write lock for the whole block.  If the block
        raises, the staged writes are discarded.
        """
        with self._lock:
            txn = Transaction(self)
            try:
                yield txn
            except BaseException:
                if len(txn):
                    logger.debug("transaction rolled back, %d staged row(s) dropped", len(txn))
                raise
            txn._commit()

    def insert(self, record: MemoryRecord, vector: Sequence[float]) -> None:
        """Insert a record and its vector atomically."""
        with self.transaction() as txn:
            txn.insert(record, vector)

    def mark_consolidated(self, ids: Sequence[str], successor_id: str) -> None:
        """Tombstone *ids* in favour of *successor_id* (one transaction)."""
        with self.transaction() as txn:
            txn.mark_consolidated(ids, successor_id)

    def delete_by_id(self, record_id: str) -> bool:
        """Hard-delete a record and its vector.  Returns whether it existed."""
        with self._lock:
            if not self.exists(record_id):
                return False
            self._require_collection().delete(ids=[record_id])
            logger.debug("deleted %s", record_id)
            return True

    def touch(self, ids: Sequence[str], now: float | None = None) -> None:
        """Bump ``access_count`` and ``last_accessed_at`` on *ids*."""
        if not ids:
            return
        now = time.time() if now is None else now
        with self._lock:
            collection = self._open_existing()
            if collection is None:
                return
            result = collection.get(ids=list(ids), include=["documents", "metadatas"])
            found_ids = result.get("ids") or []
            if not found_ids:
                return
            metadatas = []
            for i, record_id in enumerate(found_ids):
                record = MemoryRecord.from_chroma(
                    record_id, result["documents"][i], result["metadatas"][i]
                )
                record.access_count += 1
                record.last_accessed_at = now
                metadatas.append(record.to_chroma_metadata())
            collection.update(ids=list(found_ids), metadatas=metadatas)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def exists(self, record_id: str) -> bool:
        collection = self._open_existing()
        if collection is None:
            return False
        return bool(collection.get(ids=[record_id], include=["metadatas"])["ids"])

    def get(self, record_id: str) -> MemoryRecord | None:
        """Fetch a record by id, active or tombstoned."""
        records = self._get_records(ids=[record_id])
        return records[0] if records else None

    def get_vector(self, record_id: str) -> list[float] | None:
        found = self._fetch_with_vector(record_id)
        return found[1] if found else None

    def _fetch_with_vector(self, record_id: str) -> tuple[MemoryRecord, list[float]] | None:
        collection = self._open_existing()
        if collection is None:
            return None
        result = collection.get(
            ids=[record_id], include=["documents", "metadatas", "embeddings"]
        )
        ids = result.get("ids") or []
        embeddings = result.get("embeddings")
        if not ids or embeddings is None or len(embeddings) == 0:
            return None
        record = MemoryRecord.from_chroma(ids[0], result["documents"][0], result["metadatas"][0])
        return record, _as_vector(embeddings[0])

    def _get_records(
        self, ids: list[str] | None = None, where: dict[str, Any] | None = None
    ) -> list[MemoryRecord]:
        collection = self._open_existing()
        if collection is None:
            return []
        result = collection.get(ids=ids, where=where, include=["documents", "metadatas"])
        ids_out = result.get("ids") or []
        docs = result.get("documents") or [None] * len(ids_out)
        metas = result.get("metadatas") or [{}] * len(ids_out)
        return [MemoryRecord.from_chroma(ids_out[i], docs[i], metas[i]) for i in range(len(ids_out))]

    def _query(
        self, vector: Sequence[float], n_results: int, where: dict[str, Any] | None
    ) -> list[SearchResult]:
        collection = self._open_existing()
        if collection is None or n_results <= 0:
            return []
        n = min(n_results, collection.count())
        if n == 0:
            return []
        result = collection.query(
            query_embeddings=[_as_vector(vector)],
            n_results=n,
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        ids = result["ids"][0]
        docs = result["documents"][0]
        metas = result["metadatas"][0]
        distances = result["distances"][0]
        hits = []
        for i, record_id in enumerate(ids):
            distance = float(distances[i])
            hits.append(
                SearchResult(
                    record=MemoryRecord.from_chroma(record_id, docs[i], metas[i]),
                    distance=distance,
                    similarity=1.0 - distance,
                )
            )
        hits.sort(key=lambda h: h.distance)
        return hits

    def knn_search(
        self,
        vector: Sequence[float],
        limit: int,
        category: str | None = None,
        namespace: str | None = None,
        agent_id: str | None = None,
    ) -> list[SearchResult]:
        """
        Nearest active records, ascending by distance.

        Over-fetches ``OVERFETCH_FACTOR * limit`` candidates; the caller
        re-ranks and truncates.
        """
        where = _where(
            _ACTIVE,
            {"category": category} if category else None,
            {"namespace": namespace} if namespace else None,
            {"agent_id": agent_id} if agent_id else None,
        )
        return self._query(vector, limit * OVERFETCH_FACTOR, where)

    def find_similar(
        self,
        vector: Sequence[float],
        threshold: float,
        limit: int = SIMILAR_CANDIDATES,
        created_before: float | None = None,
    ) -> list[SearchResult]:
        """Active records among the nearest *limit* with similarity >= *threshold*."""
        where = _where(
            _ACTIVE,
            {"created_at": {"$lt": created_before}} if created_before is not None else None,
        )
        hits = self._query(vector, limit, where)
        floor = threshold - _SIMILARITY_EPSILON if threshold >= 1.0 else threshold
        return [h for h in hits if h.similarity >= floor]

    def get_older_than(self, age_seconds: float, now: float | None = None) -> list[MemoryRecord]:
        """Active records created more than *age_seconds* ago, oldest first."""
        cutoff = (time.time() if now is None else now) - age_seconds
        records = self._get_records(where=_where(_ACTIVE, {"created_at": {"$lt": cutoff}}))
        return sorted(records, key=lambda r: r.created_at)

    def list_active(self, limit: int = 20, category: str | None = None) -> list[MemoryRecord]:
        """Active records, most recently updated first."""
        where = _where(_ACTIVE, {"category": category} if category else None)
        records = self._get_records(where=where)
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records[:limit]

    def all_for_export(self) -> list[MemoryRecord]:
        """Every record, tombstones included, oldest first."""
        return sorted(self._get_records(), key=lambda r: r.created_at)

    def count(self) -> int:
        collection = self._open_existing()
        return collection.count() if collection is not None else 0

    def stats(self) -> StoreStats:
        stats = StoreStats()
        for record in self._get_records():
            stats.total += 1
            if record.active:
                stats.active += 1
                stats.categories[record.category] = stats.categories.get(record.category, 0) + 1
            else:
                stats.consolidated += 1
        return stats
