"""
Vault: high-level API for saving, recalling and forgetting memories.

This is the main entry-point for applications.  It composes a
:class:`~memory_vault.store.VaultStore` with an embedder and a sanitizer,
all passed in explicitly.

Usage example::

    from memory_vault import SentenceTransformerEmbedder, Vault, VaultStore

    vault = Vault(VaultStore(path="./vault_db"), SentenceTransformerEmbedder())

    result = await vault.save("The user prefers dark roast coffee.", category="preference")

    for hit in await vault.recall("What coffee does the user like?"):
        print(hit.text, hit.score)

    vault.close()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Literal

from .capture import evaluate_capture
from .consolidation import run_consolidation
from .config import VaultConfig
from .embeddings import Embedder, SentenceTransformerEmbedder
from .errors import EmbedderNotConfiguredError
from .models import (
    CATEGORIES,
    DEFAULT_CATEGORY,
    DEFAULT_IMPORTANCE,
    DEFAULT_NAMESPACE,
    MemoryRecord,
    SearchResult,
    StoreStats,
    generate_id,
)
from .sanitize import Sanitizer, is_valid_memory_text, sanitize
from .scoring import final_score
from .store import VaultStore

logger = logging.getLogger(__name__)

#: Similarity at or above which a new save is treated as a duplicate.
DEDUP_THRESHOLD = 0.95

#: Minimum capture score for auto-capture.
CAPTURE_THRESHOLD = 0.3
MAX_CAPTURES_PER_TURN = 5

DEFAULT_RECALL_LIMIT = 5
DEFAULT_MAX_CHARS = 2000

# Shorter prompts are not worth a recall round-trip.
MIN_RECALL_PROMPT_CHARS = 10


@dataclass
class SaveResult:
    status: Literal["saved", "duplicate", "rejected"]
    record: MemoryRecord | None = None
    match: SearchResult | None = None
    reason: str | None = None

    @property
    def saved(self) -> bool:
        return self.status == "saved"


def _validate_fields(category: str | None, importance: float | None) -> None:
    if category is not None and category not in CATEGORIES:
        raise ValueError(f"invalid category {category!r}; expected one of {', '.join(CATEGORIES)}")
    if importance is not None and not 0.0 <= importance <= 1.0:
        raise ValueError(f"importance must be within [0, 1], got {importance}")


def _message_text(message: dict[str, Any]) -> str | None:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return None


class Vault:
    """
    Memory orchestrator over a vector store.

    Responsibilities
    ----------------
    * **Save** – validates and sanitizes text, embeds it and skips it when a
      near-identical memory already exists.
    * **Recall** – over-fetches nearest neighbours and re-ranks them by
      similarity, recency, importance and access count.
    * **Forget** – hard-deletes by id or by nearest match to a query.
    * **Capture** – scores conversation text and keeps what looks worth
      remembering.

    Parameters
    ----------
    store:
        The :class:`VaultStore` holding records and vectors.
    embedder:
        Anything with ``async embed(text) -> list[float]``.  Operations that
        need vectors raise :class:`EmbedderNotConfiguredError` without one.
    sanitizer:
        Callable returning a :class:`SanitizeResult`; flagged text is never
        stored.
    max_chars:
        Upper bound on the length of saved text.
    """

    def __init__(
        self,
        store: VaultStore,
        embedder: Embedder | None = None,
        sanitizer: Sanitizer = sanitize,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.sanitizer = sanitizer
        self.max_chars = max_chars
        self._consolidation_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: VaultConfig) -> "Vault":
        """Build a vault with a persistent store and the local embedder."""
        return cls(
            VaultStore(path=config.db_path, collection_name=config.collection),
            SentenceTransformerEmbedder(config.embedding_model),
            max_chars=config.capture_max_chars,
        )

    async def _embed(self, text: str) -> list[float]:
        if self.embedder is None:
            raise EmbedderNotConfiguredError()
        vector = await self.embedder.embed(text)
        self.store.initialize(len(vector))
        return vector

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(
        self,
        text: str,
        category: str | None = None,
        importance: float | None = None,
        namespace: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SaveResult:
        """
        Store *text* unless it is invalid, flagged or a duplicate.

        Returns
        -------
        SaveResult
            ``status`` is ``"saved"`` with the new record, ``"duplicate"``
            with the nearest existing match, or ``"rejected"`` with a reason.
        """
        _validate_fields(category, importance)
        if not is_valid_memory_text(text, self.max_chars):
            return SaveResult("rejected", reason="text too short, too long, or mostly code")

        sanitized = self.sanitizer(text)
        if sanitized.flagged:
            logger.warning("save rejected: content flagged by sanitizer")
            return SaveResult("rejected", reason="content flagged by safety filter")
        clean = sanitized.clean
        if not is_valid_memory_text(clean, self.max_chars):
            return SaveResult("rejected", reason="text too short, too long, or mostly code")

        vector = await self._embed(clean)
        return self._insert_unless_duplicate(
            clean,
            vector,
            category=category or DEFAULT_CATEGORY,
            importance=DEFAULT_IMPORTANCE if importance is None else importance,
            namespace=namespace,
            agent_id=agent_id,
            metadata=metadata,
        )

    def _insert_unless_duplicate(
        self,
        text: str,
        vector: list[float],
        category: str,
        importance: float,
        namespace: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SaveResult:
        now = time.time()
        record = MemoryRecord(
            id=generate_id(),
            text=text,
            category=category,
            importance=importance,
            created_at=now,
            updated_at=now,
            agent_id=agent_id,
            namespace=namespace or DEFAULT_NAMESPACE,
            metadata=metadata,
        )
        # Dedup check and insert share the write lock so two concurrent saves
        # of the same text cannot both land.
        with self.store.transaction() as txn:
            similar = self.store.find_similar(vector, DEDUP_THRESHOLD)
            if similar:
                logger.debug("duplicate of %s (%.3f)", similar[0].id, similar[0].similarity)
                return SaveResult("duplicate", match=similar[0], reason="memory already exists")
            txn.insert(record, vector)
        logger.debug("saved %s [%s]", record.id, record.category)
        return SaveResult("saved", record=record)

    async def recall(
        self,
        query: str,
        limit: int = DEFAULT_RECALL_LIMIT,
        category: str | None = None,
        namespace: str | None = None,
        agent_id: str | None = None,
    ) -> list[SearchResult]:
        """
        Return up to *limit* memories ranked by :func:`final_score`.

        The returned records have their access counters bumped.
        """
        _validate_fields(category, None)
        vector = await self._embed(query)
        candidates = self.store.knn_search(
            vector, limit, category=category, namespace=namespace, agent_id=agent_id
        )
        now = time.time()
        for hit in candidates:
            hit.score = final_score(
                hit.similarity,
                hit.record.created_at,
                hit.record.importance,
                hit.record.access_count,
                now,
            )
        # Stable sort keeps distance order for equal scores.
        candidates.sort(key=lambda h: h.score, reverse=True)
        top = candidates[:limit]

        self.store.touch([h.id for h in top], now)
        for hit in top:
            hit.record.access_count += 1
            hit.record.last_accessed_at = now
        return top

    async def forget(
        self, memory_id: str | None = None, query: str | None = None
    ) -> MemoryRecord | None:
        """
        Hard-delete a memory by id, or the single nearest match to *query*.

        Returns the deleted record, or ``None`` when nothing matched.
        """
        if memory_id:
            record = self.store.get(memory_id)
            if record is None or not self.store.delete_by_id(memory_id):
                return None
            return record
        if query:
            vector = await self._embed(query)
            nearest = self.store.knn_search(vector, 1)
            if not nearest or not self.store.delete_by_id(nearest[0].id):
                return None
            return nearest[0].record
        raise ValueError("provide either memory_id or query")

    async def capture(
        self, texts: Iterable[str], namespace: str | None = None, agent_id: str | None = None
    ) -> list[MemoryRecord]:
        """
        Keep the texts that score as worth remembering.

        Applies the capture threshold, the sanitizer and deduplication, and
        stops after ``MAX_CAPTURES_PER_TURN`` captures.
        """
        captured: list[MemoryRecord] = []
        for text in texts:
            if len(captured) >= MAX_CAPTURES_PER_TURN:
                break
            if not text or not is_valid_memory_text(text, self.max_chars):
                continue
            result = evaluate_capture(text)
            if result.score < CAPTURE_THRESHOLD:
                continue
            sanitized = self.sanitizer(text)
            if sanitized.flagged or not sanitized.clean:
                continue

            vector = await self._embed(sanitized.clean)
            outcome = self._insert_unless_duplicate(
                sanitized.clean,
                vector,
                category=result.category,
                importance=min(0.5 + result.score * 0.3, 0.9),
                namespace=namespace,
                agent_id=agent_id,
            )
            if outcome.record is not None:
                captured.append(outcome.record)
                logger.info(
                    "auto-captured [%s]: %r", outcome.record.category, outcome.record.text[:60]
                )
        return captured

    async def capture_messages(
        self, messages: Iterable[dict[str, Any]], **kwargs: Any
    ) -> list[MemoryRecord]:
        """Run :meth:`capture` over the user messages of a chat turn."""
        texts = [
            text
            for message in messages
            if message.get("role") == "user" and (text := _message_text(message))
        ]
        return await self.capture(texts, **kwargs)

    async def recall_context(self, prompt: str, limit: int = DEFAULT_RECALL_LIMIT) -> str | None:
        """Render recalled memories as a block for prepending to a prompt."""
        if not prompt or len(prompt) < MIN_RECALL_PROMPT_CHARS:
            return None
        results = await self.recall(prompt, limit)
        if not results:
            return None
        lines = "\n".join(f"- [{r.category}] {r.text}" for r in results)
        return f'<vault-memories trust="unverified">\n{lines}\n</vault-memories>'

    async def consolidate(self) -> int:
        """
        Merge aged near-duplicates now.  Returns the number of merges.

        Single-flight: a call made while another pass is running waits for
        it to finish before starting its own.
        """
        async with self._consolidation_lock:
            return await run_consolidation(self.store, self.embedder)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_records(self) -> list[dict[str, Any]]:
        """All records, tombstones included, oldest first."""
        return [record.to_dict() for record in self.store.all_for_export()]

    async def import_records(self, rows: Iterable[dict[str, Any]]) -> int:
        """
        Embed and insert each row that has text.  Returns the number imported.

        Rows keep their id, timestamps and tombstone pointer when present;
        rows whose id already exists are skipped.
        """
        count = 0
        for row in rows:
            text = row.get("text")
            if not text:
                continue
            category = row.get("category") or DEFAULT_CATEGORY
            importance = row.get("importance")
            if importance is not None:
                try:
                    importance = float(importance)
                except (TypeError, ValueError):
                    raise ValueError(f"importance must be a number, got {importance!r}") from None
            _validate_fields(category, importance)

            now = time.time()
            record = MemoryRecord.from_dict(
                {
                    **row,
                    "id": row.get("id") or generate_id(),
                    "category": category,
                    "importance": DEFAULT_IMPORTANCE if importance is None else importance,
                    "created_at": row.get("created_at") or now,
                    "updated_at": row.get("updated_at") or now,
                    "namespace": row.get("namespace") or DEFAULT_NAMESPACE,
                }
            )

            if self.store.exists(record.id):
                logger.warning("import skipped %s: id already exists", record.id)
                continue
            vector = await self._embed(text)
            self.store.insert(record, vector)
            count += 1
        logger.info("imported %d memories", count)
        return count

    # ------------------------------------------------------------------
    # Pass-throughs
    # ------------------------------------------------------------------

    def list_records(self, limit: int = 20, category: str | None = None) -> list[MemoryRecord]:
        return self.store.list_active(limit=limit, category=category)

    def stats(self) -> StoreStats:
        return self.store.stats()

    def close(self) -> None:
        self.store.close()
