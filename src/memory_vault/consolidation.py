"""
Consolidation: merge aged near-duplicate memories into single records.

Originals are never deleted; they are tombstoned with ``consolidated_into``
pointing at the merged record, in the same transaction that inserts it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from .errors import EmbedderNotConfiguredError, RecordNotFoundError
from .models import MemoryRecord, generate_id
from .store import SIMILAR_CANDIDATES, VaultStore

if TYPE_CHECKING:
    from .embeddings import Embedder
    from .vault import Vault

logger = logging.getLogger(__name__)

#: Only records older than this take part.
CONSOLIDATION_AGE_SECONDS = 7 * 24 * 60 * 60
SIMILARITY_THRESHOLD = 0.85
MERGE_SEPARATOR = " | "

DEFAULT_INTERVAL_MINUTES = 360


async def run_consolidation(
    store: VaultStore, embedder: "Embedder | None", now: float | None = None
) -> int:
    """
    Run one consolidation pass and return the number of merges.

    Clusters are built greedily: each unclaimed eligible record seeds a
    cluster with its unclaimed eligible neighbours at or above
    ``SIMILARITY_THRESHOLD``.  The merged text keeps the seed first and the
    neighbours in search order.
    """
    if embedder is None:
        raise EmbedderNotConfiguredError()
    now = time.time() if now is None else now
    cutoff = now - CONSOLIDATION_AGE_SECONDS
    eligible = store.get_older_than(CONSOLIDATION_AGE_SECONDS, now=now)
    if len(eligible) < 2:
        return 0

    eligible_ids = {r.id for r in eligible}
    claimed: set[str] = set()
    # Abandoned seeds stay active and still occupy search slots.
    skipped: set[str] = set()
    merges = 0

    for seed in eligible:
        if seed.id in claimed:
            continue
        vector = store.get_vector(seed.id)
        if vector is None:
            continue

        neighbours = [
            hit.record
            for hit in store.find_similar(
                vector,
                SIMILARITY_THRESHOLD,
                limit=SIMILAR_CANDIDATES + len(skipped),
                created_before=cutoff,
            )
            if hit.id != seed.id and hit.id not in claimed and hit.id in eligible_ids
        ]
        if not neighbours:
            continue

        cluster = [seed, *neighbours]
        merged_text = MERGE_SEPARATOR.join(m.text for m in cluster)
        merged_vector = await embedder.embed(merged_text)

        created = time.time()
        merged = MemoryRecord(
            id=generate_id(),
            text=merged_text,
            category=seed.category,
            importance=max(m.importance for m in cluster),
            created_at=created,
            updated_at=created,
            agent_id=seed.agent_id,
            namespace=seed.namespace,
        )
        try:
            with store.transaction() as txn:
                txn.insert(merged, merged_vector)
                txn.mark_consolidated([m.id for m in cluster], merged.id)
        except RecordNotFoundError as exc:
            logger.info("skipped cluster seeded by %s: %s", seed.id, exc)
            claimed.add(seed.id)
            skipped.add(seed.id)
            continue

        claimed.update(m.id for m in cluster)
        merges += 1
        logger.info("merged %d memories into %s", len(cluster), merged.id)

    return merges


class ConsolidationScheduler:
    """
    Runs :meth:`Vault.consolidate <memory_vault.vault.Vault.consolidate>` on
    a fixed interval.

    Every pass goes through the vault, so scheduled runs and manual ones
    (CLI, MCP tool, direct calls) share its single-flight lock.  A failed
    scheduled run is logged and the schedule continues.
    """

    def __init__(
        self,
        vault: "Vault",
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
    ) -> None:
        self.vault = vault
        self.interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await self.vault.consolidate()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                merged = await self.run_once()
            except Exception:
                logger.exception("consolidation run failed")
                continue
            if merged:
                logger.info("consolidated %d cluster(s)", merged)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("consolidation scheduled every %.0fm", self.interval_seconds / 60)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("consolidation stopped")
