"""
MCP (Model Context Protocol) server for memory-vault.

Exposes a :class:`~memory_vault.vault.Vault` as a set of tools so an agent
can save, recall and forget long-term memories.

Run as a stdio server:
    python -m memory_vault.mcp_server

Or via the installed entry-point:
    memory-vault-mcp

Configuration is read from ``MEMORY_VAULT_*`` environment variables, see
:mod:`memory_vault.config`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from mcp.server.fastmcp import FastMCP

from .config import VaultConfig
from .consolidation import ConsolidationScheduler
from .errors import MemoryVaultError
from .models import CATEGORIES
from .vault import Vault

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Long-term semantic memory. "
    "Use `memory_save` to remember preferences, facts, decisions, or anything "
    "the user wants recalled later. "
    "Use `memory_recall` to search memories; results are ranked by relevance, "
    "recency, and importance. "
    "Use `memory_forget` to delete a memory by ID or by the closest match to a query. "
    "Use `memory_stats` to see how many memories are stored."
)


class VaultTools:
    """Tool handlers bound to one vault instance."""

    def __init__(self, vault: Vault, recall_limit: int = 5) -> None:
        self.vault = vault
        self.recall_limit = recall_limit

    async def memory_save(
        self,
        text: str,
        category: str = "other",
        importance: float = 0.7,
    ) -> str:
        """
        Save information to long-term memory.

        Args:
            text:       The information to remember.
            category:   One of preference, fact, decision, entity, procedure,
                        context, other.
            importance: 0-1, default 0.7.

        Returns:
            A confirmation, or the reason the memory was not saved.
        """
        try:
            result = await self.vault.save(text, category=category, importance=importance)
        except (MemoryVaultError, ValueError) as exc:
            return f"Error: {exc}"
        if result.status == "duplicate":
            match = result.match
            return (
                f"Memory already exists ({match.similarity * 100:.0f}% match): "
                f'"{match.text[:100]}"'
            )
        if result.status == "rejected":
            return f"Memory rejected: {result.reason}."
        record = result.record
        suffix = "..." if len(record.text) > 120 else ""
        return f'Saved to memory [{record.category}] {record.id}: "{record.text[:120]}{suffix}"'

    async def memory_recall(
        self,
        query: str,
        limit: int | None = None,
        category: str | None = None,
    ) -> str:
        """
        Search long-term memories by semantic similarity.

        Args:
            query:    What to search for.
            limit:    Maximum number of results (1-20).
            category: Optional category filter.

        Returns:
            JSON array of memories with id, text, category and score.
        """
        if category is not None and category not in CATEGORIES:
            return f"Error: Invalid category {category!r}."
        limit = max(1, min(limit or self.recall_limit, 20))
        try:
            results = await self.vault.recall(query, limit=limit, category=category)
        except MemoryVaultError as exc:
            return f"Error: {exc}"
        if not results:
            return "No memories found."
        return json.dumps(
            [
                {
                    "id": r.id,
                    "text": r.text,
                    "category": r.category,
                    "score": round(r.score, 4),
                }
                for r in results
            ],
            indent=2,
        )

    async def memory_forget(self, memory_id: str | None = None, query: str | None = None) -> str:
        """
        Delete a memory by ID, or the closest match to a search query.

        Args:
            memory_id: Exact memory ID to delete.
            query:     Search query; the nearest memory is deleted.
        """
        if not memory_id and not query:
            return "Provide either memory_id or query."
        try:
            deleted = await self.vault.forget(memory_id=memory_id, query=query)
        except MemoryVaultError as exc:
            return f"Error: {exc}"
        if deleted is None:
            return f"Memory {memory_id} not found." if memory_id else "No matching memory found."
        return f'Deleted memory {deleted.id}: "{deleted.text[:100]}"'

    async def memory_stats(self) -> str:
        """Return memory counts (total, active, consolidated, per category)."""
        return json.dumps(self.vault.stats().to_dict(), indent=2)

    async def memory_consolidate(self) -> str:
        """Merge aged near-duplicate memories now."""
        try:
            merged = await self.vault.consolidate()
        except MemoryVaultError as exc:
            return f"Error: {exc}"
        return f"Merged {merged} cluster(s)."


def create_server(vault: Vault, recall_limit: int = 5) -> FastMCP:
    """Build a FastMCP server whose tools operate on *vault*."""
    server = FastMCP("memory-vault", instructions=INSTRUCTIONS)
    tools = VaultTools(vault, recall_limit=recall_limit)
    for handler in (
        tools.memory_save,
        tools.memory_recall,
        tools.memory_forget,
        tools.memory_stats,
        tools.memory_consolidate,
    ):
        server.add_tool(handler)
    return server


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


async def run_server(config: VaultConfig) -> None:
    """Serve over stdio; the scheduler and vault are torn down on exit."""
    vault = Vault.from_config(config)
    scheduler = None
    if config.consolidation_enabled:
        scheduler = ConsolidationScheduler(vault, config.consolidation_interval_minutes)
        scheduler.start()
    logger.info("memory-vault initialized (db: %s)", config.db_path)
    try:
        await create_server(vault, recall_limit=config.recall_limit).run_stdio_async()
    finally:
        if scheduler is not None:
            await scheduler.stop()
        vault.close()
        logger.info("memory-vault stopped")


def main() -> None:
    """Run the MCP server over stdio."""
    config = VaultConfig.from_env()
    logging.basicConfig(
        level=config.log_level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    asyncio.run(run_server(config))


if __name__ == "__main__":
    main()
