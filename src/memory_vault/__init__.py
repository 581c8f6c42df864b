"""
memory-vault: long-term semantic memory for LLM agents.

Stores short memory records with vector embeddings in ChromaDB, recalls them
ranked by similarity, recency and importance, and periodically merges aged
near-duplicates.
"""

from .capture import evaluate_capture
from .config import VaultConfig
from .consolidation import ConsolidationScheduler, run_consolidation
from .embeddings import Embedder, SentenceTransformerEmbedder
from .errors import (
    DimensionMismatchError,
    EmbedderNotConfiguredError,
    MemoryVaultError,
    StoreError,
    TransactionError,
)
from .models import CATEGORIES, MemoryRecord, SearchResult
from .scoring import access_boost, final_score, recency_decay
from .store import VaultStore
from .vault import SaveResult, Vault

__all__ = [
    "CATEGORIES",
    "ConsolidationScheduler",
    "DimensionMismatchError",
    "Embedder",
    "EmbedderNotConfiguredError",
    "MemoryRecord",
    "MemoryVaultError",
    "SaveResult",
    "SearchResult",
    "SentenceTransformerEmbedder",
    "StoreError",
    "TransactionError",
    "Vault",
    "VaultConfig",
    "VaultStore",
    "access_boost",
    "evaluate_capture",
    "final_score",
    "recency_decay",
    "run_consolidation",
]
