"""
Shared pytest fixtures for memory-vault tests.

Uses ChromaDB in ephemeral (in-memory) mode and a deterministic fake
embedder so that tests run fast without downloading any ML models.
"""

from __future__ import annotations

import hashlib
import math
import time
import uuid
from typing import Callable

import chromadb
import pytest

from memory_vault.models import MemoryRecord
from memory_vault.store import VaultStore
from memory_vault.vault import Vault

DIM = 16
DAY = 24 * 60 * 60


def make_vector(*values: float) -> list[float]:
    """Pad *values* with zeros to the fake embedding dimension."""
    return list(values) + [0.0] * (DIM - len(values))


def angled(degrees: float) -> list[float]:
    """Unit vector in the first two axes; similarity to ``make_vector(1)`` is cos(degrees)."""
    rad = math.radians(degrees)
    return make_vector(math.cos(rad), math.sin(rad))


def with_similarity(similarity: float) -> list[float]:
    """Unit vector whose cosine similarity to ``make_vector(1)`` is *similarity*."""
    return make_vector(similarity, math.sqrt(1 - similarity * similarity))


class FakeEmbedder:
    """
    Deterministic embedder mapping text to a unit vector derived from its
    MD5 hash.  Individual texts can be pinned to fixed vectors.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []
        self.on_embed: Callable[[str], None] | None = None

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.on_embed is not None:
            self.on_embed(text)
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.md5(text.encode()).digest()
        # 16-byte digest → 16-dim float vector in [-1, 1]
        vec = [(b - 128) / 128.0 for b in digest]
        norm = sum(x * x for x in vec) ** 0.5 or 1.0
        return [x / norm for x in vec]


def make_record(text: str, age_days: float = 0.0, **fields) -> MemoryRecord:
    created = time.time() - age_days * DAY
    return MemoryRecord(
        id=fields.pop("id", None) or str(uuid.uuid4()),
        text=text,
        created_at=created,
        updated_at=created,
        **fields,
    )


# A single shared EphemeralClient instance for the test session.
# Each fixture call creates a uniquely named collection so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


@pytest.fixture()
def collection_name() -> str:
    return f"test_{uuid.uuid4().hex}"


@pytest.fixture()
def store(collection_name: str) -> VaultStore:
    """In-memory VaultStore on a fresh collection."""
    return VaultStore(_client=_EPHEMERAL_CLIENT, collection_name=collection_name)


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def vault(store: VaultStore, embedder: FakeEmbedder) -> Vault:
    """Vault wired to the ephemeral store and the fake embedder."""
    return Vault(store, embedder)
