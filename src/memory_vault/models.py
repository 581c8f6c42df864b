"""
Record types shared by the store, the ranking engine and the vault.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

#: Allowed values for :attr:`MemoryRecord.category`.
CATEGORIES: tuple[str, ...] = (
    "preference",
    "fact",
    "decision",
    "entity",
    "procedure",
    "context",
    "other",
)

DEFAULT_CATEGORY = "other"
DEFAULT_NAMESPACE = "default"
DEFAULT_IMPORTANCE = 0.7


def generate_id() -> str:
    """Return a new unique memory ID."""
    return str(uuid.uuid4())


@dataclass
class MemoryRecord:
    """
    A single stored memory.

    ``consolidated_into`` is a tombstone: when set, the record has been merged
    into the record with that id and no longer takes part in search.
    Timestamps are epoch seconds.
    """

    id: str
    text: str
    category: str = DEFAULT_CATEGORY
    importance: float = DEFAULT_IMPORTANCE
    access_count: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    last_accessed_at: float | None = None
    consolidated_into: str | None = None
    agent_id: str | None = None
    namespace: str = DEFAULT_NAMESPACE
    metadata: dict[str, Any] | None = None

    @property
    def active(self) -> bool:
        return self.consolidated_into is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    # ------------------------------------------------------------------
    # ChromaDB row mapping
    # ------------------------------------------------------------------

    def to_chroma_metadata(self) -> dict[str, Any]:
        """
        Flatten the scalar fields into a ChromaDB metadata dict.

        ChromaDB metadata values must be str/int/float/bool, so a missing
        successor is stored as ``""`` (which keeps it filterable) and
        optional fields are simply left out.
        """
        meta: dict[str, Any] = {
            "category": self.category,
            "importance": float(self.importance),
            "access_count": int(self.access_count),
            "created_at": float(self.created_at),
            "updated_at": float(self.updated_at),
            "consolidated_into": self.consolidated_into or "",
            "namespace": self.namespace,
        }
        if self.last_accessed_at is not None:
            meta["last_accessed_at"] = float(self.last_accessed_at)
        if self.agent_id is not None:
            meta["agent_id"] = self.agent_id
        if self.metadata:
            meta["metadata_json"] = json.dumps(self.metadata)
        return meta

    @classmethod
    def from_chroma(
        cls, id: str, document: str | None, meta: dict[str, Any] | None
    ) -> "MemoryRecord":
        meta = meta or {}
        extra = meta.get("metadata_json")
        last_accessed = meta.get("last_accessed_at")
        return cls(
            id=id,
            text=document or "",
            category=meta.get("category", DEFAULT_CATEGORY),
            importance=float(meta.get("importance", DEFAULT_IMPORTANCE)),
            access_count=int(meta.get("access_count", 0)),
            created_at=float(meta.get("created_at", 0.0)),
            updated_at=float(meta.get("updated_at", 0.0)),
            last_accessed_at=float(last_accessed) if last_accessed is not None else None,
            consolidated_into=meta.get("consolidated_into") or None,
            agent_id=meta.get("agent_id"),
            namespace=meta.get("namespace", DEFAULT_NAMESPACE),
            metadata=json.loads(extra) if extra else None,
        )


@dataclass
class SearchResult:
    """A record returned by a similarity query."""

    record: MemoryRecord
    distance: float
    similarity: float
    score: float = 0.0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def text(self) -> str:
        return self.record.text

    @property
    def category(self) -> str:
        return self.record.category

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data.update(distance=self.distance, similarity=self.similarity, score=self.score)
        return data


@dataclass
class StoreStats:
    total: int = 0
    active: int = 0
    consolidated: int = 0
    categories: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
