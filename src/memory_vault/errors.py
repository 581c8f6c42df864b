"""Exception hierarchy for memory-vault."""

from __future__ import annotations


class MemoryVaultError(Exception):
    """Base class for every error raised by memory-vault."""


class DimensionMismatchError(MemoryVaultError):
    """The store already holds vectors of a different dimension."""

    def __init__(self, committed: int, requested: int) -> None:
        self.committed = committed
        self.requested = requested
        super().__init__(
            f"dimension mismatch: store has {committed}, caller passed {requested}. "
            f"Use a new collection to re-embed with another model, or switch back "
            f"to a {committed}-dim model."
        )


class EmbedderNotConfiguredError(MemoryVaultError):
    """An operation needed embeddings but no embedder was provided."""

    def __init__(self) -> None:
        super().__init__("embedding provider not configured")


class StoreError(MemoryVaultError):
    """Failure inside the vector store."""

    retryable = False


class TransactionError(StoreError):
    """A staged write could not be committed; nothing was written."""

    retryable = True


class RecordNotFoundError(StoreError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"no active memory with id {record_id}")


class DuplicateRecordError(StoreError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"memory {record_id} already exists")
