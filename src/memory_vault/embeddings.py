"""
Embedding providers.

The vault only needs something with an ``async embed(text)`` method; the
dimension is taken from the first vector it returns.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from chromadb.utils import embedding_functions

DEFAULT_MODEL = "all-MiniLM-L6-v2"


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def get_embedding_function(
    model_name: str = DEFAULT_MODEL,
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a sentence-transformer embedding function."""
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=model_name
    )


class SentenceTransformerEmbedder:
    """
    Local embedder backed by sentence-transformers.

    Model inference is blocking, so it runs in a worker thread.  The model
    is loaded on first use.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        _embedding_function: Any | None = None,
    ) -> None:
        self.model_name = model_name
        self._embedding_function = _embedding_function

    def _embed_sync(self, text: str) -> list[float]:
        if self._embedding_function is None:
            self._embedding_function = get_embedding_function(self.model_name)
        vectors = self._embedding_function([text])
        return [float(x) for x in vectors[0]]

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)
