"""In-memory vector store used both while building and while querying an index."""

import math
from typing import Any, Optional

from companyrag.index.models import VectorData, VectorRecord

from .base import BaseVectorStore
from .document import Chunk, Document, SearchResult


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError(f"Vectors must have the same dimension ({len(a)} != {len(b)})")
    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot_product / (norm_a * norm_b)


class MemoryVectorStore(BaseVectorStore):
    """Linear-scan vector store.

    Implements ``list_chunks()``, so a store filled by the ingestion pipeline
    can be handed straight to the index manager, and ``from_vector_data()``
    rebuilds one from a loaded index.
    """

    def __init__(self):
        self._chunks: dict[str, Chunk] = {}
        self._embeddings: dict[str, list[float]] = {}
        self._documents: dict[str, Document] = {}

    @classmethod
    def from_vector_data(cls, vector_data: VectorData) -> "MemoryVectorStore":
        """Restore a searchable store from persisted vector data.

        Records without an embedding cannot be searched and are skipped.
        """
        store = cls()
        for i, record in enumerate(vector_data.records()):
            if not record.embedding:
                continue
            metadata = dict(record.metadata)
            chunk_id = str(metadata.get("chunk_id") or f"chunk_{i}")
            chunk = Chunk(
                id=chunk_id,
                document_id=str(metadata.get("document_id", "")),
                content=record.content,
                metadata=metadata,
                embedding=record.embedding,
            )
            store._chunks[chunk_id] = chunk
            store._embeddings[chunk_id] = record.embedding
        return store

    def list_chunks(self) -> list[VectorRecord]:
        """Every stored chunk with its embedding, in insertion order."""
        return [
            VectorRecord(
                content=chunk.content,
                embedding=self._embeddings[chunk_id],
                metadata={**chunk.metadata, "chunk_id": chunk_id, "document_id": chunk.document_id},
            )
            for chunk_id, chunk in self._chunks.items()
        ]

    async def add(self, chunks: list[Chunk], embeddings: list[list[float]]) -> list[str]:
        if len(chunks) != len(embeddings):
            raise ValueError("Number of chunks must match number of embeddings")
        ids = []
        for chunk, embedding in zip(chunks, embeddings):
            self._chunks[chunk.id] = chunk
            self._embeddings[chunk.id] = embedding
            ids.append(chunk.id)
        return ids

    async def search(self, query_embedding: list[float], k: int = 5, filter: Optional[dict[str, Any]] = None) -> list[SearchResult]:
        if not self._chunks:
            return []
        similarities = []
        for chunk_id, embedding in self._embeddings.items():
            chunk = self._chunks[chunk_id]
            if filter and not self._matches_filter(chunk, filter):
                continue
            similarities.append((chunk_id, cosine_similarity(query_embedding, embedding)))
        similarities.sort(key=lambda x: x[1], reverse=True)
        results = []
        for chunk_id, score in similarities[:k]:
            chunk = self._chunks[chunk_id]
            results.append(SearchResult(chunk=chunk, score=score, document=self._documents.get(chunk.document_id)))
        return results

    def _matches_filter(self, chunk: Chunk, filter: dict[str, Any]) -> bool:
        # Dotted keys reach into nested metadata, e.g. "company.companyCode".
        for key, value in filter.items():
            current: Any = chunk.metadata
            for part in key.split("."):
                if not isinstance(current, dict) or part not in current:
                    return False
                current = current[part]
            if current != value:
                return False
        return True

    async def count(self) -> int:
        return len(self._chunks)

    def add_document(self, document: Document) -> None:
        self._documents[document.id] = document
