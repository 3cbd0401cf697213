"""Retrieval building blocks: documents, chunking, embeddings and vector search."""

from .document import Document, Chunk, SearchResult
from .base import BaseEmbedding, BaseVectorStore, BaseChunker
from .embeddings import FakeEmbedding, OpenAIEmbedding, LocalEmbedding
from .vectorstore import MemoryVectorStore, cosine_similarity
from .chunking import RecursiveChunker

__all__ = [
    "Document", "Chunk", "SearchResult",
    "BaseEmbedding", "BaseVectorStore", "BaseChunker",
    "FakeEmbedding", "OpenAIEmbedding", "LocalEmbedding",
    "MemoryVectorStore", "cosine_similarity",
    "RecursiveChunker",
]
