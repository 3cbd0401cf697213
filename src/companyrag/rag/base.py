"""Interfaces for the pieces a company index is built from."""

from abc import ABC, abstractmethod
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from companyrag.index.models import VectorRecord

    from .document import Chunk, Document, SearchResult


class BaseEmbedding(ABC):
    """Embedding model shared by index builds and queries.

    Queries against an index must use a model with the same ``dimension``
    as the one that built it.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        pass

    @property
    def model_name(self) -> str:
        """Name recorded in an index's processing config."""
        return type(self).__name__


class BaseVectorStore(ABC):
    """Searchable set of embedded chunks that can be persisted."""

    @abstractmethod
    async def add(self, chunks: list["Chunk"], embeddings: list[list[float]]) -> list[str]:
        pass

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        k: int = 5,
        filter: Optional[dict[str, Any]] = None,
    ) -> list["SearchResult"]:
        pass

    @abstractmethod
    def list_chunks(self) -> list["VectorRecord"]:
        """Every stored chunk with its embedding, for serialization."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class BaseChunker(ABC):
    """Splits a fetched document into chunks."""

    @abstractmethod
    def split_text(self, text: str) -> list[str]:
        pass

    @abstractmethod
    def chunk(self, document: "Document") -> list["Chunk"]:
        pass
