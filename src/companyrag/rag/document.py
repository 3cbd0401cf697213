"""Document and Chunk data structures used while building an index."""

from typing import Any, Optional
from pydantic import BaseModel, Field


class Document(BaseModel):
    """A fetched source document, before chunking."""
    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None


class Chunk(BaseModel):
    """A chunk of a document."""
    id: str
    document_id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[list[float]] = None
    start_index: int = 0
    end_index: int = 0


class SearchResult(BaseModel):
    """A chunk matched by a similarity search."""
    chunk: Chunk
    score: float
    document: Optional[Document] = None

    @property
    def source(self) -> Optional[str]:
        """Where the chunk came from: its source metadata, else the document's."""
        source = self.chunk.metadata.get("source")
        if source:
            return source
        return self.document.source if self.document else None
