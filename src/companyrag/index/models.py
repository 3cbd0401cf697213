"""Data structures persisted by the company index.

Models use snake_case attributes and are written to disk with camelCase
keys, so a stored ``metadata.json`` reads ``{"companyCode": ..., "documentCount": ...}``.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

INDEX_FORMAT_VERSION = "1.0"


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class IndexModel(BaseModel):
    """Base model for everything stored in an index artifact."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict using the on-disk key names."""
        return self.model_dump(mode="json", by_alias=True)


class ProcessingConfig(IndexModel):
    """How the documents of an index were chunked and embedded."""
    chunk_size: int = 1000
    chunk_overlap: int = 200
    embedding_model: Optional[str] = None


class IndexMetadata(IndexModel):
    """Top-level description of a company index.

    Caller-supplied fields (e.g. a company name) are kept as extra keys.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    company_code: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    document_count: int = 0
    total_chunks: int = 0
    urls: list[str] = Field(default_factory=list)
    processing_config: ProcessingConfig = Field(default_factory=ProcessingConfig)
    version: str = INDEX_FORMAT_VERSION


class DocumentChunk(IndexModel):
    """A content-bearing fragment of a document."""
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[list[float]] = None


class IndexedDocument(IndexModel):
    """A processed source document."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    url: Optional[str] = None
    path: Optional[str] = None
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunks: list[DocumentChunk] = Field(default_factory=list)

    @property
    def location(self) -> Optional[str]:
        """The URL or local path this document came from."""
        return self.url or self.path


class VectorRecord(IndexModel):
    """One embedded chunk as exposed by a vector source."""
    content: str
    embedding: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorConfig(IndexModel):
    model: Optional[str] = None
    dimensions: int = 0


class VectorData(IndexModel):
    """Flattened, store-independent view of all embedded chunks.

    The three lists are parallel: entry ``i`` of each describes the same chunk.
    """
    embeddings: list[list[float]] = Field(default_factory=list)
    documents: list[str] = Field(default_factory=list)
    metadatas: list[dict[str, Any]] = Field(default_factory=list)
    config: VectorConfig = Field(default_factory=VectorConfig)

    def records(self) -> list[VectorRecord]:
        """Zip the parallel lists back into records."""
        return [
            VectorRecord(content=content, embedding=embedding, metadata=metadata)
            for content, embedding, metadata in zip(self.documents, self.embeddings, self.metadatas)
        ]


class CompanyIndex(IndexModel):
    """A fully loaded company index."""
    metadata: IndexMetadata
    documents: list[IndexedDocument] = Field(default_factory=list)
    vector_data: VectorData = Field(default_factory=VectorData)
    loaded_at: datetime = Field(default_factory=utc_now)

    @property
    def company_code(self) -> str:
        return self.metadata.company_code


class CompanyStats(IndexModel):
    company_code: str
    document_count: int = 0
    total_chunks: int = 0
    urls: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StorageStats(IndexModel):
    total_companies: int = 0
    total_documents: int = 0
    total_chunks: int = 0
    storage_location: str = ""
    companies: list[CompanyStats] = Field(default_factory=list)


class SaveResult(IndexModel):
    success: bool = True
    company_code: str
    document_count: int = 0


class DeleteResult(IndexModel):
    success: bool = True
    company_code: str


class IndexVerification(IndexModel):
    """Outcome of a full integrity check of one index."""
    company_code: str
    complete: bool = False
    valid: bool = False
    problems: list[str] = Field(default_factory=list)


class IndexResolution(BaseModel):
    """What the coordinator hands back: an index and where it came from."""
    index: CompanyIndex
    origin: Literal["cache", "build"]

    @property
    def from_cache(self) -> bool:
        return self.origin == "cache"
