"""Company-scoped document index persistence.

This module provides:
- IndexManager: per-company index lifecycle (save, load, verify, delete, stats)
- IndexSerializer: JSON artifacts with structural validation
- Storage adapters: local filesystem, in-memory, Redis
- A typed error taxonomy
"""

from .exceptions import (
    ArtifactNotFoundError,
    CompanyIndexError,
    IndexCorruptedError,
    IndexNotFoundError,
    PipelineError,
    SerializationError,
    StorageError,
    ValidationError,
)
from .manager import IndexManager
from .models import (
    CompanyIndex,
    CompanyStats,
    DeleteResult,
    DocumentChunk,
    IndexedDocument,
    IndexMetadata,
    IndexResolution,
    IndexVerification,
    ProcessingConfig,
    SaveResult,
    StorageStats,
    VectorConfig,
    VectorData,
    VectorRecord,
)
from .serializer import IndexSerializer, VectorSource, serialize_vector_store
from .storage import LocalFileStorage, MemoryStorage, RedisStorage, StorageAdapter

__all__ = [
    # Manager
    "IndexManager",
    # Models
    "CompanyIndex",
    "CompanyStats",
    "DeleteResult",
    "DocumentChunk",
    "IndexedDocument",
    "IndexMetadata",
    "IndexResolution",
    "IndexVerification",
    "ProcessingConfig",
    "SaveResult",
    "StorageStats",
    "VectorConfig",
    "VectorData",
    "VectorRecord",
    # Serializer
    "IndexSerializer",
    "VectorSource",
    "serialize_vector_store",
    # Storage
    "StorageAdapter",
    "LocalFileStorage",
    "MemoryStorage",
    "RedisStorage",
    # Errors
    "CompanyIndexError",
    "ValidationError",
    "IndexNotFoundError",
    "IndexCorruptedError",
    "SerializationError",
    "StorageError",
    "ArtifactNotFoundError",
    "PipelineError",
]
