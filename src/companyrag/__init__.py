"""
companyrag - Company-scoped document indexes with retrieval-augmented answering.
"""

from companyrag.answering import (
    BaseAnswerGenerator,
    ExtractiveAnswerGenerator,
    OpenAIAnswerGenerator,
)
from companyrag.coordinator import IndexCoordinator
from companyrag.index import (
    CompanyIndex,
    CompanyIndexError,
    IndexCorruptedError,
    IndexManager,
    IndexNotFoundError,
    LocalFileStorage,
    MemoryStorage,
    PipelineError,
    RedisStorage,
    StorageError,
    ValidationError,
)
from companyrag.pipeline import BasePipeline, DocumentPipeline, PipelineResult, SourceFetcher
from companyrag.service import (
    CompanyDocumentService,
    IngestionResult,
    QueryResult,
    create_service,
)
from companyrag.utils import Settings, load_settings

__version__ = "0.1.0"

__all__ = [
    # Service
    "CompanyDocumentService",
    "IngestionResult",
    "QueryResult",
    "create_service",
    # Index
    "IndexManager",
    "IndexCoordinator",
    "CompanyIndex",
    "LocalFileStorage",
    "MemoryStorage",
    "RedisStorage",
    # Pipeline
    "BasePipeline",
    "DocumentPipeline",
    "PipelineResult",
    "SourceFetcher",
    # Answering
    "BaseAnswerGenerator",
    "ExtractiveAnswerGenerator",
    "OpenAIAnswerGenerator",
    # Errors
    "CompanyIndexError",
    "ValidationError",
    "IndexNotFoundError",
    "IndexCorruptedError",
    "StorageError",
    "PipelineError",
    # Config
    "Settings",
    "load_settings",
]
