"""Company document service: ingestion, question answering and administration."""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from companyrag.answering import (
    NO_ANSWER,
    BaseAnswerGenerator,
    ExtractiveAnswerGenerator,
    OpenAIAnswerGenerator,
)
from companyrag.coordinator import IndexCoordinator
from companyrag.index.exceptions import IndexCorruptedError, ValidationError
from companyrag.index.manager import IndexManager
from companyrag.index.serializer import VECTORS_ARTIFACT
from companyrag.index.models import (
    CompanyStats,
    DeleteResult,
    ProcessingConfig,
    StorageStats,
)
from companyrag.index.storage import (
    LocalFileStorage,
    MemoryStorage,
    RedisStorage,
    StorageAdapter,
)
from companyrag.pipeline import DocumentPipeline, SourceFetcher
from companyrag.rag.base import BaseEmbedding
from companyrag.rag.chunking import RecursiveChunker
from companyrag.rag.document import SearchResult
from companyrag.rag.embeddings import FakeEmbedding, LocalEmbedding, OpenAIEmbedding
from companyrag.rag.vectorstore import MemoryVectorStore
from companyrag.utils.config import Settings
from companyrag.utils.logging import set_log_level

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class IngestionResult(BaseModel):
    company_code: str
    processed_count: int = 0
    processed_items: list[str] = Field(default_factory=list)
    from_cache: bool = False


class SourceDetail(BaseModel):
    """One retrieved chunk, numbered the way the answer cites it."""
    id: str
    source_ref: str
    link: Optional[str] = None
    content: str
    content_preview: str
    company: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


class QueryResult(BaseModel):
    answer_text: str
    sources: list[str] = Field(default_factory=list)
    source_details: list[SourceDetail] = Field(default_factory=list)
    from_cache: bool = False


class ServiceStatus(BaseModel):
    total_companies: int = 0
    total_documents: int = 0
    last_processed: Optional[datetime] = None


def _preview(content: str) -> str:
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


def _link(result: SearchResult) -> Optional[str]:
    company = result.chunk.metadata.get("company")
    if isinstance(company, dict) and company.get("link"):
        return company["link"]
    return result.source


class CompanyDocumentService:
    """Front door for ingesting company documents and asking questions about them.

    Indexes are resolved through the coordinator, so a query for a company
    with no index builds one from the given sources first.
    """

    def __init__(
        self,
        manager: IndexManager,
        coordinator: IndexCoordinator,
        embedding: BaseEmbedding,
        answer_generator: BaseAnswerGenerator,
        top_k: int = 3,
    ):
        self.manager = manager
        self.coordinator = coordinator
        self.embedding = embedding
        self.answer_generator = answer_generator
        self.top_k = top_k

    async def ingest(
        self,
        sources: list[str],
        company_code: Any,
        company_info: Optional[Mapping[str, Any]] = None,
        force_refresh: bool = False,
    ) -> IngestionResult:
        """Make sure the company has an index built from its sources.

        An existing index is reused unless ``force_refresh`` is set.

        Raises:
            ValidationError: If no sources are given or the code is invalid
            PipelineError: If none of the sources could be processed
        """
        if not sources:
            raise ValidationError("At least one source is required")
        if isinstance(sources, str):
            sources = [sources]

        resolution = await self.coordinator.ensure_index(
            company_code, sources, force_rebuild=force_refresh, company_info=company_info
        )
        index = resolution.index
        return IngestionResult(
            company_code=index.company_code,
            processed_count=len(index.documents),
            processed_items=list(index.metadata.urls),
            from_cache=resolution.from_cache,
        )

    async def query(
        self,
        question: str,
        company_code: Any,
        sources: Optional[list[str]] = None,
        k: Optional[int] = None,
        filter: Optional[dict[str, Any]] = None,
    ) -> QueryResult:
        """Answer a question from a company's indexed documents.

        Args:
            question: Natural-language question
            company_code: Company identifier
            sources: Used to build the index if the company has none yet
            k: Number of chunks to retrieve (defaults to the service's top_k)
            filter: Chunk metadata that results must match; dotted keys reach
                nested values, e.g. ``{"company.companyCode": "AAPL"}``

        Raises:
            ValidationError: On a blank question, an invalid code, or a query
                embedding whose dimension differs from the index
            IndexCorruptedError: If the stored embeddings disagree on dimension
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Question must be a non-empty string")
        code = self.manager.normalize_company_code(company_code)
        k = k or self.top_k

        if not sources and not await self.manager.has_company_index(code):
            logger.info(f"No index and no sources for {code}")
            return QueryResult(answer_text=NO_ANSWER)

        resolution = await self.coordinator.ensure_index(code, sources)
        vector_data = resolution.index.vector_data
        store = MemoryVectorStore.from_vector_data(vector_data)
        if not await store.count():
            logger.info(f"Index for {code} has no embedded chunks to search")
            return QueryResult(answer_text=NO_ANSWER, from_cache=resolution.from_cache)

        dimensions = {len(e) for e in vector_data.embeddings if e}
        if len(dimensions) > 1:
            raise IndexCorruptedError(
                VECTORS_ARTIFACT,
                f"mixed embedding dimensions: {sorted(dimensions)}",
                company_code=code,
            )
        query_embedding = await self.embedding.embed_query(question)
        if len(query_embedding) not in dimensions:
            raise ValidationError(
                f"Query embedding has {len(query_embedding)} dimensions, "
                f"index for '{code}' has {dimensions.pop()}"
            )

        results = await store.search(query_embedding, k=k, filter=filter)
        if not results:
            return QueryResult(answer_text=NO_ANSWER, from_cache=resolution.from_cache)

        answer = await self.answer_generator.generate(question, results)

        sources_out: list[str] = []
        details = []
        for i, result in enumerate(results):
            link = _link(result)
            label = link or "Document"
            if label not in sources_out:
                sources_out.append(label)
            company = result.chunk.metadata.get("company")
            details.append(SourceDetail(
                id=f"SOURCE_{i}",
                source_ref=f"[SOURCE_{i}]",
                link=link,
                content=result.chunk.content,
                content_preview=_preview(result.chunk.content),
                company=company if isinstance(company, dict) else {},
                score=result.score,
            ))

        logger.info(f"Answered question for {code} from {len(results)} chunks")
        return QueryResult(
            answer_text=answer,
            sources=sources_out,
            source_details=details,
            from_cache=resolution.from_cache,
        )

    # Administration

    async def list_companies(self) -> list[CompanyStats]:
        return await self.manager.get_all_companies()

    async def get_company_stats(self, company_code: Any) -> Optional[CompanyStats]:
        return await self.manager.get_company_stats(company_code)

    async def delete_company(self, company_code: Any) -> DeleteResult:
        return await self.manager.delete_company_index(company_code)

    async def get_storage_stats(self) -> StorageStats:
        return await self.manager.get_storage_stats()

    async def get_status(self) -> ServiceStatus:
        """Totals plus the time the most recent index was written."""
        companies = await self.manager.get_all_companies()
        updated = [c.updated_at for c in companies if c.updated_at is not None]
        return ServiceStatus(
            total_companies=len(companies),
            total_documents=sum(c.document_count for c in companies),
            last_processed=max(updated) if updated else None,
        )


def create_storage(settings: Settings) -> StorageAdapter:
    if settings.storage_backend == "memory":
        return MemoryStorage()
    if settings.storage_backend == "redis":
        return RedisStorage(settings.redis_url, key_prefix=settings.redis_key_prefix)
    return LocalFileStorage(settings.storage_dir)


def create_embedding(settings: Settings) -> BaseEmbedding:
    if settings.embedding_provider == "fake":
        return FakeEmbedding()
    if settings.embedding_provider == "local":
        return LocalEmbedding(settings.embedding_model)
    return OpenAIEmbedding(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        dimensions=settings.embedding_dimensions,
    )


def create_answer_generator(settings: Settings) -> BaseAnswerGenerator:
    if settings.answer_provider == "extractive":
        return ExtractiveAnswerGenerator()
    return OpenAIAnswerGenerator(
        model=settings.answer_model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )


def create_service(settings: Optional[Settings] = None) -> CompanyDocumentService:
    """Wire a service from settings.

    Args:
        settings: Service settings (defaults to Settings())

    Returns:
        CompanyDocumentService
    """
    settings = settings or Settings()
    set_log_level(settings.log_level)

    embedding = create_embedding(settings)
    processing_config = ProcessingConfig(
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        embedding_model=embedding.model_name,
    )
    manager = IndexManager(storage=create_storage(settings), processing_config=processing_config)
    pipeline = DocumentPipeline(
        embedding,
        chunker=RecursiveChunker(chunk_size=settings.chunk_size, overlap=settings.chunk_overlap),
        fetcher=SourceFetcher(timeout=settings.request_timeout),
        processing_config=processing_config,
    )
    return CompanyDocumentService(
        manager,
        IndexCoordinator(manager, pipeline),
        embedding,
        create_answer_generator(settings),
        top_k=settings.top_k,
    )
