"""Fetch, chunk and embed pipeline that produces the content of a company index."""

import asyncio
import io
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field

from companyrag.index.exceptions import PipelineError
from companyrag.index.models import DocumentChunk, IndexedDocument, ProcessingConfig
from companyrag.rag.base import BaseChunker, BaseEmbedding
from companyrag.rag.chunking import RecursiveChunker
from companyrag.rag.document import Document
from companyrag.rag.vectorstore import MemoryVectorStore

logger = logging.getLogger(__name__)

COMPANY_FIELDS = ("companyCode", "name", "nseCode", "bseCode", "industryLink")


class FetchedSource(BaseModel):
    """Raw text pulled from one source location."""
    source: str
    name: str
    content: str
    content_type: str
    is_url: bool = True


class PipelineResult(BaseModel):
    """Output of one pipeline run."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    documents: list[IndexedDocument] = Field(default_factory=list)
    vector_source: Any = None
    processed_sources: list[str] = Field(default_factory=list)
    failed_sources: list[str] = Field(default_factory=list)


class BasePipeline(ABC):
    """Abstract fetch/chunk/embed pipeline."""

    processing_config: ProcessingConfig

    @abstractmethod
    async def run(
        self,
        sources: list[str],
        company_code: str,
        company_info: Optional[Mapping[str, Any]] = None,
    ) -> PipelineResult:
        """Process sources into documents and an embedded vector source.

        A failing source is recorded in ``failed_sources`` and does not abort
        the batch.
        """
        pass


class SourceFetcher:
    """Loads text from URLs (over HTTP) and local files.

    PDFs are converted with pypdf; plain text, HTML and JSON are decoded as
    text. Other content types are rejected.
    """

    TEXT_TYPES = ("text/plain", "text/html", "application/json")
    TEXT_SUFFIXES = (".txt", ".md", ".html", ".json")

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize the fetcher.

        Args:
            timeout: Per-request timeout in seconds
            client: Shared HTTP client (one is created per fetch otherwise)
        """
        self.timeout = timeout
        self._client = client

    @staticmethod
    def is_valid_url(value: str) -> bool:
        parsed = urlparse(value)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    async def fetch(self, source: str) -> FetchedSource:
        """Fetch one source.

        Raises:
            PipelineError: If the source is invalid, missing or unsupported
            httpx.HTTPError: On transport or HTTP status failures
        """
        if not isinstance(source, str) or not source.strip():
            raise PipelineError(f"Invalid source: {source!r}")
        source = source.strip()
        if self.is_valid_url(source):
            return await self._fetch_url(source)
        if Path(source).is_file():
            return await self._read_path(Path(source))
        raise PipelineError(f"Source is neither a URL nor a readable file: {source}")

    async def _fetch_url(self, url: str) -> FetchedSource:
        if self._client is not None:
            response = await self._client.get(url, timeout=self.timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
        response.raise_for_status()

        content_type = response.headers.get("content-type", "").lower()
        if "pdf" in content_type:
            content = await self._pdf_text(response.content)
        elif any(t in content_type for t in self.TEXT_TYPES):
            content = response.text
        else:
            raise PipelineError(f"Unsupported content type for URL {url}: {content_type or 'unknown'}")
        return FetchedSource(source=url, name=url, content=content, content_type=content_type)

    async def _read_path(self, path: Path) -> FetchedSource:
        suffix = path.suffix.lower()
        loop = asyncio.get_running_loop()
        if suffix == ".pdf":
            data = await loop.run_in_executor(None, path.read_bytes)
            content = await self._pdf_text(data)
            content_type = "application/pdf"
        elif suffix in self.TEXT_SUFFIXES:
            content = await loop.run_in_executor(None, lambda: path.read_text(encoding="utf-8", errors="replace"))
            content_type = "text/plain"
        else:
            raise PipelineError(f"Unsupported file type: {path}")
        return FetchedSource(
            source=str(path), name=path.name, content=content, content_type=content_type, is_url=False
        )

    async def _pdf_text(self, data: bytes) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, extract_pdf_text, data)


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every page of a PDF."""
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n\n".join(page.extract_text() or "" for page in reader.pages)
    except PdfReadError as e:
        raise PipelineError(f"Unreadable PDF: {e}") from e


class DocumentPipeline(BasePipeline):
    """Default pipeline: fetch each source, chunk it, embed the chunks."""

    def __init__(
        self,
        embedding: BaseEmbedding,
        chunker: Optional[BaseChunker] = None,
        fetcher: Optional[SourceFetcher] = None,
        processing_config: Optional[ProcessingConfig] = None,
    ):
        self.embedding = embedding
        self.processing_config = processing_config or ProcessingConfig(embedding_model=embedding.model_name)
        self.chunker = chunker or RecursiveChunker(
            chunk_size=self.processing_config.chunk_size,
            overlap=self.processing_config.chunk_overlap,
        )
        self.fetcher = fetcher or SourceFetcher()

    async def run(
        self,
        sources: list[str],
        company_code: str,
        company_info: Optional[Mapping[str, Any]] = None,
    ) -> PipelineResult:
        result = PipelineResult()
        store = MemoryVectorStore()
        result.vector_source = store

        for source in sources:
            try:
                document = await self._process(source, company_code, company_info, store)
            except Exception as e:
                logger.warning(f"Skipping source {source} for {company_code}: {e}")
                result.failed_sources.append(str(source))
                continue
            result.documents.append(document)
            result.processed_sources.append(source)

        logger.info(
            f"Pipeline for {company_code}: {len(result.processed_sources)} processed, "
            f"{len(result.failed_sources)} failed, {await store.count()} chunks"
        )
        return result

    async def _process(
        self,
        source: str,
        company_code: str,
        company_info: Optional[Mapping[str, Any]],
        store: MemoryVectorStore,
    ) -> IndexedDocument:
        fetched = await self.fetcher.fetch(source)
        company = {key: company_info[key] for key in COMPANY_FIELDS if company_info and key in company_info}
        company.update({"companyCode": company_code, "link": fetched.source})

        document = Document(
            id=uuid.uuid4().hex,
            content=fetched.content,
            metadata={"source": fetched.source, "company": company},
            source=fetched.source,
        )
        chunks = self.chunker.chunk(document)
        if not chunks:
            raise PipelineError(f"No text extracted from {source}")

        embeddings = await self.embedding.embed_documents([chunk.content for chunk in chunks])
        await store.add(chunks, embeddings)
        store.add_document(document)

        return IndexedDocument(
            id=document.id,
            name=fetched.name,
            url=fetched.source if fetched.is_url else None,
            path=None if fetched.is_url else fetched.source,
            content=fetched.content,
            metadata={"contentType": fetched.content_type, "company": company},
            chunks=[DocumentChunk(content=chunk.content, metadata=chunk.metadata) for chunk in chunks],
        )
