"""Per-company index lifecycle on top of a storage adapter."""

import asyncio
import logging
import posixpath
import re
import weakref
from collections.abc import Mapping
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from .exceptions import (
    ArtifactNotFoundError,
    IndexCorruptedError,
    IndexNotFoundError,
    StorageError,
    ValidationError,
)
from .models import (
    CompanyIndex,
    CompanyStats,
    DeleteResult,
    IndexedDocument,
    IndexMetadata,
    IndexVerification,
    ProcessingConfig,
    SaveResult,
    StorageStats,
    VectorData,
    utc_now,
)
from .serializer import (
    CONFIG_ARTIFACT,
    DOCUMENTS_ARTIFACT,
    METADATA_ARTIFACT,
    REQUIRED_ARTIFACTS,
    VECTORS_ARTIFACT,
    IndexSerializer,
)
from .storage import TRASH_PREFIX, LocalFileStorage, StorageAdapter, stamp_age, stamped_name

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Z0-9_-]")

# Metadata keys the manager owns; caller-supplied values for these are ignored.
_MANAGED_FIELDS = ("company_code", "document_count", "updated_at", "version")


def _pop_field(fields: dict[str, Any], name: str) -> Any:
    """Pop a field given in either snake_case or camelCase."""
    head, *rest = name.split("_")
    camel = head + "".join(part.title() for part in rest)
    value = fields.pop(name, None)
    camel_value = fields.pop(camel, None)
    return value if value is not None else camel_value


class IndexManager:
    """Manager for saving, loading, verifying and enumerating company indexes.

    Each company owns one container named after its normalized code, holding
    ``metadata.json``, ``documents.json``, ``vectors.json`` and ``config.json``.
    Saves are staged in a hidden container and published with a single move,
    so readers see either the old index or the new one. Operations on the same
    company are serialized; different companies never wait on each other.
    """

    MAX_CODE_LENGTH = 128
    STAGING_PREFIX = ".staging-"
    HIDDEN_PREFIX = "."
    STALE_AFTER = 3600.0

    def __init__(
        self,
        base_dir: str = "./indexes",
        storage: Optional[StorageAdapter] = None,
        processing_config: Optional[ProcessingConfig] = None,
        stale_after: float = STALE_AFTER,
    ):
        """Initialize the index manager.

        Args:
            base_dir: Storage root for the default LocalFileStorage
            storage: Storage adapter (overrides base_dir)
            processing_config: Default chunking/embedding settings recorded in metadata
            stale_after: Age in seconds after which a leftover staging container is swept
        """
        self.storage = storage or LocalFileStorage(base_dir)
        self.base_dir = self.storage.location
        self.processing_config = processing_config or ProcessingConfig()
        self.stale_after = stale_after
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._sweep_lock = asyncio.Lock()
        self._swept = False

    # Company codes and paths

    def normalize_company_code(self, company_code: Any) -> str:
        """Map a company identifier to its storage-safe form.

        Raises:
            ValidationError: If the code is not a non-empty string
        """
        if not isinstance(company_code, str):
            raise ValidationError(
                f"Company code must be a string, got {type(company_code).__name__}"
            )
        code = company_code.strip().upper()
        if not code:
            raise ValidationError("Company code must not be empty")
        if len(code) > self.MAX_CODE_LENGTH:
            raise ValidationError(f"Company code longer than {self.MAX_CODE_LENGTH} characters")
        return _UNSAFE_CHARS.sub("_", code)

    def get_company_dir(self, company_code: Any) -> str:
        """Location of a company's container (for display and logging)."""
        return posixpath.join(self.base_dir, self.normalize_company_code(company_code))

    def get_company_file_paths(self, company_code: Any) -> dict[str, str]:
        """Storage paths of a company's container and artifacts."""
        code = self.normalize_company_code(company_code)
        return {
            "dir": code,
            "metadata": f"{code}/{METADATA_ARTIFACT}",
            "documents": f"{code}/{DOCUMENTS_ARTIFACT}",
            "vectors": f"{code}/{VECTORS_ARTIFACT}",
            "config": f"{code}/{CONFIG_ARTIFACT}",
        }

    def _lock_for(self, code: str) -> asyncio.Lock:
        # Weak values: a lock lives only while some operation holds or awaits it.
        lock = self._locks.get(code)
        if lock is None:
            lock = self._locks[code] = asyncio.Lock()
        return lock

    # Lifecycle

    async def save_company_index(
        self,
        company_code: Any,
        documents: Optional[Iterable[Any]],
        vector_source: Any = None,
        extra_metadata: Optional[Mapping[str, Any]] = None,
    ) -> SaveResult:
        """Persist a company index, fully replacing any previous one.

        Args:
            company_code: Company identifier
            documents: Processed documents (models or mappings)
            vector_source: Embedded chunks (may be None)
            extra_metadata: Caller fields merged into metadata

        Returns:
            SaveResult
        """
        code = self.normalize_company_code(company_code)
        if extra_metadata is not None and not isinstance(extra_metadata, Mapping):
            raise ValidationError("extra_metadata must be a mapping")

        docs = IndexSerializer.normalize_documents(documents)
        vector_data = IndexSerializer.serialize_vector_store(
            vector_source, model=self.processing_config.embedding_model
        )

        async with self._lock_for(code):
            previous = await self._read_metadata_quietly(code)
            metadata = self._build_metadata(code, docs, vector_data, extra_metadata, previous)
            await self._write_index(code, metadata, docs, vector_data)

        logger.info(
            f"Saved index for {code}: {len(docs)} documents, {metadata.total_chunks} chunks"
        )
        return SaveResult(company_code=code, document_count=len(docs))

    async def append_to_company_index(
        self,
        company_code: Any,
        documents: Optional[Iterable[Any]],
        vector_source: Any = None,
    ) -> SaveResult:
        """Merge documents and vectors into an existing index.

        Documents whose id already exists replace the stored version;
        vectors are appended.

        Raises:
            IndexNotFoundError: If there is no index to append to
            IndexCorruptedError: If the existing index cannot be read
        """
        code = self.normalize_company_code(company_code)
        new_docs = IndexSerializer.normalize_documents(documents)
        new_records = IndexSerializer.vector_records(vector_source)

        async with self._lock_for(code):
            existing = await self._load(code)

            merged: dict[str, IndexedDocument] = {doc.id: doc for doc in existing.documents}
            for doc in new_docs:
                merged[doc.id] = doc
            docs = list(merged.values())

            vector_data = IndexSerializer.serialize_vector_store(
                existing.vector_data.records() + new_records,
                model=existing.vector_data.config.model or self.processing_config.embedding_model,
            )
            extra = existing.metadata.to_payload()
            extra.pop("urls", None)
            metadata = self._build_metadata(code, docs, vector_data, extra, existing.metadata)
            await self._write_index(code, metadata, docs, vector_data)

        logger.info(f"Appended {len(new_docs)} documents to index for {code}")
        return SaveResult(company_code=code, document_count=len(docs))

    async def load_company_index(self, company_code: Any) -> CompanyIndex:
        """Load and validate a company index.

        Raises:
            IndexNotFoundError: If any required artifact is absent
            IndexCorruptedError: If an artifact fails validation
        """
        code = self.normalize_company_code(company_code)
        async with self._lock_for(code):
            index = await self._load(code)
        logger.info(
            f"Loaded index for {code}: {len(index.documents)} documents, "
            f"{len(index.vector_data.embeddings)} vectors"
        )
        return index

    async def has_company_index(self, company_code: Any) -> bool:
        """Check that every required artifact is present. Does not parse them."""
        code = self.normalize_company_code(company_code)
        for artifact in REQUIRED_ARTIFACTS:
            if not await self.storage.exists(f"{code}/{artifact}"):
                return False
        return True

    async def delete_company_index(self, company_code: Any) -> DeleteResult:
        """Remove a company's container and all its artifacts.

        Raises:
            IndexNotFoundError: If the company has no container
        """
        code = self.normalize_company_code(company_code)
        async with self._lock_for(code):
            if not await self.storage.exists(code):
                raise IndexNotFoundError(code)
            try:
                await self.storage.delete(code)
            except ArtifactNotFoundError:
                raise IndexNotFoundError(code) from None

        logger.info(f"Deleted index for {code}")
        return DeleteResult(company_code=code)

    # Statistics

    async def get_company_stats(self, company_code: Any) -> Optional[CompanyStats]:
        """Summary of one index, or None when the company has no index.

        Raises:
            IndexCorruptedError: If the metadata artifact cannot be parsed
        """
        code = self.normalize_company_code(company_code)
        if not await self.has_company_index(code):
            return None

        try:
            metadata = IndexSerializer.deserialize_metadata(
                await self.storage.load(f"{code}/{METADATA_ARTIFACT}")
            )
            total_chunks = metadata.total_chunks
            if "total_chunks" not in metadata.model_fields_set:
                vector_data = IndexSerializer.deserialize_vectors(
                    await self.storage.load(f"{code}/{VECTORS_ARTIFACT}")
                )
                total_chunks = len(vector_data.embeddings)
        except ArtifactNotFoundError:
            return None
        except IndexCorruptedError as e:
            raise IndexCorruptedError(e.artifact, e.detail, company_code=code) from e

        return CompanyStats(
            company_code=metadata.company_code or code,
            document_count=metadata.document_count,
            total_chunks=total_chunks,
            urls=metadata.urls,
            created_at=metadata.created_at,
            updated_at=metadata.updated_at,
        )

    async def get_all_companies(self) -> list[CompanyStats]:
        """Stats for every readable index under the storage root.

        Entries that are hidden, not normalized codes, incomplete or
        unparseable are skipped.
        """
        companies = []
        for entry in await self.storage.list(""):
            if entry.startswith(self.HIDDEN_PREFIX):
                continue
            try:
                if self.normalize_company_code(entry) != entry:
                    continue
                stats = await self.get_company_stats(entry)
            except (IndexCorruptedError, ValidationError) as e:
                logger.warning(f"Skipping unreadable index '{entry}': {e}")
                continue
            if stats is not None:
                companies.append(stats)
        return companies

    async def get_storage_stats(self) -> StorageStats:
        """Totals across all readable company indexes."""
        companies = await self.get_all_companies()
        return StorageStats(
            total_companies=len(companies),
            total_documents=sum(c.document_count for c in companies),
            total_chunks=sum(c.total_chunks for c in companies),
            storage_location=self.base_dir,
            companies=companies,
        )

    async def verify_company_index(self, company_code: Any) -> IndexVerification:
        """Fully load an index and check its internal consistency.

        Never raises for missing or corrupted content; problems are reported.
        """
        code = self.normalize_company_code(company_code)
        result = IndexVerification(company_code=code)

        missing = [a for a in REQUIRED_ARTIFACTS if not await self.storage.exists(f"{code}/{a}")]
        if missing:
            result.problems.append(f"missing artifacts: {', '.join(missing)}")
            return result
        result.complete = True

        try:
            index = await self.load_company_index(code)
        except IndexNotFoundError as e:
            result.complete = False
            result.problems.append(e.message)
            return result
        except IndexCorruptedError as e:
            result.problems.append(e.message)
            return result

        metadata, vectors = index.metadata, index.vector_data
        if metadata.document_count != len(index.documents):
            result.problems.append(
                f"documentCount is {metadata.document_count} but {len(index.documents)} documents are stored"
            )
        chunk_count = len(vectors.embeddings) or sum(len(d.chunks) for d in index.documents)
        if metadata.total_chunks != chunk_count:
            result.problems.append(f"totalChunks is {metadata.total_chunks} but {chunk_count} chunks are stored")
        if not len(vectors.embeddings) == len(vectors.documents) == len(vectors.metadatas):
            result.problems.append(
                f"vector lists differ in length: {len(vectors.embeddings)} embeddings, "
                f"{len(vectors.documents)} documents, {len(vectors.metadatas)} metadatas"
            )
        dimensions = {len(e) for e in vectors.embeddings}
        if len(dimensions) > 1:
            result.problems.append(f"mixed embedding dimensions: {sorted(dimensions)}")
        elif dimensions and dimensions != {vectors.config.dimensions}:
            result.problems.append(
                f"config.dimensions is {vectors.config.dimensions} but embeddings have {dimensions.pop()}"
            )

        result.valid = not result.problems
        return result

    def serialize_vector_store(self, vector_source: Any) -> VectorData:
        """Flatten a vector source into storage-friendly lists. No I/O."""
        return IndexSerializer.serialize_vector_store(
            vector_source, model=self.processing_config.embedding_model
        )

    # Internals

    def _build_metadata(
        self,
        code: str,
        documents: list[IndexedDocument],
        vector_data: VectorData,
        extra_metadata: Optional[Mapping[str, Any]],
        previous: Optional[IndexMetadata],
    ) -> IndexMetadata:
        fields = dict(extra_metadata or {})
        for name in _MANAGED_FIELDS:
            _pop_field(fields, name)

        now = utc_now()
        created_at = _pop_field(fields, "created_at") or (previous.created_at if previous else None) or now
        urls = _pop_field(fields, "urls")
        if urls is None:
            urls = [doc.location for doc in documents if doc.location]
        processing_config = _pop_field(fields, "processing_config") or self.processing_config
        if isinstance(processing_config, ProcessingConfig):
            processing_config = processing_config.to_payload()

        total_chunks = len(vector_data.embeddings) or sum(len(doc.chunks) for doc in documents)
        _pop_field(fields, "total_chunks")

        try:
            return IndexMetadata.model_validate({
                **fields,
                "companyCode": code,
                "createdAt": created_at,
                "updatedAt": now,
                "documentCount": len(documents),
                "totalChunks": total_chunks,
                "urls": urls,
                "processingConfig": processing_config,
            })
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid metadata for {code}: {e}") from e

    async def _write_index(
        self,
        code: str,
        metadata: IndexMetadata,
        documents: list[IndexedDocument],
        vector_data: VectorData,
    ) -> None:
        """Encode every artifact, stage them, then publish in one move."""
        payloads = {
            METADATA_ARTIFACT: IndexSerializer.serialize_metadata(metadata),
            DOCUMENTS_ARTIFACT: IndexSerializer.serialize_documents(documents),
            VECTORS_ARTIFACT: IndexSerializer.serialize_vectors(vector_data),
            CONFIG_ARTIFACT: IndexSerializer.serialize_config(
                metadata.processing_config, vector_data.config.dimensions
            ),
        }

        await self._sweep_stale_staging()
        staging = stamped_name(self.STAGING_PREFIX, code)
        try:
            for name, data in payloads.items():
                await self.storage.save(f"{staging}/{name}", data)
            try:
                await self.storage.move(staging, code)
            except ArtifactNotFoundError as e:
                raise StorageError(
                    f"Staged index for {code} disappeared before it was published", path=staging
                ) from e
        except BaseException:
            await self._discard(staging)
            raise

    async def _load(self, code: str) -> CompanyIndex:
        raw: dict[str, bytes] = {}
        for artifact in REQUIRED_ARTIFACTS:
            try:
                raw[artifact] = await self.storage.load(f"{code}/{artifact}")
            except ArtifactNotFoundError:
                raise IndexNotFoundError(code, f"Index for '{code}' is missing {artifact}") from None

        try:
            metadata = IndexSerializer.deserialize_metadata(raw[METADATA_ARTIFACT])
            documents = IndexSerializer.deserialize_documents(raw[DOCUMENTS_ARTIFACT])
            vector_data = IndexSerializer.deserialize_vectors(raw[VECTORS_ARTIFACT])
        except IndexCorruptedError as e:
            raise IndexCorruptedError(e.artifact, e.detail, company_code=code) from e

        if not metadata.company_code:
            metadata.company_code = code
        return CompanyIndex(metadata=metadata, documents=documents, vector_data=vector_data)

    async def _read_metadata_quietly(self, code: str) -> Optional[IndexMetadata]:
        """Previous metadata if readable, else None."""
        try:
            return IndexSerializer.deserialize_metadata(
                await self.storage.load(f"{code}/{METADATA_ARTIFACT}")
            )
        except (ArtifactNotFoundError, IndexCorruptedError):
            return None

    async def _discard(self, path: str) -> None:
        try:
            await self.storage.delete(path)
        except ArtifactNotFoundError:
            pass
        except StorageError as e:
            logger.warning(f"Could not remove staging container {path}: {e}")

    async def _sweep_stale_staging(self) -> None:
        """Remove hidden containers left behind by an interrupted save.

        Runs once per manager, before this manager stages anything. Only
        entries stamped more than ``stale_after`` seconds ago are removed, so
        a save in flight from another manager on the same root is left alone.
        """
        if self._swept:
            return
        async with self._sweep_lock:
            if self._swept:
                return
            for entry in await self.storage.list(""):
                if not entry.startswith((self.STAGING_PREFIX, TRASH_PREFIX)):
                    continue
                age = stamp_age(entry)
                if age is None or age < self.stale_after:
                    continue
                logger.warning(f"Removing stale staging container {entry} ({age:.0f}s old)")
                await self._discard(entry)
            self._swept = True
