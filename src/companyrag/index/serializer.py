"""Serialization of company indexes to and from JSON artifacts."""

import json
import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from .exceptions import IndexCorruptedError, SerializationError
from .models import (
    IndexedDocument,
    IndexMetadata,
    ProcessingConfig,
    VectorConfig,
    VectorData,
    VectorRecord,
)

METADATA_ARTIFACT = "metadata.json"
DOCUMENTS_ARTIFACT = "documents.json"
VECTORS_ARTIFACT = "vectors.json"
CONFIG_ARTIFACT = "config.json"

# config.json is informational; an index is complete without it.
REQUIRED_ARTIFACTS = (METADATA_ARTIFACT, DOCUMENTS_ARTIFACT, VECTORS_ARTIFACT)


@runtime_checkable
class VectorSource(Protocol):
    """Anything that can enumerate its embedded chunks."""

    def list_chunks(self) -> list[VectorRecord]:
        ...


class IndexSerializer:
    """Turns in-memory index parts into JSON artifacts and back.

    Every ``deserialize_*`` method validates structure and raises
    IndexCorruptedError naming the artifact on any failure.
    """

    @classmethod
    def encode(cls, artifact: str, payload: Any) -> bytes:
        """Encode a JSON-ready payload to bytes.

        Args:
            artifact: Artifact name, used in error messages
            payload: Payload to encode

        Returns:
            UTF-8 JSON bytes
        """
        try:
            return json.dumps(
                payload,
                default=cls._json_default,
                ensure_ascii=False,
                allow_nan=False,
                indent=2,
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(artifact, str(e)) from e

    @classmethod
    def decode(cls, artifact: str, data: bytes) -> dict[str, Any]:
        """Decode artifact bytes into a JSON object.

        Args:
            artifact: Artifact name, used in error messages
            data: Raw bytes

        Returns:
            Parsed object
        """
        try:
            parsed = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IndexCorruptedError(artifact, f"malformed JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise IndexCorruptedError(artifact, f"expected an object, got {type(parsed).__name__}")
        return parsed

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, (set, tuple)):
            return list(obj)
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

    # Writing

    @classmethod
    def normalize_documents(cls, documents: Optional[Iterable[Any]]) -> list[IndexedDocument]:
        """Validate caller-supplied documents.

        Accepts IndexedDocument instances or mappings with the same fields.
        """
        if documents is None:
            return []
        if isinstance(documents, (str, bytes, Mapping)):
            raise SerializationError(DOCUMENTS_ARTIFACT, "documents must be a sequence")

        normalized = []
        for i, doc in enumerate(documents):
            if isinstance(doc, IndexedDocument):
                normalized.append(doc)
                continue
            if not isinstance(doc, Mapping):
                raise SerializationError(
                    DOCUMENTS_ARTIFACT, f"document {i} is a {type(doc).__name__}, not a mapping"
                )
            try:
                normalized.append(IndexedDocument.model_validate(dict(doc)))
            except PydanticValidationError as e:
                raise SerializationError(DOCUMENTS_ARTIFACT, f"document {i}: {e}") from e
        return normalized

    @classmethod
    def vector_records(cls, source: Any) -> list[VectorRecord]:
        """Extract embedded chunks from any supported vector source.

        Supported: None, a VectorSource, VectorData, an object or mapping
        exposing ``memory_vectors`` (or ``memoryVectors``), or a plain
        sequence of records.
        """
        if source is None:
            return []
        if isinstance(source, VectorData):
            return source.records()
        if isinstance(source, VectorSource):
            items = source.list_chunks()
        elif isinstance(source, Mapping):
            if "embeddings" in source and "documents" in source:
                return cls._validate_vector_data(VECTORS_ARTIFACT, dict(source), SerializationError).records()
            items = source.get("memory_vectors", source.get("memoryVectors")) or []
        elif hasattr(source, "memory_vectors"):
            items = source.memory_vectors or []
        elif hasattr(source, "memoryVectors"):
            items = source.memoryVectors or []
        elif isinstance(source, (list, tuple)):
            items = source
        else:
            raise SerializationError(VECTORS_ARTIFACT, f"unsupported vector source {type(source).__name__}")

        records = []
        for i, item in enumerate(items):
            if isinstance(item, VectorRecord):
                records.append(item)
                continue
            if not isinstance(item, Mapping):
                raise SerializationError(VECTORS_ARTIFACT, f"vector {i} is not a mapping")
            content = item.get("content", item.get("pageContent", ""))
            try:
                records.append(VectorRecord(
                    content=content,
                    embedding=item.get("embedding") or [],
                    metadata=item.get("metadata") or {},
                ))
            except PydanticValidationError as e:
                raise SerializationError(VECTORS_ARTIFACT, f"vector {i}: {e}") from e
        return records

    @classmethod
    def serialize_vector_store(cls, source: Any, model: Optional[str] = None) -> VectorData:
        """Flatten a vector source into parallel lists. Pure, no I/O.

        Args:
            source: Vector source (may be None)
            model: Embedding model name to record

        Returns:
            VectorData; dimensions is the first embedding's length, or 0.
            Records without an embedding are left out.
        """
        records = [r for r in cls.vector_records(source) if r.embedding]
        embeddings = [list(r.embedding) for r in records]

        dimensions = len(embeddings[0]) if embeddings else 0
        for i, embedding in enumerate(embeddings):
            if len(embedding) != dimensions:
                raise SerializationError(
                    VECTORS_ARTIFACT,
                    f"embedding {i} has {len(embedding)} dimensions, expected {dimensions}",
                )
            if not all(math.isfinite(x) for x in embedding):
                raise SerializationError(VECTORS_ARTIFACT, f"embedding {i} contains non-finite values")

        return VectorData(
            embeddings=embeddings,
            documents=[r.content for r in records],
            metadatas=[dict(r.metadata) for r in records],
            config=VectorConfig(model=model, dimensions=dimensions),
        )

    @classmethod
    def serialize_metadata(cls, metadata: IndexMetadata) -> bytes:
        return cls.encode(METADATA_ARTIFACT, metadata.to_payload())

    @classmethod
    def serialize_documents(cls, documents: list[IndexedDocument]) -> bytes:
        return cls.encode(DOCUMENTS_ARTIFACT, {"documents": [d.to_payload() for d in documents]})

    @classmethod
    def serialize_vectors(cls, vector_data: VectorData) -> bytes:
        return cls.encode(VECTORS_ARTIFACT, vector_data.to_payload())

    @classmethod
    def serialize_config(cls, config: ProcessingConfig, dimensions: int) -> bytes:
        return cls.encode(CONFIG_ARTIFACT, {**config.to_payload(), "dimensions": dimensions})

    # Reading

    @classmethod
    def deserialize_metadata(cls, data: bytes) -> IndexMetadata:
        payload = cls.decode(METADATA_ARTIFACT, data)
        try:
            return IndexMetadata.model_validate(payload)
        except PydanticValidationError as e:
            raise IndexCorruptedError(METADATA_ARTIFACT, str(e)) from e

    @classmethod
    def deserialize_documents(cls, data: bytes) -> list[IndexedDocument]:
        payload = cls.decode(DOCUMENTS_ARTIFACT, data)
        documents = payload.get("documents")
        if not isinstance(documents, list):
            raise IndexCorruptedError(DOCUMENTS_ARTIFACT, "missing 'documents' list")
        try:
            return [IndexedDocument.model_validate(d) for d in documents]
        except PydanticValidationError as e:
            raise IndexCorruptedError(DOCUMENTS_ARTIFACT, str(e)) from e

    @classmethod
    def deserialize_vectors(cls, data: bytes) -> VectorData:
        payload = cls.decode(VECTORS_ARTIFACT, data)
        return cls._validate_vector_data(VECTORS_ARTIFACT, payload, IndexCorruptedError)

    @staticmethod
    def _validate_vector_data(artifact: str, payload: dict[str, Any], error: type[IndexCorruptedError]) -> VectorData:
        for key in ("embeddings", "documents", "metadatas"):
            if not isinstance(payload.get(key), list):
                raise error(artifact, f"missing '{key}' list")
        try:
            return VectorData.model_validate(payload)
        except PydanticValidationError as e:
            raise error(artifact, str(e)) from e


def serialize_vector_store(source: Any, model: Optional[str] = None) -> VectorData:
    """Convenience function to flatten a vector source.

    Args:
        source: Vector source (may be None)
        model: Embedding model name

    Returns:
        VectorData
    """
    return IndexSerializer.serialize_vector_store(source, model=model)
