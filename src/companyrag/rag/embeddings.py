"""Embedding model implementations."""

import asyncio
import hashlib
import logging
import math
import struct
from typing import Any, Optional

from companyrag.index.exceptions import PipelineError

from .base import BaseEmbedding

logger = logging.getLogger(__name__)


class FakeEmbedding(BaseEmbedding):
    """Deterministic embeddings derived from a hash of the text.

    Same text, same vector; no model or network needed. Used in tests and
    offline demos.
    """

    def __init__(self, dimension: int = 64, seed: int = 42):
        self._dimension = dimension
        self.seed = seed

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return f"fake-{self._dimension}"

    def _hash_text(self, text: str) -> list[float]:
        values = []
        counter = 0
        while len(values) < self._dimension:
            digest = hashlib.sha256(f"{self.seed}:{counter}:{text}".encode()).digest()
            for (word,) in struct.iter_unpack(">I", digest):
                values.append(word / 0xFFFFFFFF * 2.0 - 1.0)
            counter += 1
        values = values[:self._dimension]
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._hash_text(text)


class OpenAIEmbedding(BaseEmbedding):
    """Embeddings from the OpenAI API (or any server speaking its protocol).

    Chunk text is cleaned before it is sent: runs of whitespace collapse to
    one space and an empty chunk becomes a single space, since the API
    rejects empty inputs. Responses are reordered by their ``index`` so
    vectors always line up with the texts that produced them.
    """

    DEFAULT_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: int = 100,
        dimensions: Optional[int] = None,
    ):
        """
        Args:
            model: Embedding model name
            api_key: API key (falls back to OPENAI_API_KEY)
            base_url: Alternative endpoint for compatible servers
            batch_size: Texts per request
            dimensions: Shortened output size, for models that support it
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.batch_size = batch_size
        self.dimensions = dimensions
        self._client = None

    @property
    def dimension(self) -> int:
        return self.dimensions or self.DEFAULT_DIMENSIONS.get(self.model, 1536)

    @property
    def model_name(self) -> str:
        return self.model

    def _get_client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError("OpenAI embedding requires 'openai'. pip install openai")
            kwargs = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _clean(text: str) -> str:
        return " ".join(text.split()) or " "

    async def _request(self, batch: list[str]) -> list[list[float]]:
        kwargs: dict[str, Any] = {"model": self.model, "input": [self._clean(t) for t in batch]}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await self._get_client().embeddings.create(**kwargs)

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(batch):
            raise PipelineError(
                f"{self.model} returned {len(items)} embeddings for {len(batch)} texts"
            )
        return [list(item.embedding) for item in items]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            vectors.extend(await self._request(texts[start:start + self.batch_size]))
        logger.debug(f"Embedded {len(texts)} chunks with {self.model}")
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        return (await self._request([text]))[0]


class LocalEmbedding(BaseEmbedding):
    """Embeddings computed in-process with sentence-transformers.

    Loading and encoding both block, so they run in the default executor.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
        batch_size: int = 32,
        query_prefix: str = "",
    ):
        self._model_name = model_name
        self.device = device
        self.normalize = normalize
        self.batch_size = batch_size
        # Instruction-tuned models (e5, bge) expect e.g. "query: " before questions.
        self.query_prefix = query_prefix
        self._model = None

    @property
    def dimension(self) -> int:
        return self._load_model().get_sentence_embedding_dimension()

    @property
    def model_name(self) -> str:
        return self._model_name

    def _load_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError("Local embedding requires 'sentence-transformers'. pip install sentence-transformers")
            logger.info(f"Loading sentence-transformers model {self._model_name}")
            self._model = SentenceTransformer(self._model_name, device=self.device)
        return self._model

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._load_model().encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=self.normalize,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [[float(x) for x in row] for row in vectors]

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode_sync, texts)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self._encode(texts)

    async def embed_query(self, text: str) -> list[float]:
        return (await self._encode([self.query_prefix + text]))[0]
