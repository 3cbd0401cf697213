"""
Test configuration and fixtures.
"""

import pytest

from companyrag.index import IndexManager, LocalFileStorage, MemoryStorage, ProcessingConfig
from companyrag.rag import FakeEmbedding


@pytest.fixture
def storage_dir(tmp_path):
    """Isolated storage root for one test."""
    return tmp_path / "indexes"


@pytest.fixture
def manager(storage_dir):
    """Index manager over a temporary directory."""
    return IndexManager(str(storage_dir))


@pytest.fixture
def memory_manager():
    """Index manager over in-memory storage."""
    return IndexManager(storage=MemoryStorage(), processing_config=ProcessingConfig(embedding_model="fake-8"))


@pytest.fixture
def embedding():
    return FakeEmbedding(dimension=8)


@pytest.fixture
def sample_documents():
    """Two processed documents with one chunk each."""
    return [
        {"id": "1", "name": "doc1.pdf", "url": "http://example.com/doc1.pdf", "content": "content1"},
        {"id": "2", "name": "doc2.pdf", "url": "http://example.com/doc2.pdf", "content": "content2"},
    ]


@pytest.fixture
def sample_vectors():
    """Vector source exposing two embedded chunks through memoryVectors."""
    return {
        "memoryVectors": [
            {"content": "chunk1", "embedding": [0.1, 0.2, 0.3], "metadata": {"source": "doc1"}},
            {"content": "chunk2", "embedding": [0.4, 0.5, 0.6], "metadata": {"source": "doc2"}},
        ]
    }


@pytest.fixture
def write_artifacts(manager, storage_dir):
    """Write raw artifact files for a company, bypassing the manager."""
    def write(code, **artifacts):
        company_dir = storage_dir / code
        company_dir.mkdir(parents=True, exist_ok=True)
        for name, content in artifacts.items():
            (company_dir / f"{name}.json").write_text(content)
        return company_dir
    return write
