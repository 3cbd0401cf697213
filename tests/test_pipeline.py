"""Tests for the fetch/chunk/embed pipeline."""

import io

import httpx
import pytest

from companyrag.index import PipelineError, ProcessingConfig
from companyrag.pipeline import DocumentPipeline, SourceFetcher, extract_pdf_text
from companyrag.rag import FakeEmbedding, RecursiveChunker

REPORT = (
    "Apple reported revenue of 94 billion dollars for the quarter. "
    "Services revenue reached an all-time high. "
    "The board declared a dividend of 0.24 dollars per share."
)


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/report.txt":
        return httpx.Response(200, text=REPORT, headers={"content-type": "text/plain; charset=utf-8"})
    if request.url.path == "/page.html":
        return httpx.Response(200, text="<p>Investor relations</p>", headers={"content-type": "text/html"})
    if request.url.path == "/logo.png":
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
    return httpx.Response(404)


@pytest.fixture
def client():
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def fetcher(client):
    return SourceFetcher(client=client)


class TestSourceFetcher:
    """Tests for loading sources."""

    def test_is_valid_url(self):
        """Test URL detection."""
        assert SourceFetcher.is_valid_url("https://example.com/a.pdf")
        assert not SourceFetcher.is_valid_url("ftp://example.com/a.pdf")
        assert not SourceFetcher.is_valid_url("reports/a.pdf")

    @pytest.mark.asyncio
    async def test_fetch_text(self, fetcher):
        """Test a plain text URL."""
        fetched = await fetcher.fetch("http://test/report.txt")

        assert fetched.content == REPORT
        assert fetched.is_url is True
        assert fetched.content_type.startswith("text/plain")

    @pytest.mark.asyncio
    async def test_fetch_html(self, fetcher):
        """Test that HTML is kept as text."""
        fetched = await fetcher.fetch("http://test/page.html")

        assert "Investor relations" in fetched.content

    @pytest.mark.asyncio
    async def test_unsupported_content_type(self, fetcher):
        """Test that images are rejected."""
        with pytest.raises(PipelineError):
            await fetcher.fetch("http://test/logo.png")

    @pytest.mark.asyncio
    async def test_http_error(self, fetcher):
        """Test that HTTP failures surface as httpx errors."""
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher.fetch("http://test/missing.pdf")

    @pytest.mark.asyncio
    async def test_local_files(self, fetcher, tmp_path):
        """Test reading local text files."""
        notes = tmp_path / "notes.md"
        notes.write_text("# Notes\n\nMargins improved.")

        fetched = await fetcher.fetch(str(notes))

        assert fetched.is_url is False
        assert fetched.name == "notes.md"
        assert "Margins improved." in fetched.content

    @pytest.mark.asyncio
    async def test_invalid_sources(self, fetcher, tmp_path):
        """Test blank, missing and unsupported sources."""
        data = tmp_path / "data.csv"
        data.write_text("a,b")

        for source in ("", "   ", str(tmp_path / "missing.txt"), str(data)):
            with pytest.raises(PipelineError):
                await fetcher.fetch(source)


class TestPdfText:
    """Tests for PDF extraction."""

    def test_blank_pdf(self):
        """Test a PDF with no text."""
        from pypdf import PdfWriter

        writer = PdfWriter()
        writer.add_blank_page(width=72, height=72)
        buffer = io.BytesIO()
        writer.write(buffer)

        assert extract_pdf_text(buffer.getvalue()).strip() == ""

    def test_unreadable_pdf(self):
        """Test bytes that are not a PDF."""
        with pytest.raises(PipelineError):
            extract_pdf_text(b"")


class TestDocumentPipeline:
    """Tests for the default pipeline."""

    @pytest.mark.asyncio
    async def test_run(self, fetcher):
        """Test that good sources are indexed and bad ones skipped."""
        pipeline = DocumentPipeline(
            FakeEmbedding(dimension=8),
            chunker=RecursiveChunker(chunk_size=80, overlap=10),
            fetcher=fetcher,
        )

        result = await pipeline.run(
            ["http://test/report.txt", "http://test/logo.png", "http://test/missing.pdf", "nowhere"],
            "AAPL",
            company_info={"name": "Apple Inc.", "nseCode": "AAPL", "bseCode": "000001", "ignored": True},
        )

        assert result.processed_sources == ["http://test/report.txt"]
        assert result.failed_sources == ["http://test/logo.png", "http://test/missing.pdf", "nowhere"]
        assert len(result.documents) == 1

        document = result.documents[0]
        assert document.url == "http://test/report.txt"
        assert document.content == REPORT
        assert len(document.chunks) > 1

        records = result.vector_source.list_chunks()
        assert len(records) == len(document.chunks)
        assert all(len(r.embedding) == 8 for r in records)
        metadata = records[0].metadata
        assert metadata["source"] == "http://test/report.txt"
        assert metadata["document_id"] == document.id
        assert metadata["chunk_index"] == 0
        assert metadata["company"] == {
            "companyCode": "AAPL",
            "name": "Apple Inc.",
            "nseCode": "AAPL",
            "bseCode": "000001",
            "link": "http://test/report.txt",
        }

    @pytest.mark.asyncio
    async def test_local_source(self, tmp_path):
        """Test indexing a local file."""
        path = tmp_path / "annual.txt"
        path.write_text(REPORT)
        pipeline = DocumentPipeline(FakeEmbedding(dimension=8))

        result = await pipeline.run([str(path)], "AAPL")

        assert result.processed_sources == [str(path)]
        assert result.documents[0].path == str(path)
        assert result.documents[0].url is None

    @pytest.mark.asyncio
    async def test_all_sources_fail(self, fetcher):
        """Test that failures yield an empty result rather than an error."""
        pipeline = DocumentPipeline(FakeEmbedding(dimension=8), fetcher=fetcher)

        result = await pipeline.run(["http://test/logo.png"], "AAPL")

        assert result.documents == []
        assert result.failed_sources == ["http://test/logo.png"]

    def test_processing_config_defaults(self):
        """Test that the chunker follows the processing config."""
        pipeline = DocumentPipeline(
            FakeEmbedding(dimension=8), processing_config=ProcessingConfig(chunk_size=300, chunk_overlap=30)
        )

        assert pipeline.chunker.chunk_size == 300
        assert pipeline.chunker.overlap == 30
        assert DocumentPipeline(FakeEmbedding(dimension=8)).processing_config.embedding_model == "fake-8"
