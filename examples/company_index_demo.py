"""
Company index example: ingest local reports, ask questions, inspect storage.

Runs offline with deterministic embeddings and extractive answers. Set
embedding_provider/answer_provider to "openai" (and OPENAI_API_KEY) for real models.
"""

import asyncio
import tempfile
from pathlib import Path

from companyrag import create_service
from companyrag.utils import Settings, get_logger

logger = get_logger("companyrag.examples")

REPORTS = {
    "q3_results.txt": (
        "Revenue for the third quarter was 94 billion dollars, up five percent. "
        "Services revenue reached an all-time high."
    ),
    "dividend.txt": "The board declared a quarterly dividend of 0.24 dollars per share.",
}


async def main():
    workdir = Path(tempfile.mkdtemp())
    sources = []
    for name, text in REPORTS.items():
        path = workdir / name
        path.write_text(text)
        sources.append(str(path))

    settings = Settings(
        storage_dir=str(workdir / "indexes"),
        embedding_provider="fake",
        answer_provider="extractive",
    )
    service = create_service(settings)

    # First ingest builds the index, the second is served from storage
    result = await service.ingest(sources, "AAPL", company_info={"name": "Apple Inc.", "nseCode": "AAPL"})
    print(f"Ingested {result.processed_count} documents (from cache: {result.from_cache})")
    result = await service.ingest(sources, "AAPL")
    print(f"Ingested {result.processed_count} documents (from cache: {result.from_cache})")

    answer = await service.query("What dividend per share was declared?", "AAPL")
    print(f"Answer: {answer.answer_text}")
    for detail in answer.source_details:
        print(f"  {detail.source_ref} {detail.link}: {detail.content_preview}")

    verification = await service.manager.verify_company_index("AAPL")
    print(f"Index valid: {verification.valid}")

    stats = await service.get_storage_stats()
    print(f"{stats.total_companies} companies, {stats.total_chunks} chunks in {stats.storage_location}")

    await service.delete_company("AAPL")
    logger.info("Demo finished")


if __name__ == "__main__":
    asyncio.run(main())
