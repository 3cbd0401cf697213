"""Resolve a usable company index: load it if present, build it otherwise."""

import asyncio
import functools
import logging
from typing import Any, Mapping, Optional

from companyrag.index.exceptions import (
    IndexCorruptedError,
    IndexNotFoundError,
    PipelineError,
)
from companyrag.index.manager import IndexManager
from companyrag.index.models import CompanyIndex, IndexResolution
from companyrag.pipeline import COMPANY_FIELDS, BasePipeline

logger = logging.getLogger(__name__)


class IndexCoordinator:
    """Load-or-build state machine in front of an IndexManager.

    A present index is loaded. A missing one is built from the given sources.
    A corrupted one is deleted and rebuilt. The pipeline runs without holding
    any manager lock, and concurrent builds for the same company share one
    in-flight task.
    """

    def __init__(self, manager: IndexManager, pipeline: BasePipeline):
        self.manager = manager
        self.pipeline = pipeline
        self._builds: dict[str, asyncio.Task] = {}
        self._waiters: dict[asyncio.Task, int] = {}

    async def ensure_index(
        self,
        company_code: Any,
        sources: Optional[list[str]] = None,
        force_rebuild: bool = False,
        company_info: Optional[Mapping[str, Any]] = None,
    ) -> IndexResolution:
        """Return a loaded index for the company, building it when needed.

        Args:
            company_code: Company identifier
            sources: URLs or paths used if a build is required
            force_rebuild: Build even if a valid index exists; the old index
                stays in place until the new one is saved
            company_info: Company attributes stored with every chunk

        Raises:
            ValidationError: If the company code is invalid
            PipelineError: If a build was required and produced no documents
            StorageError: On storage failures
        """
        code = self.manager.normalize_company_code(company_code)

        if not force_rebuild and await self.manager.has_company_index(code):
            try:
                index = await self.manager.load_company_index(code)
                logger.info(f"Cache hit for {code}")
                return IndexResolution(index=index, origin="cache")
            except IndexNotFoundError:
                logger.info(f"Index for {code} vanished during load, rebuilding")
            except IndexCorruptedError as e:
                logger.warning(f"Discarding corrupted index for {code}: {e}")
                try:
                    await self.manager.delete_company_index(code)
                except IndexNotFoundError:
                    pass

        index = await self._build(code, sources or [], company_info)
        return IndexResolution(index=index, origin="build")

    async def _build(
        self,
        code: str,
        sources: list[str],
        company_info: Optional[Mapping[str, Any]],
    ) -> CompanyIndex:
        task = self._builds.get(code)
        if task is None:
            task = asyncio.ensure_future(self._run_build(code, sources, company_info))
            self._builds[code] = task
            task.add_done_callback(functools.partial(self._forget_build, code))
        else:
            logger.debug(f"Joining in-flight build for {code}")

        # Every caller waits through a shield; the build itself is cancelled
        # only when the last caller waiting on it goes away.
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]
                if not task.done():
                    logger.info(f"Cancelling build for {code}: no callers left")
                    task.cancel()

    def _forget_build(self, code: str, task: asyncio.Task) -> None:
        if self._builds.get(code) is task:
            del self._builds[code]
        if not task.cancelled():
            # Retrieve so a failure nobody awaited is not reported as unhandled.
            task.exception()

    async def _run_build(
        self,
        code: str,
        sources: list[str],
        company_info: Optional[Mapping[str, Any]],
    ) -> CompanyIndex:
        if not sources:
            raise PipelineError("No sources given to build the index from", company_code=code)

        logger.info(f"Building index for {code} from {len(sources)} sources")
        result = await self.pipeline.run(sources, code, company_info)
        if not result.documents:
            raise PipelineError("No valid documents were processed", company_code=code)

        extra: dict[str, Any] = {"processingConfig": self.pipeline.processing_config}
        if company_info:
            for key in COMPANY_FIELDS:
                if company_info.get(key) is not None:
                    extra[key] = company_info[key]
        if result.failed_sources:
            extra["failedSources"] = list(result.failed_sources)

        await self.manager.save_company_index(code, result.documents, result.vector_source, extra)
        return await self.manager.load_company_index(code)
