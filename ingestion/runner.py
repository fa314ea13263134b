# ============================================================================
# File: ingestion/runner.py
# Description: Checkpointed fetch-transform-load orchestrator
# ============================================================================
"""
Ingestion Runner - drives Fetch → Transform → Load over every data type.

This module provides resumable orchestration with:
- Exact resume from (data type, page, offset within the page)
- Page-level failure absorption (logged to the checkpoint, page skipped)
- Run-level halts (auth, throttling ceiling, checkpoint I/O) that always
  persist progress before propagating
- Cooperative cancellation: a stop request interrupts any pending
  provider wait and the run drains at the current page boundary
"""

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings
from core.exceptions import (
    CheckpointError,
    ETLException,
    TransformError,
    TransientNetworkError,
)
from ingestion.checkpoint import CheckpointStore, build_checkpoint_store
from ingestion.extractors.fdc_fetcher import FDCFetcher
from ingestion.loaders.ingredient_loader import IngredientLoader
from ingestion.progress import estimate_completion, load_report
from ingestion.rate_limiter import Sleep
from ingestion.transformers.ingredient_transformer import IngredientTransformer
from ingestion.transformers.tables import get_nutrient_table
from models.base import RunStatus
from schemas.api import ProgressReport
from schemas.checkpoint import IngestionCheckpoint
from schemas.fdc import SourceRecord

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    TRANSFORMING = "transforming"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    CHECKPOINTING = "checkpointing"
    DRAINING = "draining"
    DONE = "done"
    FAULTED = "faulted"


class IngestionRunner:
    """
    Checkpointed ingestion orchestrator

    Responsibilities:
    - Walk data types in order and pages in ascending order within each
    - Transform every record and buffer it for the loader
    - Flush full batches, and the remainder at the end of each data type
    - Persist the checkpoint after every flush, every page and every
      `save_every` processed items
    - Never hold the checkpoint in an inconsistent state across a save

    Collaborators are injected so the loop runs unchanged against fakes.
    """

    def __init__(
        self,
        fetcher: FDCFetcher,
        transformer: IngredientTransformer,
        loader: IngredientLoader,
        store: CheckpointStore,
        data_types: List[str],
        page_size: int,
        batch_size: int = 50,
        save_every: int = 100,
        error_log_limit: int = 500,
        max_consecutive_page_failures: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.fetcher = fetcher
        self.transformer = transformer
        self.loader = loader
        self.store = store
        self.data_types = list(data_types)
        self.page_size = page_size
        self.batch_size = batch_size
        self.save_every = save_every
        self.error_log_limit = error_log_limit
        self.max_consecutive_page_failures = max_consecutive_page_failures
        self.clock = clock

        self.checkpoint: Optional[IngestionCheckpoint] = None
        self._state = RunState.IDLE
        self._stop_event = asyncio.Event()
        self._consecutive_page_failures = 0
        self._session_started_at: Optional[datetime] = None
        self._session_start_processed = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_maker: Optional[async_sessionmaker] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "IngestionRunner":
        if session_maker is None:
            from core.database import async_session_maker
            session_maker = async_session_maker

        nutrient_table = get_nutrient_table(settings.NUTRIENT_CODE_TABLE)
        return cls(
            fetcher=FDCFetcher.from_settings(settings, nutrient_table=nutrient_table, sleep=sleep),
            transformer=IngredientTransformer(nutrient_table),
            loader=IngredientLoader(session_maker),
            store=build_checkpoint_store(settings, session_maker),
            data_types=settings.FDC_DATA_TYPES,
            page_size=settings.effective_page_size,
            batch_size=settings.BATCH_SIZE,
            save_every=settings.SAVE_PROGRESS_EVERY,
            error_log_limit=settings.ERROR_LOG_LIMIT,
            max_consecutive_page_failures=settings.MAX_CONSECUTIVE_PAGE_FAILURES,
        )

    @property
    def state(self) -> RunState:
        return self._state

    def request_stop(self) -> None:
        """Ask the run to stop; a pending page fetch is abandoned"""
        if not self._stop_event.is_set():
            logger.info("Stop requested; draining at the current page boundary")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def aclose(self) -> None:
        await self.fetcher.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def run(self) -> Dict[str, Any]:
        """
        Start ingesting. An existing checkpoint is resumed rather than
        overwritten, so a repeated `run` never double-counts.
        """
        checkpoint = await self.store.load()
        if checkpoint is not None:
            logger.info("Existing checkpoint found; resuming instead of starting over")
        else:
            checkpoint = await self._initialize()
        return await self._execute(checkpoint)

    async def resume(self) -> Dict[str, Any]:
        checkpoint = await self.store.load()
        if checkpoint is None:
            logger.warning("No checkpoint to resume; starting a fresh run")
            checkpoint = await self._initialize()
        return await self._execute(checkpoint)

    async def status(self) -> Optional[ProgressReport]:
        """Pure read of the persisted checkpoint"""
        return await load_report(self.store, self.clock())

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _initialize(self) -> IngestionCheckpoint:
        logger.info(f"Counting foods in {len(self.data_types)} data types")
        total = 0
        for data_type in self.data_types:
            total += await self.fetcher.count_items(data_type)

        checkpoint = IngestionCheckpoint.new(
            data_types=self.data_types,
            total_items=total,
            page_size=self.page_size,
            now=self.clock(),
        )
        await self.store.save(checkpoint)
        logger.info(f"Initialized checkpoint: {total} foods expected")
        return checkpoint

    async def _execute(self, checkpoint: IngestionCheckpoint) -> Dict[str, Any]:
        self.checkpoint = checkpoint
        self._consecutive_page_failures = 0
        self._session_started_at = self.clock()
        self._session_start_processed = checkpoint.processed_items

        if self.fetcher.page_size != checkpoint.page_size:
            logger.warning(
                f"Checkpoint was taken with page size {checkpoint.page_size}; "
                f"using it instead of {self.fetcher.page_size} to keep page numbers aligned"
            )
            self.fetcher.page_size = checkpoint.page_size

        logger.info(
            f"Ingestion starting at {checkpoint.current_data_type or 'end'} page "
            f"{checkpoint.current_page} (offset {checkpoint.page_offset}), "
            f"{checkpoint.processed_items}/{checkpoint.total_items} processed"
        )

        try:
            checkpoint.mark(RunStatus.RUNNING, self.clock())
            await self._save()

            # Records buffered before an interruption go out first
            if checkpoint.batch_buffer:
                await self._flush()
                await self._save()

            while not checkpoint.is_exhausted and not self.stop_requested:
                await self._process_page(checkpoint.current_data_type, checkpoint.current_page)

            self._state = RunState.DRAINING
            await self._flush()
            if checkpoint.is_exhausted:
                checkpoint.mark(RunStatus.SUCCESS, self.clock())
            else:
                checkpoint.mark(RunStatus.CANCELLED, self.clock())
            await self._save()

        except ETLException as e:
            await self._halt(e)
            raise

        except Exception as e:
            logger.exception("Unexpected error in ingestion run")
            error = ETLException(
                "Unexpected error in ingestion run",
                context={
                    "data_type": checkpoint.current_data_type,
                    "page": checkpoint.current_page,
                    "processed_items": checkpoint.processed_items,
                },
                original_exception=e,
            )
            await self._halt(error)
            raise error from e

        self._state = RunState.DONE if checkpoint.status == RunStatus.SUCCESS else RunState.IDLE
        result = self._result()
        logger.info(
            f"Ingestion {result['status']}: processed {result['processed_items']}, "
            f"inserted {result['successful_inserts']}, duplicates {result['skipped_duplicates']}, "
            f"errors {result['errors']}"
        )
        return result

    async def _process_page(self, data_type: str, page: int) -> None:
        checkpoint = self.checkpoint
        self._state = RunState.LOADING
        try:
            records = await self._unless_stopped(self.fetcher.fetch(data_type, page))
        except TransientNetworkError as e:
            self._consecutive_page_failures += 1
            logger.error(
                f"Error processing {data_type} page {page}: {e.message}",
                extra={"error_context": e.to_dict()},
            )
            checkpoint.record_error(
                f"Error processing {data_type} page {page}: {e.message}",
                self.error_log_limit,
            )
            if self._consecutive_page_failures >= self.max_consecutive_page_failures:
                raise TransientNetworkError(
                    f"{self._consecutive_page_failures} consecutive pages failed; halting",
                    context={"data_type": data_type, "page": page},
                    original_exception=e,
                )
            checkpoint.advance_page()
            await self._save()
            return

        if records is None:
            logger.info(f"Fetch of {data_type} page {page} abandoned; it will be fetched again on resume")
            return

        self._consecutive_page_failures = 0

        if not records:
            logger.info(f"Completed data type {data_type} after {page - 1} pages")
            await self._flush()
            checkpoint.advance_data_type()
            await self._save()
            return

        if checkpoint.page_offset:
            logger.info(f"Skipping {checkpoint.page_offset} records of {data_type} page {page} already processed")
        for record in records[checkpoint.page_offset:]:
            await self._process_record(record)

        checkpoint.advance_page()
        await self._save()

    async def _unless_stopped(self, coro: Awaitable[List[SourceRecord]]) -> Optional[List[SourceRecord]]:
        """
        Await a fetch, racing it against the stop event.

        The fetch spends most of its time in rate-limit and throttling
        sleeps; a stop request cancels it there and None is returned. A
        fetch that already finished wins over a simultaneous stop.
        """
        fetch = asyncio.ensure_future(coro)
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({fetch, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not fetch.done():
                fetch.cancel()
        if not fetch.done():
            await asyncio.gather(fetch, return_exceptions=True)
            return None
        return fetch.result()

    async def _process_record(self, record: SourceRecord) -> None:
        checkpoint = self.checkpoint
        self._state = RunState.TRANSFORMING
        try:
            item = self.transformer.transform(record)
        except Exception as e:
            error = TransformError(
                "Transformer raised on a source record",
                context={"fdc_id": record.fdc_id},
                original_exception=e,
            )
            logger.error(str(error), extra={"error_context": error.to_dict()})
            checkpoint.record_error(
                f"Failed to transform food {record.fdc_id}: {type(e).__name__}: {e}",
                self.error_log_limit,
            )
            item = None

        self._state = RunState.BUFFERING
        checkpoint.record_processed(item)

        if len(checkpoint.batch_buffer) >= self.batch_size:
            await self._flush()
            await self._save()
        elif self.save_every > 0 and checkpoint.processed_items % self.save_every == 0:
            await self._save()

    async def _flush(self) -> None:
        checkpoint = self.checkpoint
        batch = checkpoint.take_buffer()
        if not batch:
            return

        self._state = RunState.FLUSHING
        result = await self.loader.upsert(batch)
        checkpoint.record_load(result.written, result.duplicates)
        if result.error:
            logger.warning(f"Batch of {len(batch)} partially loaded: {result.error}")
            checkpoint.record_error(f"Batch load: {result.error}", self.error_log_limit)
        else:
            logger.info(f"Flushed batch of {len(batch)}: {result.written} written")

    async def _save(self) -> None:
        checkpoint = self.checkpoint
        self._state = RunState.CHECKPOINTING
        now = self.clock()
        checkpoint.touch(
            now,
            estimate_completion(
                checkpoint,
                now,
                session_started_at=self._session_started_at,
                session_start_processed=self._session_start_processed,
            ),
        )
        await self.store.save(checkpoint)

    async def _halt(self, error: ETLException) -> None:
        """
        Persist the checkpoint as FAILED before a run-level error propagates.

        Position, counters and buffer are saved as they stood after the last
        completed step; a later resume continues from there.
        """
        self._state = RunState.FAULTED
        checkpoint = self.checkpoint
        logger.error(f"Run halted: {error}", extra={"error_context": error.to_dict()})

        now = self.clock()
        checkpoint.mark(RunStatus.FAILED, now)
        checkpoint.record_error(f"Run halted: {error.message}", self.error_log_limit)
        checkpoint.touch(now, checkpoint.estimated_completion)
        try:
            await self.store.save(checkpoint)
        except CheckpointError as save_error:
            logger.error(f"Could not persist checkpoint after halt: {save_error}")

    def _result(self) -> Dict[str, Any]:
        checkpoint = self.checkpoint
        return {
            "status": checkpoint.status.value,
            "processed_items": checkpoint.processed_items,
            "total_items": checkpoint.total_items,
            "successful_inserts": checkpoint.successful_inserts,
            "skipped_duplicates": checkpoint.skipped_duplicates,
            "errors": len(checkpoint.errors),
            "current_data_type": checkpoint.current_data_type,
            "current_page": checkpoint.current_page,
        }
