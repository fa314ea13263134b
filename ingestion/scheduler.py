import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from core.exceptions import ETLException, RetryableError, ThrottledError
from ingestion.runner import IngestionRunner

logger = logging.getLogger(__name__)

JOB_ID = "fdc_ingestion"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionScheduler:
    """
    Supervisor that keeps a multi-week ingestion going across halts.

    Each job resumes the run from its checkpoint. A retryable halt
    (throttling ceiling, consecutive page failures) schedules the next
    attempt: at the provider's retry hint when there is one, otherwise after
    `retry_interval` seconds. Success, cancellation or a non-retryable error
    ends supervision.
    """

    def __init__(
        self,
        runner_factory: Callable[[], IngestionRunner],
        retry_interval: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.runner_factory = runner_factory
        self.retry_interval = retry_interval
        self.clock = clock
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.finished = asyncio.Event()
        self.current_runner: Optional[IngestionRunner] = None
        self.last_result: Optional[Dict[str, Any]] = None
        self.last_error: Optional[ETLException] = None
        self.attempts = 0

    async def run_ingestion_job(self):
        """Job to resume the ingestion once"""
        self.attempts += 1
        logger.info(f"Scheduler: starting ingestion attempt {self.attempts}")
        runner = self.runner_factory()
        self.current_runner = runner
        try:
            self.last_result = await runner.resume()
        except RetryableError as e:
            self.last_error = e
            delay = self.retry_interval
            if isinstance(e, ThrottledError) and e.retry_after is not None:
                delay = e.retry_after
            run_at = self.clock() + timedelta(seconds=delay)
            logger.warning(f"Scheduler: ingestion halted ({e.message}); next attempt at {run_at.isoformat()}")
            self.schedule(run_at)
            return
        except ETLException as e:
            self.last_error = e
            logger.error(f"Scheduler: ingestion failed - {e}")
            self.finished.set()
            return
        finally:
            self.current_runner = None
            await runner.aclose()

        self.last_error = None
        logger.info(f"Scheduler: ingestion finished with status {self.last_result['status']}")
        self.finished.set()

    def schedule(self, run_at: Optional[datetime] = None):
        self.scheduler.add_job(
            self.run_ingestion_job,
            trigger=DateTrigger(run_date=run_at or self.clock()),
            id=JOB_ID,
            replace_existing=True,
        )

    def request_stop(self):
        """Stop the running attempt at a page boundary and end supervision"""
        if self.current_runner is not None:
            self.current_runner.request_stop()
        else:
            self.finished.set()

    def start(self):
        """Start the scheduler with an immediate first attempt"""
        self.schedule()
        self.scheduler.start()
        logger.info("Ingestion scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Ingestion scheduler stopped")

    async def serve(self) -> Dict[str, Any]:
        """Supervise until the ingestion ends; re-raises a final error"""
        self.start()
        try:
            await self.finished.wait()
        finally:
            self.stop()
        if self.last_error is not None:
            raise self.last_error
        return self.last_result or {}
