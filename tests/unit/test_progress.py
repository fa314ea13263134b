"""
Unit tests for throughput and ETA reporting
"""

from datetime import datetime, timedelta, timezone

import pytest

from ingestion.progress import build_report, estimate_completion, format_report, load_report
from models.base import RunStatus
from schemas.checkpoint import IngestionCheckpoint

START = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_checkpoint(processed=0, total=1000, **fields) -> IngestionCheckpoint:
    checkpoint = IngestionCheckpoint.new(["Foundation"], total, 50, START)
    checkpoint.processed_items = processed
    for name, value in fields.items():
        setattr(checkpoint, name, value)
    return checkpoint


class TestEstimateCompletion:

    def test_no_progress_no_estimate(self):
        assert estimate_completion(make_checkpoint(0), START + timedelta(hours=1)) is None

    def test_rate_from_start_time(self):
        checkpoint = make_checkpoint(processed=250)
        now = START + timedelta(hours=1)

        # 250 items/hour, 750 to go
        assert estimate_completion(checkpoint, now) == now + timedelta(hours=3)

    def test_rate_from_current_session(self):
        """A resumed session measures its own throughput"""
        checkpoint = make_checkpoint(processed=600)
        session_start = START + timedelta(days=2)
        now = session_start + timedelta(hours=1)

        eta = estimate_completion(
            checkpoint,
            now,
            session_started_at=session_start,
            session_start_processed=400,
        )

        # 200 items/hour this session, 400 to go
        assert eta == now + timedelta(hours=2)

    def test_session_without_progress_falls_back_to_start_time(self):
        checkpoint = make_checkpoint(processed=500)
        now = START + timedelta(hours=2)

        eta = estimate_completion(checkpoint, now, session_started_at=now, session_start_processed=500)

        assert eta == now + timedelta(hours=2)

    def test_zero_elapsed(self):
        assert estimate_completion(make_checkpoint(processed=10), START) is None

    def test_clock_behind_start(self):
        assert estimate_completion(make_checkpoint(processed=10), START - timedelta(minutes=5)) is None

    def test_total_underestimated(self):
        """Processed past the estimate: nothing left, finish is now"""
        now = START + timedelta(hours=1)
        assert estimate_completion(make_checkpoint(processed=1200), now) == now


class TestReport:

    def test_report_fields(self):
        checkpoint = make_checkpoint(
            processed=250,
            successful_inserts=240,
            skipped_duplicates=5,
            errors=[f"error {i}" for i in range(8)],
            status=RunStatus.RUNNING,
            estimated_completion=START + timedelta(hours=4),
        )

        report = build_report(checkpoint, START + timedelta(hours=1))

        assert report.status == "running"
        assert report.percent_complete == 25.0
        assert report.items_per_hour == 250.0
        assert report.elapsed_hours == 1.0
        assert report.hours_remaining == 3.0
        assert report.error_count == 8
        assert report.recent_errors == ["error 3", "error 4", "error 5", "error 6", "error 7"]
        assert report.current_data_type == "Foundation"

    def test_completed_run_freezes_elapsed(self):
        checkpoint = make_checkpoint(processed=1000)
        checkpoint.mark(RunStatus.SUCCESS, START + timedelta(hours=2))

        report = build_report(checkpoint, START + timedelta(days=30))

        assert report.elapsed_hours == 2.0
        assert report.items_per_hour == 500.0
        assert report.hours_remaining is None

    def test_format_running(self):
        checkpoint = make_checkpoint(
            processed=250,
            errors=["Error processing Foundation page 3: timeout"],
            estimated_completion=START + timedelta(hours=4),
        )

        text = format_report(build_report(checkpoint, START + timedelta(hours=1)))

        assert "Status:          pending" in text
        assert "Progress:        250/1,000 (25.00%)" in text
        assert "ETA:             2024-01-15T14:00:00+00:00 (3.0 h remaining)" in text
        assert "  - Error processing Foundation page 3: timeout" in text

    def test_format_unknown_eta(self):
        text = format_report(build_report(make_checkpoint(), START))
        assert "ETA:             unknown" in text
        assert "Recent errors" not in text

    def test_format_completed(self):
        checkpoint = make_checkpoint(processed=1000)
        checkpoint.mark(RunStatus.SUCCESS, START + timedelta(hours=2))

        text = format_report(build_report(checkpoint, START + timedelta(hours=3)))

        assert "Completed:       2024-01-15T12:00:00+00:00" in text
        assert "ETA" not in text

    @pytest.mark.asyncio
    async def test_load_report(self, memory_store):
        assert await load_report(memory_store, START) is None

        await memory_store.save(make_checkpoint(processed=10))
        report = await load_report(memory_store, START + timedelta(hours=1))

        assert report.processed_items == 10
        assert memory_store.saves == 1
