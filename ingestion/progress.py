"""
Progress reporting: throughput and ETA derived from a checkpoint.

Read-only: nothing here writes the checkpoint or touches the network.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional

from schemas.api import ProgressReport
from schemas.checkpoint import IngestionCheckpoint

RECENT_ERRORS = 5


def estimate_completion(
    checkpoint: IngestionCheckpoint,
    now: datetime,
    session_started_at: Optional[datetime] = None,
    session_start_processed: int = 0,
) -> Optional[datetime]:
    """
    Projected completion time, or None when it cannot be trusted.

    The rate comes from the current session when it has processed anything,
    otherwise from the checkpoint's start time. Only a finite, non-negative
    projection is published.
    """
    processed = checkpoint.processed_items
    if processed <= 0:
        return None

    session_processed = processed - session_start_processed
    if session_started_at is not None and session_processed > 0:
        elapsed = (now - session_started_at).total_seconds()
        items = session_processed
    else:
        elapsed = (now - checkpoint.start_time).total_seconds()
        items = processed

    if elapsed <= 0:
        return None

    remaining_items = max(0, checkpoint.total_items - processed)
    remaining_seconds = remaining_items * (elapsed / items)
    if not math.isfinite(remaining_seconds) or remaining_seconds < 0:
        return None

    try:
        return now + timedelta(seconds=remaining_seconds)
    except OverflowError:
        return None


def build_report(checkpoint: IngestionCheckpoint, now: datetime) -> ProgressReport:
    end = checkpoint.completed_at or now
    elapsed_hours = max(0.0, (end - checkpoint.start_time).total_seconds() / 3600)

    items_per_hour = None
    if elapsed_hours > 0 and checkpoint.processed_items > 0:
        items_per_hour = round(checkpoint.processed_items / elapsed_hours, 1)

    hours_remaining = None
    if checkpoint.estimated_completion is not None and checkpoint.completed_at is None:
        hours_remaining = round(
            max(0.0, (checkpoint.estimated_completion - now).total_seconds() / 3600), 2
        )

    return ProgressReport(
        status=checkpoint.status.value,
        processed_items=checkpoint.processed_items,
        total_items=checkpoint.total_items,
        percent_complete=round(checkpoint.percent_complete, 2),
        successful_inserts=checkpoint.successful_inserts,
        skipped_duplicates=checkpoint.skipped_duplicates,
        error_count=len(checkpoint.errors),
        recent_errors=checkpoint.errors[-RECENT_ERRORS:],
        current_data_type=checkpoint.current_data_type,
        current_page=checkpoint.current_page,
        buffered_items=len(checkpoint.batch_buffer),
        start_time=checkpoint.start_time,
        last_update_time=checkpoint.last_update_time,
        elapsed_hours=round(elapsed_hours, 2),
        items_per_hour=items_per_hour,
        estimated_completion=checkpoint.estimated_completion,
        hours_remaining=hours_remaining,
        completed_at=checkpoint.completed_at,
    )


def format_report(report: ProgressReport) -> str:
    """Plain-text rendering for the CLI"""
    lines: List[str] = [
        "USDA FoodData Central ingestion",
        "=" * 40,
        f"Status:          {report.status}",
        f"Progress:        {report.processed_items:,}/{report.total_items:,} "
        f"({report.percent_complete:.2f}%)",
        f"Inserted:        {report.successful_inserts:,}",
        f"Duplicates:      {report.skipped_duplicates:,}",
        f"Errors:          {report.error_count}",
        f"Position:        {report.current_data_type or '-'} page {report.current_page}",
        f"Elapsed:         {report.elapsed_hours:.1f} h",
    ]
    if report.items_per_hour is not None:
        lines.append(f"Rate:            {report.items_per_hour:,.0f} items/hour")
    if report.completed_at is not None:
        lines.append(f"Completed:       {report.completed_at.isoformat()}")
    elif report.estimated_completion is not None:
        lines.append(
            f"ETA:             {report.estimated_completion.isoformat()} "
            f"({report.hours_remaining:.1f} h remaining)"
        )
    else:
        lines.append("ETA:             unknown")
    if report.recent_errors:
        lines.append("Recent errors:")
        lines.extend(f"  - {error}" for error in report.recent_errors)
    return "\n".join(lines)


async def load_report(store, now: datetime) -> Optional[ProgressReport]:
    """Report for the persisted checkpoint of `store`, or None if there is none"""
    checkpoint = await store.load()
    if checkpoint is None:
        return None
    return build_report(checkpoint, now)
