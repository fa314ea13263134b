"""
Ingestion pipeline for USDA FoodData Central.

This package contains every component of the checkpointed
Fetch-Transform-Load pipeline:

Modules:
    runner: Orchestrator that walks data types and pages, buffers records
        and persists progress after every step
    checkpoint: File and database checkpoint stores
    rate_limiter: Fixed-interval pacing shared by all provider requests
    progress: Throughput and ETA reporting derived from a checkpoint
    scheduler: APScheduler supervisor that resumes the run after halts
    cli: Operator verbs (run, resume, status, monitor, reset, supervise)

Subpackages:
    extractors: FDC fetcher with retry, throttling and pagination
    transformers: Pure SourceRecord -> NormalizedIngredient mapping and
        the nutrient/category tables it reads
    loaders: Idempotent batch upserts keyed by fdc_id

Architecture:
    1. Fetch - one page of one data type, paced by the rate limiter
    2. Transform - total and deterministic; a defect is logged per record
    3. Load - batches flushed when full and at the end of each data type

    The checkpoint is saved after every flush, every page and every N
    processed records, so a halted run resumes exactly where it stopped.

Usage:
    from core.config import settings
    from ingestion.runner import IngestionRunner

    runner = IngestionRunner.from_settings(settings)
    try:
        result = await runner.run()
    finally:
        await runner.aclose()

    print(f"Processed {result['processed_items']} of {result['total_items']}")

Error Handling:
    Run-level failures (auth, throttling beyond the ceiling, repeated page
    failures, checkpoint I/O) mark the checkpoint FAILED and propagate.
    Page and record failures are written to the checkpoint error log and
    the run continues. See core.exceptions for the hierarchy.
"""

__all__ = [
    "IngestionRunner",
    "IngestionScheduler",
    "FDCFetcher",
    "IngredientTransformer",
    "IngredientLoader",
    "FileCheckpointStore",
    "DatabaseCheckpointStore",
]
