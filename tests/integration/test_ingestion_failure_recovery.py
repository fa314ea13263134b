"""
Failure recovery tests: halts, resumes, skipped pages and cancellation.

Every halt must leave a checkpoint from which a later resume continues
without losing or double-counting records.
"""

import asyncio

import pytest

from core.exceptions import (
    CheckpointError,
    ETLException,
    FatalAuthError,
    ThrottledError,
    TransientNetworkError,
)
from ingestion.rate_limiter import RateLimiter
from ingestion.runner import RunState
from models.base import RunStatus
from schemas.checkpoint import IngestionCheckpoint

PROGRESS_FIELDS = (
    "processed_items",
    "current_data_type",
    "current_data_type_index",
    "current_page",
    "page_offset",
    "successful_inserts",
    "skipped_duplicates",
    "batch_buffer",
)


def records(make_record, *ids):
    return [make_record(i) for i in ids]


def progress(checkpoint: IngestionCheckpoint):
    return {field: getattr(checkpoint, field) for field in PROGRESS_FIELDS}


class TestThrottlingHalt:

    @pytest.mark.asyncio
    async def test_halt_preserves_progress(self, make_runner, fake_fetcher_factory, memory_store, make_record):
        pages = {"Foundation": [records(make_record, 1, 2), records(make_record, 3, 4)]}
        fetcher = fake_fetcher_factory(
            pages,
            counts={"Foundation": 4},
            failures={("Foundation", 2): ThrottledError("Throttled beyond ceiling", retry_after=9000)},
        )
        runner = make_runner(fetcher)

        with pytest.raises(ThrottledError):
            await runner.run()

        before, halted = memory_store.snapshot(-2), memory_store.snapshot(-1)
        assert progress(halted) == progress(before)
        assert halted.status == RunStatus.FAILED
        assert halted.errors[-1] == "Run halted: Throttled beyond ceiling"
        assert halted.current_page == 2
        assert [item.fdc_id for item in halted.batch_buffer] == [1, 2]
        assert runner.state == RunState.FAULTED

    @pytest.mark.asyncio
    async def test_resume_after_halt(self, make_runner, fake_fetcher_factory, fake_loader, memory_store, make_record):
        pages = {"Foundation": [records(make_record, 1, 2), records(make_record, 3, 4)]}
        throttled = fake_fetcher_factory(
            pages,
            counts={"Foundation": 4},
            failures={("Foundation", 2): ThrottledError("Throttled beyond ceiling", retry_after=9000)},
        )
        with pytest.raises(ThrottledError):
            await make_runner(throttled).run()
        assert fake_loader.batches == []

        fetcher = fake_fetcher_factory(pages, counts={"Foundation": 4})
        flushed_before_fetch = []
        fetcher.on_fetch = lambda data_type, page: flushed_before_fetch.append(list(fake_loader.batches))

        result = await make_runner(fetcher).resume()

        # Same page again, after the carried buffer went out
        assert fetcher.calls[0] == ("Foundation", 2)
        assert flushed_before_fetch[0] == [[1, 2]]
        assert fetcher.count_calls == []

        assert result["status"] == "success"
        assert result["processed_items"] == 4
        assert result["successful_inserts"] == 4
        assert sorted(fake_loader.rows) == [1, 2, 3, 4]


class TestMidPageResume:

    @pytest.mark.asyncio
    async def test_records_already_processed_are_skipped(self, make_runner, fake_fetcher_factory, fake_loader, memory_store, make_record, clock):
        checkpoint = IngestionCheckpoint.new(["Foundation"], 3, 3, clock())
        checkpoint.processed_items = 2
        checkpoint.page_offset = 2
        checkpoint.successful_inserts = 2
        await memory_store.save(checkpoint)

        fetcher = fake_fetcher_factory({"Foundation": [records(make_record, 1, 2, 3)]}, page_size=3)
        runner = make_runner(fetcher, data_types=["Foundation"])

        result = await runner.resume()

        assert fake_loader.batches == [[3]]
        assert result["processed_items"] == 3
        assert result["successful_inserts"] == 3

    @pytest.mark.asyncio
    async def test_page_size_follows_checkpoint(self, make_runner, fake_fetcher_factory, memory_store, make_record, clock):
        await memory_store.save(IngestionCheckpoint.new(["Foundation"], 0, 3, clock()))
        fetcher = fake_fetcher_factory({}, page_size=50)

        await make_runner(fetcher, data_types=["Foundation"]).resume()

        assert fetcher.page_size == 3

    @pytest.mark.asyncio
    async def test_resume_without_checkpoint_starts_fresh(self, make_runner, fake_fetcher_factory, make_record):
        fetcher = fake_fetcher_factory({"Foundation": [records(make_record, 1)]}, counts={"Foundation": 1})

        result = await make_runner(fetcher, data_types=["Foundation"]).resume()

        assert fetcher.count_calls == ["Foundation"]
        assert result["processed_items"] == 1


class TestPageFailures:

    @pytest.mark.asyncio
    async def test_failed_page_logged_and_skipped(self, make_runner, fake_fetcher_factory, fake_loader, memory_store, make_record):
        fetcher = fake_fetcher_factory(
            {"Foundation": [records(make_record, 1, 2), records(make_record, 3, 4), records(make_record, 5)]},
            failures={("Foundation", 2): TransientNetworkError("Request failed after 3 attempts")},
        )
        runner = make_runner(fetcher, data_types=["Foundation"])

        result = await runner.run()

        assert result["status"] == "success"
        assert result["processed_items"] == 3
        assert sorted(fake_loader.rows) == [1, 2, 5]
        assert memory_store.snapshot().errors == [
            "Error processing Foundation page 2: Request failed after 3 attempts"
        ]

    @pytest.mark.asyncio
    async def test_consecutive_failures_halt_the_run(self, make_runner, fake_fetcher_factory, memory_store):
        failure = TransientNetworkError("Request failed after 3 attempts")
        fetcher = fake_fetcher_factory(
            {},
            failures={("Foundation", page): failure for page in (1, 2, 3)},
        )
        runner = make_runner(fetcher, data_types=["Foundation"], max_consecutive_page_failures=3)

        with pytest.raises(TransientNetworkError) as exc_info:
            await runner.run()

        assert "3 consecutive pages failed" in exc_info.value.message
        halted = memory_store.snapshot()
        assert halted.status == RunStatus.FAILED
        assert halted.current_page == 3
        assert len(halted.errors) == 4
        assert halted.errors[-1].startswith("Run halted: 3 consecutive pages failed")

    @pytest.mark.asyncio
    async def test_success_resets_failure_streak(self, make_runner, fake_fetcher_factory, make_record):
        failure = TransientNetworkError("Request failed after 3 attempts")
        fetcher = fake_fetcher_factory(
            {"Foundation": [[], records(make_record, 2), [], records(make_record, 4)]},
            failures={("Foundation", 1): failure, ("Foundation", 3): failure},
        )
        runner = make_runner(fetcher, data_types=["Foundation"], max_consecutive_page_failures=2)

        result = await runner.run()

        assert result["status"] == "success"
        assert result["processed_items"] == 2


class TestFatalHalts:

    @pytest.mark.asyncio
    async def test_auth_failure(self, make_runner, fake_fetcher_factory, memory_store):
        fetcher = fake_fetcher_factory({}, failures={("Foundation", 1): FatalAuthError("API key rejected")})
        runner = make_runner(fetcher)

        with pytest.raises(FatalAuthError):
            await runner.run()

        halted = memory_store.snapshot()
        assert halted.status == RunStatus.FAILED
        assert halted.processed_items == 0
        assert halted.errors == ["Run halted: API key rejected"]
        assert fetcher.calls == [("Foundation", 1)]

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure(self, make_runner, fake_fetcher_factory, memory_store, make_record):
        fetcher = fake_fetcher_factory({"Foundation": [records(make_record, 1, 2)]})

        def break_store(data_type, page):
            memory_store.fail_saves = True

        fetcher.on_fetch = break_store
        runner = make_runner(fetcher)

        with pytest.raises(CheckpointError):
            await runner.run()

        assert runner.state == RunState.FAULTED

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, make_runner, fake_fetcher_factory, memory_store):
        fetcher = fake_fetcher_factory({}, failures={("Foundation", 1): KeyError("fdcId")})
        runner = make_runner(fetcher)

        with pytest.raises(ETLException) as exc_info:
            await runner.run()

        assert isinstance(exc_info.value.original_exception, KeyError)
        assert memory_store.snapshot().status == RunStatus.FAILED


class TestCancellation:

    @pytest.mark.asyncio
    async def test_stop_honored_between_pages(self, make_runner, fake_fetcher_factory, fake_loader, memory_store, make_record):
        pages = {"Foundation": [records(make_record, 1, 2), records(make_record, 3, 4)]}
        fetcher = fake_fetcher_factory(pages)
        runner = make_runner(fetcher)
        fetcher.on_fetch = lambda data_type, page: runner.request_stop()

        result = await runner.run()

        assert result["status"] == "cancelled"
        assert fetcher.calls == [("Foundation", 1)]
        # Page 1 finished and its records were flushed on the way out
        assert sorted(fake_loader.rows) == [1, 2]
        cancelled = memory_store.snapshot()
        assert cancelled.status == RunStatus.CANCELLED
        assert cancelled.current_page == 2
        assert cancelled.batch_buffer == []

        resumed = await make_runner(fake_fetcher_factory(pages)).resume()

        assert resumed["status"] == "success"
        assert resumed["processed_items"] == 4
        assert sorted(fake_loader.rows) == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_stop_interrupts_rate_limit_wait(self, make_runner, fake_fetcher_factory, fake_loader, memory_store, make_record):
        pages = {"Foundation": [records(make_record, 1, 2), records(make_record, 3, 4)]}
        fetcher = fake_fetcher_factory(pages)
        limiter = RateLimiter(3600.0)
        waiting = asyncio.Event()
        fetch = fetcher.fetch

        async def paced_fetch(data_type, page):
            if page == 2:
                waiting.set()
                await limiter.acquire()
            return await fetch(data_type, page)

        fetcher.fetch = paced_fetch
        runner = make_runner(fetcher)

        task = asyncio.ensure_future(runner.run())
        await asyncio.wait_for(waiting.wait(), timeout=5)
        runner.request_stop()
        result = await asyncio.wait_for(task, timeout=5)

        assert result["status"] == "cancelled"
        # Page 2 never reached the provider
        assert fetcher.calls == [("Foundation", 1)]
        assert sorted(fake_loader.rows) == [1, 2]
        cancelled = memory_store.snapshot()
        assert cancelled.status == RunStatus.CANCELLED
        assert cancelled.current_page == 2
        assert cancelled.page_offset == 0
        assert cancelled.processed_items == 2

        resumed = await make_runner(fake_fetcher_factory(pages)).resume()

        assert resumed["processed_items"] == 4
        assert sorted(fake_loader.rows) == [1, 2, 3, 4]
