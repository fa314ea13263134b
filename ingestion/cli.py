"""
Operator surface for the FDC ingestion.

Verbs:
    run        start ingesting (resumes if a checkpoint exists)
    resume     continue from the checkpoint
    status     print progress from the checkpoint, read-only
    monitor    refresh status periodically until interrupted
    reset      delete the checkpoint, so the next run starts over
    supervise  run under the scheduler, resuming after throttling halts

Credentials and throughput tuning come from the environment (see
core.config), not from flags.
"""

import asyncio
import logging
import signal
import time
from datetime import datetime, timezone
from typing import Any, Dict

import click

from core.config import Settings, get_settings
from core.exceptions import ETLException, FatalAuthError, RetryableError, ThrottledError
from core.logging import setup_logging
from ingestion.checkpoint import build_checkpoint_store
from ingestion.progress import format_report, load_report
from ingestion.runner import IngestionRunner
from ingestion.scheduler import IngestionScheduler

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_AUTH = 2
EXIT_HALTED = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fail(message: str, code: int = EXIT_FAILED) -> None:
    click.echo(message, err=True)
    raise click.exceptions.Exit(code)


def _install_stop_handlers(stop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig.name} not available on this loop")


async def _drive(settings: Settings, operation: str) -> Dict[str, Any]:
    runner = IngestionRunner.from_settings(settings)
    _install_stop_handlers(runner.request_stop)
    try:
        if operation == "resume":
            return await runner.resume()
        return await runner.run()
    finally:
        await runner.aclose()


def _execute(settings: Settings, operation: str) -> None:
    try:
        result = asyncio.run(_drive(settings, operation))
    except FatalAuthError as e:
        _fail(f"Authentication failed: {e.message}. Check FDC_API_KEY.", EXIT_AUTH)
    except ThrottledError as e:
        _fail(
            f"Halted by provider throttling; resume after {e.retry_after}s: {e.message}",
            EXIT_HALTED,
        )
    except RetryableError as e:
        _fail(f"Halted: {e.message}. Resume later.", EXIT_HALTED)
    except ETLException as e:
        _fail(f"Ingestion failed: {e}")

    click.echo(
        f"Ingestion {result['status']}: {result['processed_items']}/{result['total_items']} processed, "
        f"{result['successful_inserts']} inserted, {result['skipped_duplicates']} duplicates, "
        f"{result['errors']} errors"
    )


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level) -> None:
    """USDA FoodData Central ingestion."""
    if ctx.obj is None:
        ctx.obj = get_settings()
    setup_logging(log_level or ctx.obj.LOG_LEVEL)


@cli.command("run")
@click.pass_obj
def run_command(settings: Settings) -> None:
    """Start ingesting; an existing checkpoint is resumed, never overwritten."""
    _execute(settings, "run")


@cli.command("resume")
@click.pass_obj
def resume_command(settings: Settings) -> None:
    """Continue from the persisted checkpoint."""
    _execute(settings, "resume")


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def status_command(settings: Settings, as_json: bool) -> None:
    """Print progress from the checkpoint without touching the provider."""
    store = build_checkpoint_store(settings)
    try:
        report = asyncio.run(load_report(store, _utcnow()))
    except ETLException as e:
        _fail(f"Cannot read checkpoint: {e.message}")

    if report is None:
        click.echo("No checkpoint found. Start with `fdc-ingest run`.")
        return
    if as_json:
        click.echo(report.model_dump_json(indent=2))
    else:
        click.echo(format_report(report))


@cli.command("monitor")
@click.option("--interval", type=float, default=None, help="Seconds between refreshes")
@click.option("--count", type=int, default=0, help="Stop after this many refreshes (0 = forever)")
@click.pass_obj
def monitor_command(settings: Settings, interval, count: int) -> None:
    """Refresh the status report until interrupted."""
    interval = settings.MONITOR_INTERVAL_SECONDS if interval is None else interval
    store = build_checkpoint_store(settings)
    refreshes = 0
    try:
        while True:
            report = asyncio.run(load_report(store, _utcnow()))
            click.echo(format_report(report) if report else "No checkpoint found.")
            refreshes += 1
            if count and refreshes >= count:
                break
            click.echo("")
            time.sleep(interval)
    except KeyboardInterrupt:
        click.echo("Monitoring stopped.")
    except ETLException as e:
        _fail(f"Cannot read checkpoint: {e.message}")


@cli.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_obj
def reset_command(settings: Settings, yes: bool) -> None:
    """Delete the checkpoint. Ingested rows are kept; upserts make a re-run safe."""
    store = build_checkpoint_store(settings)
    if not asyncio.run(store.exists()):
        click.echo("Nothing to reset (no checkpoint).")
        return
    if not yes and not click.confirm("Delete the ingestion checkpoint?", default=False):
        click.echo("Reset cancelled.")
        return
    try:
        asyncio.run(store.reset())
    except ETLException as e:
        _fail(f"Cannot delete checkpoint: {e.message}")
    click.echo("Checkpoint deleted.")


@cli.command("supervise")
@click.option("--retry-interval", type=int, default=None,
              help="Seconds before resuming after a halt without a retry hint")
@click.pass_obj
def supervise_command(settings: Settings, retry_interval) -> None:
    """Keep resuming the ingestion until it completes."""
    retry_interval = settings.DEFAULT_RETRY_AFTER_SECONDS if retry_interval is None else retry_interval

    async def _supervise() -> Dict[str, Any]:
        supervisor = IngestionScheduler(
            lambda: IngestionRunner.from_settings(settings),
            retry_interval=retry_interval,
        )
        _install_stop_handlers(supervisor.request_stop)
        return await supervisor.serve()

    try:
        result = asyncio.run(_supervise())
    except FatalAuthError as e:
        _fail(f"Authentication failed: {e.message}. Check FDC_API_KEY.", EXIT_AUTH)
    except ETLException as e:
        _fail(f"Supervision ended: {e}")

    click.echo(f"Ingestion {result.get('status', 'stopped')}")


if __name__ == "__main__":
    cli()
