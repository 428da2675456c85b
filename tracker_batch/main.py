"""CLI entry point for tracker-batch."""

import asyncio
import sys
from pathlib import Path

import click
import structlog

from tracker_batch import __version__
from tracker_batch.auth.flow import AuthorizationFlow
from tracker_batch.auth.token_store import TokenStore
from tracker_batch.config.settings import TrackerSettings, write_config_template
from tracker_batch.engine.batch_store import BatchStore
from tracker_batch.engine.processor import BatchProcessor, ProcessSummary
from tracker_batch.exceptions import ConfigurationError, TrackerBatchError
from tracker_batch.providers.tracker_rest import TrackerRestClient
from tracker_batch.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option("--config", default="config.yaml", show_default=True, help="Path to configuration file")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging level",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.version_option(__version__, prog_name="tracker-batch")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str, json_logs: bool) -> None:
    """tracker-batch: apply batches of issue changes to Yandex Tracker."""
    configure_logging(log_level, json_output=json_logs)
    ctx.obj = {"config_path": config}


def _load_settings(ctx: click.Context) -> TrackerSettings:
    config_path = ctx.obj["config_path"]
    try:
        return TrackerSettings.from_yaml(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)


@cli.command("run-tasks")
@click.option("--tasks", "tasks_file", default=None, help="Batch file (defaults to batch.tasks_file)")
@click.option("--token-file", default=None, help="Token cache file (defaults to oauth.token_file)")
@click.pass_context
def run_tasks(ctx: click.Context, tasks_file: str | None, token_file: str | None) -> None:
    """Apply every pending mutation in the batch file.

    The batch file is rewritten after each applied mutation, so after a
    failure the same command continues where it stopped.
    """
    settings = _load_settings(ctx)
    try:
        summary = asyncio.run(_run_tasks(settings, tasks_file, token_file))
    except TrackerBatchError as e:
        click.echo(f"Error: {e}", err=True)
        log.debug("run_tasks_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error("run_tasks_unexpected", exc_info=True)
        sys.exit(1)

    click.echo(
        f"Done: {len(summary.created)} created, {len(summary.updated)} updated, {len(summary.deleted)} deleted"
    )
    for key in summary.created:
        click.echo(f"  created {key}")


async def _run_tasks(settings: TrackerSettings, tasks_file: str | None, token_file: str | None) -> ProcessSummary:
    store = BatchStore(tasks_file or settings.tasks_path, default_queue=settings.batch.default_queue)
    batch = await store.load()

    flow = AuthorizationFlow(settings.oauth, TokenStore(token_file or settings.token_path))
    token = await flow.authorize()

    async with TrackerRestClient(
        token.access_token,
        settings.organization_id,
        base_url=settings.api.base_url,
        timeout=settings.api.request_timeout,
    ) as client:
        processor = BatchProcessor(client, store, request_delay=settings.batch.request_delay)
        return await processor.process(batch)


@cli.command("template-tasks")
@click.option("--output", default="tasks.json", show_default=True, help="Where to write the example batch")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def template_tasks(output: str, force: bool) -> None:
    """Write an example batch file."""
    try:
        path = asyncio.run(BatchStore(output).write_template(overwrite=force))
    except TrackerBatchError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    click.echo(f"Batch template written to {path}")


@cli.command("template-config")
@click.option("--output", default=None, help="Where to write the example config (defaults to --config)")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def template_config(ctx: click.Context, output: str | None, force: bool) -> None:
    """Write an example configuration file."""
    target = Path(output or ctx.obj["config_path"])
    try:
        write_config_template(target, overwrite=force)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    click.echo(f"Config template written to {target}")


if __name__ == "__main__":
    cli()
