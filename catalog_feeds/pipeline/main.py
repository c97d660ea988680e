"""CLI entry point for catalog feed generation.

Commands:
    regenerate  start feed builds (and by default run them to completion)
    tick        run one batch per running feed; the cron entry point
    run         keep regenerating feeds on their schedule
    status      show where each feed's build stands
    cancel      reset running or failed builds
    serve       serve published feeds over HTTP
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from catalog_feeds.models.config import AppConfig, ConfigManager
from catalog_feeds.models.data_models import BatchResult, FeedStatus
from catalog_feeds.pipeline.orchestrator import FeedPipeline
from catalog_feeds.pipeline.output import StatusReportFormatter


console = Console()


def _load_config(ctx: click.Context) -> AppConfig:
    options = ctx.obj
    cli_overrides = {}
    if options.get("log_level") is not None:
        cli_overrides["log_level"] = options["log_level"].upper()
    if options.get("output_dir") is not None:
        cli_overrides["output_directory"] = str(options["output_dir"])
    if options.get("state_dir") is not None:
        cli_overrides["state_directory"] = str(options["state_dir"])
    return ConfigManager(options["config"]).load_config(cli_overrides)


def _execute(action: Callable[[], None]) -> None:
    """Run a command body, mapping failures to exit codes."""
    try:
        action()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        if "--debug" in sys.argv:
            console.print_exception()
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for feed files (overrides config)",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for job state (overrides config)",
)
@click.version_option(version="1.0.0", prog_name="catalog-feeds")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path,
    log_level: Optional[str],
    output_dir: Optional[Path],
    state_dir: Optional[Path],
) -> None:
    """
    Catalog Feeds - Batched feed generation for a commerce platform.

    Builds product, shipping, promotion, navigation and review feeds in
    resumable batches, publishes each file atomically and asks the platform
    to fetch it.

    Examples:

        # Build every configured feed now
        $ catalog-feeds regenerate

        # Advance builds one batch at a time from cron
        $ catalog-feeds tick --start-idle

        # Serve published feeds and regenerate them on schedule
        $ catalog-feeds serve --port 8080
    """
    ctx.obj = {
        "config": config,
        "log_level": log_level,
        "output_dir": output_dir,
        "state_dir": state_dir,
    }


@main.command()
@click.argument("feeds", nargs=-1)
@click.option("--no-drain", is_flag=True, help="Only queue the builds, do not run them")
@click.option("--no-progress", is_flag=True, help="Disable progress spinner (useful for CI/CD)")
@click.pass_context
def regenerate(ctx: click.Context, feeds: Sequence[str], no_drain: bool, no_progress: bool) -> None:
    """Build FEEDS (all configured feeds when none are given)."""
    def action():
        config = _load_config(ctx)

        async def _regenerate():
            async with FeedPipeline(config) as pipeline:
                if no_progress:
                    await pipeline.regenerate(feeds, drain=not no_drain)
                else:
                    with Progress(
                        SpinnerColumn(),
                        TextColumn("[progress.description]{task.description}"),
                        TimeElapsedColumn(),
                        console=console,
                    ) as progress:
                        task_id = progress.add_task("[cyan]Generating feeds...", total=None)
                        await pipeline.regenerate(feeds, drain=not no_drain)
                        progress.update(task_id, completed=True)
                return pipeline.status(feeds)

        _display_statuses(asyncio.run(_regenerate()))

    _execute(action)


@main.command()
@click.argument("feeds", nargs=-1)
@click.option("--start-idle", is_flag=True, help="Start a build for feeds that are not running")
@click.pass_context
def tick(ctx: click.Context, feeds: Sequence[str], start_idle: bool) -> None:
    """Run one batch of each running feed, then exit."""
    def action():
        config = _load_config(ctx)

        async def _tick():
            async with FeedPipeline(config, scheduled=False) as pipeline:
                return await pipeline.tick(feeds, start_idle=start_idle)

        _display_batches(asyncio.run(_tick()))

    _execute(action)


@main.command()
@click.option("--poll-interval", type=float, default=1.0, show_default=True, help="Scheduler poll interval in seconds")
@click.pass_context
def run(ctx: click.Context, poll_interval: float) -> None:
    """Regenerate feeds on their schedule until interrupted."""
    def action():
        config = _load_config(ctx)

        async def _run():
            async with FeedPipeline(config) as pipeline:
                await pipeline.run(poll_interval)

        console.print("[cyan]Scheduler running, press Ctrl-C to stop[/cyan]")
        asyncio.run(_run())

    _execute(action)


@main.command()
@click.argument("feeds", nargs=-1)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON report instead of a table")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), help="Also save the JSON report here")
@click.pass_context
def status(ctx: click.Context, feeds: Sequence[str], as_json: bool, output: Optional[Path]) -> None:
    """Show the build status of FEEDS."""
    def action():
        config = _load_config(ctx)
        statuses = FeedPipeline(config, scheduled=False).status(feeds)
        formatter = StatusReportFormatter()
        if output is not None:
            formatter.save(statuses, str(output))
        if as_json:
            click.echo(formatter.to_json(statuses))
        else:
            _display_statuses(statuses)

    _execute(action)


@main.command()
@click.argument("feeds", nargs=-1, required=True)
@click.pass_context
def cancel(ctx: click.Context, feeds: Sequence[str]) -> None:
    """Reset the running or failed builds of FEEDS to idle."""
    def action():
        config = _load_config(ctx)
        reset = FeedPipeline(config, scheduled=False).cancel(feeds)
        if not reset:
            console.print("Nothing to cancel")
        for feed_type in reset:
            console.print(f"✓ Cancelled {feed_type.data_stream_name}")

    _execute(action)


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8080, show_default=True, help="Bind port")
@click.option("--poll-interval", type=float, default=1.0, show_default=True, help="Scheduler poll interval in seconds")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, poll_interval: float) -> None:
    """Serve published feeds and regenerate them on schedule."""
    def action():
        import uvicorn

        from catalog_feeds.feeds.server import create_feed_app

        config = _load_config(ctx)
        pipeline = FeedPipeline(config)

        app = create_feed_app(
            pipeline.manager,
            scheduler_poll_interval=poll_interval,
            resources=pipeline.http_client
        )
        uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())

    _execute(action)


def _display_statuses(statuses: Sequence[FeedStatus]) -> None:
    """Display a status table."""
    table = Table(title="Feeds")
    table.add_column("Feed", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Batch", justify="right")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Published", style="magenta")
    table.add_column("Last error", style="red")

    for status in statuses:
        published = (
            f"{status.published_path} ({status.published_size_bytes} B)"
            if status.published_path else "-"
        )
        table.add_row(
            status.data_stream_name,
            status.status.value,
            str(status.current_batch_number),
            str(status.cumulative_rows_written),
            str(status.skipped_records),
            published,
            status.last_error or "",
        )

    console.print(table)


def _display_batches(results: Sequence[BatchResult]) -> None:
    if not results:
        console.print("No feeds to advance")
        return
    for result in results:
        name = result.feed_type.data_stream_name
        if not result.performed:
            console.print(f"- {name}: nothing to do")
        elif result.completed:
            console.print(f"✓ {name}: published")
        else:
            console.print(
                f"✓ {name}: batch {result.batch_number}, {result.rows_written} rows, "
                f"{len(result.skipped)} skipped"
            )


if __name__ == "__main__":
    main()
