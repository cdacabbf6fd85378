"""Command-line interface for discpipe."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from .config import DiscPipeConfig, create_sample_config, load_config
from .core.context import RunContext
from .core.orchestrator import PipelineOrchestrator
from .error_handling import (
    ConfigurationError,
    DiscPipeError,
    check_dependencies,
    handle_error,
)
from .jobs.models import Job
from .jobs.state import JobStatus
from .process_lock import duplicate_run_check

console = Console()
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(*, verbose: bool = False) -> None:
    """Set up console logging."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    # Show the source path only when debugging
    show_path = level == logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=show_path)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def attach_job_log(job: Job, log_dir: Path) -> Path:
    """Send the rest of the run to ``<log_dir>/job_<id>_<timestamp>.log``."""
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"job_{job.job_id}_{stamp}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    job.logfile = log_file.name
    return log_file


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


async def run_pipeline(config: DiscPipeConfig, devpath: str) -> Job:
    ctx = await RunContext.create(config)
    try:
        orchestrator = PipelineOrchestrator(
            ctx,
            on_job_created=lambda job: attach_job_log(job, ctx.config.log_dir),
        )
        return await orchestrator.run(devpath)
    finally:
        await ctx.close()


@click.command()
@click.argument("devpath", required=False)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--init-config",
    type=click.Path(path_type=Path),
    help="Write a sample configuration file and exit",
)
def cli(
    devpath: str | None,
    config_path: Path | None,
    verbose: bool,
    init_config: Path | None,
) -> None:
    """discpipe - rip one optical disc into the media library.

    DEVPATH is the block device of the drive, e.g. /dev/sr0.
    """
    setup_logging(verbose=verbose)

    if init_config is not None:
        if init_config.exists():
            console.print(f"[yellow]{init_config} already exists[/yellow]")
            sys.exit(1)
        create_sample_config(init_config)
        console.print(f"[green]Wrote sample configuration to {init_config}[/green]")
        return

    if not devpath:
        raise click.UsageError("Missing argument 'DEVPATH'.")

    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config_path,
        ).display_to_user()
        sys.exit(1)

    if not config.ai_api_key:
        ConfigurationError(
            "No AI API key configured",
            config_path=config_path,
            solution="Set ai_api_key in config.toml or the DISCPIPE_AI_API_KEY environment variable",
        ).display_to_user()
        sys.exit(1)

    if duplicate_run_check(devpath):
        console.print(f"[red]discpipe is already running for {devpath}[/red]")
        sys.exit(1)

    for error in check_dependencies(use_ffmpeg=config.use_ffmpeg):
        logger.warning(error.message)

    try:
        job = asyncio.run(run_pipeline(config, devpath))
    except (DiscPipeError, OSError) as e:
        handle_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    finally:
        cleanup_logging()

    if job.status == JobStatus.SUCCESS:
        console.print(f"[green]✅ {job.title or job.label or devpath} completed successfully[/green]")
        return
    console.print(f"[red]❌ {job.title or job.label or devpath} completed with errors[/red]")
    if job.errors:
        console.print(f"[dim]{job.errors}[/dim]")
    sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
