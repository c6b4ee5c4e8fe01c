"""
Gemini Automator

Command-line entry point: batch prompt runs against a Gemini tab,
standalone watermark removal on local files, and the control API.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from .config import get_settings
from .models import DelayBounds, JobStatus, parse_items
from .orchestrator import InvalidTransition, validate_job

logger = logging.getLogger(__name__)
console = Console()


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def _install_signal_handlers(orchestrator) -> None:
    """SIGINT/SIGTERM stop the run; SIGUSR1 toggles pause."""
    loop = asyncio.get_running_loop()

    def request_stop():
        logger.info("Shutdown signal received, finishing current step...")
        try:
            orchestrator.stop()
        except InvalidTransition:
            pass

    def toggle_pause():
        try:
            status = orchestrator.toggle_pause()
            console.print(f"[yellow]Batch {status.value}[/yellow]")
        except InvalidTransition as e:
            logger.warning(str(e))

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, toggle_pause)


async def _run_batch(items: list[str], bounds: DelayBounds, use_metrics: bool) -> JobStatus:
    from .metrics import start_metrics_server
    from .remote.browser import BrowserSession
    from .service import build_service

    if use_metrics:
        start_metrics_server(instance="automator-cli")

    async with BrowserSession() as page_adapter:
        service = build_service(page_adapter, feed=page_adapter)
        _install_signal_handlers(service.orchestrator)
        try:
            await service.orchestrator.run(items, bounds)
        finally:
            await service.acquisition.aclose()
        return service.orchestrator.status


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose):
    """Batch prompt automation and watermark removal for Gemini."""
    configure_logging(verbose)


@cli.command()
@click.argument("prompts_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--min-delay", type=int, default=None, help="Minimum seconds between prompts")
@click.option("--max-delay", type=int, default=None, help="Maximum seconds between prompts")
@click.option("--no-watermark", is_flag=True, help="Keep watermarks on generated images")
@click.option("--metrics/--no-metrics", default=False, help="Expose Prometheus metrics")
def run(prompts_file, min_delay, max_delay, no_watermark, metrics):
    """Run every prompt in PROMPTS_FILE (one per line) against the Gemini tab."""
    settings = get_settings()
    if no_watermark:
        settings.watermark_removal_enabled = False

    items = parse_items(prompts_file.read_text(encoding="utf-8"))
    bounds = DelayBounds(
        min=settings.min_delay if min_delay is None else min_delay,
        max=settings.max_delay if max_delay is None else max_delay,
    )

    console.print("[bold green]Gemini Automator[/bold green]")
    console.print(f"Prompts: {len(items)}")
    console.print(f"Delay: {bounds.min}-{bounds.max}s")
    console.print(f"Target: {settings.target_url}")
    console.print("[dim]Keep the Gemini tab visible; SIGUSR1 toggles pause, Ctrl+C stops.[/dim]")
    console.print("")

    errors = validate_job(items, bounds, settings.min_delay_floor)
    if errors:
        for error in errors:
            console.print(f"[red]{error}[/red]")
        sys.exit(2)

    status = asyncio.run(_run_batch(items, bounds, metrics))
    if metrics:
        from .metrics import push_metrics_now
        push_metrics_now()

    console.print(f"Finished: [bold]{status.value}[/bold]")
    if status == JobStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where to write cleaned PNGs (default: settings output_dir)")
def clean(images, output_dir):
    """Remove the Gemini watermark from local IMAGES."""
    from .pipeline.acquisition import clean_image_bytes
    from .pipeline.watermark_remover import WatermarkRemover

    output_dir = output_dir or Path(get_settings().output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    remover = WatermarkRemover()
    if not remover.available:
        console.print(f"[red]Reference captures not found in {remover.cache.assets_dir}[/red]")
        sys.exit(1)

    errors = 0
    for i, path in enumerate(images):
        try:
            data, result = clean_image_bytes(path.read_bytes(), remover)
        except Exception as e:
            logger.error(f"Failed to process {path}: {e}")
            errors += 1
            continue

        if not result.applied:
            logger.warning(f"Skipped {path.name}: {result.reason}")
            continue

        target = output_dir / f"{path.stem}.png"
        target.write_bytes(data)
        logger.info(
            f"Processed {i + 1}/{len(images)}: {path.name} -> {target} "
            f"({result.variant.name.lower()} logo)"
        )

    if errors:
        sys.exit(1)


@cli.command()
def serve():
    """Run the control API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "automator.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


def main():
    cli()


if __name__ == "__main__":
    main()
