"""CLI interface for resumable multipart transfers."""

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ..core.client import TransferClient
from ..core.config import TransferConfig
from ..core.exceptions import PartwiseError, TransferCancelledError
from ..core.models import DataTransferType, DownloadFileInput, UploadFileInput

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


def make_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


def progress_listener(progress: Progress, task_id):
    """Feed data transfer events into a rich progress bar."""

    def listener(status):
        if status.type == DataTransferType.STARTED:
            progress.update(task_id, total=status.total_bytes)
        elif status.type in (DataTransferType.RW, DataTransferType.SUCCEEDED):
            progress.update(task_id, completed=status.consumed_bytes, total=status.total_bytes)
        elif status.type == DataTransferType.FAILED:
            progress.update(task_id, description="[red]retrying part[/red]")

    return listener


def run_transfer(transfer):
    """Run a transfer, turning Ctrl-C into a cancel that keeps the checkpoint."""
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(transfer.start)
        try:
            return future.result()
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted, waiting for in-flight parts...[/yellow]")
            transfer.cancel(abort=False)
            return future.result()


def build_client(ctx, part_size, task_num, rate_limit) -> TransferClient:
    config = TransferConfig.from_env(part_size=part_size, task_num=task_num, rate_limit=rate_limit)
    return TransferClient(
        region=ctx.obj["region"],
        endpoint_url=ctx.obj["endpoint_url"],
        config=config,
    )


def transfer_options(func):
    options = [
        click.option("--part-size", type=int, default=None, help="Part size in bytes (default: 20MB)"),
        click.option("--task-num", type=int, default=None, help="Parts transferred concurrently (default: 4)"),
        click.option(
            "--checkpoint",
            "checkpoint_file",
            type=click.Path(),
            default=None,
            help="Checkpoint file or directory (default: beside the local file)",
        ),
        click.option("--no-resume", is_flag=True, help="Do not record or resume from a checkpoint"),
        click.option("--rate-limit", type=int, default=None, help="Bandwidth limit in bytes per second"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--endpoint-url", envvar="PARTWISE_ENDPOINT_URL", help="S3-compatible endpoint URL")
@click.option("--region", envvar="PARTWISE_REGION", help="Region name")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, endpoint_url, region, verbose):
    """partwise - resumable multipart transfers for S3-compatible storage."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    ctx.ensure_object(dict)
    ctx.obj["endpoint_url"] = endpoint_url
    ctx.obj["region"] = region


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("bucket")
@click.argument("key", required=False)
@transfer_options
@click.pass_context
def upload(ctx, local_path, bucket, key, part_size, task_num, checkpoint_file, no_resume, rate_limit):
    """Upload a file as a resumable multipart upload."""
    key = key or Path(local_path).name
    try:
        client = build_client(ctx, part_size, task_num, rate_limit)
        console.print(f"Uploading [cyan]{local_path}[/cyan] to [green]{bucket}/{key}[/green]")
        with make_progress() as progress:
            task_id = progress.add_task("Uploading", total=None)
            transfer = client.uploader(
                UploadFileInput(
                    bucket=bucket,
                    key=key,
                    file_path=local_path,
                    checkpoint_file=checkpoint_file,
                    enable_checkpoint=not no_resume,
                    data_transfer_listener=progress_listener(progress, task_id),
                )
            )
            result = run_transfer(transfer)
        m = result.metrics
        console.print(
            f"[green]✓[/green] Upload completed: {m.parts_total} parts "
            f"({m.parts_skipped} resumed), {m.speed_mbps:.1f} MB/s"
        )
    except TransferCancelledError as e:
        console.print(f"[yellow]{escape(e.message)}[/yellow]", soft_wrap=True)
        sys.exit(130)
    except (PartwiseError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]", soft_wrap=True)
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.argument("key")
@click.argument("local_path", required=False)
@click.option("--version-id", default=None, help="Object version to download")
@transfer_options
@click.pass_context
def download(ctx, bucket, key, local_path, version_id, part_size, task_num, checkpoint_file, no_resume, rate_limit):
    """Download an object with resumable ranged reads."""
    local_path = local_path or Path(key).name
    try:
        client = build_client(ctx, part_size, task_num, rate_limit)
        console.print(f"Downloading [cyan]{bucket}/{key}[/cyan] to [green]{local_path}[/green]")
        with make_progress() as progress:
            task_id = progress.add_task("Downloading", total=None)
            transfer = client.downloader(
                DownloadFileInput(
                    bucket=bucket,
                    key=key,
                    file_path=local_path,
                    version_id=version_id,
                    checkpoint_file=checkpoint_file,
                    enable_checkpoint=not no_resume,
                    data_transfer_listener=progress_listener(progress, task_id),
                )
            )
            result = run_transfer(transfer)
        m = result.metrics
        console.print(
            f"[green]✓[/green] Download completed: {result.size} bytes in {m.parts_total} parts "
            f"({m.parts_skipped} resumed), {m.speed_mbps:.1f} MB/s"
        )
    except TransferCancelledError as e:
        console.print(f"[yellow]{escape(e.message)}[/yellow]", soft_wrap=True)
        sys.exit(130)
    except (PartwiseError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]", soft_wrap=True)
        sys.exit(1)


@cli.command()
@click.argument("bucket")
@click.argument("key")
@click.argument("upload_id")
@click.pass_context
def abort(ctx, bucket, key, upload_id):
    """Abort an unfinished multipart upload."""
    try:
        client = TransferClient(region=ctx.obj["region"], endpoint_url=ctx.obj["endpoint_url"])
        client.abort_multipart_upload(bucket, key, upload_id)
        console.print(f"[green]✓[/green] Aborted upload {upload_id}")
    except PartwiseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]", soft_wrap=True)
        sys.exit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
