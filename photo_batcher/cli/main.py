"""
photo-batcher command line interface.

Split a folder of photos into numbered batch folders, keeping RAW+JPEG
pairs together, with resume after interruption and undo for move runs.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from .. import __version__
from ..config import Settings
from ..core.errors import BatchError, sanitize_error
from ..core.types import (
    BatchMode,
    BatchPlan,
    ExecutionResult,
    PlanRequest,
    PreflightReport,
    ProgressEvent,
    RollbackProgressEvent,
    RollbackResult,
    SortOrder,
)
from ..organization.service import BatchService
from ..shared.media_utils import format_bytes, setup_logging

console = Console()

T = TypeVar("T")

MAX_ERRORS_SHOWN = 10
PREVIEW_BATCHES_SHOWN = 50


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(1)


def get_service(ctx: click.Context) -> BatchService:
    return ctx.obj["service"]


def register_folder(service: BatchService, folder: Path) -> Path:
    """Approve a folder named on the command line."""
    resolved = Path(folder).expanduser().resolve()
    if not service.register_folder(resolved):
        fail("Access denied: this is a protected system folder")
    return resolved


def run_cancellable(service: BatchService, work: Callable[[], T]) -> T:
    """
    Run work on a helper thread so Ctrl+C turns into a cooperative cancel.

    In-flight files finish and the progress record stays resumable.
    """
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-run") as pool:
        future = pool.submit(work)
        while True:
            try:
                return future.result(timeout=0.2)
            except FutureTimeoutError:
                continue
            except KeyboardInterrupt:
                if not service.is_cancelled():
                    console.print(
                        "\n[yellow]Cancelling... waiting for in-flight files[/yellow]"
                    )
                    service.cancel()


def make_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeRemainingColumn(),
        console=console,
    )


def display_plan(plan: BatchPlan) -> None:
    """Display a batch plan."""
    summary = Table(title="Plan", show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", style="green", justify="right")
    summary.add_row("Files in folder", str(plan.total_files))
    summary.add_row("Files to batch", str(plan.eligible_files))
    summary.add_row("Skipped (not media)", str(plan.skipped_files))
    summary.add_row("File groups", str(plan.group_count))
    summary.add_row("Largest group", str(plan.largest_group))
    summary.add_row("Batches", str(plan.batch_count))
    summary.add_row("Max per batch", str(plan.request.max_files_per_batch))
    console.print(summary)

    if plan.batches:
        table = Table(title="Batches")
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Files", style="green", justify="right")
        table.add_column("Sample")
        for batch in plan.batches[:PREVIEW_BATCHES_SHOWN]:
            names = batch.file_names
            sample = ", ".join(names[:3]) + (" ..." if len(names) > 3 else "")
            table.add_row(str(batch.index), str(batch.file_count), sample)
        console.print(table)
        if plan.batch_count > PREVIEW_BATCHES_SHOWN:
            console.print(
                f"[dim]... and {plan.batch_count - PREVIEW_BATCHES_SHOWN} more batches[/dim]"
            )

    for group in plan.oversized_groups:
        console.print(
            f"[yellow]⚠ Group '{group.name}' has {group.count} files, more than "
            f"the per-batch limit; it gets a batch of its own[/yellow]"
        )


def display_preflight(report: PreflightReport) -> None:
    """Display pre-flight checks."""
    table = Table(title="Pre-flight checks", show_header=False)
    table.add_column("Check", style="cyan")
    table.add_column("Result")

    table.add_row("Files", f"{report.total_files} ({report.total_size_formatted})")
    table.add_row("Same volume", "yes" if report.same_volume else "no")

    space = report.disk_space
    if space is None or space.skipped:
        reason = space.reason if space and space.reason else "not needed"
        table.add_row("Disk space", f"[green]skipped[/green] ({reason})")
    elif space.sufficient is None:
        table.add_row("Disk space", "[yellow]unknown[/yellow]")
    else:
        colour = "green" if space.sufficient else "red"
        table.add_row(
            "Disk space",
            f"[{colour}]{format_bytes(space.free_bytes)} free, "
            f"{format_bytes(space.required_bytes)} needed[/{colour}]",
        )

    if report.writable:
        table.add_row("Write access", "[green]ok[/green]")
    else:
        table.add_row("Write access", f"[red]{report.permission_error}[/red]")
    console.print(table)

    for warning in report.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


def display_result(result: ExecutionResult) -> None:
    """Display an execution result."""
    if result.error:
        fail(result.error)

    if result.cancelled and result.message:
        console.print(f"\n[yellow]⚠ {result.message}.[/yellow]\n")
    elif result.cancelled:
        console.print("\n[yellow]⚠ Cancelled. Run 'photo-batcher resume' to continue.[/yellow]\n")
    else:
        console.print("\n[green]✓ Batching complete![/green]\n")

    table = Table(title="Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Batches", str(result.batches_created))
    table.add_row("Files processed", str(result.files_processed))
    table.add_row("Total files", str(result.total_files))
    table.add_row("Failed", str(result.error_count))
    console.print(table)

    if result.message:
        console.print(f"[dim]{result.message}[/dim]")
    if result.output_dir:
        console.print(f"[dim]Output: {result.output_dir}[/dim]")

    display_errors(result.errors)


def display_errors(errors: list) -> None:
    if not errors:
        return
    console.print("\n[red]Errors:[/red]")
    for error in errors[:MAX_ERRORS_SHOWN]:
        console.print(f"  [red]• {error.file}: {error.error}[/red]")
    if len(errors) > MAX_ERRORS_SHOWN:
        console.print(f"  [dim]... and {len(errors) - MAX_ERRORS_SHOWN} more[/dim]")


def display_rollback(result: RollbackResult) -> None:
    """Display a rollback result."""
    if result.error:
        fail(result.error)

    if result.cancelled:
        console.print("\n[yellow]⚠ Undo cancelled part-way.[/yellow]\n")
    elif result.success:
        console.print("\n[green]✓ Undo complete![/green]\n")
    else:
        console.print("\n[yellow]⚠ Undo finished with errors.[/yellow]\n")

    table = Table(title="Undo")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Files restored", str(result.restored_files))
    table.add_row("Total files", str(result.total_files))
    table.add_row("Folders removed", str(result.deleted_folders))
    table.add_row("Failed", str(result.failed_files))
    console.print(table)

    display_errors(result.errors)
    if not result.success:
        sys.exit(1)


def rollback_with_progress(
    service: BatchService, action: Callable[[Callable], RollbackResult]
) -> RollbackResult:
    with make_progress() as progress:
        task = progress.add_task("Restoring files...", total=None)

        def on_progress(event: RollbackProgressEvent) -> None:
            progress.update(task, completed=event.current, total=event.total)

        return run_cancellable(service, lambda: action(on_progress))


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Where progress and history are stored (default: ~/.photo-batcher)",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose output")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only show warnings")
@click.version_option(__version__, prog_name="photo-batcher")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[Path], verbose: bool, quiet: bool) -> None:
    """
    Split large photo folders into numbered batch folders.

    Files sharing a base name (IMG_0001.jpg + IMG_0001.cr2) always land in
    the same batch. Runs can be interrupted and resumed; move runs can be
    undone.

    \b
    Examples:
        # Preview how a folder would be split
        photo-batcher preview ~/Pictures/card-dump --max 500

        # Move files into Trip_001, Trip_002, ...
        photo-batcher run ~/Pictures/card-dump --prefix "Trip_{count}"

        # Undo the last move run
        photo-batcher undo
    """
    settings = Settings(data_dir=data_dir) if data_dir else Settings()
    setup_logging(verbose=verbose or settings.verbose_logging, quiet=quiet)

    ctx.ensure_object(dict)
    if "service" not in ctx.obj:
        ctx.obj["service"] = BatchService(settings)


def plan_options(func: Callable) -> Callable:
    """Options shared by preview and run."""
    func = click.option(
        "--sort",
        "sort_order",
        type=click.Choice([s.value for s in SortOrder], case_sensitive=False),
        default=SortOrder.SIZE_DESC.value,
        help="Order in which file groups are packed",
    )(func)
    func = click.option(
        "--prefix",
        default="Batch",
        help="Folder name pattern; supports {count}, {date}, {year}, {month}",
    )(func)
    func = click.option(
        "--max",
        "max_files",
        type=int,
        default=None,
        help="Maximum files per batch (default: 500)",
    )(func)
    return func


def build_plan(
    service: BatchService,
    folder: Path,
    max_files: Optional[int],
    prefix: str,
    sort_order: str,
) -> BatchPlan:
    request = PlanRequest(
        source_folder=folder,
        max_files_per_batch=(
            max_files if max_files is not None
            else service.settings.default_files_per_batch
        ),
        output_prefix=prefix,
        sort_order=SortOrder(sort_order),
    )
    return service.plan(request)


@cli.command()
@click.argument("folder", type=click.Path(exists=True, file_okay=False, path_type=Path))
@plan_options
@click.pass_context
def preview(
    ctx: click.Context,
    folder: Path,
    max_files: Optional[int],
    prefix: str,
    sort_order: str,
) -> None:
    """Show how FOLDER would be split, without touching any file."""
    service = get_service(ctx)
    folder = register_folder(service, folder)

    try:
        plan = build_plan(service, folder, max_files, prefix, sort_order)
    except (BatchError, OSError) as e:
        fail(sanitize_error(e, "preview"))
        return

    display_plan(plan)


@cli.command()
@click.argument("folder", type=click.Path(exists=True, file_okay=False, path_type=Path))
@plan_options
@click.option(
    "--mode",
    type=click.Choice([m.value for m in BatchMode], case_sensitive=False),
    default=BatchMode.MOVE.value,
    help="move (default, undoable) or copy (keeps originals)",
)
@click.option(
    "--output",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Create batch folders here instead of inside FOLDER",
)
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def run(
    ctx: click.Context,
    folder: Path,
    max_files: Optional[int],
    prefix: str,
    sort_order: str,
    mode: str,
    output_dir: Optional[Path],
    yes: bool,
) -> None:
    """
    Split FOLDER into batch folders.

    Press Ctrl+C to stop; files in flight finish and the run can be resumed
    with 'photo-batcher resume'.
    """
    service = get_service(ctx)
    batch_mode = BatchMode(mode)
    folder = register_folder(service, folder)
    if output_dir is not None:
        output_dir.expanduser().mkdir(parents=True, exist_ok=True)
        output_dir = register_folder(service, output_dir)

    try:
        plan = build_plan(service, folder, max_files, prefix, sort_order)
        if plan.batch_count == 0:
            console.print("[yellow]No photo or video files to batch.[/yellow]")
            return

        display_plan(plan)
        report = service.preflight(folder, batch_mode, output_dir)
        display_preflight(report)
    except (BatchError, OSError) as e:
        fail(sanitize_error(e, "run"))
        return

    if not report.ok:
        fail("Pre-flight checks failed; nothing was changed")

    if not yes:
        verb = "Move" if batch_mode == BatchMode.MOVE else "Copy"
        if not click.confirm(
            f"{verb} {plan.eligible_files} files into {plan.batch_count} folders?"
        ):
            console.print("[yellow]Cancelled[/yellow]")
            return

    with make_progress() as progress:
        task = progress.add_task("Batching files...", total=plan.eligible_files)

        def on_progress(event: ProgressEvent) -> None:
            progress.update(
                task, completed=event.processed_files, total=event.total_files
            )

        try:
            result = run_cancellable(
                service,
                lambda: service.execute(plan, batch_mode, output_dir, on_progress),
            )
        except (BatchError, OSError) as e:
            fail(sanitize_error(e, "run"))
            return

    display_result(result)
    if result.success and batch_mode == BatchMode.MOVE and not result.has_errors:
        console.print("[dim]Undo with: photo-batcher undo[/dim]")


@cli.command()
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def resume(ctx: click.Context, yes: bool) -> None:
    """Continue an interrupted run."""
    service = get_service(ctx)

    summary = service.check_interrupted()
    if summary is None:
        console.print("[green]No interrupted run found.[/green]")
        return

    console.print(
        Panel(
            f"Folder: {summary.source_folder}\n"
            f"Mode: {summary.mode.value}\n"
            f"Progress: {summary.processed_files} of {summary.total_files} files\n"
            f"Started: {summary.started_at:%Y-%m-%d %H:%M}",
            title="Interrupted run",
            border_style="yellow",
        )
    )
    if not yes and not click.confirm("Resume this run?", default=True):
        console.print("[yellow]Cancelled[/yellow]")
        return

    with make_progress() as progress:
        task = progress.add_task("Resuming...", total=summary.total_files)

        def on_progress(event: ProgressEvent) -> None:
            progress.update(task, completed=event.processed_files)

        try:
            result = run_cancellable(service, lambda: service.resume(on_progress))
        except (BatchError, OSError) as e:
            fail(sanitize_error(e, "resume"))
            return

    display_result(result)


@cli.command()
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def discard(ctx: click.Context, yes: bool) -> None:
    """Forget an interrupted run (files already batched stay where they are)."""
    service = get_service(ctx)

    summary = service.check_interrupted()
    if summary is None:
        console.print("[green]No interrupted run found.[/green]")
        return

    if not yes and not click.confirm(
        f"Discard the interrupted run of {summary.source_folder}?"
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return

    service.discard_interrupted()
    console.print("[green]✓ Interrupted run discarded[/green]")


@cli.command()
@click.option("--force", is_flag=True, default=False, help="Skip the file location check")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def undo(ctx: click.Context, force: bool, yes: bool) -> None:
    """Move the files of the most recent move run back where they came from."""
    service = get_service(ctx)

    history = service.get_history()
    if not history:
        console.print("[yellow]Nothing to undo.[/yellow]")
        return

    entry = history[0]
    console.print(
        f"Last run: {entry.total_files} files from {entry.source_folder} into "
        f"{entry.batch_folder_count} folders ({entry.created_at:%Y-%m-%d %H:%M})"
    )
    if not yes and not click.confirm("Move these files back?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        result = rollback_with_progress(
            service,
            lambda on_progress: service.rollback_history_entry(
                entry.operation_id, force=force, on_progress=on_progress
            ),
        )
    except (BatchError, OSError) as e:
        fail(sanitize_error(e, "undo"))
        return

    display_rollback(result)


@cli.command()
@click.argument("folder", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--mode",
    type=click.Choice([m.value for m in BatchMode], case_sensitive=False),
    default=BatchMode.MOVE.value,
    help="Mode the run would use",
)
@click.option(
    "--output",
    "output_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Output folder the run would use",
)
@click.pass_context
def check(
    ctx: click.Context, folder: Path, mode: str, output_dir: Optional[Path]
) -> None:
    """Check disk space and write access for splitting FOLDER."""
    service = get_service(ctx)
    folder = register_folder(service, folder)
    if output_dir is not None:
        output_dir = register_folder(service, output_dir)

    try:
        report = service.preflight(folder, BatchMode(mode), output_dir)
    except (BatchError, OSError) as e:
        fail(sanitize_error(e, "check"))
        return

    display_preflight(report)
    if not report.ok:
        sys.exit(1)


@cli.group()
def history() -> None:
    """Past move runs that can still be undone."""


@history.command("list")
@click.pass_context
def history_list(ctx: click.Context) -> None:
    """List past move runs, newest first."""
    entries = get_service(ctx).get_history()
    if not entries:
        console.print("[dim]No history yet.[/dim]")
        return

    table = Table(title="History")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("When")
    table.add_column("Folder")
    table.add_column("Files", justify="right", style="green")
    table.add_column("Batches", justify="right")
    for entry in entries:
        table.add_row(
            entry.operation_id,
            f"{entry.created_at:%Y-%m-%d %H:%M}",
            str(entry.source_folder),
            str(entry.total_files),
            str(entry.batch_folder_count),
        )
    console.print(table)


@history.command("show")
@click.argument("operation_id")
@click.pass_context
def history_show(ctx: click.Context, operation_id: str) -> None:
    """Show the details of one run."""
    entry = get_service(ctx).get_history_entry(operation_id)
    if entry is None:
        fail("Operation not found in history")
        return

    table = Table(title=f"Run {entry.operation_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("When", f"{entry.created_at:%Y-%m-%d %H:%M:%S}")
    table.add_row("Source", str(entry.source_folder))
    table.add_row("Output", str(entry.output_folder))
    table.add_row("Files", str(entry.total_files))
    table.add_row("Pattern", entry.output_prefix or "-")
    table.add_row("Max per batch", str(entry.max_files_per_batch or "-"))
    table.add_row("Sort", entry.sort_order.value)
    console.print(table)

    if entry.batch_results:
        batches = Table(title="Batches")
        batches.add_column("Folder", style="cyan")
        batches.add_column("Files", justify="right", style="green")
        for summary in entry.batch_results:
            batches.add_row(summary.folder, str(summary.file_count))
        console.print(batches)


@history.command("validate")
@click.argument("operation_id")
@click.pass_context
def history_validate(ctx: click.Context, operation_id: str) -> None:
    """Check that a run's files are still in their batch folders."""
    try:
        validation = get_service(ctx).validate_history_entry(operation_id)
    except BatchError as e:
        fail(sanitize_error(e, "history-validate"))
        return

    if validation.error:
        fail(validation.error)
    if validation.valid:
        console.print(
            f"[green]✓ All {validation.checked} sampled files are in place[/green]"
        )
    else:
        console.print(
            f"[yellow]⚠ {validation.missing} of {validation.checked} sampled files "
            f"have moved[/yellow]"
        )
        sys.exit(1)


@history.command("undo")
@click.argument("operation_id")
@click.option("--force", is_flag=True, default=False, help="Skip the file location check")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def history_undo(ctx: click.Context, operation_id: str, force: bool, yes: bool) -> None:
    """Undo a past move run."""
    service = get_service(ctx)
    if not yes and not click.confirm(f"Undo run {operation_id}?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        result = rollback_with_progress(
            service,
            lambda on_progress: service.rollback_history_entry(
                operation_id, force=force, on_progress=on_progress
            ),
        )
    except (BatchError, OSError) as e:
        fail(sanitize_error(e, "history-undo"))
        return

    display_rollback(result)


@history.command("delete")
@click.argument("operation_id")
@click.pass_context
def history_delete(ctx: click.Context, operation_id: str) -> None:
    """Forget one run (its files are not touched)."""
    try:
        removed = get_service(ctx).delete_history_entry(operation_id)
    except BatchError as e:
        fail(sanitize_error(e, "history-delete"))
        return

    if not removed:
        fail("Operation not found in history")
    console.print("[green]✓ History entry deleted[/green]")


@history.command("clear")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_context
def history_clear(ctx: click.Context, yes: bool) -> None:
    """Forget every run (files are not touched)."""
    if not yes and not click.confirm("Clear the whole history?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    count = get_service(ctx).clear_history()
    console.print(f"[green]✓ Cleared {count} history entries[/green]")


if __name__ == "__main__":
    cli()
