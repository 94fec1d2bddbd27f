"""Rich terminal output utilities for the CLI."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from ..core.aggregation import format_size, summarize_documents
from ..core.models import (
    DocumentReportResult,
    ListCompareResult,
    ListCompareStatus,
    ListInventoryResult,
    NavigationSettingsResult,
    PermissionReportResult,
    TaskDefinition,
    TaskProgress,
    TaskResult,
)

console = Console()


class RichOutput:
    """Styled status lines and panels on one console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def task_banner(self, task: TaskDefinition):
        """Panel naming the task about to run and its site scope."""
        text = Text(task.name, style="bold cyan", justify="center")
        scope = f"{len(task.source_sites)} source sites"
        if task.kind.requires_target:
            scope += f", {len(task.target_sites or [])} target sites"
        text.append(f"\n{task.kind.display_name} | {scope}", style="dim white")
        self.console.print(Panel(text, expand=False, border_style="bright_blue", padding=(1, 2)))

    def success(self, message: str):
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str):
        self.console.print(f"[red]✗[/red] {message}", style="red")

    def warning(self, message: str):
        self.console.print(f"[yellow]![/yellow] {message}", style="yellow")

    def info(self, message: str):
        self.console.print(f"[blue]ℹ[/blue] {message}")

    @contextmanager
    def status(self, message: str):
        with self.console.status(message, spinner="dots"):
            yield


class RichProgressSink:
    """Progress sink that drives a rich progress bar.

    Use as a context manager around the run; snapshots received outside it
    are ignored.
    """

    def __init__(self, description: str, console: Optional[Console] = None):
        self.description = description
        self.console = console or Console()
        self.progress: Optional[Progress] = None
        self._task_id = None

    def __enter__(self) -> "RichProgressSink":
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        self.progress.start()
        self._task_id = self.progress.add_task(self.description, total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.progress:
            self.progress.stop()
            self.progress = None

    def __call__(self, snapshot: TaskProgress) -> None:
        if self.progress is None:
            return
        # The bar shows sites finished, so the site being processed is not counted yet.
        self.progress.update(
            self._task_id,
            total=snapshot.total_count,
            completed=snapshot.current_index - 1,
            description=f"{self.description}: {snapshot.current_site_url}",
        )


def setup_logging(verbosity: int = 0):
    """Configure logging with Rich handler.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                tracebacks_show_locals=(verbosity >= 3),
                show_time=True,
                show_path=(verbosity >= 2)
            )
        ],
        force=True,
    )

    if verbosity < 2:
        logging.getLogger("asyncio").setLevel(logging.WARNING)
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
        logging.getLogger("azure").setLevel(logging.WARNING)

    logging.getLogger("spo_manager").setLevel(level)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string (e.g. "2h 15m 30s")."""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def tasks_table(tasks: Iterable[TaskDefinition]) -> Table:
    table = Table(title="Tasks", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Kind", style="white")
    table.add_column("Sources", justify="right")
    table.add_column("Targets", justify="right")
    table.add_column("Created", style="dim")
    for task in tasks:
        table.add_row(
            task.id,
            task.name,
            task.kind.display_name,
            str(len(task.source_sites)),
            str(len(task.target_sites or [])),
            _format_time(task.created_at),
        )
    return table


def summary_table(result: TaskResult) -> Table:
    """Key figures of one run."""
    table = Table(
        title=f"{result.kind.display_name} Summary", show_header=True, header_style="bold green"
    )
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Result ID", result.id)
    table.add_row("Executed", _format_time(result.executed_at))
    if result.completed_at:
        duration = (result.completed_at - result.executed_at).total_seconds()
        table.add_row("Duration", format_duration(duration))

    for key, value in result.summary().items():
        label = key.replace("_", " ").title()
        if key == "total_size_bytes":
            table.add_row("Total Size", format_size(value))
        elif isinstance(value, bool):
            table.add_row(label, "Yes" if value else "No")
        elif isinstance(value, int):
            table.add_row(label, f"{value:,}")
        else:
            table.add_row(label, str(value))
    return table


def site_table(result: TaskResult) -> Table:
    """One row per site with the counters relevant to the result kind."""
    table = Table(title="Sites", show_header=True, header_style="bold magenta")
    table.add_column("Site", style="cyan")

    columns: List[str]
    if isinstance(result, ListInventoryResult):
        columns = ["Lists", "Items"]
    elif isinstance(result, ListCompareResult):
        columns = ["Target", "Match", "Mismatch", "Source Only", "Target Only"]
    elif isinstance(result, DocumentReportResult):
        columns = ["Libraries", "Documents", "Size"]
    elif isinstance(result, PermissionReportResult):
        columns = ["Entries", "Unique Objects"]
    elif isinstance(result, NavigationSettingsResult):
        columns = ["Target", "Status"]
    else:
        columns = []
    for column in columns:
        table.add_column(column)
    table.add_column("Error", style="red")

    for site in result.site_results:
        if isinstance(result, ListInventoryResult):
            values = [str(site.list_count), f"{site.total_items:,}"]
        elif isinstance(result, ListCompareResult):
            values = [
                site.target_site_url,
                str(site.match_count),
                str(site.mismatch_count),
                str(site.source_only_count),
                str(site.target_only_count),
            ]
        elif isinstance(result, DocumentReportResult):
            values = [
                str(site.libraries_processed),
                f"{site.total_documents:,}",
                format_size(site.total_size_bytes),
            ]
        elif isinstance(result, PermissionReportResult):
            values = [str(site.total_permissions), str(site.unique_permission_objects)]
        elif isinstance(result, NavigationSettingsResult):
            values = [site.target_site_url, site.status.value]
        else:
            values = []
        error = site.error_message or getattr(site, "apply_error", None) or ""
        table.add_row(site.site_url, *values, error)
    return table


def library_table(result: DocumentReportResult) -> Table:
    """Document count and size per library, per site."""
    table = Table(title="Libraries", show_header=True, header_style="bold magenta")
    table.add_column("Site", style="cyan")
    table.add_column("Library", style="white")
    table.add_column("Documents", justify="right")
    table.add_column("Size", justify="right")
    for site in result.site_results:
        for library, totals in summarize_documents(site.documents).items():
            table.add_row(
                site.site_url, library, f"{totals['documents']:,}", format_size(totals["size_bytes"])
            )
    return table


def differences_table(result: ListCompareResult) -> Table:
    """Every compared list whose counts do not match."""
    table = Table(title="Differences", show_header=True, header_style="bold yellow")
    table.add_column("Source Site", style="cyan")
    table.add_column("List", style="white")
    table.add_column("Source", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Difference", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Status")
    for entry in result.all_comparisons():
        if entry.status is ListCompareStatus.MATCH:
            continue
        table.add_row(
            entry.source_site_url,
            entry.list_title,
            f"{entry.source_count:,}",
            f"{entry.target_count:,}",
            f"{entry.difference:+,}",
            f"{entry.percent_difference:.1f}",
            entry.status.value,
        )
    return table


def issues_table(result: ListCompareResult) -> Table:
    table = Table(title="Sites With Issues", show_header=True, header_style="bold red")
    table.add_column("Source Site", style="cyan")
    table.add_column("Target Site", style="cyan")
    table.add_column("Mismatches", justify="right")
    table.add_column("Source Only", justify="right")
    table.add_column("Target Only", justify="right")
    table.add_column("Error", style="red")
    for issue in result.issue_summaries():
        table.add_row(
            issue["source_site_url"],
            issue["target_site_url"],
            str(issue["mismatches"]),
            str(issue["source_only"]),
            str(issue["target_only"]),
            issue["error"],
        )
    return table


def mapping_table(rows: List[Dict[str, Any]]) -> Table:
    """Source-to-target list mapping for migration tooling."""
    table = Table(title="List Mapping", show_header=True, header_style="bold magenta")
    table.add_column("Source List", style="cyan")
    table.add_column("Target List", style="cyan")
    table.add_column("Type")
    table.add_column("Source", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Status")
    for row in rows:
        table.add_row(
            row["source_list_url"] or "-",
            row["target_list_url"] or "-",
            row["list_type"],
            str(row["source_count"]),
            str(row["target_count"]),
            row["status"],
        )
    return table
