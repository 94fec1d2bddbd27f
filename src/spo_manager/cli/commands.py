"""CLI commands for the SharePoint Online Manager."""

import asyncio
import contextlib
import dataclasses
import json
import logging
import signal
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console

from ..api.auth_manager import AuthenticationManager
from ..api.sharepoint_client import SharePointAPIClient
from ..core.comparison import list_mapping_rows
from ..core.models import (
    DocumentReportResult,
    ListCompareResult,
    ReportKind,
    SitePair,
    TaskConfiguration,
    TaskDefinition,
    TaskResult,
    ThresholdType,
)
from ..core.orchestrator import TaskOrchestrator, validate_task_definition
from ..core.progress import LoggingProgressSink
from ..database.repository import DatabaseRepository, ResultStore
from ..utils.config_parser import (
    AppConfig,
    DbConfig,
    create_config_file,
    load_and_merge_config,
    load_config,
)
from ..utils.exceptions import ConfigError, DatabaseError, TaskDefinitionError
from ..utils.logger import LoggingConfiguration
from ..utils.retry_handler import RetryStrategy
from .output import (
    RichOutput,
    RichProgressSink,
    differences_table,
    issues_table,
    library_table,
    mapping_table,
    setup_logging,
    site_table,
    summary_table,
    tasks_table,
)

logger = logging.getLogger(__name__)
console = Console()
output = RichOutput(console)

HANDLED_ERRORS = (ConfigError, TaskDefinitionError, DatabaseError, FileNotFoundError)


def _load_optional_config(config_path: str) -> Optional[AppConfig]:
    """Configuration file contents, or None when the file does not exist."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        return None


def _resolve_db_path(config_path: str, db_path: Optional[str]) -> str:
    if db_path:
        return db_path
    config = _load_optional_config(config_path)
    return config.db.path if config else DbConfig().path


def _read_sites_file(path: Optional[str]) -> List[str]:
    """One URL per line; blank lines and lines starting with # are ignored."""
    if not path:
        return []
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


async def _open_repository(db_path: str) -> DatabaseRepository:
    repo = DatabaseRepository(db_path)
    await repo.initialize_database()
    return repo


@click.command(name="init-config")
@click.option("--path", default="config/config.json", help="Where to write the configuration template.")
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
@click.pass_context
def init_config(ctx, path, force):
    """Write a configuration file template."""
    if Path(path).exists() and not force:
        output.error(f"Configuration file already exists: {path} (use --force to overwrite)")
        ctx.exit(1)
    create_config_file(path)
    output.success(f"Configuration template written to {path}")


@click.command(name="create-task")
@click.option("--name", required=True, help="Task name.")
@click.option(
    "--kind",
    required=True,
    type=click.Choice([k.value for k in ReportKind]),
    help="Report kind to run.",
)
@click.option("--source", "-s", "sources", multiple=True, help="Source site URL (repeatable).")
@click.option("--sources-file", type=click.Path(exists=True, dir_okay=False), help="File with one source site URL per line.")
@click.option("--target", "-t", "targets", multiple=True, help="Target site URL (repeatable).")
@click.option("--targets-file", type=click.Path(exists=True, dir_okay=False), help="File with one target site URL per line.")
@click.option("--pair", "pairs", multiple=True, type=(str, str), help="Explicit SOURCE TARGET site pair (repeatable).")
@click.option("--exclude-list", "excluded_lists", multiple=True, help="Extra list title to skip (repeatable).")
@click.option("--include-hidden", is_flag=True, help="Include hidden lists.")
@click.option("--include-site-assets", is_flag=True, help="Include the Site Assets library.")
@click.option("--threshold", type=float, help="Minor difference threshold for list compare.")
@click.option("--threshold-type", type=click.Choice([t.value for t in ThresholdType]), help="Threshold unit.")
@click.option("--apply", "apply_mode", is_flag=True, help="Write navigation settings to the target sites.")
@click.option("--extension", "extensions", multiple=True, help="File extension to include in document reports (repeatable).")
@click.option("--include-hidden-libraries", is_flag=True, help="Include hidden document libraries.")
@click.option("--subfolders/--no-subfolders", default=True, show_default=True, help="Descend into library subfolders.")
@click.option("--version-count/--no-version-count", default=True, show_default=True, help="Record each document's major version.")
@click.option("--site-permissions/--no-site-permissions", default=True, show_default=True)
@click.option("--list-permissions/--no-list-permissions", default=True, show_default=True)
@click.option("--folder-permissions/--no-folder-permissions", default=True, show_default=True)
@click.option("--item-permissions/--no-item-permissions", default=False, show_default=True)
@click.option("--include-inherited", is_flag=True, help="Also report inherited permissions.")
@click.option("--config", default="config/config.json", help="Path to configuration file.")
@click.option("--db-path", help="Path to the task database (overrides the configuration file).")
@click.pass_context
def create_task(
    ctx,
    name,
    kind,
    sources,
    sources_file,
    targets,
    targets_file,
    pairs,
    excluded_lists,
    include_hidden,
    include_site_assets,
    threshold,
    threshold_type,
    apply_mode,
    extensions,
    include_hidden_libraries,
    subfolders,
    version_count,
    site_permissions,
    list_permissions,
    folder_permissions,
    item_permissions,
    include_inherited,
    config,
    db_path,
):
    """Create and save a task definition."""
    try:
        app_config = _load_optional_config(config)
        compare = app_config.compare if app_config else None

        if threshold is None:
            threshold = compare.threshold_value if compare else 5.0
        if threshold_type is None:
            threshold_type = compare.threshold_type if compare else ThresholdType.PERCENTAGE.value

        report_kind = ReportKind(kind)
        target_sites = list(targets) + _read_sites_file(targets_file)
        task = TaskDefinition(
            name=name,
            kind=report_kind,
            source_sites=list(sources) + _read_sites_file(sources_file),
            target_sites=target_sites if report_kind.requires_target else None,
            configuration=TaskConfiguration(
                excluded_lists=list(excluded_lists),
                include_hidden_lists=include_hidden,
                include_site_assets=include_site_assets,
                threshold_type=ThresholdType(threshold_type),
                threshold_value=threshold,
                site_pairs=[SitePair(source, target) for source, target in pairs],
                apply_mode=apply_mode,
                extension_filter=list(extensions),
                include_hidden_libraries=include_hidden_libraries,
                include_subfolders=subfolders,
                include_version_count=version_count,
                include_site_permissions=site_permissions,
                include_list_permissions=list_permissions,
                include_folder_permissions=folder_permissions,
                include_item_permissions=item_permissions,
                include_inherited_permissions=include_inherited,
            ),
        )
        validate_task_definition(task)

        async def _save():
            repo = await _open_repository(_resolve_db_path(config, db_path))
            await repo.save_task(task)

        asyncio.run(_save())
    except HANDLED_ERRORS as e:
        output.error(str(e))
        ctx.exit(1)

    output.success(f"Created {task.kind.display_name} task '{task.name}'")
    output.info(f"Task ID: {task.id}")


@click.command(name="list-tasks")
@click.option("--config", default="config/config.json", help="Path to configuration file.")
@click.option("--db-path", help="Path to the task database (overrides the configuration file).")
@click.pass_context
def list_tasks(ctx, config, db_path):
    """List saved task definitions."""
    async def _list():
        repo = await _open_repository(_resolve_db_path(config, db_path))
        return await repo.list_tasks()

    try:
        tasks = asyncio.run(_list())
    except HANDLED_ERRORS as e:
        output.error(str(e))
        ctx.exit(1)

    if not tasks:
        output.info("No tasks defined")
        return
    console.print(tasks_table(tasks))


@click.command(name="delete-task")
@click.argument("task_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.option("--config", default="config/config.json", help="Path to configuration file.")
@click.option("--db-path", help="Path to the task database (overrides the configuration file).")
@click.pass_context
def delete_task(ctx, task_id, yes, config, db_path):
    """Delete a task definition and all of its results."""
    if not yes:
        click.confirm(f"Delete task {task_id} and all of its results?", abort=True)

    async def _delete():
        repo = await _open_repository(_resolve_db_path(config, db_path))
        return await repo.delete_task(task_id)

    try:
        deleted = asyncio.run(_delete())
    except HANDLED_ERRORS as e:
        output.error(str(e))
        ctx.exit(1)

    if not deleted:
        output.error(f"Task not found: {task_id}")
        ctx.exit(1)
    output.success(f"Deleted task {task_id}")


@click.command()
@click.argument("task_id")
@click.option("--config", default="config/config.json", help="Path to configuration file.")
@click.option("--db-path", help="Path to the task database (overrides the configuration file).")
@click.option("--logging-config", type=click.Path(exists=True, dir_okay=False), help="YAML logging configuration (replaces console logging setup).")
@click.option("--log-file", help="Also write JSON log records to this file.")
@click.option(
    "-v", "--verbose", count=True, help="Increase verbosity level (-v, -vv, -vvv)."
)
@click.pass_context
def run(ctx, task_id, config, db_path, logging_config, log_file, verbose):
    """Run a saved task and store its result.

    Press Ctrl+C to stop after the current site; the partial result is kept.
    """
    setup_logging(verbose)
    if logging_config:
        LoggingConfiguration.setup_logging(logging_config)
    if log_file:
        LoggingConfiguration.add_json_file_handler(log_file)

    try:
        with output.status("Loading configuration..."):
            app_config = load_and_merge_config(config, cli_args={"db_path": db_path})
        result, cancelled = asyncio.run(_run_task(task_id, app_config))
    except HANDLED_ERRORS as e:
        output.error(str(e))
        ctx.exit(1)
    except Exception as e:
        output.error(f"Task failed: {e}")
        logger.exception("Detailed error:")
        ctx.exit(1)

    if cancelled:
        output.warning(
            f"Run cancelled after {result.total_sites} sites; partial result saved"
        )
    else:
        output.success("Run completed")
    console.print(summary_table(result))
    console.print(site_table(result))


def _progress_display(task: TaskDefinition):
    """Live bar on a terminal, log lines when output is redirected."""
    if console.is_terminal:
        return RichProgressSink(f"Running {task.name}", console=console)
    return contextlib.nullcontext(LoggingProgressSink())


async def _run_task(task_id: str, app_config: AppConfig) -> Tuple[TaskResult, bool]:
    repo = await _open_repository(app_config.db.path)
    task = await repo.get_task(task_id)
    if task is None:
        raise TaskDefinitionError(f"Task not found: {task_id}")
    output.task_banner(task)

    retry_strategy = RetryStrategy(app_config.retry)
    client = SharePointAPIClient(AuthenticationManager(app_config.auth), retry_strategy)
    target_client = None
    if task.kind.requires_target:
        target_auth = app_config.target_auth or app_config.auth
        target_client = SharePointAPIClient(AuthenticationManager(target_auth), retry_strategy)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        with _progress_display(task) as sink:
            result = await TaskOrchestrator().execute(
                task, client, target_client, progress=sink, cancel_event=cancel_event
            )
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await client.close()
        await client.auth_manager.close()
        if target_client is not None:
            await target_client.close()
            await target_client.auth_manager.close()

    await ResultStore(repo).save(result)
    return result, cancel_event.is_set()


@click.command()
@click.argument("task_id")
@click.option("--all", "show_all", is_flag=True, help="Show every stored result, newest first.")
@click.option(
    "--output-format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Format for result output.",
)
@click.option("--issues-only", is_flag=True, help="Only show sites with issues.")
@click.option("--list-mapping", is_flag=True, help="Show the source-to-target list mapping (list compare only).")
@click.option("--show-log", is_flag=True, help="Print the execution log of each run after its tables.")
@click.option("--config", default="config/config.json", help="Path to configuration file.")
@click.option("--db-path", help="Path to the task database (overrides the configuration file).")
@click.pass_context
def results(ctx, task_id, show_all, output_format, issues_only, list_mapping, show_log, config, db_path):
    """Show stored results of a task (the latest one by default)."""
    async def _load():
        store = ResultStore(await _open_repository(_resolve_db_path(config, db_path)))
        if show_all:
            return await store.get_all(task_id)
        latest = await store.get_latest(task_id)
        return [latest] if latest else []

    try:
        task_results = asyncio.run(_load())
    except HANDLED_ERRORS as e:
        output.error(str(e))
        ctx.exit(1)

    if not task_results:
        output.warning(f"No results stored for task {task_id}")
        return

    if list_mapping and not isinstance(task_results[0], ListCompareResult):
        output.error("--list-mapping is only available for list compare results")
        ctx.exit(1)

    def _rows(result: TaskResult):
        if list_mapping:
            return list_mapping_rows(result)
        if not issues_only:
            return result.to_rows()
        if isinstance(result, ListCompareResult):
            return result.issue_summaries()
        return dataclasses.replace(result, site_results=result.sites_with_issues()).to_rows()

    if output_format == "json":
        payload = [
            {
                "id": result.id,
                "kind": result.kind.value,
                "executed_at": result.executed_at.isoformat(),
                "summary": result.summary(),
                "rows": _rows(result),
                "execution_log": result.execution_log,
            }
            for result in task_results
        ]
        console.print_json(json.dumps(payload, default=str))
        return

    for result in task_results:
        console.print(summary_table(result))
        if list_mapping:
            console.print(mapping_table(list_mapping_rows(result)))
        elif isinstance(result, ListCompareResult) and issues_only:
            console.print(issues_table(result))
        else:
            shown = result
            if issues_only:
                shown = dataclasses.replace(result, site_results=result.sites_with_issues())
            console.print(site_table(shown))
            if isinstance(result, ListCompareResult):
                console.print(differences_table(result))
            elif isinstance(result, DocumentReportResult):
                console.print(library_table(result))
        if show_log:
            for line in result.execution_log:
                console.print(line, markup=False, highlight=False)
