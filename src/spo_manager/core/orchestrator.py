"""Task orchestrator: runs one task definition across its sites."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.exceptions import RemoteSiteError, TaskDefinitionError
from .aggregation import build_document_entry, matches_extension_filter, normalize_extensions
from .comparison import classify_list_pairs, filter_lists
from .models import (
    RESULT_TYPES,
    DocumentSiteResult,
    ListCompareSiteResult,
    ListInventorySiteResult,
    NavigationSiteResult,
    PermissionSiteResult,
    ReportKind,
    RoleAssignment,
    SecurableObject,
    SiteResult,
    TaskDefinition,
    TaskProgress,
    TaskResult,
    relative_site_path,
    utc_now,
)
from .navigation import diff_navigation
from .permissions import PermissionResolver, build_permission_entries, is_object_type_included
from .progress import ProgressSink, SafeProgressSink

logger = logging.getLogger(__name__)

NO_MATCHING_TARGET = "No matching target site"


def _normalize_url(url: str) -> str:
    return url.rstrip("/").lower()


def validate_task_definition(task: TaskDefinition) -> None:
    """Raise TaskDefinitionError if ``task`` has no usable site scope."""
    config = task.configuration
    if not task.source_sites and not config.site_pairs:
        raise TaskDefinitionError(f"Task '{task.name}' has no source sites")
    if task.kind.requires_target and not task.target_sites and not config.site_pairs:
        raise TaskDefinitionError(
            f"{task.kind.display_name} task '{task.name}' requires target sites"
        )


@dataclass(frozen=True)
class WorkUnit:
    """One step of the crawl: a source site, its paired target and any pre-known failure."""
    source_url: str
    target_url: Optional[str] = None
    error: Optional[str] = None


class TaskOrchestrator:
    """Executes task definitions against a remote site client.

    Sites are visited one at a time in scope order. A classified remote
    failure is recorded on that site's result and the crawl moves on.
    The orchestrator keeps no state between runs.
    """

    def __init__(self, progress_messages: Optional[Dict[ReportKind, str]] = None):
        self.progress_messages = dict(progress_messages or {
            ReportKind.LIST_INVENTORY: "Collecting lists",
            ReportKind.LIST_COMPARE: "Comparing lists",
            ReportKind.DOCUMENT_REPORT: "Collecting documents",
            ReportKind.PERMISSION_REPORT: "Collecting permissions",
            ReportKind.NAVIGATION_SYNC: "Comparing navigation settings",
        })

    async def execute(
        self,
        task: TaskDefinition,
        client: Any,
        target_client: Any = None,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TaskResult:
        """Run ``task`` and return its result.

        Raises:
            TaskDefinitionError: If the task cannot run as defined. Raised
                before any site is visited.
        """
        self.validate(task, target_client)

        runners = {
            ReportKind.LIST_INVENTORY: self._run_list_inventory,
            ReportKind.LIST_COMPARE: self._run_list_compare,
            ReportKind.DOCUMENT_REPORT: self._run_document_report,
            ReportKind.PERMISSION_REPORT: self._run_permission_report,
            ReportKind.NAVIGATION_SYNC: self._run_navigation_sync,
        }

        units = self.resolve_work_units(task)
        result = RESULT_TYPES[task.kind](task_id=task.id)
        if task.kind is ReportKind.NAVIGATION_SYNC:
            result.apply_mode = task.configuration.apply_mode

        logger.info(
            f"Starting {task.kind.display_name} task '{task.name}' ({task.id}) "
            f"across {len(units)} sites"
        )
        result.log(f"Starting {task.kind.display_name} task '{task.name}' for {len(units)} sites")
        processor = runners[task.kind](task, client, target_client)
        cancelled = await self._crawl(
            task, units, result, processor, SafeProgressSink(progress), cancel_event
        )
        result.completed_at = utc_now()

        if cancelled:
            logger.info(
                f"Task '{task.name}' cancelled after {len(result.site_results)}/{len(units)} sites"
            )
            result.log(f"Cancelled after {len(result.site_results)} of {len(units)} sites")
        else:
            logger.info(
                f"Task '{task.name}' completed: {result.successful_sites} succeeded, "
                f"{result.failed_sites} failed"
            )
            result.log(
                f"Completed: {result.successful_sites} succeeded, {result.failed_sites} failed"
            )
        return result

    def validate(self, task: TaskDefinition, target_client: Any = None) -> None:
        validate_task_definition(task)
        if task.kind.requires_target and target_client is None:
            raise TaskDefinitionError(
                f"{task.kind.display_name} task '{task.name}' requires a target client"
            )

    def resolve_work_units(self, task: TaskDefinition) -> List[WorkUnit]:
        """Ordered sites to visit. Paired kinds get their target counterpart resolved up front."""
        config = task.configuration
        source_sites = list(task.source_sites) or [p.source_url for p in config.site_pairs]
        if not task.kind.requires_target:
            return [WorkUnit(url) for url in source_sites]

        targets: Dict[str, str] = {}
        if config.site_pairs:
            key = _normalize_url
            for pair in config.site_pairs:
                targets.setdefault(key(pair.source_url), pair.target_url)
        else:
            key = relative_site_path
            for url in task.target_sites or []:
                targets.setdefault(key(url), url)

        units = []
        for url in source_sites:
            target = targets.get(key(url))
            if target is None:
                units.append(WorkUnit(url, error=NO_MATCHING_TARGET))
            else:
                units.append(WorkUnit(url, target))
        return units

    async def _crawl(
        self,
        task: TaskDefinition,
        units: List[WorkUnit],
        result: TaskResult,
        processor: Callable[[WorkUnit], Awaitable[SiteResult]],
        progress: ProgressSink,
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Visit every unit in order. Returns True if the run was cancelled."""
        total = len(units)
        message = self.progress_messages.get(task.kind, task.kind.display_name)

        for index, unit in enumerate(units, start=1):
            if cancel_event is not None and cancel_event.is_set():
                return True

            progress(TaskProgress(index, total, unit.source_url, f"{message} ({index}/{total})"))
            logger.debug(f"Processing site {index}/{total}: {unit.source_url}")

            if unit.error:
                logger.warning(f"Skipping {unit.source_url}: {unit.error}")
                site_result = self._failed_site(result, unit, unit.error)
            else:
                try:
                    site_result = await processor(unit)
                except RemoteSiteError as e:
                    logger.warning(
                        f"Site {unit.source_url} failed ({e.kind.value}): {e}"
                    )
                    site_result = self._failed_site(result, unit, str(e))

            if site_result.success:
                result.log(f"Processed {unit.source_url}")
            else:
                result.log(f"Failed {unit.source_url}: {site_result.error_message}")
            result.site_results.append(site_result)
        return False

    def _failed_site(self, result: TaskResult, unit: WorkUnit, message: str) -> SiteResult:
        values: Dict[str, Any] = {
            "site_url": unit.source_url,
            "success": False,
            "error_message": message,
        }
        if result.kind.requires_target:
            values["target_site_url"] = unit.target_url or ""
        return result.site_result_type(**values)

    # ------------------------------------------------------------------
    # Per-kind processors
    # ------------------------------------------------------------------

    def _run_list_inventory(self, task: TaskDefinition, client: Any, target_client: Any):
        config = task.configuration

        async def process(unit: WorkUnit) -> SiteResult:
            info = await client.get_site_info(unit.source_url)
            lists = filter_lists(await client.list_lists(unit.source_url), config)
            return ListInventorySiteResult(
                site_url=unit.source_url,
                site_title=info.title,
                success=True,
                lists=lists,
            )

        return process

    def _run_list_compare(self, task: TaskDefinition, client: Any, target_client: Any):
        config = task.configuration

        async def process(unit: WorkUnit) -> SiteResult:
            source_info = await client.get_site_info(unit.source_url)
            target_info = await target_client.get_site_info(unit.target_url)
            source_lists = await client.list_lists(unit.source_url)
            target_lists = await target_client.list_lists(unit.target_url)
            comparisons = classify_list_pairs(
                unit.source_url, unit.target_url, source_lists, target_lists, config
            )
            return ListCompareSiteResult(
                site_url=unit.source_url,
                site_title=source_info.title,
                success=True,
                target_site_url=unit.target_url,
                target_site_title=target_info.title,
                comparisons=comparisons,
            )

        return process

    def _run_document_report(self, task: TaskDefinition, client: Any, target_client: Any):
        config = task.configuration
        library_config = dataclasses.replace(
            config, include_hidden_lists=config.include_hidden_libraries
        )
        extensions = normalize_extensions(config.extension_filter)

        async def process(unit: WorkUnit) -> SiteResult:
            site_url = unit.source_url
            info = await client.get_site_info(site_url)
            lists = await client.list_lists(site_url)
            libraries = [l for l in filter_lists(lists, library_config) if l.is_document_library]

            site_result = DocumentSiteResult(site_url=site_url, site_title=info.title, success=True)
            for library in libraries:
                entries = []
                try:
                    async for document in client.list_documents(
                        site_url, library, include_subfolders=config.include_subfolders
                    ):
                        if matches_extension_filter(document.name, extensions):
                            entries.append(build_document_entry(
                                site_url, library, document, config.include_version_count
                            ))
                except RemoteSiteError as e:
                    logger.warning(f"Skipping library '{library.title}' on {site_url}: {e}")
                    site_result.library_errors.append(f"{library.title}: {e}")
                    continue
                site_result.documents.extend(entries)
                site_result.libraries_processed += 1
            return site_result

        return process

    def _run_permission_report(self, task: TaskDefinition, client: Any, target_client: Any):
        config = task.configuration

        async def process(unit: WorkUnit) -> SiteResult:
            site_url = unit.source_url
            info = await client.get_site_info(site_url)
            resolver = PermissionResolver(site_url)
            assignments_cache: Dict[str, List[RoleAssignment]] = {}
            site_result = PermissionSiteResult(site_url=site_url, site_title=info.title, success=True)

            async def collect(obj: SecurableObject) -> None:
                resolver.add(obj)
                if not is_object_type_included(obj.object_type, config):
                    return
                is_inherited, inherited_from, ancestor = resolver.resolve(obj)
                if is_inherited and not config.include_inherited_permissions:
                    return
                holder = ancestor or obj
                key = holder.url.rstrip("/").lower()
                if key not in assignments_cache:
                    assignments_cache[key] = await client.list_role_assignments(site_url, holder)
                site_result.permissions.extend(build_permission_entries(
                    site_url, obj, assignments_cache[key], is_inherited, inherited_from
                ))

            await collect(await client.get_web_securable(site_url))
            for list_info in filter_lists(await client.list_lists(site_url), config):
                async for obj in client.list_list_securables(
                    site_url,
                    list_info,
                    include_folders=config.include_folder_permissions,
                    include_items=config.include_item_permissions,
                ):
                    await collect(obj)
            return site_result

        return process

    def _run_navigation_sync(self, task: TaskDefinition, client: Any, target_client: Any):
        apply_mode = task.configuration.apply_mode

        async def process(unit: WorkUnit) -> SiteResult:
            source_info = await client.get_site_info(unit.source_url)
            target_info = await target_client.get_site_info(unit.target_url)
            source_config = await client.get_navigation_config(unit.source_url)
            target_config = await target_client.get_navigation_config(unit.target_url)
            diff = diff_navigation(source_config, target_config)

            site_result = NavigationSiteResult(
                site_url=unit.source_url,
                site_title=source_info.title,
                success=True,
                target_site_url=unit.target_url,
                target_site_title=target_info.title,
                source_config=source_config,
                target_config=target_config,
                diff=diff,
            )
            if apply_mode and not diff.is_empty:
                site_result.apply_attempted = True
                try:
                    await target_client.set_navigation_config(unit.target_url, source_config)
                    site_result.apply_succeeded = True
                    logger.info(f"Applied navigation settings to {unit.target_url}")
                except RemoteSiteError as e:
                    site_result.apply_error = str(e)
                    logger.warning(f"Failed to apply navigation settings to {unit.target_url}: {e}")
            return site_result

        return process
