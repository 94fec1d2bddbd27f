"""Tests for the task orchestrator crawl loop and per-kind processing."""

import asyncio
from datetime import datetime, timezone

import pytest

from spo_manager.core.models import (
    DocumentInfo,
    FolderListing,
    ListCompareStatus,
    NavigationConfig,
    NavigationStatus,
    ObjectType,
    PrincipalType,
    ReportKind,
    RoleAssignment,
    SecurableObject,
    SitePair,
    TaskConfiguration,
    TaskDefinition,
)
from spo_manager.core.orchestrator import NO_MATCHING_TARGET, TaskOrchestrator
from spo_manager.utils.exceptions import RemoteErrorKind, RemoteSiteError, TaskDefinitionError

from conftest import FakeRemoteClient, make_list

HOST = "https://contoso.sharepoint.com"
TARGET_HOST = "https://fabrikam.sharepoint.com"


def _sites(n):
    return [f"{HOST}/sites/s{i}" for i in range(1, n + 1)]


def _task(kind=ReportKind.LIST_INVENTORY, sources=None, targets=None, **config):
    return TaskDefinition(
        name="test",
        kind=kind,
        source_sites=sources if sources is not None else _sites(3),
        target_sites=targets,
        configuration=TaskConfiguration(**config),
    )


@pytest.fixture
def orchestrator():
    return TaskOrchestrator()


# ---------------------------------------------------------------------------
# Crawl loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_sites_are_recorded_and_run_continues(orchestrator, fake_client):
    sites = _sites(4)
    for i, url in enumerate(sites):
        fake_client.lists[url] = [make_list("Tasks", 10 * (i + 1)), make_list("Issues", 1)]
    fake_client.failures[sites[1]] = RemoteSiteError(RemoteErrorKind.ACCESS_DENIED)
    fake_client.failures[sites[3]] = RemoteSiteError(RemoteErrorKind.NOT_FOUND)

    result = await orchestrator.execute(_task(sources=sites), fake_client)

    assert [s.site_url for s in result.site_results] == sites
    assert result.total_sites == 4
    assert result.successful_sites == 2
    assert result.failed_sites == 2
    failed = result.site_results[1]
    assert failed.success is False
    assert failed.error_message == "Access denied - insufficient permissions"
    assert failed.lists == []
    assert result.summary()["total_items"] == (10 + 1) + (30 + 1)
    assert result.completed_at is not None


@pytest.mark.asyncio
async def test_execution_log_records_run_milestones(orchestrator, fake_client):
    sites = _sites(2)
    fake_client.failures[sites[1]] = RemoteSiteError(RemoteErrorKind.NOT_FOUND)

    result = await orchestrator.execute(_task(sources=sites), fake_client)

    log = result.execution_log
    assert all(line.startswith("[") and line[9:11] == "] " for line in log)
    assert log[0].endswith("Starting Lists Report task 'test' for 2 sites")
    assert log[1].endswith(f"Processed {sites[0]}")
    assert f"Failed {sites[1]}: " in log[2]
    assert log[-1].endswith("Completed: 1 succeeded, 1 failed")


@pytest.mark.asyncio
async def test_progress_is_emitted_before_each_site(orchestrator, fake_client):
    sites = _sites(3)
    events = []

    def sink(progress):
        events.append(("progress", progress.current_index, progress.current_site_url))

    original = fake_client.get_site_info

    async def get_site_info(site_url):
        events.append(("remote", site_url))
        return await original(site_url)

    fake_client.get_site_info = get_site_info

    await orchestrator.execute(_task(sources=sites), fake_client, progress=sink)

    assert events == [
        ("progress", 1, sites[0]), ("remote", sites[0]),
        ("progress", 2, sites[1]), ("remote", sites[1]),
        ("progress", 3, sites[2]), ("remote", sites[2]),
    ]


@pytest.mark.asyncio
async def test_progress_snapshots_are_monotonic(orchestrator, fake_client):
    snapshots = []
    await orchestrator.execute(_task(sources=_sites(5)), fake_client, progress=snapshots.append)
    assert [s.current_index for s in snapshots] == [1, 2, 3, 4, 5]
    assert {s.total_count for s in snapshots} == {5}
    assert snapshots[-1].percent_complete == 100


@pytest.mark.asyncio
async def test_cancellation_returns_partial_result(orchestrator, fake_client):
    sites = _sites(5)
    cancel = asyncio.Event()

    def sink(progress):
        # Cancel while the second site is being processed.
        if progress.current_index == 2:
            cancel.set()

    result = await orchestrator.execute(
        _task(sources=sites), fake_client, progress=sink, cancel_event=cancel
    )

    assert [s.site_url for s in result.site_results] == sites[:2]
    assert result.completed_at is not None


@pytest.mark.asyncio
async def test_cancel_before_start_gives_empty_result(orchestrator, fake_client):
    cancel = asyncio.Event()
    cancel.set()
    result = await orchestrator.execute(_task(), fake_client, cancel_event=cancel)
    assert result.site_results == []
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_failing_progress_sink_does_not_stop_run(orchestrator, fake_client):
    def sink(progress):
        raise ValueError("boom")

    result = await orchestrator.execute(_task(), fake_client, progress=sink)
    assert result.successful_sites == 3


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(orchestrator, fake_client):
    async def broken(site_url):
        raise KeyError("bug")

    fake_client.get_site_info = broken
    with pytest.raises(KeyError):
        await orchestrator.execute(_task(), fake_client)


@pytest.mark.asyncio
async def test_orchestrator_is_reusable(orchestrator, fake_client):
    first = await orchestrator.execute(_task(), fake_client)
    second = await orchestrator.execute(_task(), fake_client)
    assert first.total_sites == second.total_sites == 3
    assert first.id != second.id


# ---------------------------------------------------------------------------
# Run-level validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_compare_without_target_scope_is_rejected(orchestrator, fake_client):
    task = _task(kind=ReportKind.LIST_COMPARE, targets=None)
    with pytest.raises(TaskDefinitionError):
        await orchestrator.execute(task, fake_client, FakeRemoteClient())
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_compare_without_target_client_is_rejected(orchestrator, fake_client):
    task = _task(kind=ReportKind.LIST_COMPARE, targets=[f"{TARGET_HOST}/sites/s1"])
    with pytest.raises(TaskDefinitionError):
        await orchestrator.execute(task, fake_client)


@pytest.mark.asyncio
async def test_task_without_sources_is_rejected(orchestrator, fake_client):
    with pytest.raises(TaskDefinitionError):
        await orchestrator.execute(_task(sources=[]), fake_client)


# ---------------------------------------------------------------------------
# List inventory and compare
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_inventory_applies_exclusions(orchestrator, fake_client):
    site = _sites(1)[0]
    fake_client.titles[site] = "Site One"
    fake_client.lists[site] = [
        make_list("Documents", 4, base_template=101),
        make_list("Style Library", 2, base_template=101),
        make_list("Site Pages", 3, base_template=119, hidden=True),
        make_list("Archive", 9),
    ]

    result = await orchestrator.execute(
        _task(sources=[site], excluded_lists=["archive"]), fake_client
    )

    site_result = result.site_results[0]
    assert site_result.site_title == "Site One"
    assert [l.title for l in site_result.lists] == ["Documents", "Site Pages"]
    rows = result.to_rows()
    assert rows[0]["list_type"] == "Document Library"
    assert rows[1]["list_type"] == "Custom Workflow Process"


@pytest.mark.asyncio
async def test_list_compare_pairs_by_relative_path(orchestrator, fake_client):
    target_client = FakeRemoteClient()
    sources = [f"{HOST}/sites/hr", f"{HOST}/sites/finance", f"{HOST}/sites/legal"]
    targets = [f"{TARGET_HOST}/sites/Legal/", f"{TARGET_HOST}/sites/hr"]
    fake_client.lists[sources[0]] = [make_list("Tasks", 100), make_list("Old", 1)]
    target_client.lists[targets[1]] = [make_list("Tasks", 100), make_list("New", 1)]
    fake_client.lists[sources[2]] = [make_list("Cases", 100)]
    target_client.lists[targets[0]] = [make_list("Cases", 50)]

    result = await orchestrator.execute(
        _task(kind=ReportKind.LIST_COMPARE, sources=sources, targets=targets),
        fake_client,
        target_client,
    )

    hr, finance, legal = result.site_results
    assert hr.target_site_url == targets[1]
    assert [c.status for c in hr.comparisons] == [
        ListCompareStatus.MATCH,
        ListCompareStatus.SOURCE_ONLY,
        ListCompareStatus.TARGET_ONLY,
    ]
    assert finance.success is False
    assert finance.error_message == NO_MATCHING_TARGET
    assert legal.comparisons[0].status == ListCompareStatus.MAJOR_DIFFERENCE

    summary = result.summary()
    assert summary["matches"] == 1
    assert summary["mismatches"] == 1
    assert summary["source_only"] == 1
    assert summary["target_only"] == 1
    assert summary["sites_with_issues"] == 3
    assert [s["source_site_url"] for s in result.issue_summaries()] == sources


@pytest.mark.asyncio
async def test_list_compare_with_explicit_pairs(orchestrator, fake_client):
    target_client = FakeRemoteClient()
    source = f"{HOST}/sites/old-name"
    target = f"{TARGET_HOST}/sites/new-name"
    fake_client.lists[source] = [make_list("Tasks", 5)]
    target_client.lists[target] = [make_list("Tasks", 5)]

    task = _task(
        kind=ReportKind.LIST_COMPARE,
        sources=[],
        site_pairs=[SitePair(source, target)],
    )
    result = await orchestrator.execute(task, fake_client, target_client)

    site = result.site_results[0]
    assert site.success
    assert site.target_site_url == target
    assert not result.sites_with_issues()


@pytest.mark.asyncio
async def test_list_compare_target_failure_fails_site(orchestrator, fake_client):
    target_client = FakeRemoteClient()
    source, target = f"{HOST}/sites/a", f"{TARGET_HOST}/sites/a"
    target_client.failures[target] = RemoteSiteError(RemoteErrorKind.UNAUTHORIZED)

    result = await orchestrator.execute(
        _task(kind=ReportKind.LIST_COMPARE, sources=[source], targets=[target]),
        fake_client,
        target_client,
    )
    site = result.site_results[0]
    assert site.success is False
    assert site.target_site_url == target
    assert site.comparisons == []


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_document_report_rolls_up_libraries(orchestrator, fake_client):
    site = f"{HOST}/sites/a"
    docs = make_list("Documents", base_template=101)
    broken = make_list("Broken", base_template=101)
    fake_client.lists[site] = [docs, broken, make_list("Tasks"), make_list("Hidden", base_template=101, hidden=True)]
    root = docs.server_relative_url
    fake_client.folders[root] = FolderListing(
        files=[DocumentInfo("a.pdf", f"{root}/a.pdf", 1024)],
        folders=[f"{root}/Sub"],
    )
    fake_client.folders[f"{root}/Sub"] = FolderListing(
        files=[
            DocumentInfo("b.docx", f"{root}/Sub/b.docx", 512,
                         modified=datetime(2024, 5, 1, tzinfo=timezone.utc)),
            DocumentInfo("c.PDF", f"{root}/Sub/c.PDF", 2048),
        ],
    )
    fake_client.failing_folders[broken.server_relative_url] = RemoteSiteError(RemoteErrorKind.ACCESS_DENIED)

    result = await orchestrator.execute(_task(kind=ReportKind.DOCUMENT_REPORT, sources=[site]), fake_client)

    site_result = result.site_results[0]
    assert site_result.success
    assert site_result.libraries_processed == 1
    assert site_result.total_documents == 3
    assert site_result.total_size_bytes == 3584
    assert site_result.library_errors == ["Broken: Access denied - insufficient permissions"]
    assert [d.folder_path for d in site_result.documents] == [[], ["Sub"], ["Sub"]]
    assert site_result.documents[1].last_modified == datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert result.summary()["total_libraries"] == 1


@pytest.mark.asyncio
async def test_document_report_extension_filter(orchestrator, fake_client):
    site = f"{HOST}/sites/a"
    docs = make_list("Documents", base_template=101)
    fake_client.lists[site] = [docs]
    root = docs.server_relative_url
    fake_client.folders[root] = FolderListing(files=[
        DocumentInfo("a.pdf", f"{root}/a.pdf", 1),
        DocumentInfo("b.txt", f"{root}/b.txt", 1),
    ])

    result = await orchestrator.execute(
        _task(kind=ReportKind.DOCUMENT_REPORT, sources=[site], extension_filter=[".PDF"]),
        fake_client,
    )
    assert [d.file_name for d in result.all_documents()] == ["a.pdf"]


@pytest.mark.asyncio
async def test_document_report_traversal_options(orchestrator, fake_client):
    site = f"{HOST}/sites/a"
    docs = make_list("Documents", base_template=101)
    fake_client.lists[site] = [docs]
    root = docs.server_relative_url
    fake_client.folders[root] = FolderListing(
        files=[DocumentInfo("a.pdf", f"{root}/a.pdf", 1, version_count=7)],
        folders=[f"{root}/Sub"],
    )
    fake_client.folders[f"{root}/Sub"] = FolderListing(files=[DocumentInfo("b.pdf", f"{root}/Sub/b.pdf", 1)])

    full = await orchestrator.execute(_task(kind=ReportKind.DOCUMENT_REPORT, sources=[site]), fake_client)
    assert [(d.file_name, d.version_count) for d in full.all_documents()] == [("a.pdf", 7), ("b.pdf", 1)]

    shallow = await orchestrator.execute(
        _task(kind=ReportKind.DOCUMENT_REPORT, sources=[site],
              include_subfolders=False, include_version_count=False),
        fake_client,
    )
    assert [(d.file_name, d.version_count) for d in shallow.all_documents()] == [("a.pdf", 0)]


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


def _securable(object_type, url, unique, parent=None, list_id=None):
    return SecurableObject(
        object_type=object_type,
        title=url.rsplit("/", 1)[-1],
        url=url,
        path=url.replace(HOST, ""),
        has_unique_role_assignments=unique,
        parent_url=parent,
        list_id=list_id,
    )


def _permission_client(site):
    client = FakeRemoteClient()
    docs = make_list("Documents", base_template=101, list_id="L1")
    client.lists[site] = [docs]
    client.webs[site] = _securable(ObjectType.SITE, site, True)
    docs_url = f"{site}/Documents"
    client.list_securables["L1"] = [
        _securable(ObjectType.LIST, docs_url, False, parent=site, list_id="L1"),
        _securable(ObjectType.FOLDER, f"{docs_url}/Legal", True, parent=docs_url, list_id="L1"),
        _securable(ObjectType.FOLDER, f"{docs_url}/Legal/Old", False, parent=f"{docs_url}/Legal", list_id="L1"),
    ]
    client.assignments[site] = [
        RoleAssignment("Owners", "owners", 8, ["Full Control"]),
        RoleAssignment("Alex", "i:0#.f|membership|alex", 1, ["Limited Access"]),
    ]
    client.assignments[f"{docs_url}/Legal"] = [
        RoleAssignment("Legal Team", "c:0t.c|tenant|legal", 4, ["Contribute", "Limited Access"]),
    ]
    return client


@pytest.mark.asyncio
async def test_permission_report_unique_only_by_default(orchestrator):
    site = f"{HOST}/sites/a"
    client = _permission_client(site)

    result = await orchestrator.execute(_task(kind=ReportKind.PERMISSION_REPORT, sources=[site]), client)

    entries = result.site_results[0].permissions
    assert [(e.object_type, e.principal_name, e.permission_level) for e in entries] == [
        (ObjectType.SITE, "Owners", "Full Control"),
        (ObjectType.FOLDER, "Legal Team", "Contribute"),
    ]
    assert entries[1].principal_type == PrincipalType.SECURITY_GROUP
    assert not any(e.is_inherited for e in entries)
    assert result.site_results[0].unique_permission_objects == 2


@pytest.mark.asyncio
async def test_permission_report_with_inherited_entries(orchestrator):
    site = f"{HOST}/sites/a"
    client = _permission_client(site)

    result = await orchestrator.execute(
        _task(kind=ReportKind.PERMISSION_REPORT, sources=[site], include_inherited_permissions=True),
        client,
    )

    entries = result.site_results[0].permissions
    by_object = {(e.object_url, e.principal_name): e for e in entries}
    library = by_object[(f"{site}/Documents", "Owners")]
    assert library.is_inherited
    assert library.inherited_from_path == "/sites/a"
    old = by_object[(f"{site}/Documents/Legal/Old", "Legal Team")]
    assert old.is_inherited
    assert old.inherited_from_path == "/sites/a/Documents/Legal"
    assert result.site_results[0].unique_permission_objects == 2

    # Role assignments of each unique object are fetched once.
    fetched = [url for op, url in client.calls if op == "list_role_assignments"]
    assert sorted(fetched) == sorted([site, f"{site}/Documents/Legal"])


@pytest.mark.asyncio
async def test_permission_report_object_type_switches(orchestrator):
    site = f"{HOST}/sites/a"
    client = _permission_client(site)

    result = await orchestrator.execute(
        _task(kind=ReportKind.PERMISSION_REPORT, sources=[site], include_folder_permissions=False),
        client,
    )
    assert {e.object_type for e in result.all_permissions()} == {ObjectType.SITE}


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


def _navigation_clients(source, target, source_settings, target_settings):
    source_client, target_client = FakeRemoteClient(), FakeRemoteClient()
    source_client.navigation[source] = NavigationConfig(source_settings)
    target_client.navigation[target] = NavigationConfig(target_settings)
    return source_client, target_client


@pytest.mark.asyncio
async def test_navigation_dry_run_never_writes(orchestrator):
    source, target = f"{HOST}/sites/a", f"{TARGET_HOST}/sites/a"
    source_client, target_client = _navigation_clients(
        source, target, {"MegaMenuEnabled": True}, {"MegaMenuEnabled": False}
    )

    result = await orchestrator.execute(
        _task(kind=ReportKind.NAVIGATION_SYNC, sources=[source], targets=[target]),
        source_client,
        target_client,
    )

    site = result.site_results[0]
    assert site.status == NavigationStatus.MISMATCH
    assert site.diff.changed == {"MegaMenuEnabled": {"source": True, "target": False}}
    assert site.apply_attempted is False
    assert target_client.written == {}
    assert result.summary()["mismatched"] == 1


@pytest.mark.asyncio
async def test_navigation_apply_writes_source_config(orchestrator):
    source, target = f"{HOST}/sites/a", f"{TARGET_HOST}/sites/a"
    source_client, target_client = _navigation_clients(
        source, target, {"MegaMenuEnabled": True, "HorizontalQuickLaunch": True},
        {"MegaMenuEnabled": False, "HorizontalQuickLaunch": True},
    )

    result = await orchestrator.execute(
        _task(kind=ReportKind.NAVIGATION_SYNC, sources=[source], targets=[target], apply_mode=True),
        source_client,
        target_client,
    )

    site = result.site_results[0]
    assert site.status == NavigationStatus.APPLIED
    assert site.target_config.settings["MegaMenuEnabled"] is False
    assert target_client.written[target].settings == {
        "MegaMenuEnabled": True, "HorizontalQuickLaunch": True,
    }
    assert result.apply_mode is True


@pytest.mark.asyncio
async def test_navigation_apply_skipped_when_already_matching(orchestrator):
    source, target = f"{HOST}/sites/a", f"{TARGET_HOST}/sites/a"
    source_client, target_client = _navigation_clients(
        source, target, {"MegaMenuEnabled": True}, {"MegaMenuEnabled": True}
    )

    result = await orchestrator.execute(
        _task(kind=ReportKind.NAVIGATION_SYNC, sources=[source], targets=[target], apply_mode=True),
        source_client,
        target_client,
    )
    assert result.site_results[0].status == NavigationStatus.MATCH
    assert target_client.written == {}


@pytest.mark.asyncio
async def test_navigation_apply_failure_is_recorded_separately(orchestrator):
    source, target = f"{HOST}/sites/a", f"{TARGET_HOST}/sites/a"
    source_client, target_client = _navigation_clients(
        source, target, {"MegaMenuEnabled": True}, {"MegaMenuEnabled": False}
    )
    target_client.set_navigation_error = RemoteSiteError(RemoteErrorKind.ACCESS_DENIED)

    result = await orchestrator.execute(
        _task(kind=ReportKind.NAVIGATION_SYNC, sources=[source], targets=[target], apply_mode=True),
        source_client,
        target_client,
    )

    site = result.site_results[0]
    assert site.success is True
    assert not site.diff.is_empty
    assert site.status == NavigationStatus.APPLY_FAILED
    assert site.apply_error == "Access denied - insufficient permissions"
    assert result.sites_with_status(NavigationStatus.APPLY_FAILED) == [site]
