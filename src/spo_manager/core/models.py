"""Data models for task definitions, raw site data and task results."""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Type
from urllib.parse import urlparse


class ReportKind(Enum):
    """The closed set of report kinds a task can run."""
    LIST_INVENTORY = "list_inventory"
    LIST_COMPARE = "list_compare"
    DOCUMENT_REPORT = "document_report"
    PERMISSION_REPORT = "permission_report"
    NAVIGATION_SYNC = "navigation_sync"

    @property
    def display_name(self) -> str:
        return _KIND_DISPLAY_NAMES[self]

    @property
    def requires_target(self) -> bool:
        """Whether the kind walks source and target sites in pairs."""
        return self in (ReportKind.LIST_COMPARE, ReportKind.NAVIGATION_SYNC)


_KIND_DISPLAY_NAMES = {
    ReportKind.LIST_INVENTORY: "Lists Report",
    ReportKind.LIST_COMPARE: "List Compare",
    ReportKind.DOCUMENT_REPORT: "Document Report",
    ReportKind.PERMISSION_REPORT: "Permission Report",
    ReportKind.NAVIGATION_SYNC: "Navigation Settings Sync",
}


class ThresholdType(Enum):
    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class ListCompareStatus(Enum):
    MATCH = "Match"
    MINOR_DIFFERENCE = "MinorDifference"
    MAJOR_DIFFERENCE = "MajorDifference"
    SOURCE_ONLY = "SourceOnly"
    TARGET_ONLY = "TargetOnly"


class ObjectType(Enum):
    SITE = "Site"
    LIST = "List"
    FOLDER = "Folder"
    ITEM = "Item"


class PrincipalType(Enum):
    USER = "User"
    SECURITY_GROUP = "SecurityGroup"
    SHAREPOINT_GROUP = "SharePointGroup"


class NavigationStatus(Enum):
    MATCH = "Match"
    MISMATCH = "Mismatch"
    APPLIED = "Applied"
    APPLY_FAILED = "ApplyFailed"
    ERROR = "Error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string as returned by SharePoint or stored by us."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return {f.name: _serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


def site_collection_url(site_url: str) -> str:
    """Return the site collection URL that contains ``site_url``.

    https://tenant.sharepoint.com/sites/hr/subsite -> https://tenant.sharepoint.com/sites/hr
    """
    parsed = urlparse(site_url)
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) >= 2 and parts[0].lower() in ("sites", "teams"):
        return f"{parsed.scheme}://{parsed.netloc}/{parts[0]}/{parts[1]}"
    return f"{parsed.scheme}://{parsed.netloc}"


def relative_site_path(site_url: str) -> str:
    """Tenant-independent key used to pair source and target sites."""
    return urlparse(site_url).path.rstrip("/").lower()


# ---------------------------------------------------------------------------
# Task definition and progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SitePair:
    source_url: str
    target_url: str


@dataclass
class TaskConfiguration:
    """Per-task options. Options that do not apply to a kind are ignored."""
    excluded_lists: List[str] = field(default_factory=list)
    include_hidden_lists: bool = False
    include_site_assets: bool = False
    threshold_type: ThresholdType = ThresholdType.PERCENTAGE
    threshold_value: float = 5.0
    site_pairs: List[SitePair] = field(default_factory=list)
    apply_mode: bool = False
    extension_filter: List[str] = field(default_factory=list)
    include_hidden_libraries: bool = False
    include_subfolders: bool = True
    include_version_count: bool = True
    include_site_permissions: bool = True
    include_list_permissions: bool = True
    include_folder_permissions: bool = True
    include_item_permissions: bool = False
    include_inherited_permissions: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TaskConfiguration":
        data = dict(data or {})
        if "threshold_type" in data:
            data["threshold_type"] = ThresholdType(data["threshold_type"])
        if "site_pairs" in data:
            data["site_pairs"] = [SitePair(**p) for p in data["site_pairs"]]
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TaskDefinition:
    """A saved description of what to audit and how."""
    name: str
    kind: ReportKind
    source_sites: List[str] = field(default_factory=list)
    target_sites: Optional[List[str]] = None
    configuration: TaskConfiguration = field(default_factory=TaskConfiguration)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def total_sites(self) -> int:
        return len(self.source_sites)

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDefinition":
        return cls(
            id=data["id"],
            name=data["name"],
            kind=ReportKind(data["kind"]),
            source_sites=list(data.get("source_sites", [])),
            target_sites=data.get("target_sites"),
            configuration=TaskConfiguration.from_dict(data.get("configuration")),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass(frozen=True)
class TaskProgress:
    """An immutable progress snapshot."""
    current_index: int
    total_count: int
    current_site_url: str
    message: str

    @property
    def percent_complete(self) -> int:
        if self.total_count > 0:
            return (self.current_index * 100) // self.total_count
        return 0


# ---------------------------------------------------------------------------
# Raw records returned by the remote site client
# ---------------------------------------------------------------------------

_LIST_TYPES = {
    100: "Custom List",
    101: "Document Library",
    102: "Survey",
    103: "Links",
    104: "Announcements",
    105: "Contacts",
    106: "Calendar",
    107: "Tasks",
    108: "Discussion Board",
    109: "Picture Library",
    110: "Data Sources",
    115: "Form Library",
    118: "Wiki Page Library",
    119: "Custom Workflow Process",
    120: "Custom Workflow History",
    130: "Data Connection Library",
    140: "Workflow History",
    150: "Gantt Tasks",
    170: "Promoted Links",
    171: "App Catalog",
    175: "Asset Library",
    432: "Issues List",
    544: "Facility",
    600: "External List",
    851: "Site Pages Library",
}

DOCUMENT_LIBRARY_TEMPLATE = 101


@dataclass
class SiteInfo:
    url: str
    title: str = ""


@dataclass
class ListInfo:
    """Metadata about a SharePoint list or library."""
    id: str
    title: str
    server_relative_url: str = ""
    item_count: int = 0
    hidden: bool = False
    base_template: int = 100
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    @property
    def list_type(self) -> str:
        return _LIST_TYPES.get(self.base_template, f"List ({self.base_template})")

    @property
    def is_document_library(self) -> bool:
        return self.base_template == DOCUMENT_LIBRARY_TEMPLATE

    def absolute_url(self, site_url: str) -> str:
        parsed = urlparse(site_url)
        return f"{parsed.scheme}://{parsed.netloc}{self.server_relative_url}"

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListInfo":
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            server_relative_url=data.get("server_relative_url", ""),
            item_count=data.get("item_count", 0),
            hidden=data.get("hidden", False),
            base_template=data.get("base_template", 100),
            created=parse_datetime(data.get("created")),
            last_modified=parse_datetime(data.get("last_modified")),
        )


@dataclass
class DocumentInfo:
    """A file as reported by the remote client."""
    name: str
    server_relative_url: str
    size_bytes: int = 0
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    created_by: str = ""
    modified_by: str = ""
    version_count: int = 1


@dataclass
class FolderListing:
    """The direct children of one folder."""
    files: List[DocumentInfo] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)


@dataclass
class SecurableObject:
    """Anything that can carry role assignments: a web, list, folder or item."""
    object_type: ObjectType
    title: str
    url: str
    path: str
    has_unique_role_assignments: bool
    parent_url: Optional[str] = None
    list_id: Optional[str] = None
    item_id: Optional[int] = None


@dataclass
class RoleAssignment:
    principal_name: str
    principal_login: str
    principal_kind: int
    role_names: List[str] = field(default_factory=list)


@dataclass
class NavigationConfig:
    """Navigation settings of a web, keyed by setting name."""
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.settings)


# ---------------------------------------------------------------------------
# Result entries
# ---------------------------------------------------------------------------


@dataclass
class ListComparisonEntry:
    source_site_url: str
    target_site_url: str
    list_title: str
    list_type: str
    source_list_url: str
    target_list_url: str
    source_count: int
    target_count: int
    difference: int
    percent_difference: float
    status: ListCompareStatus

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListComparisonEntry":
        values = dict(data)
        values["status"] = ListCompareStatus(values["status"])
        return cls(**values)


@dataclass
class DocumentEntry:
    site_collection_url: str
    site_url: str
    library_title: str
    folder_path: List[str]
    file_name: str
    size_bytes: int
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    extension: str = ""
    server_relative_url: str = ""
    created_by: str = ""
    modified_by: str = ""
    version_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentEntry":
        values = dict(data)
        values["folder_path"] = list(values.get("folder_path", []))
        values["created"] = parse_datetime(values.get("created"))
        values["last_modified"] = parse_datetime(values.get("last_modified"))
        return cls(**values)


@dataclass
class PermissionEntry:
    object_type: ObjectType
    site_collection_url: str
    site_url: str
    object_title: str
    object_url: str
    object_path: str
    principal_name: str
    principal_type: PrincipalType
    principal_login: str
    permission_level: str
    is_inherited: bool
    inherited_from_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionEntry":
        values = dict(data)
        values["object_type"] = ObjectType(values["object_type"])
        values["principal_type"] = PrincipalType(values["principal_type"])
        return cls(**values)


@dataclass
class NavigationDiff:
    """Setting-level difference between a source and a target configuration."""
    added: Dict[str, Any] = field(default_factory=dict)
    removed: Dict[str, Any] = field(default_factory=dict)
    changed: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


# ---------------------------------------------------------------------------
# Site results
# ---------------------------------------------------------------------------


@dataclass
class SiteResult:
    """Fields shared by the per-site fragments of every result kind."""
    site_url: str
    site_title: str = ""
    success: bool = False
    error_message: Optional[str] = None

    @property
    def has_issues(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)

    @classmethod
    def _base_values(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "site_url": data["site_url"],
            "site_title": data.get("site_title", ""),
            "success": data.get("success", False),
            "error_message": data.get("error_message"),
        }


@dataclass
class ListInventorySiteResult(SiteResult):
    lists: List[ListInfo] = field(default_factory=list)

    @property
    def list_count(self) -> int:
        return len(self.lists)

    @property
    def total_items(self) -> int:
        return sum(l.item_count for l in self.lists)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListInventorySiteResult":
        return cls(
            **cls._base_values(data),
            lists=[ListInfo.from_dict(l) for l in data.get("lists", [])],
        )


@dataclass
class ListCompareSiteResult(SiteResult):
    target_site_url: str = ""
    target_site_title: str = ""
    comparisons: List[ListComparisonEntry] = field(default_factory=list)

    def _count(self, *statuses: ListCompareStatus) -> int:
        return sum(1 for c in self.comparisons if c.status in statuses)

    @property
    def match_count(self) -> int:
        return self._count(ListCompareStatus.MATCH)

    @property
    def mismatch_count(self) -> int:
        return self._count(ListCompareStatus.MINOR_DIFFERENCE, ListCompareStatus.MAJOR_DIFFERENCE)

    @property
    def source_only_count(self) -> int:
        return self._count(ListCompareStatus.SOURCE_ONLY)

    @property
    def target_only_count(self) -> int:
        return self._count(ListCompareStatus.TARGET_ONLY)

    @property
    def has_issues(self) -> bool:
        return not self.success or any(
            c.status is not ListCompareStatus.MATCH for c in self.comparisons
        )

    def issue_summary(self) -> Dict[str, Any]:
        return {
            "source_site_url": self.site_url,
            "target_site_url": self.target_site_url,
            "mismatches": self.mismatch_count,
            "source_only": self.source_only_count,
            "target_only": self.target_only_count,
            "error": self.error_message or "",
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListCompareSiteResult":
        return cls(
            **cls._base_values(data),
            target_site_url=data.get("target_site_url", ""),
            target_site_title=data.get("target_site_title", ""),
            comparisons=[ListComparisonEntry.from_dict(c) for c in data.get("comparisons", [])],
        )


@dataclass
class DocumentSiteResult(SiteResult):
    documents: List[DocumentEntry] = field(default_factory=list)
    libraries_processed: int = 0
    library_errors: List[str] = field(default_factory=list)

    @property
    def total_documents(self) -> int:
        return len(self.documents)

    @property
    def total_size_bytes(self) -> int:
        return sum(d.size_bytes for d in self.documents)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentSiteResult":
        return cls(
            **cls._base_values(data),
            documents=[DocumentEntry.from_dict(d) for d in data.get("documents", [])],
            libraries_processed=data.get("libraries_processed", 0),
            library_errors=list(data.get("library_errors", [])),
        )


@dataclass
class PermissionSiteResult(SiteResult):
    permissions: List[PermissionEntry] = field(default_factory=list)

    @property
    def total_permissions(self) -> int:
        return len(self.permissions)

    @property
    def unique_permission_objects(self) -> int:
        return len({p.object_url for p in self.permissions if not p.is_inherited})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionSiteResult":
        return cls(
            **cls._base_values(data),
            permissions=[PermissionEntry.from_dict(p) for p in data.get("permissions", [])],
        )


@dataclass
class NavigationSiteResult(SiteResult):
    target_site_url: str = ""
    target_site_title: str = ""
    source_config: Optional[NavigationConfig] = None
    target_config: Optional[NavigationConfig] = None
    diff: Optional[NavigationDiff] = None
    apply_attempted: bool = False
    apply_succeeded: bool = False
    apply_error: Optional[str] = None

    @property
    def status(self) -> NavigationStatus:
        if not self.success or self.diff is None:
            return NavigationStatus.ERROR
        if self.diff.is_empty:
            return NavigationStatus.MATCH
        if not self.apply_attempted:
            return NavigationStatus.MISMATCH
        if self.apply_succeeded:
            return NavigationStatus.APPLIED
        return NavigationStatus.APPLY_FAILED

    @property
    def has_issues(self) -> bool:
        return self.status not in (NavigationStatus.MATCH, NavigationStatus.APPLIED)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationSiteResult":
        source = data.get("source_config")
        target = data.get("target_config")
        diff = data.get("diff")
        return cls(
            **cls._base_values(data),
            target_site_url=data.get("target_site_url", ""),
            target_site_title=data.get("target_site_title", ""),
            source_config=NavigationConfig(**source) if source is not None else None,
            target_config=NavigationConfig(**target) if target is not None else None,
            diff=NavigationDiff(**diff) if diff is not None else None,
            apply_attempted=data.get("apply_attempted", False),
            apply_succeeded=data.get("apply_succeeded", False),
            apply_error=data.get("apply_error"),
        )


# ---------------------------------------------------------------------------
# Task results
# ---------------------------------------------------------------------------


@dataclass
class TaskResult:
    """The outcome of one run of a task.

    Owns its site results; they are never shared with another result.
    """
    kind: ClassVar[ReportKind]
    site_result_type: ClassVar[Type[SiteResult]] = SiteResult

    task_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    executed_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    site_results: List[SiteResult] = field(default_factory=list)
    execution_log: List[str] = field(default_factory=list)

    @property
    def total_sites(self) -> int:
        return len(self.site_results)

    @property
    def successful_sites(self) -> int:
        return sum(1 for s in self.site_results if s.success)

    @property
    def failed_sites(self) -> int:
        return sum(1 for s in self.site_results if not s.success)

    def sites_with_issues(self) -> List[SiteResult]:
        return [s for s in self.site_results if s.has_issues]

    def log(self, message: str) -> None:
        """Append a timestamped line to the run's execution log."""
        self.execution_log.append(f"[{datetime.now():%H:%M:%S}] {message}")

    def summary(self) -> Dict[str, Any]:
        return {
            "total_sites": self.total_sites,
            "successful_sites": self.successful_sites,
            "failed_sites": self.failed_sites,
        }

    def to_rows(self) -> List[Dict[str, Any]]:
        """Flat tabular projection of the result, one dict per row.

        Kinds with entry-level data override this; the default is one row per site.
        """
        return [s.to_dict() for s in self.site_results]

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskResult":
        result_cls = RESULT_TYPES[ReportKind(data["kind"])]
        return result_cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "TaskResult":
        return cls(
            task_id=data["task_id"],
            id=data["id"],
            executed_at=parse_datetime(data["executed_at"]),
            completed_at=parse_datetime(data.get("completed_at")),
            site_results=[cls.site_result_type.from_dict(s) for s in data.get("site_results", [])],
            execution_log=list(data.get("execution_log", [])),
        )


@dataclass
class ListInventoryResult(TaskResult):
    kind: ClassVar[ReportKind] = ReportKind.LIST_INVENTORY
    site_result_type: ClassVar[Type[SiteResult]] = ListInventorySiteResult

    def all_lists(self) -> Iterator[Dict[str, Any]]:
        for site in self.site_results:
            for info in site.lists:
                yield {
                    "site_url": site.site_url,
                    "site_title": site.site_title,
                    "list_id": info.id,
                    "list_title": info.title,
                    "list_url": info.absolute_url(site.site_url),
                    "item_count": info.item_count,
                    "hidden": info.hidden,
                    "list_type": info.list_type,
                    "created": info.created.isoformat() if info.created else None,
                    "last_modified": info.last_modified.isoformat() if info.last_modified else None,
                }

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        data["total_lists"] = sum(s.list_count for s in self.site_results)
        data["total_items"] = sum(s.total_items for s in self.site_results)
        return data

    def to_rows(self) -> List[Dict[str, Any]]:
        return list(self.all_lists())


@dataclass
class ListCompareResult(TaskResult):
    kind: ClassVar[ReportKind] = ReportKind.LIST_COMPARE
    site_result_type: ClassVar[Type[SiteResult]] = ListCompareSiteResult

    def all_comparisons(self) -> Iterator[ListComparisonEntry]:
        for site in self.site_results:
            yield from site.comparisons

    def issue_summaries(self) -> List[Dict[str, Any]]:
        return [s.issue_summary() for s in self.sites_with_issues()]

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        data["total_lists"] = sum(len(s.comparisons) for s in self.site_results)
        data["matches"] = sum(s.match_count for s in self.site_results)
        data["mismatches"] = sum(s.mismatch_count for s in self.site_results)
        data["source_only"] = sum(s.source_only_count for s in self.site_results)
        data["target_only"] = sum(s.target_only_count for s in self.site_results)
        data["sites_with_issues"] = len(self.sites_with_issues())
        return data

    def to_rows(self) -> List[Dict[str, Any]]:
        rows = []
        for entry in self.all_comparisons():
            row = entry.to_dict()
            row["percent_difference"] = round(entry.percent_difference, 1)
            rows.append(row)
        return rows


@dataclass
class DocumentReportResult(TaskResult):
    kind: ClassVar[ReportKind] = ReportKind.DOCUMENT_REPORT
    site_result_type: ClassVar[Type[SiteResult]] = DocumentSiteResult

    def all_documents(self) -> Iterator[DocumentEntry]:
        for site in self.site_results:
            yield from site.documents

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        data["total_documents"] = sum(s.total_documents for s in self.site_results)
        data["total_size_bytes"] = sum(s.total_size_bytes for s in self.site_results)
        data["total_libraries"] = sum(s.libraries_processed for s in self.site_results)
        return data

    def to_rows(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.all_documents()]


@dataclass
class PermissionReportResult(TaskResult):
    kind: ClassVar[ReportKind] = ReportKind.PERMISSION_REPORT
    site_result_type: ClassVar[Type[SiteResult]] = PermissionSiteResult

    def all_permissions(self) -> Iterator[PermissionEntry]:
        for site in self.site_results:
            yield from site.permissions

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        permissions = list(self.all_permissions())
        data["total_permissions"] = len(permissions)
        data["unique_permission_objects"] = sum(
            s.unique_permission_objects for s in self.site_results
        )
        data["unique_principals"] = len({p.principal_name for p in permissions})
        return data

    def to_rows(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.all_permissions()]


@dataclass
class NavigationSettingsResult(TaskResult):
    kind: ClassVar[ReportKind] = ReportKind.NAVIGATION_SYNC
    site_result_type: ClassVar[Type[SiteResult]] = NavigationSiteResult

    apply_mode: bool = False

    def sites_with_status(self, *statuses: NavigationStatus) -> List[NavigationSiteResult]:
        return [s for s in self.site_results if s.status in statuses]

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        counts = {status: 0 for status in NavigationStatus}
        for site in self.site_results:
            counts[site.status] += 1
        data["apply_mode"] = self.apply_mode
        data["matching"] = counts[NavigationStatus.MATCH]
        data["mismatched"] = counts[NavigationStatus.MISMATCH]
        data["applied"] = counts[NavigationStatus.APPLIED]
        data["apply_failed"] = counts[NavigationStatus.APPLY_FAILED]
        data["errors"] = counts[NavigationStatus.ERROR]
        return data

    def to_rows(self) -> List[Dict[str, Any]]:
        rows = []
        for site in self.site_results:
            rows.append({
                "source_site_url": site.site_url,
                "source_site_title": site.site_title,
                "target_site_url": site.target_site_url,
                "target_site_title": site.target_site_title,
                "source_settings": site.source_config.to_dict() if site.source_config else {},
                "target_settings": site.target_config.to_dict() if site.target_config else {},
                "status": site.status.value,
                "error": site.error_message or site.apply_error or "",
            })
        return rows

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "NavigationSettingsResult":
        result = super()._from_dict(data)
        result.apply_mode = data.get("apply_mode", False)
        return result


RESULT_TYPES: Dict[ReportKind, Type[TaskResult]] = {
    ReportKind.LIST_INVENTORY: ListInventoryResult,
    ReportKind.LIST_COMPARE: ListCompareResult,
    ReportKind.DOCUMENT_REPORT: DocumentReportResult,
    ReportKind.PERMISSION_REPORT: PermissionReportResult,
    ReportKind.NAVIGATION_SYNC: NavigationSettingsResult,
}
