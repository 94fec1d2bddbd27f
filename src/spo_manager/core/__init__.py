"""Core module containing the task execution and aggregation engine."""

from .aggregation import format_size, walk_folders
from .comparison import classify_list_pairs, compare, filter_lists, list_mapping_rows
from .models import (
    ReportKind,
    TaskConfiguration,
    TaskDefinition,
    TaskProgress,
    TaskResult,
    ListInventoryResult,
    ListCompareResult,
    DocumentReportResult,
    PermissionReportResult,
    NavigationSettingsResult,
)
from .navigation import diff_navigation
from .orchestrator import TaskOrchestrator
from .permissions import PermissionResolver
from .progress import LoggingProgressSink, SafeProgressSink

__all__ = [
    # Orchestration
    "TaskOrchestrator",

    # Engines
    "compare",
    "classify_list_pairs",
    "filter_lists",
    "list_mapping_rows",
    "format_size",
    "walk_folders",
    "PermissionResolver",
    "diff_navigation",

    # Models
    "ReportKind",
    "TaskConfiguration",
    "TaskDefinition",
    "TaskProgress",
    "TaskResult",
    "ListInventoryResult",
    "ListCompareResult",
    "DocumentReportResult",
    "PermissionReportResult",
    "NavigationSettingsResult",

    # Progress
    "LoggingProgressSink",
    "SafeProgressSink",
]
