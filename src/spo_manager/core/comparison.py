"""List count comparison, list exclusion filtering and source/target list matching."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from .models import (
    ListCompareResult,
    ListCompareStatus,
    ListComparisonEntry,
    ListInfo,
    TaskConfiguration,
    ThresholdType,
)

DEFAULT_THRESHOLD = 5.0

# System lists skipped by default.
DEFAULT_EXCLUDED_LISTS = frozenset(name.lower() for name in (
    "MicroFeed",
    "Style Library",
    "appdata",
    "TaxonomyHiddenList",
    "Composed Looks",
    "Master Page Gallery",
    "Solution Gallery",
    "Theme Gallery",
    "Web Part Gallery",
    "Workflow Tasks",
    "User Information List",
    "Converted Forms",
    "Customized Reports",
    "Form Templates",
    "Content type publishing error log",
    "Team Message History",
    "Channel Settings",
))

OPTIONAL_EXCLUDED_LISTS = frozenset({"site assets"})

NEVER_EXCLUDED_LISTS = frozenset({"site pages"})


@dataclass(frozen=True)
class ComparisonOutcome:
    difference: int
    percent_difference: float
    status: ListCompareStatus


def percent_difference(source_count: int, target_count: int) -> float:
    if source_count == 0:
        return 0.0 if target_count == 0 else 100.0
    return abs(source_count - target_count) / source_count * 100.0


def compare(
    source_count: int,
    target_count: int,
    threshold: float = DEFAULT_THRESHOLD,
    threshold_type: ThresholdType = ThresholdType.PERCENTAGE,
) -> ComparisonOutcome:
    """Classify a pair of item counts.

    Never returns SourceOnly or TargetOnly; those come from the list matcher.
    """
    difference = source_count - target_count
    percent = percent_difference(source_count, target_count)

    if difference == 0:
        status = ListCompareStatus.MATCH
    else:
        measured = abs(difference) if threshold_type is ThresholdType.ABSOLUTE else percent
        if measured <= threshold:
            status = ListCompareStatus.MINOR_DIFFERENCE
        else:
            status = ListCompareStatus.MAJOR_DIFFERENCE

    return ComparisonOutcome(difference, percent, status)


def excluded_list_names(config: Optional[TaskConfiguration] = None) -> Set[str]:
    """Lower-cased titles to skip for the given task configuration."""
    config = config or TaskConfiguration()
    names = set(DEFAULT_EXCLUDED_LISTS)
    if not config.include_site_assets:
        names |= OPTIONAL_EXCLUDED_LISTS
    names |= {name.strip().lower() for name in config.excluded_lists if name.strip()}
    return names


def is_list_excluded(
    info: ListInfo,
    config: Optional[TaskConfiguration] = None,
    excluded: Optional[Set[str]] = None,
) -> bool:
    config = config or TaskConfiguration()
    title = info.title.lower()
    if title in NEVER_EXCLUDED_LISTS:
        return False
    if excluded is None:
        excluded = excluded_list_names(config)
    if title in excluded:
        return True
    return info.hidden and not config.include_hidden_lists


def filter_lists(lists: Iterable[ListInfo], config: Optional[TaskConfiguration] = None) -> List[ListInfo]:
    """Drop excluded and hidden lists, keeping the input order."""
    config = config or TaskConfiguration()
    excluded = excluded_list_names(config)
    return [l for l in lists if not is_list_excluded(l, config, excluded)]


def classify_list_pairs(
    source_site_url: str,
    target_site_url: str,
    source_lists: List[ListInfo],
    target_lists: List[ListInfo],
    config: Optional[TaskConfiguration] = None,
) -> List[ListComparisonEntry]:
    """Match lists by title and classify each pair.

    Source lists come first in source order, followed by lists that only
    exist on the target in target order.
    """
    config = config or TaskConfiguration()
    source_lists = filter_lists(source_lists, config)
    target_lists = filter_lists(target_lists, config)

    targets_by_title: Dict[str, ListInfo] = {}
    for info in target_lists:
        targets_by_title.setdefault(info.title.lower(), info)

    entries = []
    matched: Set[str] = set()
    for source in source_lists:
        key = source.title.lower()
        target = targets_by_title.get(key)
        if target is None:
            entries.append(ListComparisonEntry(
                source_site_url=source_site_url,
                target_site_url=target_site_url,
                list_title=source.title,
                list_type=source.list_type,
                source_list_url=source.absolute_url(source_site_url),
                target_list_url="",
                source_count=source.item_count,
                target_count=0,
                difference=source.item_count,
                percent_difference=100.0 if source.item_count else 0.0,
                status=ListCompareStatus.SOURCE_ONLY,
            ))
            continue

        matched.add(key)
        outcome = compare(
            source.item_count,
            target.item_count,
            threshold=config.threshold_value,
            threshold_type=config.threshold_type,
        )
        entries.append(ListComparisonEntry(
            source_site_url=source_site_url,
            target_site_url=target_site_url,
            list_title=source.title,
            list_type=source.list_type,
            source_list_url=source.absolute_url(source_site_url),
            target_list_url=target.absolute_url(target_site_url),
            source_count=source.item_count,
            target_count=target.item_count,
            difference=outcome.difference,
            percent_difference=outcome.percent_difference,
            status=outcome.status,
        ))

    for target in target_lists:
        key = target.title.lower()
        if key in matched:
            continue
        matched.add(key)
        entries.append(ListComparisonEntry(
            source_site_url=source_site_url,
            target_site_url=target_site_url,
            list_title=target.title,
            list_type=target.list_type,
            source_list_url="",
            target_list_url=target.absolute_url(target_site_url),
            source_count=0,
            target_count=target.item_count,
            difference=-target.item_count,
            percent_difference=percent_difference(0, target.item_count),
            status=ListCompareStatus.TARGET_ONLY,
        ))

    return entries


def list_mapping_rows(result: ListCompareResult) -> List[Dict[str, Any]]:
    """Source-to-target list mapping rows for a migration tool.

    System lists are left out, except those that are never excluded.
    """
    rows = []
    for site in result.site_results:
        for entry in site.comparisons:
            name = entry.list_title.lower()
            if name in DEFAULT_EXCLUDED_LISTS and name not in NEVER_EXCLUDED_LISTS:
                continue
            rows.append({
                "source_site_url": entry.source_site_url,
                "source_site_title": site.site_title,
                "target_site_url": entry.target_site_url,
                "target_site_title": site.target_site_title,
                "list_title": entry.list_title,
                "list_type": entry.list_type,
                "source_list_url": entry.source_list_url,
                "target_list_url": entry.target_list_url,
                "source_count": entry.source_count,
                "target_count": entry.target_count,
                "status": entry.status.value,
            })
    return rows
