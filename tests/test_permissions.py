"""Tests for permission inheritance resolution."""

import pytest

from spo_manager.core.models import ObjectType, PrincipalType, RoleAssignment, SecurableObject
from spo_manager.core.permissions import (
    PermissionResolver,
    build_permission_entries,
    classify_principal,
    permission_level,
)

SITE = "https://contoso.sharepoint.com/sites/hr"


def _obj(object_type, url, unique, parent=None, path=None):
    return SecurableObject(
        object_type=object_type,
        title=url.rsplit("/", 1)[-1],
        url=url,
        path=path or url.replace("https://contoso.sharepoint.com", ""),
        has_unique_role_assignments=unique,
        parent_url=parent,
    )


@pytest.mark.parametrize(
    "kind,expected",
    [
        (1, PrincipalType.USER),
        (2, PrincipalType.SECURITY_GROUP),
        (4, PrincipalType.SECURITY_GROUP),
        (8, PrincipalType.SHAREPOINT_GROUP),
    ],
)
def test_classify_principal_uses_kind_flag(kind, expected):
    assert classify_principal(kind) == expected


def test_principal_name_does_not_affect_type():
    assignment = RoleAssignment("Site Owners Group", "i:0#.f|membership|x", 1, ["Full Control"])
    web = _obj(ObjectType.SITE, SITE, True)
    entries = build_permission_entries(SITE, web, [assignment], is_inherited=False)
    assert entries[0].principal_type == PrincipalType.USER


def test_permission_level_drops_limited_access():
    assert permission_level(["Limited Access", "Read", "Contribute"]) == "Read, Contribute"
    assert permission_level(["Limited Access"]) == ""


def test_assignments_with_only_limited_access_are_skipped():
    web = _obj(ObjectType.SITE, SITE, True)
    assignments = [
        RoleAssignment("Guest", "guest", 1, ["Limited Access"]),
        RoleAssignment("Members", "members", 8, ["Edit"]),
    ]
    entries = build_permission_entries(SITE, web, assignments, is_inherited=False)
    assert [e.principal_name for e in entries] == ["Members"]
    assert entries[0].permission_level == "Edit"
    assert entries[0].site_collection_url == SITE
    assert entries[0].inherited_from_path == ""


def test_resolver_finds_nearest_unique_ancestor():
    web = _obj(ObjectType.SITE, SITE, True)
    library = _obj(ObjectType.LIST, f"{SITE}/Docs", False, parent=SITE)
    folder = _obj(ObjectType.FOLDER, f"{SITE}/Docs/Legal", True, parent=f"{SITE}/Docs")
    subfolder = _obj(ObjectType.FOLDER, f"{SITE}/Docs/Legal/2024", False, parent=f"{SITE}/Docs/Legal")
    item = _obj(ObjectType.ITEM, f"{SITE}/Docs/Legal/2024/a.docx", False, parent=f"{SITE}/Docs/Legal/2024")

    resolver = PermissionResolver(SITE)
    for obj in (web, library, folder, subfolder, item):
        resolver.add(obj)

    assert resolver.resolve(web) == (False, "", None)
    assert resolver.resolve(library) == (True, "/sites/hr", web)
    assert resolver.resolve(folder) == (False, "", None)
    assert resolver.resolve(item) == (True, "/sites/hr/Docs/Legal", folder)


def test_resolver_falls_back_when_ancestor_not_crawled():
    subweb = _obj(ObjectType.SITE, f"{SITE}/sub", False)
    resolver = PermissionResolver(f"{SITE}/sub")
    resolver.add(subweb)
    assert resolver.resolve(subweb) == (True, SITE, None)

    orphan = _obj(ObjectType.FOLDER, f"{SITE}/sub/Docs/x", False, parent=f"{SITE}/sub/Docs")
    resolver.add(orphan)
    assert resolver.resolve(orphan) == (True, "/sites/hr/sub/Docs", None)


def test_resolver_parent_lookup_is_case_insensitive():
    web = _obj(ObjectType.SITE, SITE, True)
    library = _obj(ObjectType.LIST, f"{SITE}/Docs", False, parent=SITE.upper() + "/")
    resolver = PermissionResolver(SITE)
    resolver.add(web)
    resolver.add(library)
    assert resolver.nearest_unique_ancestor(library) is web


def test_inherited_entries_carry_source_path():
    library = _obj(ObjectType.LIST, f"{SITE}/Docs", False, parent=SITE)
    assignment = RoleAssignment("Visitors", "visitors", 8, ["Read"])
    entries = build_permission_entries(SITE, library, [assignment], True, "/sites/hr")
    assert entries[0].is_inherited is True
    assert entries[0].inherited_from_path == "/sites/hr"
    assert entries[0].object_type == ObjectType.LIST
