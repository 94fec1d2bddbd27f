"""Permission inheritance resolution and permission entry construction."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from .models import (
    ObjectType,
    PermissionEntry,
    PrincipalType,
    RoleAssignment,
    SecurableObject,
    TaskConfiguration,
    site_collection_url,
)

logger = logging.getLogger(__name__)

LIMITED_ACCESS = "limited access"

# SharePoint principal type flags
PRINCIPAL_USER = 1
PRINCIPAL_DISTRIBUTION_LIST = 2
PRINCIPAL_SECURITY_GROUP = 4
PRINCIPAL_SHAREPOINT_GROUP = 8


def classify_principal(kind: int) -> PrincipalType:
    """Map a principal type flag to a PrincipalType. Names are never inspected."""
    if kind & PRINCIPAL_SHAREPOINT_GROUP:
        return PrincipalType.SHAREPOINT_GROUP
    if kind & (PRINCIPAL_DISTRIBUTION_LIST | PRINCIPAL_SECURITY_GROUP):
        return PrincipalType.SECURITY_GROUP
    return PrincipalType.USER


def permission_level(role_names: Iterable[str]) -> str:
    """Join role names into one level, dropping Limited Access."""
    return ", ".join(name for name in role_names if name and name.lower() != LIMITED_ACCESS)


def is_object_type_included(object_type: ObjectType, config: TaskConfiguration) -> bool:
    return {
        ObjectType.SITE: config.include_site_permissions,
        ObjectType.LIST: config.include_list_permissions,
        ObjectType.FOLDER: config.include_folder_permissions,
        ObjectType.ITEM: config.include_item_permissions,
    }[object_type]


def _url_path(url: str) -> str:
    parsed = urlparse(url)
    return parsed.path if parsed.scheme else url


class PermissionResolver:
    """Tracks the securable objects of one site and resolves where each inherits from.

    Objects must be added parent first; the crawl order of the remote client
    guarantees that.
    """

    def __init__(self, site_url: str):
        self.site_url = site_url
        self._objects: Dict[str, SecurableObject] = {}

    def add(self, obj: SecurableObject) -> None:
        self._objects[obj.url.rstrip("/").lower()] = obj

    def get(self, url: Optional[str]) -> Optional[SecurableObject]:
        if not url:
            return None
        return self._objects.get(url.rstrip("/").lower())

    def nearest_unique_ancestor(self, obj: SecurableObject) -> Optional[SecurableObject]:
        seen = {obj.url.rstrip("/").lower()}
        current = self.get(obj.parent_url)
        while current is not None:
            key = current.url.rstrip("/").lower()
            if key in seen:
                logger.warning(f"Cycle in securable parents at {current.url}")
                return None
            seen.add(key)
            if current.has_unique_role_assignments:
                return current
            current = self.get(current.parent_url)
        return None

    def resolve(self, obj: SecurableObject) -> Tuple[bool, str, Optional[SecurableObject]]:
        """Return (is_inherited, inherited_from_path, ancestor).

        ``ancestor`` is the nearest crawled object holding unique assignments,
        or None when the object is unique itself or the ancestor lies outside
        the crawl.
        """
        if obj.has_unique_role_assignments:
            return False, "", None
        ancestor = self.nearest_unique_ancestor(obj)
        if ancestor is not None:
            return True, ancestor.path, ancestor
        if obj.parent_url:
            return True, _url_path(obj.parent_url), None
        return True, site_collection_url(self.site_url), None


def build_permission_entries(
    site_url: str,
    obj: SecurableObject,
    assignments: List[RoleAssignment],
    is_inherited: bool,
    inherited_from_path: str = "",
) -> List[PermissionEntry]:
    entries = []
    collection_url = site_collection_url(site_url)
    for assignment in assignments:
        level = permission_level(assignment.role_names)
        if not level:
            continue
        entries.append(PermissionEntry(
            object_type=obj.object_type,
            site_collection_url=collection_url,
            site_url=site_url,
            object_title=obj.title,
            object_url=obj.url,
            object_path=obj.path,
            principal_name=assignment.principal_name,
            principal_type=classify_principal(assignment.principal_kind),
            principal_login=assignment.principal_login,
            permission_level=level,
            is_inherited=is_inherited,
            inherited_from_path=inherited_from_path if is_inherited else "",
        ))
    return entries
